"""
Search facets
Category, location, price and date breakdowns for a search. The database
procedure is authoritative; when it is unavailable the facets are computed
from the event results already fetched for the page.
"""
import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional

from datetime_utils import parse_datetime, utc_now
from supabase_client import execute_query

logger = logging.getLogger(__name__)

FACET_DIMENSIONS = ('category', 'location', 'price_range', 'date_range')

PRICE_BRACKETS = ['Free', 'Under $25', '$25-$50', '$50-$100', '$100+']
DATE_BRACKETS = ['Today', 'This week', 'This month', 'Later', 'Past']


def empty_facets() -> Dict[str, List[Dict[str, Any]]]:
    return {dimension: [] for dimension in FACET_DIMENSIONS}


def price_bracket(price: Optional[float]) -> str:
    price = price or 0
    if price <= 0:
        return 'Free'
    if price < 25:
        return 'Under $25'
    if price <= 50:
        return '$25-$50'
    if price <= 100:
        return '$50-$100'
    return '$100+'


def date_bracket(start_at: Any, now: Optional[datetime] = None) -> Optional[str]:
    start = parse_datetime(start_at)
    if start is None:
        return None
    now = now or utc_now()
    if start < now:
        return 'Past'
    if start.date() == now.date():
        return 'Today'
    days = (start - now).days
    if days <= 7:
        return 'This week'
    if days <= 30:
        return 'This month'
    return 'Later'


def _to_facets(counter: Counter) -> List[Dict[str, Any]]:
    # most_common keeps first-seen order among equal counts
    return [{'name': name, 'count': count} for name, count in counter.most_common()]


def compute_facets(events: List[Dict[str, Any]], now: Optional[datetime] = None) -> Dict[str, List[Dict[str, Any]]]:
    """Facets over event search results (dicts as produced by the event matcher)"""
    categories: Counter = Counter()
    locations: Counter = Counter()
    prices: Counter = Counter()
    dates: Counter = Counter()

    for event in events:
        metadata = event.get('metadata') or {}
        if metadata.get('category'):
            categories[metadata['category']] += 1
        if metadata.get('city'):
            locations[metadata['city']] += 1

        tickets = metadata.get('ticket_availability') or {}
        prices[price_bracket(tickets.get('price'))] += 1

        bracket = date_bracket(metadata.get('start_at'), now)
        if bracket:
            dates[bracket] += 1

    return {
        'category': _to_facets(categories),
        'location': _to_facets(locations),
        'price_range': _to_facets(prices),
        'date_range': _to_facets(dates),
    }


def normalize_facets(payload: Any) -> Optional[Dict[str, List[Dict[str, Any]]]]:
    """
    Shape the procedure's payload into facet lists

    Returns None when the payload carries no facet at all.
    """
    if isinstance(payload, list):
        payload = payload[0] if payload else None
    if not isinstance(payload, dict):
        return None

    facets = empty_facets()
    for dimension in FACET_DIMENSIONS:
        entries = payload.get(dimension) or []
        normalized = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            name = entry.get('name', entry.get('value'))
            if name is None:
                continue
            normalized.append({'name': str(name), 'count': int(entry.get('count') or 0)})
        facets[dimension] = sorted(normalized, key=lambda f: f['count'], reverse=True)

    if not any(facets.values()):
        return None
    return facets


class SearchFacetsService:
    def __init__(self, db):
        self.db = db

    async def get_facets(
        self,
        search_query: str,
        types: List[str],
        filters: Dict[str, Any],
        events: List[Dict[str, Any]],
    ) -> Dict[str, List[Dict[str, Any]]]:
        """
        Facets for a search, never raises

        Args:
            search_query: Validated query text
            types: Entity types searched
            filters: Normalized search filters
            events: Event results fetched for this page (fallback input)
        """
        try:
            facets = await self._get_facets_from_rpc(search_query, types, filters)
            if facets is not None:
                return facets
        except Exception as e:
            logger.warning(f"get_search_facets unavailable, computing facets locally: {e}")

        try:
            return compute_facets(events)
        except Exception as e:
            logger.error(f"Error computing search facets: {e}")
            return empty_facets()

    async def _get_facets_from_rpc(self, search_query, types, filters):
        location = filters.get('location')
        result = await execute_query(
            self.db.rpc('get_search_facets', {
                'search_query': search_query,
                'search_types': types,
                'category_filter': filters.get('category'),
                'location_filter': f"{location[0]},{location[1]}" if location else None,
                'radius_km': filters.get('radius_km'),
            })
        )
        return normalize_facets(result.data)
