"""
Global Search Service
Unified search across events, organizations, users and posts.

One search:
1. validates the query and filters (no remote call when invalid)
2. returns the cached response for an identical request, if any
3. expands the query with synonyms and loads the caller's preferences
4. runs the per-entity matchers concurrently; each scores its own rows
5. sorts and truncates every result bucket independently
6. adds facets, trending queries, suggestions and related searches
7. records analytics in the background and caches the response
"""
import asyncio
import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple

from auth_dependencies import SearchAuthContext
from datetime_utils import parse_datetime
from geo_utils import parse_location
from models import ALL_ENTITY_TYPES, SEARCH_MAX_LIMIT, SearchRequest, SortMode
from search_analytics_service import (
    SearchAnalyticsService,
    generate_session_id,
    get_search_analytics_service,
)
from search_cache_service import (
    SEARCH_CACHE_TTL_SECONDS,
    SearchCache,
    build_search_cache_key,
    get_search_cache,
)
from search_facets_service import SearchFacetsService
from search_matchers import SearchMatchers
from search_scoring import ScoringContext, ScoringWeights
from search_suggestions_service import (
    SearchSuggestionsService,
    build_related_searches,
    suggestions_from_results,
)
from search_term_expander import expand_search_terms
from security_utils import sanitize_for_log, validate_search_query
from supabase_client import SupabaseClient, get_supabase_client
from user_preferences_service import UserPreferences, UserPreferencesService

logger = logging.getLogger(__name__)

# Configuration from environment variables
SEARCH_DEFAULT_LIMIT = int(os.getenv("SEARCH_DEFAULT_LIMIT", "20"))
SEARCH_DEFAULT_RADIUS_KM = float(os.getenv("SEARCH_DEFAULT_RADIUS_KM", "50"))

POPULARITY_FIELDS = {
    'events': 'likes_count',
    'posts': 'likes_count',
    'users': 'followers_count',
    'organizations': 'followers_count',
}


def build_search_filters(request: SearchRequest) -> Tuple[str, Dict[str, Any]]:
    """
    Validate a search request and normalize its filters

    Returns:
        (validated query text, filters)

    Raises:
        ValueError: Invalid query, location or date range
    """
    query = validate_search_query(request.q)
    location = parse_location(request.location)

    date_from = _parse_filter_date('date_from', request.date_from)
    date_to = _parse_filter_date('date_to', request.date_to)
    if date_from and date_to and date_from > date_to:
        raise ValueError("date_from cannot be after date_to")

    filters = {
        'category': request.category.strip() if request.category and request.category.strip() else None,
        'location': location,
        'radius_km': (request.radius_km or SEARCH_DEFAULT_RADIUS_KM) if location else None,
        'date_from': date_from.isoformat() if date_from else None,
        'date_to': date_to.isoformat() if date_to else None,
        'price_range': request.price_range.model_dump() if request.price_range else None,
        'tags': list(request.tags),
        'organizer_id': request.organizer_id or None,
        'verified_only': request.verified_only,
        'include_past_events': request.include_past_events,
    }
    return query, filters


def _parse_filter_date(name: str, value: Optional[str]):
    if not value:
        return None
    parsed = parse_datetime(value)
    if parsed is None:
        raise ValueError(f"{name} must be an ISO 8601 date")
    return parsed


def describe_filters(filters: Dict[str, Any], sort_by: str) -> Dict[str, Any]:
    """Filters that narrow the search, as echoed back to the client"""
    applied = {}
    for key, value in filters.items():
        if value is None or value is False or value == []:
            continue
        if key == 'location':
            value = f"{value[0]},{value[1]}"
        applied[key] = value
    if sort_by != SortMode.RELEVANCE.value:
        applied['sort_by'] = sort_by
    return applied


def _sort_time(result: Dict[str, Any]):
    return parse_datetime(result.get('created_at') or (result.get('metadata') or {}).get('start_at'))


def sort_results(entity_type: str, results: List[Dict[str, Any]], sort_by: str) -> List[Dict[str, Any]]:
    """
    Order one result bucket

    Sorts are stable, so ties keep the matcher's order. Results missing the
    sort value go last for date and distance.
    """
    if sort_by == SortMode.DATE.value:
        dated = [(r, _sort_time(r)) for r in results]
        present = sorted((item for item in dated if item[1] is not None), key=lambda item: item[1], reverse=True)
        return [r for r, _ in present] + [r for r, ts in dated if ts is None]

    if sort_by == SortMode.POPULARITY.value:
        field = POPULARITY_FIELDS[entity_type]
        return sorted(results, key=lambda r: (r.get('metadata') or {}).get(field) or 0, reverse=True)

    if sort_by == SortMode.DISTANCE.value:
        present = sorted((r for r in results if r.get('distance_km') is not None), key=lambda r: r['distance_km'])
        return present + [r for r in results if r.get('distance_km') is None]

    return sorted(results, key=lambda r: r['relevance_score'], reverse=True)


class GlobalSearchService:
    """Service for searching across all content types"""

    def __init__(
        self,
        supabase_client: Optional[SupabaseClient] = None,
        cache: Optional[SearchCache] = None,
        analytics: Optional[SearchAnalyticsService] = None,
        weights: Optional[ScoringWeights] = None,
        cache_ttl: int = SEARCH_CACHE_TTL_SECONDS,
    ):
        self.supabase_client = supabase_client or get_supabase_client()
        self.cache = cache or get_search_cache()
        self._analytics = analytics
        self.weights = weights
        self.cache_ttl = cache_ttl

    @property
    def analytics(self) -> SearchAnalyticsService:
        if self._analytics is None:
            self._analytics = get_search_analytics_service(self.supabase_client)
        return self._analytics

    async def search_all(self, request: SearchRequest, auth: Optional[SearchAuthContext] = None) -> Dict[str, Any]:
        """
        Search across the requested entity types

        Args:
            request: Search request
            auth: Caller identity; anonymous when None

        Returns:
            Response envelope: query, results per entity type, meta, suggestions,
            trending, related_searches and filters_applied

        Raises:
            ValueError: Invalid query or filters (nothing was fetched)
        """
        search_start = time.time()
        auth = auth or SearchAuthContext()

        query, filters = build_search_filters(request)
        types = [t.value for t in request.types] or list(ALL_ENTITY_TYPES)
        limit = min(request.limit or SEARCH_DEFAULT_LIMIT, SEARCH_MAX_LIMIT)
        offset = max(0, request.offset)
        sort_by = request.sort_by.value

        cache_key = build_search_cache_key({
            'query': query,
            'types': types,
            'filters': filters,
            'limit': limit,
            'offset': offset,
            'sort_by': sort_by,
            'user_id': auth.user_id,
        })
        cached = await self._cache_get(cache_key)
        if cached is not None:
            logger.info(f"Search cache HIT for query '{sanitize_for_log(query)}'")
            response = json.loads(cached)
            # Session ids are per caller and never shared through the cache
            session_id = request.session_id or generate_session_id()
            response['meta']['session_id'] = session_id
            self._track_search(
                session_id, query, types, response['meta']['total'],
                int((time.time() - search_start) * 1000), response['filters_applied'], auth.user_id,
            )
            return response

        logger.info(
            f"Performing search for user {auth.user_id or 'anonymous'}: '{sanitize_for_log(query)}' "
            f"types={types} (offset {offset}, limit {limit}, sort {sort_by})"
        )

        db = self.supabase_client.get_search_client(auth.access_token)
        terms = expand_search_terms(query)

        preferences = UserPreferences()
        if auth.user_id:
            preferences = await UserPreferencesService(db).get_preferences(auth.user_id)

        context = ScoringContext(
            terms,
            preferred_categories=preferences.preferred_categories,
            checkin_categories=preferences.checkin_categories,
            weights=self.weights,
        )
        matchers = SearchMatchers(db, context)

        # Search all requested types in parallel
        search_results = await asyncio.gather(
            *[matchers.search(entity_type, filters, limit, offset) for entity_type in types],
            return_exceptions=True  # Don't fail entire search if one type fails
        )

        results: Dict[str, List[Dict[str, Any]]] = {entity_type: [] for entity_type in ALL_ENTITY_TYPES}
        for entity_type, bucket in zip(types, search_results):
            if isinstance(bucket, Exception):
                logger.error(f"Error searching {entity_type}: {bucket}")
                continue
            results[entity_type] = sort_results(entity_type, bucket, sort_by)[:limit]

        total = sum(len(bucket) for bucket in results.values())

        facets, trending = await asyncio.gather(
            SearchFacetsService(db).get_facets(query, types, filters, results['events']),
            SearchSuggestionsService(db).get_trending(),
        )

        search_time_ms = int((time.time() - search_start) * 1000)
        session_id = request.session_id or generate_session_id()
        filters_applied = describe_filters(filters, sort_by)

        response = {
            'query': query,
            'results': results,
            'meta': {
                'total': total,
                'search_time_ms': search_time_ms,
                'has_more': total >= limit,
                'facets': facets,
                'session_id': session_id,
            },
            'suggestions': suggestions_from_results(query, results),
            'trending': trending,
            'related_searches': build_related_searches(query, facets),
            'filters_applied': filters_applied,
        }
        logger.info(f"Search completed in {search_time_ms}ms with {total} results")

        self._track_search(session_id, query, types, total, search_time_ms, filters_applied, auth.user_id)
        await self._cache_put(cache_key, json.dumps(response, default=str))

        return response

    def _track_search(self, session_id, query, types, total, search_time_ms, filters_applied, user_id):
        try:
            self.analytics.track_search(
                session_id=session_id,
                query=query,
                entity_types=types,
                results_count=total,
                search_time_ms=search_time_ms,
                filters_applied=filters_applied,
                user_id=user_id,
            )
        except Exception as e:
            logger.warning(f"Failed to schedule search analytics: {e}")

    async def _cache_get(self, key: str) -> Optional[str]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"Search cache read failed: {e}")
            return None

    async def _cache_put(self, key: str, value: str):
        try:
            await self.cache.put(key, value, self.cache_ttl)
        except Exception as e:
            logger.warning(f"Search cache write failed: {e}")


# Global instance
_global_search_service = None


def get_global_search_service() -> GlobalSearchService:
    """Get or create global search service instance"""
    global _global_search_service
    if _global_search_service is None:
        _global_search_service = GlobalSearchService()
    return _global_search_service
