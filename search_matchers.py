"""
Per-entity search matchers
Each matcher issues one filtered read against Supabase for a single entity
type (OR-combined ILIKE over a fixed field list, AND-ed structural filters),
scores the rows and shapes them into search results.

A failing remote read never fails the whole search: the matcher logs the
error and returns an empty list.
"""
import logging
from typing import Any, Callable, Dict, List, Optional

from datetime_utils import parse_datetime, to_iso, utc_now
from geo_utils import bounding_box, haversine_km
from search_scoring import ScoringContext, field_text, score_rows
from security_utils import sanitize_filter_term
from supabase_client import execute_query

logger = logging.getLogger(__name__)

# Rows fetched per requested result, so scoring can re-rank before truncation
OVERFETCH_FACTOR = 2

EVENT_SEARCH_FIELDS = ['title', 'description', 'city', 'venue', 'category']
USER_SEARCH_FIELDS = ['username', 'display_name', 'bio']
ORGANIZATION_SEARCH_FIELDS = ['name', 'slug', 'description']
POST_SEARCH_FIELDS = ['title', 'body']

EVENT_COLUMNS = (
    'id, title, description, slug, venue, city, category, category_id, tags, '
    'start_at, end_at, created_at, cover_image_url, latitude, longitude, '
    'likes_count, org_id, status, visibility, '
    'ticket_tiers(id, name, price, currency, quantity_available, quantity_sold, status), '
    'orgs(id, name, slug, logo_url, is_verified)'
)
USER_COLUMNS = (
    'id, user_id, username, display_name, bio, avatar_url, verified, '
    'followers_count, following_count, created_at'
)
ORGANIZATION_COLUMNS = (
    'id, name, slug, description, logo_url, website_url, is_verified, '
    'followers_count, created_at'
)
POST_COLUMNS = (
    'id, title, body, author_id, event_id, media_url, visibility, '
    'reactions_count, comments_count, created_at, '
    'events(id, title, category), '
    'profiles(user_id, username, display_name, avatar_url, verified)'
)

SNIPPET_LENGTH = 200


def build_text_filter(fields: List[str], terms: List[str]) -> Optional[str]:
    """
    PostgREST ``or`` filter matching any term in any field

    Returns None when no term survives sanitization.
    """
    safe_terms = [t for t in (sanitize_filter_term(term) for term in terms) if t]
    if not safe_terms:
        return None
    return ",".join(
        f"{field}.ilike.%{term}%" for term in dict.fromkeys(safe_terms) for field in fields
    )


def category_name(value: Any) -> Optional[str]:
    """Display name of a category column (plain text or embedded row)"""
    if isinstance(value, dict):
        return value.get('name')
    return value or None


def _snippet(text: Optional[str]) -> str:
    return (text or '')[:SNIPPET_LENGTH]


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def summarize_ticket_tiers(tiers: Optional[List[Dict[str, Any]]]) -> Dict[str, Any]:
    """
    Availability summary of an event's ticket tiers

    ``price`` is what price filters and facets use: the cheapest available
    tier, else the cheapest tier (sold out), else 0 for events without tickets.
    """
    tiers = tiers or []
    available = []
    total_tickets = 0
    available_tickets = 0

    for tier in tiers:
        capacity = _as_int(tier.get('quantity_available'))
        sold = _as_int(tier.get('quantity_sold'))
        total_tickets += capacity
        is_active = tier.get('status') in (None, 'active')
        if is_active and sold < capacity:
            available.append(tier)
            available_tickets += capacity - sold

    prices = [float(t['price']) for t in available if t.get('price') is not None]
    from_price = min(prices) if prices else None
    from_price_currency = None
    if from_price is not None:
        from_price_currency = next(
            (t.get('currency') for t in available if t.get('price') is not None and float(t['price']) == from_price),
            None,
        )

    if from_price is not None:
        price = from_price
    else:
        all_prices = [float(t['price']) for t in tiers if t.get('price') is not None]
        price = min(all_prices) if all_prices else 0.0

    return {
        'available_tickets': available_tickets,
        'total_tickets': total_tickets,
        'tier_count': len(tiers),
        'from_price': from_price,
        'from_price_currency': from_price_currency,
        'price': price,
    }


class SearchMatchers:
    """
    Matchers bound to one Supabase client and one request's scoring context

    Args:
        db: Supabase client used for the reads
        context: Scoring context (terms, personalization, clock)
    """

    def __init__(self, db, context: ScoringContext):
        self.db = db
        self.context = context

    async def search(self, entity_type: str, filters: Dict[str, Any], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        matcher = self.matchers[entity_type]
        return await matcher(filters, limit, offset)

    @property
    def matchers(self) -> Dict[str, Callable]:
        return {
            'events': self.search_events,
            'users': self.search_users,
            'organizations': self.search_organizations,
            'posts': self.search_posts,
        }

    async def _fetch(self, entity_type: str, build_query: Callable[[], Any]) -> Optional[List[Dict[str, Any]]]:
        try:
            query = build_query()
            if query is None:
                return []
            result = await execute_query(query)
            rows = result.data or []
            logger.info(f"Fetched {len(rows)} {entity_type} candidates")
            return rows
        except Exception as e:
            logger.error(f"Error searching {entity_type}: {e}", exc_info=True)
            return None

    # ------------------------------------------------------------------ events

    async def search_events(self, filters: Dict[str, Any], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Search published public events by title, description, city, venue and category"""
        fetch_count = limit * OVERFETCH_FACTOR
        location = filters.get('location')
        radius_km = filters.get('radius_km')

        def build_query():
            text_filter = build_text_filter(EVENT_SEARCH_FIELDS, self.context.terms)
            if text_filter is None:
                return None

            query = self.db.table('events') \
                .select(EVENT_COLUMNS) \
                .eq('status', 'published') \
                .eq('visibility', 'public')

            if not filters.get('include_past_events'):
                query = query.gte('start_at', utc_now().isoformat())
            if filters.get('category'):
                query = query.eq('category', filters['category'])
            if filters.get('date_from'):
                query = query.gte('start_at', filters['date_from'])
            if filters.get('date_to'):
                query = query.lte('start_at', filters['date_to'])
            if filters.get('tags'):
                query = query.contains('tags', filters['tags'])
            if filters.get('organizer_id'):
                query = query.eq('org_id', filters['organizer_id'])
            if location:
                min_lat, max_lat, min_lng, max_lng = bounding_box(location[0], location[1], radius_km)
                query = query \
                    .gte('latitude', min_lat) \
                    .lte('latitude', max_lat) \
                    .gte('longitude', min_lng) \
                    .lte('longitude', max_lng)

            return query \
                .or_(text_filter) \
                .order('start_at', desc=False) \
                .range(offset, offset + fetch_count - 1)

        rows = await self._fetch('events', build_query)
        if not rows:
            return []

        price_range = filters.get('price_range')
        candidates = []
        for event in rows:
            tickets = summarize_ticket_tiers(event.get('ticket_tiers'))
            organizer = event.get('orgs') or {}

            if price_range and not price_range['min'] <= tickets['price'] <= price_range['max']:
                continue
            if filters.get('verified_only') and not organizer.get('is_verified'):
                continue

            distance = None
            if location:
                if event.get('latitude') is None or event.get('longitude') is None:
                    continue
                distance = haversine_km(
                    location[0], location[1], float(event['latitude']), float(event['longitude'])
                )
                if distance > radius_km:
                    continue

            candidates.append((event, tickets, organizer, distance))

        scored = score_rows('events', [c[0] for c in candidates], self.context)
        extras = {id(c[0]): c for c in candidates}

        results = []
        for event, score in scored:
            _, tickets, organizer, distance = extras[id(event)]
            results.append(self._event_result(event, score, tickets, organizer, distance))
        return results

    def _event_result(self, event, score, tickets, organizer, distance) -> Dict[str, Any]:
        subtitle_parts = [event.get('venue'), event.get('city')]
        return {
            'id': str(event['id']),
            'entity_type': 'events',
            'title': event.get('title') or '',
            'subtitle': ', '.join(p for p in subtitle_parts if p) or None,
            'image_url': event.get('cover_image_url'),
            'relevance_score': score,
            'distance_km': round(distance, 2) if distance is not None else None,
            'created_at': to_iso(event.get('created_at') or event.get('start_at')),
            'metadata': {
                'slug': event.get('slug'),
                'description': _snippet(event.get('description')),
                'start_at': to_iso(event.get('start_at')),
                'end_at': to_iso(event.get('end_at')),
                'category': category_name(event.get('category')),
                'city': event.get('city'),
                'venue': event.get('venue'),
                'tags': event.get('tags') or [],
                'likes_count': _as_int(event.get('likes_count')),
                'ticket_availability': tickets,
                'organizer_info': {
                    'id': organizer.get('id'),
                    'name': organizer.get('name'),
                    'slug': organizer.get('slug'),
                    'logo_url': organizer.get('logo_url'),
                    'is_verified': bool(organizer.get('is_verified')),
                } if organizer else None,
            },
        }

    # ------------------------------------------------------------------- users

    async def search_users(self, filters: Dict[str, Any], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Search profiles by username, display name and bio"""
        fetch_count = limit * OVERFETCH_FACTOR

        def build_query():
            text_filter = build_text_filter(USER_SEARCH_FIELDS, self.context.terms)
            if text_filter is None:
                return None
            query = self.db.table('profiles').select(USER_COLUMNS)
            if filters.get('verified_only'):
                query = query.eq('verified', True)
            return query \
                .or_(text_filter) \
                .range(offset, offset + fetch_count - 1)

        rows = await self._fetch('users', build_query)
        if not rows:
            return []

        results = []
        for user, score in score_rows('users', rows, self.context):
            username = user.get('username')
            results.append({
                'id': str(user.get('user_id') or user['id']),
                'entity_type': 'users',
                'title': user.get('display_name') or username or '',
                'subtitle': f"@{username}" if username else None,
                'image_url': user.get('avatar_url'),
                'relevance_score': score,
                'distance_km': None,
                'created_at': to_iso(user.get('created_at')),
                'metadata': {
                    'username': username,
                    'bio': _snippet(user.get('bio')),
                    'verified': bool(user.get('verified')),
                    'followers_count': _as_int(user.get('followers_count')),
                    'following_count': _as_int(user.get('following_count')),
                },
            })
        return results

    # ----------------------------------------------------------- organizations

    async def search_organizations(self, filters: Dict[str, Any], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Search organizations by name, slug and description"""
        fetch_count = limit * OVERFETCH_FACTOR

        def build_query():
            text_filter = build_text_filter(ORGANIZATION_SEARCH_FIELDS, self.context.terms)
            if text_filter is None:
                return None
            query = self.db.table('orgs').select(ORGANIZATION_COLUMNS)
            if filters.get('verified_only'):
                query = query.eq('is_verified', True)
            return query \
                .or_(text_filter) \
                .range(offset, offset + fetch_count - 1)

        rows = await self._fetch('organizations', build_query)
        if not rows:
            return []

        results = []
        for org, score in score_rows('organizations', rows, self.context):
            results.append({
                'id': str(org['id']),
                'entity_type': 'organizations',
                'title': org.get('name') or '',
                'subtitle': _snippet(org.get('description')) or None,
                'image_url': org.get('logo_url'),
                'relevance_score': score,
                'distance_km': None,
                'created_at': to_iso(org.get('created_at')),
                'metadata': {
                    'slug': org.get('slug'),
                    'website_url': org.get('website_url'),
                    'is_verified': bool(org.get('is_verified')),
                    'followers_count': _as_int(org.get('followers_count')),
                },
            })
        return results

    # ------------------------------------------------------------------- posts

    async def search_posts(self, filters: Dict[str, Any], limit: int, offset: int = 0) -> List[Dict[str, Any]]:
        """Search public posts by title and body"""
        fetch_count = limit * OVERFETCH_FACTOR

        def build_query():
            text_filter = build_text_filter(POST_SEARCH_FIELDS, self.context.terms)
            if text_filter is None:
                return None
            query = self.db.table('posts') \
                .select(POST_COLUMNS) \
                .eq('visibility', 'public')
            if filters.get('date_from'):
                query = query.gte('created_at', filters['date_from'])
            if filters.get('date_to'):
                query = query.lte('created_at', filters['date_to'])
            return query \
                .or_(text_filter) \
                .order('created_at', desc=True) \
                .range(offset, offset + fetch_count - 1)

        rows = await self._fetch('posts', build_query)
        if not rows:
            return []

        category = (filters.get('category') or '').lower()
        candidates = []
        for post in rows:
            event = post.get('events') or {}
            author = post.get('profiles') or {}
            if category and field_text(event.get('category')) != category:
                continue
            if filters.get('verified_only') and not author.get('verified'):
                continue
            candidates.append(post)

        results = []
        for post, score in score_rows('posts', candidates, self.context):
            event = post.get('events') or {}
            author = post.get('profiles') or {}
            results.append({
                'id': str(post['id']),
                'entity_type': 'posts',
                'title': post.get('title') or _snippet(post.get('body'))[:80],
                'subtitle': author.get('display_name') or author.get('username'),
                'image_url': post.get('media_url'),
                'relevance_score': score,
                'distance_km': None,
                'created_at': to_iso(post.get('created_at')),
                'metadata': {
                    'body': _snippet(post.get('body')),
                    'event_id': post.get('event_id'),
                    'event_title': event.get('title'),
                    'event_category': category_name(event.get('category')),
                    'author': {
                        'id': author.get('user_id') or post.get('author_id'),
                        'username': author.get('username'),
                        'display_name': author.get('display_name'),
                        'avatar_url': author.get('avatar_url'),
                    },
                    'likes_count': _as_int(post.get('reactions_count')),
                    'comments_count': _as_int(post.get('comments_count')),
                },
            })
        return results
