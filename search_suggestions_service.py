"""
Search suggestions and trending queries
"""
import asyncio
import logging
import os
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional

from datetime_utils import hours_ago
from search_term_expander import related_terms
from security_utils import sanitize_filter_term
from supabase_client import execute_query

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = int(os.getenv("SEARCH_SUGGESTION_LIMIT", "8"))
TRENDING_HOURS = int(os.getenv("SEARCH_TRENDING_HOURS", "24"))
TRENDING_LIMIT = int(os.getenv("SEARCH_TRENDING_LIMIT", "6"))
MIN_TRENDING_LIMIT = 3
MAX_TRENDING_LIMIT = 10
RELATED_SEARCHES_LIMIT = 5

# search_analytics rows scanned when the trending procedure is unavailable
TRENDING_FALLBACK_SCAN_LIMIT = 1000


def clamp_trending_limit(limit: Optional[int]) -> int:
    if limit is None:
        limit = TRENDING_LIMIT
    return max(MIN_TRENDING_LIMIT, min(MAX_TRENDING_LIMIT, int(limit)))


def collect_suggestions(query: str, candidates: Iterable[Optional[str]], limit: int = SUGGESTION_LIMIT) -> List[str]:
    """
    Candidates containing the query and strictly longer than it

    Case-insensitive de-duplication, first occurrence wins.
    """
    needle = query.strip().lower()
    seen = set()
    suggestions = []
    for candidate in candidates:
        if not candidate or not isinstance(candidate, str):
            continue
        text = candidate.strip()
        key = text.lower()
        if needle not in key or len(key) <= len(needle) or key in seen:
            continue
        seen.add(key)
        suggestions.append(text)
        if len(suggestions) >= limit:
            break
    return suggestions


def _result_strings(results: Dict[str, List[Dict[str, Any]]]):
    for event in results.get('events', []):
        metadata = event.get('metadata') or {}
        yield event.get('title')
        yield metadata.get('category')
        yield metadata.get('city')
    for user in results.get('users', []):
        yield (user.get('metadata') or {}).get('username')
        yield user.get('title')
    for org in results.get('organizations', []):
        yield org.get('title')


def suggestions_from_results(query: str, results: Dict[str, List[Dict[str, Any]]], limit: int = SUGGESTION_LIMIT) -> List[str]:
    """Suggestions drawn from already fetched search results"""
    return collect_suggestions(query, _result_strings(results), limit)


def build_related_searches(query: str, facets: Dict[str, List[Dict[str, Any]]], limit: int = RELATED_SEARCHES_LIMIT) -> List[str]:
    """Synonym expansions followed by the top category facets, excluding the query itself"""
    excluded = {query.strip().lower()}
    related = []
    candidates = list(related_terms(query)) + [f['name'] for f in facets.get('category', [])]
    for candidate in candidates:
        key = str(candidate).strip().lower()
        if not key or key in excluded:
            continue
        excluded.add(key)
        related.append(str(candidate).strip())
        if len(related) >= limit:
            break
    return related


class SearchSuggestionsService:
    def __init__(self, db):
        self.db = db

    async def get_trending(self, hours: int = TRENDING_HOURS, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        Most frequent queries in the last `hours`

        Uses the get_trending_searches procedure, falling back to counting
        search_analytics rows. Returns [] if both fail.
        """
        limit = clamp_trending_limit(limit)
        try:
            result = await execute_query(
                self.db.rpc('get_trending_searches', {'hours_back': hours, 'limit_count': limit})
            )
            trending = self._normalize_trending(result.data or [])
            if trending:
                return trending[:limit]
        except Exception as e:
            logger.warning(f"get_trending_searches unavailable, counting analytics rows: {e}")

        try:
            result = await execute_query(
                self.db.table('search_analytics')
                .select('query')
                .gte('timestamp', hours_ago(hours).isoformat())
                .limit(TRENDING_FALLBACK_SCAN_LIMIT)
            )
            counts: Counter = Counter()
            for row in result.data or []:
                text = (row.get('query') or '').strip().lower()
                if text:
                    counts[text] += 1
            return [{'query': q, 'count': c} for q, c in counts.most_common(limit)]
        except Exception as e:
            logger.error(f"Error loading trending searches: {e}")
            return []

    @staticmethod
    def _normalize_trending(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        trending = []
        for row in rows:
            text = row.get('query') or row.get('search_query')
            if not text:
                continue
            count = row.get('count', row.get('search_count')) or 0
            trending.append({'query': str(text), 'count': int(count)})
        return trending

    async def get_autocomplete(self, partial_query: str, limit: int = SUGGESTION_LIMIT) -> List[str]:
        """
        Standalone autocomplete for a partial query

        Uses the get_search_suggestions procedure, falling back to scanning
        event titles, usernames and organization names.
        """
        query = (partial_query or '').strip().lower()
        if not query:
            return []

        try:
            result = await execute_query(
                self.db.rpc('get_search_suggestions', {'partial_query': query, 'suggestion_limit': limit})
            )
            suggestions = collect_suggestions(
                query,
                [row.get('suggestion') if isinstance(row, dict) else row for row in result.data or []],
                limit,
            )
            if suggestions:
                return suggestions
        except Exception as e:
            logger.warning(f"get_search_suggestions unavailable, scanning names: {e}")

        safe = sanitize_filter_term(query)
        if not safe:
            return []

        lookups = [
            ('events', 'title'),
            ('profiles', 'username'),
            ('orgs', 'name'),
        ]
        try:
            results = await asyncio.gather(*[
                execute_query(
                    self.db.table(table).select(column).ilike(column, f"%{safe}%").limit(limit)
                )
                for table, column in lookups
            ], return_exceptions=True)
        except Exception as e:
            logger.error(f"Error loading search suggestions: {e}")
            return []

        candidates = []
        for (table, column), result in zip(lookups, results):
            if isinstance(result, Exception):
                logger.warning(f"Suggestion lookup on {table} failed: {result}")
                continue
            candidates.extend(row.get(column) for row in result.data or [])
        return collect_suggestions(query, candidates, limit)
