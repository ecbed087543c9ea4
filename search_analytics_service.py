"""
Search analytics
Records searches and result clicks in the search_analytics table and
summarizes them. Recording is fire-and-forget: it is scheduled as a background
task and never delays or fails a search.
"""
import asyncio
import logging
import uuid
from collections import Counter, defaultdict
from datetime import timedelta
from typing import Any, Dict, List, Optional, Set

from datetime_utils import parse_datetime, utc_now
from security_utils import sanitize_for_log
from supabase_client import execute_query, get_supabase_client

logger = logging.getLogger(__name__)

TIME_RANGE_DAYS = {
    'day': 1,
    'week': 7,
    'month': 30,
}

POPULAR_QUERIES_LIMIT = 10
TOP_RESULT_TYPES_LIMIT = 5


def generate_session_id() -> str:
    return f"search_{uuid.uuid4().hex}"


def summarize_analytics(rows: List[Dict[str, Any]], time_range: str) -> Dict[str, Any]:
    """
    Summary metrics over search_analytics rows

    Rates are percentages; averages are rounded to whole numbers.
    """
    summary = {
        'time_range': time_range,
        'total_searches': 0,
        'average_search_time': 0,
        'zero_result_rate': 0.0,
        'click_through_rate': 0.0,
        'average_position_clicked': 0,
        'popular_queries': [],
        'search_trends': [],
        'top_result_types': [],
    }
    if not rows:
        return summary

    total = len(rows)
    with_results = sum(1 for row in rows if row.get('has_results'))
    with_clicks = sum(1 for row in rows if row.get('clicked_result_id'))
    total_time = sum(row.get('search_time_ms') or 0 for row in rows)
    positions = [row['position_clicked'] for row in rows if row.get('position_clicked') is not None]

    summary.update({
        'total_searches': total,
        'average_search_time': round(total_time / total),
        'zero_result_rate': (total - with_results) / total * 100,
        'click_through_rate': with_clicks / total * 100,
        'average_position_clicked': round(sum(positions) / len(positions)) if positions else 0,
        'popular_queries': popular_queries(rows),
        'search_trends': daily_trends(rows),
        'top_result_types': [
            {'type': t, 'count': c}
            for t, c in Counter(
                row['clicked_result_type'] for row in rows if row.get('clicked_result_type')
            ).most_common(TOP_RESULT_TYPES_LIMIT)
        ],
    })
    return summary


def popular_queries(rows: List[Dict[str, Any]], limit: int = POPULAR_QUERIES_LIMIT) -> List[Dict[str, Any]]:
    stats: Dict[str, Dict[str, int]] = defaultdict(lambda: {'count': 0, 'total_results': 0})
    for row in rows:
        query = row.get('query')
        if not query:
            continue
        stats[query]['count'] += 1
        stats[query]['total_results'] += row.get('results_count') or 0

    ranked = sorted(stats.items(), key=lambda item: item[1]['count'], reverse=True)
    return [
        {
            'query': query,
            'count': s['count'],
            'avg_results': round(s['total_results'] / s['count']),
        }
        for query, s in ranked[:limit]
    ]


def daily_trends(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    counts: Counter = Counter()
    for row in rows:
        ts = parse_datetime(row.get('timestamp'))
        if ts:
            counts[ts.date().isoformat()] += 1
    return [{'date': date, 'searches': counts[date]} for date in sorted(counts)]


class SearchAnalyticsService:
    """
    Analytics sink for search

    Background tasks are referenced from `_pending` until they finish so they
    are not garbage collected mid-flight; `drain()` awaits them on shutdown.
    """

    def __init__(self, db):
        self.db = db
        self._pending: Set[asyncio.Task] = set()

    def _schedule(self, coro) -> Optional[asyncio.Task]:
        try:
            task = asyncio.create_task(coro)
        except RuntimeError as e:
            # No running loop
            coro.close()
            logger.warning(f"Could not schedule search analytics task: {e}")
            return None
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def track_search(
        self,
        session_id: str,
        query: str,
        entity_types: List[str],
        results_count: int,
        search_time_ms: int,
        filters_applied: Dict[str, Any],
        user_id: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule a search_analytics insert and return immediately"""
        record = {
            'session_id': session_id,
            'query': query.lower(),
            'query_length': len(query),
            'search_type': ','.join(entity_types),
            'results_count': results_count,
            'has_results': results_count > 0,
            'search_time_ms': search_time_ms,
            'filters_applied': filters_applied,
            'user_id': user_id,
            'timestamp': utc_now().isoformat(),
        }
        return self._schedule(self._insert_search(record))

    async def _insert_search(self, record: Dict[str, Any]):
        try:
            await execute_query(self.db.table('search_analytics').insert(record))
            logger.debug(f"Tracked search '{sanitize_for_log(record['query'])}' ({record['results_count']} results)")
        except Exception as e:
            logger.warning(f"Failed to track search analytics: {e}")

    def track_click(
        self,
        session_id: str,
        query: str,
        result_id: str,
        result_type: str,
        position: int,
        user_id: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """Schedule recording a click on the session's latest matching search that has no click yet"""
        update = {
            'clicked_result_id': result_id,
            'clicked_result_type': result_type,
            'position_clicked': position,
        }
        if user_id:
            update['user_id'] = user_id
        return self._schedule(self._record_click(session_id, query.lower(), update))

    async def _record_click(self, session_id: str, query: str, update: Dict[str, Any]):
        try:
            latest = await execute_query(
                self.db.table('search_analytics')
                .select('id')
                .eq('session_id', session_id)
                .eq('query', query)
                .is_('clicked_result_id', 'null')
                .order('timestamp', desc=True)
                .limit(1)
            )
            if not latest.data:
                logger.debug(f"No unclicked search for session {sanitize_for_log(session_id)} to record a click on")
                return
            await execute_query(
                self.db.table('search_analytics').update(update).eq('id', latest.data[0]['id'])
            )
            logger.debug(f"Tracked click on {update['clicked_result_type']} {update['clicked_result_id']}")
        except Exception as e:
            logger.warning(f"Failed to track result click: {e}")

    async def drain(self):
        """Wait for pending analytics writes"""
        if not self._pending:
            return
        logger.info(f"Waiting for {len(self._pending)} pending search analytics writes")
        await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def get_analytics_summary(self, time_range: str = 'week', user_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Summary of recorded searches over the last day, week or month

        Raises:
            ValueError: Unknown time range
        """
        if time_range not in TIME_RANGE_DAYS:
            raise ValueError(f"time_range must be one of {', '.join(TIME_RANGE_DAYS)}")

        start = utc_now() - timedelta(days=TIME_RANGE_DAYS[time_range])
        query = self.db.table('search_analytics').select('*').gte('timestamp', start.isoformat())
        if user_id:
            query = query.eq('user_id', user_id)

        result = await execute_query(query)
        return summarize_analytics(result.data or [], time_range)

    async def get_popular_queries(self, days: int = 7, limit: int = POPULAR_QUERIES_LIMIT) -> List[Dict[str, Any]]:
        try:
            result = await execute_query(
                self.db.table('search_analytics')
                .select('query, results_count')
                .gte('timestamp', (utc_now() - timedelta(days=days)).isoformat())
            )
            return popular_queries(result.data or [], limit)
        except Exception as e:
            logger.error(f"Failed to get popular queries: {e}")
            return []


_search_analytics_service: Optional[SearchAnalyticsService] = None


def get_search_analytics_service(supabase_client=None) -> SearchAnalyticsService:
    """Get or create the shared analytics sink"""
    global _search_analytics_service
    if _search_analytics_service is None:
        supabase_client = supabase_client or get_supabase_client()
        _search_analytics_service = SearchAnalyticsService(supabase_client.get_admin_client())
    return _search_analytics_service


async def drain_search_analytics():
    if _search_analytics_service is not None:
        await _search_analytics_service.drain()
