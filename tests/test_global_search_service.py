import json

import pytest

from auth_dependencies import SearchAuthContext
from conftest import FakeSupabase, FakeSupabaseClient, make_event, make_user
from datetime_utils import parse_datetime
from global_search_service import GlobalSearchService, describe_filters, sort_results
from models import SearchRequest
from search_analytics_service import SearchAnalyticsService
from search_cache_service import InMemorySearchCache

MATCHER_TABLES = ('events', 'profiles', 'orgs', 'posts')


def make_service(db):
    return GlobalSearchService(
        supabase_client=FakeSupabaseClient(db),
        cache=InMemorySearchCache(),
        analytics=SearchAnalyticsService(db),
    )


def matcher_queries(db):
    return [q for q in db.queries if q.name in MATCHER_TABLES]


def all_results(response):
    return [r for bucket in response['results'].values() for r in bucket]


@pytest.mark.asyncio
async def test_short_query_is_rejected_without_remote_calls(fake_db):
    service = make_service(fake_db)

    with pytest.raises(ValueError):
        await service.search_all(SearchRequest(q=' a '))

    assert fake_db.queries == []


@pytest.mark.asyncio
async def test_malformed_filters_are_rejected(fake_db):
    service = make_service(fake_db)

    with pytest.raises(ValueError):
        await service.search_all(SearchRequest(q='music', location='north'))
    with pytest.raises(ValueError):
        await service.search_all(SearchRequest(
            q='music', date_from='2030-02-01T00:00:00Z', date_to='2030-01-01T00:00:00Z'
        ))

    assert fake_db.queries == []


@pytest.mark.asyncio
async def test_envelope_shape(music_db):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music'))

    assert response['query'] == 'music'
    assert set(response['results']) == {'events', 'organizations', 'users', 'posts'}
    assert [r['id'] for r in response['results']['events']] == ['e1', 'e2']
    assert [r['id'] for r in response['results']['users']] == ['u1']
    assert [r['id'] for r in response['results']['organizations']] == ['o1']
    assert [r['id'] for r in response['results']['posts']] == ['p1']
    assert response['meta']['total'] == 5
    assert response['meta']['has_more'] is False
    assert response['meta']['session_id'].startswith('search_')
    assert response['meta']['facets']['category'][0] == {'name': 'music', 'count': 1}
    assert 'Music Night' in response['suggestions']
    assert response['filters_applied'] == {}

    await service.analytics.drain()
    assert music_db.queries_for('search_analytics')


@pytest.mark.asyncio
@pytest.mark.parametrize("sort_by", ['relevance', 'date', 'popularity', 'distance'])
async def test_every_result_has_positive_score(music_db, sort_by):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music', sort_by=sort_by))

    assert all_results(response)
    assert all(r['relevance_score'] > 0 for r in all_results(response))


@pytest.mark.asyncio
async def test_relevance_sort_orders_each_bucket_by_score(music_db):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music'))

    events = response['results']['events']
    assert events[0]['relevance_score'] >= events[1]['relevance_score']
    # "Music Night" matches title, description-free, starts within a week
    assert events[0]['id'] == 'e1'


@pytest.mark.asyncio
async def test_identical_requests_hit_the_cache(music_db):
    service = make_service(music_db)
    request = SearchRequest(q='music', session_id='s1')

    first = await service.search_all(request)
    calls = len(matcher_queries(music_db))
    second = await service.search_all(SearchRequest(q='music', session_id='s1'))

    assert json.dumps(first, sort_keys=True) == json.dumps(second, sort_keys=True)
    assert len(matcher_queries(music_db)) == calls


@pytest.mark.asyncio
async def test_anonymous_cache_hits_get_their_own_session(music_db):
    service = make_service(music_db)

    first = await service.search_all(SearchRequest(q='music'))
    calls = len(matcher_queries(music_db))
    second = await service.search_all(SearchRequest(q='music'))
    await service.analytics.drain()

    assert len(matcher_queries(music_db)) == calls
    assert second['meta']['session_id'].startswith('search_')
    assert first['meta']['session_id'] != second['meta']['session_id']
    assert second['results'] == first['results']

    inserts = [q.called('insert')[0][0] for q in music_db.queries_for('search_analytics') if q.called('insert')]
    assert [r['session_id'] for r in inserts] == [first['meta']['session_id'], second['meta']['session_id']]


@pytest.mark.asyncio
async def test_cached_response_carries_the_callers_session(music_db):
    service = make_service(music_db)

    await service.search_all(SearchRequest(q='music', session_id='s1'))
    second = await service.search_all(SearchRequest(q='music', session_id='s2'))

    assert second['meta']['session_id'] == 's2'


@pytest.mark.asyncio
async def test_offset_changes_the_cache_key(music_db):
    service = make_service(music_db)

    await service.search_all(SearchRequest(q='music', session_id='s1'))
    calls = len(matcher_queries(music_db))
    await service.search_all(SearchRequest(q='music', session_id='s1', offset=20))

    assert len(matcher_queries(music_db)) == calls + 4


@pytest.mark.asyncio
async def test_date_sort_is_newest_first(music_db):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music', sort_by='date'))

    for bucket in response['results'].values():
        times = [parse_datetime(r['created_at']) for r in bucket]
        assert times == sorted(times, reverse=True)


def test_distance_sort_puts_missing_distances_last():
    results = [
        {'id': 'none', 'distance_km': None, 'relevance_score': 5},
        {'id': 'far', 'distance_km': 12.0, 'relevance_score': 5},
        {'id': 'near', 'distance_km': 1.5, 'relevance_score': 5},
    ]
    assert [r['id'] for r in sort_results('events', results, 'distance')] == ['near', 'far', 'none']


def test_popularity_sort_uses_follower_counts_for_users():
    results = [
        {'id': 'a', 'metadata': {'followers_count': 1}},
        {'id': 'b', 'metadata': {'followers_count': 9}},
        {'id': 'c', 'metadata': {}},
    ]
    assert [r['id'] for r in sort_results('users', results, 'popularity')] == ['b', 'a', 'c']


def test_relevance_sort_is_stable_on_ties():
    results = [{'id': str(i), 'relevance_score': 10} for i in range(5)]
    assert [r['id'] for r in sort_results('posts', results, 'relevance')] == ['0', '1', '2', '3', '4']


@pytest.mark.asyncio
async def test_total_and_limit_with_many_matches():
    db = FakeSupabase(tables={
        'events': [make_event(f"e{i}", f"Music Event {i}", start_in_days=i + 1) for i in range(50)],
        'profiles': [make_user(f"u{i}", f"music{i}") for i in range(50)],
    })
    service = make_service(db)

    response = await service.search_all(SearchRequest(q='music', limit=20))

    assert response['meta']['total'] == sum(len(b) for b in response['results'].values())
    assert response['meta']['total'] <= 80
    assert len(response['results']['events']) == 20
    assert response['meta']['has_more'] is True
    assert all(r['relevance_score'] >= 5 for r in response['results']['events'])


@pytest.mark.asyncio
async def test_nonsense_query_returns_empty_buckets(music_db):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='xqzvwk'))

    assert response['results'] == {'events': [], 'organizations': [], 'users': [], 'posts': []}
    assert response['meta']['total'] == 0
    assert response['suggestions'] == []


@pytest.mark.asyncio
async def test_failing_matcher_leaves_other_buckets(music_db):
    music_db.errors['profiles'] = Exception("profiles unavailable")
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music'))

    assert response['results']['users'] == []
    assert response['results']['events']
    assert response['results']['organizations']
    assert response['results']['posts']


@pytest.mark.asyncio
async def test_only_requested_types_are_searched(music_db):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music', types=['users']))

    assert response['results']['events'] == []
    assert response['results']['users']
    assert [q.name for q in matcher_queries(music_db)] == ['profiles']


@pytest.mark.asyncio
async def test_personalization_boosts_preferred_categories(music_db):
    music_db.tables['checkins'] = [{'event_id': 'old', 'events': {'category': 'jazz', 'category_id': None}}]
    client = FakeSupabaseClient(music_db)
    service = GlobalSearchService(
        supabase_client=client,
        cache=InMemorySearchCache(),
        analytics=SearchAnalyticsService(music_db),
    )

    anonymous = await service.search_all(SearchRequest(q='music'))
    personal = await service.search_all(
        SearchRequest(q='music'), SearchAuthContext(user_id='u9', access_token='token')
    )

    def score_of(response, event_id):
        return next(r['relevance_score'] for r in response['results']['events'] if r['id'] == event_id)

    assert score_of(personal, 'e2') == score_of(anonymous, 'e2') + 3
    assert client.tokens == [None, 'token']
    assert music_db.queries_for('checkins')


@pytest.mark.asyncio
async def test_store_not_configured_propagates(fake_db):
    class Unconfigured(FakeSupabaseClient):
        def get_search_client(self, access_token=None):
            raise RuntimeError("Supabase client not initialized")

    service = GlobalSearchService(
        supabase_client=Unconfigured(fake_db),
        cache=InMemorySearchCache(),
        analytics=SearchAnalyticsService(fake_db),
    )
    with pytest.raises(RuntimeError):
        await service.search_all(SearchRequest(q='music'))


def test_describe_filters_only_reports_narrowing_filters():
    filters = {
        'category': 'music',
        'location': (52.5, 13.4),
        'radius_km': 10,
        'tags': [],
        'verified_only': False,
        'price_range': None,
    }
    assert describe_filters(filters, 'date') == {
        'category': 'music',
        'location': '52.5,13.4',
        'radius_km': 10,
        'sort_by': 'date',
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("q", ['(jazz)', 'jazz:', 'jazz,'])
async def test_punctuated_query_keeps_matching_rows(music_db, q):
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q=q, types=['events']))

    assert [r['id'] for r in response['results']['events']] == ['e2']
    text_filter = music_db.queries_for('events')[0].called('or_')[0][0]
    assert 'title.ilike.%jazz%' in text_filter


@pytest.mark.asyncio
async def test_omitted_limit_uses_configured_default(monkeypatch):
    monkeypatch.setattr('global_search_service.SEARCH_DEFAULT_LIMIT', 5)
    db = FakeSupabase(tables={
        'events': [make_event(f"e{i}", f"Music Event {i}", start_in_days=i + 1) for i in range(12)],
    })
    service = make_service(db)

    response = await service.search_all(SearchRequest(q='music', types=['events']))

    assert len(response['results']['events']) == 5
    assert db.queries_for('events')[0].called('range') == [(0, 9)]


@pytest.mark.asyncio
async def test_omitted_radius_uses_configured_default(music_db, monkeypatch):
    monkeypatch.setattr('global_search_service.SEARCH_DEFAULT_RADIUS_KM', 7.5)
    service = make_service(music_db)

    response = await service.search_all(SearchRequest(q='music', types=['users'], location='52.52,13.405'))

    assert response['filters_applied']['radius_km'] == 7.5
