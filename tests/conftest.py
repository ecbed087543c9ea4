import copy
import os
from datetime import timedelta

# Rate limits are exercised by slowapi itself, not by these tests
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest

from datetime_utils import utc_now

BUILDER_METHODS = {
    'select', 'insert', 'update', 'upsert', 'delete',
    'eq', 'neq', 'gt', 'gte', 'lt', 'lte', 'like', 'ilike', 'is_', 'in_',
    'contains', 'or_', 'not_', 'order', 'range', 'limit', 'single',
}


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Chainable stand-in for a PostgREST builder that records every call"""

    def __init__(self, db, name, kind='table', params=None):
        self.db = db
        self.name = name
        self.kind = kind
        self.params = params
        self.calls = []

    def __getattr__(self, method):
        if method not in BUILDER_METHODS:
            raise AttributeError(method)

        def record(*args, **kwargs):
            self.calls.append((method, args, kwargs))
            return self

        return record

    def called(self, method):
        return [args for name, args, _ in self.calls if name == method]

    def execute(self):
        self.db.executed.append(self)
        if self.kind == 'rpc':
            result = self.db.rpc_results.get(self.name)
            if result is None:
                raise Exception(f"function {self.name} does not exist")
            if isinstance(result, Exception):
                raise result
            return FakeResponse(copy.deepcopy(result))

        error = self.db.errors.get(self.name)
        if error is not None:
            raise error
        if self.called('insert') or self.called('update'):
            return FakeResponse([])
        return FakeResponse(copy.deepcopy(self.db.tables.get(self.name, [])))


class FakeSupabase:
    """
    In-process Supabase client

    Table reads return the configured rows unfiltered; tests configure rows
    consistent with the filters they expect. RPCs without a configured result
    fail like a missing database function.
    """

    def __init__(self, tables=None, rpc_results=None, errors=None):
        self.tables = tables or {}
        self.rpc_results = rpc_results or {}
        self.errors = errors or {}
        self.queries = []
        self.executed = []

    def table(self, name):
        query = FakeQuery(self, name)
        self.queries.append(query)
        return query

    def rpc(self, name, params=None):
        query = FakeQuery(self, name, kind='rpc', params=params)
        self.queries.append(query)
        return query

    def queries_for(self, name):
        return [q for q in self.queries if q.name == name]


class FakeSupabaseClient:
    """Stand-in for supabase_client.SupabaseClient"""

    def __init__(self, db):
        self.db = db
        self.tokens = []
        self.is_configured = True

    def get_search_client(self, access_token=None):
        self.tokens.append(access_token)
        return self.db

    def get_admin_client(self):
        return self.db


def iso_in(days=0, hours=0):
    return (utc_now() + timedelta(days=days, hours=hours)).isoformat()


def make_event(event_id, title, description='', category='music', city='Berlin', venue='Hall',
               start_in_days=14, created_days_ago=1, latitude=None, longitude=None,
               price=None, verified=False, likes=0):
    tiers = []
    if price is not None:
        tiers.append({
            'id': f"tier-{event_id}",
            'name': 'General',
            'price': price,
            'currency': 'USD',
            'quantity_available': 100,
            'quantity_sold': 10,
            'status': 'active',
        })
    return {
        'id': event_id,
        'title': title,
        'description': description,
        'slug': f"event-{event_id}",
        'venue': venue,
        'city': city,
        'category': category,
        'category_id': None,
        'tags': [],
        'start_at': iso_in(days=start_in_days),
        'end_at': iso_in(days=start_in_days, hours=3),
        'created_at': iso_in(days=-created_days_ago),
        'cover_image_url': None,
        'latitude': latitude,
        'longitude': longitude,
        'likes_count': likes,
        'org_id': 'org-1',
        'status': 'published',
        'visibility': 'public',
        'ticket_tiers': tiers,
        'orgs': {'id': 'org-1', 'name': 'Org', 'slug': 'org', 'logo_url': None, 'is_verified': verified},
    }


def make_user(user_id, username, display_name='', bio='', verified=False, followers=0):
    return {
        'id': f"profile-{user_id}",
        'user_id': user_id,
        'username': username,
        'display_name': display_name,
        'bio': bio,
        'avatar_url': None,
        'verified': verified,
        'followers_count': followers,
        'following_count': 0,
        'created_at': iso_in(days=-30),
    }


def make_org(org_id, name, slug='', description='', verified=False, followers=0):
    return {
        'id': org_id,
        'name': name,
        'slug': slug or name.lower().replace(' ', '-'),
        'description': description,
        'logo_url': None,
        'website_url': None,
        'is_verified': verified,
        'followers_count': followers,
        'created_at': iso_in(days=-60),
    }


def make_post(post_id, title='', body='', reactions=0, comments=0, event_category=None, created_days_ago=2):
    return {
        'id': post_id,
        'title': title,
        'body': body,
        'author_id': 'author-1',
        'event_id': 'evt-x' if event_category else None,
        'media_url': None,
        'visibility': 'public',
        'reactions_count': reactions,
        'comments_count': comments,
        'created_at': iso_in(days=-created_days_ago),
        'events': {'id': 'evt-x', 'title': 'Linked', 'category': event_category} if event_category else None,
        'profiles': {'user_id': 'author-1', 'username': 'author', 'display_name': 'Author',
                     'avatar_url': None, 'verified': False},
    }


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def music_db():
    """Store with at least one match for "music" in every entity type"""
    return FakeSupabase(tables={
        'events': [
            make_event('e1', 'Music Night', description='Live bands', start_in_days=3, created_days_ago=5, likes=10),
            make_event('e2', 'Jazz Evening', description='Smooth music all night', category='jazz',
                       start_in_days=20, created_days_ago=1, likes=50),
            make_event('e3', 'Book Club', description='Reading', category='literature', created_days_ago=2),
        ],
        'profiles': [
            make_user('u1', 'musiclover', display_name='Music Lover', followers=5),
            make_user('u2', 'reader', bio='I read a lot'),
        ],
        'orgs': [
            make_org('o1', 'Music Society', description='Concerts and music events', verified=True, followers=100),
        ],
        'posts': [
            make_post('p1', title='Best music of the year', reactions=4, comments=2, event_category='music'),
            make_post('p2', body='Unrelated cooking tips'),
        ],
    })
