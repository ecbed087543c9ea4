"""
User Preferences Service
Derives the category preferences used to personalize search ranking from a
user's past check-ins and post reactions
"""
import asyncio
import logging
import os
from typing import Any, Dict, List, Set

from search_scoring import category_keys
from supabase_client import execute_query

logger = logging.getLogger(__name__)

# How much history is considered
PREFERENCE_HISTORY_LIMIT = int(os.getenv("SEARCH_PREFERENCE_HISTORY_LIMIT", "100"))


class UserPreferences:
    """Category sets derived from a user's history (lowercased names/ids)"""

    def __init__(self, checkin_categories: Set[str] = None, reaction_categories: Set[str] = None):
        self.checkin_categories = set(checkin_categories or set())
        self.reaction_categories = set(reaction_categories or set())

    @property
    def preferred_categories(self) -> Set[str]:
        return self.checkin_categories | self.reaction_categories

    @property
    def is_empty(self) -> bool:
        return not self.preferred_categories


class UserPreferencesService:
    def __init__(self, db):
        self.db = db

    async def get_preferences(self, user_id: str) -> UserPreferences:
        """
        Load preferences for a user

        Both lookups run concurrently; a failing lookup only removes its own
        contribution. Personalization never fails a search.
        """
        if not user_id:
            return UserPreferences()

        checkins, reactions = await asyncio.gather(
            self._get_checkin_categories(user_id),
            self._get_reaction_categories(user_id),
        )
        preferences = UserPreferences(checkins, reactions)
        logger.debug(
            f"Loaded {len(preferences.preferred_categories)} preferred categories for user {user_id}"
        )
        return preferences

    async def _get_checkin_categories(self, user_id: str) -> Set[str]:
        try:
            result = await execute_query(
                self.db.table('checkins')
                .select('event_id, events(category, category_id)')
                .eq('user_id', user_id)
                .order('created_at', desc=True)
                .limit(PREFERENCE_HISTORY_LIMIT)
            )
            return self._collect_categories(result.data or [], lambda row: row.get('events'))
        except Exception as e:
            logger.warning(f"Failed to load check-in history for user {user_id}: {e}")
            return set()

    async def _get_reaction_categories(self, user_id: str) -> Set[str]:
        try:
            result = await execute_query(
                self.db.table('post_reactions')
                .select('post_id, posts(events(category, category_id))')
                .eq('user_id', user_id)
                .order('created_at', desc=True)
                .limit(PREFERENCE_HISTORY_LIMIT)
            )
            return self._collect_categories(
                result.data or [], lambda row: (row.get('posts') or {}).get('events')
            )
        except Exception as e:
            logger.warning(f"Failed to load reaction history for user {user_id}: {e}")
            return set()

    @staticmethod
    def _collect_categories(rows: List[Dict[str, Any]], get_event) -> Set[str]:
        categories: Set[str] = set()
        for row in rows:
            event = get_event(row) or {}
            categories |= category_keys(event.get('category'))
            categories |= category_keys(event.get('category_id'))
        return categories
