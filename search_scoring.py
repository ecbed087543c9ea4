"""
Search relevance scoring
Heuristic point accumulation per entity type. Scores are only comparable
within one entity type: an event scoring 10 and a user scoring 10 say nothing
about each other.

Default weights:
- Event: title 10, description 5, category 8, city 6, venue 6,
  preferred category +3, starts within 7 days +2 / within 8-30 days +1
- User: username 10, display_name 8, bio 5, verified +2
- Organization: name 10, slug 8, description 5, verified +2
- Post: title 10, body 5, +1 per reaction, +1 per comment,
  event category in the user's check-in history +3

Every weight can be overridden with a SEARCH_WEIGHT_* environment variable.
"""
import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

from datetime_utils import days_until, utc_now

logger = logging.getLogger(__name__)


def _weight(env_name: str, default: float) -> float:
    return float(os.getenv(env_name, str(default)))


EVENT_FIELD_WEIGHTS = {
    'title': _weight("SEARCH_WEIGHT_EVENT_TITLE", 10),
    'description': _weight("SEARCH_WEIGHT_EVENT_DESCRIPTION", 5),
    'category': _weight("SEARCH_WEIGHT_EVENT_CATEGORY", 8),
    'city': _weight("SEARCH_WEIGHT_EVENT_CITY", 6),
    'venue': _weight("SEARCH_WEIGHT_EVENT_VENUE", 6),
}
USER_FIELD_WEIGHTS = {
    'username': _weight("SEARCH_WEIGHT_USER_USERNAME", 10),
    'display_name': _weight("SEARCH_WEIGHT_USER_DISPLAY_NAME", 8),
    'bio': _weight("SEARCH_WEIGHT_USER_BIO", 5),
}
ORGANIZATION_FIELD_WEIGHTS = {
    'name': _weight("SEARCH_WEIGHT_ORG_NAME", 10),
    'slug': _weight("SEARCH_WEIGHT_ORG_SLUG", 8),
    'description': _weight("SEARCH_WEIGHT_ORG_DESCRIPTION", 5),
}
POST_FIELD_WEIGHTS = {
    'title': _weight("SEARCH_WEIGHT_POST_TITLE", 10),
    'body': _weight("SEARCH_WEIGHT_POST_BODY", 5),
}

PREFERRED_CATEGORY_BONUS = _weight("SEARCH_WEIGHT_PREFERRED_CATEGORY", 3)
STARTS_THIS_WEEK_BONUS = _weight("SEARCH_WEIGHT_STARTS_WITHIN_7_DAYS", 2)
STARTS_THIS_MONTH_BONUS = _weight("SEARCH_WEIGHT_STARTS_WITHIN_30_DAYS", 1)
VERIFIED_BONUS = _weight("SEARCH_WEIGHT_VERIFIED", 2)
REACTION_WEIGHT = _weight("SEARCH_WEIGHT_POST_REACTION", 1)
COMMENT_WEIGHT = _weight("SEARCH_WEIGHT_POST_COMMENT", 1)
CATEGORY_AFFINITY_BONUS = _weight("SEARCH_WEIGHT_POST_CATEGORY_AFFINITY", 3)


class ScoringWeights:
    """Weight set handed to the scorers; defaults come from the module constants"""

    def __init__(
        self,
        event_fields: Optional[Dict[str, float]] = None,
        user_fields: Optional[Dict[str, float]] = None,
        organization_fields: Optional[Dict[str, float]] = None,
        post_fields: Optional[Dict[str, float]] = None,
        preferred_category_bonus: float = PREFERRED_CATEGORY_BONUS,
        starts_this_week_bonus: float = STARTS_THIS_WEEK_BONUS,
        starts_this_month_bonus: float = STARTS_THIS_MONTH_BONUS,
        verified_bonus: float = VERIFIED_BONUS,
        reaction_weight: float = REACTION_WEIGHT,
        comment_weight: float = COMMENT_WEIGHT,
        category_affinity_bonus: float = CATEGORY_AFFINITY_BONUS,
    ):
        self.event_fields = dict(event_fields or EVENT_FIELD_WEIGHTS)
        self.user_fields = dict(user_fields or USER_FIELD_WEIGHTS)
        self.organization_fields = dict(organization_fields or ORGANIZATION_FIELD_WEIGHTS)
        self.post_fields = dict(post_fields or POST_FIELD_WEIGHTS)
        self.preferred_category_bonus = preferred_category_bonus
        self.starts_this_week_bonus = starts_this_week_bonus
        self.starts_this_month_bonus = starts_this_month_bonus
        self.verified_bonus = verified_bonus
        self.reaction_weight = reaction_weight
        self.comment_weight = comment_weight
        self.category_affinity_bonus = category_affinity_bonus


DEFAULT_WEIGHTS = ScoringWeights()


class ScoringContext:
    """Per-request inputs to scoring: expanded terms, personalization and the clock"""

    def __init__(
        self,
        terms: Iterable[str],
        preferred_categories: Optional[Set[str]] = None,
        checkin_categories: Optional[Set[str]] = None,
        now: Optional[datetime] = None,
        weights: Optional[ScoringWeights] = None,
    ):
        self.terms = [t.lower() for t in terms if t]
        self.preferred_categories = {c.lower() for c in (preferred_categories or set())}
        self.checkin_categories = {c.lower() for c in (checkin_categories or set())}
        self.now = now or utc_now()
        self.weights = weights or DEFAULT_WEIGHTS


def field_text(value: Any) -> str:
    """
    Lowercased searchable text of a row field

    Embedded PostgREST rows ({"name": ...}) and arrays are flattened.
    """
    if value is None:
        return ""
    if isinstance(value, dict):
        return field_text(value.get('name') or value.get('title'))
    if isinstance(value, (list, tuple)):
        return " ".join(field_text(v) for v in value)
    return str(value).lower()


def field_matches(value: Any, terms: List[str]) -> bool:
    text = field_text(value)
    return bool(text) and any(term in text for term in terms)


def category_keys(value: Any) -> Set[str]:
    """Lowercased identifiers a category can be referred to by (name, slug, id)"""
    if value is None:
        return set()
    if isinstance(value, dict):
        return {str(v).lower() for k, v in value.items() if k in ('id', 'name', 'slug') and v}
    return {str(value).lower()}


def _field_score(row: Dict[str, Any], weights: Dict[str, float], terms: List[str]) -> float:
    return sum(weight for field, weight in weights.items() if field_matches(row.get(field), terms))


def _count(value: Any) -> int:
    if isinstance(value, list):
        # Embedded aggregate, e.g. post_reactions(count)
        if value and isinstance(value[0], dict) and 'count' in value[0]:
            return int(value[0]['count'] or 0)
        return len(value)
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


def score_event(event: Dict[str, Any], context: ScoringContext) -> Tuple[float, float]:
    """
    Score an event row

    Returns:
        (relevance_score, field_match_score)
    """
    weights = context.weights
    match_score = _field_score(event, weights.event_fields, context.terms)
    score = match_score

    event_categories = category_keys(event.get('category')) | category_keys(event.get('category_id'))
    if event_categories & context.preferred_categories:
        score += weights.preferred_category_bonus

    days = days_until(event.get('start_at'), context.now)
    if days is not None:
        if 0 <= days <= 7:
            score += weights.starts_this_week_bonus
        elif 8 <= days <= 30:
            score += weights.starts_this_month_bonus

    return score, match_score


def score_user(user: Dict[str, Any], context: ScoringContext) -> Tuple[float, float]:
    weights = context.weights
    match_score = _field_score(user, weights.user_fields, context.terms)
    score = match_score
    if user.get('verified') or user.get('is_verified'):
        score += weights.verified_bonus
    return score, match_score


def score_organization(org: Dict[str, Any], context: ScoringContext) -> Tuple[float, float]:
    weights = context.weights
    match_score = _field_score(org, weights.organization_fields, context.terms)
    score = match_score
    if org.get('is_verified') or org.get('verified'):
        score += weights.verified_bonus
    return score, match_score


def score_post(post: Dict[str, Any], context: ScoringContext) -> Tuple[float, float]:
    weights = context.weights
    match_score = _field_score(post, weights.post_fields, context.terms)
    score = match_score

    reactions = _count(post.get('reactions_count', post.get('post_reactions')))
    comments = _count(post.get('comments_count', post.get('post_comments')))
    score += reactions * weights.reaction_weight + comments * weights.comment_weight

    event = post.get('events') or post.get('event') or {}
    if category_keys(event.get('category')) & context.checkin_categories:
        score += weights.category_affinity_bonus

    return score, match_score


SCORERS: Dict[str, Callable[[Dict[str, Any], ScoringContext], Tuple[float, float]]] = {
    'events': score_event,
    'users': score_user,
    'organizations': score_organization,
    'posts': score_post,
}


def score_rows(entity_type: str, rows: List[Dict[str, Any]], context: ScoringContext) -> List[Tuple[Dict[str, Any], float]]:
    """
    Score rows of one entity type, dropping rows with no matched text field

    Input order is preserved so later stable sorts break ties by it.
    """
    scorer = SCORERS[entity_type]
    scored = []
    dropped = 0
    for row in rows:
        score, match_score = scorer(row, context)
        if match_score <= 0:
            dropped += 1
            continue
        scored.append((row, float(score)))

    if dropped:
        logger.debug(f"Dropped {dropped} {entity_type} rows with no matched field")
    return scored
