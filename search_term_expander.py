"""
Search term expansion
Broadens a query with related terms from a static synonym table so the
per-entity matchers can recall rows that use different wording
"""
import re
from typing import Dict, List

from security_utils import sanitize_filter_term

# Whole-word keys, lowercase
SEARCH_SYNONYMS: Dict[str, List[str]] = {
    'concert': ['music', 'live', 'show', 'performance'],
    'festival': ['event', 'celebration', 'gathering'],
    'conference': ['meeting', 'summit', 'workshop'],
    'workshop': ['class', 'training', 'session'],
    'party': ['celebration', 'gathering', 'social'],
}


def normalize_term(query: str) -> str:
    """Lowercase a query and drop the characters the store filter cannot carry"""
    return sanitize_filter_term(query.lower())


def expand_search_terms(query: str) -> List[str]:
    """
    Expand a query into an ordered, de-duplicated list of lowercase terms

    The normalized query comes first, followed by the synonyms of every
    table key that appears in the query as a whole word. The same list feeds
    the store filter and the scorer, so both see identical terms.

    Args:
        query: Trimmed search query (length already validated by the caller)

    Returns:
        List of terms, e.g. "Jazz concert" -> ["jazz concert", "music", "live", "show", "performance"]
    """
    query_term = normalize_term(query)
    terms = [query_term] if query_term else []
    words = set(re.findall(r'\w+', query_term))

    for key, synonyms in SEARCH_SYNONYMS.items():
        if key in words:
            terms.extend(synonyms)

    # dict.fromkeys keeps first-seen order
    return list(dict.fromkeys(terms))


def related_terms(query: str) -> List[str]:
    """Synonym expansions of a query, without the query itself"""
    query_term = normalize_term(query)
    return [term for term in expand_search_terms(query) if term != query_term]
