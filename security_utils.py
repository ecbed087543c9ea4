import re
import html
from typing import Any

MIN_QUERY_LENGTH = 2
MAX_QUERY_LENGTH = 200


def sanitize_for_log(value: Any) -> str:
    """
    Sanitize user input for safe logging to prevent log injection attacks.

    Args:
        value: Any value that might contain user input

    Returns:
        Sanitized string safe for logging
    """
    if value is None:
        return "None"

    text = str(value)

    # Remove CRLF injection attempts
    text = re.sub(r'[\r\n\t]', ' ', text)

    # Remove ANSI escape sequences that could manipulate log output
    text = re.sub(r'\x1b\[[0-9;]*m', '', text)

    # Remove null bytes and other control characters
    text = re.sub(r'[\x00-\x08\x0B\x0C\x0E-\x1F\x7F]', '', text)

    # Limit length to prevent log flooding
    if len(text) > 200:
        text = text[:197] + "..."

    return html.escape(text)


def validate_search_query(query: str) -> str:
    """
    Validate and sanitize search queries.

    Args:
        query: User search query

    Returns:
        Sanitized query

    Raises:
        ValueError: If query is invalid
    """
    if not query or not isinstance(query, str):
        raise ValueError("Search query must be a non-empty string")

    query = query.strip()

    if len(query) < MIN_QUERY_LENGTH:
        raise ValueError(f"Search query must be at least {MIN_QUERY_LENGTH} characters long")
    if len(query) > MAX_QUERY_LENGTH:
        raise ValueError(f"Search query cannot exceed {MAX_QUERY_LENGTH} characters")

    # Remove markup, quotes and control characters
    query = re.sub(r'[<>"\'\x00-\x1F\x7F]', '', query)

    # Clean up multiple spaces
    query = re.sub(r'\s+', ' ', query).strip()

    if len(query) < MIN_QUERY_LENGTH:
        raise ValueError(f"Search query must be at least {MIN_QUERY_LENGTH} characters long")

    return query


def sanitize_filter_term(term: str) -> str:
    """
    Make a search term safe to embed in a PostgREST ``or=(...)`` filter string.

    Commas, parentheses and the wildcard/escape characters have syntactic
    meaning inside the filter, so they are replaced by spaces.
    """
    if not term:
        return ""
    term = re.sub(r'[,()%*\\:]', ' ', term)
    return re.sub(r'\s+', ' ', term).strip()
