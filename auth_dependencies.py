from fastapi import HTTPException, Request
from typing import Optional

from jwt_utils import get_user_id_from_token


class SearchAuthContext:
    """Optional caller identity plus the bearer token to forward to Supabase"""

    def __init__(self, user_id: Optional[str] = None, access_token: Optional[str] = None):
        self.user_id = user_id
        self.access_token = access_token

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None


def get_bearer_token(request: Request) -> Optional[str]:
    """Extract the bearer token from the Authorization header, if any"""
    authorization = request.headers.get("Authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_search_auth_context(request: Request) -> SearchAuthContext:
    """
    Resolve the caller for search requests

    Search works anonymously: a missing or invalid token yields an anonymous
    context (no personalization, no token forwarded).
    """
    token = get_bearer_token(request)
    if not token:
        return SearchAuthContext()

    user_id = get_user_id_from_token(token)
    if not user_id:
        return SearchAuthContext()

    return SearchAuthContext(user_id=user_id, access_token=token)


def get_current_user_required(request: Request) -> str:
    """Extract user ID from the bearer token, raise exception if not authenticated"""
    context = get_search_auth_context(request)
    if not context.user_id:
        raise HTTPException(status_code=401, detail="Authentication required")
    return context.user_id
