import os
from dotenv import load_dotenv

# Load environment variables FIRST before any other imports
load_dotenv()

from fastapi import FastAPI, Depends, HTTPException, Request, Query
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from contextlib import asynccontextmanager
from typing import Literal
import logging

from auth_dependencies import (
    SearchAuthContext,
    get_search_auth_context,
    get_current_user_required,
)
from global_search_service import GlobalSearchService, get_global_search_service
from models import (
    SearchRequest,
    SearchResponse,
    SearchClickRequest,
    SuggestionsResponse,
    TrendingResponse,
    PopularQueriesResponse,
    SearchAnalyticsSummaryResponse,
)
from search_analytics_service import (
    POPULAR_QUERIES_LIMIT,
    SearchAnalyticsService,
    get_search_analytics_service,
    drain_search_analytics,
)
from search_cache_service import close_search_cache
from search_suggestions_service import (
    SearchSuggestionsService,
    SUGGESTION_LIMIT,
    TRENDING_HOURS,
    TRENDING_LIMIT,
)
from security_utils import sanitize_for_log
from supabase_client import SupabaseNotConfiguredError, get_supabase_client

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    if not get_supabase_client().is_configured:
        logger.warning("Supabase is not configured - search requests will fail")
    yield
    # Shutdown
    await drain_search_analytics()
    await close_search_cache()


limiter = Limiter(
    key_func=get_remote_address,
    enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes"),
)

app = FastAPI(title="Event Search API", version="1.0.0", lifespan=lifespan)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# CORS configuration for the web frontend
allowed_origins = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
# Strip any whitespace from origins
allowed_origins = [origin.strip() for origin in allowed_origins if origin.strip()]

# Allow null origin for local file:// testing (development only)
environment = os.getenv("ENVIRONMENT", "dev")
if environment in ["dev", "development"]:
    if "null" not in allowed_origins:
        allowed_origins.append("null")
        logger.warning("CORS: Allowing 'null' origin for local file:// testing (development only)")

logger.info(f"Configured CORS allowed origins: {allowed_origins}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


def get_suggestions_service() -> SearchSuggestionsService:
    try:
        return SearchSuggestionsService(get_supabase_client().get_search_client())
    except SupabaseNotConfiguredError as e:
        logger.error(f"Search suggestions unavailable: {e}")
        raise HTTPException(status_code=500, detail="Search failed")


def get_analytics_service() -> SearchAnalyticsService:
    try:
        return get_search_analytics_service()
    except SupabaseNotConfiguredError as e:
        logger.error(f"Search analytics unavailable: {e}")
        raise HTTPException(status_code=500, detail="Search failed")


# =============================================================================
# SEARCH ENDPOINTS
# =============================================================================


@app.post("/api/v1/search", tags=["Search"], response_model=SearchResponse)
@limiter.limit("60/minute")
async def search(
    search_request: SearchRequest,
    request: Request,
    auth: SearchAuthContext = Depends(get_search_auth_context),
    search_service: GlobalSearchService = Depends(get_global_search_service),
):
    """
    Search events, organizations, users and posts

    - All requested types are searched in parallel and ranked per type
    - Results are cached for 5 minutes (configurable via SEARCH_CACHE_TTL_SECONDS)
    - Signed-in callers get results boosted by their check-in and reaction history
    - A missing or invalid bearer token falls back to an anonymous search
    """
    try:
        return await search_service.search_all(search_request, auth)

    except HTTPException:
        raise
    except ValueError as e:
        logger.info(f"Rejected search '{sanitize_for_log(search_request.q)}': {e}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error performing search: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Search failed")


@app.get("/api/v1/search/suggestions", tags=["Search"], response_model=SuggestionsResponse)
@limiter.limit("120/minute")
async def search_suggestions(
    request: Request,
    q: str = Query(..., min_length=1, max_length=200, description="Partial query"),
    limit: int = Query(SUGGESTION_LIMIT, ge=1, le=20, description="Max suggestions"),
    suggestions_service: SearchSuggestionsService = Depends(get_suggestions_service),
):
    """Autocomplete suggestions for a partial query"""
    try:
        suggestions = await suggestions_service.get_autocomplete(q, limit)
        return SuggestionsResponse(query=q, suggestions=suggestions)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting search suggestions: {e}")
        raise HTTPException(status_code=500, detail="Failed to get suggestions")


@app.get("/api/v1/search/trending", tags=["Search"], response_model=TrendingResponse)
@limiter.limit("60/minute")
async def trending_searches(
    request: Request,
    hours: int = Query(TRENDING_HOURS, ge=1, le=168, description="Look-back window in hours"),
    limit: int = Query(TRENDING_LIMIT, ge=1, le=50, description="Max trending queries (clamped to 3-10)"),
    suggestions_service: SearchSuggestionsService = Depends(get_suggestions_service),
):
    """Most searched queries in the look-back window"""
    try:
        trending = await suggestions_service.get_trending(hours, limit)
        return TrendingResponse(hours=hours, trending=trending)

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Error getting trending searches: {e}")
        raise HTTPException(status_code=500, detail="Failed to get trending searches")


@app.post("/api/v1/search/click", tags=["Search"], status_code=202)
@limiter.limit("120/minute")
async def track_search_click(
    click: SearchClickRequest,
    request: Request,
    auth: SearchAuthContext = Depends(get_search_auth_context),
    analytics_service: SearchAnalyticsService = Depends(get_analytics_service),
):
    """Record a click on a search result (best effort, returns immediately)"""
    analytics_service.track_click(
        session_id=click.session_id,
        query=click.query,
        result_id=click.result_id,
        result_type=click.result_type.value,
        position=click.position,
        user_id=auth.user_id,
    )
    return {"success": True}


@app.get(
    "/api/v1/search/analytics/summary",
    tags=["Search"],
    response_model=SearchAnalyticsSummaryResponse,
)
@limiter.limit("30/minute")
async def search_analytics_summary(
    request: Request,
    time_range: Literal["day", "week", "month"] = Query("week"),
    user_id: str = Depends(get_current_user_required),
    analytics_service: SearchAnalyticsService = Depends(get_analytics_service),
):
    """Search analytics for the current user over the last day, week or month"""
    try:
        return await analytics_service.get_analytics_summary(time_range, user_id)

    except HTTPException:
        raise
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Error getting search analytics summary: {e}")
        raise HTTPException(status_code=500, detail="Failed to get search analytics")


@app.get(
    "/api/v1/search/analytics/popular",
    tags=["Search"],
    response_model=PopularQueriesResponse,
)
@limiter.limit("60/minute")
async def popular_search_queries(
    request: Request,
    days: int = Query(7, ge=1, le=90, description="Look-back window in days"),
    limit: int = Query(POPULAR_QUERIES_LIMIT, ge=1, le=50),
    analytics_service: SearchAnalyticsService = Depends(get_analytics_service),
):
    """Most frequent queries across all users, with their average result counts"""
    popular = await analytics_service.get_popular_queries(days, limit)
    return PopularQueriesResponse(days=days, popular_queries=popular)


@app.get("/api/v1/health", tags=["System"])
async def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "supabase_configured": get_supabase_client().is_configured}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000, access_log=True)
