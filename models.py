import os
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal
from enum import Enum

SEARCH_MAX_LIMIT = int(os.getenv("SEARCH_MAX_LIMIT", "50"))


class EntityType(str, Enum):
    EVENTS = "events"
    ORGANIZATIONS = "organizations"
    USERS = "users"
    POSTS = "posts"


ALL_ENTITY_TYPES = [
    EntityType.EVENTS.value,
    EntityType.ORGANIZATIONS.value,
    EntityType.USERS.value,
    EntityType.POSTS.value,
]


class SortMode(str, Enum):
    RELEVANCE = "relevance"
    DATE = "date"
    POPULARITY = "popularity"
    DISTANCE = "distance"


# Request Models
class PriceRange(BaseModel):
    min: float = Field(0, ge=0)
    max: float = Field(..., ge=0)

    @model_validator(mode="after")
    def validate_bounds(self):
        if self.min > self.max:
            raise ValueError("price_range.min cannot exceed price_range.max")
        return self


class SearchRequest(BaseModel):
    # Length is checked by the search service so short queries get a 400
    q: str
    types: List[EntityType] = Field(default_factory=lambda: [EntityType(t) for t in ALL_ENTITY_TYPES])
    category: Optional[str] = None
    location: Optional[str] = None  # "lat,lng"
    # limit and radius_km default to SEARCH_DEFAULT_LIMIT / SEARCH_DEFAULT_RADIUS_KM when omitted
    radius_km: Optional[float] = Field(None, gt=0, le=500)
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: Optional[int] = Field(None, ge=1, le=SEARCH_MAX_LIMIT)
    offset: int = Field(0, ge=0)
    sort_by: SortMode = SortMode.RELEVANCE
    price_range: Optional[PriceRange] = None
    tags: List[str] = Field(default_factory=list)
    organizer_id: Optional[str] = None
    verified_only: bool = False
    include_past_events: bool = False
    session_id: Optional[str] = Field(None, max_length=100)

    @field_validator("types")
    @classmethod
    def default_empty_types(cls, v):
        # An empty list means "everything", duplicates are dropped
        if not v:
            return [EntityType(t) for t in ALL_ENTITY_TYPES]
        return list(dict.fromkeys(v))

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v):
        return [tag.strip() for tag in v if tag and tag.strip()]


class SearchClickRequest(BaseModel):
    session_id: str = Field(..., min_length=1, max_length=100)
    query: str = Field(..., min_length=1, max_length=200)
    result_id: str = Field(..., min_length=1)
    result_type: EntityType
    position: int = Field(..., ge=0)


# Response Models
class SearchResult(BaseModel):
    id: str
    entity_type: EntityType
    title: str
    subtitle: Optional[str] = None
    image_url: Optional[str] = None
    relevance_score: float
    distance_km: Optional[float] = None
    created_at: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchResultsBuckets(BaseModel):
    events: List[SearchResult] = Field(default_factory=list)
    organizations: List[SearchResult] = Field(default_factory=list)
    users: List[SearchResult] = Field(default_factory=list)
    posts: List[SearchResult] = Field(default_factory=list)


class Facet(BaseModel):
    name: str
    count: int


class SearchFacets(BaseModel):
    category: List[Facet] = Field(default_factory=list)
    location: List[Facet] = Field(default_factory=list)
    price_range: List[Facet] = Field(default_factory=list)
    date_range: List[Facet] = Field(default_factory=list)


class SearchMeta(BaseModel):
    total: int
    search_time_ms: int
    has_more: bool
    facets: SearchFacets
    session_id: Optional[str] = None


class TrendingSearch(BaseModel):
    query: str
    count: int


class SearchResponse(BaseModel):
    query: str
    results: SearchResultsBuckets
    meta: SearchMeta
    suggestions: List[str] = Field(default_factory=list)
    trending: List[TrendingSearch] = Field(default_factory=list)
    related_searches: List[str] = Field(default_factory=list)
    filters_applied: Dict[str, Any] = Field(default_factory=dict)


class SuggestionsResponse(BaseModel):
    query: str
    suggestions: List[str]


class TrendingResponse(BaseModel):
    hours: int
    trending: List[TrendingSearch]


class PopularQuery(BaseModel):
    query: str
    count: int
    avg_results: int


class PopularQueriesResponse(BaseModel):
    days: int
    popular_queries: List[PopularQuery]


class SearchTrendPoint(BaseModel):
    date: str
    searches: int


class ResultTypeCount(BaseModel):
    type: str
    count: int


class SearchAnalyticsSummaryResponse(BaseModel):
    time_range: Literal["day", "week", "month"]
    total_searches: int
    average_search_time: int
    zero_result_rate: float
    click_through_rate: float
    average_position_clicked: int
    popular_queries: List[PopularQuery]
    search_trends: List[SearchTrendPoint]
    top_result_types: List[ResultTypeCount]
