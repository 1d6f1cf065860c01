from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models import RecommendationStatus
from app.schemas.candidate import Coordinates
from app.schemas.profile import PersonalSignals, UpcomingCommitment, UserProfile


class RecommendationItem(BaseModel):
    candidate_id: str
    source: str
    name: str
    category: str
    address: str = ""
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_miles: Optional[float] = None
    score: float
    rating: Optional[float] = None
    rating_count: int = 0
    price_level: Optional[int] = None
    photos: List[str] = Field(default_factory=list)
    is_event: bool = False
    event_starts_at: Optional[datetime] = None
    sponsored: bool = False
    why_recommended: str
    # Debug fields (only included when debug=true)
    score_breakdown: Optional[Dict[str, Any]] = None


class GenerateRecommendationsRequest(BaseModel):
    profile: UserProfile
    location: Coordinates
    radius_meters: Optional[int] = Field(default=None, gt=0)
    category_hints: List[str] = Field(default_factory=list)
    max_results: int = Field(default=10, ge=1, le=50)
    commitments: List[UpcomingCommitment] = Field(default_factory=list)
    signals: Optional[PersonalSignals] = None
    now: Optional[datetime] = None


class RecommendationsResponse(BaseModel):
    """Response wrapper that includes request_id for event tracking."""
    request_id: str
    items: List[RecommendationItem]
    persisted: bool = True
    debug: Optional[Dict[str, Any]] = None  # Only included when debug=true


class RecommendationRecordOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Any
    user_id: str
    candidate_id: str
    source: str
    candidate_name: str
    category: str
    status: RecommendationStatus
    confidence_score: float
    created_at: datetime
    last_shown_at: datetime
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    decline_reason: Optional[str] = None
    linked_entity_id: Optional[str] = None
    expires_at: datetime


class AcceptRequest(BaseModel):
    linked_entity_id: Optional[str] = None


class DeclineRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=100)


class BlockRequest(BaseModel):
    candidate_id: str
    candidate_name: str
    reason: Optional[str] = None


class BlockedCandidateOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    candidate_id: str
    candidate_name: str
    reason: Optional[str] = None
    blocked_at: datetime


class RecommendationStats(BaseModel):
    total: int
    accepted: int
    declined: int
    not_interested: int
    acceptance_rate: float
