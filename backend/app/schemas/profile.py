from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from app.schemas.candidate import Coordinates

TimeOfDay = Literal["morning", "afternoon", "evening", "night"]


class UserProfile(BaseModel):
    """
    Read-only view of the user's preferences.

    Owned by the profile service; feedback processing mutates it elsewhere.
    """
    id: str
    interests: List[str] = Field(default_factory=list)  # ordered, most important first
    favorite_categories: List[str] = Field(default_factory=list)
    disliked_categories: List[str] = Field(default_factory=list)
    budget_level: int = Field(default=2, ge=1, le=4)
    max_distance_miles: float = Field(default=5.0, gt=0)
    preferred_time_windows: List[TimeOfDay] = Field(default_factory=list)
    subscription_tier: Literal["free", "plus", "premium"] = "free"
    discovery_mode: Literal["curated", "explore"] = "curated"
    home_location: Optional[Coordinates] = None
    work_location: Optional[Coordinates] = None


class UpcomingCommitment(BaseModel):
    """A future calendar entry with a place attached, from the calendar collaborator."""
    starts_at: datetime
    location: Coordinates
    title: Optional[str] = None


class SchedulePattern(BaseModel):
    """Recurring habit, e.g. coffee on weekday mornings."""
    weekday: Optional[int] = Field(default=None, ge=0, le=6)  # None = any day, Monday = 0
    time_of_day: TimeOfDay
    category: str


class PersonalSignals(BaseModel):
    """
    Cross-referenced personal data. Every field is optional; an empty field
    contributes nothing to the score.
    """
    visit_counts: Dict[str, int] = Field(default_factory=dict)  # candidate id -> visits
    past_ratings: Dict[str, float] = Field(default_factory=dict)  # candidate id -> 1..5
    external_likes: List[str] = Field(default_factory=list)  # liked names or categories
    schedule_patterns: List[SchedulePattern] = Field(default_factory=list)
