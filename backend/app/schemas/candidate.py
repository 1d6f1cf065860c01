from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class OpenState(str, Enum):
    OPEN = "open"
    CLOSED = "closed"
    UNKNOWN = "unknown"


class SponsorTier(str, Enum):
    ORGANIC = "organic"
    BOOSTED = "boosted"
    PREMIUM = "premium"


class Coordinates(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class EventWindow(BaseModel):
    starts_at: datetime
    ends_at: Optional[datetime] = None

    @model_validator(mode="after")
    def _end_after_start(self) -> "EventWindow":
        if self.ends_at is not None and self.ends_at < self.starts_at:
            raise ValueError("event ends before it starts")
        return self


class UnifiedCandidate(BaseModel):
    """
    Source-agnostic place or event.

    Built by a source adapter from its provider payload and thrown away at the
    end of the aggregation cycle. `id` is namespaced by source
    (e.g. "google:ChIJ...") so ids from different providers never collide.
    """
    id: str = Field(min_length=1)
    source: str
    name: str = Field(min_length=1)
    address: str = ""
    coordinates: Optional[Coordinates] = None
    category_tags: List[str] = Field(default_factory=list)
    rating: Optional[float] = Field(default=None, ge=0, le=5)
    rating_count: int = Field(default=0, ge=0)
    price_level: Optional[int] = Field(default=None, ge=0, le=4)  # None = unknown
    photos: List[str] = Field(default_factory=list)
    open_state: OpenState = OpenState.UNKNOWN
    event_window: Optional[EventWindow] = None
    sponsored: bool = False
    sponsor_tier: SponsorTier = SponsorTier.ORGANIC

    @field_validator("category_tags")
    @classmethod
    def _normalize_tags(cls, tags: List[str]) -> List[str]:
        seen = []
        for tag in tags:
            normalized = tag.strip().lower()
            if normalized and normalized not in seen:
                seen.append(normalized)
        return seen

    @property
    def is_event(self) -> bool:
        return self.event_window is not None

    @property
    def has_coordinates(self) -> bool:
        return self.coordinates is not None
