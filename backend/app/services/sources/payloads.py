"""
Provider payload variants and their conversions to UnifiedCandidate.

Each provider gets a pydantic model describing just the part of its response we
read, tagged with a `kind` literal, plus one explicit conversion function. The
set is closed: `ProviderPayload` is the discriminated union of all of them and
`to_unified_candidate` dispatches on `kind`.
"""
from datetime import datetime
from typing import Annotated, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from app.schemas.candidate import Coordinates, EventWindow, OpenState, UnifiedCandidate
from app.utils.timing import to_naive_utc


class _Payload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# --- Google Places (v1 searchNearby) ---------------------------------------

GOOGLE_PRICE_LEVELS: Dict[str, Optional[int]] = {
    "PRICE_LEVEL_UNSPECIFIED": None,
    "PRICE_LEVEL_FREE": 0,
    "PRICE_LEVEL_INEXPENSIVE": 1,
    "PRICE_LEVEL_MODERATE": 2,
    "PRICE_LEVEL_EXPENSIVE": 3,
    "PRICE_LEVEL_VERY_EXPENSIVE": 4,
}


class LocalizedText(_Payload):
    text: str = ""


class LatLng(_Payload):
    latitude: float
    longitude: float


class GooglePhoto(_Payload):
    name: str


class GoogleOpeningHours(_Payload):
    open_now: Optional[bool] = Field(default=None, alias="openNow")


class GooglePlacePayload(_Payload):
    kind: Literal["google_place"] = "google_place"
    id: str
    display_name: Optional[LocalizedText] = Field(default=None, alias="displayName")
    formatted_address: str = Field(default="", alias="formattedAddress")
    location: Optional[LatLng] = None
    types: List[str] = Field(default_factory=list)
    rating: Optional[float] = None
    user_rating_count: int = Field(default=0, alias="userRatingCount")
    price_level: Optional[str] = Field(default=None, alias="priceLevel")
    photos: List[GooglePhoto] = Field(default_factory=list)
    current_opening_hours: Optional[GoogleOpeningHours] = Field(default=None, alias="currentOpeningHours")
    business_status: Optional[str] = Field(default=None, alias="businessStatus")


def google_place_to_candidate(payload: GooglePlacePayload) -> Optional[UnifiedCandidate]:
    if payload.business_status and payload.business_status != "OPERATIONAL":
        return None
    name = payload.display_name.text.strip() if payload.display_name else ""
    if not name:
        raise ValueError(f"google place {payload.id} has no name")

    open_state = OpenState.UNKNOWN
    if payload.current_opening_hours and payload.current_opening_hours.open_now is not None:
        open_state = OpenState.OPEN if payload.current_opening_hours.open_now else OpenState.CLOSED

    return UnifiedCandidate(
        id=f"google:{payload.id}",
        source="google_places",
        name=name,
        address=payload.formatted_address,
        coordinates=(
            Coordinates(latitude=payload.location.latitude, longitude=payload.location.longitude)
            if payload.location
            else None
        ),
        category_tags=payload.types,
        rating=payload.rating,
        rating_count=payload.user_rating_count,
        price_level=GOOGLE_PRICE_LEVELS.get(payload.price_level) if payload.price_level else None,
        photos=[photo.name for photo in payload.photos[:5]],
        open_state=open_state,
    )


# --- Eventbrite (v3 events with venue + ticket_availability expansions) ---

# Eventbrite top-level category id -> our category tags
EVENTBRITE_CATEGORIES: Dict[str, List[str]] = {
    "101": ["networking"],
    "102": ["tech"],
    "103": ["live_music", "nightlife"],
    "104": ["entertainment"],
    "105": ["arts", "culture"],
    "107": ["wellness", "fitness"],
    "108": ["sports", "fitness"],
    "109": ["outdoor"],
    "110": ["dining"],
    "113": ["culture"],
    "115": ["family"],
}


class EventbriteText(_Payload):
    text: Optional[str] = None


class EventbriteDate(_Payload):
    utc: datetime


class EventbriteAddress(_Payload):
    address_1: Optional[str] = None
    city: Optional[str] = None
    region: Optional[str] = None
    latitude: Optional[str] = None
    longitude: Optional[str] = None
    localized_address_display: Optional[str] = None


class EventbriteVenue(_Payload):
    name: Optional[str] = None
    address: Optional[EventbriteAddress] = None


class EventbriteLogo(_Payload):
    url: Optional[str] = None


class EventbriteMoney(_Payload):
    major_value: Optional[str] = None


class EventbriteTicketAvailability(_Payload):
    is_sold_out: bool = False
    minimum_ticket_price: Optional[EventbriteMoney] = None


class EventbriteEventPayload(_Payload):
    kind: Literal["eventbrite_event"] = "eventbrite_event"
    id: str
    name: EventbriteText
    start: EventbriteDate
    end: Optional[EventbriteDate] = None
    status: str = "live"
    online_event: bool = False
    is_free: bool = False
    category_id: Optional[str] = None
    venue: Optional[EventbriteVenue] = None
    logo: Optional[EventbriteLogo] = None
    ticket_availability: Optional[EventbriteTicketAvailability] = None


def _ticket_price_level(payload: EventbriteEventPayload) -> Optional[int]:
    if payload.is_free:
        return 0
    availability = payload.ticket_availability
    if not availability or not availability.minimum_ticket_price or not availability.minimum_ticket_price.major_value:
        return None
    price = float(availability.minimum_ticket_price.major_value)
    if price < 15:
        return 1
    if price < 40:
        return 2
    if price < 100:
        return 3
    return 4


def eventbrite_event_to_candidate(payload: EventbriteEventPayload) -> Optional[UnifiedCandidate]:
    # Only published, in-person events with seats left
    if payload.status != "live" or payload.online_event:
        return None
    if payload.ticket_availability and payload.ticket_availability.is_sold_out:
        return None
    name = (payload.name.text or "").strip()
    if not name:
        raise ValueError(f"eventbrite event {payload.id} has no name")

    address = ""
    coordinates = None
    if payload.venue and payload.venue.address:
        venue_address = payload.venue.address
        address = venue_address.localized_address_display or ", ".join(
            part for part in (venue_address.address_1, venue_address.city, venue_address.region) if part
        )
        if venue_address.latitude and venue_address.longitude:
            coordinates = Coordinates(
                latitude=float(venue_address.latitude),
                longitude=float(venue_address.longitude),
            )

    tags = list(EVENTBRITE_CATEGORIES.get(payload.category_id or "", []))
    tags.append("events")

    return UnifiedCandidate(
        id=f"eventbrite:{payload.id}",
        source="eventbrite",
        name=name,
        address=address,
        coordinates=coordinates,
        category_tags=tags,
        price_level=_ticket_price_level(payload),
        photos=[payload.logo.url] if payload.logo and payload.logo.url else [],
        event_window=EventWindow(
            starts_at=to_naive_utc(payload.start.utc),
            ends_at=to_naive_utc(payload.end.utc) if payload.end else None,
        ),
    )


# --- OpenStreetMap (Overpass JSON elements) --------------------------------

OSM_CATEGORY_KEYS = ("amenity", "tourism", "leisure", "shop")


class OverpassElementPayload(_Payload):
    kind: Literal["osm_element"] = "osm_element"
    type: str = "node"
    id: int
    lat: Optional[float] = None
    lon: Optional[float] = None
    tags: Dict[str, str] = Field(default_factory=dict)


def osm_element_to_candidate(payload: OverpassElementPayload) -> Optional[UnifiedCandidate]:
    name = (payload.tags.get("name") or payload.tags.get("name:en") or "").strip()
    if not name:
        raise ValueError(f"osm {payload.type}/{payload.id} has no name")

    street = " ".join(
        part for part in (payload.tags.get("addr:housenumber"), payload.tags.get("addr:street")) if part
    )
    address = ", ".join(part for part in (street, payload.tags.get("addr:city")) if part)

    return UnifiedCandidate(
        id=f"osm:{payload.type}/{payload.id}",
        source="openstreetmap",
        name=name,
        address=address,
        coordinates=(
            Coordinates(latitude=payload.lat, longitude=payload.lon)
            if payload.lat is not None and payload.lon is not None
            else None
        ),
        category_tags=[payload.tags[key] for key in OSM_CATEGORY_KEYS if payload.tags.get(key)],
    )


ProviderPayload = Annotated[
    Union[GooglePlacePayload, EventbriteEventPayload, OverpassElementPayload],
    Field(discriminator="kind"),
]

_CONVERTERS = {
    "google_place": google_place_to_candidate,
    "eventbrite_event": eventbrite_event_to_candidate,
    "osm_element": osm_element_to_candidate,
}


def to_unified_candidate(payload: ProviderPayload) -> Optional[UnifiedCandidate]:
    return _CONVERTERS[payload.kind](payload)
