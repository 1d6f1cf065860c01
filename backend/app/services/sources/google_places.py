import logging
from typing import Dict, List, Optional, Sequence

import httpx

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.sources.base import SourceAdapter, convert_payloads

logger = logging.getLogger(__name__)

SEARCH_NEARBY_URL = "https://places.googleapis.com/v1/places:searchNearby"
FIELD_MASK = ",".join(
    [
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.location",
        "places.types",
        "places.rating",
        "places.userRatingCount",
        "places.priceLevel",
        "places.photos",
        "places.currentOpeningHours.openNow",
        "places.businessStatus",
    ]
)
MAX_RESULTS_PER_CALL = 20
MAX_RADIUS_METERS = 50000

GOOGLE_TYPES_BY_CATEGORY: Dict[str, List[str]] = {
    "dining": ["restaurant"],
    "coffee": ["cafe", "coffee_shop", "bakery"],
    "bars": ["bar", "pub"],
    "nightlife": ["night_club", "bar"],
    "live_music": ["live_music_venue", "concert_hall"],
    "fitness": ["gym", "yoga_studio"],
    "outdoor": ["park", "hiking_area"],
    "culture": ["museum", "cultural_center"],
    "arts": ["art_gallery", "performing_arts_theater"],
    "entertainment": ["movie_theater", "bowling_alley", "amusement_park"],
    "shopping": ["shopping_mall", "book_store"],
    "sports": ["sports_complex", "stadium"],
    "wellness": ["spa"],
    "family": ["zoo", "aquarium"],
    "attractions": ["tourist_attraction"],
}


class GooglePlacesAdapter(SourceAdapter):
    name = "google_places"

    def __init__(self, api_key: Optional[str], client: Optional[httpx.AsyncClient] = None, timeout: float = 8.0):
        self.api_key = api_key
        self._client = client
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def search(
        self,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
    ) -> List[UnifiedCandidate]:
        self._require_configured()

        included_types: List[str] = []
        for hint in interest_hints:
            for place_type in GOOGLE_TYPES_BY_CATEGORY.get(hint, []):
                if place_type not in included_types:
                    included_types.append(place_type)

        body = {
            "maxResultCount": max(1, min(limit, MAX_RESULTS_PER_CALL)),
            "locationRestriction": {
                "circle": {
                    "center": {"latitude": center.latitude, "longitude": center.longitude},
                    "radius": float(min(radius_meters, MAX_RADIUS_METERS)),
                }
            },
        }
        if included_types:
            body["includedTypes"] = included_types

        headers = {"X-Goog-Api-Key": self.api_key, "X-Goog-FieldMask": FIELD_MASK}
        if self._client is not None:
            response = await self._client.post(SEARCH_NEARBY_URL, json=body, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(SEARCH_NEARBY_URL, json=body, headers=headers)
        response.raise_for_status()

        places = response.json().get("places") or []
        candidates = convert_payloads(self.name, "google_place", places)
        logger.debug("google_places: %d place(s) within %dm", len(candidates), radius_meters)
        return candidates[:limit]
