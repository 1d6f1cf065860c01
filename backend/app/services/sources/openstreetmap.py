import logging
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.sources.base import SourceAdapter, convert_payloads

logger = logging.getLogger(__name__)

# (tag key, tag value) pairs queried for each category; everything when no hint matches
OSM_TAGS_BY_CATEGORY: Dict[str, List[Tuple[str, str]]] = {
    "dining": [("amenity", "restaurant"), ("amenity", "fast_food"), ("amenity", "food_court")],
    "coffee": [("amenity", "cafe")],
    "bars": [("amenity", "bar"), ("amenity", "pub")],
    "culture": [("tourism", "museum"), ("amenity", "library"), ("amenity", "community_centre")],
    "arts": [("tourism", "gallery"), ("amenity", "theatre"), ("amenity", "arts_centre")],
    "entertainment": [("amenity", "cinema")],
    "attractions": [("tourism", "attraction")],
    "outdoor": [("leisure", "park"), ("leisure", "garden")],
    "family": [("leisure", "playground")],
    "sports": [("leisure", "sports_centre")],
    "fitness": [("leisure", "fitness_centre"), ("leisure", "fitness_station")],
}


def build_overpass_query(center: Coordinates, radius_meters: int, interest_hints: Sequence[str], limit: int) -> str:
    tag_pairs: List[Tuple[str, str]] = []
    for hint in interest_hints:
        tag_pairs.extend(OSM_TAGS_BY_CATEGORY.get(hint, []))
    if not tag_pairs:
        tag_pairs = [pair for pairs in OSM_TAGS_BY_CATEGORY.values() for pair in pairs]

    around = f"around:{int(radius_meters)},{center.latitude},{center.longitude}"
    selectors = "\n".join(f'  node["{key}"="{value}"]["name"]({around});' for key, value in tag_pairs)
    return f"[out:json][timeout:25];\n(\n{selectors}\n);\nout body {int(limit)};"


class OpenStreetMapAdapter(SourceAdapter):
    name = "openstreetmap"

    def __init__(
        self,
        api_url: Optional[str],
        enabled: bool = True,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 8.0,
    ):
        self.api_url = api_url
        self.enabled = enabled
        self._client = client
        self.timeout = timeout

    def is_available(self) -> bool:
        return self.enabled and bool(self.api_url)

    async def search(
        self,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
    ) -> List[UnifiedCandidate]:
        self._require_configured()

        query = build_overpass_query(center, radius_meters, interest_hints, limit)
        if self._client is not None:
            response = await self._client.post(self.api_url, data={"data": query})
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(self.api_url, data={"data": query})
        response.raise_for_status()

        elements = response.json().get("elements") or []
        candidates = convert_payloads(self.name, "osm_element", elements)
        logger.debug("openstreetmap: %d element(s) within %dm", len(candidates), radius_meters)
        return candidates[:limit]
