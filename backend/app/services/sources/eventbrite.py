import logging
from datetime import timedelta
from typing import List, Optional, Sequence

import httpx

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.sources.base import SourceAdapter, convert_payloads
from app.services.sources.payloads import EVENTBRITE_CATEGORIES
from app.utils.timing import utcnow

logger = logging.getLogger(__name__)

EVENT_SEARCH_URL = "https://www.eventbriteapi.com/v3/events/search/"
LOOKAHEAD_DAYS = 14


def _category_ids_for(interest_hints: Sequence[str]) -> List[str]:
    ids = []
    for category_id, tags in EVENTBRITE_CATEGORIES.items():
        if any(hint in tags for hint in interest_hints):
            ids.append(category_id)
    return ids


class EventbriteAdapter(SourceAdapter):
    name = "eventbrite"

    def __init__(self, api_token: Optional[str], client: Optional[httpx.AsyncClient] = None, timeout: float = 8.0):
        self.api_token = api_token
        self._client = client
        self.timeout = timeout

    def is_available(self) -> bool:
        return bool(self.api_token)

    async def search(
        self,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
    ) -> List[UnifiedCandidate]:
        self._require_configured()

        now = utcnow()
        params = {
            "location.latitude": center.latitude,
            "location.longitude": center.longitude,
            "location.within": f"{max(1, round(radius_meters / 1000))}km",
            "start_date.range_start": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "start_date.range_end": (now + timedelta(days=LOOKAHEAD_DAYS)).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "expand": "venue,ticket_availability",
            "status": "live",
            "page_size": max(1, min(limit, 50)),
        }
        category_ids = _category_ids_for(interest_hints)
        if category_ids:
            params["categories"] = ",".join(category_ids)

        headers = {"Authorization": f"Bearer {self.api_token}"}
        if self._client is not None:
            response = await self._client.get(EVENT_SEARCH_URL, params=params, headers=headers)
        else:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.get(EVENT_SEARCH_URL, params=params, headers=headers)
        response.raise_for_status()

        events = response.json().get("events") or []
        candidates = convert_payloads(self.name, "eventbrite_event", events)
        logger.debug("eventbrite: %d event(s) of %d returned", len(candidates), len(events))
        return candidates[:limit]
