"""
Source adapter contract.

Every provider (Google Places, Eventbrite, OpenStreetMap, ...) sits behind a
`SourceAdapter`. Adapters turn provider payloads into `UnifiedCandidate`s and
nothing provider-specific crosses this boundary.
"""
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Sequence

from pydantic import TypeAdapter, ValidationError

from app.schemas.candidate import Coordinates, UnifiedCandidate
from app.services.sources.payloads import ProviderPayload, to_unified_candidate

logger = logging.getLogger(__name__)

PROVIDER_PAYLOAD: TypeAdapter[ProviderPayload] = TypeAdapter(ProviderPayload)


class AdapterConfigurationError(Exception):
    """Raised by an adapter that is asked to search without its credentials or endpoint."""


class SourceAdapter(ABC):
    name: str = "unknown"

    @abstractmethod
    def is_available(self) -> bool:
        """True when the adapter has what it needs to call its provider."""

    @abstractmethod
    async def search(
        self,
        center: Coordinates,
        radius_meters: int,
        interest_hints: Sequence[str],
        limit: int,
    ) -> List[UnifiedCandidate]:
        """
        Query the provider around `center`.

        No results is an empty list, never an exception. Network errors are
        left to propagate; the aggregator treats them as a failed source.
        """

    def _require_configured(self) -> None:
        if not self.is_available():
            raise AdapterConfigurationError(f"{self.name} adapter is not configured")


def convert_payloads(source: str, kind: str, raw_items: Iterable[Dict[str, Any]]) -> List[UnifiedCandidate]:
    """
    Parse raw provider items as payload `kind` and convert them one by one.

    Items that fail validation or conversion are dropped and logged; a
    converter returning None means "valid but not worth recommending"
    (cancelled event, sold out, ...).
    """
    candidates: List[UnifiedCandidate] = []
    dropped = 0
    for item in raw_items:
        if not isinstance(item, dict):
            dropped += 1
            continue
        try:
            payload = PROVIDER_PAYLOAD.validate_python({**item, "kind": kind})
            candidate = to_unified_candidate(payload)
        except (ValidationError, ValueError) as e:
            dropped += 1
            logger.debug("Dropping malformed %s payload: %s", source, str(e))
            continue
        if candidate is not None:
            candidates.append(candidate)
    if dropped:
        logger.info("%s: dropped %d malformed payload(s)", source, dropped)
    return candidates
