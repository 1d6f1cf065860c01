"""
Ordered fallback chains.

A chain is a list of named strategies tried in order until one produces a
value. A strategy "misses" by returning None; an exception counts as a miss
too and is logged, so one broken provider never hides the next one.
"""
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

K = TypeVar("K")
T = TypeVar("T")


@dataclass(frozen=True)
class Strategy(Generic[K, T]):
    name: str
    resolve: Callable[[K], Awaitable[Optional[T]]]


@dataclass(frozen=True)
class Resolved(Generic[T]):
    value: T
    strategy: str


async def resolve_with_fallback(
    key: K,
    strategies: Sequence[Strategy[K, T]],
) -> Optional[Resolved[T]]:
    """Return the first non-None result along with the strategy that produced it."""
    for strategy in strategies:
        try:
            value = await strategy.resolve(key)
        except Exception as e:
            logger.warning(
                "Fallback strategy failed: strategy=%s, key=%s, error=%s",
                strategy.name,
                key,
                str(e),
                exc_info=True,
            )
            continue
        if value is not None:
            return Resolved(value=value, strategy=strategy.name)
    return None
