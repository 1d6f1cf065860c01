"""
Business rules applied to the scored list before it is shown.

Order matters and is fixed:
    1. identity dedup
    2. event dedup by (normalized name, event date)
    3. consecutive-duplicate suppression
    4. category diversity in the top N
    5. event balance (cap in the top N, minimum in a wider window)
    6. sponsorship cap
then truncate to the requested count.

All the numbers live in RankingRules so product can tune them without touching
the algorithms.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from app.core.config import settings
from app.services.scoring import ScoredCandidate
from app.utils.timing import to_naive_utc

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RankingRules:
    diversity_window: int = 15
    diversity_top_n: int = 10
    min_categories_in_top_n: int = 7
    overrepresented_min_count: int = 2
    # When the window has no new category to offer, keep looking further down the list
    diversity_search_beyond_window: bool = True
    events_top_n: int = 10
    max_events_in_top_n: int = 4
    event_visibility_window: int = 20
    min_events_in_window: int = 2
    sponsored_top_n: int = 5
    max_sponsored_in_top_n: int = 2

    @classmethod
    def from_settings(cls) -> "RankingRules":
        return cls(
            min_categories_in_top_n=settings.MIN_CATEGORIES_IN_TOP_N,
            max_events_in_top_n=settings.MAX_EVENTS_IN_TOP_N,
            max_sponsored_in_top_n=settings.MAX_SPONSORED_IN_TOP_N,
        )


DEFAULT_RULES = RankingRules()


def _by_score(items: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    return sorted(items, key=lambda s: (-s.final_score, s.id))


def normalize_event_name(name: str) -> str:
    return " ".join(re.sub(r"[^a-z0-9]+", " ", name.lower()).split())


def dedupe_by_identity(ranked: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    seen: Set[str] = set()
    result = []
    for item in ranked:
        if item.id in seen:
            continue
        seen.add(item.id)
        result.append(item)
    return result


def dedupe_events(ranked: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    """Same event listed twice (often by two sources): keep the higher-scored copy."""
    best: Dict[Tuple[str, object], ScoredCandidate] = {}
    for item in ranked:
        window = item.candidate.event_window
        if window is None:
            continue
        key = (normalize_event_name(item.candidate.name), to_naive_utc(window.starts_at).date())
        current = best.get(key)
        if current is None or item.final_score > current.final_score:
            best[key] = item
    keep_ids = {item.id for item in best.values()}
    result = [item for item in ranked if item.candidate.event_window is None or item.id in keep_ids]
    if len(result) < len(ranked):
        logger.debug("Event dedup removed %d duplicate(s)", len(ranked) - len(result))
    return result


def suppress_consecutive_duplicates(ranked: Sequence[ScoredCandidate]) -> List[ScoredCandidate]:
    result: List[ScoredCandidate] = []
    for item in ranked:
        if result and result[-1].id == item.id:
            continue
        result.append(item)
    return result


def _best_new_category_index(
    items: List[ScoredCandidate],
    present: Set[str],
    start: int,
    end: Optional[int],
    allowed: Optional[Callable[[int], bool]] = None,
) -> Optional[int]:
    best_index = None
    for index in range(start, len(items) if end is None else min(end, len(items))):
        item = items[index]
        if item.category in present:
            continue
        if best_index is not None and item.final_score <= items[best_index].final_score:
            continue
        if allowed is not None and not allowed(index):
            continue
        best_index = index
    return best_index


def _placement_counts(items: Sequence[ScoredCandidate], rules: RankingRules) -> Tuple[int, int, int]:
    return (
        sum(1 for item in items[: rules.events_top_n] if item.is_event),
        sum(1 for item in items[: rules.event_visibility_window] if item.is_event),
        sum(1 for item in items[: rules.sponsored_top_n] if item.sponsored),
    )


def _swap_keeps_placement(items: List[ScoredCandidate], target: int, source: int, rules: RankingRules) -> bool:
    """Would swapping `target` and `source` keep the event and sponsorship limits?"""
    events, window_events, sponsored = _placement_counts(items, rules)
    swapped = list(items)
    swapped[target], swapped[source] = swapped[source], swapped[target]
    new_events, new_window_events, new_sponsored = _placement_counts(swapped, rules)
    return (
        new_events <= max(rules.max_events_in_top_n, events)
        and new_window_events >= min(rules.min_events_in_window, window_events)
        and new_sponsored <= max(rules.max_sponsored_in_top_n, sponsored)
    )


def _lowest_index_of_category(items: List[ScoredCandidate], category: str, top_n: int) -> int:
    lowest = None
    for index in range(min(top_n, len(items))):
        if items[index].category != category:
            continue
        if lowest is None or items[index].final_score <= items[lowest].final_score:
            lowest = index
    return lowest


def enforce_category_diversity(
    ranked: Sequence[ScoredCandidate],
    rules: RankingRules = DEFAULT_RULES,
    keep_placement: bool = False,
) -> List[ScoredCandidate]:
    """
    Swap new categories into the top N until it holds the configured minimum.

    With `keep_placement`, a swap is only made if it leaves the event cap, the
    event visibility minimum and the sponsorship cap intact.
    """
    items = list(ranked)
    top_n = rules.diversity_top_n
    if len(items) <= top_n:
        return items

    swaps = 0
    while True:
        counts = Counter(item.category for item in items[:top_n])
        if len(counts) >= rules.min_categories_in_top_n:
            break
        overrepresented = [cat for cat, n in counts.most_common() if n >= rules.overrepresented_min_count]

        swapped = False
        for category in overrepresented:
            head_counts = Counter(item.category for item in items[:top_n])
            if len(head_counts) >= rules.min_categories_in_top_n:
                break
            if head_counts[category] < rules.overrepresented_min_count:
                continue
            present = set(head_counts)
            target = _lowest_index_of_category(items, category, top_n)
            allowed = None
            if keep_placement:
                allowed = partial(_swap_keeps_placement, items, target, rules=rules)
            source = _best_new_category_index(items, present, top_n, rules.diversity_window, allowed)
            if source is None and rules.diversity_search_beyond_window:
                source = _best_new_category_index(items, present, rules.diversity_window, None, allowed)
            if source is None:
                continue
            items[target], items[source] = items[source], items[target]
            swapped = True
            swaps += 1

        if not swapped:
            break

    if swaps:
        logger.debug("Category diversity: %d swap(s)", swaps)
    return items


def balance_events(ranked: Sequence[ScoredCandidate], rules: RankingRules = DEFAULT_RULES) -> List[ScoredCandidate]:
    items = list(ranked)
    top_n = rules.events_top_n

    # Cap events in the top N
    head, tail = items[:top_n], items[top_n:]
    head_events = [item for item in head if item.is_event]
    excess = len(head_events) - rules.max_events_in_top_n
    if excess > 0:
        demote = _by_score(head_events)[::-1][:excess]  # lowest-scored first
        promote = _by_score([item for item in tail if not item.is_event])[: len(demote)]
        demote = demote[: len(promote)]
        if promote:
            demote_ids = {item.id for item in demote}
            promote_ids = {item.id for item in promote}
            head = _by_score([item for item in head if item.id not in demote_ids] + promote)
            tail = _by_score([item for item in tail if item.id not in promote_ids] + demote)
            items = head + tail
            logger.debug("Event balance: moved %d event(s) out of the top %d", len(demote), top_n)

    # Make sure a few events are visible in the wider window
    window = rules.event_visibility_window
    visible_events = sum(1 for item in items[:window] if item.is_event)
    needed = rules.min_events_in_window - visible_events
    if needed > 0 and len(items) > window:
        promote = _by_score([item for item in items[window:] if item.is_event])[:needed]
        head_events = sum(1 for item in items[:top_n] if item.is_event)
        for event in promote:
            # Replace the lowest non-event in the window, preferring slots below the top N
            slot = None
            for index in range(min(window, len(items)) - 1, -1, -1):
                if items[index].is_event:
                    continue
                if index < top_n and head_events >= rules.max_events_in_top_n:
                    continue
                slot = index
                break
            if slot is None:
                break
            source = items.index(event)
            items[slot], items[source] = items[source], items[slot]
            if slot < top_n:
                head_events += 1
        items = (
            _by_score(items[: min(top_n, window)])
            + _by_score(items[min(top_n, window):window])
            + _by_score(items[window:])
        )

    return items


def cap_sponsored(ranked: Sequence[ScoredCandidate], rules: RankingRules = DEFAULT_RULES) -> List[ScoredCandidate]:
    items = list(ranked)
    top_n = rules.sponsored_top_n
    head, tail = items[:top_n], items[top_n:]
    sponsored = [item for item in head if item.sponsored]
    excess = len(sponsored) - rules.max_sponsored_in_top_n
    if excess <= 0:
        return items

    demote = _by_score(sponsored)[::-1][:excess]
    promote = _by_score([item for item in tail if not item.sponsored])[: len(demote)]
    demote = demote[: len(promote)]
    if not promote:
        return items

    demote_ids = {item.id for item in demote}
    promote_ids = {item.id for item in promote}
    head = _by_score([item for item in head if item.id not in demote_ids] + promote)
    # Demoted entries sit right below the capped head
    tail = _by_score(demote) + [item for item in tail if item.id not in promote_ids]
    logger.debug("Sponsorship cap: moved %d sponsored candidate(s) out of the top %d", len(demote), top_n)
    return head + tail


def apply_business_rules(
    scored: Sequence[ScoredCandidate],
    max_results: int,
    rules: RankingRules = DEFAULT_RULES,
) -> List[ScoredCandidate]:
    ranked = _by_score(scored)
    ranked = dedupe_by_identity(ranked)
    ranked = dedupe_events(ranked)
    ranked = suppress_consecutive_duplicates(ranked)
    ranked = enforce_category_diversity(ranked, rules)
    ranked = balance_events(ranked, rules)
    ranked = cap_sponsored(ranked, rules)
    # Event and sponsorship moves go by score and can undo diversity swaps
    ranked = enforce_category_diversity(ranked, rules, keep_placement=True)
    return ranked[:max_results]
