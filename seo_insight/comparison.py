from __future__ import annotations

import logging
import math
from typing import Callable, Iterable, Sequence

from seo_insight.errors import DataIntegrityError
from seo_insight.models import (
    METRICS,
    SORT_MODES,
    TRENDS,
    ComparisonItem,
    ComparisonPage,
    Leaderboard,
    MetricAggregate,
)
from seo_insight.validation import check_item_integrity


logger = logging.getLogger(__name__)

DEFAULT_LEADERBOARD_SIZE = 7
DEFAULT_PAGE_SIZE = 20
DEFAULT_MIN_ACTIVITY_CLICKS = 3
LEADERBOARD_CARDS = (
    ("clicks", "rising"),
    ("clicks", "falling"),
    ("position", "rising"),
    ("position", "falling"),
)


def _check_choice(name: str, value: str, choices: tuple[str, ...]) -> None:
    if value not in choices:
        raise ValueError(f"Unknown {name}: {value!r} (expected one of {choices})")


def compute_percentage_change(item: ComparisonItem, metric: str) -> float:
    """Relative change of ``item`` for ``metric``, in percent.

    Clicks use a denominator floor of 1, so a key with no prior clicks reports
    ``clicks * 100``. Position is positive when the position number dropped
    (an improvement) and uses a denominator floor of 0.1.
    """
    _check_choice("metric", metric, METRICS)
    if metric == "clicks":
        return item.click_delta / max(item.prev_clicks, 1) * 100
    return (item.prev_avg_position - item.avg_position) / max(item.prev_avg_position, 0.1) * 100


def _has_position_in_both(item: ComparisonItem) -> bool:
    return item.prev_avg_position > 0 and item.avg_position > 0


def _screen(items: Iterable[ComparisonItem]) -> list[ComparisonItem]:
    kept: list[ComparisonItem] = []
    for item in items:
        try:
            check_item_integrity(item)
        except DataIntegrityError as exc:
            logger.warning("Excluded from ranking: %s", exc)
            continue
        kept.append(item)
    return kept


def _sort_key(metric: str, sort_mode: str) -> Callable[[ComparisonItem], float]:
    if sort_mode == "percentage":
        return lambda item: compute_percentage_change(item, metric)
    if metric == "clicks":
        return lambda item: item.click_delta
    return lambda item: item.position_delta


def _descending(metric: str, trend: str, sort_mode: str) -> bool:
    if metric == "position" and sort_mode == "absolute":
        # Most negative position delta is the biggest improvement.
        return trend == "falling"
    return trend == "rising"


def rank_top(
    items: Iterable[ComparisonItem],
    metric: str,
    trend: str,
    sort_mode: str,
    limit: int | None = None,
) -> list[ComparisonItem]:
    """Rank comparison items into a leaderboard of at most ``limit`` rows.

    Position rankings skip keys without a measurable position in both windows.
    Equal sort values keep ``key`` ascending order.
    """
    _check_choice("metric", metric, METRICS)
    _check_choice("trend", trend, TRENDS)
    _check_choice("sort mode", sort_mode, SORT_MODES)
    if limit is not None and limit < 0:
        raise ValueError(f"limit must be non-negative, got {limit}")

    candidates = _screen(items)
    if metric == "position":
        candidates = [item for item in candidates if _has_position_in_both(item)]

    candidates.sort(key=lambda item: item.key)
    candidates.sort(key=_sort_key(metric, sort_mode), reverse=_descending(metric, trend, sort_mode))

    if limit is None:
        return candidates
    return candidates[:limit]


def filter_by_keyword(items: Sequence[ComparisonItem], term: str) -> list[ComparisonItem]:
    needle = (term or "").lower()
    if not needle:
        return list(items)
    return [item for item in items if needle in item.key.lower()]


def detect_common_prefix(items: Sequence[ComparisonItem]) -> str:
    """Longest shared leading text of all keys, when it looks like scheme+host."""
    if len(items) < 2:
        return ""

    keys = [item.key for item in items]
    first = keys[0]
    length = 0
    for index, char in enumerate(first):
        if all(len(key) > index and key[index] == char for key in keys[1:]):
            length = index + 1
        else:
            break

    common = first[:length]
    return common if "://" in common else ""


def strip_prefix(key: str, prefix: str) -> str:
    if prefix and key.startswith(prefix):
        return key[len(prefix):] or "/"
    return key


def paginate(
    items: Sequence[ComparisonItem],
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ComparisonPage:
    if page_size < 1:
        raise ValueError(f"page_size must be at least 1, got {page_size}")

    total_items = len(items)
    total_pages = max(1, math.ceil(total_items / page_size))
    current = min(max(1, int(page)), total_pages)
    start = (current - 1) * page_size
    return ComparisonPage(
        items=tuple(items[start:start + page_size]),
        page=current,
        page_size=page_size,
        total_items=total_items,
        total_pages=total_pages,
    )


def rank_detail(
    items: Iterable[ComparisonItem],
    metric: str,
    trend: str,
    sort_mode: str,
    term: str = "",
    page: int = 1,
    page_size: int = DEFAULT_PAGE_SIZE,
) -> ComparisonPage:
    ranked = rank_top(items, metric, trend, sort_mode, limit=None)
    return paginate(filter_by_keyword(ranked, term), page=page, page_size=page_size)


def build_leaderboards(
    items: Sequence[ComparisonItem],
    sort_mode: str,
    limit: int = DEFAULT_LEADERBOARD_SIZE,
) -> list[Leaderboard]:
    return [
        Leaderboard(
            metric=metric,
            trend=trend,
            sort_mode=sort_mode,
            items=tuple(rank_top(items, metric, trend, sort_mode, limit)),
        )
        for metric, trend in LEADERBOARD_CARDS
    ]


def join_aggregates(
    current: Iterable[MetricAggregate],
    previous: Iterable[MetricAggregate],
    min_clicks: int = DEFAULT_MIN_ACTIVITY_CLICKS,
) -> list[ComparisonItem]:
    """Full outer join of two windows on ``key`` with the activity threshold applied."""
    current_map = {row.key: row for row in current}
    previous_map = {row.key: row for row in previous}

    joined: list[ComparisonItem] = []
    for key in sorted(set(current_map) | set(previous_map)):
        item = ComparisonItem.from_aggregates(key, current_map.get(key), previous_map.get(key))
        if item.clicks > min_clicks or item.prev_clicks > min_clicks:
            joined.append(item)
    return joined


def format_delta(item: ComparisonItem, metric: str, sort_mode: str) -> str:
    _check_choice("metric", metric, METRICS)
    _check_choice("sort mode", sort_mode, SORT_MODES)
    if sort_mode == "absolute":
        value = item.click_delta if metric == "clicks" else item.position_delta
        arrow = "↑" if value > 0 else "↓"
        digits = 1 if metric == "position" else 0
        return f"{arrow} {abs(value):.{digits}f}"

    pct = compute_percentage_change(item, metric)
    arrow = "↑" if pct > 0 else "↓"
    return f"{arrow} %{abs(pct):.1f}"
