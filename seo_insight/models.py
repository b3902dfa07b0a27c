from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date


ENTITY_TYPES = ("url", "query")
METRICS = ("clicks", "position")
TRENDS = ("rising", "falling")
SORT_MODES = ("percentage", "absolute")
COMPARISON_MODES = ("previous_period", "previous_year")
LANGUAGES = ("en", "tr")


@dataclass(frozen=True)
class DateWindow:
    start: date
    end: date
    name: str = ""

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1

    @classmethod
    def from_iso(cls, start: str, end: str, name: str = "") -> "DateWindow":
        return cls(date.fromisoformat(start.strip()), date.fromisoformat(end.strip()), name)

    def isoformat(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    def label(self) -> str:
        return f"{self.start.isoformat()} - {self.end.isoformat()}"


def _ctr(clicks: float, impressions: float) -> float:
    if impressions > 0:
        return clicks / impressions * 100
    return 0.0


@dataclass(frozen=True)
class MetricAggregate:
    """Summed performance of one key (URL or query) over one window.

    ``avg_position`` is 0.0 when the key had no data in the window.
    """

    key: str
    clicks: int
    impressions: int
    avg_position: float

    @property
    def ctr(self) -> float:
        return _ctr(self.clicks, self.impressions)


@dataclass(frozen=True)
class ComparisonItem:
    key: str
    clicks: int
    impressions: int
    avg_position: float
    prev_clicks: int
    prev_impressions: int
    prev_avg_position: float

    @property
    def ctr(self) -> float:
        return _ctr(self.clicks, self.impressions)

    @property
    def prev_ctr(self) -> float:
        return _ctr(self.prev_clicks, self.prev_impressions)

    @property
    def click_delta(self) -> int:
        return self.clicks - self.prev_clicks

    @property
    def position_delta(self) -> float:
        # Negative means the key moved up in search results.
        return self.avg_position - self.prev_avg_position

    @classmethod
    def from_aggregates(
        cls,
        key: str,
        current: MetricAggregate | None,
        previous: MetricAggregate | None,
    ) -> "ComparisonItem":
        current = current or MetricAggregate(key=key, clicks=0, impressions=0, avg_position=0.0)
        previous = previous or MetricAggregate(key=key, clicks=0, impressions=0, avg_position=0.0)
        return cls(
            key=key,
            clicks=current.clicks,
            impressions=current.impressions,
            avg_position=current.avg_position,
            prev_clicks=previous.clicks,
            prev_impressions=previous.impressions,
            prev_avg_position=previous.avg_position,
        )


@dataclass(frozen=True)
class MetricSummary:
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    avg_position: float = 0.0

    @classmethod
    def from_aggregates(cls, rows: list[MetricAggregate]) -> "MetricSummary":
        if not rows:
            return cls()

        total_clicks = sum(row.clicks for row in rows)
        total_impressions = sum(row.impressions for row in rows)
        weighted_position = (
            sum(row.avg_position * row.impressions for row in rows) / total_impressions
            if total_impressions
            else 0.0
        )
        return cls(
            clicks=total_clicks,
            impressions=total_impressions,
            ctr=_ctr(total_clicks, total_impressions),
            avg_position=weighted_position,
        )


@dataclass(frozen=True)
class SummaryStats:
    current: MetricSummary
    previous: MetricSummary
    previous_year: MetricSummary


@dataclass(frozen=True)
class ComparisonPage:
    items: tuple[ComparisonItem, ...]
    page: int
    page_size: int
    total_items: int
    total_pages: int


@dataclass(frozen=True)
class Leaderboard:
    metric: str
    trend: str
    sort_mode: str
    items: tuple[ComparisonItem, ...] = field(default_factory=tuple)
