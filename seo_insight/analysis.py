from __future__ import annotations

from seo_insight.models import MetricAggregate, MetricSummary, SummaryStats


def safe_delta_pct(current: float, previous: float) -> float:
    """Percentage change with a zero baseline reported as 100 (growth) or 0."""
    if previous > 0:
        return (current - previous) / previous * 100
    if current > 0:
        return 100.0
    return 0.0


def build_summary_stats(
    current: MetricSummary,
    previous: MetricSummary,
    previous_year: MetricSummary,
) -> SummaryStats:
    return SummaryStats(current=current, previous=previous, previous_year=previous_year)


def _changes(current: MetricSummary, baseline: MetricSummary) -> dict[str, float]:
    has_positions = current.avg_position > 0 and baseline.avg_position > 0
    return {
        "clicks_pct": safe_delta_pct(current.clicks, baseline.clicks),
        "impressions_pct": safe_delta_pct(current.impressions, baseline.impressions),
        "ctr_points": current.ctr - baseline.ctr,
        "position_delta": (current.avg_position - baseline.avg_position) if has_positions else 0.0,
    }


def summary_changes(stats: SummaryStats) -> dict[str, dict[str, float]]:
    return {
        "previous": _changes(stats.current, stats.previous),
        "previous_year": _changes(stats.current, stats.previous_year),
    }


def top_by_clicks(rows: list[MetricAggregate], limit: int | None = None) -> list[MetricAggregate]:
    ranked = sorted(rows, key=lambda row: (-row.clicks, row.key))
    return ranked if limit is None else ranked[: max(0, limit)]


def striking_distance(
    rows: list[MetricAggregate],
    low: float = 11.0,
    high: float = 20.0,
) -> list[MetricAggregate]:
    # Page two of the results, where small gains move a key onto page one.
    return [row for row in top_by_clicks(rows) if low <= row.avg_position <= high]
