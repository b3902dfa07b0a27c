from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any, Iterable, Mapping

from seo_insight.errors import DataIntegrityError
from seo_insight.models import ComparisonItem, MetricAggregate


logger = logging.getLogger(__name__)

# Provider rows may use warehouse (snake_case) or dashboard (camelCase) column names.
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "key": ("key", "url", "query"),
    "clicks": ("clicks",),
    "impressions": ("impressions",),
    "avg_position": ("avg_position", "avgPosition", "position"),
    "prev_clicks": ("prev_clicks", "prevClicks"),
    "prev_impressions": ("prev_impressions", "prevImpressions"),
    "prev_avg_position": ("prev_avg_position", "prevAvgPosition"),
}
NUMERIC_FIELDS = (
    "clicks",
    "impressions",
    "avg_position",
    "prev_clicks",
    "prev_impressions",
    "prev_avg_position",
)


def _lookup(row: Mapping[str, Any], field_name: str) -> Any:
    for alias in FIELD_ALIASES[field_name]:
        value = row.get(alias)
        if value is not None:
            return value
    return None


def _as_number(key: str, field_name: str, value: Any) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool):
        raise DataIntegrityError(key, f"{field_name} is a boolean")
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError as exc:
            raise DataIntegrityError(key, f"{field_name} is not numeric: {value!r}") from exc
    else:
        raise DataIntegrityError(key, f"{field_name} has unsupported type {type(value).__name__}")

    if not math.isfinite(number):
        raise DataIntegrityError(key, f"{field_name} is not finite")
    return number


def _as_count(key: str, field_name: str, value: Any) -> int:
    number = _as_number(key, field_name, value)
    if number < 0:
        raise DataIntegrityError(key, f"{field_name} is negative ({number:g})")
    if number != int(number):
        raise DataIntegrityError(key, f"{field_name} is not a whole number ({number:g})")
    return int(number)


def _as_position(key: str, field_name: str, value: Any) -> float:
    number = _as_number(key, field_name, value)
    if number < 0:
        raise DataIntegrityError(key, f"{field_name} is negative ({number:g})")
    return number


def _as_key(row: Mapping[str, Any]) -> str:
    raw = _lookup(row, "key")
    key = str(raw).strip() if raw is not None else ""
    if not key:
        raise DataIntegrityError("<missing>", "row has no key")
    return key


def check_item_integrity(item: ComparisonItem) -> None:
    """Raise DataIntegrityError when an item cannot be ranked safely."""
    for field_name in NUMERIC_FIELDS:
        value = getattr(item, field_name)
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise DataIntegrityError(item.key, f"{field_name} is not numeric")
        if not math.isfinite(value):
            raise DataIntegrityError(item.key, f"{field_name} is not finite")
        if value < 0:
            raise DataIntegrityError(item.key, f"{field_name} is negative ({value:g})")


def decode_metric_aggregate(row: Mapping[str, Any]) -> MetricAggregate:
    key = _as_key(row)
    return MetricAggregate(
        key=key,
        clicks=_as_count(key, "clicks", _lookup(row, "clicks")),
        impressions=_as_count(key, "impressions", _lookup(row, "impressions")),
        avg_position=_as_position(key, "avg_position", _lookup(row, "avg_position")),
    )


def decode_comparison_item(row: Mapping[str, Any]) -> ComparisonItem:
    key = _as_key(row)
    return ComparisonItem(
        key=key,
        clicks=_as_count(key, "clicks", _lookup(row, "clicks")),
        impressions=_as_count(key, "impressions", _lookup(row, "impressions")),
        avg_position=_as_position(key, "avg_position", _lookup(row, "avg_position")),
        prev_clicks=_as_count(key, "prev_clicks", _lookup(row, "prev_clicks")),
        prev_impressions=_as_count(key, "prev_impressions", _lookup(row, "prev_impressions")),
        prev_avg_position=_as_position(
            key, "prev_avg_position", _lookup(row, "prev_avg_position")
        ),
    )


def decode_aggregate_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[MetricAggregate], list[DataIntegrityError]]:
    decoded: list[MetricAggregate] = []
    quarantined: list[DataIntegrityError] = []
    for row in rows:
        try:
            decoded.append(decode_metric_aggregate(row))
        except DataIntegrityError as exc:
            logger.warning("Quarantined aggregate row: %s", exc)
            quarantined.append(exc)
    return decoded, quarantined


def decode_comparison_rows(
    rows: Iterable[Mapping[str, Any]],
) -> tuple[list[ComparisonItem], list[DataIntegrityError]]:
    decoded: list[ComparisonItem] = []
    quarantined: list[DataIntegrityError] = []
    for row in rows:
        try:
            decoded.append(decode_comparison_item(row))
        except DataIntegrityError as exc:
            logger.warning("Quarantined comparison row: %s", exc)
            quarantined.append(exc)
    return decoded, quarantined
