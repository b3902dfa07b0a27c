from __future__ import annotations

from decimal import Decimal

import pytest

from seo_insight.errors import DataIntegrityError
from seo_insight.models import ComparisonItem
from seo_insight.validation import (
    check_item_integrity,
    decode_aggregate_rows,
    decode_comparison_item,
    decode_comparison_rows,
    decode_metric_aggregate,
)


def test_decode_accepts_camel_case_and_string_numbers() -> None:
    item = decode_comparison_item(
        {
            "key": "https://example.com/a",
            "clicks": "12",
            "impressions": 300,
            "avgPosition": Decimal("4.25"),
            "prevClicks": 7,
            "prevImpressions": "",
            "prevAvgPosition": None,
        }
    )

    assert item.clicks == 12
    assert item.avg_position == pytest.approx(4.25)
    assert item.prev_clicks == 7
    assert item.prev_impressions == 0
    assert item.prev_avg_position == 0.0
    assert item.click_delta == 5


def test_decode_metric_aggregate_falls_back_to_entity_column() -> None:
    row = decode_metric_aggregate({"query": "running shoes", "clicks": 4, "impressions": 50})

    assert row.key == "running shoes"
    assert row.avg_position == 0.0
    assert row.ctr == pytest.approx(8.0)


@pytest.mark.parametrize(
    "row",
    [
        {"key": "a", "clicks": -1},
        {"key": "a", "clicks": 1.5},
        {"key": "a", "clicks": "many"},
        {"key": "a", "clicks": True},
        {"key": "a", "clicks": 1, "avg_position": float("inf")},
        {"key": "a", "clicks": 1, "avg_position": -2.0},
        {"clicks": 1},
    ],
)
def test_malformed_rows_raise_integrity_error(row) -> None:
    with pytest.raises(DataIntegrityError):
        decode_metric_aggregate(row)


def test_decode_rows_quarantines_bad_rows(caplog) -> None:
    rows = [
        {"key": "good", "clicks": 5, "impressions": 10, "avg_position": 2.0},
        {"key": "bad", "clicks": -5, "impressions": 10, "avg_position": 2.0},
    ]

    with caplog.at_level("WARNING"):
        decoded, quarantined = decode_aggregate_rows(rows)

    assert [row.key for row in decoded] == ["good"]
    assert len(quarantined) == 1
    assert quarantined[0].key == "bad"
    assert "Quarantined" in caplog.text


def test_decode_comparison_rows_keeps_zero_impression_ctr() -> None:
    decoded, quarantined = decode_comparison_rows(
        [{"key": "q", "clicks": 0, "impressions": 0, "prev_clicks": 4, "prev_impressions": 0}]
    )

    assert quarantined == []
    assert decoded[0].ctr == 0.0
    assert decoded[0].prev_ctr == 0.0


def test_check_item_integrity_flags_negative_values() -> None:
    item = ComparisonItem("a", 1, 1, 1.0, 1, -1, 1.0)

    with pytest.raises(DataIntegrityError) as excinfo:
        check_item_integrity(item)
    assert excinfo.value.key == "a"
    assert "prev_impressions" in excinfo.value.reason
