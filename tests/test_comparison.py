from __future__ import annotations

import math

import pytest

from seo_insight.comparison import (
    LEADERBOARD_CARDS,
    build_leaderboards,
    compute_percentage_change,
    detect_common_prefix,
    filter_by_keyword,
    format_delta,
    join_aggregates,
    paginate,
    rank_detail,
    rank_top,
    strip_prefix,
)
from seo_insight.models import ComparisonItem, MetricAggregate


def _item(
    key: str,
    clicks: int = 0,
    prev_clicks: int = 0,
    avg_position: float = 0.0,
    prev_avg_position: float = 0.0,
) -> ComparisonItem:
    return ComparisonItem(
        key=key,
        clicks=clicks,
        impressions=clicks * 10,
        avg_position=avg_position,
        prev_clicks=prev_clicks,
        prev_impressions=prev_clicks * 10,
        prev_avg_position=prev_avg_position,
    )


def _keys(items) -> list[str]:
    return [item.key for item in items]


def test_new_key_uses_click_denominator_floor() -> None:
    item = _item("new", clicks=50, prev_clicks=0)
    assert compute_percentage_change(item, "clicks") == 5000.0


def test_position_change_is_positive_when_rank_improves() -> None:
    improved = _item("a", avg_position=5.0, prev_avg_position=10.0)
    declined = _item("b", avg_position=12.0, prev_avg_position=8.0)

    assert compute_percentage_change(improved, "position") == pytest.approx(50.0)
    assert improved.position_delta == -5.0
    assert compute_percentage_change(declined, "position") < 0
    assert declined.position_delta > 0


def test_position_change_uses_denominator_floor() -> None:
    item = _item("a", avg_position=0.0, prev_avg_position=0.0)
    assert compute_percentage_change(item, "position") == 0.0


def test_percentage_and_absolute_rankings_can_disagree() -> None:
    items = [
        _item("A", clicks=20, prev_clicks=10),
        _item("B", clicks=5, prev_clicks=1),
    ]

    assert _keys(rank_top(items, "clicks", "rising", "percentage")) == ["B", "A"]
    assert _keys(rank_top(items, "clicks", "rising", "absolute")) == ["A", "B"]


def test_position_ranking_skips_keys_without_both_positions() -> None:
    items = [
        _item("both", clicks=10, prev_clicks=10, avg_position=3.0, prev_avg_position=6.0),
        _item("new", clicks=10, prev_clicks=0, avg_position=2.0, prev_avg_position=0.0),
        _item("gone", clicks=0, prev_clicks=10, avg_position=0.0, prev_avg_position=4.0),
    ]

    for trend in ("rising", "falling"):
        for sort_mode in ("percentage", "absolute"):
            assert _keys(rank_top(items, "position", trend, sort_mode)) == ["both"]


def test_absolute_position_ranking_puts_biggest_improvement_first() -> None:
    items = [
        _item("small", avg_position=4.0, prev_avg_position=5.0),
        _item("worse", avg_position=8.0, prev_avg_position=3.0),
        _item("big", avg_position=4.0, prev_avg_position=10.0),
    ]

    assert _keys(rank_top(items, "position", "rising", "absolute")) == ["big", "small", "worse"]
    assert _keys(rank_top(items, "position", "falling", "absolute")) == ["worse", "small", "big"]


def test_falling_is_reverse_of_rising_for_distinct_values() -> None:
    items = [
        _item("a", clicks=30, prev_clicks=10),
        _item("b", clicks=5, prev_clicks=20),
        _item("c", clicks=12, prev_clicks=12),
        _item("d", clicks=0, prev_clicks=8),
    ]

    rising = rank_top(items, "clicks", "rising", "percentage")
    falling = rank_top(items, "clicks", "falling", "percentage")
    assert _keys(falling) == list(reversed(_keys(rising)))


def test_equal_sort_values_keep_key_order() -> None:
    items = [
        _item("b", clicks=20, prev_clicks=10),
        _item("c", clicks=8, prev_clicks=4),
        _item("a", clicks=40, prev_clicks=20),
    ]

    assert _keys(rank_top(items, "clicks", "rising", "percentage")) == ["a", "b", "c"]
    assert _keys(rank_top(items, "clicks", "falling", "percentage")) == ["a", "b", "c"]


def test_rank_top_limit_handling() -> None:
    items = [_item(f"k{i}", clicks=i + 5, prev_clicks=5) for i in range(10)]

    assert len(rank_top(items, "clicks", "rising", "absolute", limit=7)) == 7
    assert rank_top(items, "clicks", "rising", "absolute", limit=0) == []
    assert len(rank_top(items, "clicks", "rising", "absolute")) == 10
    assert rank_top([], "clicks", "rising", "absolute", limit=7) == []
    with pytest.raises(ValueError):
        rank_top(items, "clicks", "rising", "absolute", limit=-1)


def test_rank_top_rejects_unknown_choices() -> None:
    items = [_item("a", clicks=5, prev_clicks=4)]

    with pytest.raises(ValueError):
        rank_top(items, "impressions", "rising", "absolute")
    with pytest.raises(ValueError):
        rank_top(items, "clicks", "sideways", "absolute")
    with pytest.raises(ValueError):
        rank_top(items, "clicks", "rising", "relative")


def test_rank_top_does_not_mutate_input() -> None:
    items = [_item("b", clicks=1, prev_clicks=9), _item("a", clicks=9, prev_clicks=1)]
    snapshot = list(items)

    rank_top(items, "clicks", "rising", "absolute")
    assert items == snapshot


def test_malformed_items_are_excluded_from_rankings(caplog) -> None:
    items = [
        _item("ok", clicks=10, prev_clicks=5),
        _item("negative", clicks=-3, prev_clicks=5),
        _item("nan", clicks=10, prev_clicks=5, avg_position=math.nan, prev_avg_position=2.0),
    ]

    with caplog.at_level("WARNING"):
        ranked = rank_top(items, "clicks", "rising", "absolute")

    assert _keys(ranked) == ["ok"]
    assert "negative" in caplog.text


def test_keyword_filter_is_case_insensitive_and_idempotent() -> None:
    items = [_item("Red Shoes"), _item("blue shoes"), _item("hats")]

    once = filter_by_keyword(items, "SHOES")
    assert _keys(once) == ["Red Shoes", "blue shoes"]
    assert filter_by_keyword(once, "SHOES") == once
    assert filter_by_keyword(items, "") == items


def test_common_prefix_requires_scheme_and_two_keys() -> None:
    urls = [_item("https://example.com/a"), _item("https://example.com/b/c")]
    assert detect_common_prefix(urls) == "https://example.com/"

    assert detect_common_prefix([_item("https://example.com/a")]) == ""
    assert detect_common_prefix([]) == ""
    assert detect_common_prefix([_item("shoes red"), _item("shoes blue")]) == ""
    assert detect_common_prefix([_item("https://a.com/x"), _item("http://b.com/x")]) == ""


def test_strip_prefix_keeps_root_visible() -> None:
    prefix = "https://example.com/"

    assert strip_prefix("https://example.com/blog", prefix) == "blog"
    assert strip_prefix("https://example.com/", prefix) == "/"
    assert strip_prefix("https://other.com/", prefix) == "https://other.com/"
    assert strip_prefix("anything", "") == "anything"


def test_paginate_clamps_page_number() -> None:
    items = [_item(f"k{i:02d}") for i in range(45)]

    page = paginate(items, page=3, page_size=20)
    assert page.total_pages == 3
    assert page.total_items == 45
    assert len(page.items) == 5

    assert paginate(items, page=99, page_size=20).page == 3
    assert paginate(items, page=0, page_size=20).page == 1

    empty = paginate([], page=2)
    assert empty.items == ()
    assert empty.total_pages == 1
    assert empty.page == 1

    with pytest.raises(ValueError):
        paginate(items, page_size=0)


def test_rank_detail_filters_after_ranking() -> None:
    items = [
        _item("shoes red", clicks=30, prev_clicks=10),
        _item("shoes blue", clicks=15, prev_clicks=10),
        _item("hats", clicks=100, prev_clicks=10),
    ]

    page = rank_detail(items, "clicks", "rising", "absolute", term="shoes", page_size=1)
    assert _keys(page.items) == ["shoes red"]
    assert page.total_items == 2
    assert page.total_pages == 2


def test_build_leaderboards_returns_four_cards() -> None:
    items = [
        _item("a", clicks=20, prev_clicks=10, avg_position=3.0, prev_avg_position=5.0),
        _item("b", clicks=4, prev_clicks=12, avg_position=9.0, prev_avg_position=4.0),
    ]

    boards = build_leaderboards(items, "absolute", limit=1)
    assert [(board.metric, board.trend) for board in boards] == list(LEADERBOARD_CARDS)
    assert [_keys(board.items) for board in boards] == [["a"], ["b"], ["a"], ["b"]]


def test_join_aggregates_applies_activity_threshold() -> None:
    current = [
        MetricAggregate("kept", clicks=4, impressions=40, avg_position=3.0),
        MetricAggregate("quiet", clicks=3, impressions=30, avg_position=3.0),
        MetricAggregate("new", clicks=10, impressions=90, avg_position=7.0),
    ]
    previous = [
        MetricAggregate("kept", clicks=1, impressions=20, avg_position=4.0),
        MetricAggregate("quiet", clicks=3, impressions=30, avg_position=3.0),
        MetricAggregate("gone", clicks=8, impressions=50, avg_position=6.0),
    ]

    joined = {item.key: item for item in join_aggregates(current, previous)}

    assert sorted(joined) == ["gone", "kept", "new"]
    assert joined["new"].prev_clicks == 0
    assert joined["new"].prev_avg_position == 0.0
    assert joined["gone"].clicks == 0
    assert joined["gone"].prev_clicks == 8
    assert joined["kept"].click_delta == 3


def test_format_delta_matches_sort_mode() -> None:
    clicks_up = _item("a", clicks=22, prev_clicks=10)
    clicks_down = _item("b", clicks=5, prev_clicks=10)
    moved_up = _item("c", avg_position=3.5, prev_avg_position=5.0)

    assert format_delta(clicks_up, "clicks", "absolute") == "↑ 12"
    assert format_delta(clicks_down, "clicks", "percentage") == "↓ %50.0"
    assert format_delta(moved_up, "position", "absolute") == "↓ 1.5"
    assert format_delta(moved_up, "position", "percentage") == "↑ %30.0"
