from __future__ import annotations

from typing import Any, TypedDict

from langgraph.graph import END, StateGraph

from seo_insight.analysis import build_summary_stats
from seo_insight.comparison import build_leaderboards, detect_common_prefix, rank_detail
from seo_insight.config import DashboardConfig
from seo_insight.models import ComparisonItem, ComparisonPage, DateWindow, Leaderboard, SummaryStats
from seo_insight.narrative import NarrativeSummarizer
from seo_insight.reporting import build_markdown_report
from seo_insight.time_windows import (
    comparison_window,
    derive_previous_window,
    derive_previous_year_window,
)


class ComparisonState(TypedDict, total=False):
    config: DashboardConfig
    provider: Any
    summarizer: NarrativeSummarizer | None

    entity_type: str
    active: DateWindow
    comparison_mode: str
    sort_mode: str
    metric: str
    trend: str
    search_term: str
    page: int
    language: str
    include_summary: bool

    previous: DateWindow
    items: list[ComparisonItem]
    summary: SummaryStats | None
    common_prefix: str
    leaderboards: list[Leaderboard]
    detail: ComparisonPage
    narrative: str
    markdown_report: str


def fetch_summary_stats(provider: Any, active: DateWindow) -> SummaryStats:
    """Site totals for the active, previous-period and previous-year windows."""
    return build_summary_stats(
        provider.fetch_summary(active),
        provider.fetch_summary(derive_previous_window(active)),
        provider.fetch_summary(derive_previous_year_window(active)),
    )


def fetch_node(state: ComparisonState) -> ComparisonState:
    provider = state["provider"]
    active = state["active"]
    previous = comparison_window(active, state.get("comparison_mode", "previous_period"))
    items = provider.fetch_comparison_join(state["entity_type"], active, previous)

    summary = fetch_summary_stats(provider, active) if state.get("include_summary", True) else None
    return {"previous": previous, "items": list(items), "summary": summary}


def rank_node(state: ComparisonState) -> ComparisonState:
    config = state["config"]
    items = state.get("items", [])
    sort_mode = state.get("sort_mode", config.sort_mode)
    prefix = detect_common_prefix(items) if state["entity_type"] == "url" else ""
    return {
        "common_prefix": prefix,
        "leaderboards": build_leaderboards(items, sort_mode, config.leaderboard_size),
        "detail": rank_detail(
            items,
            state.get("metric", "clicks"),
            state.get("trend", "rising"),
            sort_mode,
            term=state.get("search_term", ""),
            page=state.get("page", 1),
            page_size=config.page_size,
        ),
    }


def _narrative_sample(leaderboards: list[Leaderboard]) -> list[ComparisonItem]:
    sample: list[ComparisonItem] = []
    seen: set[str] = set()
    for board in leaderboards:
        if board.metric != "clicks":
            continue
        for item in board.items:
            if item.key not in seen:
                seen.add(item.key)
                sample.append(item)
    return sample


def summarize_node(state: ComparisonState) -> ComparisonState:
    summarizer = state["summarizer"]
    entity_label = "URL" if state["entity_type"] == "url" else "Query"
    context = (
        f"{entity_label} comparison {state['active'].label()} "
        f"vs {state['previous'].label()}"
    )
    narrative = summarizer.summarize(
        context,
        _narrative_sample(state.get("leaderboards", [])),
        state.get("language", state["config"].ai_language),
    )
    return {"narrative": narrative}


def render_node(state: ComparisonState) -> ComparisonState:
    config = state["config"]
    report = build_markdown_report(
        state["entity_type"],
        state["active"],
        state["previous"],
        state.get("leaderboards", []),
        common_prefix=state.get("common_prefix", ""),
        summary=state.get("summary"),
        narrative=state.get("narrative", ""),
        detail=state.get("detail"),
        detail_metric=state.get("metric", "clicks"),
        language=state.get("language", config.ai_language),
    )
    return {"markdown_report": report}


def _route_after_rank(state: ComparisonState) -> str:
    return "summarize" if state.get("summarizer") is not None else "render"


def build_workflow_app():
    workflow = StateGraph(ComparisonState)
    workflow.add_node("fetch", fetch_node)
    workflow.add_node("rank", rank_node)
    workflow.add_node("summarize", summarize_node)
    workflow.add_node("render", render_node)

    workflow.set_entry_point("fetch")
    workflow.add_edge("fetch", "rank")
    workflow.add_conditional_edges(
        "rank",
        _route_after_rank,
        {
            "summarize": "summarize",
            "render": "render",
        },
    )
    workflow.add_edge("summarize", "render")
    workflow.add_edge("render", END)

    return workflow.compile()


def run_comparison_workflow(
    config: DashboardConfig,
    provider: Any,
    active: DateWindow,
    *,
    entity_type: str = "query",
    comparison_mode: str = "previous_period",
    sort_mode: str | None = None,
    metric: str = "clicks",
    trend: str = "rising",
    search_term: str = "",
    page: int = 1,
    language: str | None = None,
    summarizer: NarrativeSummarizer | None = None,
    include_summary: bool = True,
) -> ComparisonState:
    app = build_workflow_app()
    return app.invoke(
        {
            "config": config,
            "provider": provider,
            "summarizer": summarizer,
            "entity_type": entity_type,
            "active": active,
            "comparison_mode": comparison_mode,
            "sort_mode": sort_mode or config.sort_mode,
            "metric": metric,
            "trend": trend,
            "search_term": search_term,
            "page": page,
            "language": language or config.ai_language,
            "include_summary": include_summary,
        }
    )
