from __future__ import annotations

import argparse
from dataclasses import replace
from datetime import date
import logging
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

from seo_insight.clients.bigquery_client import SearchConsoleBigQueryClient
from seo_insight.config import DashboardConfig
from seo_insight.errors import InvalidRangeError, UpstreamError
from seo_insight.llm import build_llm
from seo_insight.models import (
    COMPARISON_MODES,
    ENTITY_TYPES,
    LANGUAGES,
    METRICS,
    SORT_MODES,
    TRENDS,
    DateWindow,
)
from seo_insight.narrative import NarrativeSummarizer
from seo_insight.reporting import build_drilldown_report, build_overview_report, write_docx
from seo_insight.time_windows import PRESETS, default_window, preset_window
from seo_insight.workflow import fetch_summary_stats, run_comparison_workflow


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Compare Search Console performance between two periods from BigQuery."
    )
    parser.add_argument("--start", default="", help="Active window start (YYYY-MM-DD).")
    parser.add_argument("--end", default="", help="Active window end (YYYY-MM-DD).")
    parser.add_argument("--preset", choices=PRESETS, default="", help="Named date range.")
    parser.add_argument("--entity", choices=ENTITY_TYPES, default="query")
    parser.add_argument("--compare", choices=COMPARISON_MODES, default="previous_period")
    parser.add_argument("--sort-mode", choices=SORT_MODES, default=None)
    parser.add_argument("--metric", choices=METRICS, default="clicks", help="Metric of the full list.")
    parser.add_argument("--trend", choices=TRENDS, default="rising", help="Direction of the full list.")
    parser.add_argument("--search", default="", help="Keyword filter for the full list.")
    parser.add_argument("--page", type=int, default=1)
    parser.add_argument("--top", type=int, default=None, help="Leaderboard size.")
    parser.add_argument("--language", choices=LANGUAGES, default=None)
    parser.add_argument("--no-llm", action="store_true", help="Skip the AI narrative.")
    parser.add_argument("--no-summary", action="store_true", help="Skip summary cards.")
    parser.add_argument("--output", default="", help="Write the report to a .md or .docx file.")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--overview", action="store_true", help="Top pages and queries instead of a comparison.")
    mode.add_argument("--detail-url", default="", help="Queries that brought traffic to one page.")
    mode.add_argument("--detail-query", default="", help="Pages competing for one query.")
    return parser.parse_args(argv)


def _resolve_window(args: argparse.Namespace, today: date | None = None) -> DateWindow:
    if args.preset:
        return preset_window(args.preset, today)
    if args.start or args.end:
        if not (args.start and args.end):
            raise SystemExit("Both --start and --end are required for a custom range.")
        try:
            window = DateWindow.from_iso(args.start, args.end, "Custom range")
        except ValueError as exc:
            raise SystemExit(f"Invalid date: {exc}") from exc
        if window.end < window.start:
            raise SystemExit(f"Invalid date range: --start {args.start} is after --end {args.end}.")
        return window
    return default_window(today)


def _banner(args: argparse.Namespace, window: DateWindow, table_ref: str) -> str:
    if args.overview:
        return f"Top pages and queries for {window.label()} on {table_ref}"
    if args.detail_url:
        return f"Queries for {args.detail_url} in {window.label()} on {table_ref}"
    if args.detail_query:
        return f"Pages for {args.detail_query!r} in {window.label()} on {table_ref}"
    return f"Comparing {args.entity} performance for {window.label()} ({args.compare}) on {table_ref}"


def _build_summarizer(config: DashboardConfig, disabled: bool) -> NarrativeSummarizer | None:
    if disabled or not config.use_llm_summary:
        return None
    if not config.llm_enabled:
        print("LLM summary: not configured, skipping narrative.")
        return None
    return NarrativeSummarizer(build_llm(config))


def _build_report(
    args: argparse.Namespace,
    config: DashboardConfig,
    provider: SearchConsoleBigQueryClient,
    window: DateWindow,
) -> str:
    language = args.language or config.ai_language
    summarizer = _build_summarizer(config, args.no_llm)

    if args.overview:
        return build_overview_report(
            window,
            provider.fetch_top("url", window, config.page_size),
            provider.fetch_top("query", window, config.page_size),
            summary=None if args.no_summary else fetch_summary_stats(provider, window),
            language=language,
        )

    if args.detail_url or args.detail_query:
        if args.detail_url:
            context = f"URL: {args.detail_url}"
            rows = provider.fetch_url_details(args.detail_url, window)
            key_header = "Query"
        else:
            context = f"Query: {args.detail_query}"
            rows = provider.fetch_query_details(args.detail_query, window)
            key_header = "URL"
        narrative = summarizer.summarize(context, rows, language) if summarizer else ""
        return build_drilldown_report(
            context, window, rows, key_header, narrative=narrative, language=language
        )

    final_state = run_comparison_workflow(
        config,
        provider,
        window,
        entity_type=args.entity,
        comparison_mode=args.compare,
        sort_mode=args.sort_mode,
        metric=args.metric,
        trend=args.trend,
        search_term=args.search,
        page=args.page,
        language=language,
        summarizer=summarizer,
        include_summary=not args.no_summary,
    )
    return str(final_state.get("markdown_report", ""))


def main(argv: list[str] | None = None) -> None:
    try:
        load_dotenv(find_dotenv(usecwd=True), override=False)
    except Exception:
        pass

    args = _parse_args(argv)
    config = DashboardConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if args.top is not None:
        config = replace(config, leaderboard_size=max(1, args.top))

    if not config.bigquery_enabled:
        raise SystemExit(
            "BigQuery is not configured. Provide BQ_PROJECT_ID and either "
            "BQ_ACCESS_TOKEN or BQ_CREDENTIALS_PATH."
        )

    window = _resolve_window(args)
    provider = SearchConsoleBigQueryClient.from_config(config)
    print(_banner(args, window, config.table_ref))

    try:
        report = _build_report(args, config, provider, window)
    except InvalidRangeError as exc:
        raise SystemExit(f"Invalid date range: {exc}") from exc
    except UpstreamError as exc:
        if exc.is_auth_error:
            raise SystemExit(
                f"BigQuery authentication failed: {exc}\n"
                "Refresh BQ_ACCESS_TOKEN or check BQ_CREDENTIALS_PATH."
            ) from exc
        raise SystemExit(f"BigQuery request failed: {exc}") from exc

    if not args.output:
        print(report)
        return

    output_path = Path(args.output)
    if not output_path.is_absolute() and output_path.parent == Path("."):
        output_path = Path(config.output_dir) / output_path
    if output_path.suffix.lower() == ".docx":
        write_docx(output_path, f"SEO Insight {window.label()}", report)
    else:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(report, encoding="utf-8")
    print(f"Report written: {output_path}")


if __name__ == "__main__":
    main()
