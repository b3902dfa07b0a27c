from __future__ import annotations

import re
from pathlib import Path
from typing import Sequence

from docx import Document
from docx.shared import Pt, RGBColor

from seo_insight.analysis import striking_distance, summary_changes
from seo_insight.comparison import compute_percentage_change, format_delta, strip_prefix
from seo_insight.models import (
    ComparisonItem,
    ComparisonPage,
    DateWindow,
    Leaderboard,
    MetricAggregate,
    SummaryStats,
)


BOLD_MARKDOWN_RE = re.compile(r"\*\*(.+?)\*\*")
SIGNED_VALUE_RE = re.compile(
    r"(?<!\w)([+-](?:\d[\d\s.,]*)%?(?:\s*pp)?)"
)

DARK_GREEN = RGBColor(0x1B, 0x5E, 0x20)
DARK_RED = RGBColor(0x8B, 0x00, 0x00)

# Table cells where a negative change is an improvement.
POSITION_DELTA_HEADER = "Pos. delta"
AVG_POSITION_ROW = "Avg. position"

LABELS = {
    "en": {
        "title": "Search Performance Comparison",
        "active": "Active window",
        "previous": "Comparison window",
        "summary": "Summary",
        "insights": "AI Insights",
        "leaderboards": "Top Movers",
        "detail": "Full List",
        "common_prefix": "Shared prefix hidden",
        "url": "Page",
        "query": "Query",
        ("clicks", "rising"): "Clicks Rising",
        ("clicks", "falling"): "Clicks Falling",
        ("position", "rising"): "Position Improving",
        ("position", "falling"): "Position Declining",
        "prev": "Prev.",
        "delta": "Change",
        "no_rows": "No rows.",
        "page": "Page",
        "striking": "Striking Distance (position 11-20)",
    },
    "tr": {
        "title": "Arama Performansı Karşılaştırması",
        "active": "Aktif aralık",
        "previous": "Karşılaştırma aralığı",
        "summary": "Özet",
        "insights": "Yapay Zeka İçgörüleri",
        "leaderboards": "En Çok Değişenler",
        "detail": "Tam Liste",
        "common_prefix": "Ortak önek gizlendi",
        "url": "Sayfa",
        "query": "Sorgu",
        ("clicks", "rising"): "Tıklama Artanlar",
        ("clicks", "falling"): "Tıklama Azalanlar",
        ("position", "rising"): "Pozisyonu Yükselenler",
        ("position", "falling"): "Pozisyonu Düşenler",
        "prev": "Önc.",
        "delta": "Fark",
        "no_rows": "Sonuç yok.",
        "page": "Sayfa",
        "striking": "İlk Sayfaya Yakın (pozisyon 11-20)",
    },
}


def _labels(language: str) -> dict:
    return LABELS.get(language, LABELS["en"])


def _fmt_int(value: float | int) -> str:
    try:
        rounded = int(round(float(value)))
    except (TypeError, ValueError):
        return "0"
    return f"{rounded:,}".replace(",", " ")


def _fmt_signed_int(value: float | int) -> str:
    try:
        raw = float(value)
    except (TypeError, ValueError):
        raw = 0.0
    sign = "+" if raw >= 0 else "-"
    return f"{sign}{_fmt_int(abs(raw))}"


def _fmt_signed_float(value: float, digits: int = 1) -> str:
    return f"{value:+.{digits}f}"


def _cell(text: str) -> str:
    return text.replace("|", "\\|")


def _summary_lines(stats: SummaryStats, language: str) -> list[str]:
    labels = _labels(language)
    changes = summary_changes(stats)
    rows = [
        ("Clicks", _fmt_int(stats.current.clicks), changes["previous"]["clicks_pct"], changes["previous_year"]["clicks_pct"]),
        ("Impressions", _fmt_int(stats.current.impressions), changes["previous"]["impressions_pct"], changes["previous_year"]["impressions_pct"]),
    ]
    lines = [
        f"## {labels['summary']}",
        "",
        "| Metric | Current | vs previous | vs previous year |",
        "| --- | --- | --- | --- |",
    ]
    for name, current, vs_previous, vs_year in rows:
        lines.append(
            f"| {name} | {current} | {_fmt_signed_float(vs_previous)}% | {_fmt_signed_float(vs_year)}% |"
        )
    lines.append(
        f"| CTR | {stats.current.ctr:.2f}% | "
        f"{_fmt_signed_float(changes['previous']['ctr_points'], 2)} pp | "
        f"{_fmt_signed_float(changes['previous_year']['ctr_points'], 2)} pp |"
    )
    lines.append(
        f"| {AVG_POSITION_ROW} | {stats.current.avg_position:.1f} | "
        f"{_fmt_signed_float(changes['previous']['position_delta'])} | "
        f"{_fmt_signed_float(changes['previous_year']['position_delta'])} |"
    )
    lines.append("")
    return lines


def _leaderboard_lines(
    board: Leaderboard,
    entity_type: str,
    prefix: str,
    language: str,
) -> list[str]:
    labels = _labels(language)
    lines = [f"### {labels[(board.metric, board.trend)]}", ""]
    if not board.items:
        return lines + [labels["no_rows"], ""]

    lines.append(f"| {labels[entity_type]} | {labels['prev']} | {labels['delta']} |")
    lines.append("| --- | --- | --- |")
    for item in board.items:
        previous = _fmt_int(item.prev_clicks) if board.metric == "clicks" else f"{item.prev_avg_position:.1f}"
        lines.append(
            f"| {_cell(strip_prefix(item.key, prefix))} | {previous} | "
            f"{format_delta(item, board.metric, board.sort_mode)} |"
        )
    lines.append("")
    return lines


def detail_table_lines(
    items: Sequence[ComparisonItem],
    metric: str,
    entity_type: str,
    language: str = "en",
) -> list[str]:
    labels = _labels(language)
    if not items:
        return [labels["no_rows"]]

    lines = [
        f"| {labels[entity_type]} | Prev. clicks | Clicks | Click delta | Prev. pos. | Pos. | {POSITION_DELTA_HEADER} | Change % |",
        "| --- | --- | --- | --- | --- | --- | --- | --- |",
    ]
    for item in items:
        lines.append(
            f"| {_cell(item.key)} | {_fmt_int(item.prev_clicks)} | {_fmt_int(item.clicks)} | "
            f"{_fmt_signed_int(item.click_delta)} | {item.prev_avg_position:.1f} | "
            f"{item.avg_position:.1f} | {_fmt_signed_float(item.position_delta)} | "
            f"%{compute_percentage_change(item, metric):.1f} |"
        )
    return lines


def aggregate_table_lines(rows: Sequence[MetricAggregate], key_header: str) -> list[str]:
    lines = [
        f"| {key_header} | Clicks | Impressions | CTR | Avg. pos. |",
        "| --- | --- | --- | --- | --- |",
    ]
    for row in rows:
        lines.append(
            f"| {_cell(row.key)} | {_fmt_int(row.clicks)} | {_fmt_int(row.impressions)} | "
            f"{row.ctr:.2f}% | {row.avg_position:.1f} |"
        )
    return lines


def build_overview_report(
    window: DateWindow,
    pages: Sequence[MetricAggregate],
    queries: Sequence[MetricAggregate],
    *,
    summary: SummaryStats | None = None,
    language: str = "en",
) -> str:
    labels = _labels(language)
    lines = [f"# {labels['title']}", "", f"- **{labels['active']}**: {window.label()}", ""]
    if summary is not None:
        lines.extend(_summary_lines(summary, language))
    lines.extend([f"## {labels['url']}", ""])
    lines.extend(aggregate_table_lines(pages, "URL"))
    lines.extend(["", f"## {labels['query']}", ""])
    lines.extend(aggregate_table_lines(queries, labels["query"]))

    near_page_one = striking_distance(list(queries))
    lines.extend(["", f"## {labels['striking']}", ""])
    lines.extend(
        aggregate_table_lines(near_page_one, labels["query"]) if near_page_one else [labels["no_rows"]]
    )
    return "\n".join(lines).rstrip() + "\n"


def build_drilldown_report(
    context: str,
    window: DateWindow,
    rows: Sequence[MetricAggregate],
    key_header: str,
    *,
    narrative: str = "",
    language: str = "en",
) -> str:
    labels = _labels(language)
    lines = [f"# {context}", "", f"- **{labels['active']}**: {window.label()}", ""]
    if narrative.strip():
        lines.extend([f"## {labels['insights']}", "", narrative.strip(), ""])
    lines.extend(aggregate_table_lines(rows, key_header) if rows else [labels["no_rows"]])
    return "\n".join(lines).rstrip() + "\n"


def build_markdown_report(
    entity_type: str,
    active: DateWindow,
    previous: DateWindow,
    leaderboards: Sequence[Leaderboard],
    *,
    common_prefix: str = "",
    summary: SummaryStats | None = None,
    narrative: str = "",
    detail: ComparisonPage | None = None,
    detail_metric: str = "clicks",
    language: str = "en",
) -> str:
    labels = _labels(language)
    lines = [
        f"# {labels['title']}",
        "",
        f"- **{labels['active']}**: {active.label()} ({active.days} d)",
        f"- **{labels['previous']}**: {previous.label()} ({previous.days} d)",
    ]
    if common_prefix:
        lines.append(f"- **{labels['common_prefix']}**: `{common_prefix}`")
    lines.append("")

    if summary is not None:
        lines.extend(_summary_lines(summary, language))

    if narrative.strip():
        lines.extend([f"## {labels['insights']}", "", narrative.strip(), ""])

    lines.extend([f"## {labels['leaderboards']}", ""])
    for board in leaderboards:
        lines.extend(_leaderboard_lines(board, entity_type, common_prefix, language))

    if detail is not None:
        lines.extend([f"## {labels['detail']}", ""])
        lines.extend(detail_table_lines(detail.items, detail_metric, entity_type, language))
        lines.extend(
            [
                "",
                f"{labels['page']} {detail.page} / {detail.total_pages} ({detail.total_items})",
                "",
            ]
        )

    return "\n".join(lines).rstrip() + "\n"


def _split_markdown_row(line: str) -> list[str]:
    cells = re.split(r"(?<!\\)\|", line.strip().strip("|"))
    return [cell.replace("\\|", "|").strip() for cell in cells]


def _is_markdown_separator(line: str) -> bool:
    compact = line.replace("|", "").replace(":", "").replace("-", "").strip()
    return compact == ""


def _add_markdown_runs(paragraph, text: str, *, lower_is_better: bool = False) -> None:
    def _append_colored_run(value: str, *, bold: bool) -> None:
        last = 0
        for signed in SIGNED_VALUE_RE.finditer(value):
            start, end = signed.span()
            if start > last:
                base = paragraph.add_run(value[last:start])
                base.bold = bold
            token = signed.group(1)
            run = paragraph.add_run(token)
            run.bold = bold
            improved = token.startswith("+") != lower_is_better
            run.font.color.rgb = DARK_GREEN if improved else DARK_RED
            last = end
        if last < len(value):
            tail = paragraph.add_run(value[last:])
            tail.bold = bold

    last = 0
    for match in BOLD_MARKDOWN_RE.finditer(text):
        start, end = match.span()
        if start > last:
            _append_colored_run(text[last:start], bold=False)
        _append_colored_run(match.group(1), bold=True)
        last = end

    if last < len(text):
        _append_colored_run(text[last:], bold=False)


def _set_cell_markdown(cell, text: str, *, lower_is_better: bool = False) -> None:
    cell.text = ""
    _add_markdown_runs(cell.paragraphs[0], text, lower_is_better=lower_is_better)


def _resolve_style_name(doc, style_candidates: list[str], fallback: str = "Normal") -> str:
    for name in style_candidates:
        try:
            _ = doc.styles[name]
            return name
        except KeyError:
            continue
    return fallback


def _apply_paragraph_spacing(paragraph, *, compact: bool = False) -> None:
    pf = paragraph.paragraph_format
    pf.space_before = Pt(0)
    pf.space_after = Pt(3 if compact else 6)
    pf.line_spacing = 1.15


def write_docx(path: Path, title: str, content: str) -> None:
    doc = Document()
    doc.core_properties.title = title
    try:
        normal = doc.styles["Normal"]
        normal.font.name = "Calibri"
        normal.font.size = Pt(10.5)
    except KeyError:
        pass

    lines = content.splitlines()
    index = 0

    while index < len(lines):
        raw_line = lines[index].rstrip()
        stripped_line = raw_line.lstrip(" \t")

        if not raw_line:
            index += 1
            continue

        if (
            raw_line.startswith("|")
            and index + 1 < len(lines)
            and lines[index + 1].startswith("|")
            and _is_markdown_separator(lines[index + 1])
        ):
            headers = _split_markdown_row(raw_line)
            table = doc.add_table(rows=1, cols=len(headers))
            table.style = "Table Grid"
            for col, header in enumerate(headers):
                _set_cell_markdown(table.rows[0].cells[col], header)

            index += 2
            while index < len(lines) and lines[index].startswith("|"):
                row_cells = _split_markdown_row(lines[index])
                position_row = bool(row_cells) and row_cells[0] == AVG_POSITION_ROW
                row = table.add_row().cells
                for col in range(len(headers)):
                    _set_cell_markdown(
                        row[col],
                        row_cells[col] if col < len(row_cells) else "",
                        lower_is_better=position_row or headers[col] == POSITION_DELTA_HEADER,
                    )
                index += 1
            continue

        heading_match = re.match(r"^(#{1,6})\s+(.+)$", raw_line)
        if heading_match:
            level = min(len(heading_match.group(1)), 4)
            paragraph = doc.add_heading("", level=level)
            _add_markdown_runs(paragraph, heading_match.group(2))
            _apply_paragraph_spacing(paragraph, compact=True)
        elif stripped_line.startswith("- "):
            style_name = _resolve_style_name(doc, ["List Bullet"], fallback="Normal")
            paragraph = doc.add_paragraph("", style=style_name)
            _add_markdown_runs(paragraph, stripped_line[2:])
            _apply_paragraph_spacing(paragraph, compact=True)
        else:
            paragraph = doc.add_paragraph("")
            _add_markdown_runs(paragraph, raw_line)
            _apply_paragraph_spacing(paragraph)

        index += 1

    path.parent.mkdir(parents=True, exist_ok=True)
    doc.save(str(path))
