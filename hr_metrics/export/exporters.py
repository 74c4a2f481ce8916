"""Render a metric set to CSV, XLSX, PDF, HTML or JSON.

Every format is built fully in memory and returned as an ``ExportArtifact``;
a failure anywhere raises ``ExportError`` and nothing is written.  Persisting
to disk is a separate, atomic step (``write_artifact``).
"""

import contextlib
import csv
import io
import itertools
import json
import logging
import os
import re
import sqlite3
import tempfile
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import matplotlib

matplotlib.use("Agg")  # Non-interactive backend for PDF generation

import matplotlib.pyplot as plt  # noqa: E402
from jinja2 import Environment, FileSystemLoader, select_autoescape  # noqa: E402
from matplotlib.backends.backend_pdf import PdfPages  # noqa: E402
from openpyxl import Workbook  # noqa: E402
from openpyxl.styles import Alignment, Font, PatternFill  # noqa: E402
from openpyxl.utils import get_column_letter  # noqa: E402

from hr_metrics.errors import ExportError  # noqa: E402
from hr_metrics.export.formatting import (  # noqa: E402
    display_value,
    is_structured,
    raw_value,
    result_columns,
    result_rows,
    summary_row,
)
from hr_metrics.metrics.engine import utcnow  # noqa: E402
from hr_metrics.metrics.formatting import title_case  # noqa: E402
from hr_metrics.metrics.models import CategoricalResult, MetricFilters, SeriesResult, TableResult  # noqa: E402
from hr_metrics.metrics.service import ExportItem  # noqa: E402
from hr_metrics.observability.metrics import EXPORTS_TOTAL  # noqa: E402
from hr_metrics.storage.models import ExportLogRecord  # noqa: E402
from hr_metrics.storage import store as db  # noqa: E402
from hr_metrics.storage.store import MetricStore, iso  # noqa: E402

logger = logging.getLogger(__name__)

SUMMARY_HEADERS = ["Category", "Metric Name", "Value", "Description", "Generated Date"]
HEADER_FILL = "E3F2FD"
PRIMARY_COLOR = "#2E5090"
NEUTRAL_COLOR = "#888888"

_TEMPLATE_DIR = os.path.join(os.path.dirname(__file__), "templates")
_MAX_PDF_TABLE_ROWS = 25


@dataclass(frozen=True)
class ExportArtifact:
    filename: str
    media_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


def _filters_text(filters: MetricFilters) -> str:
    accepted = filters.as_dict()
    if not accepted:
        return "None"
    return ", ".join(f"{title_case(k)}: {v}" for k, v in accepted.items())


# ---------------------------------------------------------------------------
# CSV
# ---------------------------------------------------------------------------


def build_csv(items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> bytes:
    """Summary table first, then one titled detail block per structured metric."""
    generated = generated_at.strftime("%Y-%m-%d %H:%M:%S")
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(SUMMARY_HEADERS)
    for item in items:
        writer.writerow(summary_row(item, generated))

    for item in items:
        if not is_structured(item.result):
            continue
        columns = result_columns(item.result)
        writer.writerow([])
        writer.writerow([f"{title_case(item.definition.category)} - {title_case(item.definition.name)}"])
        writer.writerow(columns)
        for row in result_rows(item.result):
            writer.writerow([row.get(column, "") for column in columns])
    return buffer.getvalue().encode("utf-8")


# ---------------------------------------------------------------------------
# XLSX
# ---------------------------------------------------------------------------


def _sheet_title(name: str, taken: set[str]) -> str:
    base = re.sub(r"[\[\]:*?/\\]", "", title_case(name))[:28] or "Metric"
    title = base
    for n in itertools.count(2):
        if title not in taken:
            break
        title = f"{base[:25]} {n}"
    taken.add(title)
    return title


def build_xlsx(items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> bytes:
    """Styled summary sheet plus one detail sheet per structured metric."""
    wb = Workbook()
    ws = wb.active
    ws.title = "Summary"
    header_fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")
    bold = Font(bold=True)

    ws["A1"] = "HR Analytics Metrics Report"
    ws["A1"].font = Font(bold=True, size=16)
    ws["A1"].alignment = Alignment(horizontal="center")
    ws.merge_cells("A1:F1")
    ws["A2"] = f"Generated: {generated_at.strftime('%Y-%m-%d %H:%M:%S')}"
    ws["A3"] = f"Filters: {_filters_text(filters)}"

    row = 5
    for col, header in enumerate(SUMMARY_HEADERS[1:4], start=1):
        cell = ws.cell(row=row, column=col, value=header)
        cell.font = bold
    row += 1

    for category, group in itertools.groupby(items, key=lambda i: i.definition.category):
        cell = ws.cell(row=row, column=1, value=title_case(category))
        cell.font = bold
        for col in range(1, 4):
            ws.cell(row=row, column=col).fill = header_fill
        row += 1
        for item in group:
            ws.cell(row=row, column=1, value=title_case(item.definition.name))
            ws.cell(row=row, column=2, value=display_value(item.result))
            ws.cell(row=row, column=3, value=item.definition.description)
            row += 1

    ws.column_dimensions["A"].width = 38
    ws.column_dimensions["B"].width = 18
    ws.column_dimensions["C"].width = 70

    taken = {"Summary"}
    for item in items:
        if not is_structured(item.result):
            continue
        detail = wb.create_sheet(_sheet_title(item.definition.name, taken))
        columns = result_columns(item.result)
        for col, column in enumerate(columns, start=1):
            cell = detail.cell(row=1, column=col, value=title_case(column))
            cell.font = bold
            cell.fill = header_fill
            detail.column_dimensions[get_column_letter(col)].width = max(12, len(column) + 4)
        for r, data_row in enumerate(result_rows(item.result), start=2):
            for col, column in enumerate(columns, start=1):
                detail.cell(row=r, column=col, value=data_row.get(column))

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# PDF (matplotlib)
# ---------------------------------------------------------------------------


def _cover_page(pdf: PdfPages, items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> None:
    fig = plt.figure(figsize=(11, 8.5))
    fig.text(0.5, 0.85, "HR Analytics Metrics Report", fontsize=24, fontweight="bold", ha="center", color=PRIMARY_COLOR)
    fig.text(0.5, 0.78, generated_at.strftime("%d %B %Y %H:%M"), fontsize=12, ha="center", color=NEUTRAL_COLOR)
    fig.text(0.5, 0.72, f"Filters: {_filters_text(filters)}", fontsize=10, ha="center", color=NEUTRAL_COLOR)

    scalars = [i for i in items if not is_structured(i.result)][:12]
    for n, item in enumerate(scalars):
        y = 0.62 - n * 0.045
        fig.text(0.48, y, title_case(item.definition.name), fontsize=11, ha="right", color=NEUTRAL_COLOR)
        fig.text(0.52, y, display_value(item.result), fontsize=11, ha="left", fontweight="bold", color=PRIMARY_COLOR)
    pdf.savefig(fig)
    plt.close(fig)


def _table_page(pdf: PdfPages, title: str, columns: list[str], rows: list[list[Any]]) -> None:
    fig, ax = plt.subplots(figsize=(11, 8.5))
    fig.suptitle(title, fontsize=14, fontweight="bold", y=0.97)
    ax.axis("off")
    if rows:
        table = ax.table(cellText=rows, colLabels=columns, loc="upper center", cellLoc="left")
        table.auto_set_font_size(False)
        table.set_fontsize(8)
        table.scale(1, 1.3)
    else:
        ax.text(0.5, 0.5, "No records", ha="center", color=NEUTRAL_COLOR)
    pdf.savefig(fig)
    plt.close(fig)


def _detail_page(pdf: PdfPages, item: ExportItem) -> None:
    title = f"{title_case(item.definition.category)} - {title_case(item.definition.name)}"
    result = item.result
    match result:
        case SeriesResult() | CategoricalResult() if result.values and all(
            isinstance(v, int | float) for v in result.values
        ):
            fig, ax = plt.subplots(figsize=(11, 8.5))
            fig.suptitle(title, fontsize=14, fontweight="bold", y=0.97)
            labels = [str(label) for label in result.labels]
            if isinstance(result, SeriesResult):
                ax.plot(labels, result.values, marker="o", color=PRIMARY_COLOR)
            else:
                ax.bar(labels, result.values, color=PRIMARY_COLOR)
            ax.spines["top"].set_visible(False)
            ax.spines["right"].set_visible(False)
            ax.tick_params(axis="x", rotation=45)
            fig.tight_layout(rect=(0, 0, 1, 0.95))
            pdf.savefig(fig)
            plt.close(fig)
        case SeriesResult() | CategoricalResult() | TableResult():
            columns = result_columns(result)
            rows = [[str(r.get(c, "")) for c in columns] for r in result_rows(result)[:_MAX_PDF_TABLE_ROWS]]
            _table_page(pdf, title, columns, rows)
        case _:
            pass


def build_pdf(items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> bytes:
    buffer = io.BytesIO()
    with PdfPages(buffer) as pdf:
        _cover_page(pdf, items, filters, generated_at)
        summary = [[title_case(i.definition.category), title_case(i.definition.name), display_value(i.result)] for i in items]
        for start in range(0, len(summary), _MAX_PDF_TABLE_ROWS):
            _table_page(pdf, "Metric Summary", SUMMARY_HEADERS[:3], summary[start : start + _MAX_PDF_TABLE_ROWS])
        for item in items:
            if is_structured(item.result):
                _detail_page(pdf, item)
    return buffer.getvalue()


# ---------------------------------------------------------------------------
# HTML (Jinja2)
# ---------------------------------------------------------------------------

_jinja_env = Environment(loader=FileSystemLoader(_TEMPLATE_DIR), autoescape=select_autoescape(["html"]))


def build_html(items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> bytes:
    """Printable document source; browsers print it to PDF."""
    summary = [
        (
            title_case(category),
            [
                {
                    "name": title_case(i.definition.name),
                    "value": display_value(i.result),
                    "description": i.definition.description,
                }
                for i in group
            ],
        )
        for category, group in itertools.groupby(items, key=lambda i: i.definition.category)
    ]
    details = [
        {
            "title": f"{title_case(i.definition.category)} - {title_case(i.definition.name)}",
            "columns": result_columns(i.result),
            "rows": result_rows(i.result),
        }
        for i in items
        if is_structured(i.result)
    ]
    html = _jinja_env.get_template("metrics_report.html").render(
        title="HR Analytics Metrics Report",
        generated=generated_at.strftime("%Y-%m-%d %H:%M:%S"),
        filters_text=_filters_text(filters),
        summary=summary,
        details=details,
    )
    return html.encode("utf-8")


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


def build_json(items: Sequence[ExportItem], filters: MetricFilters, generated_at: datetime) -> bytes:
    payload = {
        "export_info": {
            "generated_at": generated_at.isoformat(),
            "format": "json",
            "filters": filters.as_dict(),
            "total_metrics": len(items),
        },
        "metrics": [
            {
                "id": i.definition.metric_id,
                "category": i.definition.category,
                "name": i.definition.name,
                "description": i.definition.description,
                "display_shape": str(i.definition.display_shape),
                "value": raw_value(i.result),
                "formatted_value": display_value(i.result),
                "period": i.result.period,
                "computed_at": i.result.computed_at.isoformat(),
            }
            for i in items
        ],
    }
    return json.dumps(payload, indent=2, default=str).encode("utf-8")


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

Builder = Callable[[Sequence[ExportItem], MetricFilters, datetime], bytes]

EXPORT_FORMATS: dict[str, tuple[Builder, str, str]] = {
    "csv": (build_csv, "text/csv", "csv"),
    "xlsx": (build_xlsx, "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet", "xlsx"),
    "pdf": (build_pdf, "application/pdf", "pdf"),
    "html": (build_html, "text/html", "html"),
    "json": (build_json, "application/json", "json"),
}
_FORMAT_ALIASES = {"excel": "xlsx", "spreadsheet": "xlsx", "document": "pdf"}


class MetricsExporter:
    def __init__(self, store: MetricStore | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self._store = store
        self._clock = clock

    def export(
        self,
        items: Sequence[ExportItem],
        fmt: str,
        filters: MetricFilters | None = None,
    ) -> ExportArtifact:
        """Render the metric set.

        Raises:
            ExportError: unknown format, or rendering failed. No partial artifact.
        """
        fmt = _FORMAT_ALIASES.get(fmt.lower(), fmt.lower())
        if fmt not in EXPORT_FORMATS:
            EXPORTS_TOTAL.labels(format="unknown", status="error").inc()
            msg = f"Unsupported export format '{fmt}' (expected one of {', '.join(EXPORT_FORMATS)})"
            raise ExportError(msg)

        builder, media_type, extension = EXPORT_FORMATS[fmt]
        accepted = filters or MetricFilters()
        generated_at = self._clock()
        try:
            content = builder(items, accepted, generated_at)
        except Exception as exc:
            EXPORTS_TOTAL.labels(format=fmt, status="error").inc()
            logger.exception("Export to %s failed", fmt)
            raise ExportError(f"Failed to export metrics as {fmt}: {exc}") from exc

        EXPORTS_TOTAL.labels(format=fmt, status="success").inc()
        artifact = ExportArtifact(
            filename=f"hr_metrics_{generated_at.strftime('%Y-%m-%d_%H-%M-%S')}.{extension}",
            media_type=media_type,
            content=content,
        )
        self._log_export(fmt, items, accepted, artifact.size)
        return artifact

    def _log_export(self, fmt: str, items: Sequence[ExportItem], filters: MetricFilters, size: int) -> None:
        if self._store is None:
            return
        try:
            with self._store.session() as conn:
                db.save_export_log(
                    conn,
                    format=fmt,
                    metric_ids=",".join(i.definition.metric_id for i in items),
                    filters=json.dumps(filters.as_dict(), sort_keys=True),
                    size_bytes=size,
                    exported_at=iso(self._clock()),
                )
        except sqlite3.Error:
            logger.exception("Failed to record export log entry")

    def export_logs(self, limit: int = 50) -> list[ExportLogRecord]:
        if self._store is None:
            return []
        with self._store.session() as conn:
            return db.get_export_logs(conn, limit=limit)


def write_artifact(artifact: ExportArtifact, directory: str) -> str:
    """Atomically write the artifact into ``directory``. Returns the final path."""
    os.makedirs(directory, exist_ok=True)
    path = os.path.join(directory, artifact.filename)

    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(artifact.content)
        os.replace(tmp_path, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_path)
        raise
    logger.info("Export written to %s (%d bytes)", path, artifact.size)
    return path
