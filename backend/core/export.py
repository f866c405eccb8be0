"""
export.py — Tabular export rows and their Excel / PDF serialisers.

Generates:
- Export table  ({header, rows}) from a date matrix, from grade stats, or
                 from one student's per-subject rows
- Excel workbook (styled header, frozen first row, auto-width columns)
- PDF report     (A4, title, filter labels, table, optional category chart, footer)

Missing cells are always exported as empty strings.
"""

import io
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from xml.sax.saxutils import escape

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.grading import CATEGORIES, CATEGORY_LABELS
from core.matrix import matrix_to_frame
from core.normalize import as_id, student_display_name
from core.stats import reference_names

logger = logging.getLogger(__name__)


# ── Colour palette ──────────────────────────────────────────────────

BRAND_DARK = colors.HexColor("#1a1a2e")
LIGHT_GREY = colors.HexColor("#f5f5f5")
WHITE = colors.white

CATEGORY_COLORS = {
    "excellent": "#2ecc71",
    "good": "#0f3460",
    "satisfactory": "#f39c12",
    "unsatisfactory": "#e74c3c",
}


# ── Export rows ─────────────────────────────────────────────────────

def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value != value:
        return ""
    return str(value)


def student_names(students: Any) -> List[tuple]:
    """[(id, display name)] in roster order, first occurrence of each id."""
    names: Dict[str, str] = {}
    if isinstance(students, pd.DataFrame):
        if students.empty:
            return []
        labels = students["name"] if "name" in students.columns else students["id"]
        for i, n in zip(students["id"], labels):
            names.setdefault(str(i), _cell(n) or str(i))
        return list(names.items())
    for s in students or []:
        if isinstance(s, dict):
            sid = as_id(s.get("id") or s.get("uid") or s.get("student_id"))
            if sid:
                names.setdefault(sid, student_display_name(s) or sid)
        elif as_id(s):
            names.setdefault(as_id(s), as_id(s))
    return list(names.items())


def _stats_by_student(stats: Any) -> Dict[str, Dict[str, Any]]:
    if isinstance(stats, dict) and isinstance(stats.get("students"), list):
        stats = stats["students"]
    if isinstance(stats, list):
        return {str(s.get("student_id")): s for s in stats if isinstance(s, dict)}
    if isinstance(stats, dict):
        return {str(k): v for k, v in stats.items() if isinstance(v, dict)}
    return {}


def export_rows(students: Any, matrix_or_stats: Any) -> Dict[str, List]:
    """
    One row per student, identity column first.

    Matrix mode (a dict with `dates`): ['Student', *sorted dates].
    Stats mode: ['Student', 'Average', 'Total', *category labels].
    """
    pairs = student_names(students)

    if isinstance(matrix_or_stats, dict) and "dates" in matrix_or_stats:
        matrix = dict(matrix_or_stats)
        dates = sorted(matrix["dates"])
        matrix["dates"] = dates
        matrix["students"] = [sid for sid, _ in pairs]
        if not dates:
            return {"header": ["Student"], "rows": [[name] for _, name in pairs]}
        frame = matrix_to_frame(matrix)
        rows = [[name] + [_cell(v) for v in frame.loc[sid].tolist()] for sid, name in pairs]
        return {"header": ["Student"] + dates, "rows": rows}

    by_student = _stats_by_student(matrix_or_stats)
    header = ["Student", "Average", "Total"] + [CATEGORY_LABELS[c] for c in CATEGORIES]
    rows = []
    for sid, name in pairs:
        s = by_student.get(sid)
        if s is None:
            rows.append([name] + [""] * (len(header) - 1))
            continue
        cats = s.get("categories") or {}
        rows.append(
            [name, f"{float(s.get('average') or 0):.2f}", _cell(s.get("total"))]
            + [_cell(cats.get(c, "")) for c in CATEGORIES]
        )
    return {"header": header, "rows": rows}


def student_subject_rows(subject_rows: List[Dict[str, Any]]) -> Dict[str, List]:
    """Per-student export: one row per subject with average, count and the marks."""
    header = ["Subject", "Average", "Total", "Grades"]
    rows = [
        [
            _cell(r.get("name") or r.get("subject_id")),
            f"{float(r.get('average') or 0):.2f}",
            _cell(r.get("total")),
            ", ".join(str(g) for g in r.get("grades") or []),
        ]
        for r in subject_rows
    ]
    return {"header": header, "rows": rows}


def filter_labels(record_filter: Any, groups: Any = None, subjects: Any = None, semesters: Any = None) -> List[tuple]:
    """[(label, value)] describing the active filter; unset axes read 'All'."""
    group_names = reference_names(groups)
    subject_names = reference_names(subjects)
    semester_names = reference_names(semesters)

    def _name(value, names):
        return names.get(value, value) if value else "All"

    labels = [
        ("Group", _name(record_filter.group_id, group_names)),
        ("Subject", _name(record_filter.subject_id, subject_names)),
        ("Semester", _name(record_filter.semester_id, semester_names)),
    ]
    start, end = record_filter.date_range
    if start or end:
        labels.append(("Period", f"{start or '...'} - {end or '...'}"))
    return labels


# ── Excel ───────────────────────────────────────────────────────────

def write_excel(table: Dict[str, List], output_path: str, sheet_name: str = "Grades"):
    """Write an export table to an .xlsx workbook."""
    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="1a1a2e", end_color="1a1a2e", fill_type="solid")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    wb = Workbook()
    ws = wb.active
    ws.title = sheet_name[:31]
    ws.sheet_properties.tabColor = "1a1a2e"

    ws.append(list(table["header"]))
    for row in table["rows"]:
        ws.append(list(row))

    for cell in ws[1]:
        cell.font = header_font
        cell.fill = header_fill
        cell.alignment = Alignment(horizontal="center")
        cell.border = thin_border

    for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
        for idx, cell in enumerate(row):
            cell.border = thin_border
            if idx > 0:
                cell.alignment = Alignment(horizontal="center")

    ws.freeze_panes = "B2"

    for col_cells in ws.columns:
        max_len = max(len(str(cell.value or "")) for cell in col_cells)
        ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 40)

    wb.save(output_path)
    logger.info("Wrote Excel export %s (%d rows)", output_path, len(table["rows"]))


# ── PDF ─────────────────────────────────────────────────────────────

def _styles():
    ss = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "ExportTitle", parent=ss["Title"],
            fontSize=18, leading=22, textColor=BRAND_DARK, spaceAfter=4 * mm,
        ),
        "body": ParagraphStyle(
            "ExportBody", parent=ss["Normal"],
            fontSize=9, leading=12, textColor=colors.black, spaceAfter=3 * mm,
        ),
    }


def _footer(canvas, doc, school_name: str):
    """Draw school name and date in the page footer."""
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    footer_text = f"{school_name} | Generated {datetime.now().strftime('%d %B %Y, %H:%M')}"
    canvas.drawString(1.5 * cm, 1 * cm, footer_text)
    canvas.drawRightString(doc.pagesize[0] - 1.5 * cm, 1 * cm, f"Page {doc.page}")
    canvas.restoreState()


def _make_table(data: List[List]) -> Table:
    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_DARK),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 8),
        ("FONTSIZE", (0, 1), (-1, -1), 7),
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cccccc")),
        ("ROWBACKGROUNDS", (0, 1), (-1, -1), [WHITE, LIGHT_GREY]),
        ("TOPPADDING", (0, 0), (-1, -1), 3),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 3),
    ]
    t = Table(data, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def _chart_to_image(fig, width=12 * cm, height=6 * cm) -> Image:
    """Convert a matplotlib figure to a ReportLab Image."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=height)


def _category_chart(categories: Dict[str, int]) -> Optional[Image]:
    """Bar chart of the category distribution."""
    values = [int(categories.get(c, 0) or 0) for c in CATEGORIES]
    if sum(values) == 0:
        return None
    labels = [CATEGORY_LABELS[c] for c in CATEGORIES]

    fig, ax = plt.subplots(figsize=(6.5, 3.2))
    bars = ax.bar(labels, values, color=[CATEGORY_COLORS[c] for c in CATEGORIES])
    for b, v in zip(bars, values):
        ax.text(b.get_x() + b.get_width() / 2, b.get_height() + 0.2, str(v), ha="center", fontsize=8)
    ax.set_ylabel("Grades")
    ax.set_title("Grade Distribution", fontsize=11, fontweight="bold")
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    return _chart_to_image(fig)


def write_pdf(
    table: Dict[str, List],
    output_path: str,
    title: str,
    school_name: str,
    categories: Optional[Dict[str, int]] = None,
    filters: Optional[List[tuple]] = None,
):
    """
    Write an export table as a PDF; wide tables switch to landscape.
    `filters` is a list of (label, value) pairs printed under the title.
    """
    st = _styles()
    pagesize = landscape(A4) if len(table["header"]) > 8 else A4
    story = [
        Paragraph(title, st["title"]),
        Paragraph(datetime.now().strftime("%d %B %Y"), st["body"]),
    ]
    for label, value in filters or []:
        story.append(Paragraph(f"<b>{escape(str(label))}:</b> {escape(str(value))}", st["body"]))

    if categories:
        chart = _category_chart(categories)
        if chart:
            story.append(chart)
            story.append(Spacer(1, 4 * mm))

    data = [list(table["header"])] + [list(r) for r in table["rows"]]
    if table["rows"]:
        story.append(_make_table(data))
    else:
        story.append(Paragraph("No records for the selected filter.", st["body"]))

    doc = SimpleDocTemplate(
        output_path, pagesize=pagesize,
        leftMargin=1.5 * cm, rightMargin=1.5 * cm,
        topMargin=1.5 * cm, bottomMargin=2 * cm,
        title=title,
    )
    doc.build(
        story,
        onFirstPage=lambda c, d: _footer(c, d, school_name),
        onLaterPages=lambda c, d: _footer(c, d, school_name),
    )
    logger.info("Wrote PDF export %s (%d rows)", output_path, len(table["rows"]))
