"""
Report routes — Excel and PDF export endpoints.
"""

import os
import uuid
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import FileResponse
from starlette.background import BackgroundTask

from core.export import (
    export_rows,
    filter_labels,
    student_names,
    student_subject_rows,
    write_excel,
    write_pdf,
)
from core.matrix import build_date_indexed_matrix
from core.stats import compute_group_stats, compute_student_stats, compute_student_subjects
from routes.deps import (
    TIMEZONE,
    filter_from_payload,
    resolve_scale,
    roster_of,
    roster_or_graded,
    snapshot_from_payload,
)

router = APIRouter()

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
REPORTS_DIR = UPLOAD_DIR / "reports"
REPORTS_DIR.mkdir(parents=True, exist_ok=True)

EXPORT_MODES = ("grades", "attendance", "stats", "student")


def _safe_unlink(path: str):
    """Delete the generated file after the response is sent."""
    Path(path).unlink(missing_ok=True)


async def _build_table(payload: dict, request: Request):
    """Return (table, categories, title, filter labels) for the requested export mode."""
    mode = payload.get("mode", "stats")
    if mode not in EXPORT_MODES:
        raise HTTPException(400, f"mode must be one of {list(EXPORT_MODES)}.")
    scale = resolve_scale(payload)
    student_id = payload.get("student_id") or payload.get("studentId")
    if mode == "student" and not student_id:
        raise HTTPException(400, "Provide 'student_id' for the student export.")

    snapshot = await snapshot_from_payload(payload, request)
    record_filter = filter_from_payload(payload)
    roster = roster_of(snapshot)
    labels = filter_labels(
        record_filter,
        groups=snapshot.groups,
        subjects=snapshot.subjects,
        semesters=snapshot.semesters,
    )

    if mode == "student":
        rows = compute_student_subjects(snapshot.grades, student_id, scale=scale, subjects=snapshot.subjects)
        stats = compute_student_stats(snapshot.grades, student_id, scale=scale)
        names = dict(student_names(roster if roster is not None else [student_id]))
        labels.insert(0, ("Student", names.get(str(student_id), str(student_id))))
        return student_subject_rows(rows), stats["categories"], "Student Grades", labels

    if mode == "stats":
        students = roster_or_graded(snapshot)
        stats = compute_group_stats(snapshot.grades, students, scale=scale)
        return export_rows(students, stats), stats["categories"], "Grade Summary", labels

    records = snapshot.grades if mode == "grades" else snapshot.attendance
    matrix = build_date_indexed_matrix(
        records,
        roster=roster,
        date_range=record_filter.date_range,
        tz=TIMEZONE,
    )
    students = roster if roster is not None else matrix["students"]
    title = "Grade Book" if mode == "grades" else "Attendance"
    return export_rows(students, matrix), None, title, labels


@router.post("/excel")
async def excel_export(payload: dict, request: Request):
    """Export the grade book, attendance sheet, grade summary or one student's grades as .xlsx."""
    table, _, title, _ = await _build_table(payload, request)
    report_id = str(uuid.uuid4())[:8]
    output_path = REPORTS_DIR / f"export_{report_id}.xlsx"

    write_excel(table, str(output_path), sheet_name=title)

    return FileResponse(
        str(output_path),
        media_type="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        filename=f"{title.replace(' ', '_')}_{report_id}.xlsx",
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )


@router.post("/pdf")
async def pdf_export(payload: dict, request: Request):
    """Export the grade book, attendance sheet, grade summary or one student's grades as PDF."""
    table, categories, title, labels = await _build_table(payload, request)
    report_id = str(uuid.uuid4())[:8]
    output_path = REPORTS_DIR / f"export_{report_id}.pdf"

    write_pdf(
        table,
        str(output_path),
        title=payload.get("title") or title,
        school_name=SCHOOL_NAME,
        categories=categories,
        filters=labels,
    )

    return FileResponse(
        str(output_path),
        media_type="application/pdf",
        filename=f"{title.replace(' ', '_')}_{report_id}.pdf",
        background=BackgroundTask(_safe_unlink, str(output_path)),
    )
