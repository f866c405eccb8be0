"""
Analyze routes — grade and attendance analytics endpoints.
"""

from fastapi import APIRouter, HTTPException, Request

from core.grading import list_scales
from core.matrix import build_date_indexed_matrix
from core.stats import (
    compute_attendance_stats,
    compute_average_by_group,
    compute_average_by_type,
    compute_distribution,
    compute_group_stats,
    compute_student_stats,
    compute_student_subjects,
)
from routes.deps import (
    TIMEZONE,
    df_records,
    filter_from_payload,
    reference_of,
    resolve_scale,
    roster_of,
    roster_or_graded,
    snapshot_from_payload,
)

router = APIRouter()


@router.post("/student/{student_id}")
async def student_stats(student_id: str, payload: dict, request: Request):
    """Grade stats, per-subject breakdown and attendance summary for one student."""
    scale = resolve_scale(payload)
    snapshot = await snapshot_from_payload(payload, request)
    attendance = compute_attendance_stats(snapshot.attendance, [student_id])
    return {
        **compute_student_stats(snapshot.grades, student_id, scale=scale),
        "subjects": compute_student_subjects(snapshot.grades, student_id, scale=scale, subjects=snapshot.subjects),
        "attendance": attendance["students"][0],
    }


@router.post("/group")
async def group_stats(payload: dict, request: Request):
    """Group rollup with per-subject breakdown, type and group averages, mark distribution."""
    scale = resolve_scale(payload)
    snapshot = await snapshot_from_payload(payload, request)
    return {
        **compute_group_stats(snapshot.grades, roster_or_graded(snapshot), scale=scale, subjects=snapshot.subjects),
        "average_by_type": compute_average_by_type(snapshot.grades),
        "average_by_group": compute_average_by_group(
            snapshot.grades, snapshot.students, reference_of(snapshot.groups)
        ),
        "distribution": compute_distribution(snapshot.grades),
        "normalization": snapshot.report,
    }


@router.post("/attendance")
async def attendance_stats(payload: dict, request: Request):
    """Per-student attendance counts and rates."""
    snapshot = await snapshot_from_payload(payload, request)
    return compute_attendance_stats(snapshot.attendance, roster_of(snapshot))


@router.post("/matrix")
async def matrix(payload: dict, request: Request):
    """
    Student × date table for the grade book or attendance sheet.
    Expects: { "kind": "grades" | "attendance", "start": ..., "end": ..., ... }
    """
    kind = payload.get("kind", "grades")
    if kind not in ("grades", "attendance"):
        raise HTTPException(400, "kind must be 'grades' or 'attendance'.")

    snapshot = await snapshot_from_payload(payload, request)
    record_filter = filter_from_payload(payload)
    records = snapshot.grades if kind == "grades" else snapshot.attendance
    result = build_date_indexed_matrix(
        records,
        roster=roster_of(snapshot),
        date_range=record_filter.date_range,
        tz=TIMEZONE,
    )
    result["kind"] = kind
    result["students_info"] = df_records(snapshot.students)
    return result


@router.post("/refresh")
async def refresh(request: Request):
    """Drop cached snapshots so the next request refetches from the store."""
    dropped = request.app.state.snapshot_cache.invalidate()
    return {"invalidated": dropped}


@router.get("/scales")
async def scales():
    """Return the grading scales and their category bands."""
    return {"scales": list_scales()}
