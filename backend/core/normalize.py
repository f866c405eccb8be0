"""
normalize.py — Boundary normalisation of raw store records.

The store holds several generations of the same facts with inconsistently
named fields (`value` vs `grade`, `semester` vs `semesterId`, ...). Records
are mapped here into canonical frames before they reach any aggregation.

Handles:
- Field alias resolution
- Grade parsing into tagged values
- Attendance status normalisation
- Calendar-date bucketing
- Exclusion of malformed records with a normalisation report
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd

from core.filters import to_calendar_date
from core.grading import parse_grade_value

logger = logging.getLogger(__name__)


# ── Field aliases ───────────────────────────────────────────────────

FIELD_ALIASES = {
    "student_id": ["student_id", "studentId", "student", "uid"],
    "subject_id": ["subject_id", "subjectId", "subject", "journalId"],
    "semester_id": ["semester_id", "semesterId", "semester"],
    "group_id": ["group_id", "groupId", "group"],
    "value": ["value", "grade", "mark"],
    "type": ["type", "gradeType", "grade_type"],
    "status": ["status", "attendanceStatus", "attendance"],
    "date": ["date", "createdAt"],
}

GRADE_COLUMNS = [
    "student_id", "subject_id", "semester_id", "group_id",
    "date", "value", "kind", "numeric", "type", "fact",
]
ATTENDANCE_COLUMNS = [
    "student_id", "subject_id", "semester_id", "group_id",
    "date", "status", "fact",
]
STUDENT_COLUMNS = ["id", "group_id", "first_name", "last_name", "name"]

ATTENDANCE_STATUSES = ["present", "absent", "late", "excused"]

STATUS_MAP = {
    "present": "present", "присутствовал": "present", "p": "present",
    "absent": "absent", "отсутствовал": "absent", "н": "absent", "a": "absent",
    "late": "late", "опоздал": "late", "l": "late",
    "excused": "excused", "уважительная": "excused", "e": "excused",
}


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    return isinstance(value, str) and not value.strip()


def pick(record: Dict[str, Any], field: str, default: Any = None) -> Any:
    """Return the first non-blank value among the field's aliases."""
    for alias in FIELD_ALIASES.get(field, [field]):
        if alias in record and not is_blank(record[alias]):
            return record[alias]
    return default


def as_id(value: Any) -> str:
    if is_blank(value):
        return ""
    if isinstance(value, dict):
        return str(value.get("id", "")).strip()
    return str(value).strip()


def normalize_status(value: Any) -> Optional[str]:
    """Map an attendance mark to present/absent/late/excused, or None."""
    if isinstance(value, bool):
        return "present" if value else "absent"
    if is_blank(value):
        return None
    return STATUS_MAP.get(str(value).strip().lower())


def _new_report(kind: str, received: int) -> Dict[str, Any]:
    return {"kind": kind, "received": received, "kept": 0, "excluded": 0, "reasons": {}}


def _exclude(report: Dict[str, Any], reason: str, record: Any):
    report["excluded"] += 1
    report["reasons"][reason] = report["reasons"].get(reason, 0) + 1
    logger.debug("Excluded %s record (%s): %r", report["kind"], reason, record)


def _finish(report: Dict[str, Any], rows: List[Dict[str, Any]], columns: List[str]) -> pd.DataFrame:
    report["kept"] = len(rows)
    if report["excluded"]:
        logger.info(
            "Normalised %s records: kept %d of %d (%s)",
            report["kind"], report["kept"], report["received"], report["reasons"],
        )
    return pd.DataFrame(rows, columns=columns)


# ── Facts ───────────────────────────────────────────────────────────

def normalize_grades(
    records: Iterable[Dict[str, Any]],
    tz: Optional[str] = None,
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """Normalise raw grade records. Returns (frame, report)."""
    records = list(records or [])
    report = _new_report("grade", len(records))
    rows = []
    for rec in records:
        if not isinstance(rec, dict):
            _exclude(report, "not_a_record", rec)
            continue
        student_id = as_id(pick(rec, "student_id"))
        if not student_id:
            _exclude(report, "missing_student_id", rec)
            continue
        iso = to_calendar_date(pick(rec, "date"), tz)
        if iso is None:
            _exclude(report, "bad_date", rec)
            continue
        grade = parse_grade_value(pick(rec, "value"))
        if not grade.value:
            _exclude(report, "missing_value", rec)
            continue
        rows.append({
            "student_id": student_id,
            "subject_id": as_id(pick(rec, "subject_id")),
            "semester_id": as_id(pick(rec, "semester_id")),
            "group_id": as_id(pick(rec, "group_id")),
            "date": iso,
            "value": grade.value,
            "kind": grade.kind,
            "numeric": grade.numeric,
            "type": str(pick(rec, "type", "current")).strip().lower(),
            "fact": "grade",
        })
    return _finish(report, rows, GRADE_COLUMNS), report


def normalize_attendance(
    records: Iterable[Dict[str, Any]],
    tz: Optional[str] = None,
) -> Tuple[pd.DataFrame, Dict[str, Any]]:
    """Normalise raw attendance entries. Returns (frame, report)."""
    records = list(records or [])
    report = _new_report("attendance", len(records))
    rows = []
    for rec in records:
        if not isinstance(rec, dict):
            _exclude(report, "not_a_record", rec)
            continue
        student_id = as_id(pick(rec, "student_id"))
        if not student_id:
            _exclude(report, "missing_student_id", rec)
            continue
        iso = to_calendar_date(pick(rec, "date"), tz)
        if iso is None:
            _exclude(report, "bad_date", rec)
            continue
        raw_status = pick(rec, "status")
        if raw_status is None and "present" in rec:
            raw_status = rec["present"]
        status = normalize_status(raw_status)
        if status is None:
            _exclude(report, "unknown_status", rec)
            continue
        rows.append({
            "student_id": student_id,
            "subject_id": as_id(pick(rec, "subject_id")),
            "semester_id": as_id(pick(rec, "semester_id")),
            "group_id": as_id(pick(rec, "group_id")),
            "date": iso,
            "status": status,
            "fact": "attendance",
        })
    return _finish(report, rows, ATTENDANCE_COLUMNS), report


# ── Roster & reference data ─────────────────────────────────────────

def student_display_name(rec: Dict[str, Any]) -> str:
    last = str(rec.get("lastName") or rec.get("last_name") or "").strip()
    first = str(rec.get("firstName") or rec.get("first_name") or "").strip()
    full = f"{last} {first}".strip()
    if full:
        return full
    return str(rec.get("name") or rec.get("displayName") or "").strip()


def normalize_students(records: Iterable[Dict[str, Any]]) -> pd.DataFrame:
    """Normalise student/user records; records without an id are dropped."""
    records = list(records or [])
    report = _new_report("student", len(records))
    rows = []
    seen = set()
    for rec in records:
        if not isinstance(rec, dict):
            _exclude(report, "not_a_record", rec)
            continue
        sid = as_id(rec.get("id") or rec.get("uid") or rec.get("studentId"))
        if not sid:
            _exclude(report, "missing_id", rec)
            continue
        if sid in seen:
            _exclude(report, "duplicate_id", rec)
            continue
        seen.add(sid)
        name = student_display_name(rec) or sid
        rows.append({
            "id": sid,
            "group_id": as_id(pick(rec, "group_id")),
            "first_name": str(rec.get("firstName") or rec.get("first_name") or "").strip(),
            "last_name": str(rec.get("lastName") or rec.get("last_name") or "").strip(),
            "name": name,
        })
    return _finish(report, rows, STUDENT_COLUMNS)


REFERENCE_FIELDS = {
    "group": ["id", "name", "year"],
    "subject": ["id", "name"],
    "semester": ["id", "name", "number"],
}


def normalize_reference(records: Iterable[Dict[str, Any]], kind: str) -> pd.DataFrame:
    """Normalise groups, subjects or semesters to their canonical columns."""
    columns = REFERENCE_FIELDS[kind]
    records = list(records or [])
    report = _new_report(kind, len(records))
    rows = []
    for rec in records:
        if not isinstance(rec, dict) or is_blank(rec.get("id")):
            _exclude(report, "missing_id", rec)
            continue
        row = {"id": as_id(rec.get("id")), "name": str(rec.get("name") or rec.get("id")).strip()}
        if kind == "group":
            row["year"] = rec.get("year")
        elif kind == "semester":
            row["number"] = rec.get("number", rec.get("semester"))
        rows.append(row)
    return _finish(report, rows, columns)


def roster_ids(students: pd.DataFrame, group_id: Optional[str] = None) -> List[str]:
    """Student ids of the roster, optionally restricted to one group."""
    if students.empty:
        return []
    if group_id is not None:
        students = students[students["group_id"] == group_id]
    return students["id"].tolist()
