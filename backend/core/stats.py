"""
stats.py — Grade and attendance aggregation.

Computes:
- Per-student stats (total, average, category distribution) and per-subject rows
- Per-group rollups with a per-subject breakdown
- Averages by grade type and by group, raw mark distribution for charts
- Per-student attendance counts and rates

All functions are pure over the frames they receive and never raise on
empty input: an average with nothing to divide is 0.
"""

from typing import Any, Dict, Iterable, List, Optional, Union

import numpy as np
import pandas as pd

from core.grading import (
    CATEGORIES,
    DEFAULT_SCALE,
    DISTRIBUTION_MARKS,
    categorize,
    check_scale,
    empty_categories,
    parse_grade_value,
)
from core.normalize import ATTENDANCE_STATUSES, as_id, pick

Records = Union[pd.DataFrame, Iterable[Dict[str, Any]]]

GRADE_TYPES = {
    "current": "Current",
    "midterm": "Midterm",
    "exam": "Exam",
    "final": "Final",
}


# ── Helpers ─────────────────────────────────────────────────────────

def _safe_float(val) -> float:
    """Round to 2 places; NaN/inf/None become 0."""
    try:
        v = float(val)
    except (TypeError, ValueError):
        return 0.0
    if np.isnan(v) or np.isinf(v):
        return 0.0
    return round(v, 2)


def _average(total: float, count: int) -> float:
    return _safe_float(total / count) if count else 0.0


def grade_frame(records: Records) -> pd.DataFrame:
    """
    Accept a canonical grade frame or a list of loosely shaped grade dicts
    and return a frame with at least student_id, subject_id, group_id, type, value,
    kind and numeric columns. Dates are not required here.
    """
    if isinstance(records, pd.DataFrame):
        df = records.copy()
        if "numeric" not in df.columns and "value" in df.columns:
            parsed = [parse_grade_value(v) for v in df["value"]]
            df["value"] = [p.value for p in parsed]
            df["kind"] = [p.kind for p in parsed]
            df["numeric"] = [p.numeric for p in parsed]
    else:
        rows = []
        for rec in records or []:
            if not isinstance(rec, dict):
                continue
            grade = parse_grade_value(pick(rec, "value"))
            rows.append({
                "student_id": as_id(pick(rec, "student_id")),
                "subject_id": as_id(pick(rec, "subject_id")),
                "group_id": as_id(pick(rec, "group_id")),
                "type": str(pick(rec, "type", "current")).strip().lower(),
                "value": grade.value,
                "kind": grade.kind,
                "numeric": grade.numeric,
            })
        df = pd.DataFrame(rows)

    for col in ("student_id", "subject_id", "group_id", "type", "value", "kind", "numeric"):
        if col not in df.columns:
            df[col] = pd.Series(dtype=object)
    df["student_id"] = df["student_id"].fillna("").astype(str)
    df["numeric"] = pd.to_numeric(df["numeric"], errors="coerce")
    return df


def roster_list(roster: Any) -> List[str]:
    """Student ids from a student frame, a list of dicts or a list of ids."""
    if roster is None:
        return []
    if isinstance(roster, pd.DataFrame):
        col = "id" if "id" in roster.columns else "student_id"
        if col not in roster.columns:
            return []
        return [str(v) for v in roster[col].tolist() if str(v)]
    ids = []
    for item in roster:
        sid = as_id(item.get("id") or pick(item, "student_id")) if isinstance(item, dict) else as_id(item)
        if sid:
            ids.append(sid)
    return ids


def reference_names(reference: Any) -> Dict[str, str]:
    """{id: name} from a normalised reference frame or a list of dicts."""
    if reference is None:
        return {}
    if isinstance(reference, pd.DataFrame):
        if reference.empty or "id" not in reference.columns:
            return {}
        names = reference["name"] if "name" in reference.columns else reference["id"]
        return {str(i): str(n) for i, n in zip(reference["id"], names)}
    if isinstance(reference, dict):
        return {str(k): str(v) for k, v in reference.items()}
    return {
        as_id(r.get("id")): str(r.get("name") or r.get("id"))
        for r in reference if isinstance(r, dict) and as_id(r.get("id"))
    }


class _Bucket:
    """Running sum/count/distribution for one slice of grades."""

    def __init__(self):
        self.total = 0
        self.numeric_count = 0
        self.numeric_sum = 0.0
        self.non_numeric = 0
        self.categories = empty_categories()

    def add_frame(self, df: pd.DataFrame, scale: str):
        numeric = df["numeric"].dropna()
        self.total += len(df)
        self.numeric_count += len(numeric)
        self.numeric_sum += float(numeric.sum())
        self.non_numeric += len(df) - len(numeric)
        for v in numeric:
            self.categories[categorize(float(v), scale)] += 1

    def merge(self, other: "_Bucket"):
        self.total += other.total
        self.numeric_count += other.numeric_count
        self.numeric_sum += other.numeric_sum
        self.non_numeric += other.non_numeric
        for c in CATEGORIES:
            self.categories[c] += other.categories[c]

    def finish(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "numeric_count": self.numeric_count,
            "average": _average(self.numeric_sum, self.numeric_count),
            "categories": dict(self.categories),
            "non_numeric": self.non_numeric,
        }


# ── Student stats ───────────────────────────────────────────────────

def _student_bucket(df: pd.DataFrame, student_id: str, scale: str) -> _Bucket:
    bucket = _Bucket()
    if not df.empty:
        bucket.add_frame(df[df["student_id"] == str(student_id)], scale)
    return bucket


def compute_student_stats(records: Records, student_id: str, scale: str = DEFAULT_SCALE) -> Dict[str, Any]:
    """
    Stats for one student over already-filtered records.

    `total` counts every record of the student; non-numeric marks ("pass",
    "н/а") are counted in `total` and `non_numeric` but are left out of the
    average and of the category buckets.
    """
    check_scale(scale)
    df = grade_frame(records)
    return {"student_id": str(student_id), **_student_bucket(df, student_id, scale).finish()}


def compute_student_subjects(
    records: Records,
    student_id: str,
    scale: str = DEFAULT_SCALE,
    subjects: Any = None,
) -> List[Dict[str, Any]]:
    """
    One row per subject the student has grades in: name, stats and the raw
    marks in record order. Sorted by subject name.
    """
    check_scale(scale)
    df = grade_frame(records)
    if df.empty:
        return []
    names = reference_names(subjects)
    mine = df[df["student_id"] == str(student_id)]

    rows = []
    for subject_id, sub in mine.groupby(mine["subject_id"].fillna("").astype(str), sort=True):
        bucket = _Bucket()
        bucket.add_frame(sub, scale)
        rows.append({
            "subject_id": subject_id,
            "name": names.get(subject_id, subject_id),
            **bucket.finish(),
            "grades": [str(v) for v in sub["value"].tolist()],
        })
    return sorted(rows, key=lambda r: (r["name"], r["subject_id"]))


# ── Group stats ─────────────────────────────────────────────────────

def compute_group_stats(
    records: Records,
    roster: Any,
    scale: str = DEFAULT_SCALE,
    subjects: Any = None,
) -> Dict[str, Any]:
    """
    Roll per-student stats up to the group, with a side breakdown by subject.

    Only roster students contribute. `total_grades` is the sum of the
    per-student totals. Subject entries carry the subject name when
    `subjects` (reference frame or dicts) knows it, else the id.
    """
    check_scale(scale)
    df = grade_frame(records)
    ids = roster_list(roster)

    group = _Bucket()
    students = []
    for sid in ids:
        bucket = _student_bucket(df, sid, scale)
        group.merge(bucket)
        students.append({"student_id": sid, **bucket.finish()})

    names = reference_names(subjects)
    subject_map: Dict[str, Dict[str, Any]] = {}
    in_roster = df[df["student_id"].isin(set(ids))] if not df.empty else df
    if not in_roster.empty:
        for subject_id, sub in in_roster.groupby(in_roster["subject_id"].fillna("").astype(str), sort=True):
            bucket = _Bucket()
            bucket.add_frame(sub, scale)
            subject_map[subject_id] = {"name": names.get(subject_id, subject_id), **bucket.finish()}

    summary = group.finish()
    return {
        "scale": scale,
        "total_students": len(ids),
        "total_grades": summary["total"],
        "numeric_count": summary["numeric_count"],
        "average": summary["average"],
        "categories": summary["categories"],
        "non_numeric": summary["non_numeric"],
        "students": students,
        "subjects": subject_map,
    }


# ── Chart helpers ───────────────────────────────────────────────────

def compute_average_by_type(records: Records) -> List[Dict[str, Any]]:
    """Average numeric grade per grade type; fixed types always present."""
    df = grade_frame(records)
    types = list(GRADE_TYPES)
    if not df.empty:
        extra = sorted(t for t in df["type"].dropna().astype(str).unique() if t and t not in GRADE_TYPES)
        types.extend(extra)

    result = []
    for t in types:
        numeric = df.loc[df["type"] == t, "numeric"].dropna() if not df.empty else pd.Series(dtype=float)
        result.append({
            "type": t,
            "label": GRADE_TYPES.get(t, t.title()),
            "average": _average(float(numeric.sum()), len(numeric)),
            "count": int(len(numeric)),
        })
    return result


def compute_average_by_group(records: Records, students: Any = None, groups: Any = None) -> List[Dict[str, Any]]:
    """
    Average numeric grade per group.

    A record's group is its own group_id, or its student's group from the
    roster when the record carries none. With `groups` given, every listed
    group appears (average 0 when it has no grades); otherwise every group
    found in the records does.
    """
    df = grade_frame(records)
    student_groups: Dict[str, str] = {}
    if isinstance(students, pd.DataFrame) and not students.empty and "group_id" in students.columns:
        student_groups = {str(s): str(g) for s, g in zip(students["id"], students["group_id"]) if g}
    elif isinstance(students, list):
        for s in students:
            if isinstance(s, dict) and as_id(s.get("id")):
                student_groups[as_id(s.get("id"))] = as_id(pick(s, "group_id"))

    sums: Dict[str, float] = {}
    counts: Dict[str, int] = {}
    if not df.empty:
        own = df["group_id"].fillna("").astype(str)
        resolved = [g or student_groups.get(sid, "") for g, sid in zip(own, df["student_id"])]
        for gid, num in zip(resolved, df["numeric"]):
            if not gid or pd.isna(num):
                continue
            sums[gid] = sums.get(gid, 0.0) + float(num)
            counts[gid] = counts.get(gid, 0) + 1

    names = reference_names(groups)
    order = list(names) if groups is not None else sorted(counts)
    return [
        {
            "group_id": gid,
            "name": names.get(gid, gid),
            "average": _average(sums.get(gid, 0.0), counts.get(gid, 0)),
            "count": counts.get(gid, 0),
        }
        for gid in order
    ]


def compute_distribution(records: Records) -> List[Dict[str, Any]]:
    """Counts of the marks 5/4/3/2 and 'н/а'; other values are not charted."""
    df = grade_frame(records)
    counts = {mark: 0 for mark in DISTRIBUTION_MARKS}
    for value in df["value"].dropna().astype(str):
        key = value.strip().lower()
        if key in counts:
            counts[key] += 1
        else:
            num = parse_grade_value(key).numeric
            if num is not None and num.is_integer() and str(int(num)) in counts:
                counts[str(int(num))] += 1
    return [{"mark": mark, "count": count} for mark, count in counts.items()]


# ── Attendance ──────────────────────────────────────────────────────

def compute_attendance_stats(attendance: pd.DataFrame, roster: Any = None) -> Dict[str, Any]:
    """
    Per-student attendance counts and rate.

    The rate counts late arrivals as attended: (present + late) / total * 100.
    Without a roster every student in the records is reported.
    """
    if attendance is None or attendance.empty:
        attendance = pd.DataFrame(columns=["student_id", "status"])
    ids = roster_list(roster) if roster is not None else sorted(
        attendance["student_id"].dropna().astype(str).unique()
    )

    by_student = {
        str(sid): sub["status"].value_counts().to_dict()
        for sid, sub in attendance.groupby(attendance["student_id"].astype(str))
    } if not attendance.empty else {}

    totals = {s: 0 for s in ATTENDANCE_STATUSES}
    students = []
    for sid in ids:
        counts = {s: int(by_student.get(sid, {}).get(s, 0)) for s in ATTENDANCE_STATUSES}
        total = sum(counts.values())
        for s in ATTENDANCE_STATUSES:
            totals[s] += counts[s]
        students.append({
            "student_id": sid,
            **counts,
            "total": total,
            "rate": _average((counts["present"] + counts["late"]) * 100.0, total),
        })

    grand_total = sum(totals.values())
    return {
        "total_students": len(ids),
        "total_entries": grand_total,
        "counts": totals,
        "rate": _average((totals["present"] + totals["late"]) * 100.0, grand_total),
        "students": students,
    }
