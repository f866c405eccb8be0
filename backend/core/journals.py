"""
journals.py — Journal documents: flattening and per-date entry edits.

A journal bundles one group's lessons for a subject and semester. Its
`entries` are stored per lesson day and come in two shapes:

- a single-student entry: {date, studentId, attendance: "late", grade: 4}
- a day entry with lists: {date, topic, attendance: [{studentId, status}],
  grades: [{studentId, grade}]}

`flatten_journal_entries` turns both into one flat record per
(student, date, fact) so they can be aggregated like stand-alone grades and
attendance.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from core.filters import to_calendar_date
from core.grading import parse_grade_value
from core.normalize import (
    ATTENDANCE_COLUMNS,
    GRADE_COLUMNS,
    as_id,
    is_blank,
    normalize_status,
    pick,
)

logger = logging.getLogger(__name__)

FLAT_COLUMNS = [
    "journal_id", "student_id", "subject_id", "semester_id", "group_id",
    "date", "fact", "value",
]
SORT_KEYS = [
    "date", "student_id", "fact", "journal_id",
    "subject_id", "semester_id", "group_id", "value",
]


def _grade_text(raw: Any) -> Optional[str]:
    if is_blank(raw):
        return None
    return parse_grade_value(raw).value


def _entry_facts(entry: Dict[str, Any]) -> List[Dict[str, str]]:
    """Yield (student_id, fact, value) dicts for one journal entry."""
    facts = []
    attendance = entry.get("attendance")

    if isinstance(attendance, list):
        for item in attendance:
            if not isinstance(item, dict):
                continue
            sid = as_id(pick(item, "student_id"))
            if not sid:
                continue
            status = normalize_status(pick(item, "status"))
            if status:
                facts.append({"student_id": sid, "fact": "attendance", "value": status})
            grade = _grade_text(pick(item, "value"))
            if grade is not None:
                facts.append({"student_id": sid, "fact": "grade", "value": grade})

    grades = entry.get("grades")
    if isinstance(grades, list):
        for item in grades:
            if not isinstance(item, dict):
                continue
            sid = as_id(pick(item, "student_id"))
            grade = _grade_text(pick(item, "value"))
            if sid and grade is not None:
                facts.append({"student_id": sid, "fact": "grade", "value": grade})

    sid = as_id(pick(entry, "student_id"))
    if sid:
        if not isinstance(attendance, list):
            status = normalize_status(attendance if attendance is not None else entry.get("status"))
            if status:
                facts.append({"student_id": sid, "fact": "attendance", "value": status})
        grade = _grade_text(entry.get("grade", entry.get("value")))
        if grade is not None:
            facts.append({"student_id": sid, "fact": "grade", "value": grade})

    return facts


def flatten_journal_entries(journals: Iterable[Dict[str, Any]], tz: Optional[str] = None) -> pd.DataFrame:
    """
    Flatten journals into one record per (student, date, fact).

    The result is sorted on every column that identifies a record, so the
    same snapshot always yields the same frame whatever the input order.
    """
    rows = []
    skipped = 0
    for journal in journals or []:
        if not isinstance(journal, dict):
            skipped += 1
            continue
        entries = journal.get("entries")
        if not isinstance(entries, list):
            continue
        base = {
            "journal_id": as_id(journal.get("id")),
            "subject_id": as_id(pick(journal, "subject_id")),
            "semester_id": as_id(pick(journal, "semester_id")),
            "group_id": as_id(pick(journal, "group_id")),
        }
        for entry in entries:
            if not isinstance(entry, dict):
                skipped += 1
                continue
            iso = to_calendar_date(entry.get("date"), tz)
            if iso is None:
                skipped += 1
                continue
            for fact in _entry_facts(entry):
                rows.append({**base, "date": iso, **fact})

    if skipped:
        logger.debug("Skipped %d malformed journal entries", skipped)

    flat = pd.DataFrame(rows, columns=FLAT_COLUMNS)
    if flat.empty:
        return flat
    return flat.sort_values(SORT_KEYS, kind="mergesort").reset_index(drop=True)


def journal_grades(flat: pd.DataFrame) -> pd.DataFrame:
    """Project flattened grade facts onto the canonical grade frame."""
    rows = []
    for rec in flat[flat["fact"] == "grade"].to_dict(orient="records"):
        grade = parse_grade_value(rec["value"])
        rows.append({
            "student_id": rec["student_id"],
            "subject_id": rec["subject_id"],
            "semester_id": rec["semester_id"],
            "group_id": rec["group_id"],
            "date": rec["date"],
            "value": grade.value,
            "kind": grade.kind,
            "numeric": grade.numeric,
            "type": "current",
            "fact": "grade",
        })
    return pd.DataFrame(rows, columns=GRADE_COLUMNS)


def journal_attendance(flat: pd.DataFrame) -> pd.DataFrame:
    """Project flattened attendance facts onto the canonical attendance frame."""
    att = flat[flat["fact"] == "attendance"].rename(columns={"value": "status"})
    return att.reindex(columns=ATTENDANCE_COLUMNS).reset_index(drop=True)


# ── Entry edits ─────────────────────────────────────────────────────

def _sort_entries(entries: List[Any], tz: Optional[str]) -> List[Any]:
    for entry in entries:
        if isinstance(entry, dict) and isinstance(entry.get("attendance"), list):
            entry["attendance"].sort(
                key=lambda a: str(pick(a, "student_id", "")) if isinstance(a, dict) else ""
            )

    def key(entry):
        if not isinstance(entry, dict):
            return (True, "", "")
        iso = to_calendar_date(entry.get("date"), tz)
        # undated entries last
        return (iso is None, iso or "", str(entry.get("topic") or ""))

    return sorted(entries, key=key)


def remove_entries_for_date(journal: Dict[str, Any], date: Any, tz: Optional[str] = None) -> Dict[str, Any]:
    """
    Return a copy of the journal without any entry on the given calendar date.
    Entries that are not objects are kept as they are.
    """
    target = to_calendar_date(date, tz)
    if target is None:
        raise ValueError(f"Unreadable date: {date!r}")
    updated = copy.deepcopy(journal)
    updated["entries"] = [
        e for e in updated.get("entries") or []
        if not isinstance(e, dict) or to_calendar_date(e.get("date"), tz) != target
    ]
    return updated


def replace_entries_for_date(
    journal: Dict[str, Any],
    date: Any,
    entries: List[Dict[str, Any]],
    tz: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Return a copy of the journal whose entries for `date` are replaced by
    `entries`. Entries stay sorted by date then topic, attendance lists by
    student id.
    """
    updated = remove_entries_for_date(journal, date, tz)
    new_entries = [{**copy.deepcopy(e), "date": date} for e in entries or []]
    updated["entries"] = _sort_entries(updated["entries"] + new_entries, tz)
    return updated
