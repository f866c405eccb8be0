"""
filters.py — Filter tuple and calendar-date helpers.

Every view of the dashboard is scoped by (group, subject, semester, date
range). An unset axis ("all", "" or None) places no restriction on it.
"""

import re
from datetime import date, datetime
from typing import Any, NamedTuple, Optional

import pandas as pd

UNSET_VALUES = {"", "all"}

# dd.mm.yyyy, as typed in ru-RU spreadsheets
DOTTED_DATE = re.compile(r"^\d{1,2}\.\d{1,2}\.\d{4}\b")


def is_unset(value: Any) -> bool:
    if value is None:
        return True
    return isinstance(value, str) and value.strip().lower() in UNSET_VALUES


def to_calendar_date(value: Any, tz: Optional[str] = None) -> Optional[str]:
    """
    Return the local calendar date of a timestamp-like value as 'YYYY-MM-DD'.

    Accepts datetime/date, ISO strings, dotted day-first dates (10.01.2024),
    epoch milliseconds and Firestore-style {"seconds": ...} dicts. Time of day
    is discarded; aware timestamps are converted to `tz` first. Returns None
    when the value cannot be read.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        if seconds is None:
            return None
        ts = pd.to_datetime(seconds, unit="s", utc=True, errors="coerce")
    elif isinstance(value, (int, float)):
        ts = pd.to_datetime(value, unit="ms", utc=True, errors="coerce")
    elif isinstance(value, date) and not isinstance(value, datetime):
        return value.isoformat()
    elif isinstance(value, str) and DOTTED_DATE.match(value.strip()):
        ts = pd.to_datetime(value.strip(), dayfirst=True, errors="coerce")
    else:
        try:
            ts = pd.Timestamp(value)
        except (TypeError, ValueError):
            return None
    if ts is None or pd.isna(ts):
        return None
    if ts.tzinfo is not None:
        ts = ts.tz_convert(tz or "UTC")
    return ts.strftime("%Y-%m-%d")


class DateRange(NamedTuple):
    start: Optional[str] = None
    end: Optional[str] = None

    def contains(self, iso: str) -> bool:
        if self.start and iso < self.start:
            return False
        if self.end and iso > self.end:
            return False
        return True


def make_date_range(start: Any = None, end: Any = None, tz: Optional[str] = None) -> DateRange:
    return DateRange(
        None if is_unset(start) else to_calendar_date(start, tz),
        None if is_unset(end) else to_calendar_date(end, tz),
    )


class RecordFilter(NamedTuple):
    """Hashable filter tuple; also the snapshot cache key."""
    group_id: Optional[str] = None
    subject_id: Optional[str] = None
    semester_id: Optional[str] = None
    date_range: DateRange = DateRange()

    @classmethod
    def from_payload(cls, payload: dict, tz: Optional[str] = None) -> "RecordFilter":
        def _axis(*keys):
            for k in keys:
                v = payload.get(k)
                if not is_unset(v):
                    return str(v)
            return None

        return cls(
            group_id=_axis("group_id", "groupId", "group"),
            subject_id=_axis("subject_id", "subjectId", "subject"),
            semester_id=_axis("semester_id", "semesterId", "semester"),
            date_range=make_date_range(
                payload.get("start") or payload.get("date_from"),
                payload.get("end") or payload.get("date_to"),
                tz,
            ),
        )

    def as_params(self) -> dict:
        params = {
            "groupId": self.group_id,
            "subjectId": self.subject_id,
            "semesterId": self.semester_id,
            "start": self.date_range.start,
            "end": self.date_range.end,
        }
        return {k: v for k, v in params.items() if v is not None}


def apply_filter(df: pd.DataFrame, record_filter: RecordFilter, roster_ids=None) -> pd.DataFrame:
    """
    Apply the filter to a canonical frame; axes missing from the frame are skipped.

    Records without a group id match the group axis when their student is in
    `roster_ids` (the group's roster), since grades are not always stamped
    with a group.
    """
    if df.empty:
        return df
    mask = pd.Series(True, index=df.index)
    if record_filter.group_id is not None and "group_id" in df.columns:
        groups = df["group_id"].fillna("").astype(str)
        group_mask = groups == record_filter.group_id
        if roster_ids is not None and "student_id" in df.columns:
            group_mask |= (groups == "") & df["student_id"].astype(str).isin(set(roster_ids))
        mask &= group_mask
    for col, wanted in (
        ("subject_id", record_filter.subject_id),
        ("semester_id", record_filter.semester_id),
    ):
        if wanted is not None and col in df.columns:
            mask &= df[col].astype(str) == wanted
    dr = record_filter.date_range
    if "date" in df.columns:
        dates = df["date"].astype(str)
        if dr.start:
            mask &= dates >= dr.start
        if dr.end:
            mask &= dates <= dr.end
    return df[mask].reset_index(drop=True)
