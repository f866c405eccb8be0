"""
Shared route helpers — payload parsing and snapshot resolution.
"""

import json
import os

import pandas as pd
from fastapi import HTTPException, Request

from core.filters import RecordFilter
from core.grading import DEFAULT_SCALE, check_scale
from core.store import Snapshot, StoreError, build_snapshot

TIMEZONE = os.getenv("TIMEZONE", "UTC")
GRADE_SCALE = os.getenv("GRADE_SCALE", DEFAULT_SCALE)

INLINE_KEYS = ("grades", "attendance", "journals", "students", "groups", "subjects", "semesters")


def df_records(df: pd.DataFrame) -> list:
    """
    Convert DataFrame rows to JSON-safe records.
    Ensures NaN becomes null so FastAPI serialization won't raise 500.
    """
    if df.empty:
        return []
    return json.loads(df.to_json(orient="records"))


def resolve_scale(payload: dict) -> str:
    try:
        return check_scale(payload.get("scale") or GRADE_SCALE)
    except ValueError as e:
        raise HTTPException(400, str(e))


def filter_from_payload(payload: dict) -> RecordFilter:
    return RecordFilter.from_payload(payload.get("filter") or payload, tz=TIMEZONE)


async def snapshot_from_payload(payload: dict, request: Request) -> Snapshot:
    """
    Records sent inline are normalised directly; otherwise the snapshot comes
    from the app's cache, which fetches from the record store on a miss.
    """
    record_filter = filter_from_payload(payload)
    if any(key in payload for key in INLINE_KEYS):
        raw = {key: payload.get(key) or [] for key in INLINE_KEYS}
        return build_snapshot(raw, record_filter, tz=TIMEZONE)

    cache = request.app.state.snapshot_cache
    try:
        return await cache.get(record_filter)
    except StoreError as e:
        raise HTTPException(502, f"Could not load records: {e}")


def roster_of(snapshot: Snapshot):
    """The snapshot's students, or None when no roster was loaded."""
    return snapshot.students if not snapshot.students.empty else None


def roster_or_graded(snapshot: Snapshot):
    """The roster, falling back to every student that has a grade."""
    roster = roster_of(snapshot)
    if roster is not None:
        return roster
    if snapshot.grades.empty:
        return []
    return sorted(snapshot.grades["student_id"].unique())


def reference_of(frame: pd.DataFrame):
    """A reference frame, or None when none was loaded."""
    return frame if not frame.empty else None
