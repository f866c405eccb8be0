"""
store.py — Record store accessors and the snapshot cache.

The document store owns every record; this module only fetches. Raw records
are normalised here, at the boundary, so aggregation only ever sees
canonical frames.

- HttpRecordStore     one GET per collection against DATA_API_URL (httpx)
- InMemoryRecordStore seeded from dicts, for local runs and tests
- load_snapshot       parallel fetch + normalisation + filter
- SnapshotCache       explicit cache keyed by the filter tuple
"""

import asyncio
import logging
from typing import Any, Dict, List, NamedTuple, Optional

import httpx
import pandas as pd

from core.filters import RecordFilter, apply_filter
from core.journals import flatten_journal_entries, journal_attendance, journal_grades
from core.normalize import (
    normalize_attendance,
    normalize_grades,
    normalize_reference,
    normalize_students,
    roster_ids,
)

logger = logging.getLogger(__name__)

COLLECTIONS = ["grades", "attendance", "journals", "students", "groups", "subjects", "semesters"]


class StoreError(RuntimeError):
    """The record store could not be reached or returned an unusable body."""


def _as_list(body: Any, collection: str) -> List[Dict[str, Any]]:
    if body is None:
        return []
    if isinstance(body, dict):
        for key in ("items", "documents", collection):
            if isinstance(body.get(key), list):
                body = body[key]
                break
    if not isinstance(body, list):
        raise StoreError(f"Unexpected response for '{collection}': expected a list.")
    return body


class HttpRecordStore:
    """Reads collections from a JSON HTTP API: GET {base_url}/{collection}."""

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    async def _get(self, collection: str, params: Optional[Dict[str, str]] = None) -> List[Dict[str, Any]]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                resp = await client.get(f"/{collection}", params=params or None)
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Fetching '%s' failed: %s", collection, exc)
            raise StoreError(f"Failed to fetch {collection}: {exc}") from exc
        return _as_list(body, collection)

    async def fetch_grades(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        return await self._get("grades", record_filter.as_params())

    async def fetch_attendance(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        return await self._get("attendance", record_filter.as_params())

    async def fetch_journals(self) -> List[Dict[str, Any]]:
        return await self._get("journals")

    async def fetch_students(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        params = {"role": "student"}
        if record_filter.group_id:
            params["groupId"] = record_filter.group_id
        return await self._get("students", params)

    async def fetch_groups(self) -> List[Dict[str, Any]]:
        return await self._get("groups")

    async def fetch_subjects(self) -> List[Dict[str, Any]]:
        return await self._get("subjects")

    async def fetch_semesters(self) -> List[Dict[str, Any]]:
        return await self._get("semesters")


class InMemoryRecordStore:
    """
    Serves collections from memory. Filters are not pushed down;
    load_snapshot applies them after normalisation.
    """

    def __init__(self, **collections: List[Dict[str, Any]]):
        unknown = set(collections) - set(COLLECTIONS)
        if unknown:
            raise ValueError(f"Unknown collections: {sorted(unknown)}")
        self.collections = {name: list(collections.get(name) or []) for name in COLLECTIONS}

    async def _get(self, collection: str) -> List[Dict[str, Any]]:
        return list(self.collections[collection])

    async def fetch_grades(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        return await self._get("grades")

    async def fetch_attendance(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        return await self._get("attendance")

    async def fetch_journals(self) -> List[Dict[str, Any]]:
        return await self._get("journals")

    async def fetch_students(self, record_filter: RecordFilter) -> List[Dict[str, Any]]:
        return await self._get("students")

    async def fetch_groups(self) -> List[Dict[str, Any]]:
        return await self._get("groups")

    async def fetch_subjects(self) -> List[Dict[str, Any]]:
        return await self._get("subjects")

    async def fetch_semesters(self) -> List[Dict[str, Any]]:
        return await self._get("semesters")


# ── Snapshots ───────────────────────────────────────────────────────

class Snapshot(NamedTuple):
    grades: pd.DataFrame
    attendance: pd.DataFrame
    journal_records: pd.DataFrame
    students: pd.DataFrame
    groups: pd.DataFrame
    subjects: pd.DataFrame
    semesters: pd.DataFrame
    report: Dict[str, Any]


def _concat(a: pd.DataFrame, b: pd.DataFrame) -> pd.DataFrame:
    if b.empty:
        return a
    if a.empty:
        return b.reset_index(drop=True)
    return pd.concat([a, b], ignore_index=True)


def build_snapshot(
    raw: Dict[str, List[Dict[str, Any]]],
    record_filter: RecordFilter = RecordFilter(),
    tz: Optional[str] = None,
) -> Snapshot:
    """
    Normalise raw collections and apply the filter.

    Journal facts are merged after the stand-alone records, so on a
    (student, date) collision the journal value is processed last.
    """
    grades, grade_report = normalize_grades(raw.get("grades"), tz)
    attendance, attendance_report = normalize_attendance(raw.get("attendance"), tz)
    flat = flatten_journal_entries(raw.get("journals"), tz)
    students = normalize_students(raw.get("students"))

    grades = _concat(grades, journal_grades(flat))
    attendance = _concat(attendance, journal_attendance(flat))

    ids = None
    if record_filter.group_id is not None:
        ids = roster_ids(students, record_filter.group_id)
        students = students[students["group_id"] == record_filter.group_id].reset_index(drop=True)

    return Snapshot(
        grades=apply_filter(grades, record_filter, roster_ids=ids),
        attendance=apply_filter(attendance, record_filter, roster_ids=ids),
        journal_records=apply_filter(flat, record_filter, roster_ids=ids),
        students=students,
        groups=normalize_reference(raw.get("groups"), "group"),
        subjects=normalize_reference(raw.get("subjects"), "subject"),
        semesters=normalize_reference(raw.get("semesters"), "semester"),
        report={"grades": grade_report, "attendance": attendance_report},
    )


async def load_snapshot(store, record_filter: RecordFilter, tz: Optional[str] = None) -> Snapshot:
    """Fetch every collection in parallel and build a filtered snapshot."""
    results = await asyncio.gather(
        store.fetch_grades(record_filter),
        store.fetch_attendance(record_filter),
        store.fetch_journals(),
        store.fetch_students(record_filter),
        store.fetch_groups(),
        store.fetch_subjects(),
        store.fetch_semesters(),
    )
    raw = {name: list(items or []) for name, items in zip(COLLECTIONS, results)}
    snapshot = build_snapshot(raw, record_filter, tz)
    logger.info(
        "Loaded snapshot for %s: %d grades, %d attendance, %d students",
        record_filter, len(snapshot.grades), len(snapshot.attendance), len(snapshot.students),
    )
    return snapshot


class SnapshotCache:
    """
    Snapshots keyed by filter tuple. Owned by the caller; entries live until
    `invalidate()` is called on explicit refresh.
    """

    def __init__(self, store, tz: Optional[str] = None):
        self.store = store
        self.tz = tz
        self._entries: Dict[RecordFilter, Snapshot] = {}

    async def get(self, record_filter: RecordFilter) -> Snapshot:
        if record_filter in self._entries:
            logger.debug("Snapshot cache hit for %s", record_filter)
            return self._entries[record_filter]
        snapshot = await load_snapshot(self.store, record_filter, self.tz)
        self._entries[record_filter] = snapshot
        return snapshot

    def invalidate(self, record_filter: Optional[RecordFilter] = None) -> int:
        """Drop one entry, or all of them; returns how many were dropped."""
        if record_filter is None:
            dropped = len(self._entries)
            self._entries.clear()
            return dropped
        return 1 if self._entries.pop(record_filter, None) is not None else 0

    def __len__(self):
        return len(self._entries)
