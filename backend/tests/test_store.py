"""
Tests for core/store.py — record stores, snapshots and the snapshot cache.
"""

import asyncio
import os
import sys
import pytest
import httpx

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.filters import RecordFilter, make_date_range
from core.store import (
    HttpRecordStore,
    InMemoryRecordStore,
    SnapshotCache,
    StoreError,
    build_snapshot,
    load_snapshot,
)

RAW = {
    "grades": [
        {"studentId": "S1", "subjectId": "MATH", "groupId": "G1", "value": "5", "date": "2024-01-10"},
        {"studentId": "S2", "subjectId": "MATH", "groupId": "G1", "value": "3", "date": "2024-01-11"},
        {"studentId": "S3", "subjectId": "MATH", "groupId": "G2", "value": "4", "date": "2024-01-11"},
        {"studentId": "S1", "subjectId": "PHYS", "value": "4", "date": "2024-02-01"},
        {"value": "4", "date": "2024-01-11"},
    ],
    "attendance": [
        {"studentId": "S1", "status": "present", "date": "2024-01-10"},
    ],
    "journals": [
        {
            "id": "J1", "groupId": "G1", "subjectId": "MATH",
            "entries": [{"date": "2024-01-10", "studentId": "S2", "attendance": "late", "grade": "4"}],
        },
    ],
    "students": [
        {"id": "S1", "groupId": "G1", "firstName": "Anna", "lastName": "Petrova"},
        {"id": "S2", "groupId": "G1", "firstName": "Boris", "lastName": "Orlov"},
        {"id": "S3", "groupId": "G2", "firstName": "Vera", "lastName": "Sokolova"},
    ],
    "groups": [{"id": "G1", "name": "10A"}, {"id": "G2", "name": "10B"}],
    "subjects": [{"id": "MATH", "name": "Mathematics"}],
    "semesters": [],
}


class CountingStore(InMemoryRecordStore):

    def __init__(self, **collections):
        super().__init__(**collections)
        self.calls = 0

    async def fetch_grades(self, record_filter):
        self.calls += 1
        return await super().fetch_grades(record_filter)


class TestBuildSnapshot:

    def test_unfiltered(self):
        snap = build_snapshot(RAW)
        # four stand-alone grades plus one journal grade
        assert len(snap.grades) == 5
        assert len(snap.attendance) == 2
        assert snap.report["grades"]["reasons"] == {"missing_student_id": 1}

    def test_journal_facts_follow_standalone_records(self):
        snap = build_snapshot(RAW)
        last = snap.grades.iloc[-1]
        assert last["student_id"] == "S2"
        assert last["value"] == "4"

    def test_group_filter_uses_roster(self):
        snap = build_snapshot(RAW, RecordFilter(group_id="G1"))
        assert sorted(snap.students["id"]) == ["S1", "S2"]
        # S1's PHYS grade has no group stamp but S1 is in G1
        assert sorted(snap.grades["student_id"]) == ["S1", "S1", "S2", "S2"]

    def test_date_range(self):
        snap = build_snapshot(RAW, RecordFilter(date_range=make_date_range("2024-01-11", "2024-01-31")))
        assert set(snap.grades["date"]) == {"2024-01-11"}

    def test_reference_collections(self):
        snap = build_snapshot(RAW)
        assert snap.groups["id"].tolist() == ["G1", "G2"]
        assert snap.semesters.empty


class TestLoadSnapshot:

    def test_in_memory_store(self):
        store = InMemoryRecordStore(**RAW)
        snap = asyncio.run(load_snapshot(store, RecordFilter(subject_id="PHYS")))
        assert snap.grades["student_id"].tolist() == ["S1"]

    def test_unknown_collection_rejected(self):
        with pytest.raises(ValueError):
            InMemoryRecordStore(teachers=[])


class TestSnapshotCache:

    def test_hit_and_invalidate(self):
        store = CountingStore(**RAW)
        cache = SnapshotCache(store)
        f = RecordFilter(group_id="G1")

        async def scenario():
            first = await cache.get(f)
            second = await cache.get(RecordFilter(group_id="G1"))
            assert first is second
            assert store.calls == 1

            await cache.get(RecordFilter(group_id="G2"))
            assert len(cache) == 2
            assert cache.invalidate(f) == 1
            assert cache.invalidate(f) == 0

            await cache.get(f)
            assert store.calls == 3
            assert cache.invalidate() == 2
            assert len(cache) == 0

        asyncio.run(scenario())


class TestHttpRecordStore:

    def _store(self, handler):
        return HttpRecordStore("https://records.test/api/", token="secret", transport=httpx.MockTransport(handler))

    def test_fetches_collections(self):
        seen = []

        def handler(request):
            seen.append(request)
            collection = request.url.path.rsplit("/", 1)[-1]
            if collection == "grades":
                return httpx.Response(200, json={"items": RAW["grades"]})
            return httpx.Response(200, json=RAW.get(collection, []))

        f = RecordFilter(group_id="G1", subject_id="MATH")
        snap = asyncio.run(load_snapshot(self._store(handler), f))
        assert sorted(snap.grades["student_id"]) == ["S1", "S2", "S2"]

        grades_request = next(r for r in seen if r.url.path.endswith("/grades"))
        assert grades_request.headers["Authorization"] == "Bearer secret"
        assert grades_request.url.params["groupId"] == "G1"
        assert grades_request.url.params["subjectId"] == "MATH"

    def test_http_error_raises_store_error(self):
        def handler(request):
            return httpx.Response(503, json={"error": "down"})

        with pytest.raises(StoreError):
            asyncio.run(self._store(handler).fetch_groups())

    def test_unexpected_body_raises_store_error(self):
        def handler(request):
            return httpx.Response(200, json={"unexpected": True})

        with pytest.raises(StoreError):
            asyncio.run(self._store(handler).fetch_subjects())
