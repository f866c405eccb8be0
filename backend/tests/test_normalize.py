"""
Tests for core/normalize.py — alias resolution, status mapping, exclusion report.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.normalize import (
    GRADE_COLUMNS,
    normalize_attendance,
    normalize_grades,
    normalize_reference,
    normalize_students,
    normalize_status,
    roster_ids,
)


@pytest.fixture
def mixed_grades():
    """Grades from several schema generations."""
    return [
        {"studentId": "S001", "subjectId": "MATH", "semesterId": "SEM1", "value": "5", "type": "exam", "date": "2024-01-10"},
        {"student_id": "S002", "subject": "MATH", "semester": 1, "grade": 87, "date": {"seconds": 1704844800}},
        {"uid": "S003", "journalId": "MATH", "value": "зачет", "gradeType": "final", "date": "2024-01-12T10:00:00"},
        {"subjectId": "MATH", "value": "4", "date": "2024-01-10"},
        {"studentId": "S004", "value": "4", "date": "someday"},
        "garbage",
    ]


class TestNormalizeGrades:

    def test_returns_frame_and_report(self, mixed_grades):
        df, report = normalize_grades(mixed_grades)
        assert list(df.columns) == GRADE_COLUMNS
        assert isinstance(report, dict)

    def test_aliases_resolved(self, mixed_grades):
        df, _ = normalize_grades(mixed_grades)
        assert df["student_id"].tolist() == ["S001", "S002", "S003"]
        assert df["subject_id"].tolist() == ["MATH", "MATH", "MATH"]
        assert df.loc[1, "semester_id"] == "1"
        assert df.loc[1, "value"] == "87"
        assert df.loc[2, "type"] == "final"

    def test_tagged_values(self, mixed_grades):
        df, _ = normalize_grades(mixed_grades)
        assert df["kind"].tolist() == ["numeric", "numeric", "categorical"]
        assert df.loc[0, "numeric"] == 5.0

    def test_dates_are_calendar_strings(self, mixed_grades):
        df, _ = normalize_grades(mixed_grades)
        assert df["date"].tolist() == ["2024-01-10", "2024-01-10", "2024-01-12"]

    def test_malformed_records_reported(self, mixed_grades):
        _, report = normalize_grades(mixed_grades)
        assert report["received"] == 6
        assert report["kept"] == 3
        assert report["excluded"] == 3
        assert report["reasons"] == {"missing_student_id": 1, "bad_date": 1, "not_a_record": 1}

    def test_default_type_is_current(self, mixed_grades):
        df, _ = normalize_grades(mixed_grades)
        assert df.loc[1, "type"] == "current"

    def test_none_input(self):
        df, report = normalize_grades(None)
        assert df.empty
        assert report["received"] == 0


class TestNormalizeAttendance:

    def test_statuses(self):
        raw = [
            {"studentId": "S1", "status": "Present", "date": "2024-01-10"},
            {"studentId": "S2", "attendance": "excused", "date": "2024-01-10"},
            {"studentId": "S3", "present": False, "date": "2024-01-10"},
            {"studentId": "S4", "status": "sleeping", "date": "2024-01-10"},
        ]
        df, report = normalize_attendance(raw)
        assert df["status"].tolist() == ["present", "excused", "absent"]
        assert report["reasons"] == {"unknown_status": 1}

    def test_normalize_status(self):
        assert normalize_status("LATE") == "late"
        assert normalize_status(True) == "present"
        assert normalize_status("") is None


class TestRosterAndReference:

    def test_students(self):
        df = normalize_students([
            {"id": "S1", "firstName": "Ivan", "lastName": "Ivanov", "groupId": "G1"},
            {"uid": "S2", "name": "Maria", "group": "G2"},
            {"id": "S1", "firstName": "Dup"},
            {"firstName": "NoId"},
        ])
        assert df["id"].tolist() == ["S1", "S2"]
        assert df["name"].tolist() == ["Ivanov Ivan", "Maria"]
        assert df["group_id"].tolist() == ["G1", "G2"]

    def test_roster_ids(self):
        df = normalize_students([
            {"id": "S1", "groupId": "G1"},
            {"id": "S2", "groupId": "G2"},
            {"id": "S3", "groupId": "G1"},
        ])
        assert roster_ids(df, "G1") == ["S1", "S3"]
        assert roster_ids(df) == ["S1", "S2", "S3"]

    def test_reference(self):
        semesters = normalize_reference([{"id": "SEM1", "name": "Autumn", "number": 1}, {"name": "x"}], "semester")
        assert semesters.to_dict(orient="records") == [{"id": "SEM1", "name": "Autumn", "number": 1}]


class TestBlankGradeValues:

    def test_blank_value_excluded(self):
        df, report = normalize_grades([
            {"studentId": "A", "value": "5", "date": "2024-01-10"},
            {"studentId": "A", "date": "2024-01-11"},
            {"studentId": "A", "value": "  ", "date": "2024-01-12"},
        ])
        assert df["date"].tolist() == ["2024-01-10"]
        assert report["reasons"] == {"missing_value": 2}
