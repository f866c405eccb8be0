"""
Tests for core/matrix.py — student × date tables.
"""

import os
import sys
import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.filters import DateRange
from core.matrix import build_date_indexed_matrix, matrix_to_frame
from core.normalize import normalize_attendance, normalize_grades


@pytest.fixture
def grades_df():
    raw = [
        {"studentId": "A", "value": "4", "date": "2024-01-10T08:00:00"},
        {"studentId": "A", "value": "5", "date": "2024-01-10T15:00:00"},
        {"studentId": "A", "value": "3", "date": "2024-01-12"},
        {"studentId": "B", "value": "2", "date": "2024-01-11"},
        {"studentId": "B", "value": "5", "date": "2024-02-01"},
        {"studentId": "C", "value": "5", "date": "2024-01-09"},
    ]
    df, _ = normalize_grades(raw)
    return df


class TestBuildDateIndexedMatrix:

    def test_last_record_wins(self):
        records = [
            {"student": "A", "date": "2024-01-10", "value": "4"},
            {"student": "A", "date": "2024-01-10", "value": "5"},
        ]
        matrix = build_date_indexed_matrix(records)
        assert matrix["cells"]["A"]["2024-01-10"] == "5"
        assert matrix["collisions"] == 1

    def test_time_of_day_ignored(self, grades_df):
        matrix = build_date_indexed_matrix(grades_df)
        assert matrix["cells"]["A"]["2024-01-10"] == "5"

    def test_dates_sorted_unique(self, grades_df):
        matrix = build_date_indexed_matrix(grades_df)
        assert matrix["dates"] == ["2024-01-09", "2024-01-10", "2024-01-11", "2024-01-12", "2024-02-01"]

    def test_date_range_inclusive(self, grades_df):
        dr = DateRange("2024-01-10", "2024-01-12")
        matrix = build_date_indexed_matrix(grades_df, date_range=dr)
        assert matrix["dates"] == ["2024-01-10", "2024-01-11", "2024-01-12"]
        for cells in matrix["cells"].values():
            assert all(dr.contains(d) for d in cells)

    def test_every_date_has_a_cell(self, grades_df):
        matrix = build_date_indexed_matrix(grades_df, roster=["A", "B"], date_range=DateRange("2024-01-09", None))
        for d in matrix["dates"]:
            assert any(d in cells for cells in matrix["cells"].values())
        # C's date is not listed because C is not on the roster
        assert "2024-01-09" not in matrix["dates"]

    def test_missing_cells_are_absent(self, grades_df):
        matrix = build_date_indexed_matrix(grades_df, roster=["A", "B", "Z"])
        assert "2024-01-11" not in matrix["cells"]["A"]
        assert matrix["cells"]["Z"] == {}
        assert matrix["students"] == ["A", "B", "Z"]

    def test_attendance_matrix(self):
        att, _ = normalize_attendance([
            {"studentId": "A", "status": "late", "date": "2024-01-10"},
            {"studentId": "B", "status": "absent", "date": "2024-01-10"},
        ])
        matrix = build_date_indexed_matrix(att)
        assert matrix["cells"] == {"A": {"2024-01-10": "late"}, "B": {"2024-01-10": "absent"}}

    def test_empty(self):
        matrix = build_date_indexed_matrix([], roster=["A"])
        assert matrix["dates"] == []
        assert matrix["cells"] == {"A": {}}


class TestMatrixToFrame:

    def test_blank_cells_are_empty_strings(self, grades_df):
        matrix = build_date_indexed_matrix(grades_df, roster=["A", "B"])
        frame = matrix_to_frame(matrix)
        assert frame.loc["A", "2024-01-11"] == ""
        assert frame.loc["B", "2024-01-11"] == "2"


class TestBlankCells:

    def test_valueless_grade_adds_no_date(self):
        df, _ = normalize_grades([
            {"studentId": "A", "value": "5", "date": "2024-01-10"},
            {"studentId": "A", "date": "2024-01-11"},
        ])
        matrix = build_date_indexed_matrix(df)
        assert matrix["dates"] == ["2024-01-10"]
        assert matrix["cells"] == {"A": {"2024-01-10": "5"}}

    def test_blank_raw_cells_skipped(self):
        records = [
            {"student": "A", "date": "2024-01-10", "value": "4"},
            {"student": "B", "date": "2024-01-11", "value": " "},
        ]
        matrix = build_date_indexed_matrix(records, roster=["A", "B"])
        assert matrix["dates"] == ["2024-01-10"]
        for d in matrix["dates"]:
            assert any(str(cells.get(d, "")).strip() for cells in matrix["cells"].values())
