"""
Tests for core/parser.py — upload parsing, column mapping, grade import validation.
"""

import os
import sys
import tempfile
import pytest
import pandas as pd

# Ensure backend/ is on the path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from core.parser import (
    parse_grade_import,
    parse_upload,
    suggest_column_mapping,
)

CSV_TEXT = (
    "Student ID,Subject ID,Group ID,Grade,Type,Semester,Date,Notes\n"
    "S1,MATH,G1,87,exam,SEM1,2024-01-10,\n"
    "S2,MATH,G1,5,Homework,SEM1,,late submission\n"
    "S3,MATH,G1,abc,exam,SEM1,2024-01-10,\n"
    "S4,MATH,G1,140,exam,SEM1,2024-01-10,\n"
    "S5,MATH,G1,70,quiz,SEM1,2024-01-10,\n"
    ",MATH,G1,70,exam,SEM1,2024-01-10,\n"
)


@pytest.fixture
def csv_path():
    with tempfile.NamedTemporaryFile("w", suffix=".csv", delete=False, encoding="utf-8") as f:
        f.write(CSV_TEXT)
        path = f.name
    yield path
    os.unlink(path)


@pytest.fixture
def import_df(csv_path):
    return parse_upload(csv_path)["Sheet1"]


class TestParseUpload:
    """Tests for the parse_upload function."""

    def test_csv_returns_single_sheet(self, csv_path):
        result = parse_upload(csv_path)
        assert list(result.keys()) == ["Sheet1"]
        assert isinstance(result["Sheet1"], pd.DataFrame)
        assert len(result["Sheet1"]) == 6

    def test_values_kept_as_text(self, import_df):
        assert import_df.loc[0, "Grade"] == "87"

    def test_xlsx(self):
        with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
            path = f.name
        try:
            pd.DataFrame({"Student ID": ["S1"], "Grade": ["5"]}).to_excel(path, index=False, sheet_name="Grades")
            result = parse_upload(path)
            assert list(result.keys()) == ["Grades"]
            assert result["Grades"].loc[0, "Student ID"] == "S1"
        finally:
            os.unlink(path)

    def test_unsupported_extension_raises(self):
        with pytest.raises(ValueError):
            parse_upload("grades.txt")


class TestColumnMapping:

    def test_suggests_known_aliases(self, import_df):
        mapping = suggest_column_mapping(import_df)
        assert mapping["student_id"] == "Student ID"
        assert mapping["value"] == "Grade"
        assert mapping["semester_id"] == "Semester"

    def test_missing_columns_are_none(self):
        mapping = suggest_column_mapping(pd.DataFrame({"Student": ["S1"]}))
        assert mapping["student_id"] == "Student"
        assert mapping["notes"] is None


class TestParseGradeImport:

    def test_valid_rows(self, import_df):
        records, _ = parse_grade_import(import_df, default_date="2024-02-01")
        assert [r["studentId"] for r in records] == ["S1", "S2"]
        assert records[0]["value"] == "87"
        assert records[0]["notes"] is None
        assert records[1]["type"] == "homework"
        assert records[1]["notes"] == "late submission"

    def test_default_date_fills_blank(self, import_df):
        records, _ = parse_grade_import(import_df, default_date="2024-02-01")
        assert records[0]["date"] == "2024-01-10"
        assert records[1]["date"] == "2024-02-01"

    def test_errors_carry_row_numbers(self, import_df):
        _, errors = parse_grade_import(import_df)
        assert [e["row"] for e in errors] == [4, 5, 6, 7]
        assert errors[0]["error"].startswith("Invalid grade value")
        assert errors[1]["error"].startswith("Invalid grade value")
        assert errors[2]["error"].startswith("Invalid grade type")
        assert "student_id" in errors[3]["error"]

    def test_empty_frame(self):
        records, errors = parse_grade_import(pd.DataFrame())
        assert records == []
        assert errors == []
