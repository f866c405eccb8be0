"""
parser.py — Grade import from CSV / Excel uploads.

Supports:
- CSV files
- Excel (.xlsx) — first non-empty sheet
- Fuzzy column name mapping
- Row validation with per-row error reporting
"""

from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from core.grading import parse_grade_value

SUPPORTED_EXTENSIONS = (".csv", ".xlsx")

IMPORT_GRADE_TYPES = ["exam", "test", "homework", "project", "current", "midterm", "final"]

# Common column name variations for auto-mapping
COLUMN_ALIASES = {
    "student_id": ["student id", "student_id", "studentid", "student"],
    "subject_id": ["subject id", "subject_id", "subjectid", "subject"],
    "group_id": ["group id", "group_id", "groupid", "group"],
    "semester_id": ["semester", "semester id", "semester_id", "semesterid"],
    "value": ["grade", "value", "mark", "score"],
    "type": ["type", "grade type", "grade_type"],
    "date": ["date", "lesson date"],
    "notes": ["notes", "comment", "comments"],
}

REQUIRED_FIELDS = ["student_id", "subject_id", "group_id", "value", "type", "semester_id"]


def parse_upload(file_path: str) -> Dict[str, pd.DataFrame]:
    """
    Parse an uploaded file and return a dict of {sheet_name: DataFrame}.
    For CSV files, returns {"Sheet1": df}.
    """
    path = Path(file_path)
    ext = path.suffix.lower()

    if ext == ".csv":
        df = pd.read_csv(file_path, dtype=str)
        return {"Sheet1": df}

    elif ext == ".xlsx":
        xls = pd.ExcelFile(file_path, engine="openpyxl")
        sheets = {}
        for sheet_name in xls.sheet_names:
            df = pd.read_excel(xls, sheet_name=sheet_name, dtype=str)
            if not df.empty:
                sheets[sheet_name] = df
        if not sheets:
            raise ValueError("No valid sheets found in the Excel file.")
        return sheets

    else:
        raise ValueError(f"Unsupported file type: {ext}")


def suggest_column_mapping(df: pd.DataFrame) -> Dict[str, Optional[str]]:
    """Map canonical field → source column (None when not found)."""
    cols_lower = {str(c).lower().strip(): c for c in df.columns}
    mapping = {}
    for field, aliases in COLUMN_ALIASES.items():
        mapping[field] = next((cols_lower[a] for a in aliases if a in cols_lower), None)
    return mapping


def _text(value: Any) -> str:
    if value is None or (isinstance(value, float) and value != value):
        return ""
    return str(value).strip()


def parse_grade_import(
    df: pd.DataFrame,
    default_date: Optional[str] = None,
) -> Tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
    """
    Validate imported rows and return (records, errors).

    Each row needs a student, subject, group, semester, grade type from the
    allowed set and a numeric grade between 0 and 100. Errors carry the
    spreadsheet row number (header is row 1).
    """
    mapping = suggest_column_mapping(df)
    records: List[Dict[str, Any]] = []
    errors: List[Dict[str, Any]] = []

    for idx, row in enumerate(df.to_dict(orient="records"), start=2):
        values = {
            field: _text(row.get(col)) if col else ""
            for field, col in mapping.items()
        }

        missing = [f for f in REQUIRED_FIELDS if not values[f]]
        if missing:
            errors.append({"row": idx, "error": f"Missing fields: {', '.join(missing)}"})
            continue

        grade_type = values["type"].lower()
        if grade_type not in IMPORT_GRADE_TYPES:
            errors.append({"row": idx, "error": f"Invalid grade type: {values['type']}"})
            continue

        grade = parse_grade_value(values["value"])
        if grade.numeric is None or not 0 <= grade.numeric <= 100:
            errors.append({"row": idx, "error": f"Invalid grade value: {values['value']}"})
            continue

        records.append({
            "studentId": values["student_id"],
            "subjectId": values["subject_id"],
            "groupId": values["group_id"],
            "semesterId": values["semester_id"],
            "value": grade.value,
            "type": grade_type,
            "date": values["date"] or default_date,
            "notes": values["notes"] or None,
        })

    return records, errors
