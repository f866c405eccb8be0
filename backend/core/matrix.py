"""
matrix.py — Calendar-indexed student × date tables.

The grade book and attendance screens render one row per student and one
column per lesson date. Cells hold the raw mark or attendance status.
"""

from typing import Any, Dict, Iterable, Optional, Union

import pandas as pd

from core.filters import DateRange, to_calendar_date
from core.normalize import as_id, pick
from core.stats import roster_list


def _fact_frame(records: Union[pd.DataFrame, Iterable[Dict[str, Any]]], value_col: Optional[str], tz: Optional[str]) -> pd.DataFrame:
    if isinstance(records, pd.DataFrame):
        df = records
        if value_col is None:
            value_col = "value" if "value" in df.columns else "status"
        if df.empty or value_col not in df.columns:
            return pd.DataFrame(columns=["student_id", "date", "cell"])
        return pd.DataFrame({
            "student_id": df["student_id"].fillna("").astype(str),
            "date": [to_calendar_date(d, tz) for d in df["date"]],
            "cell": df[value_col],
        })

    rows = []
    for rec in records or []:
        if not isinstance(rec, dict):
            continue
        raw = rec.get(value_col) if value_col else pick(rec, "value", pick(rec, "status"))
        rows.append({
            "student_id": as_id(pick(rec, "student_id")),
            "date": to_calendar_date(pick(rec, "date"), tz),
            "cell": raw,
        })
    return pd.DataFrame(rows, columns=["student_id", "date", "cell"])


def build_date_indexed_matrix(
    records,
    roster: Any = None,
    date_range: Optional[DateRange] = None,
    value_col: Optional[str] = None,
    tz: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Build {dates, students, cells, collisions} from fact records.

    - Only dates within the inclusive range are kept, compared as calendar
      dates (time of day is dropped).
    - `dates` holds the sorted unique dates of the kept records.
    - When two records land on the same (student, date), the one processed
      last wins; `collisions` counts the overwritten cells.
    - A student without a record on a date has no cell for it.
    - With a roster, only roster students appear; without one, every student
      found in the records does.
    """
    date_range = date_range or DateRange()
    df = _fact_frame(records, value_col, tz)
    df = df[(df["student_id"] != "") & df["date"].notna() & df["cell"].notna()]
    # blank marks never make a cell
    df = df[df["cell"].astype(str).str.strip() != ""]

    if date_range.start or date_range.end:
        df = df[[date_range.contains(d) for d in df["date"]]] if not df.empty else df

    if roster is not None:
        students = roster_list(roster)
        df = df[df["student_id"].isin(set(students))]
    else:
        students = list(dict.fromkeys(df["student_id"].tolist()))

    cells: Dict[str, Dict[str, Any]] = {sid: {} for sid in students}
    collisions = 0
    for sid, iso, cell in df[["student_id", "date", "cell"]].itertuples(index=False, name=None):
        if iso in cells[sid]:
            collisions += 1
        cells[sid][iso] = cell

    return {
        "dates": sorted(set(df["date"].tolist())),
        "students": students,
        "cells": cells,
        "collisions": collisions,
    }


def matrix_to_frame(matrix: Dict[str, Any]) -> pd.DataFrame:
    """Student-indexed frame with one column per date; blanks are empty strings."""
    frame = pd.DataFrame(
        [[matrix["cells"].get(sid, {}).get(d, "") for d in matrix["dates"]] for sid in matrix["students"]],
        index=matrix["students"],
        columns=matrix["dates"],
    )
    frame.index.name = "student_id"
    return frame
