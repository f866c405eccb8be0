"""
grading.py — Canonical grade values and category bucketing.

A grade arrives either as a number on the 5-point scale ("5", "4", ...), a
number on the 100-point scale ("87"), or a categorical mark ("зачет",
"pass", "н/а"). Every raw value is parsed once into a GradeValue and every
numeric value is bucketed by a single function parameterised by scale.
"""

import math
from typing import Any, Dict, List, NamedTuple, Optional


class GradeValue(NamedTuple):
    kind: str                   # "numeric" | "categorical"
    value: str                  # raw value as text
    numeric: Optional[float]    # None for categorical values


CATEGORIES = ["excellent", "good", "satisfactory", "unsatisfactory"]

CATEGORY_LABELS = {
    "excellent": "Excellent",
    "good": "Good",
    "satisfactory": "Satisfactory",
    "unsatisfactory": "Unsatisfactory",
}

# Scale bands (min_value, category), ordered high to low.
SCALES = {
    "five_point": [
        (5.0, "excellent"),
        (4.0, "good"),
        (3.0, "satisfactory"),
    ],
    "hundred_point": [
        (90.0, "excellent"),
        (75.0, "good"),
        (60.0, "satisfactory"),
    ],
}

SCALE_MAX = {"five_point": 5.0, "hundred_point": 100.0}

DEFAULT_SCALE = "five_point"

# Marks the dashboard shows in the distribution chart.
DISTRIBUTION_MARKS = ["5", "4", "3", "2", "н/а"]


def check_scale(scale: str) -> str:
    """Return the scale name or raise ValueError for an unknown one."""
    if scale not in SCALES:
        raise ValueError(f"Unknown grading scale: {scale!r}. Use one of {sorted(SCALES)}.")
    return scale


def _coerce_number(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        v = float(raw)
    else:
        text = str(raw).strip().replace(",", ".")
        if not text:
            return None
        try:
            v = float(text)
        except ValueError:
            return None
    if math.isnan(v) or math.isinf(v):
        return None
    return v


def parse_grade_value(raw: Any) -> GradeValue:
    """Parse a raw grade into its tagged form."""
    numeric = _coerce_number(raw)
    if numeric is None:
        text = "" if raw is None else str(raw).strip()
        if text.lower() == "nan":
            text = ""
        return GradeValue("categorical", text, None)
    text = str(raw).strip() if isinstance(raw, str) else _format_number(numeric)
    return GradeValue("numeric", text, numeric)


def _format_number(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


def categorize(numeric: Optional[float], scale: str = DEFAULT_SCALE) -> Optional[str]:
    """Bucket a numeric grade; categorical values (None) have no bucket."""
    if numeric is None:
        return None
    for min_value, category in SCALES[check_scale(scale)]:
        if numeric >= min_value:
            return category
    return "unsatisfactory"


def empty_categories() -> Dict[str, int]:
    return {c: 0 for c in CATEGORIES}


def get_scale_thresholds(scale: str = DEFAULT_SCALE) -> List[Dict[str, Any]]:
    """Return the band table for legends."""
    bands = SCALES[check_scale(scale)]
    thresholds = []
    for idx, (min_value, category) in enumerate(bands):
        upper = SCALE_MAX[scale] if idx == 0 else bands[idx - 1][0]
        thresholds.append({
            "category": category,
            "label": CATEGORY_LABELS[category],
            "min": min_value,
            "max": upper,
        })
    thresholds.append({
        "category": "unsatisfactory",
        "label": CATEGORY_LABELS["unsatisfactory"],
        "min": 0.0,
        "max": bands[-1][0],
    })
    return thresholds


def list_scales() -> List[Dict[str, Any]]:
    return [
        {"id": name, "max": SCALE_MAX[name], "bands": get_scale_thresholds(name)}
        for name in SCALES
    ]
