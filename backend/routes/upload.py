"""
Upload routes — grade import from CSV / Excel files.
"""

import logging
import uuid
from datetime import date
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, UploadFile

from core.normalize import normalize_grades
from core.parser import SUPPORTED_EXTENSIONS, parse_grade_import, parse_upload
from routes.deps import TIMEZONE, df_records

logger = logging.getLogger(__name__)

router = APIRouter()

# Keep upload path stable regardless of process working directory.
UPLOAD_DIR = Path(__file__).resolve().parent.parent / "uploads"
UPLOAD_DIR.mkdir(exist_ok=True)


@router.post("/grades")
async def upload_grades(file: UploadFile = File(...)):
    """
    Validate a grade import file (columns: Student ID, Subject ID, Group ID,
    Grade, Type, Semester, optional Date and Notes).
    Returns the valid records in canonical form and the per-row errors.
    """
    ext = Path(file.filename or "").suffix.lower()
    if ext not in SUPPORTED_EXTENSIONS:
        raise HTTPException(400, f"Unsupported file type: {ext}. Use CSV or Excel (.xlsx).")

    save_path = UPLOAD_DIR / f"{uuid.uuid4()}{ext}"
    try:
        with open(save_path, "wb") as f:
            while True:
                chunk = await file.read(1024 * 1024)
                if not chunk:
                    break
                f.write(chunk)

        sheets = parse_upload(str(save_path))
        df = next(iter(sheets.values()))
    except Exception as e:
        raise HTTPException(400, f"Failed to read upload '{file.filename}': {e}")
    finally:
        save_path.unlink(missing_ok=True)

    records, errors = parse_grade_import(df, default_date=date.today().isoformat())
    grades, report = normalize_grades(records, tz=TIMEZONE)
    logger.info("Grade import %s: %d valid rows, %d errors", file.filename, len(records), len(errors))

    return {
        "filename": file.filename,
        "rows": len(df),
        "imported_count": len(grades),
        "records": df_records(grades),
        "errors": errors,
        "normalization": report,
    }
