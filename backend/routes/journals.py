"""
Journal routes — flattening and per-date entry edits.
"""

from fastapi import APIRouter, HTTPException, Request

from core.journals import (
    flatten_journal_entries,
    remove_entries_for_date,
    replace_entries_for_date,
)
from routes.deps import TIMEZONE, df_records, snapshot_from_payload

router = APIRouter()


def _journal_from_payload(payload: dict) -> dict:
    journal = payload.get("journal")
    if not isinstance(journal, dict):
        raise HTTPException(400, "Provide a 'journal' object.")
    if payload.get("date") is None:
        raise HTTPException(400, "Provide the entry 'date'.")
    return journal


@router.post("/flatten")
async def flatten(payload: dict, request: Request):
    """
    Flatten journals into one record per (student, date, fact).
    Expects: { "journals": [...] }, or a filter to flatten the stored journals.
    """
    if "journals" not in payload:
        snapshot = await snapshot_from_payload(payload, request)
        flat = snapshot.journal_records
        return {"records": df_records(flat), "count": len(flat)}

    journals = payload.get("journals")
    if not isinstance(journals, list):
        raise HTTPException(400, "Provide a 'journals' list.")
    flat = flatten_journal_entries(journals, tz=TIMEZONE)
    return {"records": df_records(flat), "count": len(flat)}


@router.post("/entries")
async def replace_entries(payload: dict):
    """
    Replace a journal's entries for one date.
    Expects: { "journal": {...}, "date": "...", "entries": [...] }
    """
    journal = _journal_from_payload(payload)
    try:
        return replace_entries_for_date(journal, payload["date"], payload.get("entries") or [], tz=TIMEZONE)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/entries/remove")
async def remove_entries(payload: dict):
    """
    Remove a journal's entries for one date.
    Expects: { "journal": {...}, "date": "..." }
    """
    journal = _journal_from_payload(payload)
    try:
        return remove_entries_for_date(journal, payload["date"], tz=TIMEZONE)
    except ValueError as e:
        raise HTTPException(400, str(e))
