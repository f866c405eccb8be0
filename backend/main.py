"""
Gradebook Analytics — grade book and attendance analytics for the admin dashboard.
FastAPI backend entry point.
"""

import logging
import os

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

# Load environment before route modules read their settings
load_dotenv()

from core.store import HttpRecordStore, InMemoryRecordStore, SnapshotCache  # noqa: E402
from routes.analyze import router as analyze_router  # noqa: E402
from routes.deps import GRADE_SCALE, TIMEZONE  # noqa: E402
from routes.journals import router as journals_router  # noqa: E402
from routes.reports import router as reports_router  # noqa: E402
from routes.upload import router as upload_router  # noqa: E402

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SCHOOL_NAME = os.getenv("SCHOOL_NAME", "My School")
DATA_API_URL = os.getenv("DATA_API_URL", "").strip()
DATA_API_TOKEN = os.getenv("DATA_API_TOKEN") or None
# Comma-separated allowed origins, e.g. http://localhost:5173,https://app.example.com
raw_origins = os.getenv("CORS_ORIGINS", "http://localhost:5173,http://localhost:3000")
ALLOWED_ORIGINS = [o.strip() for o in raw_origins.split(",") if o.strip()]


def create_store():
    """HTTP store when DATA_API_URL is set, otherwise an empty in-memory store."""
    if DATA_API_URL:
        logger.info("Using record store at %s", DATA_API_URL)
        return HttpRecordStore(DATA_API_URL, token=DATA_API_TOKEN)
    logger.warning("DATA_API_URL is not set; serving an empty in-memory store.")
    return InMemoryRecordStore()


app = FastAPI(
    title="Gradebook Analytics API",
    description=(
        "Grade, attendance and journal analytics for the school administration "
        "dashboard: student and group statistics, date-indexed grade books, "
        "and Excel/PDF exports."
    ),
    version="1.0.0",
)

app.state.snapshot_cache = SnapshotCache(create_store(), tz=TIMEZONE)

# CORS for the dashboard frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register route modules
app.include_router(analyze_router, prefix="/api/analyze", tags=["Analytics"])
app.include_router(journals_router, prefix="/api/journals", tags=["Journals"])
app.include_router(reports_router, prefix="/api/reports", tags=["Reports"])
app.include_router(upload_router, prefix="/api/upload", tags=["Upload"])


@app.get("/api/health")
async def health_check():
    return {
        "status": "ok",
        "school_name": SCHOOL_NAME,
        "store": "http" if DATA_API_URL else "memory",
    }


@app.get("/api/config")
async def get_config():
    """Return server configuration to the frontend."""
    return {
        "school_name": SCHOOL_NAME,
        "grade_scale": GRADE_SCALE,
        "timezone": TIMEZONE,
    }
