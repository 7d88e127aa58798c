import logging
import os
import subprocess
from datetime import datetime

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from tdfbridge.config import CORS_ORIGINS, LOG_LEVEL
from tdfbridge.database import engine, init_db
from tdfbridge.db_schema_patch import ensure_participant_columns, ensure_tournament_columns
from tdfbridge.routes import tdf, tournaments
from tdfbridge.services.job_manager import shutdown_job_manager

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)

APP_NAME = "TDF Bridge API"

app = FastAPI(title=APP_NAME)


# Get build info
def get_build_info():
    """Get git commit hash or build timestamp"""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--short", "HEAD"],
            cwd=os.path.dirname(os.path.dirname(__file__)),
            capture_output=True,
            text=True,
            timeout=2,
        )
        if result.returncode == 0:
            return result.stdout.strip()
    except (OSError, subprocess.SubprocessError):
        pass

    # Fallback to build timestamp
    return datetime.now().strftime("%Y%m%d-%H%M%S")


BUILD_HASH = get_build_info()

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(tournaments.router, prefix="/api", tags=["tournaments"])
app.include_router(tdf.router, prefix="/api")


@app.on_event("startup")
def on_startup():
    init_db()  # Use centralized init_db() which imports models and creates tables
    ensure_tournament_columns(engine)
    ensure_participant_columns(engine)
    logger.info("%s started (build %s)", APP_NAME, BUILD_HASH)


@app.on_event("shutdown")
def on_shutdown():
    shutdown_job_manager()


@app.get("/api/health")
def health_check():
    """Diagnostic endpoint to verify which code is running"""
    return {"app_name": APP_NAME, "build_hash": BUILD_HASH, "status": "healthy"}
