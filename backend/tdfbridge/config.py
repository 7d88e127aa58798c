import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


def _env_list(name: str, default: str) -> List[str]:
    raw = os.getenv(name, default)
    return [item.strip().lower() for item in raw.split(",") if item.strip()]


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./tdfbridge.db")
SQL_ECHO = _env_bool("SQL_ECHO")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Blob storage root for uploaded TDF files
TDF_BLOB_DIR = os.getenv("TDF_BLOB_DIR", "./storage/tournament-files")

# Upload constraints (enforced by the request layer, not the decoder)
TDF_ALLOWED_EXTENSIONS = _env_list("TDF_ALLOWED_EXTENSIONS", ".tdf,.xml")
TDF_MAX_UPLOAD_BYTES = int(os.getenv("TDF_MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))

# Background jobs
TDF_JOB_MAX_WORKERS = int(os.getenv("TDF_JOB_MAX_WORKERS", "4"))
TDF_JOB_RETENTION_HOURS = int(os.getenv("TDF_JOB_RETENTION_HOURS", "24"))

# Regeneration attempts when a generated player ID collides on write
TDF_ID_MAX_ATTEMPTS = int(os.getenv("TDF_ID_MAX_ATTEMPTS", "3"))

CORS_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_extra = os.getenv("CORS_ORIGINS", "")
if _extra:
    CORS_ORIGINS.extend(o.strip() for o in _extra.split(",") if o.strip())
