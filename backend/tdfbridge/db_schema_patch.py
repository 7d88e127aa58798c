from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

logger = logging.getLogger(__name__)

# (name, sqlite_type, postgres_type, default clause or None)
ColumnSpec = Tuple[str, str, str, Optional[str]]

# Columns added to "tournament" after the first release.
REQUIRED_TOURNAMENT_COLUMNS: List[ColumnSpec] = [
    ("state", "VARCHAR", "VARCHAR", None),
    ("end_date", "DATE", "DATE", None),
    ("organizer_popid", "VARCHAR(7)", "VARCHAR(7)", None),
]

# Columns added to "tournament_participant" after the first release.
REQUIRED_PARTICIPANT_COLUMNS: List[ColumnSpec] = [
    ("player_birthdate", "DATE", "DATE", None),
    ("registration_source", "VARCHAR", "VARCHAR", "DEFAULT 'manual'"),
]


def _is_sqlite(engine: Engine) -> bool:
    return engine.dialect.name.lower() == "sqlite"


def _get_existing_columns_sqlite(engine: Engine, table_name: str) -> Dict[str, str]:
    cols: Dict[str, str] = {}
    with engine.connect() as conn:
        res = conn.execute(text(f"PRAGMA table_info({table_name});")).fetchall()
        # PRAGMA table_info returns rows: (cid, name, type, notnull, dflt_value, pk)
        for row in res:
            cols[str(row[1])] = str(row[2])
    return cols


def _get_existing_columns_postgres(engine: Engine, table_name: str) -> Dict[str, str]:
    cols: Dict[str, str] = {}
    sql = """
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_schema = 'public' AND table_name = :table_name;
    """
    with engine.connect() as conn:
        res = conn.execute(text(sql), {"table_name": table_name}).fetchall()
        for row in res:
            cols[str(row[0])] = str(row[1])
    return cols


def _table_exists(engine: Engine, table: str) -> bool:
    if _is_sqlite(engine):
        sql = "SELECT name FROM sqlite_master WHERE type='table' AND name=:table_name"
    else:
        sql = """
        SELECT 1 FROM information_schema.tables
        WHERE table_schema = 'public' AND table_name = :table_name
        """
    with engine.connect() as conn:
        return conn.execute(text(sql), {"table_name": table}).fetchone() is not None


def _ensure_columns(engine: Engine, table: str, required: List[ColumnSpec]) -> List[str]:
    """
    Idempotently add missing columns to a table. Returns the names added.
    A table that does not exist yet is left for create_all.
    """
    if not _table_exists(engine, table):
        return []

    sqlite = _is_sqlite(engine)
    existing = _get_existing_columns_sqlite(engine, table) if sqlite else _get_existing_columns_postgres(engine, table)
    added: List[str] = []
    with engine.begin() as conn:
        for name, sqlite_type, pg_type, default in required:
            if name in existing:
                continue
            suffix = f" {default}" if default else ""
            if sqlite:
                # SQLite supports ADD COLUMN without IF NOT EXISTS
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {name} {sqlite_type}{suffix};"))
            else:
                conn.execute(text(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {name} {pg_type}{suffix};"))
            added.append(name)
    if added:
        logger.info("Added columns to %s: %s", table, ", ".join(added))
    return added


def ensure_tournament_columns(engine: Engine) -> None:
    """
    Idempotently adds required columns to the 'tournament' table if missing.
    Safe to run at every startup.
    """
    from tdfbridge.models.tournament import Tournament

    try:
        _ensure_columns(engine, Tournament.__table__.name, REQUIRED_TOURNAMENT_COLUMNS)
    except SQLAlchemyError as e:
        # Log error but don't crash the server
        logger.warning(f"Failed to ensure tournament columns: {e}")


def ensure_participant_columns(engine: Engine) -> None:
    """
    Idempotently adds required columns to the 'tournament_participant' table if missing.
    Safe to run at every startup.
    """
    from tdfbridge.models.participant import TournamentParticipant

    try:
        _ensure_columns(engine, TournamentParticipant.__table__.name, REQUIRED_PARTICIPANT_COLUMNS)
    except SQLAlchemyError as e:
        logger.warning(f"Failed to ensure tournament_participant columns: {e}")
