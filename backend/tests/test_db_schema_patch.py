from sqlalchemy import text
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from tdfbridge.db_schema_patch import (
    _get_existing_columns_sqlite,
    ensure_participant_columns,
    ensure_tournament_columns,
)


def _legacy_engine():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    with engine.begin() as conn:
        conn.execute(
            text(
                "CREATE TABLE tournament (id INTEGER PRIMARY KEY, name VARCHAR, official_tournament_id VARCHAR(8), "
                "tournament_type VARCHAR, city VARCHAR, country VARCHAR, start_date DATE, organizer_id VARCHAR, "
                "organizer_name VARCHAR, created_at DATETIME, updated_at DATETIME)"
            )
        )
        conn.execute(
            text(
                "CREATE TABLE tournament_participant (id INTEGER PRIMARY KEY, tournament_id INTEGER, user_id INTEGER, "
                "player_name VARCHAR, player_id VARCHAR(7), registration_date DATETIME, status VARCHAR)"
            )
        )
        conn.execute(text("INSERT INTO tournament_participant (tournament_id, player_name) VALUES (1, 'Ash')"))
    return engine


def test_missing_columns_are_added_idempotently():
    engine = _legacy_engine()

    for _ in range(2):
        ensure_tournament_columns(engine)
        ensure_participant_columns(engine)

    tournament_cols = _get_existing_columns_sqlite(engine, "tournament")
    participant_cols = _get_existing_columns_sqlite(engine, "tournament_participant")
    assert {"state", "end_date", "organizer_popid"} <= set(tournament_cols)
    assert {"player_birthdate", "registration_source"} <= set(participant_cols)

    with engine.connect() as conn:
        source = conn.execute(text("SELECT registration_source FROM tournament_participant")).scalar_one()
    assert source == "manual"


def test_missing_tables_are_left_alone():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False}, poolclass=StaticPool)

    ensure_tournament_columns(engine)
    ensure_participant_columns(engine)

    assert _get_existing_columns_sqlite(engine, "tournament") == {}
