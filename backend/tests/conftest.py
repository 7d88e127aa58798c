from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from tdfbridge.database import get_session
from tdfbridge.main import app
from tdfbridge.models.tournament import Tournament, TournamentType
from tdfbridge.models.user_profile import UserProfile
from tdfbridge.services.blob_store import InMemoryBlobStore, get_blob_store
from tdfbridge.services.job_executor import ImportJobExecutor
from tdfbridge.services.job_manager import JobManager, get_job_manager

TEST_DATABASE_URL = "sqlite:///:memory:"

# ============================================================================
# Test Database Setup with StaticPool
# ============================================================================
# 1. Use sqlite:///:memory: with StaticPool so ALL sessions share same DB,
#    including the sessions opened by the job executor
# 2. check_same_thread=False required for TestClient/threaded access
# 3. Tables dropped and recreated per test
# 4. App dependencies overridden for session, blob store and job manager
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


def override_get_session():
    """Override session to use test engine"""
    with Session(test_engine) as session:
        yield session


def run_inline(fn, *args):
    """Submit hook that runs a job to completion before create_job returns."""
    return fn(*args)


class DeferredSubmit:
    """Submit hook that holds jobs until run_all() is called."""

    def __init__(self):
        self.pending = []

    def __call__(self, fn, *args):
        self.pending.append((fn, args))

    def run_all(self):
        while self.pending:
            fn, args = self.pending.pop(0)
            fn(*args)


@pytest.fixture(name="session", scope="function")
def session_fixture():
    """Provide a test database session on freshly created tables"""
    SQLModel.metadata.drop_all(test_engine)
    SQLModel.metadata.create_all(test_engine)

    with Session(test_engine) as session:
        yield session


@pytest.fixture(name="blob_store")
def blob_store_fixture():
    return InMemoryBlobStore()


@pytest.fixture(name="job_manager")
def job_manager_fixture(blob_store):
    manager = JobManager(ImportJobExecutor(blob_store, test_engine), submit=run_inline)
    yield manager
    manager.shutdown()


@pytest.fixture(name="client")
def client_fixture(session: Session, blob_store, job_manager):
    """Provide a test client with overridden dependencies

    Overrides MUST be set BEFORE TestClient() and stay in place for the
    entire duration so the app never uses its own engine or storage.
    """
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    app.dependency_overrides[get_job_manager] = lambda: job_manager

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture(name="tournament")
def tournament_fixture(session: Session) -> Tournament:
    tournament = Tournament(
        name="Spring League Cup",
        official_tournament_id="25SPR001",
        tournament_type=TournamentType.tcg_league_cup,
        city="Madrid",
        state="Madrid",
        country="ES",
        start_date=date(2026, 3, 14),
        organizer_id="org-1",
        organizer_name="Ana Torres",
        organizer_popid="1234567",
    )
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@pytest.fixture(name="make_account")
def make_account_fixture(session: Session):
    def _make(first_name, last_name, player_id=None, email=None, birthdate=None):
        account = UserProfile(
            first_name=first_name,
            last_name=last_name,
            player_id=player_id,
            email=email,
            birthdate=birthdate,
        )
        session.add(account)
        session.commit()
        session.refresh(account)
        return account

    return _make
