from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import String
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from tdfbridge.models.participant import TournamentParticipant
    from tdfbridge.models.tournament_file import TournamentFile


class TournamentType(str, Enum):
    tcg_prerelease = "tcg_prerelease"
    tcg_league_challenge = "tcg_league_challenge"
    tcg_league_cup = "tcg_league_cup"
    vgc_premier_event = "vgc_premier_event"
    go_premier_event = "go_premier_event"


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    # 8-character alphanumeric, assigned once and never updated
    official_tournament_id: str = Field(index=True, unique=True, max_length=8)
    tournament_type: TournamentType = Field(sa_column=Column(String, nullable=False))
    city: str
    state: Optional[str] = None
    country: str
    start_date: date
    end_date: Optional[date] = None
    organizer_id: str = Field(index=True)
    organizer_name: str
    organizer_popid: Optional[str] = Field(default=None, max_length=7)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), sa_column_kwargs={"onupdate": lambda: datetime.now(timezone.utc)})

    # Relationships
    participants: List["TournamentParticipant"] = Relationship(back_populates="tournament")
    files: List["TournamentFile"] = Relationship(back_populates="tournament")
