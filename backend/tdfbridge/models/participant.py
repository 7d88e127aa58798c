from datetime import date, datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import String
from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Column, Field, Relationship, SQLModel

if TYPE_CHECKING:
    from tdfbridge.models.tournament import Tournament
    from tdfbridge.models.user_profile import UserProfile


class ParticipantStatus(str, Enum):
    registered = "registered"
    waitlisted = "waitlisted"
    confirmed = "confirmed"


REGISTRATION_SOURCE_MANUAL = "manual"
REGISTRATION_SOURCE_TDF_IMPORT = "tdf_import"


class TournamentParticipant(SQLModel, table=True):
    __tablename__ = "tournament_participant"
    __table_args__ = (
        # Authoritative de-duplication for concurrent imports (NULL player_id is exempt)
        SAUniqueConstraint("tournament_id", "player_id", name="uq_tournament_player_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user_profile.id", index=True)
    player_name: str
    player_id: Optional[str] = Field(default=None, max_length=7)  # External player ID, 1-7 digits
    player_birthdate: Optional[date] = None
    registration_date: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    registration_source: str = Field(default=REGISTRATION_SOURCE_MANUAL)  # manual|tdf_import
    status: ParticipantStatus = Field(
        default=ParticipantStatus.registered, sa_column=Column(String, nullable=False)
    )

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="participants")
    user: Optional["UserProfile"] = Relationship(back_populates="registrations")
