"""Platform accounts that imported TDF participants are reconciled against."""

from datetime import date, datetime, timezone
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from tdfbridge.models.participant import TournamentParticipant


class UserProfile(SQLModel, table=True):
    __tablename__ = "user_profile"

    id: Optional[int] = Field(default=None, primary_key=True)
    email: Optional[str] = Field(default=None, index=True, unique=True)
    first_name: str
    last_name: str
    player_id: Optional[str] = Field(default=None, index=True, unique=True, max_length=7)
    birthdate: Optional[date] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    registrations: List["TournamentParticipant"] = Relationship(back_populates="user")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
