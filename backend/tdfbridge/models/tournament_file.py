"""Metadata for files held in the blob store."""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from tdfbridge.models.tournament import Tournament


class TournamentFile(SQLModel, table=True):
    __tablename__ = "tournament_file"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    file_name: str  # Original client file name
    file_path: str  # Blob key, e.g. tournaments/3/uploads/20260301-101500_event.tdf
    file_type: str  # tdf|xml
    file_size: int
    uploaded_by: Optional[str] = Field(default=None)
    uploaded_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    tournament: "Tournament" = Relationship(back_populates="files")
