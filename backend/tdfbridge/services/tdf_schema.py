"""
TDF interchange value types and field mapping.

Mirrors the structure of a Tournament Director File:

  <tournament type stage version gametype mode>
    <data>      header fields + <organizer popid name/>
    <players>   one <player userid=...> per participant
    <pods>      pairing pods (emitted empty on export)
    <finalsoptions>
    <standings> optional, written by the tournament software after play

Everything here is pure: no I/O, no sessions.
"""

import logging
import re
from datetime import date, datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from tdfbridge.exceptions import TDFConfigurationError
from tdfbridge.models.participant import (
    REGISTRATION_SOURCE_TDF_IMPORT,
    ParticipantStatus,
    TournamentParticipant,
)
from tdfbridge.models.tournament import Tournament, TournamentType
from tdfbridge.services.identifiers import generate_player_id

logger = logging.getLogger(__name__)

TDF_DATE_FORMAT = "%m/%d/%Y"
TDF_TIMESTAMP_FORMAT = "%m/%d/%Y %H:%M:%S"
DEFAULT_TDF_VERSION = "1.80"
DEFAULT_BIRTHDATE = date(2000, 1, 1)
MAX_PLAYER_NAME_LENGTH = 50

OFFICIAL_ID_PATTERN = re.compile(r"^[A-Za-z0-9]{8}$")
_XML_UNSAFE_CHARS = re.compile(r"[<>&\"']")


# ============================================================================
# Tournament type mapping
# ============================================================================


class TDFGameMode(BaseModel):
    gametype: str
    mode: str


TDF_GAME_MODES: Dict[TournamentType, TDFGameMode] = {
    TournamentType.tcg_prerelease: TDFGameMode(gametype="TRADING_CARD_GAME", mode="PRERELEASE"),
    TournamentType.tcg_league_challenge: TDFGameMode(gametype="TRADING_CARD_GAME", mode="LEAGUECHALLENGE"),
    TournamentType.tcg_league_cup: TDFGameMode(gametype="TRADING_CARD_GAME", mode="TCG1DAY"),
    TournamentType.vgc_premier_event: TDFGameMode(gametype="VIDEO_GAME", mode="VGCPREMIER"),
    TournamentType.go_premier_event: TDFGameMode(gametype="GO", mode="GOPREMIER"),
}

_unmapped = set(TournamentType) - set(TDF_GAME_MODES)
if _unmapped:
    raise TDFConfigurationError(f"Tournament types without a TDF mapping: {sorted(t.value for t in _unmapped)}")

# "GAMETYPE:MODE" -> internal type
_TDF_TYPE_LOOKUP: Dict[str, TournamentType] = {
    f"{gm.gametype}:{gm.mode}": tournament_type for tournament_type, gm in TDF_GAME_MODES.items()
}


def map_tournament_type_to_tdf(tournament_type) -> TDFGameMode:
    """
    Map an internal tournament type code to the TDF gametype/mode pair.

    Raises:
        TDFConfigurationError: the code is not one of TournamentType
    """
    try:
        key = TournamentType(tournament_type)
    except ValueError:
        raise TDFConfigurationError(f"Unknown tournament type code: {tournament_type!r}")
    return TDF_GAME_MODES[key].model_copy()


def map_tdf_to_tournament_type(gametype: str, mode: str) -> Optional[TournamentType]:
    """Reverse mapping; None for combinations the platform does not run."""
    return _TDF_TYPE_LOOKUP.get(f"{gametype}:{mode}")


# ============================================================================
# Value types
# ============================================================================


class TDFOrganizer(BaseModel):
    name: str = ""
    popid: str = ""


class TDFHeader(BaseModel):
    name: str
    id: str
    city: str = ""
    state: Optional[str] = None
    country: str = ""
    start_date: date
    organizer: TDFOrganizer = Field(default_factory=TDFOrganizer)
    gametype: str = ""
    mode: str = ""
    type: str = "3"
    stage: str = "1"
    version: str = DEFAULT_TDF_VERSION
    roundtime: int = 50
    finalsroundtime: int = 50
    lessswiss: bool = False
    autotablenumber: bool = True
    overflowtablestart: int = 16


class TDFPlayer(BaseModel):
    userid: str = ""
    first_name: str = ""
    last_name: str = ""
    birthdate: Optional[date] = None
    raw_birthdate: str = ""  # As written in the document, kept for reports
    email: Optional[str] = None
    account_id: Optional[int] = None  # Internal tag linking back to a platform account
    creation_date: Optional[datetime] = None
    last_modified_date: Optional[datetime] = None
    starter: bool = True
    errors: List[str] = Field(default_factory=list)

    @property
    def name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class TDFStanding(BaseModel):
    category: str
    standing_type: str = "finished"
    userid: str
    place: int


class TDFDocument(BaseModel):
    header: TDFHeader
    players: List[TDFPlayer] = Field(default_factory=list)
    standings: List[TDFStanding] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def invalid_players(self) -> List[TDFPlayer]:
        return [p for p in self.players if not p.is_valid]


class TournamentSummary(BaseModel):
    """Projection of a document header used for cross-checking."""

    name: str
    id: str
    city: str
    country: str
    start_date: date
    type: Optional[TournamentType] = None
    gametype: str = ""
    mode: str = ""
    player_count: int = 0


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


class TDFTournamentInfo(BaseModel):
    """Encoder input describing the tournament header."""

    name: str
    id: str
    city: str
    state: Optional[str] = None
    country: str
    start_date: date
    organizer: TDFOrganizer
    tournament_type: TournamentType

    @classmethod
    def from_tournament(cls, tournament: Tournament) -> "TDFTournamentInfo":
        return cls(
            name=tournament.name,
            id=tournament.official_tournament_id,
            city=tournament.city,
            state=tournament.state,
            country=tournament.country,
            start_date=tournament.start_date,
            organizer=TDFOrganizer(
                name=tournament.organizer_name,
                popid=tournament.organizer_popid or "",
            ),
            tournament_type=tournament.tournament_type,
        )


# ============================================================================
# Field formatting
# ============================================================================


def format_tdf_date(value: date) -> str:
    return value.strftime(TDF_DATE_FORMAT)


def parse_tdf_date(text: str) -> date:
    """Parse MM/DD/YYYY. Raises ValueError on anything else."""
    return datetime.strptime(text.strip(), TDF_DATE_FORMAT).date()


def format_tdf_timestamp(value: datetime) -> str:
    return value.strftime(TDF_TIMESTAMP_FORMAT)


def parse_tdf_timestamp(text: Optional[str]) -> Optional[datetime]:
    """Lenient: timestamps are informational, so bad values become None."""
    if not text or not text.strip():
        return None
    try:
        return datetime.strptime(text.strip(), TDF_TIMESTAMP_FORMAT)
    except ValueError:
        return None


def clean_player_name(name: str) -> str:
    """Collapse whitespace, drop XML-unsafe characters, cap the length."""
    cleaned = " ".join(_XML_UNSAFE_CHARS.sub("", name or "").split())
    return cleaned[:MAX_PLAYER_NAME_LENGTH].strip()


def split_player_name(display_name: str) -> Tuple[str, str]:
    """
    Split a display name into (first_name, last_name).

    The first whitespace-delimited token is the first name and the remainder
    is the last name. Single-token names return an empty last name.
    """
    parts = (display_name or "").split()
    if not parts:
        return "", ""
    return parts[0], " ".join(parts[1:])


# ============================================================================
# Record <-> document mapping
# ============================================================================


def participant_to_tdf_player(participant: TournamentParticipant, fallback_timestamp: datetime) -> TDFPlayer:
    """
    Map a participant record onto a TDF player entry.

    Missing external IDs are generated and missing birth dates fall back to
    DEFAULT_BIRTHDATE so the entry stays valid for the tournament software.
    Callers wanting stable output should assign IDs before exporting.
    """
    first_name, last_name = split_player_name(clean_player_name(participant.player_name))

    userid = participant.player_id
    if not userid:
        userid = generate_player_id()
        logger.warning(
            "Participant %s has no external player ID; generated %s for export", participant.id, userid
        )

    birthdate = participant.player_birthdate
    if birthdate is None:
        birthdate = DEFAULT_BIRTHDATE
        logger.warning("Participant %s has no birth date; using default for export", participant.id)

    created = participant.registration_date or fallback_timestamp

    return TDFPlayer(
        userid=userid,
        first_name=first_name,
        last_name=last_name,
        birthdate=birthdate,
        raw_birthdate=format_tdf_date(birthdate),
        account_id=participant.user_id,
        creation_date=created,
        last_modified_date=created,
        starter=True,
    )


def tdf_player_to_participant(player: TDFPlayer, tournament_id: int, user_id: Optional[int]) -> TournamentParticipant:
    """Build the participant record written for an accepted import entry."""
    return TournamentParticipant(
        tournament_id=tournament_id,
        user_id=user_id,
        player_name=player.name,
        player_id=player.userid,
        player_birthdate=player.birthdate,
        registration_date=datetime.now(timezone.utc),
        registration_source=REGISTRATION_SOURCE_TDF_IMPORT,
        status=ParticipantStatus.registered,
    )
