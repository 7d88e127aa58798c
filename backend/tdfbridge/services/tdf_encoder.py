"""
TDF Encoder — build Tournament Director Files from platform records.

Output layout follows what the tournament software writes itself, so the
exported file opens there unchanged. Serialization is deterministic: the
same tournament and participants always produce the same bytes, apart from
creation dates that default to the generation time when a participant has
no registration timestamp.

Every export is re-validated with the decoder's rules before it is offered
for download; a failure there is an internal consistency fault, not a user
error.
"""

import logging
import math
import re
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from lxml import etree
from pydantic import BaseModel

from tdfbridge.exceptions import TDFConsistencyError, TDFStructureError
from tdfbridge.models.participant import TournamentParticipant
from tdfbridge.services.identifiers import generate_organizer_popid, is_valid_popid
from tdfbridge.services.tdf_decoder import decode_tdf, parse_xml
from tdfbridge.services.tdf_schema import (
    TDFDocument,
    TDFGameMode,
    TDFHeader,
    TDFOrganizer,
    TDFPlayer,
    TDFTournamentInfo,
    ValidationResult,
    clean_player_name,
    format_tdf_date,
    format_tdf_timestamp,
    map_tournament_type_to_tdf,
    participant_to_tdf_player,
)

logger = logging.getLogger(__name__)

REQUIRED_EXPORT_SECTIONS = ("data", "players", "pods", "finalsoptions")

# Minutes per round, keyed by "GAMETYPE:MODE"
ROUND_TIMES = {
    "VIDEO_GAME:VGCPREMIER": (15, 20),
    "GO:GOPREMIER": (10, 15),
}
DEFAULT_ROUND_TIME = (50, 50)


class GeneratedTDF(BaseModel):
    xml_content: str
    player_count: int
    generated_at: datetime
    metadata: TDFHeader


class FinalsCut(BaseModel):
    key: str
    options: List[int]
    cut: int
    playercount: int
    paired3rd4th: bool = False


# ============================================================================
# Header helpers
# ============================================================================


def recommended_round_times(game_mode: TDFGameMode) -> tuple:
    """Return (roundtime, finalsroundtime) in minutes for a game mode."""
    return ROUND_TIMES.get(f"{game_mode.gametype}:{game_mode.mode}", DEFAULT_ROUND_TIME)


def overflow_table_start(player_count: int) -> int:
    return max(16, math.ceil(player_count / 4))


def tournament_stage(player_count: int) -> str:
    # 1 = empty roster, 3 = ready to pair
    return "3" if player_count > 0 else "1"


def calculate_cuts(player_count: int) -> List[FinalsCut]:
    """Top-cut options offered to the tournament software for the main category."""
    if player_count >= 8:
        return [FinalsCut(key="10", options=[0, 2, 4, 8], cut=min(8, player_count // 4), playercount=player_count)]
    if player_count >= 4:
        return [FinalsCut(key="10", options=[0, 2, 4], cut=4, playercount=player_count)]
    return [FinalsCut(key="10", options=[0], cut=0, playercount=player_count)]


def generate_filename(header: TDFHeader) -> str:
    clean_name = re.sub(r"[^a-zA-Z0-9\s]", "", header.name)
    clean_name = "_".join(clean_name.split())
    return f"{clean_name}_{header.id}.tdf"


# ============================================================================
# XML construction
# ============================================================================


def _sub(parent: etree._Element, tag: str, text: Optional[str] = None) -> etree._Element:
    element = etree.SubElement(parent, tag)
    if text is not None:
        element.text = text
    return element


def _bool_text(value: bool) -> str:
    return "true" if value else "false"


def _build_data(root: etree._Element, header: TDFHeader) -> None:
    data = _sub(root, "data")
    _sub(data, "name", header.name)
    _sub(data, "id", header.id)
    _sub(data, "city", header.city)
    _sub(data, "state", header.state or "")
    _sub(data, "country", header.country)
    _sub(data, "roundtime", str(header.roundtime))
    _sub(data, "finalsroundtime", str(header.finalsroundtime))
    organizer = _sub(data, "organizer")
    organizer.set("popid", header.organizer.popid)
    organizer.set("name", header.organizer.name)
    _sub(data, "startdate", format_tdf_date(header.start_date))
    _sub(data, "lessswiss", _bool_text(header.lessswiss))
    _sub(data, "autotablenumber", _bool_text(header.autotablenumber))
    _sub(data, "overflowtablestart", str(header.overflowtablestart))


def _build_player(parent: etree._Element, player: TDFPlayer) -> None:
    element = _sub(parent, "player")
    element.set("userid", player.userid)
    _sub(element, "firstname", player.first_name)
    _sub(element, "lastname", player.last_name)
    _sub(element, "birthdate", format_tdf_date(player.birthdate) if player.birthdate else player.raw_birthdate)
    if player.account_id is not None:
        _sub(element, "accountid", str(player.account_id))
    _sub(element, "starter", _bool_text(player.starter))
    if player.creation_date is not None:
        _sub(element, "creationdate", format_tdf_timestamp(player.creation_date))
    if player.last_modified_date is not None:
        _sub(element, "lastmodifieddate", format_tdf_timestamp(player.last_modified_date))


def _build_pods(root: etree._Element) -> None:
    pods = _sub(root, "pods")
    pod = _sub(pods, "pod")
    pod.set("category", "10")
    pod.set("stage", "0")
    poddata = _sub(pod, "poddata")
    _sub(poddata, "startingtable", "1")
    _sub(poddata, "playoff3rd4th", "false")
    _sub(poddata, "subgroupcount", "1")
    _sub(poddata, "additionalrounds", "0")
    _sub(pod, "subgroups")
    _sub(pod, "rounds")


def _build_finals_options(root: etree._Element, player_count: int) -> None:
    finals = _sub(root, "finalsoptions")
    if player_count == 0:
        return
    for cut in calculate_cuts(player_count):
        category = _sub(finals, "categorycut")
        category.set("key", cut.key)
        options = _sub(category, "options")
        for value in cut.options:
            _sub(options, "value", str(value))
        _sub(category, "cut", str(cut.cut))
        _sub(category, "playercount", str(cut.playercount))
        _sub(category, "paired3rd4th", _bool_text(cut.paired3rd4th))


def build_tdf_tree(header: TDFHeader, players: List[TDFPlayer]) -> etree._Element:
    root = etree.Element("tournament")
    # Attribute order is part of the deterministic output
    root.set("type", header.type)
    root.set("stage", header.stage)
    root.set("version", header.version)
    root.set("gametype", header.gametype)
    root.set("mode", header.mode)

    _build_data(root, header)
    _sub(root, "timeelapsed", "0")
    players_element = _sub(root, "players")
    for player in players:
        _build_player(players_element, player)
    _build_pods(root)
    _build_finals_options(root, len(players))
    return root


def serialize_tdf(root: etree._Element) -> str:
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True).decode("utf-8")


# ============================================================================
# Public API
# ============================================================================


def _render(header: TDFHeader, players: List[TDFPlayer], generated_at: datetime) -> GeneratedTDF:
    xml_content = serialize_tdf(build_tdf_tree(header, players))
    return GeneratedTDF(
        xml_content=xml_content,
        player_count=len(players),
        generated_at=generated_at,
        metadata=header,
    )


def generate_from_scratch(
    info: TDFTournamentInfo,
    participants: Iterable[TournamentParticipant],
    generated_at: Optional[datetime] = None,
) -> GeneratedTDF:
    """
    Build a TDF for a tournament that has no uploaded source document.

    Raises:
        TDFConfigurationError: the tournament type has no TDF mapping
    """
    generated_at = generated_at or datetime.now(timezone.utc)
    game_mode = map_tournament_type_to_tdf(info.tournament_type)
    roundtime, finalsroundtime = recommended_round_times(game_mode)

    popid = info.organizer.popid
    if not popid:
        popid = generate_organizer_popid()
        logger.warning("Tournament %s has no organizer POPID; generated %s for export", info.id, popid)

    players = [participant_to_tdf_player(p, generated_at) for p in participants]

    header = TDFHeader(
        name=info.name,
        id=info.id,
        city=info.city,
        state=info.state,
        country=info.country,
        start_date=info.start_date,
        organizer=TDFOrganizer(name=clean_player_name(info.organizer.name), popid=popid),
        gametype=game_mode.gametype,
        mode=game_mode.mode,
        type="3",
        stage=tournament_stage(len(players)),
        roundtime=roundtime,
        finalsroundtime=finalsroundtime,
        lessswiss=False,
        autotablenumber=True,
        overflowtablestart=overflow_table_start(len(players)),
    )
    return _render(header, players, generated_at)


def regenerate_with_players(
    document: TDFDocument,
    participants: Iterable[TournamentParticipant],
    generated_at: Optional[datetime] = None,
) -> GeneratedTDF:
    """Re-emit an uploaded document's header with the platform's current roster."""
    generated_at = generated_at or datetime.now(timezone.utc)
    players = [participant_to_tdf_player(p, generated_at) for p in participants]
    header = document.header.model_copy(update={"stage": tournament_stage(len(players))})
    return _render(header, players, generated_at)


def validate_generated_tdf(xml_content: str) -> ValidationResult:
    """
    Run decoder-grade validation plus export completeness checks.

    Export output is held to a stricter bar than uploads: every player entry
    must be valid and the organizer, location and structural sections must
    all be present.
    """
    try:
        document = decode_tdf(xml_content)
    except TDFStructureError as exc:
        return ValidationResult(is_valid=False, errors=exc.errors)

    errors = [error for player in document.players for error in player.errors]

    root = parse_xml(xml_content)
    for section in REQUIRED_EXPORT_SECTIONS:
        if root.find(section) is None:
            errors.append(f"Missing required section: {section}")

    header = document.header
    if not header.city:
        errors.append("Missing city")
    if not header.country:
        errors.append("Missing country")
    if not header.organizer.name:
        errors.append("Missing organizer name")
    if not is_valid_popid(header.organizer.popid):
        errors.append(f"Organizer POPID {header.organizer.popid!r} must be 7 digits")

    return ValidationResult(is_valid=not errors, errors=errors, warnings=list(document.warnings))


def ensure_valid_export(generated: GeneratedTDF) -> GeneratedTDF:
    """
    Gate an export on self-validation.

    Raises:
        TDFConsistencyError: the encoder produced a document its own decoder rejects
    """
    result = validate_generated_tdf(generated.xml_content)
    if not result.is_valid:
        logger.error(
            "tdf.consistency: export for tournament %s failed self-validation: %s",
            generated.metadata.id,
            "; ".join(result.errors),
        )
        raise TDFConsistencyError(result.errors)
    return generated
