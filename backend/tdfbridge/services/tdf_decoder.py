"""
TDF Decoder — parse and validate uploaded Tournament Director Files.

Validation runs in three passes:
  1. well-formedness (single closed <tournament> root)
  2. mandatory header fields: name, id, startdate
  3. per-player shape: name, userid (1-7 digits), birth date

Header problems are fatal and raise TDFStructureError with every violated
rule. Player problems are recorded on the entry and decoding continues, so
the caller gets as much of the document as possible.
"""

import logging
import re
from datetime import date
from typing import List, Optional, Union

from lxml import etree

from tdfbridge.exceptions import TDFStructureError
from tdfbridge.models.tournament import Tournament
from tdfbridge.services.identifiers import is_valid_player_id, is_valid_popid
from tdfbridge.services.tdf_schema import (
    DEFAULT_TDF_VERSION,
    OFFICIAL_ID_PATTERN,
    TDFDocument,
    TDFHeader,
    TDFOrganizer,
    TDFPlayer,
    TDFStanding,
    TournamentSummary,
    ValidationResult,
    map_tdf_to_tournament_type,
    parse_tdf_date,
    parse_tdf_timestamp,
    split_player_name,
)

logger = logging.getLogger(__name__)

# ASCII digits only; str.isdigit() is true for superscripts
_ASCII_DIGITS = re.compile(r"[0-9]+")

ROOT_TAG = "tournament"
REQUIRED_HEADER_FIELDS = ("name", "id", "startdate")


# ---------------------------------------------------------------------------
# Element helpers
# ---------------------------------------------------------------------------


def parse_xml(content: Union[bytes, str]) -> etree._Element:
    if isinstance(content, str):
        content = content.encode("utf-8")
    parser = etree.XMLParser(resolve_entities=False, no_network=True, remove_blank_text=True)
    try:
        return etree.fromstring(content, parser)
    except etree.XMLSyntaxError as exc:
        raise TDFStructureError([f"Invalid XML format: {exc}"])


def _text(parent: Optional[etree._Element], tag: str) -> str:
    if parent is None:
        return ""
    element = parent.find(tag)
    if element is None or element.text is None:
        return ""
    return element.text.strip()


def _header_value(root: etree._Element, data: Optional[etree._Element], field: str) -> str:
    """Header fields live in <data>; older exports carry them as root attributes."""
    value = _text(data, field)
    if not value:
        value = (root.get(field) or "").strip()
    return value


def _as_int(text: str, default: int) -> int:
    try:
        return int(text)
    except (TypeError, ValueError):
        return default


def _as_digits(text: str) -> Optional[int]:
    if not _ASCII_DIGITS.fullmatch(text or ""):
        return None
    return int(text)


def _as_bool(text: str, default: bool) -> bool:
    if not text:
        return default
    return text.strip().lower() == "true"


# ---------------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------------


def _decode_organizer(root: etree._Element, data: Optional[etree._Element], warnings: List[str]) -> TDFOrganizer:
    element = data.find("organizer") if data is not None else None
    if element is None:
        element = root.find("organizer")
    if element is None:
        warnings.append("Missing organizer element")
        return TDFOrganizer()

    organizer = TDFOrganizer(
        name=(element.get("name") or "").strip(),
        popid=(element.get("popid") or "").strip(),
    )
    if not organizer.name:
        warnings.append("Missing organizer name attribute")
    if not organizer.popid:
        warnings.append("Missing organizer popid attribute")
    elif not is_valid_popid(organizer.popid):
        warnings.append(f"Organizer POPID {organizer.popid!r} should be 7 digits")
    return organizer


def _decode_player(element: etree._Element, index: int, today: date) -> TDFPlayer:
    errors: List[str] = []
    label = f"Player {index}"

    userid = (element.get("userid") or _text(element, "userid")).strip()
    first_name = _text(element, "firstname")
    last_name = _text(element, "lastname")
    if not first_name and not last_name:
        first_name, last_name = split_player_name(_text(element, "name") or element.get("name") or "")

    if not first_name and not last_name:
        errors.append(f"{label}: name is empty")
    if not userid:
        errors.append(f"{label}: missing userid")
    elif not is_valid_player_id(userid):
        errors.append(f"{label}: userid {userid!r} must be 1-7 digits")

    raw_birthdate = _text(element, "birthdate")
    birthdate: Optional[date] = None
    if not raw_birthdate:
        errors.append(f"{label}: missing birthdate")
    else:
        try:
            birthdate = parse_tdf_date(raw_birthdate)
        except ValueError:
            errors.append(f"{label}: birthdate {raw_birthdate!r} is not MM/DD/YYYY")
        else:
            if birthdate > today:
                errors.append(f"{label}: birthdate {raw_birthdate!r} is in the future")

    account_raw = _text(element, "accountid")
    return TDFPlayer(
        userid=userid,
        first_name=first_name,
        last_name=last_name,
        birthdate=birthdate,
        raw_birthdate=raw_birthdate,
        email=_text(element, "email") or None,
        account_id=_as_digits(account_raw),
        creation_date=parse_tdf_timestamp(_text(element, "creationdate")),
        last_modified_date=parse_tdf_timestamp(_text(element, "lastmodifieddate")),
        starter=_as_bool(_text(element, "starter"), True),
        errors=errors,
    )


def _decode_standings(element: Optional[etree._Element], warnings: List[str]) -> List[TDFStanding]:
    if element is None:
        return []
    standings: List[TDFStanding] = []
    for pod in element.findall("pod"):
        category = pod.get("category", "")
        standing_type = pod.get("type", "finished")
        for entry in pod.findall("player"):
            userid = (entry.get("id") or entry.get("userid") or "").strip()
            place = _as_digits((entry.get("place") or "").strip())
            if not userid or place is None:
                warnings.append(f"Ignoring malformed standing in pod {category!r}")
                continue
            standings.append(
                TDFStanding(category=category, standing_type=standing_type, userid=userid, place=place)
            )
    return standings


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decode_tdf(content: Union[bytes, str]) -> TDFDocument:
    """
    Parse raw TDF bytes into a TDFDocument.

    Raises:
        TDFStructureError: malformed XML or unusable header (all violations listed)
    """
    root = parse_xml(content)
    if root.tag != ROOT_TAG:
        raise TDFStructureError([f"Missing tournament root element (found <{root.tag}>)"])

    data = root.find("data")
    errors: List[str] = []
    warnings: List[str] = []

    values = {field: _header_value(root, data, field) for field in REQUIRED_HEADER_FIELDS}
    for field, value in values.items():
        if not value:
            errors.append(f"Missing or empty required field: {field}")

    start_date: Optional[date] = None
    if values["startdate"]:
        try:
            start_date = parse_tdf_date(values["startdate"])
        except ValueError:
            errors.append(f"Invalid startdate {values['startdate']!r}: expected MM/DD/YYYY")

    if errors:
        raise TDFStructureError(errors)

    city = _header_value(root, data, "city")
    country = _header_value(root, data, "country")
    if not city:
        warnings.append("Missing city")
    if not country:
        warnings.append("Missing country")
    if not OFFICIAL_ID_PATTERN.match(values["id"]):
        warnings.append(f"Tournament ID {values['id']!r} is not an 8-character alphanumeric identifier")

    organizer = _decode_organizer(root, data, warnings)

    gametype = (root.get("gametype") or "").strip()
    mode = (root.get("mode") or "").strip()
    if gametype and mode and map_tdf_to_tournament_type(gametype, mode) is None:
        warnings.append(f"Unsupported tournament type: {gametype}:{mode}")

    header = TDFHeader(
        name=values["name"],
        id=values["id"],
        city=city,
        state=_header_value(root, data, "state") or None,
        country=country,
        start_date=start_date,
        organizer=organizer,
        gametype=gametype,
        mode=mode,
        type=root.get("type") or "3",
        stage=root.get("stage") or "1",
        version=root.get("version") or DEFAULT_TDF_VERSION,
        roundtime=_as_int(_text(data, "roundtime"), 50),
        finalsroundtime=_as_int(_text(data, "finalsroundtime"), 50),
        lessswiss=_as_bool(_text(data, "lessswiss"), False),
        autotablenumber=_as_bool(_text(data, "autotablenumber"), True),
        overflowtablestart=_as_int(_text(data, "overflowtablestart"), 16),
    )

    players: List[TDFPlayer] = []
    players_element = root.find("players")
    if players_element is None:
        warnings.append("Missing players list")
    else:
        today = date.today()
        players = [
            _decode_player(element, index, today)
            for index, element in enumerate(players_element.findall("player"), start=1)
        ]

    document = TDFDocument(
        header=header,
        players=players,
        standings=_decode_standings(root.find("standings"), warnings),
        warnings=warnings,
    )

    invalid = document.invalid_players
    for player in invalid:
        logger.debug("Invalid TDF player entry %r: %s", player.userid, "; ".join(player.errors))
    logger.info(
        "Decoded TDF %s: %d players (%d invalid), %d warnings",
        header.id,
        document.player_count,
        len(invalid),
        len(warnings),
    )
    return document


def validate_tdf(content: Union[bytes, str]) -> ValidationResult:
    """Decoder-grade validation as a result object instead of an exception."""
    try:
        document = decode_tdf(content)
    except TDFStructureError as exc:
        return ValidationResult(is_valid=False, errors=exc.errors)

    errors = [error for player in document.players for error in player.errors]
    return ValidationResult(is_valid=not errors, errors=errors, warnings=list(document.warnings))


def extract_tournament_summary(document: TDFDocument) -> TournamentSummary:
    header = document.header
    return TournamentSummary(
        name=header.name,
        id=header.id,
        city=header.city,
        country=header.country,
        start_date=header.start_date,
        type=map_tdf_to_tournament_type(header.gametype, header.mode),
        gametype=header.gametype,
        mode=header.mode,
        player_count=document.player_count,
    )


def compare_with_tournament(summary: TournamentSummary, tournament: Tournament) -> List[str]:
    """
    List the differences between an uploaded document and the platform record.

    Discrepancies are informational: the upload proceeds regardless.
    """
    discrepancies: List[str] = []

    if summary.id != tournament.official_tournament_id:
        discrepancies.append(
            f"Tournament ID differs: file has {summary.id!r}, platform has {tournament.official_tournament_id!r}"
        )
    if summary.name.strip().casefold() != tournament.name.strip().casefold():
        discrepancies.append(f"Name differs: file has {summary.name!r}, platform has {tournament.name!r}")
    if summary.city.strip().casefold() != tournament.city.strip().casefold():
        discrepancies.append(f"City differs: file has {summary.city!r}, platform has {tournament.city!r}")
    if summary.country.strip().casefold() != tournament.country.strip().casefold():
        discrepancies.append(f"Country differs: file has {summary.country!r}, platform has {tournament.country!r}")
    if summary.start_date != tournament.start_date:
        discrepancies.append(
            f"Start date differs: file has {summary.start_date.isoformat()}, "
            f"platform has {tournament.start_date.isoformat()}"
        )
    if summary.type is not None and summary.type != tournament.tournament_type:
        discrepancies.append(
            f"Tournament type differs: file has {summary.type.value}, "
            f"platform has {getattr(tournament.tournament_type, 'value', tournament.tournament_type)}"
        )

    if discrepancies:
        logger.warning(
            "TDF %s does not match tournament %s: %s", summary.id, tournament.id, "; ".join(discrepancies)
        )
    return discrepancies
