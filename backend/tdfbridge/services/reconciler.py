"""
Participant Reconciler — match decoded TDF players to platform accounts.

Resolution order for each valid entry (first hit wins):
  1. account.player_id == entry userid
  2. account.email == entry email (case-insensitive), when the entry has one
  3. account first + last name == entry first + last name (case-insensitive)

Name matches are flagged low_confidence. Entries with a single-token name
never reach step 3.

Persistence is per entry: each accepted participant is committed on its own
and a failure downgrades only that entry in the report. The
(tournament_id, player_id) unique constraint is the final word on duplicates
when two imports race.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, or_, select

from tdfbridge.exceptions import IdentifierExhaustedError
from tdfbridge.models.participant import TournamentParticipant
from tdfbridge.models.tournament import Tournament
from tdfbridge.models.user_profile import UserProfile
from tdfbridge.services.identifiers import generate_organizer_popid, generate_player_id
from tdfbridge.services.import_report import (
    MATCH_BY_EMAIL,
    MATCH_BY_NAME,
    MATCH_BY_PLAYER_ID,
    SKIP_DUPLICATE,
    SKIP_INVALID_DATA,
    SKIP_NO_ACCOUNT,
    ImportedEntry,
    ImportReport,
    SkippedEntry,
)
from tdfbridge.services.tdf_schema import TDFPlayer, tdf_player_to_participant

logger = logging.getLogger(__name__)

Checkpoint = Callable[[], None]


@dataclass
class AccountMatch:
    account: UserProfile
    strategy: str
    low_confidence: bool = False
    ambiguous_count: int = 1  # Accounts sharing the matched name


def _noop_checkpoint() -> None:
    return None


class ParticipantReconciler:
    """Stateless apart from the session it is given."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve_account(self, player: TDFPlayer) -> Optional[AccountMatch]:
        if player.userid:
            account = self.session.exec(select(UserProfile).where(UserProfile.player_id == player.userid)).first()
            if account is not None:
                return AccountMatch(account=account, strategy=MATCH_BY_PLAYER_ID)

        if player.email and player.email.strip():
            email = player.email.strip().lower()
            account = self.session.exec(
                select(UserProfile).where(func.lower(UserProfile.email) == email).order_by(UserProfile.id)
            ).first()
            if account is not None:
                return AccountMatch(account=account, strategy=MATCH_BY_EMAIL)

        first_name = player.first_name.strip()
        last_name = player.last_name.strip()
        if not first_name or not last_name:
            return None

        candidates = self.session.exec(
            select(UserProfile)
            .where(func.lower(UserProfile.first_name) == first_name.lower())
            .where(func.lower(UserProfile.last_name) == last_name.lower())
            .order_by(UserProfile.id)
        ).all()
        if not candidates:
            return None
        return AccountMatch(
            account=candidates[0],
            strategy=MATCH_BY_NAME,
            low_confidence=True,
            ambiguous_count=len(candidates),
        )

    def _classify(self, player: TDFPlayer, report: ImportReport) -> Optional[ImportedEntry]:
        """Resolve one entry into the report. Returns the imported entry, if any."""
        if not player.is_valid:
            report.add_skipped(
                SkippedEntry(
                    player_name=player.name,
                    player_id=player.userid,
                    player_birthdate=player.birthdate,
                    reason=SKIP_INVALID_DATA,
                    detail="; ".join(player.errors),
                )
            )
            return None

        match = self.resolve_account(player)
        if match is None:
            logger.debug("No account for TDF player %s (%s)", player.userid, player.name)
            report.add_skipped(
                SkippedEntry(
                    player_name=player.name,
                    player_id=player.userid,
                    player_birthdate=player.birthdate,
                    reason=SKIP_NO_ACCOUNT,
                )
            )
            return None

        if match.ambiguous_count > 1:
            report.warnings.append(
                f"{player.name} (ID: {player.userid}) matches {match.ambiguous_count} accounts by name; "
                f"chose account {match.account.id}"
            )

        entry = ImportedEntry(
            player_name=player.name,
            player_id=player.userid,
            player_birthdate=player.birthdate,
            user_id=match.account.id,
            match_strategy=match.strategy,
            low_confidence=match.low_confidence,
        )
        report.add_imported(entry)
        return entry

    def verify(self, players: Iterable[TDFPlayer], checkpoint: Optional[Checkpoint] = None) -> ImportReport:
        """Resolve every entry without writing anything."""
        checkpoint = checkpoint or _noop_checkpoint
        report = ImportReport()
        for player in players:
            checkpoint()
            self._classify(player, report)
        return report

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _already_registered(self, tournament_id: int, entry: ImportedEntry) -> bool:
        existing = self.session.exec(
            select(TournamentParticipant.id)
            .where(TournamentParticipant.tournament_id == tournament_id)
            .where(
                or_(
                    TournamentParticipant.user_id == entry.user_id,
                    TournamentParticipant.player_id == entry.player_id,
                )
            )
        ).first()
        return existing is not None

    def _persist(self, tournament_id: int, player: TDFPlayer, entry: ImportedEntry, report: ImportReport) -> None:
        if self._already_registered(tournament_id, entry):
            report.downgrade(entry, SKIP_DUPLICATE, "Already registered for this tournament")
            return

        participant = tdf_player_to_participant(player, tournament_id, entry.user_id)
        try:
            self.session.add(participant)
            self.session.commit()
            self.session.refresh(participant)
        except IntegrityError as e:
            self.session.rollback()
            # Lost a race with a concurrent import, or some other constraint tripped
            if self._already_registered(tournament_id, entry):
                logger.warning("Player %s registered concurrently; marking duplicate", entry.player_id)
                report.downgrade(entry, SKIP_DUPLICATE, "Registered concurrently")
            else:
                logger.warning("Constraint violation storing player %s: %s", entry.player_id, e.orig)
                report.downgrade(entry, SKIP_INVALID_DATA, f"Rejected by the record store: {e.orig}")
            return
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.warning("Failed to store player %s: %s", entry.player_id, e)
            report.downgrade(entry, SKIP_INVALID_DATA, f"Record store error: {e}")
            return

        entry.participant_id = participant.id

    def reconcile(
        self,
        tournament_id: int,
        players: Iterable[TDFPlayer],
        checkpoint: Optional[Checkpoint] = None,
    ) -> ImportReport:
        """
        Resolve and register every decoded entry.

        Committed entries stay committed if a later entry fails or the job is
        cancelled part way through.

        Raises:
            JobCancelled: propagated from checkpoint()
        """
        checkpoint = checkpoint or _noop_checkpoint
        report = ImportReport()

        for player in players:
            checkpoint()
            entry = self._classify(player, report)
            if entry is not None:
                self._persist(tournament_id, player, entry, report)

        logger.info(
            "Reconciled tournament %s: %d imported, %d skipped of %d",
            tournament_id,
            report.imported_participants,
            report.skipped_participants,
            report.total_participants,
        )
        return report


# ============================================================================
# Export preparation
# ============================================================================


def assign_missing_player_ids(session: Session, tournament_id: int, max_attempts: int) -> int:
    """
    Give every participant without an external player ID a generated one.

    Each assignment is committed separately; a collision with the
    (tournament_id, player_id) constraint draws a new ID.

    Returns:
        Number of participants updated

    Raises:
        IdentifierExhaustedError: max_attempts collisions in a row for one participant
    """
    participants = session.exec(
        select(TournamentParticipant)
        .where(TournamentParticipant.tournament_id == tournament_id)
        .where(or_(TournamentParticipant.player_id.is_(None), TournamentParticipant.player_id == ""))
        .order_by(TournamentParticipant.id)
    ).all()
    participant_ids = [p.id for p in participants]

    assigned = 0
    for participant_id in participant_ids:
        for attempt in range(1, max_attempts + 1):
            participant = session.get(TournamentParticipant, participant_id)
            participant.player_id = generate_player_id()
            try:
                session.add(participant)
                session.commit()
                break
            except IntegrityError:
                session.rollback()
                logger.warning(
                    "Generated player ID collided for participant %s (attempt %d/%d)",
                    participant_id,
                    attempt,
                    max_attempts,
                )
        else:
            raise IdentifierExhaustedError(
                f"Could not assign a unique player ID to participant {participant_id} after {max_attempts} attempts"
            )
        assigned += 1

    if assigned:
        logger.info("Assigned %d player IDs for tournament %s", assigned, tournament_id)
    return assigned


def ensure_organizer_popid(session: Session, tournament: Tournament) -> str:
    """Assign and persist an organizer POPID the first time a tournament is exported."""
    if tournament.organizer_popid:
        return tournament.organizer_popid
    tournament.organizer_popid = generate_organizer_popid()
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    logger.info("Assigned organizer POPID %s to tournament %s", tournament.organizer_popid, tournament.id)
    return tournament.organizer_popid
