from datetime import date

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from tdfbridge.exceptions import IdentifierExhaustedError, JobCancelled
from tdfbridge.models.participant import REGISTRATION_SOURCE_TDF_IMPORT, TournamentParticipant
from tdfbridge.services import reconciler as reconciler_module
from tdfbridge.services.import_report import (
    ImportedEntry,
    ImportReport,
    SkippedEntry,
    format_import_report,
)
from tdfbridge.services.reconciler import (
    ParticipantReconciler,
    assign_missing_player_ids,
    ensure_organizer_popid,
)
from tdfbridge.services.tdf_decoder import decode_tdf
from tdfbridge.services.tdf_schema import TDFPlayer
from tests.tdf_samples import DEFAULT_PLAYERS, tdf_xml


def _player(userid="1234567", first="Ash", last="Ketchum", email=None) -> TDFPlayer:
    return TDFPlayer(userid=userid, first_name=first, last_name=last, birthdate=date(1997, 5, 22), email=email)


def _participants(session: Session, tournament_id: int):
    return session.exec(
        select(TournamentParticipant).where(TournamentParticipant.tournament_id == tournament_id)
    ).all()


class TestResolutionPriority:
    def test_player_id_beats_email_and_name(self, session, make_account):
        make_account("Ash", "Ketchum")
        make_account("Someone", "Else", email="ash@example.com")
        by_id = make_account("Different", "Person", player_id="1234567")

        match = ParticipantReconciler(session).resolve_account(_player(email="ash@example.com"))

        assert match.account.id == by_id.id
        assert match.strategy == "player_id"
        assert match.low_confidence is False

    def test_email_is_case_insensitive(self, session, make_account):
        account = make_account("Someone", "Else", email="Ash@Example.com")
        make_account("Ash", "Ketchum")

        match = ParticipantReconciler(session).resolve_account(_player(userid="999", email="ash@example.COM"))

        assert match.account.id == account.id
        assert match.strategy == "email"

    def test_name_match_is_low_confidence(self, session, make_account):
        account = make_account("ASH", "ketchum")

        match = ParticipantReconciler(session).resolve_account(_player(userid="999"))

        assert match.account.id == account.id
        assert match.strategy == "name"
        assert match.low_confidence is True

    def test_single_token_name_skips_name_step(self, session, make_account):
        make_account("Cher", "")

        assert ParticipantReconciler(session).resolve_account(_player(userid="999", first="Cher", last="")) is None

    def test_ambiguous_name_picks_lowest_id_and_warns(self, session, tournament, make_account):
        first = make_account("Ash", "Ketchum")
        make_account("Ash", "Ketchum")

        report = ParticipantReconciler(session).verify([_player(userid="999")])

        assert report.imported_users[0].user_id == first.id
        assert len(report.warnings) == 1
        assert "2 accounts" in report.warnings[0]


class TestReconcile:
    def test_scenario_no_accounts(self, session, tournament):
        """Three well-formed entries and no accounts: everything skipped as no_account."""
        document = decode_tdf(tdf_xml())

        report = ParticipantReconciler(session).reconcile(tournament.id, document.players)

        assert (report.total_participants, report.imported_participants, report.skipped_participants) == (3, 0, 3)
        assert {entry.reason for entry in report.skipped_users} == {"no_account"}
        assert _participants(session, tournament.id) == []

    def test_scenario_second_upload_is_duplicate(self, session, tournament, make_account):
        """Importing the same document twice marks the matched entry duplicate the second time."""
        make_account("Ash", "Ketchum", player_id="1234567")
        document = decode_tdf(tdf_xml())
        reconciler = ParticipantReconciler(session)

        first = reconciler.reconcile(tournament.id, document.players)
        second = reconciler.reconcile(tournament.id, document.players)

        assert first.imported_participants == 1
        assert first.imported_users[0].participant_id is not None
        assert second.imported_participants == 0
        duplicate = [entry for entry in second.skipped_users if entry.player_id == "1234567"]
        assert duplicate[0].reason == "duplicate"
        assert len(_participants(session, tournament.id)) == 1

    def test_persisted_participant(self, session, tournament, make_account):
        account = make_account("Misty", "Waterflower", email="misty@example.com")

        report = ParticipantReconciler(session).reconcile(
            tournament.id, [_player(userid="2345678", first="Misty", last="Waterflower", email="MISTY@example.com")]
        )

        assert report.imported_users[0].match_strategy == "email"
        stored = _participants(session, tournament.id)[0]
        assert stored.user_id == account.id
        assert stored.player_id == "2345678"
        assert stored.registration_source == REGISTRATION_SOURCE_TDF_IMPORT
        assert stored.status == "registered"

    def test_invalid_entries_are_skipped_without_lookup(self, session, tournament, make_account):
        make_account("Ash", "Ketchum", player_id="1234567")
        players = [_player(userid="12345678")]
        players[0].errors.append("Player 1: userid '12345678' must be 1-7 digits")

        report = ParticipantReconciler(session).reconcile(tournament.id, players)

        assert report.skipped_users[0].reason == "invalid_data"
        assert "1-7 digits" in report.skipped_users[0].detail

    def test_same_account_twice_in_one_document(self, session, tournament, make_account):
        make_account("Ash", "Ketchum", email="ash@example.com")
        players = [
            _player(userid="111", email="ash@example.com"),
            _player(userid="222", email="ash@example.com"),
        ]

        report = ParticipantReconciler(session).reconcile(tournament.id, players)

        assert report.imported_participants == 1
        assert report.skipped_users[0].reason == "duplicate"
        assert report.is_consistent

    def test_unique_constraint_violation_becomes_duplicate(self, session, tournament, make_account, monkeypatch):
        """A concurrent import that wins the race shows up as a constraint violation."""
        make_account("Ash", "Ketchum", player_id="1234567")
        reconciler = ParticipantReconciler(session)
        calls = {"n": 0}
        real_check = reconciler._already_registered

        def racing_check(tournament_id, entry):
            calls["n"] += 1
            if calls["n"] == 1:
                # Another worker registers the player right after our pre-check
                session.add(TournamentParticipant(tournament_id=tournament_id, player_name="Ash", player_id="1234567"))
                session.commit()
                return False
            return real_check(tournament_id, entry)

        monkeypatch.setattr(reconciler, "_already_registered", racing_check)

        report = reconciler.reconcile(tournament.id, [_player()])

        assert report.skipped_users[0].reason == "duplicate"
        assert report.is_consistent
        assert len(_participants(session, tournament.id)) == 1

    def test_store_failure_downgrades_only_that_entry(self, session, tournament, make_account, monkeypatch):
        make_account("Ash", "Ketchum", player_id="1234567")
        make_account("Misty", "Waterflower", player_id="2345678")
        reconciler = ParticipantReconciler(session)
        real_commit = session.commit
        state = {"failed": False}

        def flaky_commit():
            if not state["failed"]:
                state["failed"] = True
                raise OperationalError("INSERT", {}, Exception("disk I/O error"))
            real_commit()

        monkeypatch.setattr(session, "commit", flaky_commit)

        report = reconciler.reconcile(
            tournament.id, [_player(), _player(userid="2345678", first="Misty", last="Waterflower")]
        )

        assert report.imported_participants == 1
        assert report.skipped_users[0].reason == "invalid_data"
        assert report.skipped_users[0].player_id == "1234567"
        assert report.is_consistent

    def test_checkpoint_cancels_between_entries(self, session, tournament, make_account):
        for userid, first, last, _birthdate in DEFAULT_PLAYERS:
            make_account(first, last, player_id=userid)
        document = decode_tdf(tdf_xml())
        seen = {"n": 0}

        def checkpoint():
            seen["n"] += 1
            if seen["n"] == 2:
                raise JobCancelled("job_test")

        with pytest.raises(JobCancelled):
            ParticipantReconciler(session).reconcile(tournament.id, document.players, checkpoint=checkpoint)

        # The entry before the cancellation stays committed
        stored = _participants(session, tournament.id)
        assert [p.player_id for p in stored] == ["1234567"]

    def test_verify_writes_nothing(self, session, tournament, make_account):
        make_account("Ash", "Ketchum", player_id="1234567")

        report = ParticipantReconciler(session).verify(decode_tdf(tdf_xml()).players)

        assert report.imported_participants == 1
        assert report.imported_users[0].participant_id is None
        assert _participants(session, tournament.id) == []


class TestImportReport:
    def test_conservation_through_downgrade(self):
        report = ImportReport()
        entry = ImportedEntry(player_name="Ash Ketchum", player_id="1", user_id=1, match_strategy="player_id")
        report.add_imported(entry)
        report.add_skipped(SkippedEntry(player_name="Brock", player_id="2", reason="no_account"))
        assert report.is_consistent

        report.downgrade(entry, "duplicate")

        assert (report.total_participants, report.imported_participants, report.skipped_participants) == (2, 0, 2)
        assert report.is_consistent

    def test_unknown_reason_rejected(self):
        with pytest.raises(ValueError):
            ImportReport().add_skipped(SkippedEntry(player_name="X", player_id="1", reason="banned"))

    def test_format(self):
        report = ImportReport()
        report.add_imported(
            ImportedEntry(player_name="Ash Ketchum", player_id="1", user_id=5, match_strategy="name", low_confidence=True)
        )
        report.add_skipped(SkippedEntry(player_name="Brock Harrison", player_id="2", reason="no_account"))

        text = format_import_report(report)

        assert "1 of 2 participants added" in text
        assert "No platform account (1)" in text
        assert "- Brock Harrison (ID: 2)" in text
        assert "Matched by name only" in text


class TestExportPreparation:
    def test_assign_missing_player_ids(self, session, tournament):
        session.add(TournamentParticipant(tournament_id=tournament.id, player_name="Ash Ketchum"))
        session.add(TournamentParticipant(tournament_id=tournament.id, player_name="Brock", player_id="77"))
        session.commit()

        assigned = assign_missing_player_ids(session, tournament.id, max_attempts=3)

        assert assigned == 1
        ids = sorted(p.player_id for p in _participants(session, tournament.id))
        assert "77" in ids
        assert all(i and i.isdigit() for i in ids)

    def test_collisions_regenerate_then_give_up(self, session, tournament, monkeypatch):
        session.add(TournamentParticipant(tournament_id=tournament.id, player_name="Taken", player_id="5"))
        session.add(TournamentParticipant(tournament_id=tournament.id, player_name="Ash Ketchum"))
        session.commit()

        draws = iter(["5", "6"])
        monkeypatch.setattr(reconciler_module, "generate_player_id", lambda: next(draws))
        assert assign_missing_player_ids(session, tournament.id, max_attempts=3) == 1

        session.add(TournamentParticipant(tournament_id=tournament.id, player_name="Misty"))
        session.commit()
        monkeypatch.setattr(reconciler_module, "generate_player_id", lambda: "5")
        with pytest.raises(IdentifierExhaustedError):
            assign_missing_player_ids(session, tournament.id, max_attempts=2)

    def test_ensure_organizer_popid(self, session, tournament):
        tournament.organizer_popid = None
        session.add(tournament)
        session.commit()

        popid = ensure_organizer_popid(session, tournament)

        assert len(popid) == 7
        assert ensure_organizer_popid(session, tournament) == popid

