from datetime import date, timedelta

import pytest

from tdfbridge.exceptions import TDFStructureError
from tdfbridge.models.tournament import Tournament, TournamentType
from tdfbridge.services.tdf_decoder import (
    compare_with_tournament,
    decode_tdf,
    extract_tournament_summary,
    validate_tdf,
)
from tests.tdf_samples import tdf_xml


def _tournament(**overrides) -> Tournament:
    values = dict(
        id=1,
        name="Spring League Cup",
        official_tournament_id="25SPR001",
        tournament_type=TournamentType.tcg_league_cup,
        city="Madrid",
        country="ES",
        start_date=date(2026, 3, 14),
        organizer_id="org-1",
        organizer_name="Ana Torres",
    )
    values.update(overrides)
    return Tournament(**values)


class TestWellFormedDocument:
    def test_header(self):
        document = decode_tdf(tdf_xml())
        header = document.header

        assert header.name == "Spring League Cup"
        assert header.id == "25SPR001"
        assert header.city == "Madrid"
        assert header.state == "Madrid"
        assert header.country == "ES"
        assert header.start_date == date(2026, 3, 14)
        assert header.organizer.popid == "1234567"
        assert header.organizer.name == "Ana Torres"
        assert (header.gametype, header.mode) == ("TRADING_CARD_GAME", "TCG1DAY")
        assert header.finalsroundtime == 75
        assert document.warnings == []

    def test_players_in_document_order(self):
        document = decode_tdf(tdf_xml())

        assert [p.userid for p in document.players] == ["1234567", "2345678", "3456789"]
        first = document.players[0]
        assert (first.first_name, first.last_name) == ("Ash", "Ketchum")
        assert first.birthdate == date(1997, 5, 22)
        assert first.starter is True
        assert first.creation_date is not None
        assert all(p.is_valid for p in document.players)

    def test_accepts_bytes(self):
        document = decode_tdf(tdf_xml().encode("utf-8"))
        assert document.player_count == 3

    def test_header_from_root_attributes(self):
        content = (
            '<tournament name="Legacy Export" id="25LEG001" startdate="01/05/2026" '
            'city="Lima" country="PE" gametype="GO" mode="GOPREMIER">'
            '<organizer popid="7654321" name="Luis"/>'
            "<players/>"
            "</tournament>"
        )
        document = decode_tdf(content)

        assert document.header.name == "Legacy Export"
        assert document.header.start_date == date(2026, 1, 5)
        assert document.header.organizer.popid == "7654321"
        assert document.players == []

    def test_player_name_attribute_is_split(self):
        content = tdf_xml(players=[]).replace(
            "<players></players>",
            '<players><player userid="42" name="Maria de la Cruz"><birthdate>02/02/2000</birthdate></player></players>',
        )
        player = decode_tdf(content).players[0]

        assert (player.first_name, player.last_name) == ("Maria", "de la Cruz")
        assert player.is_valid


class TestFatalErrors:
    def test_malformed_xml(self):
        with pytest.raises(TDFStructureError) as exc_info:
            decode_tdf("<tournament><data>")
        assert exc_info.value.errors[0].startswith("Invalid XML format")

    def test_wrong_root(self):
        with pytest.raises(TDFStructureError):
            decode_tdf("<event><data/></event>")

    def test_all_missing_header_fields_reported(self):
        with pytest.raises(TDFStructureError) as exc_info:
            decode_tdf("<tournament><data><city>Madrid</city></data></tournament>")

        errors = exc_info.value.errors
        assert len(errors) == 3
        assert any("name" in e for e in errors)
        assert any("id" in e for e in errors)
        assert any("startdate" in e for e in errors)

    def test_unparsable_start_date(self):
        with pytest.raises(TDFStructureError) as exc_info:
            decode_tdf(tdf_xml(startdate="2026-03-14"))
        assert "startdate" in exc_info.value.errors[0]

    def test_entities_are_not_expanded(self):
        content = (
            '<?xml version="1.0"?>'
            '<!DOCTYPE tournament [<!ENTITY big "Expanded">]>'
            "<tournament><data><name>&big;</name><id>25SPR001</id>"
            "<startdate>03/14/2026</startdate></data></tournament>"
        )
        try:
            document = decode_tdf(content)
        except TDFStructureError:
            return
        assert "Expanded" not in document.header.name


class TestPlayerErrors:
    def test_invalid_entries_are_recorded_not_raised(self):
        future = (date.today() + timedelta(days=30)).strftime("%m/%d/%Y")
        players = [
            ("1234567", "Ash", "Ketchum", "05/22/1997"),
            ("12345678", "Too", "Long", "05/22/1997"),
            ("", "No", "Id", "05/22/1997"),
            ("555", "", "", "05/22/1997"),
            ("556", "Bad", "Date", "1997-05-22"),
            ("557", "Future", "Kid", future),
        ]
        document = decode_tdf(tdf_xml(players=players))

        assert document.player_count == 6
        assert document.players[0].is_valid
        assert len(document.invalid_players) == 5
        assert "must be 1-7 digits" in document.players[1].errors[0]
        assert "missing userid" in document.players[2].errors[0]
        assert "name is empty" in document.players[3].errors[0]
        assert "MM/DD/YYYY" in document.players[4].errors[0]
        assert "future" in document.players[5].errors[0]

    def test_non_ascii_account_tag_is_ignored(self):
        content = tdf_xml().replace("<starter>", "<accountid>²</accountid><starter>", 1)

        document = decode_tdf(content)

        assert document.players[0].account_id is None
        assert document.players[0].is_valid

    def test_ascii_account_tag_is_read(self):
        content = tdf_xml().replace("<starter>", "<accountid>42</accountid><starter>", 1)
        assert decode_tdf(content).players[0].account_id == 42

    def test_malformed_standing_place_is_skipped(self):
        standings = (
            "<standings>"
            '<pod category="0" type="finished">'
            '<player id="1234567" place="1"/>'
            '<player id="2345678" place="²"/>'
            "</pod>"
            "</standings>"
        )
        content = tdf_xml().replace("</tournament>", standings + "</tournament>")

        document = decode_tdf(content)

        assert [(s.userid, s.place) for s in document.standings] == [("1234567", 1)]
        assert "Ignoring malformed standing in pod '0'" in document.warnings

    def test_validate_tdf_collects_player_errors(self):
        result = validate_tdf(tdf_xml(players=[("abc", "Ash", "Ketchum", "05/22/1997")]))
        assert not result.is_valid
        assert len(result.errors) == 1

    def test_validate_tdf_reports_structure_errors(self):
        result = validate_tdf("not xml")
        assert not result.is_valid
        assert result.errors


class TestWarnings:
    def test_non_fatal_header_problems(self):
        content = tdf_xml(city="", country="", tournament_id="26-03-000123", gametype="CHESS", mode="OPEN")
        document = decode_tdf(content)

        assert "Missing city" in document.warnings
        assert "Missing country" in document.warnings
        assert any("8-character" in w for w in document.warnings)
        assert any("Unsupported tournament type" in w for w in document.warnings)

    def test_organizer_without_popid(self):
        document = decode_tdf(tdf_xml(popid=""))
        assert "Missing organizer popid attribute" in document.warnings

    def test_missing_players_list(self):
        content = "<tournament><data><name>X</name><id>25SPR001</id><startdate>03/14/2026</startdate></data></tournament>"
        document = decode_tdf(content)
        assert document.players == []
        assert "Missing players list" in document.warnings


class TestSummaryAndComparison:
    def test_summary(self):
        summary = extract_tournament_summary(decode_tdf(tdf_xml()))

        assert summary.id == "25SPR001"
        assert summary.type == TournamentType.tcg_league_cup
        assert summary.player_count == 3

    def test_matching_tournament_has_no_discrepancies(self):
        summary = extract_tournament_summary(decode_tdf(tdf_xml(city="MADRID")))
        assert compare_with_tournament(summary, _tournament()) == []

    def test_discrepancies_are_listed(self):
        summary = extract_tournament_summary(decode_tdf(tdf_xml(tournament_id="25SPR999", startdate="03/15/2026")))
        discrepancies = compare_with_tournament(
            summary, _tournament(tournament_type=TournamentType.tcg_prerelease)
        )

        assert len(discrepancies) == 3
        assert any("Tournament ID" in d for d in discrepancies)
        assert any("Start date" in d for d in discrepancies)
        assert any("tcg_prerelease" in d for d in discrepancies)
