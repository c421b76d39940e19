"""Tests for participants, the registry, the conversation log and the roster."""

import json

import pytest

from turingtable.core.config import GameConfig
from turingtable.core.conversation import ConversationLog, clean_text
from turingtable.core.enums import GamePhase, ParticipantKind
from turingtable.core.game_state import ConnectionRegistry, Participant, derive_aliases
from turingtable.persona.roster import DEFAULT_PERSONAS, RosterError, build_roster, load_persona_cards


class TestParticipant:
    """Tests for seats and aliases."""

    def test_aliases_derived_from_name(self):
        assert derive_aliases("Wario Amadeuss") == ["wario amadeuss", "wario", "amadeuss"]

    def test_short_and_common_words_skipped(self):
        assert derive_aliases("The Al Bot") == ["the al bot", "bot"]

    def test_rename_rebuilds_aliases(self):
        human = Participant("player1", "Guest", ParticipantKind.HUMAN)
        human.rename("Jordan Lee")
        assert human.aliases == ["jordan lee", "jordan", "lee"]

    def test_moderator_is_never_active(self):
        moderator = Participant("moderator", "President", ParticipantKind.MODERATOR, connected=True)
        assert not moderator.is_active


class TestConnectionRegistry:
    """Tests for connection and elimination flags."""

    def test_requires_exactly_one_human(self):
        with pytest.raises(ValueError):
            ConnectionRegistry([Participant("a", "A", ParticipantKind.AI)])
        with pytest.raises(ValueError):
            ConnectionRegistry([
                Participant("h1", "H1", ParticipantKind.HUMAN),
                Participant("h2", "H2", ParticipantKind.HUMAN),
            ])

    def test_rejects_duplicate_ids(self):
        with pytest.raises(ValueError):
            ConnectionRegistry([
                Participant("player1", "Alex", ParticipantKind.HUMAN),
                Participant("player1", "Wario", ParticipantKind.AI),
            ])

    def test_connect_reports_changes(self, config):
        registry = ConnectionRegistry(build_roster(config))
        assert registry.connect("player2")
        assert not registry.connect("player2")
        assert not registry.connect("nobody")
        assert registry.disconnect("player2")
        assert not registry.disconnect("player2")

    def test_active_players(self, registry):
        registry.connect("moderator")
        registry.eliminate("player3")

        assert [p.id for p in registry.active_players] == ["player1", "player2", "player4"]
        assert [p.id for p in registry.active_ais] == ["player2", "player4"]
        assert registry.eliminated_ids() == ["player3"]

    def test_all_players_connected_ignores_moderator(self, registry):
        assert registry.all_players_connected()
        assert not registry.moderator.connected

    def test_lookup_by_alias(self, registry):
        assert registry.get_by_name("Altman").id == "player4"
        assert registry.get_by_name("alex").id == "player1"
        assert registry.get_by_name("nobody") is None

    def test_names(self, registry):
        assert registry.names(["player2", "missing", "player1"]) == ["Wario Amadeuss", "Alex"]


class TestConversationLog:
    """Tests for the append-only log."""

    def test_append_assigns_increasing_ids(self, conversation):
        first = conversation.append("player2", "Wario", "hello", 1.0)
        second = conversation.append("player3", "Domis", "greetings", 2.0)

        assert second.entry_id > first.entry_id
        assert [e.text for e in conversation.transcript()] == ["hello", "greetings"]

    def test_retract(self, conversation):
        entry = conversation.append("player2", "Wario", "I was cut off", 1.0)
        assert conversation.retract(entry.entry_id)
        assert not conversation.retract(entry.entry_id)
        assert len(conversation) == 0

    def test_recent_and_speakers(self, conversation):
        for i, speaker in enumerate(["player2", "player3", "player4", "player2"]):
            conversation.append(speaker, speaker, f"line {i}", float(i))

        assert [e.text for e in conversation.recent(2)] == ["line 2", "line 3"]
        assert conversation.recent_speakers(3) == ["player2", "player4", "player3"]
        assert conversation.last().text == "line 3"
        assert conversation.recent(0) == []

    def test_entry_to_dict(self, conversation):
        entry = conversation.append("player2", "Wario", "hi", 4.5)
        assert entry.to_dict() == {
            "entryId": entry.entry_id,
            "speakerId": "player2",
            "speakerName": "Wario",
            "text": "hi",
            "createdAt": 4.5,
        }

    def test_clean_text(self):
        assert clean_text("  **Honestly**,   I'm  _real_ ") == "Honestly, I'm real"
        assert clean_text(None) == ""


class TestGamePhase:
    """Tests for the fixed phase order."""

    def test_order(self):
        assert GamePhase.LOBBY.next == GamePhase.CONNECTING
        assert GamePhase.ROUND_1.next == GamePhase.ELIMINATION_1
        assert GamePhase.ROUND_3.next == GamePhase.VERDICT
        assert GamePhase.GAME_OVER.next is None

    def test_round_numbers(self):
        assert GamePhase.ROUND_2.round_number == 2
        assert GamePhase.ELIMINATION_2.round_number == 2
        assert GamePhase.VERDICT.round_number is None


class TestRoster:
    """Tests for building the table roster."""

    def test_default_roster(self, config):
        seats = build_roster(config)

        assert [p.id for p in seats] == ["player1", "player2", "player3", "player4", "moderator"]
        assert seats[0].display_name == "Alex"
        assert seats[0].is_human
        assert seats[-1].is_moderator
        assert "domis" in seats[2].aliases
        assert seats[1].persona["role"] == "The Paranoid Philosopher"

    def test_load_roster_file(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text(json.dumps([
            {"id": "bot1", "name": "Robo Rita", "kind": "ai", "personality": "Cheerful"},
        ]))
        config = GameConfig(roster_file=str(path))
        seats = build_roster(config)

        assert [p.id for p in seats] == ["player1", "bot1"]
        assert seats[1].persona == {"personality": "Cheerful"}

    def test_missing_roster_file(self, tmp_path):
        with pytest.raises(RosterError):
            load_persona_cards(str(tmp_path / "missing.json"))

    def test_bad_json(self, tmp_path):
        path = tmp_path / "roster.json"
        path.write_text("{not json")
        with pytest.raises(RosterError):
            load_persona_cards(str(path))

    def test_human_card_rejected(self, config):
        with pytest.raises(RosterError):
            build_roster(config, cards=[{"id": "x", "name": "X", "kind": "human"}])

    def test_needs_an_ai(self, config):
        with pytest.raises(RosterError):
            build_roster(config, cards=[c for c in DEFAULT_PERSONAS if c["kind"] == "moderator"])

    def test_duplicate_ids(self, config):
        with pytest.raises(RosterError):
            build_roster(config, cards=[{"id": "player1", "name": "Copy", "kind": "ai"}])
