"""Pytest configuration and fixtures."""

import random
from typing import List

import pytest

from turingtable.core.config import GameConfig
from turingtable.core.conversation import ConversationLog
from turingtable.core.enums import GamePhase
from turingtable.core.events import (
    ParticipantConnected,
    PlaybackFinished,
    StartGame,
    UtteranceReady,
    UtteranceRequest,
)
from turingtable.core.game_state import ConnectionRegistry
from turingtable.core.phase_machine import PhaseStateMachine
from turingtable.core.scheduler import ManualScheduler
from turingtable.persona.roster import build_roster


class RecordingCompletionProvider:
    """Provider that records requests and only answers when a test tells it to."""

    def __init__(self):
        self.dispatch = None
        self.requests: List[UtteranceRequest] = []
        self.notifications: List[dict] = []

    def bind(self, dispatch):
        self.dispatch = dispatch

    def request_utterance(self, request: UtteranceRequest) -> None:
        self.requests.append(request)

    def notify_system_event(self, participant_ids, text) -> None:
        self.notifications.append({"participants": list(participant_ids), "text": text})

    def requests_for(self, participant_id: str) -> List[UtteranceRequest]:
        return [r for r in self.requests if r.participant_id == participant_id]


class RecordingAudioSink:
    """Audio sink that remembers what it was asked to play and stop."""

    def __init__(self):
        self.played = []
        self.stopped = []

    def play(self, item):
        self.played.append(item)

    def stop(self, item):
        self.stopped.append(item)


class Table:
    """A machine on a virtual clock with recording collaborators."""

    HUMAN_NAME = "Alex"

    def __init__(self, **overrides):
        overrides.setdefault("random_seed", 7)
        self.config = GameConfig(**overrides)
        self.scheduler = ManualScheduler()
        self.provider = RecordingCompletionProvider()
        self.sink = RecordingAudioSink()
        self.machine = PhaseStateMachine(
            self.config,
            scheduler=self.scheduler,
            completion=self.provider,
            audio=self.sink,
            rng=random.Random(7),
        )
        self.updates = []
        self.machine.subscribe(self.updates.append)

    @property
    def phase(self) -> GamePhase:
        return self.machine.phase

    def advance(self, seconds: float):
        self.scheduler.advance(seconds)

    def say(self, participant_id: str, text: str, token=None):
        """An AI (or the moderator) delivers a line for the current phase."""
        if token is None:
            token = self.machine.phase_token
        return self.machine.dispatch(UtteranceReady(participant_id, text, token=token))

    def finish(self, participant_id: str):
        return self.machine.dispatch(PlaybackFinished(participant_id))

    def start_to_intro(self):
        self.machine.dispatch(ParticipantConnected(self.config.human_id, display_name=self.HUMAN_NAME))
        for participant in self.machine.registry.players:
            if participant.is_ai:
                self.machine.dispatch(ParticipantConnected(participant.id))
        self.machine.dispatch(StartGame())
        assert self.phase == GamePhase.MODERATOR_INTRO

    def start_to_round(self):
        """Run the intro and land in round 1 with the overlay hold released."""
        self.start_to_intro()
        self.finish(self.config.moderator_id)
        self.advance(self.config.intro_exit_delay)
        assert self.phase == GamePhase.ROUND_1
        self.advance(self.config.round_overlay_hold)

    def end_round(self):
        assert self.phase.is_round
        self.advance(self.machine.timer.remaining + 0.5)
        assert not self.phase.is_round

    def reasons(self) -> List[str]:
        return [u.reason for u in self.updates]


@pytest.fixture
def table():
    """Create a fresh table with default timings."""
    return Table()


@pytest.fixture
def make_table():
    """Factory for tables with config overrides."""
    return Table


@pytest.fixture
def config():
    """Create a test game configuration."""
    return GameConfig(human_name="Alex", random_seed=7)


@pytest.fixture
def registry(config):
    """Default roster with every player seated."""
    registry = ConnectionRegistry(build_roster(config))
    for participant in registry.players:
        registry.connect(participant.id)
    return registry


@pytest.fixture
def conversation():
    return ConversationLog()


@pytest.fixture
def scheduler():
    return ManualScheduler()
