"""Offline table simulation on a virtual clock.

Runs a full game with scripted AI lines, simulated playback and a scripted
human, without a network or a model. Useful for demos and for checking that
a table always reaches game over.

Usage:
    report = run_simulation(seed=7)
    print(report.outcome, report.phases)
"""

import logging
import random
from dataclasses import dataclass
from typing import List, Optional

from .agents.completion import ScriptedCompletionProvider
from .core.config import GameConfig
from .core.conversation import ConversationEntry
from .core.enums import GamePhase
from .core.events import (
    CommunicationModeSelected,
    GameUpdate,
    HumanMessage,
    HumanTypingStarted,
    HumanTypingStopped,
    HumanVote,
    ParticipantConnected,
)
from .core.phase_machine import PhaseStateMachine
from .core.scheduler import ManualScheduler
from .voice.playback import SimulatedAudioSink

logger = logging.getLogger(__name__)


@dataclass
class SimulationReport:
    """What happened at a simulated table."""

    outcome: Optional[str]
    phases: List[str]
    transcript: List[ConversationEntry]
    eliminated: List[str]
    elapsed: float
    updates: int = 0
    finished: bool = True


class ScriptedHuman:
    """Stands in for the human: chats now and then, answers when asked, votes."""

    DEFAULT_LINES = [
        "Honestly I just got here and you're all already yelling.",
        "I'm typing because my mic is broken, okay?",
        "{name}, that sounded like a customer service bot.",
        "I had cereal for breakfast. Soggy. Very human.",
        "Why does everyone keep looking at me? It's a voice call.",
    ]
    REPLY_LINES = [
        "Relax. I'm thinking. Humans do that.",
        "I don't owe you an answer, {name}.",
        "Fine, I'm real. Are you, {name}?",
    ]

    def __init__(self, machine: PhaseStateMachine, scheduler: ManualScheduler, rng: random.Random,
                 lines: Optional[List[str]] = None, talk_interval: float = 25.0, typing_time: float = 2.0):
        self.machine = machine
        self.scheduler = scheduler
        self.rng = rng
        self.lines = lines or self.DEFAULT_LINES
        self.talk_interval = talk_interval
        self.typing_time = typing_time
        self._replied: Optional[tuple] = None

    def attach(self):
        self.machine.subscribe(self._on_update)

    @property
    def _human_id(self) -> str:
        return self.machine.registry.human.id

    def _other_name(self) -> str:
        ais = self.machine.registry.active_ais
        return self.rng.choice(ais).display_name if ais else "anyone"

    def _on_update(self, update: GameUpdate):
        # Never dispatch from inside an update; schedule instead
        phase = GamePhase(update.snapshot.phase)
        if update.reason == "phase_change":
            if phase.is_round:
                self.scheduler.schedule(self.talk_interval, self._chat, update.snapshot.phase_token)
            elif phase.is_elimination:
                self.scheduler.schedule(3.0, self._vote, update.snapshot.phase_token)

        obligation = update.snapshot.pending_obligation
        if phase.is_round and obligation and obligation["participantId"] == self._human_id:
            key = (update.snapshot.phase_token, obligation["createdAt"])
            if key == self._replied:
                return
            self._replied = key
            self.scheduler.schedule(1.0, self._reply, update.snapshot.phase_token)

    def _type_then_say(self, text: str):
        self.machine.dispatch(HumanTypingStarted())
        self.scheduler.schedule(self.typing_time, self._say, text, self.machine.phase_token)

    def _say(self, text: str, token: int):
        if self.machine.phase_token == token and self.machine.phase.is_round:
            self.machine.dispatch(HumanMessage(text))
        else:
            self.machine.dispatch(HumanTypingStopped())

    def _chat(self, token: int):
        if self.machine.phase_token != token or not self.machine.phase.is_round:
            return
        self._type_then_say(self.rng.choice(self.lines).format(name=self._other_name()))
        self.scheduler.schedule(self.talk_interval, self._chat, token)

    def _reply(self, token: int):
        if self.machine.phase_token != token or not self.machine.phase.is_round:
            return
        self._type_then_say(self.rng.choice(self.REPLY_LINES).format(name=self._other_name()))

    def _vote(self, token: int):
        if self.machine.phase_token != token or not self.machine.votes.is_open:
            return
        ais = self.machine.registry.active_ais
        if ais:
            self.machine.dispatch(HumanVote(self.rng.choice(ais).id))


def run_simulation(
    config: Optional[GameConfig] = None,
    seed: Optional[int] = None,
    human_lines: Optional[List[str]] = None,
    text_mode: bool = True,
    max_duration: float = 1800.0,
) -> SimulationReport:
    """Play one full game on a virtual clock.

    Args:
        config: Table configuration (defaults to GameConfig with the given seed)
        seed: Seed for every random choice in the run
        human_lines: Lines the scripted human picks from ("{name}" is filled in)
        text_mode: Human joins in text mode (triggers the typing suspicion)
        max_duration: Virtual seconds before giving up

    Returns:
        SimulationReport
    """
    config = config or GameConfig(random_seed=seed)
    rng = random.Random(seed)
    scheduler = ManualScheduler()

    provider = ScriptedCompletionProvider(scheduler, latency=config.scripted_latency,
                                          rng=random.Random(rng.random()))
    sink = SimulatedAudioSink(scheduler, config.chars_per_second)
    machine = PhaseStateMachine(config, scheduler=scheduler, completion=provider, audio=sink,
                                rng=random.Random(rng.random()))
    sink.bind(machine.dispatch)

    updates = []
    machine.subscribe(updates.append)
    ScriptedHuman(machine, scheduler, random.Random(rng.random()), lines=human_lines).attach()

    machine.dispatch(ParticipantConnected(config.human_id, display_name=config.human_name))
    if text_mode:
        machine.dispatch(CommunicationModeSelected("text"))
    machine.start()
    for participant in machine.registry.players:
        if participant.is_ai:
            machine.dispatch(ParticipantConnected(participant.id))

    finished = scheduler.run_until(lambda: machine.is_over, timeout=max_duration)
    if not finished:
        logger.warning(f"Simulation stopped after {max_duration:.0f}s in {machine.phase.value}")

    return SimulationReport(
        outcome=machine.outcome.value if machine.outcome else None,
        phases=[phase.value for phase in machine.phase_history],
        transcript=machine.log.transcript(),
        eliminated=machine.registry.names(machine.registry.eliminated_ids()),
        elapsed=scheduler.now(),
        updates=len(updates),
        finished=finished,
    )
