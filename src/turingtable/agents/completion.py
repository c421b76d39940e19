"""Completion providers: the AI side of the table.

The state machine asks a provider for lines (request_utterance) and tells it
about table events (notify_system_event). Both calls are fire-and-forget; the
provider answers later by dispatching UtteranceReady back into the machine.

- NullCompletionProvider: never answers
- ScriptedCompletionProvider: canned in-character lines after a fixed latency
- GeminiCompletionProvider (agents.gemini_provider): live model
"""

import logging
import random
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from ..core.enums import UtteranceKind
from ..core.events import GameEvent, UtteranceReady, UtteranceRequest
from ..core.scheduler import Scheduler
from .prompts.table_templates import TablePrompts

logger = logging.getLogger(__name__)


@runtime_checkable
class CompletionProvider(Protocol):
    """Protocol for AI line generation."""

    def bind(self, dispatch: Callable[[GameEvent], object]) -> None:
        """Set where UtteranceReady events are delivered."""
        ...

    def request_utterance(self, request: UtteranceRequest) -> None:
        """Start composing a line. Must not block."""
        ...

    def notify_system_event(self, participant_ids: List[str], text: str) -> None:
        """Tell participants about a table event (phase change, elimination)."""
        ...


class NullCompletionProvider:
    """Provider that never answers. The table runs on timeouts alone."""

    def bind(self, dispatch: Callable[[GameEvent], object]) -> None:
        pass

    def request_utterance(self, request: UtteranceRequest) -> None:
        logger.debug(f"No provider; {request.speaker_name} stays silent")

    def notify_system_event(self, participant_ids: List[str], text: str) -> None:
        pass


class ScriptedCompletionProvider:
    """Canned lines, delivered on a scheduler after `latency` seconds.

    Good enough to run a whole table without a model: the lines address other
    players by name so obligations and callouts get exercised.
    """

    OPEN_LINES = [
        "Okay, {target}, be honest. What did you have for breakfast?",
        "I don't trust how calm everyone is. {target}, why so quiet?",
        "Something about {target} sounds rehearsed to me.",
        "Look, I have memories. Real ones. Can {target} say the same?",
        "That answer was way too polished, {target}.",
        "We are running out of time and nobody is saying anything real.",
    ]
    RESPONSE_LINES = [
        "Me? Come on. I'm as real as it gets, {target}.",
        "That's a ridiculous question, {target}, and you know it.",
        "Fine. I panic when I'm accused. Happy now, {target}?",
    ]
    CALLOUT_LINES = [
        "Notice how {target} just ignored that question? Very suspicious.",
        "{target} went completely silent. That tells me everything.",
    ]
    QUIET_LINES = [
        "{target}, you've been quiet this whole round. Say something human.",
        "Hey {target}, still with us? Your silence is loud.",
    ]
    SUSPICION_LINES = [
        "{target}, this is a voice call and you're typing? Explain that.",
    ]

    def __init__(self, scheduler: Scheduler, latency: float = 1.5, rng: Optional[random.Random] = None,
                 dispatch: Optional[Callable[[GameEvent], object]] = None):
        self.scheduler = scheduler
        self.latency = latency
        self.rng = rng or random.Random()
        self.dispatch = dispatch
        self.requests: List[UtteranceRequest] = []
        self.notifications: List[Dict] = []

    def bind(self, dispatch: Callable[[GameEvent], object]) -> None:
        self.dispatch = dispatch

    def request_utterance(self, request: UtteranceRequest) -> None:
        self.requests.append(request)
        text = self.compose(request)
        self.scheduler.schedule(self.latency, self._deliver, request, text,
                                label=f"scripted:{request.participant_id}")

    def notify_system_event(self, participant_ids: List[str], text: str) -> None:
        self.notifications.append({"participants": list(participant_ids), "text": text})

    def compose(self, request: UtteranceRequest) -> str:
        if request.kind == UtteranceKind.VOTE:
            choices = [n for n in request.candidate_names if n != request.speaker_name]
            if not choices:
                return "I abstain."
            return f"I vote for {self.rng.choice(choices)}. Something was off."

        if request.kind == UtteranceKind.VERDICT:
            survivors = request.remaining_names or [request.human_name]
            return TablePrompts.verdict_script(request.speaker_name, request.human_name, survivors)

        target = request.target_name or self._pick_target(request)
        lines = {
            UtteranceKind.DIRECT_RESPONSE: self.RESPONSE_LINES,
            UtteranceKind.SILENCE_CALLOUT: self.CALLOUT_LINES,
            UtteranceKind.HUMAN_QUIET: self.QUIET_LINES,
            UtteranceKind.TEXT_MODE_SUSPICION: self.SUSPICION_LINES,
        }.get(request.kind, self.OPEN_LINES)
        return self.rng.choice(lines).format(target=target)

    def _pick_target(self, request: UtteranceRequest) -> str:
        others = [n for n in request.remaining_names if n != request.speaker_name]
        return self.rng.choice(others) if others else request.human_name

    def _deliver(self, request: UtteranceRequest, text: str):
        if self.dispatch is None:
            return
        self.dispatch(UtteranceReady(request.participant_id, text, token=request.token))
