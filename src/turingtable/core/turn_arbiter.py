"""Turn-taking heuristics: who is obligated to answer, and who speaks next.

Address detection is plain pattern matching over display names and aliases.
False positives and negatives are expected; the goal is plausible turn-taking,
not parsing.

Usage:
    arbiter = TurnArbiter(registry, log, config)
    update = arbiter.on_entry_appended(entry, now)
    if update.created:
        scheduler.schedule(config.obligation_timeout, ...)
    decision = arbiter.decide_next_turn(now)
"""

import logging
import random
import re
from collections import Counter
from dataclasses import dataclass
from functools import lru_cache
from typing import Iterable, List, Optional, Pattern, Tuple

from .config import GameConfig
from .conversation import ConversationEntry, ConversationLog
from .enums import UtteranceKind
from .game_state import ConnectionRegistry, Participant

logger = logging.getLogger(__name__)


INTERROGATIVES = (
    "what|how|why|who|where|when|which|are|is|do|does|did|can|could|would|will|have|were|was"
)
IMPERATIVES = "tell|say|answer|explain|prove|admit|describe|give|name|speak|respond|convince"

# Each entry: (pattern template, requires a "?" somewhere in the text)
DIRECT_ADDRESS_PATTERNS: List[Tuple[str, bool]] = [
    (r"{name}\s*\?", False),
    (r"{name}\s*,\s*(?:" + INTERROGATIVES + r")\b", False),
    (r"{name}\s*,\s*(?:" + IMPERATIVES + r")\b", False),
    (r"{name}\s*,\s*\w+\s*\?", False),
    (r"\b(?:what about|how about|ask)\s+{name}", True),
    (r"^\W*{name}", True),  # Named first, question anywhere
]

ADDRESSED_PATTERNS: List[Tuple[str, bool]] = [
    (r"^\W*{name}\s*[,:]", False),
    (r"@{name}", False),
    (r"\b(?:hey|yo|hi|okay|ok)\s+{name}", False),
    (r"{name}.*\?", False),
]

MENTION_PATTERNS: List[Tuple[str, bool]] = [
    (r"{name}", False),
]


@lru_cache(maxsize=512)
def _compile(template: str, alias: str) -> Pattern:
    name = r"(?<!\w)" + re.escape(alias) + r"(?!\w)"
    return re.compile(template.replace("{name}", name), re.IGNORECASE)


def _earliest_match(text: str, roster: Iterable[Participant],
                    patterns: List[Tuple[str, bool]]) -> Optional[str]:
    """Participant whose name matches earliest in the text; roster order breaks ties."""
    if not text:
        return None
    has_question = "?" in text
    best: Optional[Tuple[int, int, str]] = None

    for order, participant in enumerate(roster):
        for alias in participant.aliases:
            for template, needs_question in patterns:
                if needs_question and not has_question:
                    continue
                match = _compile(template, alias).search(text)
                if match is None:
                    continue
                candidate = (match.start(), order, participant.id)
                if best is None or candidate < best:
                    best = candidate

    return best[2] if best else None


def detect_direct_address(text: str, roster: Iterable[Participant]) -> Optional[str]:
    """Return the id of the participant this text directly questions, if any.

    `roster` should hold only participants who can be addressed: active, and
    not the speaker.
    """
    return _earliest_match(text, roster, DIRECT_ADDRESS_PATTERNS)


def detect_addressed_participant(text: str, roster: Iterable[Participant]) -> Optional[str]:
    """Broader routing check for human messages ("hey Wario", "@Domis", "Scan: ...")."""
    roster = list(roster)
    return _earliest_match(text, roster, ADDRESSED_PATTERNS) or detect_direct_address(text, roster)


def detect_mentioned_participant(text: str, roster: Iterable[Participant]) -> Optional[str]:
    """Any participant named in the text at all."""
    return _earliest_match(text, roster, MENTION_PATTERNS)


@dataclass
class PendingObligation:
    """A participant was just addressed and is expected to answer."""

    participant_id: str
    asker_id: str
    deadline: float
    created_at: float
    source_entry_id: Optional[int] = None
    serial: int = 0

    def is_overdue(self, now: float) -> bool:
        return now >= self.deadline


@dataclass
class ObligationUpdate:
    """What a new entry did to the pending obligation."""

    created: Optional[PendingObligation] = None
    resolved: Optional[PendingObligation] = None

    @property
    def changed(self) -> bool:
        return self.created is not None or self.resolved is not None


@dataclass
class TurnDecision:
    """Who should be asked to speak next, and why."""

    kind: UtteranceKind
    speaker_id: str
    target_id: Optional[str] = None
    reason: str = ""


class TurnArbiter:
    """Tracks obligations and silence, and picks the next AI speaker."""

    def __init__(self, registry: ConnectionRegistry, log: ConversationLog, config: GameConfig,
                 rng: Optional[random.Random] = None):
        self.registry = registry
        self.log = log
        self.config = config
        self.rng = rng or random.Random()

        self.facilitator_id: Optional[str] = None
        self.obligation: Optional[PendingObligation] = None
        self.last_human_spoke_at = 0.0
        self.quiet_callout_issued = False
        self._serial = 0

    def reset(self, now: float):
        """Start a fresh phase: no obligation, silence measured from now."""
        self.obligation = None
        self.last_human_spoke_at = now
        self.quiet_callout_issued = False

    # ------------------------------------------------------------------
    # Obligations
    # ------------------------------------------------------------------

    def on_entry_appended(self, entry: ConversationEntry, now: float) -> ObligationUpdate:
        update = ObligationUpdate()

        if entry.speaker_id == self.registry.human.id:
            self.last_human_spoke_at = now

        if self.obligation and self.obligation.participant_id == entry.speaker_id:
            update.resolved = self.obligation
            self.obligation = None
            logger.debug(f"Obligation on {entry.speaker_name} resolved")

        roster = [p for p in self.registry.active_players if p.id != entry.speaker_id]
        target_id = detect_direct_address(entry.text, roster)
        if target_id:
            self._serial += 1
            self.obligation = PendingObligation(
                participant_id=target_id,
                asker_id=entry.speaker_id,
                deadline=now + self.config.obligation_timeout,
                created_at=now,
                source_entry_id=entry.entry_id,
                serial=self._serial,
            )
            update.created = self.obligation
            target = self.registry.get(target_id)
            logger.debug(f"{entry.speaker_name} addressed {target.display_name}, answer due in "
                         f"{self.config.obligation_timeout:.0f}s")

        return update

    def on_entry_retracted(self, entry_id: int) -> Optional[PendingObligation]:
        """Drop an obligation created by speech that was cut off."""
        if self.obligation and self.obligation.source_entry_id == entry_id:
            dropped = self.obligation
            self.obligation = None
            return dropped
        return None

    def extend_obligation(self, participant_id: str, now: float) -> Optional[PendingObligation]:
        """The obligated participant is visibly composing an answer; push the deadline out."""
        if self.obligation is None or self.obligation.participant_id != participant_id:
            return None
        self._serial += 1
        self.obligation.deadline = now + self.config.obligation_timeout
        self.obligation.serial = self._serial
        return self.obligation

    def clear_obligation(self):
        self.obligation = None

    def waiting_on_human(self) -> bool:
        return self.obligation is not None and self.obligation.participant_id == self.registry.human.id

    def expire_obligation(self, serial: int, now: float) -> Optional[TurnDecision]:
        """Deadline reached. Returns a single silence callout, or None if already settled."""
        obligation = self.obligation
        if obligation is None or obligation.serial != serial:
            return None
        self.obligation = None

        silent = self.registry.get(obligation.participant_id)
        if silent is None or not silent.is_active:
            return None

        asker = self.registry.get(obligation.asker_id)
        if silent.is_human:
            speaker_id = self.designated_speaker()
        elif asker is not None and asker.is_ai and asker.is_active and asker.id != silent.id:
            speaker_id = asker.id
        else:
            others = [p.id for p in self.registry.active_ais if p.id != silent.id]
            speaker_id = self.rng.choice(others) if others else None

        if speaker_id is None:
            return None

        logger.info(f"{silent.display_name} ignored a direct question; calling it out")
        return TurnDecision(
            kind=UtteranceKind.SILENCE_CALLOUT,
            speaker_id=speaker_id,
            target_id=silent.id,
            reason="obligation deadline passed",
        )

    # ------------------------------------------------------------------
    # Next speaker
    # ------------------------------------------------------------------

    def decide_next_turn(self, now: float, exclude: Optional[str] = None) -> Optional[TurnDecision]:
        """Pick the next AI turn, or None if nobody should be asked right now."""
        obligation = self.obligation
        if obligation is not None:
            if obligation.participant_id == self.registry.human.id:
                return None  # The deadline callout resumes play
            target = self.registry.get(obligation.participant_id)
            if target is not None and target.is_active and not obligation.is_overdue(now):
                return TurnDecision(
                    kind=UtteranceKind.DIRECT_RESPONSE,
                    speaker_id=target.id,
                    target_id=obligation.asker_id,
                    reason="directly addressed",
                )

        human = self.registry.human
        if (
            human.is_active
            and not self.quiet_callout_issued
            and now - self.last_human_spoke_at >= self.config.human_silence_threshold
        ):
            speaker_id = self.designated_speaker(exclude=exclude)
            if speaker_id:
                self.quiet_callout_issued = True
                return TurnDecision(
                    kind=UtteranceKind.HUMAN_QUIET,
                    speaker_id=speaker_id,
                    target_id=human.id,
                    reason="human has been quiet",
                )

        speaker_id = self.select_next_speaker(exclude=exclude)
        if speaker_id is None:
            return None
        return TurnDecision(kind=UtteranceKind.OPEN_TURN, speaker_id=speaker_id, reason="open floor")

    def select_next_speaker(self, exclude: Optional[str] = None) -> Optional[str]:
        active_ais = [p for p in self.registry.active_ais if p.id != exclude]
        if not active_ais:
            return None
        ai_ids = [p.id for p in active_ais]

        last_entry = self.log.last()
        if last_entry is not None:
            named = detect_mentioned_participant(
                last_entry.text, [p for p in active_ais if p.id != last_entry.speaker_id]
            )
            if named:
                return named

        recent = self.log.recent_speakers(2)
        previous = recent[0] if recent else None
        candidates = (
            [pid for pid in ai_ids if pid not in recent]
            or [pid for pid in ai_ids if pid != previous]
            or ai_ids
        )

        if self.facilitator_id in candidates and self.facilitator_id not in self.log.recent_speakers(3):
            return self.facilitator_id

        activity = Counter(self.log.recent_speakers(self.config.activity_window))
        fewest = min(activity[pid] for pid in candidates)
        least_active = [pid for pid in candidates if activity[pid] == fewest]
        return self.rng.choice(least_active)

    def designated_speaker(self, exclude: Optional[str] = None) -> Optional[str]:
        """Facilitator if seated, else a random active AI."""
        facilitator = self.registry.get(self.facilitator_id) if self.facilitator_id else None
        if facilitator is not None and facilitator.is_active and facilitator.id != exclude:
            return facilitator.id
        ais = [p.id for p in self.registry.active_ais if p.id != exclude]
        return self.rng.choice(ais) if ais else None
