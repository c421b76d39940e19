"""Enumerations for game phases, participants and turns."""

from enum import Enum
from typing import Optional


class GamePhase(Enum):
    """Game phases, in the fixed order a table moves through them."""

    LOBBY = "lobby"
    CONNECTING = "connecting"
    MODERATOR_INTRO = "moderator_intro"
    ROUND_1 = "round_1"
    ELIMINATION_1 = "elimination_1"
    ROUND_2 = "round_2"
    ELIMINATION_2 = "elimination_2"
    ROUND_3 = "round_3"
    VERDICT = "verdict"
    GAME_OVER = "game_over"

    @property
    def is_round(self) -> bool:
        return self in (GamePhase.ROUND_1, GamePhase.ROUND_2, GamePhase.ROUND_3)

    @property
    def is_elimination(self) -> bool:
        return self in (GamePhase.ELIMINATION_1, GamePhase.ELIMINATION_2)

    @property
    def round_number(self) -> Optional[int]:
        """Debate round this phase belongs to (eliminations share their round's number)."""
        if self.is_round or self.is_elimination:
            return int(self.value.rsplit("_", 1)[1])
        return None

    @property
    def next(self) -> Optional["GamePhase"]:
        index = PHASE_ORDER.index(self)
        if index + 1 < len(PHASE_ORDER):
            return PHASE_ORDER[index + 1]
        return None


PHASE_ORDER = list(GamePhase)


class ParticipantKind(Enum):
    """Who sits in a seat at the table."""

    HUMAN = "human"
    AI = "ai"
    MODERATOR = "moderator"


class GameOutcome(Enum):
    """Result of the game from the human's side of the table."""

    WIN = "win"  # Human survived to the verdict
    LOSS = "loss"  # Human was voted out


class TypingState(Enum):
    """What the human is currently doing with their input."""

    IDLE = "idle"
    TYPING = "typing"
    THINKING = "thinking"
    SPEAKING = "speaking"


class UtteranceKind(Enum):
    """Why a participant was asked to speak."""

    INTRO = "intro"
    OPEN_TURN = "open_turn"
    DIRECT_RESPONSE = "direct_response"
    SILENCE_CALLOUT = "silence_callout"
    HUMAN_QUIET = "human_quiet"
    TEXT_MODE_SUSPICION = "text_mode_suspicion"
    VOTE = "vote"
    VERDICT = "verdict"
    HUMAN = "human"
