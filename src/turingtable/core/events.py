"""Inbound events, outbound requests and the snapshot published to subscribers.

Everything that happens at the table arrives as one of the small event
dataclasses below and goes through PhaseStateMachine.dispatch(). After each
state-changing event, subscribers receive a GameUpdate carrying a full
GameSnapshot.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .conversation import ConversationEntry
from .enums import UtteranceKind


# ============================================================================
# Inbound events
# ============================================================================


@dataclass(frozen=True)
class GameEvent:
    """Base class for everything dispatched into the state machine."""


@dataclass(frozen=True)
class StartGame(GameEvent):
    pass


@dataclass(frozen=True)
class ParticipantConnected(GameEvent):
    participant_id: str
    display_name: Optional[str] = None


@dataclass(frozen=True)
class ParticipantDisconnected(GameEvent):
    participant_id: str


@dataclass(frozen=True)
class HumanMessage(GameEvent):
    """Typed text, or a finished speech transcript."""

    text: str


@dataclass(frozen=True)
class HumanVote(GameEvent):
    target_id: str


@dataclass(frozen=True)
class HumanTypingStarted(GameEvent):
    pass


@dataclass(frozen=True)
class HumanTypingStopped(GameEvent):
    pass


@dataclass(frozen=True)
class HumanSpeakingStarted(GameEvent):
    """Voice activity from the human; barges in on whoever is talking."""


@dataclass(frozen=True)
class HumanSpeakingStopped(GameEvent):
    pass


@dataclass(frozen=True)
class CommunicationModeSelected(GameEvent):
    mode: str  # "voice" or "text"


@dataclass(frozen=True)
class UtteranceReady(GameEvent):
    """An AI collaborator finished composing a line.

    `token` is the phase token from the UtteranceRequest; responses carrying
    a stale token are discarded.
    """

    participant_id: str
    text: str
    token: Optional[int] = None
    audio: Optional[bytes] = None


@dataclass(frozen=True)
class PlaybackFinished(GameEvent):
    participant_id: str


# ============================================================================
# Outbound
# ============================================================================


@dataclass
class UtteranceRequest:
    """Everything a completion provider needs to write one line."""

    participant_id: str
    speaker_name: str
    kind: UtteranceKind
    token: int
    phase: str
    round_number: Optional[int] = None
    conversation: List[ConversationEntry] = field(default_factory=list)
    target_id: Optional[str] = None
    target_name: Optional[str] = None
    human_name: str = ""
    remaining_names: List[str] = field(default_factory=list)
    eliminated_names: List[str] = field(default_factory=list)
    candidate_names: List[str] = field(default_factory=list)
    is_facilitator: bool = False
    outcome: Optional[str] = None

    @property
    def last_entry(self) -> Optional[ConversationEntry]:
        return self.conversation[-1] if self.conversation else None


@dataclass
class GameSnapshot:
    """Read-only view of the table, safe to serialize and hand out."""

    phase: str
    phase_token: int
    round_number: Optional[int]
    connected_participants: List[str]
    eliminated_participants: List[str]
    conversation_window: List[Dict[str, Any]]
    active_speaker: Optional[str]
    queued_speakers: List[str]
    votes: Dict[str, str]
    vote_results: Optional[Dict[str, Any]]
    round_deadline: Optional[float]
    round_remaining: Optional[float]
    reveal_deadline: Optional[float]
    pending_obligation: Optional[Dict[str, Any]]
    facilitator: Optional[str]
    typing_state: str
    outcome: Optional[str]
    participants: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "phase": self.phase,
            "phaseToken": self.phase_token,
            "roundNumber": self.round_number,
            "connectedParticipants": list(self.connected_participants),
            "eliminatedParticipants": list(self.eliminated_participants),
            "conversationWindow": list(self.conversation_window),
            "activeSpeaker": self.active_speaker,
            "queuedSpeakers": list(self.queued_speakers),
            "votes": dict(self.votes),
            "voteResults": self.vote_results,
            "roundDeadline": self.round_deadline,
            "roundRemaining": self.round_remaining,
            "revealDeadline": self.reveal_deadline,
            "pendingObligation": self.pending_obligation,
            "facilitator": self.facilitator,
            "typingState": self.typing_state,
            "outcome": self.outcome,
            "participants": dict(self.participants),
        }


@dataclass
class GameUpdate:
    """The single outbound message type, published after each state change."""

    reason: str
    snapshot: GameSnapshot
    detail: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "game_update",
            "reason": self.reason,
            "detail": dict(self.detail),
            "snapshot": self.snapshot.to_dict(),
        }
