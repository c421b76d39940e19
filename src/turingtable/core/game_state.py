"""Participants and the connection registry."""

import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from .enums import ParticipantKind

# Words too common to serve as a name for address detection
_ALIAS_STOPWORDS = {"you", "the", "and", "has", "are", "was", "not", "for", "mrs"}


@dataclass
class Participant:
    """A seat at the table."""

    id: str  # e.g., "player2"
    display_name: str  # e.g., "Wario Amadeuss"
    kind: ParticipantKind
    connected: bool = False
    eliminated: bool = False

    # Lower-case names this participant answers to; derived from display_name if empty
    aliases: List[str] = field(default_factory=list)

    # Persona card used to build prompts (personality, speaking_style, ...)
    persona: Dict[str, str] = field(default_factory=dict)

    # Human only: "voice" or "text"
    communication_mode: Optional[str] = None

    def __post_init__(self):
        if not self.aliases:
            self.aliases = derive_aliases(self.display_name)

    @property
    def is_human(self) -> bool:
        return self.kind == ParticipantKind.HUMAN

    @property
    def is_ai(self) -> bool:
        return self.kind == ParticipantKind.AI

    @property
    def is_moderator(self) -> bool:
        return self.kind == ParticipantKind.MODERATOR

    @property
    def is_active(self) -> bool:
        """Seated player who can still talk and vote."""
        return self.connected and not self.eliminated and not self.is_moderator

    def rename(self, display_name: str):
        self.display_name = display_name
        self.aliases = derive_aliases(display_name)


def derive_aliases(display_name: str) -> List[str]:
    """Full name plus each distinctive word of it, lower-cased."""
    full = display_name.strip().lower()
    aliases = [full] if full else []
    for token in re.split(r"[\s\-+]+", full):
        token = token.strip(".,'\"")
        if len(token) >= 3 and token not in _ALIAS_STOPWORDS and token not in aliases:
            aliases.append(token)
    return aliases


class ConnectionRegistry:
    """Tracks which seats are connected and which have been eliminated.

    The roster is fixed at construction; participants are flagged, never removed.
    """

    def __init__(self, participants: Iterable[Participant]):
        self._participants: Dict[str, Participant] = {}
        for participant in participants:
            if participant.id in self._participants:
                raise ValueError(f"Duplicate participant id: {participant.id}")
            self._participants[participant.id] = participant

        humans = [p for p in self._participants.values() if p.is_human]
        if len(humans) != 1:
            raise ValueError(f"Roster needs exactly one human, got {len(humans)}")
        self._human_id = humans[0].id

    def __contains__(self, participant_id: str) -> bool:
        return participant_id in self._participants

    def __iter__(self):
        return iter(self._participants.values())

    def get(self, participant_id: str) -> Optional[Participant]:
        return self._participants.get(participant_id)

    def get_by_name(self, name: str) -> Optional[Participant]:
        lowered = name.strip().lower()
        for participant in self._participants.values():
            if lowered == participant.display_name.lower() or lowered in participant.aliases:
                return participant
        return None

    @property
    def human(self) -> Participant:
        return self._participants[self._human_id]

    @property
    def moderator(self) -> Optional[Participant]:
        for participant in self._participants.values():
            if participant.is_moderator:
                return participant
        return None

    @property
    def players(self) -> List[Participant]:
        """Human and AI seats, in roster order."""
        return [p for p in self._participants.values() if not p.is_moderator]

    @property
    def active_players(self) -> List[Participant]:
        return [p for p in self._participants.values() if p.is_active]

    @property
    def active_ais(self) -> List[Participant]:
        return [p for p in self.active_players if p.is_ai]

    def connected_ids(self) -> List[str]:
        return [p.id for p in self._participants.values() if p.connected]

    def eliminated_ids(self) -> List[str]:
        return [p.id for p in self._participants.values() if p.eliminated]

    def all_players_connected(self) -> bool:
        return all(p.connected for p in self.players)

    def connect(self, participant_id: str) -> bool:
        """Mark connected. Returns True if the flag changed."""
        participant = self._participants.get(participant_id)
        if participant is None or participant.connected:
            return False
        participant.connected = True
        return True

    def disconnect(self, participant_id: str) -> bool:
        participant = self._participants.get(participant_id)
        if participant is None or not participant.connected:
            return False
        participant.connected = False
        return True

    def eliminate(self, participant_id: str) -> bool:
        participant = self._participants.get(participant_id)
        if participant is None or participant.eliminated:
            return False
        participant.eliminated = True
        return True

    def names(self, participant_ids: Iterable[str]) -> List[str]:
        return [self._participants[pid].display_name for pid in participant_ids if pid in self._participants]
