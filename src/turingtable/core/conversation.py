"""Append-only conversation history."""

import re
from dataclasses import dataclass, asdict, replace
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ConversationEntry:
    """One spoken or typed line. Never mutated after it is appended."""

    entry_id: int
    speaker_id: str
    speaker_name: str
    text: str
    created_at: float

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "entryId": data["entry_id"],
            "speakerId": data["speaker_id"],
            "speakerName": data["speaker_name"],
            "text": data["text"],
            "createdAt": data["created_at"],
        }


_MARKDOWN_CHARS = re.compile(r"[*_`~]")
_WHITESPACE = re.compile(r"\s+")


def clean_text(text: Optional[str]) -> str:
    """Strip markdown emphasis and collapse whitespace from model output."""
    if not text:
        return ""
    text = _MARKDOWN_CHARS.sub("", text)
    return _WHITESPACE.sub(" ", text).strip()


class ConversationLog:
    """Ordered history of everything said at the table.

    Entries can be retracted (barge-in) but never edited. Readers always get
    copies.
    """

    def __init__(self):
        self._entries: List[ConversationEntry] = []
        self._next_id = 1

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, speaker_id: str, speaker_name: str, text: str, created_at: float) -> ConversationEntry:
        entry = ConversationEntry(
            entry_id=self._next_id,
            speaker_id=speaker_id,
            speaker_name=speaker_name,
            text=text,
            created_at=created_at,
        )
        self._next_id += 1
        self._entries.append(entry)
        return replace(entry)

    def retract(self, entry_id: int) -> bool:
        """Remove an entry the listeners never fully heard."""
        for index, entry in enumerate(self._entries):
            if entry.entry_id == entry_id:
                del self._entries[index]
                return True
        return False

    def recent(self, count: int) -> List[ConversationEntry]:
        if count <= 0:
            return []
        return [replace(e) for e in self._entries[-count:]]

    def transcript(self) -> List[ConversationEntry]:
        return [replace(e) for e in self._entries]

    def last(self) -> Optional[ConversationEntry]:
        return replace(self._entries[-1]) if self._entries else None

    def recent_speakers(self, count: int) -> List[str]:
        """Speaker ids of the last `count` entries, most recent first."""
        return [e.speaker_id for e in reversed(self._entries[-count:])] if count > 0 else []

    def format_lines(self, entries: Optional[List[ConversationEntry]] = None) -> str:
        entries = self._entries if entries is None else entries
        return "\n".join(f"{e.speaker_name}: {e.text}" for e in entries)
