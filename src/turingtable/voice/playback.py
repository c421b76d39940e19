"""Audio sinks: where queued speech actually goes.

The state machine never inspects audio. It hands each PlaybackItem to an
AudioSink when the item takes the floor and hears back through a
PlaybackFinished event.

- NullAudioSink: discards everything (text-only tables, tests)
- SimulatedAudioSink: "plays" for the estimated duration on a scheduler
- TableServer (voice.table_server): streams to the connected client
"""

import logging
from typing import Callable, Dict, List, Optional, Protocol, runtime_checkable

from ..core.events import GameEvent, PlaybackFinished
from ..core.scheduler import ScheduledCall, Scheduler
from .audio_queue import PlaybackItem

logger = logging.getLogger(__name__)


@runtime_checkable
class AudioSink(Protocol):
    """Protocol for playback output."""

    def play(self, item: PlaybackItem) -> None:
        """Start playing an item. Completion is reported as PlaybackFinished."""
        ...

    def stop(self, item: PlaybackItem) -> None:
        """Cut an item off mid-playback (barge-in, round end)."""
        ...


class NullAudioSink:
    """No-op sink."""

    def play(self, item: PlaybackItem) -> None:
        pass

    def stop(self, item: PlaybackItem) -> None:
        pass


class SimulatedAudioSink:
    """Pretends to speak each item for its estimated duration.

    Used by the simulator and by text-only servers so the queue still paces
    itself like real speech.
    """

    def __init__(self, scheduler: Scheduler, chars_per_second: float = 15.0,
                 dispatch: Optional[Callable[[GameEvent], object]] = None):
        self.scheduler = scheduler
        self.chars_per_second = chars_per_second
        self.dispatch = dispatch
        self.played: List[PlaybackItem] = []
        self.stopped: List[PlaybackItem] = []
        self._calls: Dict[int, ScheduledCall] = {}

    def bind(self, dispatch: Callable[[GameEvent], object]):
        self.dispatch = dispatch

    def play(self, item: PlaybackItem) -> None:
        self.played.append(item)
        duration = item.estimated_duration(self.chars_per_second)
        self._calls[id(item)] = self.scheduler.schedule(
            duration, self._finish, item, label=f"playback:{item.speaker_id}"
        )

    def stop(self, item: PlaybackItem) -> None:
        self.stopped.append(item)
        call = self._calls.pop(id(item), None)
        if call is not None:
            call.cancel()

    def _finish(self, item: PlaybackItem):
        self._calls.pop(id(item), None)
        if self.dispatch is not None:
            self.dispatch(PlaybackFinished(item.speaker_id))
