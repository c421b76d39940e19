"""Single-speaker audio dispatch queue.

Exactly one participant "speaks" at a time. Responses that arrive while
someone is talking wait in a short FIFO. The queue:

- plays immediately when idle and not held
- drops a second pending item from the same speaker
- throws away the whole backlog once it reaches max depth (stale context)
- force-completes any item whose playback never reports back
- supports barge-in, retracting the cut-off line from the conversation log

The conversation entry for an item is written when its playback starts, so
the log only ever holds speech the table has actually begun to hear.
"""

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional

from ..core.config import GameConfig
from ..core.conversation import ConversationEntry, ConversationLog
from ..core.enums import UtteranceKind
from ..core.scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)


@dataclass
class PlaybackItem:
    """One utterance waiting for, or holding, the floor."""

    speaker_id: str
    speaker_name: str
    text: str
    queued_at: float
    kind: UtteranceKind = UtteranceKind.OPEN_TURN
    audio: Optional[bytes] = field(default=None, repr=False)
    entry_id: Optional[int] = None
    started_at: Optional[float] = None

    def estimated_duration(self, chars_per_second: float) -> float:
        return len(self.text) / max(chars_per_second, 1.0)


class AudioDispatchQueue:
    """Serializes playback through one active speaker."""

    def __init__(
        self,
        scheduler: Scheduler,
        log: ConversationLog,
        config: GameConfig,
        on_start: Optional[Callable[[PlaybackItem, ConversationEntry], None]] = None,
        on_finish: Optional[Callable[[PlaybackItem, bool], None]] = None,
        on_idle: Optional[Callable[[], None]] = None,
    ):
        self.scheduler = scheduler
        self.log = log
        self.config = config
        self.on_start = on_start
        self.on_finish = on_finish
        self.on_idle = on_idle

        self.active: Optional[PlaybackItem] = None
        self._queue: Deque[PlaybackItem] = deque()
        self._hold_until: Optional[float] = None
        self._hold_call: Optional[ScheduledCall] = None
        self._timeout_call: Optional[ScheduledCall] = None
        self._generation = 0  # Bumped on interrupt; stale timeouts compare against it

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def active_speaker(self) -> Optional[str]:
        return self.active.speaker_id if self.active else None

    @property
    def pending(self) -> List[PlaybackItem]:
        return list(self._queue)

    @property
    def is_holding(self) -> bool:
        return self._hold_until is not None and self.scheduler.now() < self._hold_until

    @property
    def is_idle(self) -> bool:
        return self.active is None and not self._queue

    def completion_timeout(self, item: PlaybackItem) -> float:
        estimate = item.estimated_duration(self.config.chars_per_second)
        timeout = self.config.playback_timeout_floor + estimate * self.config.playback_timeout_multiplier
        return min(timeout, self.config.playback_timeout_ceiling)

    def enqueue(self, item: PlaybackItem) -> bool:
        """Admit an item. Returns False if it was dropped as a duplicate."""
        if any(queued.speaker_id == item.speaker_id for queued in self._queue):
            logger.debug(f"Dropped duplicate utterance from {item.speaker_name}")
            return False

        if len(self._queue) >= self.config.queue_max_depth:
            stale = [queued.speaker_name for queued in self._queue]
            self._queue.clear()
            logger.warning(f"Audio backlog at depth {len(stale)}; evicted {', '.join(stale)}")

        if self.active is None and not self.is_holding:
            self._start(item)
        else:
            self._queue.append(item)
        return True

    def hold(self, seconds: float):
        """Keep the floor empty for a while (e.g. a round banner on screen)."""
        if self._hold_call is not None:
            self._hold_call.cancel()
        self._hold_until = self.scheduler.now() + seconds
        self._hold_call = self.scheduler.schedule(seconds, self._release_hold, label="queue_hold")

    def _release_hold(self):
        self._hold_call = None
        self._hold_until = None
        if self.active is None:
            self._play_next()

    def on_active_finished(self, speaker_id: Optional[str] = None) -> bool:
        """Playback ended. No-op unless `speaker_id` is the current active speaker."""
        item = self.active
        if item is None or (speaker_id is not None and item.speaker_id != speaker_id):
            return False
        self._complete(item, forced=False)
        return True

    def interrupt(self) -> Optional[PlaybackItem]:
        """Barge-in: silence the active speaker, drop the backlog, retract the cut-off line."""
        self._generation += 1
        self._cancel_timeout()
        self._queue.clear()

        item = self.active
        self.active = None
        if item is not None and item.entry_id is not None:
            self.log.retract(item.entry_id)
            logger.info(f"Interrupted {item.speaker_name}; line retracted")
        return item

    def clear(self):
        """Drop queued items and any hold. The active speaker, if any, keeps the floor."""
        self._queue.clear()
        if self._hold_call is not None:
            self._hold_call.cancel()
            self._hold_call = None
        self._hold_until = None

    def _start(self, item: PlaybackItem):
        now = self.scheduler.now()
        self.active = item
        item.started_at = now
        entry = self.log.append(item.speaker_id, item.speaker_name, item.text, now)
        item.entry_id = entry.entry_id

        generation = self._generation
        self._timeout_call = self.scheduler.schedule(
            self.completion_timeout(item), self._on_timeout, item, generation, label="playback_timeout"
        )
        if self.on_start is not None:
            self.on_start(item, entry)

    def _on_timeout(self, item: PlaybackItem, generation: int):
        self._timeout_call = None
        if generation != self._generation or self.active is not item:
            return
        logger.warning(f"Playback for {item.speaker_name} never finished; forcing completion")
        self._complete(item, forced=True)

    def _complete(self, item: PlaybackItem, forced: bool):
        self._cancel_timeout()
        self.active = None
        if self.on_finish is not None:
            self.on_finish(item, forced)
        # on_finish may have started something or interrupted
        if self.active is None:
            self._play_next()

    def _play_next(self):
        if self.is_holding:
            return
        if self._queue:
            self._start(self._queue.popleft())
        elif self.on_idle is not None:
            self.on_idle()

    def _cancel_timeout(self):
        if self._timeout_call is not None:
            self._timeout_call.cancel()
            self._timeout_call = None
