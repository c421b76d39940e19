"""Audio dispatch, playback sinks and the websocket transport.

Usage:
    from turingtable.voice import AudioDispatchQueue, PlaybackItem, SimulatedAudioSink
"""

from .audio_queue import AudioDispatchQueue, PlaybackItem
from .playback import AudioSink, NullAudioSink, SimulatedAudioSink

__all__ = [
    "AudioDispatchQueue",
    "PlaybackItem",
    "AudioSink",
    "NullAudioSink",
    "SimulatedAudioSink",
]
