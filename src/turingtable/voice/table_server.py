"""WebSocket transport for a TuringTable game.

Bridges browser clients and the PhaseStateMachine:
- Client JSON messages become inbound events (join, message, vote, typing, ...)
- Every GameUpdate from the machine is broadcast as a "game_update" message
- The server is also the machine's AudioSink: each utterance that takes the
  floor goes out as "speaker_start" (text plus optional base64 audio), and the
  client answers with "playback_finished" once it has played it

Protocol:
    Client sends:
        {"type": "join", "name": "Alex", "mode": "voice"}
        {"type": "start_game"}
        {"type": "message", "text": "Wario, are you even real?"}
        {"type": "vote", "target_id": "player3"}
        {"type": "typing_start"} / {"type": "typing_stop"}
        {"type": "speaking_start"} / {"type": "speaking_stop"}
        {"type": "playback_finished", "participant_id": "player2"}
        {"type": "ping"}

    Server sends:
        welcome, game_update, speaker_start, speaker_stop, error, pong, goodbye

Usage:
    server = TableServer(config)
    machine = PhaseStateMachine(config, audio=server, completion=provider)
    server.attach(machine)
    await server.start()
"""

import asyncio
import base64
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Dict, Optional, Set, TYPE_CHECKING

from websockets.asyncio.server import serve
from websockets.exceptions import ConnectionClosed

from ..core.config import GameConfig
from ..core.events import (
    CommunicationModeSelected,
    GameEvent,
    GameUpdate,
    HumanMessage,
    HumanSpeakingStarted,
    HumanSpeakingStopped,
    HumanTypingStarted,
    HumanTypingStopped,
    HumanVote,
    ParticipantConnected,
    ParticipantDisconnected,
    PlaybackFinished,
    StartGame,
)
from .audio_queue import PlaybackItem

if TYPE_CHECKING:
    from ..core.phase_machine import PhaseStateMachine

logger = logging.getLogger(__name__)


class MessageType(str, Enum):
    """WebSocket message types."""
    # Client -> Server
    JOIN = "join"
    START_GAME = "start_game"
    MESSAGE = "message"
    VOTE = "vote"
    MODE = "mode"
    TYPING_START = "typing_start"
    TYPING_STOP = "typing_stop"
    SPEAKING_START = "speaking_start"
    SPEAKING_STOP = "speaking_stop"
    PLAYBACK_FINISHED = "playback_finished"
    PING = "ping"

    # Server -> Client
    WELCOME = "welcome"
    GAME_UPDATE = "game_update"
    SPEAKER_START = "speaker_start"
    SPEAKER_STOP = "speaker_stop"
    ERROR = "error"
    PONG = "pong"
    GOODBYE = "goodbye"


@dataclass
class ClientSession:
    """A connected browser."""
    session_id: str
    websocket: Any
    is_human_seat: bool = False
    connected_at: datetime = field(default_factory=datetime.now)
    messages_received: int = 0
    messages_sent: int = 0


class TableServer:
    """WebSocket server for one table.

    The first client to join takes the human seat; later clients are
    spectators that receive broadcasts only.
    """

    PROTOCOL_VERSION = "1.0.0"

    def __init__(self, config: Optional[GameConfig] = None, machine: Optional["PhaseStateMachine"] = None):
        self.config = config or GameConfig()
        self.host = self.config.server_host
        self.port = self.config.server_port
        self.machine: Optional["PhaseStateMachine"] = None

        self._sessions: Dict[str, ClientSession] = {}
        self._human_session_id: Optional[str] = None
        self._server: Any = None
        self._tasks: Set[asyncio.Task] = set()
        self._unsubscribe = None

        if machine is not None:
            self.attach(machine)

    def attach(self, machine: "PhaseStateMachine"):
        """Start relaying this machine's updates to clients."""
        if self._unsubscribe is not None:
            self._unsubscribe()
        self.machine = machine
        self._unsubscribe = machine.subscribe(self._on_update)

    @property
    def active_sessions(self) -> int:
        return len(self._sessions)

    # === Server Lifecycle ===

    async def start(self):
        if self._server is not None:
            logger.warning("Server already running")
            return
        self._server = await serve(
            self._handle_connection,
            self.host,
            self.port,
            ping_interval=self.config.ping_interval,
            ping_timeout=self.config.ping_interval * 2,
            max_size=10 * 1024 * 1024,
        )
        logger.info(f"Table server listening on ws://{self.host}:{self.port}")

    async def shutdown(self):
        if self._server is None:
            return
        for session in list(self._sessions.values()):
            await self._send_message(session, {"type": MessageType.GOODBYE.value, "reason": "Server shutdown"})
        self._server.close()
        await self._server.wait_closed()
        self._server = None
        logger.info("Table server stopped")

    async def _handle_connection(self, websocket):
        session = ClientSession(session_id=str(uuid.uuid4()), websocket=websocket)
        self._sessions[session.session_id] = session
        logger.info(f"New connection: {session.session_id}")

        try:
            await self._send_message(session, {
                "type": MessageType.WELCOME.value,
                "session_id": session.session_id,
                "protocol_version": self.PROTOCOL_VERSION,
                "human_seat_taken": self._human_session_id is not None,
            })
            async for message in websocket:
                await self._handle_message(session, message)
        except ConnectionClosed as e:
            logger.info(f"Connection closed: {session.session_id} ({e.rcvd.code if e.rcvd else 'no code'})")
        finally:
            self._close_session(session)

    def _close_session(self, session: ClientSession):
        self._sessions.pop(session.session_id, None)
        if session.session_id == self._human_session_id:
            self._human_session_id = None
            self._dispatch(ParticipantDisconnected(self.config.human_id))

    # === Message Handling ===

    async def _handle_message(self, session: ClientSession, message):
        session.messages_received += 1
        if isinstance(message, bytes):
            await self._send_error(session, "Binary audio input is not supported; send transcripts")
            return
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            await self._send_error(session, "Invalid JSON")
            return
        if not isinstance(data, dict):
            await self._send_error(session, "Expected a JSON object")
            return
        await self._handle_control(session, data)

    async def _handle_control(self, session: ClientSession, data: Dict[str, Any]):
        msg_type = data.get("type", "")

        if msg_type == MessageType.PING.value:
            await self._send_message(session, {"type": MessageType.PONG.value})
            return
        if msg_type == MessageType.JOIN.value:
            await self._handle_join(session, data)
            return

        if session.session_id != self._human_session_id:
            await self._send_error(session, "Only the seated human can do that")
            return

        handlers = {
            MessageType.START_GAME.value: lambda d: StartGame(),
            MessageType.MESSAGE.value: lambda d: HumanMessage(str(d.get("text", ""))),
            MessageType.VOTE.value: lambda d: HumanVote(str(d.get("target_id", ""))),
            MessageType.MODE.value: lambda d: CommunicationModeSelected(str(d.get("mode", ""))),
            MessageType.TYPING_START.value: lambda d: HumanTypingStarted(),
            MessageType.TYPING_STOP.value: lambda d: HumanTypingStopped(),
            MessageType.SPEAKING_START.value: lambda d: HumanSpeakingStarted(),
            MessageType.SPEAKING_STOP.value: lambda d: HumanSpeakingStopped(),
            MessageType.PLAYBACK_FINISHED.value: lambda d: PlaybackFinished(str(d.get("participant_id", ""))),
        }

        build = handlers.get(msg_type)
        if build is None:
            await self._send_error(session, f"Unknown message type: {msg_type}")
            return
        self._dispatch(build(data))

    async def _handle_join(self, session: ClientSession, data: Dict[str, Any]):
        if self._human_session_id is not None and self._human_session_id != session.session_id:
            logger.info(f"Spectator joined: {session.session_id}")
            if self.machine is not None:
                await self._send_message(session, GameUpdate("spectator_joined", self.machine.snapshot()).to_dict())
            return

        self._human_session_id = session.session_id
        session.is_human_seat = True
        name = str(data.get("name", "")).strip() or None
        logger.info(f"Human seat taken by {name or 'unnamed player'}")

        self._dispatch(ParticipantConnected(self.config.human_id, display_name=name))
        mode = data.get("mode")
        if mode:
            self._dispatch(CommunicationModeSelected(str(mode)))
        if self.machine is not None:
            await self._send_message(session, GameUpdate("joined", self.machine.snapshot()).to_dict())

    def _dispatch(self, event: GameEvent):
        if self.machine is None:
            logger.warning(f"No game attached; dropped {type(event).__name__}")
            return
        self.machine.dispatch(event)

    # === AudioSink ===

    def play(self, item: PlaybackItem) -> None:
        data = {
            "type": MessageType.SPEAKER_START.value,
            "speaker_id": item.speaker_id,
            "speaker_name": item.speaker_name,
            "text": item.text,
            "kind": item.kind.value,
        }
        if item.audio:
            data["audio"] = base64.b64encode(item.audio).decode("ascii")
        self._spawn(self.broadcast(data))

    def stop(self, item: PlaybackItem) -> None:
        self._spawn(self.broadcast({
            "type": MessageType.SPEAKER_STOP.value,
            "speaker_id": item.speaker_id,
            "interrupted": True,
        }))

    # === Broadcasting ===

    def _on_update(self, update: GameUpdate):
        self._spawn(self.broadcast(update.to_dict()))

    def _spawn(self, coro: Awaitable):
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            coro.close()
            logger.debug("No running event loop; broadcast skipped")
            return
        task = loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def broadcast(self, data: Dict[str, Any]):
        for session in list(self._sessions.values()):
            await self._send_message(session, data)

    async def _send_message(self, session: ClientSession, data: Dict[str, Any]):
        try:
            await session.websocket.send(json.dumps(data))
            session.messages_sent += 1
        except ConnectionClosed:
            logger.debug(f"Send to closed session {session.session_id} skipped")

    async def _send_error(self, session: ClientSession, message: str):
        await self._send_message(session, {"type": MessageType.ERROR.value, "message": message})


async def run_server(server: TableServer, shutdown_event: Optional[asyncio.Event] = None):
    """Run the server until shutdown_event is set (or forever)."""
    await server.start()
    try:
        if shutdown_event is not None:
            await shutdown_event.wait()
        else:
            await asyncio.Future()
    finally:
        await server.shutdown()
