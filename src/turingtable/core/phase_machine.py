"""Phase state machine: the coordinator of a table.

Owns the conversation log, registry, turn arbiter, audio queue, round timer
and vote resolver, and is the only component that talks to collaborators
(completion provider, audio sink, subscribers).

Every input goes through dispatch(). Deferred work goes through the
scheduler tagged with the current phase token; a transition bumps the token
and cancels everything scheduled under the old one, and each deferred
callback re-checks the token before acting.

Usage:
    machine = PhaseStateMachine(config, scheduler=AsyncioScheduler(),
                                completion=provider, audio=sink)
    machine.subscribe(lambda update: print(update.reason))
    machine.dispatch(StartGame())
    machine.dispatch(ParticipantConnected("player2"))
"""

import logging
import random
from typing import Callable, Dict, List, Optional

from ..agents.completion import CompletionProvider, NullCompletionProvider
from ..agents.prompts.table_templates import TablePrompts
from ..persona.roster import build_roster
from ..voice.audio_queue import AudioDispatchQueue, PlaybackItem
from ..voice.playback import AudioSink, NullAudioSink
from .config import GameConfig
from .conversation import ConversationEntry, ConversationLog, clean_text
from .enums import GameOutcome, GamePhase, TypingState, UtteranceKind
from .events import (
    CommunicationModeSelected,
    GameEvent,
    GameSnapshot,
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
    UtteranceReady,
    UtteranceRequest,
)
from .game_state import ConnectionRegistry, Participant
from .round_timer import RoundTimer
from .scheduler import AsyncioScheduler, ScheduledCall, Scheduler
from .turn_arbiter import ObligationUpdate, PendingObligation, TurnArbiter, TurnDecision, detect_addressed_participant
from .vote_resolver import VoteRejected, VoteResolver, VoteResult, parse_vote

logger = logging.getLogger(__name__)


class InvalidTransition(RuntimeError):
    """A transition outside the fixed phase order was requested."""


class PhaseStateMachine:
    """Drives one table from lobby to game over."""

    def __init__(
        self,
        config: Optional[GameConfig] = None,
        scheduler: Optional[Scheduler] = None,
        completion: Optional[CompletionProvider] = None,
        audio: Optional[AudioSink] = None,
        participants: Optional[List[Participant]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or GameConfig()
        self.scheduler = scheduler or AsyncioScheduler()
        self.rng = rng or random.Random(self.config.random_seed)

        roster = participants if participants is not None else build_roster(self.config)
        self.registry = ConnectionRegistry(roster)
        self.log = ConversationLog()
        self.arbiter = TurnArbiter(self.registry, self.log, self.config, self.rng)
        self.votes = VoteResolver(self.registry, self.rng)
        self.timer = RoundTimer(self.scheduler, self.config.round_tick_interval)
        self.queue = AudioDispatchQueue(
            self.scheduler,
            self.log,
            self.config,
            on_start=self._on_playback_started,
            on_finish=self._on_playback_finished,
            on_idle=self._on_queue_idle,
        )

        self.completion = completion or NullCompletionProvider()
        self.completion.bind(self.dispatch)
        self.audio = audio or NullAudioSink()

        self.phase = GamePhase.LOBBY
        self.phase_token = 0
        self.phase_history: List[GamePhase] = [GamePhase.LOBBY]
        self.outcome: Optional[GameOutcome] = None
        self.typing_state = TypingState.IDLE
        self.vote_result: Optional[VoteResult] = None
        self.reveal_deadline: Optional[float] = None

        self._listeners: List[Callable[[GameUpdate], None]] = []
        self._requested: Dict[str, UtteranceKind] = {}
        self._turn_serial = 0
        self._awaiting_turn: Optional[int] = None
        self._next_turn_call: Optional[ScheduledCall] = None
        self._thinking_call: Optional[ScheduledCall] = None
        self._obligation_call: Optional[ScheduledCall] = None
        self._verdict_queued = False

        self._handlers = {
            StartGame: self._handle_start_game,
            ParticipantConnected: self._handle_connected,
            ParticipantDisconnected: self._handle_disconnected,
            CommunicationModeSelected: self._handle_mode_selected,
            HumanMessage: self._handle_human_message,
            HumanVote: self._handle_human_vote,
            HumanTypingStarted: self._handle_typing_started,
            HumanTypingStopped: self._handle_input_stopped,
            HumanSpeakingStarted: self._handle_speaking_started,
            HumanSpeakingStopped: self._handle_input_stopped,
            UtteranceReady: self._handle_utterance_ready,
            PlaybackFinished: self._handle_playback_finished,
        }

        self._entry_actions = {
            GamePhase.CONNECTING: self._enter_connecting,
            GamePhase.MODERATOR_INTRO: self._enter_moderator_intro,
            GamePhase.ROUND_1: self._enter_round,
            GamePhase.ROUND_2: self._enter_round,
            GamePhase.ROUND_3: self._enter_round,
            GamePhase.ELIMINATION_1: self._enter_elimination,
            GamePhase.ELIMINATION_2: self._enter_elimination,
            GamePhase.VERDICT: self._enter_verdict,
            GamePhase.GAME_OVER: self._enter_game_over,
        }

    # ========================================================================
    # Public surface
    # ========================================================================

    def subscribe(self, listener: Callable[[GameUpdate], None]) -> Callable[[], None]:
        """Receive a GameUpdate after every state change. Returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch(self, event: GameEvent) -> GameSnapshot:
        """Process one inbound event and return the resulting snapshot."""
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.warning(f"Unhandled event type: {type(event).__name__}")
            return self.snapshot()

        reason = handler(event)
        if reason:
            self._publish(reason, event=type(event).__name__)
        return self.snapshot()

    def start(self) -> GameSnapshot:
        return self.dispatch(StartGame())

    def set_completion(self, completion: CompletionProvider):
        """Swap the completion provider (providers that need the registry are built after the machine)."""
        self.completion = completion
        completion.bind(self.dispatch)

    @property
    def is_over(self) -> bool:
        return self.phase == GamePhase.GAME_OVER

    def snapshot(self) -> GameSnapshot:
        obligation = self.arbiter.obligation
        return GameSnapshot(
            phase=self.phase.value,
            phase_token=self.phase_token,
            round_number=self.phase.round_number,
            connected_participants=self.registry.connected_ids(),
            eliminated_participants=self.registry.eliminated_ids(),
            conversation_window=[e.to_dict() for e in self.log.recent(self.config.recent_window)],
            active_speaker=self.queue.active_speaker,
            queued_speakers=[item.speaker_id for item in self.queue.pending],
            votes=self.votes.votes,
            vote_results=self.vote_result.to_dict() if self.vote_result else None,
            round_deadline=self.timer.deadline,
            round_remaining=self.timer.remaining if self.timer.running else None,
            reveal_deadline=self.reveal_deadline,
            pending_obligation={
                "participantId": obligation.participant_id,
                "askerId": obligation.asker_id,
                "deadline": obligation.deadline,
                "createdAt": obligation.created_at,
            } if obligation else None,
            facilitator=self.arbiter.facilitator_id,
            typing_state=self.typing_state.value,
            outcome=self.outcome.value if self.outcome else None,
            participants={
                p.id: {
                    "name": p.display_name,
                    "kind": p.kind.value,
                    "connected": p.connected,
                    "eliminated": p.eliminated,
                }
                for p in self.registry
            },
        )

    # ========================================================================
    # Scheduling helpers
    # ========================================================================

    def _defer(self, delay: float, callback: Callable, *args, label: str = "") -> ScheduledCall:
        """Schedule callback(*args) under the current phase token."""
        token = self.phase_token
        return self.scheduler.schedule(
            delay, self._run_guarded, token, callback, args, label, token=token, label=label
        )

    def _guarded(self, callback: Callable, label: str = "") -> Callable:
        """Wrap a callback handed to another component so it dies with the phase."""
        token = self.phase_token

        def run(*args):
            self._run_guarded(token, callback, args, label)

        return run

    def _run_guarded(self, token: int, callback: Callable, args: tuple, label: str):
        if token != self.phase_token:
            logger.debug(f"Ignored stale {label or 'deferred'} callback from token {token}")
            return
        callback(*args)

    @staticmethod
    def _cancel(call: Optional[ScheduledCall]):
        if call is not None:
            call.cancel()

    def _publish(self, reason: str, **detail):
        update = GameUpdate(reason=reason, snapshot=self.snapshot(), detail=detail)
        for listener in list(self._listeners):
            try:
                listener(update)
            except Exception as e:
                logger.error(f"Subscriber failed on '{reason}' update: {e}", exc_info=True)

    # ========================================================================
    # Transitions
    # ========================================================================

    def _transition(self, phase: GamePhase):
        allowed = phase == self.phase.next or (phase == GamePhase.GAME_OVER and self.phase.is_elimination)
        if not allowed:
            raise InvalidTransition(f"Cannot move from {self.phase.value} to {phase.value}")

        previous = self.phase
        self.scheduler.cancel_token(self.phase_token)
        self.phase_token += 1
        self.phase = phase
        self.phase_history.append(phase)

        # Nothing owned by the outgoing phase survives
        self.timer.stop()
        self.votes.clear()
        self.arbiter.clear_obligation()
        self.vote_result = None
        self.reveal_deadline = None
        self._requested.clear()
        self._awaiting_turn = None
        self._next_turn_call = None
        self._thinking_call = None
        self._obligation_call = None
        if self.typing_state == TypingState.THINKING:
            self.typing_state = TypingState.IDLE

        logger.info(f"Phase: {previous.value} -> {phase.value}")
        entry_action = self._entry_actions.get(phase)
        if entry_action is not None:
            entry_action()
        self._publish("phase_change", previous=previous.value)

    def _enter_connecting(self):
        self.registry.connect(self.registry.human.id)
        self._defer(self.config.connect_timeout, self._on_connect_timeout, label="connect_timeout")

    def _on_connect_timeout(self):
        missing = [p.display_name for p in self.registry.players if not p.connected]
        if missing:
            logger.warning(f"Starting without {', '.join(missing)}")
        self._transition(GamePhase.MODERATOR_INTRO)

    def _check_all_connected(self):
        if self.phase == GamePhase.CONNECTING and self.registry.all_players_connected():
            self._transition(GamePhase.MODERATOR_INTRO)

    def _enter_moderator_intro(self):
        moderator = self.registry.moderator
        if moderator is None:
            self._defer(0, self._finish_intro, label="intro_exit")
            return

        self.registry.connect(moderator.id)
        seated = [p.display_name for p in self.registry.players if p.connected]
        script = TablePrompts.intro_script(moderator.display_name, seated, self.config.round_duration)
        self._enqueue(moderator, script, UtteranceKind.INTRO)

    def _finish_intro(self):
        moderator = self.registry.moderator
        if moderator is not None:
            self.registry.disconnect(moderator.id)
        self._transition(GamePhase.ROUND_1)

    def _enter_round(self):
        round_number = self.phase.round_number
        human = self.registry.human

        self.arbiter.reset(self.scheduler.now())
        self.timer.start(
            self.config.round_duration,
            on_expire=self._guarded(self._on_round_expired, "round_expired"),
            on_tick=self._guarded(self._on_round_tick, "round_tick"),
            token=self.phase_token,
        )

        remaining = [p.display_name for p in self.registry.active_players]
        eliminated = self.registry.names(self.registry.eliminated_ids())
        self.completion.notify_system_event(
            [p.id for p in self.registry.active_ais],
            TablePrompts.round_start(round_number, self.config.round_duration, remaining, eliminated),
        )
        self._seed_facilitator()

        # Releasing the hold idles the queue, which hands the floor to the arbiter
        self.queue.hold(self.config.round_overlay_hold)

        if round_number == 1 and human.communication_mode == "text" and self.config.text_mode_suspicion:
            self._defer(
                self.config.round_overlay_hold + self.config.text_mode_suspicion_delay,
                self._raise_text_mode_suspicion,
                label="text_mode_suspicion",
            )

    def _seed_facilitator(self):
        if not self.config.enable_facilitator:
            return
        current = self.registry.get(self.arbiter.facilitator_id) if self.arbiter.facilitator_id else None
        if current is not None and current.is_active:
            return

        ais = self.registry.active_ais
        if not ais:
            self.arbiter.facilitator_id = None
            return
        chosen = self.rng.choice(ais)
        self.arbiter.facilitator_id = chosen.id
        self.completion.notify_system_event(
            [chosen.id], TablePrompts.facilitator_addendum(self.registry.human.display_name)
        )
        logger.info(f"{chosen.display_name} is quietly facilitating")

    def _raise_text_mode_suspicion(self):
        ais = self.registry.active_ais
        if not ais:
            return
        speaker = self.rng.choice(ais)
        self._request_turn(TurnDecision(
            kind=UtteranceKind.TEXT_MODE_SUSPICION,
            speaker_id=speaker.id,
            target_id=self.registry.human.id,
            reason="human is typing on a voice call",
        ))

    def _on_round_tick(self, remaining: float):
        # Recover if nothing is playing, pending, or on its way
        if self.queue.is_idle and self._next_turn_call is None and self._awaiting_turn is None:
            self._take_next_turn()

    def _on_round_expired(self):
        logger.info(f"Round {self.phase.round_number} is over")
        # Cut the speaker off mid-line rather than letting the round overrun
        self._interrupt_active("round timer expired")
        self._transition(self.phase.next)

    def _enter_elimination(self):
        self._interrupt_active("voting")
        self.queue.clear()

        voters = [p.id for p in self.registry.active_players]
        self.votes.open(voters=voters, candidates=voters)

        for ai in self.registry.active_ais:
            request = self._build_request(ai, UtteranceKind.VOTE)
            request.candidate_names = self.registry.names(c for c in voters if c != ai.id)
            self._requested[ai.id] = UtteranceKind.VOTE
            self.completion.request_utterance(request)

        self._defer(self.config.vote_timeout, self._on_vote_timeout, label="vote_timeout")
        if not voters:
            self._apply_vote_result(self.votes.resolve(forced=True))

    def _on_vote_timeout(self):
        if not self.votes.is_open:
            return
        logger.info(f"Vote deadline reached with {len(self.votes.votes)} ballot(s)")
        self._apply_vote_result(self.votes.resolve(forced=True))

    def _apply_vote_result(self, result: VoteResult):
        self.vote_result = result
        self.reveal_deadline = self.scheduler.now() + self.config.reveal_delay
        self._defer(self.config.reveal_delay, self._enact_vote_result, result, label="reveal")
        self._publish("vote_results", eliminated=result.eliminated_id)

    def _enact_vote_result(self, result: VoteResult):
        target = self.registry.get(result.eliminated_id)
        self.registry.eliminate(target.id)
        self.completion.notify_system_event(
            [p.id for p in self.registry.active_ais],
            TablePrompts.elimination_notice(target.display_name, result.human_identified),
        )

        if result.human_identified:
            logger.info(f"{target.display_name} was the human. The AIs win.")
            self.outcome = GameOutcome.LOSS
            self._transition(GamePhase.GAME_OVER)
            return

        logger.info(f"{target.display_name} eliminated")
        if self.arbiter.facilitator_id == target.id:
            self.arbiter.facilitator_id = None
        self._transition(self.phase.next)

    def _enter_verdict(self):
        self._interrupt_active("verdict")
        self.queue.clear()
        self._verdict_queued = False

        moderator = self.registry.moderator
        if moderator is None:
            self._defer(0, self._finish_game, label="verdict_exit")
            return

        self.registry.connect(moderator.id)
        request = self._build_request(moderator, UtteranceKind.VERDICT)
        request.conversation = self.log.transcript()
        self._requested[moderator.id] = UtteranceKind.VERDICT
        self.completion.request_utterance(request)
        self._defer(self.config.verdict_timeout, self._finish_game, label="verdict_timeout")

    def _finish_game(self):
        if self.outcome is None:
            self.outcome = GameOutcome.WIN
        self._transition(GamePhase.GAME_OVER)

    def _enter_game_over(self):
        self._interrupt_active("game over")
        self.queue.clear()
        self.typing_state = TypingState.IDLE
        if self.outcome is None:
            self.outcome = GameOutcome.WIN

        self.completion.notify_system_event(
            [p.id for p in self.registry if p.is_ai],
            TablePrompts.game_over(self.outcome.value, self.registry.human.display_name),
        )
        logger.info(f"Game over: {self.outcome.value}")

    # ========================================================================
    # Turns
    # ========================================================================

    def _conversational_delay(self) -> float:
        if len(self.registry.active_ais) == 1 and self.registry.human.is_active:
            return self.config.next_turn_delay_duel
        return self.config.next_turn_delay_group

    def _schedule_next_turn(self, delay: float, force: bool = False):
        self._cancel(self._next_turn_call)
        self._next_turn_call = self._defer(delay, self._take_next_turn, force, label="next_turn")

    def _take_next_turn(self, force: bool = False):
        self._next_turn_call = None
        if not self.phase.is_round:
            return
        if self.typing_state != TypingState.IDLE:
            logger.debug(f"Human is {self.typing_state.value}; holding AI turns")
            return
        if not self.queue.is_idle or self.queue.is_holding:
            return
        if self._awaiting_turn is not None and not force:
            return

        decision = self.arbiter.decide_next_turn(self.scheduler.now())
        if decision is not None:
            self._request_turn(decision)

    def _request_turn(self, decision: TurnDecision):
        participant = self.registry.get(decision.speaker_id)
        if participant is None or not participant.is_active:
            return
        target = self.registry.get(decision.target_id) if decision.target_id else None

        request = self._build_request(participant, decision.kind, target)
        self._turn_serial += 1
        serial = self._turn_serial
        self._awaiting_turn = serial
        self._requested[participant.id] = decision.kind

        logger.debug(f"Asking {participant.display_name} to speak ({decision.kind.value}: {decision.reason})")
        self.completion.request_utterance(request)
        self._defer(self.config.turn_response_timeout, self._on_turn_watchdog, serial, label="turn_watchdog")

    def _on_turn_watchdog(self, serial: int):
        if self._awaiting_turn != serial:
            return
        logger.info("Requested speaker never answered; re-arbitrating")
        self._awaiting_turn = None
        self._take_next_turn(force=True)

    def _build_request(self, participant: Participant, kind: UtteranceKind,
                       target: Optional[Participant] = None) -> UtteranceRequest:
        return UtteranceRequest(
            participant_id=participant.id,
            speaker_name=participant.display_name,
            kind=kind,
            token=self.phase_token,
            phase=self.phase.value,
            round_number=self.phase.round_number,
            conversation=self.log.recent(self.config.recent_window),
            target_id=target.id if target else None,
            target_name=target.display_name if target else None,
            human_name=self.registry.human.display_name,
            remaining_names=[p.display_name for p in self.registry.active_players],
            eliminated_names=self.registry.names(self.registry.eliminated_ids()),
            is_facilitator=participant.id == self.arbiter.facilitator_id,
            outcome=self.outcome.value if self.outcome else None,
        )

    # ========================================================================
    # Obligations
    # ========================================================================

    def _apply_obligation_update(self, update: ObligationUpdate):
        if update.resolved is not None and update.created is None:
            self._cancel(self._obligation_call)
            self._obligation_call = None
        if update.created is not None:
            self._arm_obligation_deadline(update.created)

    def _arm_obligation_deadline(self, obligation: PendingObligation):
        self._cancel(self._obligation_call)
        delay = obligation.deadline - self.scheduler.now()
        self._obligation_call = self._defer(
            delay, self._on_obligation_deadline, obligation.serial, label="obligation_deadline"
        )

    def _on_obligation_deadline(self, serial: int):
        self._obligation_call = None
        obligation = self.arbiter.obligation
        if obligation is not None and obligation.serial == serial:
            if any(item.speaker_id == obligation.participant_id for item in self.queue.pending):
                # Their answer is already waiting for the floor
                self.arbiter.clear_obligation()
                return

        decision = self.arbiter.expire_obligation(serial, self.scheduler.now())
        if decision is not None:
            self._request_turn(decision)
            self._publish("silence_callout", silent=decision.target_id, speaker=decision.speaker_id)

    def _extend_human_obligation(self):
        obligation = self.arbiter.extend_obligation(self.registry.human.id, self.scheduler.now())
        if obligation is not None:
            self._arm_obligation_deadline(obligation)

    # ========================================================================
    # Audio queue callbacks
    # ========================================================================

    def _enqueue(self, participant: Participant, text: str, kind: UtteranceKind,
                 audio: Optional[bytes] = None) -> bool:
        item = PlaybackItem(
            speaker_id=participant.id,
            speaker_name=participant.display_name,
            text=text,
            queued_at=self.scheduler.now(),
            kind=kind,
            audio=audio,
        )
        return self.queue.enqueue(item)

    def _on_playback_started(self, item: PlaybackItem, entry: ConversationEntry):
        self.audio.play(item)
        if self.phase.is_round:
            self._awaiting_turn = None
            self._apply_obligation_update(self.arbiter.on_entry_appended(entry, self.scheduler.now()))
        self._publish("speaker_started", speaker=item.speaker_id)

    def _on_playback_finished(self, item: PlaybackItem, forced: bool):
        if item.kind == UtteranceKind.INTRO and self.phase == GamePhase.MODERATOR_INTRO:
            self._defer(self.config.intro_exit_delay, self._finish_intro, label="intro_exit")
        elif item.kind == UtteranceKind.VERDICT and self.phase == GamePhase.VERDICT:
            self._defer(self.config.verdict_exit_delay, self._finish_game, label="verdict_exit")
        self._publish("speaker_finished", speaker=item.speaker_id, forced=forced)

    def _on_queue_idle(self):
        if self.phase.is_round:
            self._schedule_next_turn(self._conversational_delay())

    def _interrupt_active(self, reason: str) -> Optional[PlaybackItem]:
        item = self.queue.interrupt()
        if item is None:
            return None
        self.audio.stop(item)
        if item.entry_id is not None:
            self.arbiter.on_entry_retracted(item.entry_id)
        logger.debug(f"Interrupted {item.speaker_name}: {reason}")
        return item

    # ========================================================================
    # Event handlers
    # ========================================================================

    def _reject(self, event: GameEvent, why: str) -> None:
        logger.warning(f"Rejected {type(event).__name__} in {self.phase.value}: {why}")
        return None

    def _handle_start_game(self, event: StartGame) -> Optional[str]:
        if self.phase != GamePhase.LOBBY:
            return self._reject(event, "game already started")
        self._transition(GamePhase.CONNECTING)
        self._check_all_connected()
        return None

    def _handle_connected(self, event: ParticipantConnected) -> Optional[str]:
        participant = self.registry.get(event.participant_id)
        if participant is None:
            return self._reject(event, f"unknown seat {event.participant_id}")

        renamed = False
        if event.display_name and participant.is_human and event.display_name != participant.display_name:
            participant.rename(event.display_name)
            renamed = True

        changed = self.registry.connect(participant.id)
        if changed:
            logger.info(f"{participant.display_name} connected")
        if self.phase == GamePhase.CONNECTING and self.registry.all_players_connected():
            self._transition(GamePhase.MODERATOR_INTRO)
            return None
        return "participant_connected" if changed or renamed else None

    def _handle_disconnected(self, event: ParticipantDisconnected) -> Optional[str]:
        participant = self.registry.get(event.participant_id)
        if participant is None or not self.registry.disconnect(participant.id):
            return None
        logger.info(f"{participant.display_name} disconnected")

        if self.queue.active_speaker == participant.id:
            self.queue.on_active_finished(participant.id)
        if self.votes.is_open:
            result = self.votes.remove_voter(participant.id)
            if result is not None:
                self._apply_vote_result(result)
        return "participant_disconnected"

    def _handle_mode_selected(self, event: CommunicationModeSelected) -> Optional[str]:
        if event.mode not in ("voice", "text"):
            return self._reject(event, f"unknown mode {event.mode!r}")
        self.registry.human.communication_mode = event.mode
        return "mode_selected"

    def _handle_human_message(self, event: HumanMessage) -> Optional[str]:
        if not self.phase.is_round:
            return self._reject(event, "messages are only taken during debate rounds")
        human = self.registry.human
        if not human.is_active:
            return self._reject(event, "human is not seated")
        text = clean_text(event.text)
        if not text:
            return None

        now = self.scheduler.now()
        self._set_typing(TypingState.IDLE)
        entry = self.log.append(human.id, human.display_name, text, now)
        self._apply_obligation_update(self.arbiter.on_entry_appended(entry, now))

        addressed = detect_addressed_participant(text, self.registry.active_ais)
        if addressed:
            self._cancel(self._next_turn_call)
            self._next_turn_call = None
            self._request_turn(TurnDecision(
                kind=UtteranceKind.DIRECT_RESPONSE,
                speaker_id=addressed,
                target_id=human.id,
                reason="addressed by the human",
            ))
        elif self.queue.is_idle:
            self._schedule_next_turn(self.config.human_reply_delay, force=True)
        return "human_message"

    def _handle_human_vote(self, event: HumanVote) -> Optional[str]:
        if not self.phase.is_elimination or not self.votes.is_open:
            return self._reject(event, "voting is closed")
        try:
            result = self.votes.register_vote(self.registry.human.id, event.target_id)
        except VoteRejected as e:
            return self._reject(event, str(e))

        if result is not None:
            self._apply_vote_result(result)
            return None
        return "vote_cast"

    def _set_typing(self, state: TypingState):
        if state != TypingState.THINKING:
            self._cancel(self._thinking_call)
            self._thinking_call = None
        self.typing_state = state

    def _handle_typing_started(self, event: HumanTypingStarted) -> Optional[str]:
        self._set_typing(TypingState.TYPING)
        self._cancel(self._next_turn_call)
        self._next_turn_call = None
        self._extend_human_obligation()
        return "typing_state"

    def _handle_speaking_started(self, event: HumanSpeakingStarted) -> Optional[str]:
        if self.phase.is_round and self.queue.active is not None:
            self._interrupt_active("human barged in")
        self._set_typing(TypingState.SPEAKING)
        self._cancel(self._next_turn_call)
        self._next_turn_call = None
        self._extend_human_obligation()
        return "typing_state"

    def _handle_input_stopped(self, event: GameEvent) -> Optional[str]:
        if self.typing_state not in (TypingState.TYPING, TypingState.SPEAKING):
            return None
        self._set_typing(TypingState.THINKING)
        self._thinking_call = self._defer(
            self.config.thinking_timeout, self._on_thinking_elapsed, label="thinking"
        )
        return "typing_state"

    def _on_thinking_elapsed(self):
        self._thinking_call = None
        if self.typing_state != TypingState.THINKING:
            return
        self.typing_state = TypingState.IDLE
        self._publish("typing_state")
        if self.phase.is_round and self.queue.is_idle:
            self._take_next_turn()

    def _handle_utterance_ready(self, event: UtteranceReady) -> Optional[str]:
        participant = self.registry.get(event.participant_id)
        if participant is None:
            logger.debug(f"Discarded line from unknown seat {event.participant_id}")
            return None
        if event.token is not None and event.token != self.phase_token:
            logger.debug(f"Discarded late line from {participant.display_name} (token {event.token})")
            return None
        text = clean_text(event.text)
        if not text:
            logger.info(f"Discarded empty line from {participant.display_name}")
            return None
        kind = self._requested.pop(participant.id, UtteranceKind.OPEN_TURN)

        if self.phase.is_round:
            if not participant.is_ai or not participant.is_active:
                logger.debug(f"Discarded line from inactive seat {participant.display_name}")
                return None
            if self._enqueue(participant, text, kind, event.audio):
                return "utterance_queued"
            return None

        if self.phase.is_elimination:
            return self._record_ai_vote(participant, text)

        if self.phase == GamePhase.VERDICT and participant.is_moderator and not self._verdict_queued:
            self._verdict_queued = True
            self._enqueue(participant, text, UtteranceKind.VERDICT, event.audio)
            return "verdict_queued"

        logger.debug(f"Discarded line from {participant.display_name} during {self.phase.value}")
        return None

    def _record_ai_vote(self, participant: Participant, text: str) -> Optional[str]:
        if not self.votes.is_open or not participant.is_ai:
            return None
        target_id = parse_vote(text, self.registry, self.votes.candidates, voter_id=participant.id)
        if target_id is None:
            logger.info(f"Could not read a vote from {participant.display_name}: {text!r}")
            return None
        try:
            result = self.votes.register_vote(participant.id, target_id)
        except VoteRejected as e:
            logger.warning(f"Rejected vote from {participant.display_name}: {e}")
            return None

        if result is not None:
            self._apply_vote_result(result)
            return None
        return "vote_cast"

    def _handle_playback_finished(self, event: PlaybackFinished) -> Optional[str]:
        if not self.queue.on_active_finished(event.participant_id):
            logger.debug(f"Ignored playback-finished for {event.participant_id}; not the active speaker")
        return None
