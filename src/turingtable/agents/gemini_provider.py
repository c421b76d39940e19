"""Gemini-powered completion provider.

Each seat gets its own GenerativeModel (persona system instruction) and
ChatSession, so every AI keeps its own memory of the call. Requests run as
asyncio tasks; whatever comes back is dispatched as UtteranceReady with the
token of the request. Failures are logged and produce no line, which the
table treats like any other missing response.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Set

import google.generativeai as genai

from ..core.config import GameConfig
from ..core.events import GameEvent, UtteranceReady, UtteranceRequest
from ..core.game_state import ConnectionRegistry, Participant
from .prompts.table_templates import TablePrompts

logger = logging.getLogger(__name__)


class GeminiCompletionProvider:
    """Completion provider backed by google-generativeai chat sessions."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        config: GameConfig,
        dispatch: Optional[Callable[[GameEvent], object]] = None,
    ):
        """Initialize the provider.

        Args:
            registry: Seats to build personas for
            config: Supplies the API key, model name and generation settings
            dispatch: Where UtteranceReady events go (usually machine.dispatch)
        """
        if not config.gemini_api_key:
            raise ValueError("GeminiCompletionProvider needs a gemini_api_key")

        self.registry = registry
        self.config = config
        self.dispatch = dispatch
        self._chats: Dict[str, "genai.ChatSession"] = {}
        self._pending_notices: Dict[str, List[str]] = {}
        self._tasks: Set[asyncio.Task] = set()

        genai.configure(api_key=config.gemini_api_key)

    def bind(self, dispatch: Callable[[GameEvent], object]) -> None:
        self.dispatch = dispatch

    def _system_instruction(self, participant: Participant) -> str:
        human_name = self.registry.human.display_name
        if participant.is_moderator:
            return TablePrompts.moderator_system_prompt(participant, human_name)
        others = [p.display_name for p in self.registry.players if p.id != participant.id]
        return TablePrompts.system_prompt(participant, others, human_name)

    def _chat_for(self, participant: Participant):
        chat = self._chats.get(participant.id)
        if chat is None:
            model = genai.GenerativeModel(
                model_name=self.config.gemini_model,
                system_instruction=self._system_instruction(participant),
                generation_config={
                    "max_output_tokens": self.config.max_output_tokens,
                    "temperature": self.config.temperature,
                },
            )
            chat = model.start_chat()
            self._chats[participant.id] = chat
        return chat

    def request_utterance(self, request: UtteranceRequest) -> None:
        participant = self.registry.get(request.participant_id)
        if participant is None:
            logger.error(f"Utterance requested for unknown seat {request.participant_id}")
            return

        notices = self._pending_notices.pop(participant.id, [])
        prompt = TablePrompts.turn_prompt(request)
        if notices:
            prompt = "\n".join(notices) + "\n\n" + prompt

        task = asyncio.get_running_loop().create_task(self._complete(participant, request, prompt))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def notify_system_event(self, participant_ids: List[str], text: str) -> None:
        # Delivered with the next prompt so a notice never triggers an unrequested reply
        for participant_id in participant_ids:
            self._pending_notices.setdefault(participant_id, []).append(text)

    async def _complete(self, participant: Participant, request: UtteranceRequest, prompt: str):
        try:
            chat = self._chat_for(participant)
            response = await chat.send_message_async(prompt)
            text = response.text.strip()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Gemini completion failed for {participant.display_name}: {e}")
            return

        if not text:
            logger.info(f"Gemini returned no text for {participant.display_name}")
            return
        if self.dispatch is not None:
            self.dispatch(UtteranceReady(participant.id, text, token=request.token))

    async def close(self):
        """Cancel in-flight completions."""
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
