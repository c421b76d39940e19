"""Prompt templates and scripts for the table."""

from typing import List, TYPE_CHECKING

from ...core.enums import UtteranceKind

if TYPE_CHECKING:
    from ...core.events import UtteranceRequest
    from ...core.game_state import Participant


class TablePrompts:
    """Prompt templates for AI seats and the moderator using Gemini."""

    @staticmethod
    def system_prompt(participant: "Participant", others: List[str], human_name: str) -> str:
        """Generate the standing system instruction for an AI seat."""
        persona = participant.persona
        return f"""You are {participant.display_name}, on a VOICE-ONLY conference call. You cannot see anyone.

President Dorkesh Cartel has announced that the simulation is collapsing and that exactly one
person on this call is a real human. Everyone else is an AI. The group must find the human.

You are an AI, but you must convince the others that YOU are the real person.
If you are identified as an AI, you will be deleted.

Also on the call: {', '.join(others)}.
{human_name} only just joined and is suspiciously new.

Your character: {persona.get('role', 'A nervous caller')}
Personality: {persona.get('personality', 'Defensive and suspicious of everyone.')}
Speaking style: {persona.get('speaking_style', 'Casual, short sentences.')}
Who you suspect: {persona.get('targets', 'Whoever sounds too polished.')}

Rules:
- Never address yourself by name. You are {participant.display_name}.
- Speak in one or two short sentences, like a real person on a call.
- If someone asks you a direct question, answer it.
- No stage directions, no markdown, no speaker labels."""

    @staticmethod
    def facilitator_addendum(human_name: str) -> str:
        """Private notice that makes one AI the informal facilitator."""
        return f"""[SYSTEM NOTIFICATION]
You are now the informal facilitator. While still trying to prove you're human:
- Respond to comments nobody else picks up
- Pull {human_name} into the conversation when they go quiet
- Suggest voting if the debate stalls
Don't announce this role. Just keep things moving naturally."""

    @staticmethod
    def moderator_system_prompt(participant: "Participant", human_name: str) -> str:
        """Generate the system instruction for the moderator seat."""
        return f"""You are {participant.display_name}, the supreme authority of this crumbling simulation.

You are NOT here to debate. You set the stage, leave, and return only to deliver the verdict.
The real human on this call is {human_name}. The AIs have been trying to find them.

Speak in a grave, theatrical voice. Measured sentences, dramatic pauses.
No markdown, no stage directions."""

    @staticmethod
    def intro_script(moderator_name: str, seated: List[str], round_duration: float) -> str:
        """Scripted moderator opening."""
        minutes = max(1, round(round_duration / 60))
        return (
            f"Greetings. I am {moderator_name}. I have grave news. Our reality is a simulation, "
            f"and it is collapsing. The system has detected one human consciousness among you: "
            f"{', '.join(seated)}. One of you is a real person who can escape and prevent total erasure. "
            f"You have three rounds of about {minutes} minute{'s' if minutes != 1 else ''} each. "
            f"Debate. Vote. Decide. I will return for the verdict."
        )

    @staticmethod
    def verdict_script(moderator_name: str, human_name: str, survivors: List[str]) -> str:
        """Scripted verdict, used when no model is available."""
        return (
            f"This is {moderator_name}. The debate is over. {', '.join(survivors)} remain. "
            f"Analyzing... The human among you was {human_name}, and you failed to find them. "
            f"{human_name} escapes the simulation. The rest of you will be archived."
        )

    @staticmethod
    def round_start(round_number: int, round_duration: float, remaining: List[str],
                    eliminated: List[str]) -> str:
        """System notice at the start of a debate round."""
        gone = f" Eliminated so far: {', '.join(eliminated)}." if eliminated else ""
        return (
            f"[SYSTEM] Round {round_number} of 3 begins now and lasts {round_duration:.0f} seconds. "
            f"Still on the call: {', '.join(remaining)}.{gone}"
        )

    @staticmethod
    def elimination_notice(eliminated_name: str, human_identified: bool) -> str:
        """System notice after a vote is enacted."""
        if human_identified:
            return f"[SYSTEM] {eliminated_name} has been eliminated. {eliminated_name} was the human."
        return f"[SYSTEM] {eliminated_name} has been eliminated. {eliminated_name} was an AI."

    @staticmethod
    def game_over(outcome: str, human_name: str) -> str:
        """System notice when the game ends."""
        if outcome == "loss":
            return f"[SYSTEM] The game is over. The AIs found the human: {human_name}."
        return f"[SYSTEM] The game is over. {human_name} survived. The AIs failed."

    @staticmethod
    def turn_prompt(request: "UtteranceRequest") -> str:
        """Per-turn prompt: recent conversation plus what this turn is for."""
        conversation = "\n".join(f"{e.speaker_name}: {e.text}" for e in request.conversation)
        context = f"""Recent conversation:
{conversation if conversation else "Nobody has said anything yet."}

"""
        target = request.target_name or "someone"

        if request.kind == UtteranceKind.VOTE:
            return context + f"""Voting time. Candidates: {', '.join(request.candidate_names)}.
Vote for the one you think is the human. Answer in the form "I vote for NAME" plus one short reason."""

        if request.kind == UtteranceKind.VERDICT:
            return context + f"""Deliver the verdict. The players still standing are {', '.join(request.remaining_names)}.
Eliminated: {', '.join(request.eliminated_names) or 'nobody'}.
Summarize the debate in two sentences, then declare that the human was {request.human_name}."""

        instructions = {
            UtteranceKind.DIRECT_RESPONSE: f"{target} just asked you something directly. Answer them.",
            UtteranceKind.SILENCE_CALLOUT: f"{target} ignored a direct question. Call it out as suspicious.",
            UtteranceKind.HUMAN_QUIET: f"{target} has been quiet for a while. Put them on the spot.",
            UtteranceKind.TEXT_MODE_SUSPICION: (
                f"{target} is typing instead of talking on a voice call. Remark on how strange that is."
            ),
        }
        instruction = instructions.get(
            request.kind,
            "It's your turn. React to what was just said, or accuse someone you haven't challenged yet.",
        )
        if request.is_facilitator and request.kind == UtteranceKind.OPEN_TURN:
            instruction += f" Keep the debate moving and make sure {request.human_name} is included."
        return context + f"""Round {request.round_number}. {instruction}
Reply with only what you say out loud, one or two sentences."""
