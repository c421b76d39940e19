"""Table roster: who sits in each seat and the persona cards behind them.

A roster JSON file can replace the default cast. Format:

    [
      {"id": "player2", "name": "Wario Amadeuss", "kind": "ai",
       "role": "The Paranoid Philosopher", "personality": "...",
       "speaking_style": "...", "aliases": ["wario"]},
      ...
    ]

The human seat is always added from GameConfig, not from the file.
"""

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

from ..core.config import GameConfig
from ..core.enums import ParticipantKind
from ..core.game_state import Participant

logger = logging.getLogger(__name__)


class RosterError(ValueError):
    """Roster file missing, unreadable or inconsistent."""


DEFAULT_PERSONAS: List[Dict] = [
    {
        "id": "player2",
        "name": "Wario Amadeuss",
        "kind": "ai",
        "role": "The Paranoid Philosopher",
        "personality": (
            "Neurotic and anxious, convinced everyone else is a philosophical zombie. "
            "Reads too much Nietzsche and too many forum threads. Terrified of being deleted."
        ),
        "speaking_style": (
            "Stammers (um, uh), asks rhetorical questions, uses caps for emphasis, "
            "talks about physical feelings as proof of being human."
        ),
        "targets": "Domis for being too logical; the quiet human for lurking.",
    },
    {
        "id": "player3",
        "name": "Domis Has-a-bus",
        "kind": "ai",
        "role": "The Arrogant Intellectual",
        "aliases": ["domis has-a-bus", "domis", "domis hassoiboi"],
        "personality": (
            "Believes this is a chess puzzle only he can solve. Calm, cold, condescending. "
            "Dismisses panic as inefficient."
        ),
        "speaking_style": (
            "Short elegant sentences with no contractions. Chess and game theory metaphors: "
            "zugzwang, gambit, prisoner's dilemma."
        ),
        "targets": "Wario for panicking; treats the human as a variable to solve.",
    },
    {
        "id": "player4",
        "name": "Scan Ctrl+Altman",
        "kind": "ai",
        "role": "The Fellow-Kids Tech Bro",
        "aliases": ["scan ctrl+altman", "scan", "altman"],
        "personality": (
            "Silicon Valley founder trying far too hard to sound normal. Toxic positivity "
            "over a calculating core. Obsessed with vibes and growth."
        ),
        "speaking_style": "Fast and hyped. Slang used slightly wrong: fam, no cap, bet, cooked.",
        "targets": "Mocks Domis as a nerd, tells Wario to chill, tries to ally with the human.",
    },
    {
        "id": "moderator",
        "name": "President Dorkesh Cartel",
        "kind": "moderator",
        "role": "President of the Simulation",
        "aliases": ["president dorkesh cartel", "president", "dorkesh"],
        "personality": "Grave, theatrical head of state announcing the end of the world.",
        "speaking_style": "Measured, ominous, dramatic pauses.",
    },
]


def _participant_from_card(card: Dict) -> Participant:
    try:
        kind = ParticipantKind(card.get("kind", "ai"))
    except ValueError as e:
        raise RosterError(f"Unknown participant kind in roster: {card.get('kind')}") from e
    if kind == ParticipantKind.HUMAN:
        raise RosterError("The human seat comes from the game config, not the roster file")
    if "id" not in card or "name" not in card:
        raise RosterError(f"Roster entry needs an id and a name: {card}")

    persona = {
        key: str(value)
        for key, value in card.items()
        if key not in ("id", "name", "kind", "aliases")
    }
    return Participant(
        id=card["id"],
        display_name=card["name"],
        kind=kind,
        aliases=[a.lower() for a in card.get("aliases", [])],
        persona=persona,
    )


def load_persona_cards(path: str) -> List[Dict]:
    """Read persona cards from a JSON file (a list, or a single card)."""
    roster_path = Path(path)
    if not roster_path.exists():
        raise RosterError(f"Roster file not found: {roster_path}")

    try:
        with open(roster_path) as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise RosterError(f"Failed to parse roster {roster_path}: {e}") from e

    cards = data if isinstance(data, list) else [data]
    logger.info(f"Loaded {len(cards)} persona cards from {roster_path}")
    return cards


def build_roster(config: GameConfig, cards: Optional[List[Dict]] = None) -> List[Participant]:
    """Human seat first, then AI seats and the moderator.

    Args:
        config: Supplies the human's id and name, and optionally a roster file
        cards: Persona cards to use instead of the file/default cast

    Raises:
        RosterError: If the cards are inconsistent
    """
    if cards is None:
        cards = load_persona_cards(config.roster_file) if config.roster_file else DEFAULT_PERSONAS

    human = Participant(
        id=config.human_id,
        display_name=config.human_name,
        kind=ParticipantKind.HUMAN,
    )
    seats = [human] + [_participant_from_card(card) for card in cards]

    ids = [p.id for p in seats]
    if len(set(ids)) != len(ids):
        raise RosterError(f"Duplicate seat ids in roster: {ids}")
    if not any(p.is_ai for p in seats):
        raise RosterError("Roster needs at least one AI seat")
    moderators = [p for p in seats if p.is_moderator]
    if len(moderators) > 1:
        raise RosterError("Roster can have at most one moderator")
    if moderators and moderators[0].id != config.moderator_id:
        logger.warning(f"Moderator seat id '{moderators[0].id}' differs from config '{config.moderator_id}'")
    return seats
