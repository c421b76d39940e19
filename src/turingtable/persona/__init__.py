"""Table roster and persona cards."""

from .roster import DEFAULT_PERSONAS, RosterError, build_roster, load_persona_cards

__all__ = ["DEFAULT_PERSONAS", "RosterError", "build_roster", "load_persona_cards"]
