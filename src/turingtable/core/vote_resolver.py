"""Ballot collection, tallying and tie-breaking for elimination phases."""

import logging
import random
import re
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .game_state import ConnectionRegistry

logger = logging.getLogger(__name__)


VOTE_PATTERNS = [
    r"(?:i\s+)?vote\s+(?:for\s+|to\s+eliminate\s+)?([\w+\-]+(?:\s+[\w+\-]+)?)",
    r"my\s+vote\s+(?:is|goes\s+to)\s+(?:for\s+)?([\w+\-]+(?:\s+[\w+\-]+)?)",
    r"i\s+(?:choose|pick|nominate)\s+([\w+\-]+(?:\s+[\w+\-]+)?)",
    r"([\w+\-]+)\s+gets\s+my\s+vote",
]
_COMPILED_VOTE_PATTERNS = [re.compile(p, re.IGNORECASE) for p in VOTE_PATTERNS]


class VoteRejected(ValueError):
    """A ballot that cannot be counted. State is left untouched."""


@dataclass
class VoteResult:
    """Outcome of one elimination vote."""

    tally: Dict[str, int]
    top_targets: List[str]  # Everyone sharing the maximum count, before tie-breaking
    eliminated_id: str
    human_identified: bool
    human_protected: bool = False  # Human was in a tie and got removed from it
    forced: bool = False  # Resolved by deadline with ballots missing
    votes: Dict[str, str] = field(default_factory=dict)

    @property
    def tied(self) -> bool:
        return len(self.top_targets) > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tally": dict(self.tally),
            "topTargets": list(self.top_targets),
            "eliminated": self.eliminated_id,
            "humanIdentified": self.human_identified,
            "humanProtected": self.human_protected,
            "tied": self.tied,
            "forced": self.forced,
            "votes": dict(self.votes),
        }


def parse_vote(text: str, registry: ConnectionRegistry, candidate_ids: Iterable[str],
               voter_id: Optional[str] = None) -> Optional[str]:
    """Pull a vote target out of free text ("I vote for Wario").

    Falls back to a single unambiguous candidate name anywhere in the text.
    Returns None if nothing usable is found.
    """
    candidates = [registry.get(cid) for cid in candidate_ids if cid != voter_id]
    candidates = [c for c in candidates if c is not None]
    if not text or not candidates:
        return None

    lowered = text.lower()
    for pattern in _COMPILED_VOTE_PATTERNS:
        match = pattern.search(lowered)
        if not match:
            continue
        phrase = match.group(1).strip()
        words = phrase.split()
        # "vote for wario amadeuss" or just "vote for wario"
        for guess in (phrase, words[0] if words else ""):
            for candidate in candidates:
                if guess and (guess == candidate.display_name.lower() or guess in candidate.aliases):
                    return candidate.id

    named = set()
    for candidate in candidates:
        for alias in candidate.aliases:
            if re.search(r"(?<!\w)" + re.escape(alias) + r"(?!\w)", lowered):
                named.add(candidate.id)
                break
    if len(named) == 1:
        return named.pop()
    return None


class VoteResolver:
    """Collects one ballot per eligible voter and resolves the elimination.

    Usage:
        resolver.open(voters=["player1", "player2"], candidates=[...])
        result = resolver.register_vote("player2", "player1")  # None until complete
        result = resolver.resolve(forced=True)  # deadline path
    """

    def __init__(self, registry: ConnectionRegistry, rng: Optional[random.Random] = None):
        self.registry = registry
        self.rng = rng or random.Random()
        self.clear()

    def clear(self):
        """Drop every ballot and close voting."""
        self._votes: Dict[str, str] = {}
        self._eligible: List[str] = []
        self._candidates: List[str] = []
        self.is_open = False
        self.result: Optional[VoteResult] = None

    def open(self, voters: Iterable[str], candidates: Iterable[str]):
        self.clear()
        self._eligible = list(voters)
        self._candidates = list(candidates)
        self.is_open = True
        logger.debug(f"Voting open: {len(self._eligible)} voters, {len(self._candidates)} candidates")

    @property
    def votes(self) -> Dict[str, str]:
        return dict(self._votes)

    @property
    def eligible_voters(self) -> List[str]:
        return list(self._eligible)

    @property
    def candidates(self) -> List[str]:
        return list(self._candidates)

    @property
    def pending_voters(self) -> List[str]:
        return [v for v in self._eligible if v not in self._votes]

    def register_vote(self, voter_id: str, target_id: str) -> Optional[VoteResult]:
        """Record a ballot. A voter may change their ballot until resolution.

        Returns:
            VoteResult once every eligible voter has voted, else None

        Raises:
            VoteRejected: voting closed, ineligible voter, self-vote, or bad target
        """
        if not self.is_open:
            raise VoteRejected("Voting is not open")
        if voter_id not in self._eligible:
            raise VoteRejected(f"{voter_id} is not eligible to vote")
        if voter_id == target_id:
            raise VoteRejected(f"{voter_id} cannot vote for themselves")
        if target_id not in self._candidates:
            raise VoteRejected(f"{target_id} is not on the ballot")
        target = self.registry.get(target_id)
        if target is None or target.eliminated:
            raise VoteRejected(f"{target_id} is no longer in the game")

        self._votes[voter_id] = target_id
        logger.debug(f"Vote recorded: {voter_id} -> {target_id} "
                     f"({len(self._votes)}/{len(self._eligible)})")

        if not self.pending_voters:
            return self.resolve()
        return None

    def remove_voter(self, voter_id: str) -> Optional[VoteResult]:
        """A voter left mid-vote; resolve if everyone remaining has voted."""
        if not self.is_open or voter_id not in self._eligible:
            return None
        self._eligible.remove(voter_id)
        self._votes.pop(voter_id, None)
        if not self.pending_voters:
            return self.resolve()
        return None

    def resolve(self, forced: bool = False) -> VoteResult:
        """Tally ballots and apply the tie-break policy.

        - Sole maximum is eliminated.
        - In a tie, the human is removed from the tied set. If that empties
          it, a random remaining AI is eliminated; otherwise a random member
          of the remaining tied set is.
        - No ballots at all: a random remaining AI is eliminated.
        """
        if self.result is not None:
            return self.result

        human_id = self.registry.human.id
        tally = Counter(self._votes.values())
        top_targets: List[str] = []
        if tally:
            top_count = max(tally.values())
            top_targets = [target for target, count in tally.items() if count == top_count]

        human_protected = False
        if len(top_targets) == 1:
            eliminated_id = top_targets[0]
        else:
            pool = list(top_targets)
            if human_id in pool:
                pool.remove(human_id)
                human_protected = True
            if not pool:
                pool = self._remaining_ais()
            if not pool:
                # Only the human is left on the ballot
                pool = [human_id]
            eliminated_id = self.rng.choice(sorted(pool))

        self.result = VoteResult(
            tally=dict(tally),
            top_targets=top_targets,
            eliminated_id=eliminated_id,
            human_identified=eliminated_id == human_id,
            human_protected=human_protected,
            forced=forced or bool(self.pending_voters),
            votes=dict(self._votes),
        )
        self.is_open = False

        eliminated = self.registry.get(eliminated_id)
        name = eliminated.display_name if eliminated else eliminated_id
        if self.result.tied:
            logger.info(f"Vote tied between {', '.join(self.registry.names(top_targets))}; "
                        f"{name} loses the tie-break")
        else:
            logger.info(f"Vote resolved: {name} eliminated")
        return self.result

    def _remaining_ais(self) -> List[str]:
        remaining = []
        for cid in self._candidates:
            participant = self.registry.get(cid)
            if participant is not None and participant.is_ai and not participant.eliminated:
                remaining.append(cid)
        return remaining
