"""Tests for ballot collection, tie-breaking and AI vote parsing."""

import random

import pytest

from turingtable.core.vote_resolver import VoteRejected, VoteResolver, parse_vote

HUMAN = "player1"
WARIO = "player2"
DOMIS = "player3"
SCAN = "player4"
EVERYONE = [HUMAN, WARIO, DOMIS, SCAN]


@pytest.fixture
def resolver(registry):
    resolver = VoteResolver(registry, random.Random(11))
    resolver.open(voters=EVERYONE, candidates=EVERYONE)
    return resolver


def cast(resolver, ballots):
    result = None
    for voter, target in ballots.items():
        result = resolver.register_vote(voter, target)
    return result


class TestTally:
    """Tests for resolution and the tie-break policy."""

    def test_sole_maximum_eliminated(self, resolver):
        result = cast(resolver, {WARIO: DOMIS, SCAN: DOMIS, HUMAN: DOMIS, DOMIS: WARIO})

        assert result.eliminated_id == DOMIS
        assert result.tally == {DOMIS: 3, WARIO: 1}
        assert not result.tied
        assert not result.human_identified

    def test_human_with_most_votes_is_identified(self, resolver):
        """Test the loss path: AI1 and AI2 pick the human, AI3 picks AI2."""
        result = cast(resolver, {WARIO: HUMAN, DOMIS: HUMAN, SCAN: DOMIS, HUMAN: SCAN})

        assert result.eliminated_id == HUMAN
        assert result.human_identified
        assert result.top_targets == [HUMAN]

    def test_human_removed_from_tie(self, resolver):
        """Test that in a 2-2 tie between the human and an AI the AI goes."""
        result = cast(resolver, {WARIO: HUMAN, DOMIS: HUMAN, HUMAN: WARIO, SCAN: WARIO})

        assert result.tied
        assert set(result.top_targets) == {HUMAN, WARIO}
        assert result.eliminated_id == WARIO
        assert result.human_protected
        assert not result.human_identified

    def test_four_way_tie_never_eliminates_human(self, resolver):
        result = cast(resolver, {HUMAN: WARIO, WARIO: DOMIS, DOMIS: SCAN, SCAN: HUMAN})

        assert result.eliminated_id in (WARIO, DOMIS, SCAN)
        assert result.human_protected

    def test_tie_between_ais(self, resolver):
        result = cast(resolver, {HUMAN: WARIO, WARIO: DOMIS, DOMIS: WARIO, SCAN: DOMIS})

        assert result.eliminated_id in (WARIO, DOMIS)
        assert not result.human_protected

    def test_no_ballots_eliminates_random_ai(self, resolver):
        result = resolver.resolve(forced=True)

        assert result.eliminated_id in (WARIO, DOMIS, SCAN)
        assert result.forced
        assert result.tally == {}

    def test_partial_ballots_at_deadline(self, resolver):
        resolver.register_vote(WARIO, SCAN)
        result = resolver.resolve(forced=True)

        assert result.eliminated_id == SCAN
        assert result.forced
        assert not resolver.is_open

    def test_resolve_is_stable(self, resolver):
        first = resolver.resolve(forced=True)
        assert resolver.resolve() is first

    def test_result_to_dict(self, resolver):
        result = cast(resolver, {WARIO: HUMAN, DOMIS: HUMAN, HUMAN: WARIO, SCAN: WARIO})
        data = result.to_dict()

        assert data["eliminated"] == WARIO
        assert data["humanProtected"] is True
        assert data["tied"] is True
        assert data["votes"][HUMAN] == WARIO


class TestBallots:
    """Tests for ballot validation."""

    def test_not_resolved_until_everyone_votes(self, resolver):
        assert resolver.register_vote(WARIO, DOMIS) is None
        assert resolver.pending_voters == [HUMAN, DOMIS, SCAN]
        assert resolver.is_open

    def test_voter_may_change_ballot(self, resolver):
        resolver.register_vote(WARIO, DOMIS)
        resolver.register_vote(WARIO, SCAN)
        assert resolver.votes == {WARIO: SCAN}

    def test_self_vote_rejected(self, resolver):
        with pytest.raises(VoteRejected):
            resolver.register_vote(WARIO, WARIO)
        assert resolver.votes == {}

    def test_ineligible_voter_rejected(self, resolver):
        with pytest.raises(VoteRejected):
            resolver.register_vote("moderator", WARIO)

    def test_unknown_target_rejected(self, resolver):
        with pytest.raises(VoteRejected):
            resolver.register_vote(WARIO, "player9")

    def test_eliminated_target_rejected(self, resolver, registry):
        registry.eliminate(SCAN)
        with pytest.raises(VoteRejected):
            resolver.register_vote(WARIO, SCAN)

    def test_closed_voting_rejected(self, registry):
        resolver = VoteResolver(registry)
        with pytest.raises(VoteRejected):
            resolver.register_vote(WARIO, DOMIS)

    def test_removed_voter_can_complete_vote(self, resolver):
        cast(resolver, {WARIO: DOMIS, DOMIS: WARIO, SCAN: DOMIS})
        result = resolver.remove_voter(HUMAN)

        assert result is not None
        assert result.eliminated_id == DOMIS


class TestParseVote:
    """Tests for reading votes out of AI free text."""

    @pytest.mark.parametrize("text,expected", [
        ("I vote for Wario. He panics too much.", WARIO),
        ("My vote goes to Domis Has-a-bus.", DOMIS),
        ("I pick scan ctrl+altman, no cap", SCAN),
        ("Alex gets my vote", HUMAN),
        ("Honestly? It has to be Domis. Nobody is that calm.", DOMIS),
    ])
    def test_parses_vote(self, registry, text, expected):
        assert parse_vote(text, registry, EVERYONE, voter_id=SCAN if expected != SCAN else WARIO) == expected

    def test_ambiguous_text_yields_nothing(self, registry):
        assert parse_vote("Either Wario or Domis, I can't decide.", registry, EVERYONE, voter_id=SCAN) is None

    def test_cannot_vote_for_self(self, registry):
        assert parse_vote("I vote for Wario", registry, EVERYONE, voter_id=WARIO) is None

    def test_empty_text(self, registry):
        assert parse_vote("", registry, EVERYONE) is None
