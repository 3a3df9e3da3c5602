from __future__ import annotations

from utils.vote_tally import VoteBox


def test_cast_records_single_vote_per_voter() -> None:
    votes: dict = {}
    box = VoteBox(votes)
    box.cast("a", "u1")
    box.cast("b", "u2")
    box.cast("b", "u1")

    assert votes == {"b": ["u2", "u1"]}
    assert box.vote_of("u1") == "b"


def test_casting_same_vote_twice_is_idempotent() -> None:
    box = VoteBox({})
    box.cast("a", "u1")
    before = box.tally().counts
    box.cast("a", "u1")

    assert box.tally().counts == before == {"a": 1}


def test_switching_vote_moves_one_count() -> None:
    box = VoteBox({"a": ["u1", "u2"], "b": ["u3"]})
    box.cast("b", "u1")

    assert box.tally().counts == {"a": 1, "b": 2}


def test_remove_voter_drops_emptied_options() -> None:
    votes = {"a": ["u1"], "b": ["u1", "u2"]}
    VoteBox(votes).remove_voter("u1")

    assert votes == {"b": ["u2"]}


def test_zero_votes_has_no_winner_and_no_quorum() -> None:
    box = VoteBox({})
    tally = box.tally()

    assert tally.winner is None
    assert tally.tied_at_max == []
    assert not box.quorum_met(1)
    assert not box.quorum_met(3)


def test_quorum_counts_distinct_voters() -> None:
    # duplicated ids from a stale document must not count twice
    box = VoteBox({"a": ["u1", "u1"], "b": ["u2"]})

    assert box.voters() == {"u1", "u2"}
    assert box.quorum_met(2)
    assert not box.quorum_met(3)
    assert box.tally().counts["a"] == 1


def test_tally_reports_tie_at_max() -> None:
    box = VoteBox({"a": ["u1", "u2"], "b": ["u3", "u4"], "c": ["u5"]})
    tally = box.tally()

    assert tally.has_tie
    assert tally.tied_at_max == ["a", "b"]
    assert tally.winner == "a"
    assert tally.max_votes == 2
    assert tally.total_voters == 5


def test_tally_restricted_to_options() -> None:
    box = VoteBox({"a": ["u1"], "b": ["u2", "u3"], "c": ["u4"]})
    tally = box.tally(["a", "c"])

    assert tally.counts == {"a": 1, "c": 1}
    assert tally.tied_at_max == ["a", "c"]
    assert box.voters(["a", "c"]) == {"u1", "u4"}


def test_clear_empties_mapping_in_place() -> None:
    votes = {"a": ["u1"]}
    VoteBox(votes).clear()
    assert votes == {}


def test_restrict_drops_other_options() -> None:
    votes = {"a": ["u1"], "b": ["u2"], "c": ["u3"]}
    VoteBox(votes).restrict(["a", "c", "z"])

    assert votes == {"a": ["u1"], "c": ["u3"]}
