from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Set


@dataclass
class Tally:
    counts:       Dict[str, int] = field(default_factory=dict)
    winner:       Optional[str]  = None
    tied_at_max:  List[str]      = field(default_factory=list)
    max_votes:    int            = 0
    total_voters: int            = 0

    @property
    def has_tie(self) -> bool:
        return len(self.tied_at_max) > 1


class VoteBox:
    """
    Set-valued mapping option-id -> voter ids, edited in place.

    A voter holds at most one vote across all options; an option whose
    voter list becomes empty is removed from the mapping.
    """

    def __init__(self, votes: Dict[str, List[str]]):
        self.votes = votes

    def cast(self, option: str, voter: str) -> None:
        self.remove_voter(voter)
        self.votes.setdefault(option, []).append(voter)

    def remove_voter(self, voter: str) -> None:
        for option in list(self.votes):
            remaining = [v for v in self.votes[option] if v != voter]
            if remaining:
                self.votes[option] = remaining
            else:
                del self.votes[option]

    def restrict(self, options: Iterable[str]) -> None:
        """Drop every option not in ``options``."""
        keep = set(options)
        for option in list(self.votes):
            if option not in keep:
                del self.votes[option]

    def clear(self) -> None:
        self.votes.clear()

    def vote_of(self, voter: str) -> Optional[str]:
        for option, voters in self.votes.items():
            if voter in voters:
                return option
        return None

    def voters(self, options: Optional[Iterable[str]] = None) -> Set[str]:
        keys = self.votes.keys() if options is None else options
        distinct: Set[str] = set()
        for option in keys:
            distinct.update(self.votes.get(option, []))
        return distinct

    def quorum_met(self, eligible: int, options: Optional[Iterable[str]] = None) -> bool:
        voters = self.voters(options)
        if not voters:
            return False
        return len(voters) >= eligible

    def tally(self, options: Optional[Iterable[str]] = None) -> Tally:
        keys = list(self.votes.keys()) if options is None else list(options)
        result = Tally()
        for option in keys:
            count = len(set(self.votes.get(option, [])))
            if count == 0:
                continue
            result.counts[option] = count
            # first option to reach the maximum keeps it
            if count > result.max_votes:
                result.max_votes = count
                result.winner = option
        if result.max_votes > 0:
            result.tied_at_max = [o for o, c in result.counts.items() if c == result.max_votes]
        result.total_voters = len(self.voters(keys))
        return result
