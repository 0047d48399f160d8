# election_ledger/voting/tally.py

from dataclasses import dataclass, field
from typing import Dict, List

from election_ledger.database.state import LedgerState
from election_ledger.errors import NotFoundError
from election_ledger.voting.selection_tree import SelectionTree

# Batch tally: count votes per candidate, rebuild the tournament tree, read
# the winner off its root.


@dataclass
class CandidateResult:
    index: int
    name: str
    votes: int
    percentage: float

    def to_dict(self) -> Dict:
        return {
            'index': self.index,
            'name': self.name,
            'votes': self.votes,
            'percentage': f"{self.percentage:.2f}",
        }


@dataclass
class TallyResult:
    election_id: int
    election_title: str
    total_votes: int
    candidates: List[CandidateResult]
    winner: CandidateResult
    ranking: List[CandidateResult] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'election_id': self.election_id,
            'election_title': self.election_title,
            'total_votes': self.total_votes,
            'candidates': [c.to_dict() for c in self.candidates],
            'winner': self.winner.to_dict(),
            'ranking': [c.to_dict() for c in self.ranking],
        }


def count_votes(state: LedgerState, election_id: int) -> List[int]:
    election = state.elections.get(election_id)
    if election is None:
        raise NotFoundError(f"Election {election_id} not found")
    counts = [0] * election.candidate_count
    for vote in state.votes:
        if vote.election_id == election_id and vote.choice < len(counts):
            counts[vote.choice] += 1
    return counts


def percentage(votes: int, total: int) -> float:
    if total == 0:
        return 0.0
    return round(votes * 100.0 / total, 2)


def compute_tally(state: LedgerState, election_id: int) -> TallyResult:
    counts = count_votes(state, election_id)
    election = state.elections.get(election_id)
    total = sum(counts)
    tree = SelectionTree(counts)

    results = [
        CandidateResult(index=i, name=name, votes=counts[i],
                        percentage=percentage(counts[i], total))
        for i, name in enumerate(election.candidates)
    ]
    return TallyResult(
        election_id=election.id,
        election_title=election.title,
        total_votes=total,
        candidates=results,
        winner=results[tree.winner()],
        ranking=[results[index] for index, _ in tree.ranking()],
    )
