# election_ledger/voting/casting.py

from datetime import datetime
from typing import Optional

from election_ledger.database.models import Phase, Vote, utcnow
from election_ledger.database.state import LedgerState
from election_ledger.errors import (
    AlreadyVoted, InvalidPhase, NotFoundError, ValidationError,
)

# One vote per (election, voter). Preconditions are checked in a fixed
# order and the first failure wins; a failed cast leaves no trace.


def check_choice(choice, candidate_count: int) -> int:
    if isinstance(choice, bool) or not isinstance(choice, int):
        raise ValidationError(f"choice must be an integer, got {choice!r}")
    if not 0 <= choice < candidate_count:
        raise ValidationError(
            f"Invalid candidate choice {choice}; expected 0..{candidate_count - 1}"
        )
    return choice


def cast_vote(state: LedgerState, election_id: int, voter_id: int, choice: int,
              now: Optional[datetime] = None) -> Vote:
    if voter_id not in state.voters:
        raise NotFoundError(f"Voter {voter_id} not found")
    election = state.elections.get(election_id)
    if election is None:
        raise NotFoundError(f"Election {election_id} not found")
    if election.phase is not Phase.VOTING_OPEN:
        raise InvalidPhase(f"Election {election_id} is not open for voting "
                           f"(phase {election.phase.value})")
    check_choice(choice, election.candidate_count)
    if state.has_voter_voted(election_id, voter_id):
        raise AlreadyVoted()

    vote = Vote(
        id=state.votes.allocate_id(),
        election_id=election_id,
        voter_id=voter_id,
        choice=choice,
        timestamp=now or utcnow(),
    )
    return state.add_vote(vote)
