# election_ledger/voting/phases.py

from datetime import datetime
from typing import Dict, FrozenSet, Optional, Tuple

from election_ledger.database.models import Election, Phase, utcnow
from election_ledger.errors import InvalidPhase

# Per-election lifecycle gate. Phases only move forward:
# CREATED -> REGISTRATION_OPEN -> VOTING_OPEN -> VOTING_CLOSED -> TALLY_COMPLETE
# (REGISTRATION_OPEN may be skipped.)

TRANSITIONS: Dict[str, Tuple[FrozenSet[Phase], Phase]] = {
    'open_registration': (frozenset({Phase.CREATED}), Phase.REGISTRATION_OPEN),
    'open_voting': (frozenset({Phase.CREATED, Phase.REGISTRATION_OPEN}), Phase.VOTING_OPEN),
    'close_voting': (frozenset({Phase.VOTING_OPEN}), Phase.VOTING_CLOSED),
    'complete_tally': (frozenset({Phase.VOTING_CLOSED}), Phase.TALLY_COMPLETE),
}

# target phase -> transition name, for callers that ask for a phase
TRANSITION_FOR_PHASE: Dict[Phase, str] = {
    target: name for name, (_, target) in TRANSITIONS.items()
}


def can_transition(election: Election, name: str) -> bool:
    sources, _ = TRANSITIONS[name]
    return election.phase in sources


def apply_transition(election: Election, name: str,
                     now: Optional[datetime] = None) -> Election:
    """Move the election through the named transition or raise InvalidPhase.

    Nothing is modified when the transition is not legal from the
    current phase.
    """
    sources, target = TRANSITIONS[name]
    if election.phase not in sources:
        raise InvalidPhase(
            f"cannot {name.replace('_', ' ')} election {election.id} "
            f"in phase {election.phase.value}"
        )
    now = now or utcnow()
    election.phase = target
    if target is Phase.VOTING_OPEN and election.start_time is None:
        election.start_time = now
    if target is Phase.VOTING_CLOSED and election.end_time is None:
        election.end_time = now
    return election


def open_registration(election: Election, now: Optional[datetime] = None) -> Election:
    return apply_transition(election, 'open_registration', now)


def open_voting(election: Election, now: Optional[datetime] = None) -> Election:
    return apply_transition(election, 'open_voting', now)


def close_voting(election: Election, now: Optional[datetime] = None) -> Election:
    return apply_transition(election, 'close_voting', now)


def complete_tally(election: Election, now: Optional[datetime] = None) -> Election:
    return apply_transition(election, 'complete_tally', now)
