# election_ledger/voting/surveys.py

from datetime import datetime
from typing import Optional

from election_ledger.database.models import (
    MAX_RATING, MIN_RATING, Survey, SurveyResponse, utcnow,
)
from election_ledger.database.state import LedgerState
from election_ledger.errors import AlreadyResponded, NotFoundError, ValidationError

# Candidate opinion surveys. Unlike ballots they are not phase gated; the
# only rule is one response per (survey, voter).


def check_rating(rating) -> int:
    if (isinstance(rating, bool) or not isinstance(rating, int)
            or not MIN_RATING <= rating <= MAX_RATING):
        raise ValidationError(f"Rating must be between {MIN_RATING} and {MAX_RATING}")
    return rating


def create_survey(state: LedgerState, election_id: int, candidate: str, question: str,
                  now: Optional[datetime] = None) -> Survey:
    election = state.elections.get(election_id)
    if election is None:
        raise NotFoundError(f"Election {election_id} not found")
    if candidate not in election.candidates:
        raise NotFoundError(f"Candidate {candidate!r} not found in election {election_id}")
    survey = Survey(
        id=state.surveys.allocate_id(),
        election_id=election_id,
        candidate=candidate,
        question=question,
        created_at=now or utcnow(),
    )
    return state.add_survey(survey)


def respond(state: LedgerState, survey_id: int, voter_id: int, rating: int,
            comment: str = '', now: Optional[datetime] = None) -> SurveyResponse:
    if voter_id not in state.voters:
        raise NotFoundError(f"Voter {voter_id} not found")
    survey = state.surveys.get(survey_id)
    if survey is None:
        raise NotFoundError(f"Survey {survey_id} not found")
    check_rating(rating)
    if state.has_voter_responded(survey_id, voter_id):
        raise AlreadyResponded()
    response = SurveyResponse(voter_id=voter_id, rating=rating, comment=comment,
                              timestamp=now or utcnow())
    return state.add_survey_response(survey, response)
