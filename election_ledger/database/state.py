# election_ledger/database/state.py

from typing import Dict, List, Optional

from election_ledger.database.collections import RecordCollection
from election_ledger.database.hash_index import HashIndex, email_key, vote_key
from election_ledger.database.models import (
    Election, Role, Survey, SurveyResponse, Vote, Voter,
)
from election_ledger.errors import AlreadyResponded, AlreadyVoted, DuplicateEmail

DEFAULT_ADMIN_PIN = "1234"


class LedgerState:
    """All mutable engine state: record collections, lookup indexes, counters.

    One instance is passed explicitly to the phase and casting operations;
    every index is updated in the same call that mutates a collection.
    """

    def __init__(self, admin_pin: str = DEFAULT_ADMIN_PIN):
        self.admin_pin = admin_pin
        self.voters: RecordCollection[Voter] = RecordCollection('voter')
        self.elections: RecordCollection[Election] = RecordCollection('election')
        self.votes: RecordCollection[Vote] = RecordCollection('vote')
        # email hash -> tuple of voter ids sharing that hash
        self.voter_by_email = HashIndex(64)
        # vote_key(election_id, voter_id) -> vote id
        self.has_voted = HashIndex(128)
        self.surveys: RecordCollection[Survey] = RecordCollection('survey')
        # election id -> tuple of survey ids
        self.surveys_by_election = HashIndex(64)
        # vote_key(survey_id, voter_id) -> rating
        self.has_responded = HashIndex(128)

    @property
    def admin_exists(self) -> bool:
        return any(v.role is Role.ADMIN for v in self.voters)

    def find_voter_by_email(self, email: str) -> Optional[Voter]:
        for voter_id in self.voter_by_email.get(email_key(email), ()):
            voter = self.voters.get(voter_id)
            if voter is not None and voter.email == email:
                return voter
        return None

    def add_voter(self, voter: Voter) -> Voter:
        if self.find_voter_by_email(voter.email) is not None:
            raise DuplicateEmail()
        key = email_key(voter.email)
        self.voters.add(voter)
        try:
            self.voter_by_email.put(key, self.voter_by_email.get(key, ()) + (voter.id,))
        except Exception:
            self.voters.remove_last(voter)
            raise
        return voter

    def add_election(self, election: Election) -> Election:
        return self.elections.add(election)

    def has_voter_voted(self, election_id: int, voter_id: int) -> bool:
        return vote_key(election_id, voter_id) in self.has_voted

    def add_vote(self, vote: Vote) -> Vote:
        """Append a vote and mark (election, voter) as voted, as one unit."""
        key = vote_key(vote.election_id, vote.voter_id)
        if key in self.has_voted:
            raise AlreadyVoted()
        self.votes.add(vote)
        try:
            self.has_voted.put(key, vote.id)
        except Exception:
            self.votes.remove_last(vote)
            raise
        return vote

    def add_survey(self, survey: Survey) -> Survey:
        """Append a survey and index it, along with any responses it carries."""
        keys = [vote_key(survey.id, r.voter_id) for r in survey.responses]
        if len(set(keys)) != len(keys):
            raise AlreadyResponded()
        siblings = self.surveys_by_election.get(survey.election_id, ())
        self.surveys.add(survey)
        indexed = []
        try:
            for key, response in zip(keys, survey.responses):
                self.has_responded.put(key, response.rating)
                indexed.append(key)
            self.surveys_by_election.put(survey.election_id, siblings + (survey.id,))
        except Exception:
            for key in indexed:
                self.has_responded.delete(key)
            self.surveys.remove_last(survey)
            raise
        return survey

    def surveys_for_election(self, election_id: int) -> List[Survey]:
        return [self.surveys.get(survey_id)
                for survey_id in self.surveys_by_election.get(election_id, ())]

    def has_voter_responded(self, survey_id: int, voter_id: int) -> bool:
        return vote_key(survey_id, voter_id) in self.has_responded

    def add_survey_response(self, survey: Survey, response: SurveyResponse) -> SurveyResponse:
        """Append a response and mark (survey, voter) as answered, as one unit."""
        key = vote_key(survey.id, response.voter_id)
        if key in self.has_responded:
            raise AlreadyResponded()
        self.has_responded.put(key, response.rating)
        survey.responses.append(response)
        return response

    def counters(self) -> Dict[str, int]:
        return {
            'next_voter_id': self.voters.next_id,
            'next_election_id': self.elections.next_id,
            'next_vote_id': self.votes.next_id,
            'next_survey_id': self.surveys.next_id,
        }
