# election_ledger/database/models.py

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

# Typed records owned by the ledger collections

MAX_CANDIDATES = 128
MIN_RATING = 1
MAX_RATING = 5


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(Enum):
    VOTER = "voter"
    ADMIN = "admin"


class Phase(Enum):
    CREATED = "CREATED"
    REGISTRATION_OPEN = "REGISTRATION_OPEN"
    VOTING_OPEN = "VOTING_OPEN"
    VOTING_CLOSED = "VOTING_CLOSED"
    TALLY_COMPLETE = "TALLY_COMPLETE"

    @property
    def rank(self) -> int:
        return PHASE_ORDER.index(self)


PHASE_ORDER = [
    Phase.CREATED,
    Phase.REGISTRATION_OPEN,
    Phase.VOTING_OPEN,
    Phase.VOTING_CLOSED,
    Phase.TALLY_COMPLETE,
]


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


@dataclass
class Voter:
    id: int
    name: str
    email: str
    role: Role
    password_hash: str
    active: bool = True
    created_at: datetime = field(default_factory=utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMIN

    def to_dict(self) -> Dict:
        # password_hash never leaves the ledger
        return {
            'id': self.id,
            'name': self.name,
            'email': self.email,
            'role': self.role.value,
            'active': self.active,
            'created_at': _isoformat(self.created_at),
        }


@dataclass
class Election:
    id: int
    title: str
    description: str
    candidates: List[str]
    manifestos: Dict[str, str] = field(default_factory=dict)
    phase: Phase = Phase.CREATED
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)

    @property
    def candidate_count(self) -> int:
        return len(self.candidates)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'candidates': list(self.candidates),
            'manifestos': dict(self.manifestos),
            'phase': self.phase.value,
            'start_time': _isoformat(self.start_time),
            'end_time': _isoformat(self.end_time),
            'created_at': _isoformat(self.created_at),
        }


@dataclass(frozen=True)
class Vote:
    id: int
    election_id: int
    voter_id: int
    choice: int
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'election_id': self.election_id,
            'voter_id': self.voter_id,
            'choice': self.choice,
            'timestamp': _isoformat(self.timestamp),
        }


@dataclass(frozen=True)
class SurveyResponse:
    voter_id: int
    rating: int
    comment: str = ''
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            'voter_id': self.voter_id,
            'rating': self.rating,
            'comment': self.comment,
            'timestamp': _isoformat(self.timestamp),
        }


@dataclass
class Survey:
    """Opinion poll about one candidate; each voter answers at most once."""
    id: int
    election_id: int
    candidate: str
    question: str
    responses: List[SurveyResponse] = field(default_factory=list)
    created_at: datetime = field(default_factory=utcnow)

    @property
    def average_rating(self) -> float:
        if not self.responses:
            return 0.0
        return sum(r.rating for r in self.responses) / len(self.responses)

    def rating_distribution(self) -> Dict[int, int]:
        counts = {rating: 0 for rating in range(MIN_RATING, MAX_RATING + 1)}
        for response in self.responses:
            counts[response.rating] += 1
        return counts

    def to_dict(self, with_responses: bool = False) -> Dict:
        # responses name their voters, so only the detailed view carries them
        data = {
            'id': self.id,
            'election_id': self.election_id,
            'candidate': self.candidate,
            'question': self.question,
            'average_rating': f"{self.average_rating:.2f}",
            'total_responses': len(self.responses),
            'rating_distribution': self.rating_distribution(),
            'created_at': _isoformat(self.created_at),
        }
        if with_responses:
            data['responses'] = [r.to_dict() for r in self.responses]
        return data
