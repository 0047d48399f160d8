# election_ledger/database/storage.py

import csv
import json
import logging
import os
import tempfile
from datetime import datetime
from typing import Callable, Dict, Iterator, List, Optional, Set, Tuple

from election_ledger.database.hash_index import MASK32
from election_ledger.database.models import (
    MAX_CANDIDATES, MAX_RATING, MIN_RATING, Election, Phase, Role, Survey,
    SurveyResponse, Vote, Voter,
)
from election_ledger.database.state import DEFAULT_ADMIN_PIN, LedgerState
from election_ledger.errors import LedgerError, ResourceError

# Flat-file mirror of the ledger: one CSV table per record type plus a
# single-row table of engine-wide scalars.

logger = logging.getLogger(__name__)

TABLES: Dict[str, List[str]] = {
    'voters': ['id', 'name', 'email', 'role', 'password_hash', 'active', 'created_at'],
    'elections': ['id', 'title', 'description', 'candidates', 'manifestos',
                  'phase', 'start_time', 'end_time', 'created_at'],
    'votes': ['id', 'election_id', 'voter_id', 'choice', 'timestamp'],
    'surveys': ['id', 'election_id', 'candidate', 'question', 'responses', 'created_at'],
    'state': ['admin_exists', 'admin_pin', 'next_voter_id', 'next_election_id',
              'next_vote_id', 'next_survey_id'],
}

# columns added after the first release; older tables may lack them
OPTIONAL_COLUMNS: Dict[str, Set[str]] = {
    'state': {'next_survey_id'},
}


class MalformedRow(ValueError):
    pass


def is_utf8_text(value: str) -> bool:
    # bytes that failed to decode come back as lone surrogates
    try:
        value.encode('utf-8')
    except UnicodeEncodeError:
        return False
    return True


def read_rows(reader: csv.DictReader, label: str) -> Iterator[Tuple[int, Dict[str, str]]]:
    """Yield ``(line_num, row)`` pairs from a reader over a file opened with
    ``errors='surrogateescape'``.

    A row the csv module rejects (an oversized field, say), a row with the
    wrong field count and a row holding non UTF-8 bytes are each logged and
    skipped; the rows after it are still read.
    """
    while True:
        try:
            row = next(reader)
        except StopIteration:
            return
        except csv.Error as e:
            logger.warning("Skipping %s row at line %d: %s", label, reader.line_num, e)
            continue
        if None in row or any(value is None for value in row.values()):
            logger.warning("Skipping %s row at line %d: wrong field count",
                           label, reader.line_num)
            continue
        if not all(is_utf8_text(value) for value in row.values()):
            logger.warning("Skipping %s row at line %d: invalid UTF-8",
                           label, reader.line_num)
            continue
        yield reader.line_num, row


def parse_id(value: str) -> int:
    record_id = int(value)
    if not 1 <= record_id <= MASK32:
        raise MalformedRow(f"id out of range: {record_id}")
    return record_id


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered not in ('true', 'false'):
        raise MalformedRow(f"not a boolean: {value!r}")
    return lowered == 'true'


def parse_datetime(value: str) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def format_datetime(value: Optional[datetime]) -> str:
    return value.isoformat() if value else ''


def parse_candidates(value: str) -> List[str]:
    candidates = json.loads(value)
    if (not isinstance(candidates, list) or not 1 <= len(candidates) <= MAX_CANDIDATES
            or not all(isinstance(c, str) for c in candidates)):
        raise MalformedRow("candidates must be a non-empty list of names")
    return candidates


def parse_manifestos(value: str) -> Dict[str, str]:
    if not value:
        return {}
    manifestos = json.loads(value)
    if not isinstance(manifestos, dict) or not all(
            isinstance(k, str) and isinstance(v, str) for k, v in manifestos.items()):
        raise MalformedRow("manifestos must map candidate names to text")
    return manifestos


def voter_to_row(voter: Voter) -> Dict[str, str]:
    return {
        'id': str(voter.id),
        'name': voter.name,
        'email': voter.email,
        'role': voter.role.value,
        'password_hash': voter.password_hash,
        'active': 'true' if voter.active else 'false',
        'created_at': format_datetime(voter.created_at),
    }


def voter_from_row(row: Dict[str, str]) -> Voter:
    if not row['email']:
        raise MalformedRow("empty email")
    return Voter(
        id=parse_id(row['id']),
        name=row['name'],
        email=row['email'],
        role=Role(row['role']),
        password_hash=row['password_hash'],
        active=parse_bool(row['active']),
        created_at=parse_datetime(row['created_at']),
    )


def election_to_row(election: Election) -> Dict[str, str]:
    return {
        'id': str(election.id),
        'title': election.title,
        'description': election.description,
        'candidates': json.dumps(election.candidates, ensure_ascii=False),
        'manifestos': json.dumps(election.manifestos, ensure_ascii=False, sort_keys=True),
        'phase': election.phase.value,
        'start_time': format_datetime(election.start_time),
        'end_time': format_datetime(election.end_time),
        'created_at': format_datetime(election.created_at),
    }


def election_from_row(row: Dict[str, str]) -> Election:
    return Election(
        id=parse_id(row['id']),
        title=row['title'],
        description=row['description'],
        candidates=parse_candidates(row['candidates']),
        manifestos=parse_manifestos(row['manifestos']),
        phase=Phase(row['phase']),
        start_time=parse_datetime(row['start_time']),
        end_time=parse_datetime(row['end_time']),
        created_at=parse_datetime(row['created_at']),
    )


def vote_to_row(vote: Vote) -> Dict[str, str]:
    return {
        'id': str(vote.id),
        'election_id': str(vote.election_id),
        'voter_id': str(vote.voter_id),
        'choice': str(vote.choice),
        'timestamp': format_datetime(vote.timestamp),
    }


def vote_from_row(row: Dict[str, str]) -> Vote:
    choice = int(row['choice'])
    if choice < 0:
        raise MalformedRow(f"negative choice {choice}")
    return Vote(
        id=parse_id(row['id']),
        election_id=parse_id(row['election_id']),
        voter_id=parse_id(row['voter_id']),
        choice=choice,
        timestamp=parse_datetime(row['timestamp']),
    )


def _strict_int(value, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedRow(f"{what} must be an integer, got {value!r}")
    return value


def response_from_dict(entry) -> SurveyResponse:
    if not isinstance(entry, dict):
        raise MalformedRow("survey response must be an object")
    rating = _strict_int(entry.get('rating'), 'rating')
    if not MIN_RATING <= rating <= MAX_RATING:
        raise MalformedRow(f"rating {rating} out of range")
    comment = entry.get('comment', '')
    timestamp = entry.get('timestamp') or ''
    if not isinstance(comment, str) or not isinstance(timestamp, str):
        raise MalformedRow("comment and timestamp must be text")
    return SurveyResponse(
        voter_id=parse_id(_strict_int(entry.get('voter_id'), 'voter_id')),
        rating=rating,
        comment=comment,
        timestamp=parse_datetime(timestamp),
    )


def parse_responses(value: str) -> List[SurveyResponse]:
    if not value:
        return []
    entries = json.loads(value)
    if not isinstance(entries, list):
        raise MalformedRow("responses must be a list")
    return [response_from_dict(entry) for entry in entries]


def survey_to_row(survey: Survey) -> Dict[str, str]:
    return {
        'id': str(survey.id),
        'election_id': str(survey.election_id),
        'candidate': survey.candidate,
        'question': survey.question,
        'responses': json.dumps([r.to_dict() for r in survey.responses], ensure_ascii=False),
        'created_at': format_datetime(survey.created_at),
    }


def survey_from_row(row: Dict[str, str]) -> Survey:
    return Survey(
        id=parse_id(row['id']),
        election_id=parse_id(row['election_id']),
        candidate=row['candidate'],
        question=row['question'],
        responses=parse_responses(row['responses']),
        created_at=parse_datetime(row['created_at']),
    )


class LedgerStorage:
    """Reads and writes the ledger tables in one directory."""

    def __init__(self, directory: str):
        self.directory = directory

    def path(self, table: str) -> str:
        return os.path.join(self.directory, f"{table}.csv")

    # ------------------------------------------------------------------ save

    def save(self, state: LedgerState) -> None:
        state_row = {
            'admin_exists': 'true' if state.admin_exists else 'false',
            'admin_pin': state.admin_pin,
        }
        state_row.update((name, str(value)) for name, value in state.counters().items())
        try:
            os.makedirs(self.directory, exist_ok=True)
            self._write_table('voters', map(voter_to_row, state.voters))
            self._write_table('elections', map(election_to_row, state.elections))
            self._write_table('votes', map(vote_to_row, state.votes))
            self._write_table('surveys', map(survey_to_row, state.surveys))
            self._write_table('state', [state_row])
        except OSError as e:
            raise ResourceError(f"saving ledger to {self.directory} failed: {e}") from e
        logger.debug("Saved %d voters, %d elections, %d votes, %d surveys to %s",
                     len(state.voters), len(state.elections), len(state.votes),
                     len(state.surveys), self.directory)

    def _write_table(self, table: str, rows) -> None:
        fd, tmp_path = tempfile.mkstemp(prefix=f".{table}-", suffix=".tmp", dir=self.directory)
        try:
            with os.fdopen(fd, 'w', newline='', encoding='utf-8') as f:
                writer = csv.DictWriter(f, fieldnames=TABLES[table])
                writer.writeheader()
                for row in rows:
                    writer.writerow(row)
            os.replace(tmp_path, self.path(table))
        except BaseException:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    # ------------------------------------------------------------------ load

    def load(self, admin_pin: str = DEFAULT_ADMIN_PIN) -> LedgerState:
        """Build a fresh LedgerState from the directory.

        Missing tables are empty. Malformed rows are dropped with a warning;
        an id that parsed from a dropped row is still never reallocated.
        """
        state = LedgerState(admin_pin=admin_pin)
        self._load_records('voters', voter_from_row, state.voters,
                           lambda voter: state.add_voter(voter))
        self._load_records('elections', election_from_row, state.elections,
                           lambda election: state.add_election(election))
        self._load_records('votes', vote_from_row, state.votes,
                           lambda vote: self._add_loaded_vote(state, vote))
        self._load_records('surveys', survey_from_row, state.surveys,
                           lambda survey: self._add_loaded_survey(state, survey))
        for line_no, row in self._read_table('state'):
            if row['admin_pin']:
                state.admin_pin = row['admin_pin']
            self._restore_counters(state, row, line_no)
            break
        logger.info("Loaded %d voters, %d elections, %d votes, %d surveys from %s",
                    len(state.voters), len(state.elections), len(state.votes),
                    len(state.surveys), self.directory)
        return state

    def _restore_counters(self, state: LedgerState, row: Dict[str, str], line_no: int) -> None:
        # persisted counters only ever raise next_id above max(id) + 1
        for name, collection in (('next_voter_id', state.voters),
                                 ('next_election_id', state.elections),
                                 ('next_vote_id', state.votes),
                                 ('next_survey_id', state.surveys)):
            if name not in row:
                continue
            try:
                next_id = int(row[name])
            except ValueError:
                logger.warning("Ignoring malformed %s at state line %d", name, line_no)
                continue
            if 2 <= next_id <= MASK32 + 1:
                collection.reserve(next_id - 1)

    def _add_loaded_vote(self, state: LedgerState, vote: Vote) -> None:
        election = state.elections.get(vote.election_id)
        if election is None:
            raise MalformedRow(f"unknown election {vote.election_id}")
        if vote.voter_id not in state.voters:
            raise MalformedRow(f"unknown voter {vote.voter_id}")
        if vote.choice >= election.candidate_count:
            raise MalformedRow(f"choice {vote.choice} out of range")
        state.add_vote(vote)

    def _add_loaded_survey(self, state: LedgerState, survey: Survey) -> None:
        election = state.elections.get(survey.election_id)
        if election is None:
            raise MalformedRow(f"unknown election {survey.election_id}")
        if survey.candidate not in election.candidates:
            raise MalformedRow(f"unknown candidate {survey.candidate!r}")
        # a bad response costs only itself, not the whole survey
        kept, seen = [], set()
        for response in survey.responses:
            if response.voter_id not in state.voters or response.voter_id in seen:
                logger.warning("Dropping survey %d response from voter %d: unknown or repeated",
                               survey.id, response.voter_id)
                continue
            seen.add(response.voter_id)
            kept.append(response)
        survey.responses = kept
        state.add_survey(survey)

    def _load_records(self, table: str, parse: Callable, collection,
                      add: Callable) -> None:
        for line_no, row in self._read_table(table):
            try:
                add(parse(row))
            except (ValueError, KeyError, TypeError, LedgerError) as e:
                logger.warning("Skipping malformed %s row at line %d: %s", table, line_no, e)
                try:
                    collection.reserve(parse_id(row['id']))
                except (ValueError, KeyError):
                    pass

    def _read_table(self, table: str) -> Iterator[Tuple[int, Dict[str, str]]]:
        path = self.path(table)
        if not os.path.exists(path):
            return
        try:
            with open(path, newline='', encoding='utf-8', errors='surrogateescape') as f:
                reader = csv.DictReader(f)
                try:
                    fieldnames = reader.fieldnames or ()
                except csv.Error as e:
                    logger.warning("Skipping table %s: unreadable header: %s", table, e)
                    return
                missing = set(TABLES[table]) - OPTIONAL_COLUMNS.get(table, set()) - set(fieldnames)
                if missing:
                    logger.warning("Skipping table %s: header lacks %s",
                                   table, ', '.join(sorted(missing)))
                    return
                yield from read_rows(reader, table)
        except OSError as e:
            raise ResourceError(f"reading {path} failed: {e}") from e
