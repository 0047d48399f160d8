# election_ledger/ledger.py

# The ledger facade: registration, sessions, election administration, voting,
# candidate surveys and reporting over one LedgerState, with the flat-file
# mirror saved after every mutation. Not thread-safe; concurrent callers must
# serialize access (the HTTP routes hold a single lock around every call).

import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Union

from election_ledger.audit.audit_logger import AuditLogger
from election_ledger.authentication.rbac import Permission, RBACService, rbac_service
from election_ledger.database.exports import aggregate_vote_exports, write_votes_csv
from election_ledger.database.models import (
    Election, Phase, Role, Survey, Vote, Voter, utcnow,
)
from election_ledger.database.state import DEFAULT_ADMIN_PIN, LedgerState
from election_ledger.database.storage import LedgerStorage
from election_ledger.encryption.password_hashing import PasswordHashingService
from election_ledger.errors import (
    AdminAlreadyExists, DuplicateEmail, InvalidCredentials, LedgerError,
    NotAuthenticated, NotFoundError, PermissionDenied, ResourceError,
    ValidationError,
)
from election_ledger.security.input_validator import (
    MAX_COMMENT, MAX_DESCRIPTION, MAX_MANIFESTO, MAX_NAME, MAX_QUESTION, MAX_TITLE,
    InputValidator,
)
from election_ledger.voting import casting, phases, surveys
from election_ledger.voting.tally import TallyResult, compute_tally

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_NAME = 'Admin'
DEFAULT_ADMIN_EMAIL = 'admin@example.com'
DEFAULT_ADMIN_PASSWORD = 'admin'


@dataclass(frozen=True)
class Session:
    token: str
    voter_id: int
    role: Role
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict:
        return {
            'voter_id': self.voter_id,
            'role': self.role.value,
            'created_at': self.created_at.isoformat(),
        }


SessionRef = Union[Session, str, None]


class ElectionLedger:
    def __init__(self, data_dir: Optional[str] = None, admin_pin: str = DEFAULT_ADMIN_PIN,
                 password_service: Optional[PasswordHashingService] = None,
                 audit_logger: Optional[AuditLogger] = None,
                 validator: Optional[InputValidator] = None,
                 rbac: Optional[RBACService] = None,
                 autosave: bool = True,
                 require_strong_passwords: bool = False):
        self.data_dir = data_dir
        self.autosave = autosave
        self.require_strong_passwords = require_strong_passwords
        self.password_service = password_service or PasswordHashingService()
        self.audit_logger = audit_logger
        self.validator = validator or InputValidator()
        self.rbac = rbac or rbac_service
        self.state = LedgerState(admin_pin=admin_pin)
        self.last_save_error: Optional[ResourceError] = None
        self._sessions: Dict[str, Session] = {}

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # ----------------------------------------------------------- checkpoints

    def _directory(self, directory: Optional[str]) -> str:
        directory = directory or self.data_dir
        if not directory:
            raise ValidationError("No data directory configured")
        return directory

    def save(self, directory: Optional[str] = None) -> None:
        """Write every table now. Raises ResourceError; nothing is rolled back."""
        LedgerStorage(self._directory(directory)).save(self.state)
        self.last_save_error = None

    def load(self, directory: Optional[str] = None) -> None:
        """Replace the in-memory state with the tables found in `directory`.

        Open sessions are dropped. If the loaded voters include no admin, a
        default admin is created and written back straight away, with or
        without autosave, so every later load sees the same admin. When that
        write fails the error is logged and kept in `last_save_error`; the
        admin then lives only in memory and the next load creates another.
        """
        directory = self._directory(directory)
        self.state = LedgerStorage(directory).load(admin_pin=self.state.admin_pin)
        self._sessions.clear()
        if not self.state.admin_exists:
            self._bootstrap_admin()
            try:
                LedgerStorage(directory).save(self.state)
            except ResourceError as e:
                logger.error("Default admin was not saved, the next load will create "
                             "another: %s", e)
                self.last_save_error = e
            else:
                self.last_save_error = None

    def close(self) -> None:
        if self.autosave and self.data_dir:
            self._persist()
        if self.audit_logger is not None:
            self.audit_logger.flush()
        self._sessions.clear()

    def _persist(self, directory: Optional[str] = None) -> bool:
        directory = directory or self.data_dir
        if not self.autosave or not directory:
            return True
        try:
            LedgerStorage(directory).save(self.state)
        except ResourceError as e:
            # the mutation stands; the caller may retry with save()
            logger.error("Ledger autosave failed: %s", e)
            self.last_save_error = e
            return False
        self.last_save_error = None
        return True

    def _audit(self, event_type: str, data: Dict, user_id: Optional[int] = None) -> None:
        if self.audit_logger is not None:
            self.audit_logger.log_security_event(event_type, data, user_id=user_id)

    # ------------------------------------------------------ voters, sessions

    def _bootstrap_admin(self) -> Voter:
        email = DEFAULT_ADMIN_EMAIL
        n = 1
        while self.state.find_voter_by_email(email) is not None:
            email = f'admin+{n}@example.com'
            n += 1
        voter = self._create_voter(DEFAULT_ADMIN_NAME, email, DEFAULT_ADMIN_PASSWORD, Role.ADMIN)
        logger.warning("No administrator found; created default admin %s", email)
        self._audit('voter_registered', {'voter_id': voter.id, 'role': voter.role.value,
                                         'bootstrap': True}, user_id=voter.id)
        return voter

    def _create_voter(self, name: str, email: str, password: str, role: Role) -> Voter:
        password_hash = self.password_service.hash_password(password)
        voter = Voter(
            id=self.state.voters.allocate_id(),
            name=name,
            email=email,
            role=role,
            password_hash=password_hash,
        )
        return self.state.add_voter(voter)

    @staticmethod
    def _parse_role(role) -> Role:
        if isinstance(role, Role):
            return role
        try:
            return Role(str(role).strip().lower())
        except ValueError:
            raise ValidationError(f"Unknown role {role!r}")

    def register(self, name: str, email: str, password: str, role=Role.VOTER) -> Voter:
        role = self._parse_role(role)
        name = self.validator.require_text(name, 'Name', MAX_NAME)
        email = self.validator.require_email(email)
        if not isinstance(password, str) or not password:
            raise ValidationError("Password is required")
        if self.require_strong_passwords and not self.password_service.is_strong_password(password):
            raise ValidationError("Password does not meet security requirements")
        if role is Role.ADMIN and self.state.admin_exists:
            raise AdminAlreadyExists()
        if self.state.find_voter_by_email(email) is not None:
            raise DuplicateEmail()

        voter = self._create_voter(name, email, password, role)
        self._audit('voter_registered', {'voter_id': voter.id, 'role': role.value},
                    user_id=voter.id)
        self._persist()
        return voter

    def login(self, email: str, password: str, admin_pin: Optional[str] = None) -> Session:
        voter = self.state.find_voter_by_email(email) if isinstance(email, str) else None
        if (voter is None or not voter.active or not isinstance(password, str)
                or not self.password_service.verify_password(password, voter.password_hash)):
            self._audit('login_failed', {'email': email, 'reason': 'credentials'})
            raise InvalidCredentials()
        if voter.is_admin:
            if admin_pin is None or not hmac.compare_digest(
                    str(admin_pin).encode(), self.state.admin_pin.encode()):
                self._audit('login_failed', {'email': email, 'reason': 'admin_pin'},
                            user_id=voter.id)
                raise InvalidCredentials("Invalid admin PIN")

        if self.password_service.needs_rehash(voter.password_hash):
            voter.password_hash = self.password_service.hash_password(password)
            self._persist()

        session = Session(token=secrets.token_hex(32), voter_id=voter.id, role=voter.role)
        self._sessions[session.token] = session
        self._audit('login_succeeded', {'voter_id': voter.id}, user_id=voter.id)
        return session

    def logout(self, session: SessionRef) -> bool:
        token = session.token if isinstance(session, Session) else session
        return self._sessions.pop(token, None) is not None

    def session(self, token: str) -> Session:
        live = self._sessions.get(token) if isinstance(token, str) else None
        if live is None:
            raise NotAuthenticated()
        return live

    def current_voter(self, session: SessionRef) -> Voter:
        if session is None:
            raise NotAuthenticated()
        live = self.session(session.token if isinstance(session, Session) else session)
        voter = self.state.voters.get(live.voter_id)
        if voter is None or not voter.active:
            self._sessions.pop(live.token, None)
            raise NotAuthenticated()
        return voter

    def _require_permission(self, session: SessionRef, permission: Permission) -> Voter:
        voter = self.current_voter(session)
        if not self.rbac.has_permission(voter.role, permission):
            raise PermissionDenied(f"{permission.value} is not allowed for role {voter.role.value}")
        return voter

    def list_voters(self, session: SessionRef) -> List[Voter]:
        self._require_permission(session, Permission.VIEW_VOTER_LIST)
        return list(self.state.voters)

    # -------------------------------------------------------------- elections

    def get_election(self, election_id) -> Election:
        election_id = self.validator.parse_id(election_id, 'election_id')
        election = self.state.elections.get(election_id)
        if election is None:
            raise NotFoundError(f"Election {election_id} not found")
        return election

    def list_elections(self) -> List[Election]:
        return list(self.state.elections)

    def create_election(self, session: SessionRef, title: str, description: str,
                        candidates: List[str]) -> Election:
        admin = self._require_permission(session, Permission.MANAGE_ELECTIONS)
        title = self.validator.require_text(title, 'Title', MAX_TITLE)
        description = self.validator.sanitize_string(description or '', max_length=MAX_DESCRIPTION)
        candidates = self.validator.validate_candidates(candidates)

        election = Election(
            id=self.state.elections.allocate_id(),
            title=title,
            description=description,
            candidates=candidates,
        )
        self.state.add_election(election)
        self._audit('election_created', {'election_id': election.id,
                                         'candidates': len(candidates)}, user_id=admin.id)
        self._persist()
        return election

    def _transition(self, session: SessionRef, election_id, name: str) -> Election:
        admin = self._require_permission(session, Permission.MANAGE_ELECTIONS)
        election = self.get_election(election_id)
        previous = election.phase
        phases.apply_transition(election, name)
        self._audit('phase_changed', {'election_id': election.id, 'from': previous.value,
                                      'to': election.phase.value}, user_id=admin.id)
        self._persist()
        return election

    def open_registration(self, session: SessionRef, election_id) -> Election:
        return self._transition(session, election_id, 'open_registration')

    def open_voting(self, session: SessionRef, election_id) -> Election:
        return self._transition(session, election_id, 'open_voting')

    def close_voting(self, session: SessionRef, election_id) -> Election:
        return self._transition(session, election_id, 'close_voting')

    def complete_tally(self, session: SessionRef, election_id) -> Election:
        return self._transition(session, election_id, 'complete_tally')

    def transition_to(self, session: SessionRef, election_id, phase) -> Election:
        """Run whichever transition leads to `phase` (a Phase or its name)."""
        try:
            target = phase if isinstance(phase, Phase) else Phase(str(phase).strip().upper())
        except ValueError:
            raise ValidationError(f"Unknown phase {phase!r}")
        name = phases.TRANSITION_FOR_PHASE.get(target)
        if name is None:
            raise ValidationError(f"No transition leads to {target.value}")
        return self._transition(session, election_id, name)

    def set_manifesto(self, session: SessionRef, election_id, candidate: str,
                      manifesto: str) -> Election:
        admin = self._require_permission(session, Permission.MANAGE_ELECTIONS)
        election = self.get_election(election_id)
        if candidate not in election.candidates:
            raise NotFoundError(f"Candidate {candidate!r} not found in election {election.id}")
        election.manifestos[candidate] = self.validator.sanitize_string(
            manifesto or '', max_length=MAX_MANIFESTO)
        self._audit('manifesto_set', {'election_id': election.id, 'candidate': candidate},
                    user_id=admin.id)
        self._persist()
        return election

    # ----------------------------------------------------------------- voting

    def cast_vote(self, session: SessionRef, election_id, choice: int) -> Vote:
        voter = self._require_permission(session, Permission.VOTE)
        try:
            election_id = self.validator.parse_id(election_id, 'election_id')
            vote = casting.cast_vote(self.state, election_id, voter.id, choice)
        except LedgerError as e:
            self._audit('vote_rejected', {'election_id': election_id, 'reason': e.kind,
                                          'detail': e.message}, user_id=voter.id)
            raise
        self._audit('vote_cast', {'vote_id': vote.id, 'election_id': election_id},
                    user_id=voter.id)
        self._persist()
        return vote

    def has_voted(self, session: SessionRef, election_id) -> bool:
        voter = self.current_voter(session)
        election = self.get_election(election_id)
        return self.state.has_voter_voted(election.id, voter.id)

    def votes_for_election(self, session: SessionRef, election_id) -> List[Vote]:
        self._require_permission(session, Permission.VIEW_VOTES)
        election = self.get_election(election_id)
        return [v for v in self.state.votes if v.election_id == election.id]

    # ---------------------------------------------------------------- surveys

    def get_survey(self, survey_id) -> Survey:
        survey_id = self.validator.parse_id(survey_id, 'survey_id')
        survey = self.state.surveys.get(survey_id)
        if survey is None:
            raise NotFoundError(f"Survey {survey_id} not found")
        return survey

    def create_survey(self, session: SessionRef, election_id, candidate: str,
                      question: str) -> Survey:
        admin = self._require_permission(session, Permission.MANAGE_ELECTIONS)
        election = self.get_election(election_id)
        if not isinstance(candidate, str) or not candidate:
            raise ValidationError("Candidate is required")
        question = self.validator.require_text(question, 'Question', MAX_QUESTION)
        survey = surveys.create_survey(self.state, election.id, candidate, question)
        self._audit('survey_created', {'survey_id': survey.id, 'election_id': election.id,
                                       'candidate': candidate}, user_id=admin.id)
        self._persist()
        return survey

    def respond_to_survey(self, session: SessionRef, survey_id, rating: int,
                          comment: str = '') -> Survey:
        voter = self._require_permission(session, Permission.RESPOND_SURVEYS)
        survey = self.get_survey(survey_id)
        comment = self.validator.sanitize_string(comment or '', max_length=MAX_COMMENT)
        surveys.respond(self.state, survey.id, voter.id, rating, comment)
        self._audit('survey_response', {'survey_id': survey.id}, user_id=voter.id)
        self._persist()
        return survey

    def surveys_for_election(self, election_id) -> List[Survey]:
        election = self.get_election(election_id)
        return self.state.surveys_for_election(election.id)

    def list_surveys(self, session: SessionRef) -> List[Survey]:
        self._require_permission(session, Permission.VIEW_RESULTS)
        return list(self.state.surveys)

    # -------------------------------------------------------------- reporting

    def tally(self, election_id) -> TallyResult:
        election = self.get_election(election_id)
        return compute_tally(self.state, election.id)

    def export_votes_csv(self, path: str) -> int:
        return write_votes_csv(path, self.state.votes)

    # offline reducer over export files; needs no loaded ledger
    aggregate_vote_exports = staticmethod(aggregate_vote_exports)
