import json
import os

import pytest

from election_ledger.audit.audit_logger import AuditLogger
from election_ledger.database.models import Phase, Role
from election_ledger.database.storage import LedgerStorage
from election_ledger.errors import (
    AdminAlreadyExists, AlreadyResponded, AlreadyVoted, DuplicateEmail, InvalidCredentials,
    InvalidPhase, NotAuthenticated, NotFoundError, PermissionDenied,
    ResourceError, ValidationError,
)
from election_ledger.ledger import ElectionLedger


def test_demo_election_end_to_end(ledger, admin_session, voter_session):
    """Register, create, open, vote, close and tally the demo election."""
    election = ledger.create_election(admin_session, "Demo", "", ["A", "B", "C"])
    assert election.phase is Phase.CREATED

    ledger.open_voting(admin_session, election.id)
    assert election.phase is Phase.VOTING_OPEN

    ledger.cast_vote(voter_session, election.id, 1)
    with pytest.raises(AlreadyVoted, match="already voted"):
        ledger.cast_vote(voter_session, election.id, 2)

    ledger.close_voting(admin_session, election.id)
    assert election.phase is Phase.VOTING_CLOSED

    result = ledger.tally(election.id).to_dict()
    assert result['total_votes'] == 1
    assert result['candidates'][1] == {'index': 1, 'name': 'B', 'votes': 1,
                                       'percentage': '100.00'}
    assert result['winner']['name'] == "B"


def test_registration_rules(empty_ledger):
    voter = empty_ledger.register("  Ann <u>Lee</u> ", "ann@x.com", "pw")
    assert voter.id == 1
    assert voter.role is Role.VOTER
    assert voter.name == "Ann Lee"
    assert voter.password_hash != "pw"

    with pytest.raises(DuplicateEmail):
        empty_ledger.register("Ann again", "ann@x.com", "pw")
    empty_ledger.register("Root", "root@x.com", "pw", role="ADMIN")
    with pytest.raises(AdminAlreadyExists):
        empty_ledger.register("Root 2", "root2@x.com", "pw", role=Role.ADMIN)
    with pytest.raises(ValidationError):
        empty_ledger.register("Bad", "not-an-email", "pw")
    with pytest.raises(ValidationError):
        empty_ledger.register("Bad", "bad@x.com", "")
    with pytest.raises(ValidationError):
        empty_ledger.register("Bad", "bad@x.com", "pw", role="auditor")
    assert len(empty_ledger.state.voters) == 2


def test_strong_password_policy(data_dir, password_service):
    strict = ElectionLedger(data_dir=data_dir, password_service=password_service,
                            require_strong_passwords=True)
    with pytest.raises(ValidationError):
        strict.register("Weak", "weak@x.com", "pw")
    assert strict.register("Strong", "strong@x.com", "MyStrongPass123!").id == 1


def test_login_checks_password_and_pin(ledger):
    with pytest.raises(InvalidCredentials):
        ledger.login("v@x.com", "wrong")
    with pytest.raises(InvalidCredentials):
        ledger.login("nobody@x.com", "pw")
    with pytest.raises(InvalidCredentials):
        ledger.login("a@x.com", "pw")
    with pytest.raises(InvalidCredentials):
        ledger.login("a@x.com", "pw", admin_pin="0000")
    session = ledger.login("a@x.com", "pw", admin_pin="1234")
    assert session.role is Role.ADMIN
    assert len(session.token) == 64


def test_logout_ends_session(ledger, voter_session):
    assert ledger.current_voter(voter_session).email == "v@x.com"
    assert ledger.logout(voter_session) is True
    assert ledger.logout(voter_session) is False
    with pytest.raises(NotAuthenticated):
        ledger.current_voter(voter_session)


def test_admin_only_operations(ledger, voter_session, demo_election):
    with pytest.raises(PermissionDenied):
        ledger.create_election(voter_session, "Mine", "", ["X"])
    with pytest.raises(PermissionDenied):
        ledger.open_voting(voter_session, demo_election.id)
    with pytest.raises(PermissionDenied):
        ledger.list_voters(voter_session)
    with pytest.raises(NotAuthenticated):
        ledger.create_election(None, "Anon", "", ["X"])


def test_create_election_validation(ledger, admin_session):
    with pytest.raises(ValidationError):
        ledger.create_election(admin_session, "Empty", "", [])
    with pytest.raises(ValidationError):
        ledger.create_election(admin_session, "", "", ["A"])
    assert len(ledger.state.elections) == 0


def test_transition_to_phase_names(ledger, admin_session, demo_election):
    ledger.transition_to(admin_session, demo_election.id, "registration_open")
    assert demo_election.phase is Phase.REGISTRATION_OPEN
    ledger.transition_to(admin_session, str(demo_election.id), Phase.VOTING_OPEN)
    with pytest.raises(InvalidPhase):
        ledger.transition_to(admin_session, demo_election.id, "TALLY_COMPLETE")
    with pytest.raises(ValidationError):
        ledger.transition_to(admin_session, demo_election.id, "CREATED")
    with pytest.raises(ValidationError):
        ledger.transition_to(admin_session, demo_election.id, "paused")
    ledger.close_voting(admin_session, demo_election.id)
    ledger.complete_tally(admin_session, demo_election.id)
    assert demo_election.phase is Phase.TALLY_COMPLETE


def test_cast_vote_phase_gate(ledger, voter_session, demo_election):
    with pytest.raises(InvalidPhase):
        ledger.cast_vote(voter_session, demo_election.id, 0)
    assert len(ledger.state.votes) == 0
    with pytest.raises(NotFoundError):
        ledger.cast_vote(voter_session, 99, 0)
    with pytest.raises(ValidationError):
        ledger.cast_vote(voter_session, "abc", 0)


def test_has_voted_and_vote_listing(ledger, admin_session, voter_session, demo_election):
    ledger.open_voting(admin_session, demo_election.id)
    assert ledger.has_voted(voter_session, demo_election.id) is False
    ledger.cast_vote(voter_session, demo_election.id, 2)
    assert ledger.has_voted(voter_session, demo_election.id) is True
    votes = ledger.votes_for_election(admin_session, demo_election.id)
    assert [v.choice for v in votes] == [2]
    with pytest.raises(PermissionDenied):
        ledger.votes_for_election(voter_session, demo_election.id)


def test_set_manifesto(ledger, admin_session, demo_election):
    ledger.set_manifesto(admin_session, demo_election.id, "A", "<script>x()</script>Lower taxes")
    assert demo_election.manifestos == {"A": "Lower taxes"}
    with pytest.raises(NotFoundError):
        ledger.set_manifesto(admin_session, demo_election.id, "Z", "text")


def test_every_mutation_is_saved(ledger, admin_session, demo_election, data_dir):
    state = LedgerStorage(data_dir).load()
    assert [e.title for e in state.elections] == ["Demo"]
    assert len(state.voters) == 2


def test_failed_autosave_keeps_mutation(ledger, admin_session, voter_session, demo_election,
                                        monkeypatch, caplog):
    ledger.open_voting(admin_session, demo_election.id)

    def disk_full(self, state):
        raise ResourceError("disk full")

    monkeypatch.setattr(LedgerStorage, "save", disk_full)
    vote = ledger.cast_vote(voter_session, demo_election.id, 0)
    assert ledger.state.votes.get(vote.id) is vote
    assert isinstance(ledger.last_save_error, ResourceError)
    assert "autosave failed" in caplog.text

    with pytest.raises(ResourceError):
        ledger.save()
    monkeypatch.undo()
    ledger.save()
    assert ledger.last_save_error is None
    assert len(LedgerStorage(ledger.data_dir).load().votes) == 1


def test_save_without_directory():
    with pytest.raises(ValidationError):
        ElectionLedger(autosave=False).save()


def test_load_drops_sessions(ledger, voter_session):
    ledger.load()
    with pytest.raises(NotAuthenticated):
        ledger.current_voter(voter_session)


def test_context_manager_saves_and_flushes(data_dir, password_service, tmp_path):
    audit = AuditLogger(log_dir=str(tmp_path / "logs"), buffered=True)
    with ElectionLedger(data_dir=data_dir, password_service=password_service,
                        audit_logger=audit) as ledger:
        ledger.load()
        ledger.register("Voter", "v@x.com", "pw")
        assert audit.pending
    assert not audit.pending
    assert os.path.exists(os.path.join(data_dir, "voters.csv"))


def test_audit_trail_records_ledger_events(data_dir, password_service, tmp_path):
    audit = AuditLogger(log_dir=str(tmp_path / "logs"))
    ledger = ElectionLedger(data_dir=data_dir, password_service=password_service,
                            audit_logger=audit)
    ledger.register("Admin", "a@x.com", "pw", "admin")
    ledger.register("Voter", "v@x.com", "pw")
    admin = ledger.login("a@x.com", "pw", admin_pin="1234")
    voter = ledger.login("v@x.com", "pw")
    election = ledger.create_election(admin, "Demo", "", ["A", "B"])
    ledger.open_voting(admin, election.id)
    ledger.cast_vote(voter, election.id, 0)
    with pytest.raises(AlreadyVoted):
        ledger.cast_vote(voter, election.id, 1)

    with open(audit.log_file) as f:
        events = [json.loads(line)['event_type'] for line in f]
    assert events == ['voter_registered', 'voter_registered', 'login_succeeded',
                      'login_succeeded', 'election_created', 'phase_changed',
                      'vote_cast', 'vote_rejected']
    assert audit.verify_log_integrity() is True


def test_candidate_surveys(ledger, admin_session, voter_session, demo_election, data_dir):
    survey = ledger.create_survey(admin_session, demo_election.id, "A", "<b>Trust</b> A?")
    with pytest.raises(PermissionDenied):
        ledger.create_survey(voter_session, demo_election.id, "A", "Mine?")
    with pytest.raises(NotFoundError):
        ledger.create_survey(admin_session, demo_election.id, "Z", "Who?")
    with pytest.raises(ValidationError, match="Question is required"):
        ledger.create_survey(admin_session, demo_election.id, "A", "  ")

    # surveys run in any phase
    assert demo_election.phase is Phase.CREATED
    ledger.respond_to_survey(voter_session, survey.id, 5, "<script>x()</script>great")
    ledger.respond_to_survey(admin_session, str(survey.id), 2)
    with pytest.raises(AlreadyResponded):
        ledger.respond_to_survey(voter_session, survey.id, 1)
    with pytest.raises(NotFoundError):
        ledger.respond_to_survey(voter_session, 99, 1)
    with pytest.raises(NotAuthenticated):
        ledger.respond_to_survey(None, survey.id, 1)

    assert [r.comment for r in survey.responses] == ["great", ""]
    assert survey.to_dict()['average_rating'] == "3.50"
    assert ledger.surveys_for_election(demo_election.id) == [survey]
    assert ledger.list_surveys(voter_session) == [survey]
    assert len(LedgerStorage(data_dir).load().surveys.get(survey.id).responses) == 2


def test_aggregate_vote_exports_from_facade(ledger, admin_session, voter_session,
                                            demo_election, tmp_path):
    ledger.open_voting(admin_session, demo_election.id)
    ledger.cast_vote(voter_session, demo_election.id, 2)
    path = str(tmp_path / "votes.csv")
    assert ledger.export_votes_csv(path) == 1
    totals = ElectionLedger.aggregate_vote_exports([path, path])
    assert totals == {(demo_election.id, 2): 2}
