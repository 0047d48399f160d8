import csv
import os

import pytest

from election_ledger.database.models import Phase, Role
from election_ledger.database.storage import TABLES, LedgerStorage
from election_ledger.errors import ResourceError
from election_ledger.ledger import DEFAULT_ADMIN_EMAIL, ElectionLedger


def write_table(directory, table, rows, header=None):
    os.makedirs(directory, exist_ok=True)
    with open(os.path.join(directory, f"{table}.csv"), "w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(header or TABLES[table])
        writer.writerows(rows)


def snapshot(state):
    return (
        [v.__dict__.copy() for v in state.voters],
        [e.__dict__.copy() for e in state.elections],
        [v.to_dict() for v in state.votes],
        [s.__dict__.copy() for s in state.surveys],
        state.counters(),
    )


def test_reload_reproduces_state(ledger, admin_session, voter_session, data_dir, password_service):
    election = ledger.create_election(admin_session, "Demo", "desc, with \"quotes\"", ["A", "B"])
    ledger.set_manifesto(admin_session, election.id, "A", "Line one\nline two")
    ledger.open_voting(admin_session, election.id)
    ledger.cast_vote(voter_session, election.id, 1)
    survey = ledger.create_survey(admin_session, election.id, "B", "Rate B, honestly?")
    ledger.respond_to_survey(voter_session, survey.id, 4, "fine, \"mostly\"")
    ledger.save()

    fresh = ElectionLedger(data_dir=data_dir, password_service=password_service)
    fresh.load()
    assert snapshot(fresh.state) == snapshot(ledger.state)
    assert fresh.get_election(election.id).phase is Phase.VOTING_OPEN
    assert fresh.state.has_voter_responded(survey.id, voter_session.voter_id)


def test_load_empty_directory_creates_default_admin(data_dir, password_service):
    ledger = ElectionLedger(data_dir=data_dir, password_service=password_service)
    ledger.load()
    admin = ledger.state.find_voter_by_email(DEFAULT_ADMIN_EMAIL)
    assert admin is not None and admin.role is Role.ADMIN
    # the bootstrap admin is written straight away
    assert os.path.exists(os.path.join(data_dir, "voters.csv"))

    again = ElectionLedger(data_dir=data_dir, password_service=password_service)
    again.load()
    assert len(again.state.voters) == 1
    assert again.login(DEFAULT_ADMIN_EMAIL, "admin", admin_pin="1234").voter_id == admin.id


def test_default_admin_is_stable_without_autosave(data_dir, password_service):
    first = ElectionLedger(data_dir=data_dir, password_service=password_service, autosave=False)
    first.load()
    second = ElectionLedger(data_dir=data_dir, password_service=password_service, autosave=False)
    second.load()
    assert second.state.voters.get(1).__dict__ == first.state.voters.get(1).__dict__
    assert len(second.state.voters) == 1


def test_unsaved_default_admin_is_reported(tmp_path, password_service, caplog):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file in the way")
    ledger = ElectionLedger(data_dir=str(blocker / "data"), password_service=password_service)
    ledger.load()
    assert ledger.state.admin_exists
    assert isinstance(ledger.last_save_error, ResourceError)
    assert "Default admin was not saved" in caplog.text


def test_next_id_follows_max_even_out_of_order(data_dir, password_service):
    write_table(data_dir, "voters", [
        [3, "C", "c@x.com", "voter", "h", "true", ""],
        [1, "A", "a@x.com", "admin", "h", "true", ""],
        [2, "B", "b@x.com", "voter", "h", "true", ""],
    ])
    ledger = ElectionLedger(data_dir=data_dir, password_service=password_service)
    ledger.load()
    voter = ledger.register("D", "d@x.com", "pw")
    assert voter.id == 4


def test_malformed_rows_are_skipped(data_dir, password_service, caplog):
    write_table(data_dir, "voters", [
        [1, "A", "a@x.com", "admin", "h", "true", ""],
        ["abc", "B", "b@x.com", "voter", "h", "true", ""],
        [7, "Bad role", "bad@x.com", "superuser", "h", "true", ""],
        [2, "short row"],
    ])
    write_table(data_dir, "elections", [
        [1, "E", "", '["A","B"]', "{}", "VOTING_OPEN", "", "", ""],
        [2, "Broken", "", "not json", "{}", "CREATED", "", "", ""],
    ])
    write_table(data_dir, "votes", [
        [1, 1, 1, 0, ""],
        [2, 1, 1, 1, ""],
        [3, 1, 99, 0, ""],
        [4, 1, 1, 5, ""],
    ])
    ledger = ElectionLedger(data_dir=data_dir, password_service=password_service)
    ledger.load()

    assert [v.id for v in ledger.state.voters] == [1]
    assert [e.id for e in ledger.state.elections] == [1]
    assert [v.id for v in ledger.state.votes] == [1]
    assert "Skipping" in caplog.text
    # ids of dropped rows that still parsed are never handed out again
    assert ledger.state.voters.next_id == 8
    assert ledger.state.elections.next_id == 3
    assert ledger.state.votes.next_id == 5


def test_table_with_bad_header_is_ignored(data_dir, password_service):
    write_table(data_dir, "votes", [[1, 1, 1, 0, ""]], header=["id", "who"])
    state = LedgerStorage(data_dir).load()
    assert len(state.votes) == 0


def test_persisted_counters_are_restored(data_dir, password_service):
    write_table(data_dir, "voters", [[1, "A", "a@x.com", "admin", "h", "true", ""]])
    write_table(data_dir, "state", [["true", "9999", 10, 4, 20, 6]])
    state = LedgerStorage(data_dir).load()
    assert state.counters() == {'next_voter_id': 10, 'next_election_id': 4,
                                'next_vote_id': 20, 'next_survey_id': 6}
    assert state.admin_pin == "9999"


def test_save_failure_raises_resource_error(tmp_path):
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("file in the way")
    with pytest.raises(ResourceError):
        LedgerStorage(str(blocker / "data")).save(ElectionLedger().state)


def test_row_with_invalid_utf8_is_skipped(data_dir, caplog):
    write_table(data_dir, "voters", [])
    with open(os.path.join(data_dir, "voters.csv"), "ab") as f:
        f.write(b"1,A,a@x.com,admin,h,true,\n")
        f.write(b"2,B\xff\xfe,b@x.com,voter,h,true,\n")
        f.write(b"3,C,c@x.com,voter,h,true,\n")
    state = LedgerStorage(data_dir).load()
    assert [v.id for v in state.voters] == [1, 3]
    assert "invalid UTF-8" in caplog.text


def test_oversized_field_does_not_abort_load(data_dir, caplog):
    write_table(data_dir, "voters", [
        [1, "A", "a@x.com", "admin", "h", "true", ""],
        [2, "B" * 200000, "b@x.com", "voter", "h", "true", ""],
        [3, "C", "c@x.com", "voter", "h", "true", ""],
    ])
    state = LedgerStorage(data_dir).load()
    assert [v.id for v in state.voters] == [1, 3]
    assert "field larger than field limit" in caplog.text


def test_state_table_without_survey_counter_still_loads(data_dir):
    write_table(data_dir, "state", [["true", "9999", 10, 4, 20]],
                header=TABLES["state"][:-1])
    state = LedgerStorage(data_dir).load()
    assert state.admin_pin == "9999"
    assert state.counters()['next_voter_id'] == 10
    assert state.counters()['next_survey_id'] == 1


def test_malformed_survey_rows(data_dir, caplog):
    write_table(data_dir, "voters", [
        [1, "A", "a@x.com", "admin", "h", "true", ""],
        [2, "B", "b@x.com", "voter", "h", "true", ""],
    ])
    write_table(data_dir, "elections", [[1, "E", "", '["A","B"]', "{}", "VOTING_OPEN", "", "", ""]])
    responses = ('[{"voter_id": 2, "rating": 5, "comment": "", "timestamp": null},'
                 ' {"voter_id": 2, "rating": 1, "comment": "", "timestamp": null},'
                 ' {"voter_id": 99, "rating": 3, "comment": "", "timestamp": null}]')
    write_table(data_dir, "surveys", [
        [1, 1, "A", "q", responses, ""],
        [2, 1, "Z", "unknown candidate", "[]", ""],
        [3, 7, "A", "unknown election", "[]", ""],
        [4, 1, "B", "bad json", "{not json", ""],
        [5, 1, "B", "bad rating", '[{"voter_id": 2, "rating": 9}]', ""],
    ])
    state = LedgerStorage(data_dir).load()

    assert [s.id for s in state.surveys] == [1]
    survey = state.surveys.get(1)
    # the repeated and the orphaned response are dropped, the first one stays
    assert [(r.voter_id, r.rating) for r in survey.responses] == [(2, 5)]
    assert state.has_voter_responded(1, 2)
    assert state.surveys.next_id == 6
    assert "Dropping survey 1 response" in caplog.text
