import pytest

from election_ledger.encryption.password_hashing import PasswordHashingService
from election_ledger.ledger import ElectionLedger


@pytest.fixture
def password_service():
    """Argon2 with the cheapest parameters so tests stay fast."""
    return PasswordHashingService(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path / "data")


@pytest.fixture
def empty_ledger(data_dir, password_service):
    """A ledger that has not loaded anything, so no admin exists yet."""
    return ElectionLedger(data_dir=data_dir, password_service=password_service)


@pytest.fixture
def ledger(empty_ledger):
    empty_ledger.register("Admin", "a@x.com", "pw", "admin")
    empty_ledger.register("Voter", "v@x.com", "pw")
    return empty_ledger


@pytest.fixture
def admin_session(ledger):
    return ledger.login("a@x.com", "pw", admin_pin="1234")


@pytest.fixture
def voter_session(ledger):
    return ledger.login("v@x.com", "pw")


@pytest.fixture
def demo_election(ledger, admin_session):
    return ledger.create_election(admin_session, "Demo", "", ["A", "B", "C"])
