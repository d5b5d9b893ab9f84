"""Pytest configuration and fixtures."""

import pytest
from sqlalchemy.orm import sessionmaker

from snapsecure_api.container import SecurityContainer, build_container
from snapsecure_api.db.session import create_db_engine, create_session_factory, init_db
from snapsecure_api.settings import Settings


class FakeClock:
    """Manually advanced clock, usable for both wall and monotonic time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(tmp_path, **overrides) -> Settings:
    """Settings for tests: throwaway SQLite file and cheap key derivation."""
    values = dict(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path}/snapsecure-test.db",
        environment="test",
        encryption_key="test-encryption-key",
        master_encryption_key="test-master-key",
        key_derivation_iterations=1000,
        bcrypt_rounds=4,
        firewall_backend="memory",
        admin_api_key="test-admin-key",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def session_factory(settings) -> sessionmaker:
    """Session factory over a fresh database."""
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def monotonic() -> FakeClock:
    return FakeClock(start=1000.0)


@pytest.fixture
def container(settings, session_factory, clock, monotonic) -> SecurityContainer:
    """Fully wired services on the test database."""
    return build_container(settings, session_factory, clock=clock, monotonic=monotonic)


@pytest.fixture
def user(container):
    """A registered user."""
    result = container.accounts.register("alice", "alice@example.com", "correct-horse", "10.0.0.1")
    assert result.success, result.message
    return container.users.get_by_username("alice")
