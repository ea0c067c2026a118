"""
Shared pytest fixtures for the accvault test suite.

The autouse fixture redirects the global AuditLogger to a temp directory so
tests never write into the real ``./audit_logs/``.
"""

import pytest

from accvault.auth.service import AuthService
from accvault.config import VaultSettings
from accvault.storage.database import VaultDatabase

# Cheap costs keep the suite fast; production defaults are tested separately
TEST_KDF_ITERATIONS = 1_000
TEST_HASH_ITERATIONS = 1_000


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path):
    """Point the audit logger singleton at a per-test directory."""
    import accvault.core.audit_log as audit_mod

    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = audit_mod.AuditLogger(log_dir=tmp_path / "audit_logs")

    yield audit_mod._audit_logger

    audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture
def audit_logger(_isolate_audit_logs):
    return _isolate_audit_logs


@pytest.fixture
def settings(tmp_path):
    return VaultSettings(
        db_path=tmp_path / "vault.db",
        audit_log_dir=tmp_path / "audit_logs",
        client_kdf_iterations=TEST_KDF_ITERATIONS,
        server_hash_iterations=TEST_HASH_ITERATIONS,
        app_base_url="https://vault.example.com",
    )


@pytest.fixture
def db(settings):
    return VaultDatabase(settings.db_path)


@pytest.fixture
def auth(db, settings):
    return AuthService(db, settings=settings)


@pytest.fixture
def admin(auth):
    return auth.setup_admin("admin", "admin@example.com", "admin-password-123")


@pytest.fixture
def alice(auth, admin):
    return auth.register("alice", "alice@example.com", "alice-password-1")


@pytest.fixture
def bob(auth, admin):
    return auth.register("bob", "bob@example.com", "bob-password-12")


class FakeClock:
    """Manually advanced epoch-seconds clock."""

    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
