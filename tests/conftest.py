"""
Shared pytest fixtures for the Vaultkeeper test suite.

Autouse fixtures below isolate tests from live data:
  - Audit logger    -> temp directory  (no test events in ./audit_logs)
  - Vault services  -> reset per test  (no test groups in data/vault.db)
"""

import pytest

from vaultkeeper.vault import (
    CloneOrchestrator,
    EntityStore,
    GroupTree,
    ReferenceResolver,
)


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``./audit_logs/`` directory.
    """
    import vaultkeeper.core.audit_log as audit_mod

    # Reset the singleton so the next call to get_audit_logger() creates
    # a fresh instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    if audit_mod._audit_logger is not None:
        audit_mod._audit_logger.close()
    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_vault_services(monkeypatch):
    """Drop the global VaultServices singleton around every test.

    Tests that need the API wire their own services with
    ``set_vault_services`` or patch ``get_vault_services``.
    """
    import vaultkeeper.vault.services as services_mod

    old_services = services_mod._services
    services_mod._services = None

    yield

    if services_mod._services is not None:
        services_mod._services.close()
    services_mod._services = old_services


@pytest.fixture
def store(tmp_path):
    """An initialized EntityStore backed by a temporary database."""
    entity_store = EntityStore(tmp_path / "vault.db")
    entity_store.initialize()
    yield entity_store
    entity_store.close()


@pytest.fixture
def tree(store):
    return GroupTree(store)


@pytest.fixture
def resolver(store):
    return ReferenceResolver(store)


@pytest.fixture
def cloner(store, tree):
    return CloneOrchestrator(store, tree)
