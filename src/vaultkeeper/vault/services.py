# Vault - Service Wiring
#
# Builds the store, tree, resolver and cloner around one database and
# hands them out as a process-wide singleton for the API and CLI.

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from ..core import Settings, get_audit_logger, load_settings
from .cloning import CloneOrchestrator
from .entity_store import EntityStore
from .group_tree import GroupTree
from .references import ReferenceResolver

logger = logging.getLogger(__name__)


@dataclass
class VaultServices:
    settings: Settings
    store: EntityStore
    tree: GroupTree
    resolver: ReferenceResolver
    cloner: CloneOrchestrator

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "VaultServices":
        """Open (creating if needed) the database named by the settings."""
        settings = settings or load_settings()
        audit = get_audit_logger()

        store = EntityStore(settings.db_path)
        store.initialize()
        tree = GroupTree(store, trash_id=settings.trash_id, audit=audit)
        resolver = ReferenceResolver(
            store, max_depth=settings.max_reference_depth, audit=audit
        )
        cloner = CloneOrchestrator(store, tree, audit=audit)
        logger.info("Vault services ready (db=%s)", settings.db_path)
        return cls(settings, store, tree, resolver, cloner)

    def close(self) -> None:
        self.tree.invalidate()
        self.store.close()


_services: Optional[VaultServices] = None
_services_lock = threading.Lock()


def get_vault_services() -> VaultServices:
    """Get or create the global VaultServices singleton."""
    global _services
    if _services is None:
        with _services_lock:
            if _services is None:
                _services = VaultServices.from_settings()
    return _services


def set_vault_services(services: Optional[VaultServices]) -> None:
    """Install (or with None, drop) the global services, closing the old ones."""
    global _services
    with _services_lock:
        if _services is not None and _services is not services:
            _services.close()
        _services = services
