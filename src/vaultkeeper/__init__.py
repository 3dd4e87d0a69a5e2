# Vaultkeeper - Main Package
#
# Group hierarchy and reference resolution for a secrets vault: folders of
# items with move/clone/trash semantics, and {REF:...} tokens resolved into
# live values at read time.

__version__ = "0.1.0"
__author__ = "Vaultkeeper Team"
__description__ = "Group hierarchy and reference resolution for a secrets vault"

from .core import (
    EventSeverity,
    EventType,
    get_audit_logger,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
]
