# Vault Module - Group Hierarchy and Reference Resolution
#
# - EntityStore: SQLite persistence of groups, items, memberships, attachments
# - GroupTree: folder hierarchy, moves, trash
# - ReferenceResolver: {REF:...} tokens resolved at read time
# - CloneOrchestrator: duplicate groups and items

from .cloning import CloneOptions, CloneOrchestrator
from .entity_store import UNSET, EntityStore
from .exceptions import (
    ConstraintViolation,
    CycleDetected,
    NotFound,
    NotInitialized,
    RecursionLimitExceeded,
    VaultError,
)
from .group_tree import BatchResult, GroupTree, are_hierarchies_equivalent
from .models import Attachment, Group, GroupMembership, ItemDetails, KeyValue
from .references import (
    GroupField,
    ItemField,
    Reference,
    ReferenceResolver,
    ReferenceTarget,
    Resolution,
    make_reference,
)

__all__ = [
    # Store
    "EntityStore",
    "UNSET",
    # Models
    "Attachment",
    "Group",
    "GroupMembership",
    "ItemDetails",
    "KeyValue",
    # Hierarchy
    "BatchResult",
    "GroupTree",
    "are_hierarchies_equivalent",
    # References
    "GroupField",
    "ItemField",
    "Reference",
    "ReferenceResolver",
    "ReferenceTarget",
    "Resolution",
    "make_reference",
    # Cloning
    "CloneOptions",
    "CloneOrchestrator",
    # Errors
    "VaultError",
    "NotInitialized",
    "ConstraintViolation",
    "NotFound",
    "CycleDetected",
    "RecursionLimitExceeded",
]
