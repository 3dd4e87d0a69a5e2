# Vault - Group Tree Manager
#
# Owns the folder hierarchy on top of the entity store:
#   - create / update / list groups
#   - ancestor chain (breadcrumbs) and recursive descendants
#   - move groups and items, one re-sync per batch
#   - trash: soft delete re-parents under the trash root, hard delete
#     removes the subtree (store cascade) and purges the items filed in it
#
# Group lifecycle:
#   Active(parent=P) -> Active(parent=Trash)   soft delete
#   Active(parent=Trash) -> Deleted            hard delete
#   Active(parent=P) -> Active(parent=Q)       move
#
# The tree keeps a read-through snapshot of the groups table. It is
# eventually consistent with the store: `sync()` reloads it, mutations
# issued through this class re-sync, and callers never mutate it in place.

import logging
from collections import deque
from dataclasses import dataclass, field, fields, is_dataclass, replace
from typing import Any, Dict, Iterable, List, Mapping, Optional
from uuid import uuid4

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.audit_log import AuditLogger
from ..core.config import DEFAULT_TRASH_ID
from .entity_store import UNSET, EntityStore
from .exceptions import (
    ConstraintViolation,
    CycleDetected,
    NotFound,
    NotInitialized,
    VaultError,
)
from .models import Group, GroupMembership

logger = logging.getLogger(__name__)

TRASH_NAME = "Trash"
TRASH_ICON = "mdi:trash-outline"

_UPDATABLE_FIELDS = {"name", "description", "icon", "color", "order", "parent_id"}


@dataclass
class BatchResult:
    """Outcome of a multi-id operation. Each id succeeds or fails on its own."""
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, VaultError] = field(default_factory=dict)
    created: Dict[str, str] = field(default_factory=dict)  # source id -> new id

    @property
    def ok(self) -> bool:
        return not self.failed

    def raise_for_errors(self) -> None:
        """Re-raise the first recorded failure, if any."""
        for exc in self.failed.values():
            raise exc

    def to_dict(self) -> Dict[str, Any]:
        return {
            "succeeded": list(self.succeeded),
            "failed": {
                entity_id: {"error": type(exc).__name__, "message": str(exc)}
                for entity_id, exc in self.failed.items()
            },
            "created": dict(self.created),
        }


class GroupTree:
    """Group hierarchy manager.

    Usage::

        tree = GroupTree(store)
        work = tree.create(name="Work")
        tree.move([item_id], work.id)
        tree.soft_delete(work.id)        # now under the trash root
        tree.hard_delete(tree.trash_id)  # empty the trash
    """

    def __init__(
        self,
        store: EntityStore,
        trash_id: str = DEFAULT_TRASH_ID,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.trash_id = trash_id
        self.audit = audit or get_audit_logger()
        self._groups: Optional[List[Group]] = None

    # ── Snapshot cache ───────────────────────────────────────────────

    @property
    def groups(self) -> List[Group]:
        """Snapshot of all groups, loaded on first access."""
        if self._groups is None:
            self.sync()
        return list(self._groups)

    def sync(self) -> List[Group]:
        """Reload the snapshot from the store. A newer sync simply wins."""
        self._groups = self.store.select_groups()
        logger.debug("Group tree synced: %d groups", len(self._groups))
        return list(self._groups)

    def invalidate(self) -> None:
        self._groups = None

    # ── CRUD ─────────────────────────────────────────────────────────

    def create(self, group: Optional[Group] = None, **values: Any) -> Group:
        """Create a group, assigning a fresh id when none is given.

        Accepts either a Group or keyword fields (name=..., parent_id=...).

        Raises:
            ConstraintViolation: parent_id names no group, or the id is taken.
        """
        if group is None:
            group = Group(id=values.pop("id", None) or "", **values)
        if not group.id:
            group.id = str(uuid4())

        if group.parent_id is not None and self.store.select_group(group.parent_id) is None:
            raise ConstraintViolation(f"Parent group {group.parent_id} does not exist")

        self.store.insert_group(group)
        self.sync()

        self.audit.log_vault_event(
            EventType.GROUP_CREATED,
            f"group created: {group.name}",
            details={"group_id": group.id, "parent_id": group.parent_id},
        )
        return group

    def get(self, group_id: str) -> Optional[Group]:
        return self.store.select_group(group_id)

    def require(self, group_id: str) -> Group:
        group = self.store.select_group(group_id)
        if group is None:
            raise NotFound(f"Group {group_id} not found")
        return group

    def list(self, parent_id: Any = UNSET) -> List[Group]:
        """List groups: all (default), roots (None) or children of an id."""
        return self.store.select_groups(parent_id=parent_id)

    def update(self, group_id: str, **changes: Any) -> Group:
        """Rename, recolor, re-order or re-parent a group.

        Raises:
            NotFound: The group does not exist.
            ConstraintViolation: The new parent does not exist.
            CycleDetected: The new parent is the group or one of its descendants.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown group fields: {', '.join(sorted(unknown))}")

        group = self.require(group_id)
        if "parent_id" in changes and changes["parent_id"] != group.parent_id:
            self._check_reparent(group_id, changes["parent_id"])

        updated = replace(group, **changes)
        self.store.update_group(updated)
        self.sync()

        self.audit.log_vault_event(
            EventType.GROUP_UPDATED,
            f"group updated: {updated.name}",
            details={"group_id": group_id, "fields": sorted(changes)},
        )
        return updated

    # ── Traversal ────────────────────────────────────────────────────

    def ancestor_chain(self, group_id: Optional[str]) -> List[Group]:
        """Root-first chain of groups ending with ``group_id`` itself.

        Walks parent links over the snapshot. Unknown ids yield [].

        Raises:
            CycleDetected: The parent links loop back on themselves.
        """
        by_id = {g.id: g for g in self.groups}
        chain: List[Group] = []
        seen = set()
        current = by_id.get(group_id) if group_id else None
        while current is not None:
            if current.id in seen:
                raise CycleDetected(
                    f"Group {current.id} revisited while walking ancestors of {group_id}",
                    group_id=current.id,
                )
            seen.add(current.id)
            chain.append(current)
            current = by_id.get(current.parent_id) if current.parent_id else None
        chain.reverse()
        return chain

    def descendants_recursive(self, group_id: str) -> List[Group]:
        """Every group below ``group_id``, breadth-first, each visited once."""
        visited = {group_id}
        result: List[Group] = []
        frontier = deque([group_id])
        while frontier:
            parent = frontier.popleft()
            for child in self.store.select_groups(parent_id=parent):
                if child.id in visited:
                    logger.warning("Group %s reached twice below %s", child.id, group_id)
                    continue
                visited.add(child.id)
                result.append(child)
                frontier.append(child.id)
        return result

    def memberships(self, group_id: Optional[str] = None) -> List[GroupMembership]:
        """Item memberships of a group; None lists unfiled items."""
        return self.store.select_memberships(group_id=group_id)

    def in_trash(self, group_id: str) -> bool:
        return any(g.id == self.trash_id for g in self.ancestor_chain(group_id))

    # ── Move ─────────────────────────────────────────────────────────

    def move(
        self,
        ids: Iterable[str],
        target_group_id: Optional[str] = None,
        strict: bool = True,
    ) -> BatchResult:
        """Move groups and items under ``target_group_id`` (None = root/unfiled).

        Groups are re-parented, items get their membership retargeted. Ids
        are processed one by one; a failure is recorded for that id and the
        rest still run. One re-sync follows the batch.

        Raises:
            ConstraintViolation: The target group does not exist.
            NotInitialized: The store is unavailable.
            VaultError: With ``strict``, the first per-id failure after the batch.
        """
        if target_group_id is not None and self.store.select_group(target_group_id) is None:
            raise ConstraintViolation(f"Target group {target_group_id} does not exist")

        self.sync()
        result = BatchResult()

        for entity_id in ids:
            try:
                group = self._cached(entity_id)
                if group is not None:
                    self._move_group(group, target_group_id)
                else:
                    self._move_item(entity_id, target_group_id)
                result.succeeded.append(entity_id)
            except NotInitialized:
                raise
            except VaultError as exc:
                self.record_failure(result, "move", entity_id, exc)

        self.sync()
        if strict:
            result.raise_for_errors()
        return result

    def _move_group(self, group: Group, target_group_id: Optional[str]) -> None:
        if group.parent_id == target_group_id:
            return
        self._check_reparent(group.id, target_group_id)

        moved = replace(group, parent_id=target_group_id)
        self.store.update_group(moved)
        self._groups = [moved if g.id == moved.id else g for g in self._groups]

        self.audit.log_vault_event(
            EventType.GROUP_MOVED,
            f"group moved: {group.name}",
            details={"group_id": group.id, "from": group.parent_id, "to": target_group_id},
        )

    def _move_item(self, item_id: str, target_group_id: Optional[str]) -> None:
        if self.store.select_item(item_id) is None:
            raise NotFound(f"No group or item with id {item_id}")
        if not self.store.update_membership(item_id, target_group_id):
            self.store.insert_membership(GroupMembership(item_id, target_group_id))

        self.audit.log_vault_event(
            EventType.ITEM_MOVED,
            "item moved",
            details={"item_id": item_id, "to": target_group_id},
        )

    def _check_reparent(self, group_id: str, new_parent_id: Optional[str]) -> None:
        if new_parent_id is None:
            return
        if group_id == self.trash_id:
            raise ConstraintViolation(f"Trash root {group_id} must stay at the top level")
        if new_parent_id == group_id:
            raise CycleDetected(f"Group {group_id} cannot be its own parent", group_id=group_id)
        if self.store.select_group(new_parent_id) is None:
            raise ConstraintViolation(f"Parent group {new_parent_id} does not exist")
        if self._groups is None or self._cached(new_parent_id) is None:
            self.sync()
        if any(g.id == group_id for g in self.ancestor_chain(new_parent_id)):
            raise CycleDetected(
                f"Group {new_parent_id} is inside {group_id}; move would create a cycle",
                group_id=group_id,
            )

    # ── Trash / delete ───────────────────────────────────────────────

    def ensure_trash(self) -> Group:
        """Return the trash root, creating it on first use."""
        trash = self.store.select_group(self.trash_id)
        if trash is not None:
            return trash

        trash = Group(id=self.trash_id, name=TRASH_NAME, icon=TRASH_ICON, parent_id=None)
        self.store.insert_group(trash)
        self.sync()
        self.audit.log_vault_event(
            EventType.TRASH_CREATED, "trash created", details={"group_id": self.trash_id}
        )
        return trash

    def soft_delete(self, group_id: str) -> Optional[Group]:
        """Move a group under the trash root.

        Soft-deleting the trash root empties it. A group already inside the
        trash is left where it is.
        """
        if group_id == self.trash_id:
            self.hard_delete(group_id)
            return None

        group = self.require(group_id)
        self.sync()
        if self.in_trash(group_id):
            logger.debug("Group %s already in trash", group_id)
            return group

        trash = self.ensure_trash()
        self._check_reparent(group_id, trash.id)
        trashed = replace(group, parent_id=trash.id)
        self.store.update_group(trashed)
        self.sync()

        self.audit.log_vault_event(
            EventType.GROUP_TRASHED,
            f"group moved to trash: {group.name}",
            details={"group_id": group_id, "from": group.parent_id},
        )
        return trashed

    def hard_delete(self, group_id: str) -> bool:
        """Delete a group for good. Returns False if it did not exist.

        The store cascades descendant groups and their memberships; the
        items that were filed anywhere in the subtree are purged after.
        """
        if self.store.select_group(group_id) is None:
            return False

        subtree = [group_id] + [g.id for g in self.descendants_recursive(group_id)]
        item_ids = [
            m.item_id
            for gid in subtree
            for m in self.store.select_memberships(group_id=gid)
        ]

        deleted = self.store.delete_group(group_id)
        for item_id in item_ids:
            self.store.delete_item(item_id)
        self.sync()

        self.audit.log_event(
            event_type=EventType.GROUP_DELETED,
            severity=EventSeverity.ALERT,
            message="Vault: group deleted permanently",
            details={
                "group_id": group_id,
                "groups_removed": len(subtree),
                "items_removed": len(item_ids),
            },
        )
        return deleted

    def delete(self, group_id: str, final: bool = False) -> bool:
        """Soft delete by default; ``final`` (or the trash root) hard-deletes."""
        if final or group_id == self.trash_id:
            return self.hard_delete(group_id)
        self.soft_delete(group_id)
        return True

    def record_failure(
        self, result: BatchResult, operation: str, entity_id: str, exc: VaultError
    ) -> None:
        """Record one failed id of a batch, log it and audit it."""
        result.failed[entity_id] = exc
        logger.warning("%s failed for %s: %s", operation, entity_id, exc)
        self.audit.log_event(
            event_type=EventType.BATCH_FAILURE,
            severity=EventSeverity.INVESTIGATE,
            message=f"Vault: {operation} failed for one id",
            details={"id": entity_id, "error": type(exc).__name__},
        )

    # ── Internal ─────────────────────────────────────────────────────

    def _cached(self, group_id: str) -> Optional[Group]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None


# ── Snapshot comparison ──────────────────────────────────────────────


def _record_fields(value: Any) -> Optional[Dict[str, Any]]:
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: getattr(value, f.name) for f in fields(value)}
    if isinstance(value, Mapping):
        return dict(value)
    return None


def _same_value(a: Any, b: Any) -> bool:
    # Nested containers compare by identity only.
    if isinstance(a, (list, tuple, dict, set)) or isinstance(b, (list, tuple, dict, set)):
        return a is b
    return a == b


def _shallow_equal(a: Any, b: Any) -> bool:
    if a is b:
        return True
    fa, fb = _record_fields(a), _record_fields(b)
    if fa is None or fb is None:
        return fa is None and fb is None and _same_value(a, b)
    if fa.keys() != fb.keys():
        return False
    return all(_same_value(fa[key], fb[key]) for key in fa)


def are_hierarchies_equivalent(a: Any, b: Any) -> bool:
    """Shallow equality of two group snapshots or two snapshot sequences.

    Used to skip redundant refreshes: sequences must have the same length
    and pairwise-equal records; records compare field by field.
    """
    if a is None and b is None:
        return True
    if a is None or b is None:
        return False

    a_seq = isinstance(a, (list, tuple))
    b_seq = isinstance(b, (list, tuple))
    if a_seq != b_seq:
        return False
    if a_seq:
        return len(a) == len(b) and all(_shallow_equal(x, y) for x, y in zip(a, b))
    return _shallow_equal(a, b)
