# Vault - Clone Orchestrator
#
# Duplicates groups and items into a target group.
#
#   group -> new group under the target; description, icon and color are
#            copied. Children come along only with CloneOptions(deep=True).
#   item  -> new item filed in the target with its custom fields. With
#            reference_credentials the username/password of the copy are
#            live references to the source item instead of copied secrets.
#            include_history duplicates attachment rows that point at the
#            same binary hash; the bytes are never copied.
#
# Batches are not transactional: each id succeeds or fails on its own and
# the tree re-syncs once at the end.

import logging
from dataclasses import dataclass, replace
from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from ..core import EventType, get_audit_logger
from ..core.audit_log import AuditLogger
from .entity_store import EntityStore
from .exceptions import ConstraintViolation, NotFound, NotInitialized, VaultError
from .group_tree import BatchResult, GroupTree
from .models import Attachment, Group, KeyValue
from .references import ItemField, ReferenceTarget, make_reference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CloneOptions:
    include_history: bool = False
    reference_credentials: bool = True
    title_suffix: Optional[str] = None   # Appended to names/titles with a space
    deep: bool = False                   # Copy child groups and their items too


def with_suffix(text: Optional[str], suffix: Optional[str]) -> str:
    text = text or ""
    return f"{text} {suffix}" if suffix else text


class CloneOrchestrator:
    """Clones groups and items.

    Usage::

        cloner = CloneOrchestrator(store, tree)
        result = cloner.clone_many([item_id], target_group_id=work.id,
                                   options=CloneOptions(title_suffix="(copy)"))
        new_id = result.created[item_id]
    """

    def __init__(
        self,
        store: EntityStore,
        tree: GroupTree,
        audit: Optional[AuditLogger] = None,
    ):
        self.store = store
        self.tree = tree
        self.audit = audit or get_audit_logger()

    def clone_many(
        self,
        ids: Iterable[str],
        target_group_id: Optional[str] = None,
        options: Optional[CloneOptions] = None,
        strict: bool = False,
    ) -> BatchResult:
        """Clone each id into ``target_group_id`` (None = root/unfiled).

        Returns a BatchResult whose ``created`` maps source id to new id.

        Raises:
            ConstraintViolation: The target group does not exist.
            NotInitialized: The store is unavailable.
            VaultError: With ``strict``, the first per-id failure after the batch.
        """
        options = options or CloneOptions()
        if target_group_id is not None and self.store.select_group(target_group_id) is None:
            raise ConstraintViolation(f"Target group {target_group_id} does not exist")

        result = BatchResult()
        for source_id in ids:
            try:
                group = self.store.select_group(source_id)
                if group is not None:
                    new_id = self.clone_group(group, target_group_id, options, result)
                else:
                    new_id = self.clone_item(
                        source_id, target_group_id, options, options.title_suffix
                    )
                result.succeeded.append(source_id)
                result.created[source_id] = new_id
            except NotInitialized:
                raise
            except VaultError as exc:
                self.tree.record_failure(result, "clone", source_id, exc)

        self.tree.sync()
        if strict:
            result.raise_for_errors()
        return result

    def clone_group(
        self,
        group: Group,
        target_group_id: Optional[str],
        options: CloneOptions,
        result: Optional[BatchResult] = None,
    ) -> str:
        """Copy one group under the target; returns the new group id.

        The new root is entered in ``result.created`` as soon as it is
        written, so a deep copy that fails halfway still points at the
        partial clone.
        """
        # The subtree is captured before anything is written, so cloning a
        # group into its own descendant does not pick up the copy.
        plan: List[Group] = self.tree.descendants_recursive(group.id) if options.deep else []
        filed: Dict[str, List[str]] = {}
        if options.deep:
            for source in [group] + plan:
                filed[source.id] = [
                    m.item_id for m in self.store.select_memberships(group_id=source.id)
                ]

        clone = Group(
            id=str(uuid4()),
            name=with_suffix(group.name, options.title_suffix),
            parent_id=target_group_id,
            description=group.description,
            icon=group.icon,
            color=group.color,
        )
        self.store.insert_group(clone)
        if result is not None:
            result.created[group.id] = clone.id

        if options.deep:
            new_ids = {group.id: clone.id}
            for child in plan:
                if child.parent_id not in new_ids:
                    logger.warning("Skipping %s: parent not cloned", child.id)
                    continue
                copy = Group(
                    id=str(uuid4()),
                    name=child.name,
                    parent_id=new_ids[child.parent_id],
                    description=child.description,
                    icon=child.icon,
                    color=child.color,
                    order=child.order,
                )
                self.store.insert_group(copy)
                new_ids[child.id] = copy.id
            for source_id, item_ids in filed.items():
                if source_id not in new_ids:
                    continue
                for item_id in item_ids:
                    self.clone_item(item_id, new_ids[source_id], options, None)

        self.audit.log_vault_event(
            EventType.GROUP_CLONED,
            f"group cloned: {group.name}",
            details={
                "source_id": group.id,
                "group_id": clone.id,
                "parent_id": target_group_id,
                "deep": options.deep,
            },
        )
        return clone.id

    def clone_item(
        self,
        item_id: str,
        target_group_id: Optional[str],
        options: CloneOptions,
        suffix: Optional[str] = None,
    ) -> str:
        """Copy one item into the target group; returns the new item id.

        Raises:
            NotFound: No group or item has this id.
        """
        item = self.store.select_item(item_id)
        if item is None:
            raise NotFound(f"No group or item with id {item_id}")

        new_id = str(uuid4())
        username, password = item.username, item.password
        if options.reference_credentials:
            username = make_reference(ItemField.USERNAME, ReferenceTarget.ITEM, item.id)
            password = make_reference(ItemField.PASSWORD, ReferenceTarget.ITEM, item.id)

        clone = replace(
            item,
            id=new_id,
            title=with_suffix(item.title, suffix),
            username=username,
            password=password,
            created_at="",
            updated_at="",
        )
        key_values = [
            KeyValue(id=str(uuid4()), item_id=new_id, key=kv.key, value=kv.value)
            for kv in self.store.select_key_values(item.id)
        ]
        self.store.insert_item(clone, key_values, group_id=target_group_id)

        attachments = 0
        if options.include_history:
            for attachment in self.store.select_attachments(item.id):
                self.store.insert_attachment(
                    Attachment(
                        id=str(uuid4()),
                        item_id=new_id,
                        binary_hash=attachment.binary_hash,
                        file_name=attachment.file_name,
                    )
                )
                attachments += 1

        self.audit.log_vault_event(
            EventType.ITEM_CLONED,
            "item cloned",
            details={
                "source_id": item.id,
                "item_id": new_id,
                "group_id": target_group_id,
                "attachments": attachments,
                "referenced": options.reference_credentials,
            },
        )
        return new_id
