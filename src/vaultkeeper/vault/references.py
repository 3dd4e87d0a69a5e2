# Vault - Reference Resolver
#
# Stored string fields may hold a reference token instead of a literal:
#
#   {REF:<FIELD>@ITEM:<uuid>}         standard item field
#   {REF:<FIELD>@GROUP:<uuid>}        group field
#   {REF:<KEY>@ITEM.EXTRA:<uuid>}     custom field (key/value) of an item
#
# FIELD and the type tag are case-insensitive. Only a value that is
# entirely one token is interpreted; anything else is a literal. Tokens
# are resolved at read time and nothing is written back.
#
# Resolution is total:
#   - unknown field, missing entity, empty custom field -> token unchanged
#   - a resolved value is resolved again (reference chaining)
#   - a revisited (type, id, field) or a chain deeper than max_depth stops
#     and returns the value reached so far with a RecursionLimitExceeded
#     marker; nothing is raised
#
# Only NotInitialized escapes: a missing store is the caller's problem.

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Optional, Tuple, Union

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.audit_log import AuditLogger
from ..core.config import DEFAULT_MAX_REFERENCE_DEPTH
from .entity_store import EntityStore
from .exceptions import NotFound, RecursionLimitExceeded

logger = logging.getLogger(__name__)

REFERENCE_PATTERN = re.compile(
    r"\{REF:([A-Z_]+)@(ITEM\.EXTRA|ITEM|GROUP):([a-f0-9-]+)\}",
    re.IGNORECASE,
)


class ReferenceTarget(str, Enum):
    ITEM = "ITEM"
    GROUP = "GROUP"
    ITEM_EXTRA = "ITEM.EXTRA"


class ItemField(str, Enum):
    """Referenceable item fields; values are ItemDetails attribute names."""
    TITLE = "title"
    USERNAME = "username"
    PASSWORD = "password"
    URL = "url"
    NOTE = "note"
    OTP = "otp_secret"
    TAGS = "tags"


class GroupField(str, Enum):
    """Referenceable group fields; values are Group attribute names."""
    NAME = "name"
    DESCRIPTION = "description"
    ICON = "icon"
    COLOR = "color"


ITEM_FIELD_TAGS: Dict[str, ItemField] = {
    "TITLE": ItemField.TITLE,
    "USERNAME": ItemField.USERNAME,
    "PASSWORD": ItemField.PASSWORD,
    "URL": ItemField.URL,
    "NOTE": ItemField.NOTE,
    "NOTES": ItemField.NOTE,
    "OTP": ItemField.OTP,
    "OTPSECRET": ItemField.OTP,
    "OTP_SECRET": ItemField.OTP,
    "TAGS": ItemField.TAGS,
}

GROUP_FIELD_TAGS: Dict[str, GroupField] = {
    "NAME": GroupField.NAME,
    "DESCRIPTION": GroupField.DESCRIPTION,
    "ICON": GroupField.ICON,
    "COLOR": GroupField.COLOR,
}

# Fields of an item that are materialized by resolve_item().
_DISPLAY_FIELDS = tuple(f.value for f in ItemField)

_MISSING = object()


@dataclass(frozen=True)
class Reference:
    """A parsed reference token."""
    field: str                # Upper-cased FIELD / custom key
    target: ReferenceTarget
    target_id: str

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Reference"]:
        """Parse a whole-value token; None for literals and partial matches."""
        if not value:
            return None
        match = REFERENCE_PATTERN.fullmatch(value)
        if match is None:
            return None
        field_tag, target, target_id = match.groups()
        return cls(field_tag.upper(), ReferenceTarget(target.upper()), target_id)

    @property
    def token(self) -> str:
        return make_reference(self.field, self.target, self.target_id)


def make_reference(
    field_tag: Union[str, Enum],
    target: Union[str, ReferenceTarget],
    target_id: str,
) -> str:
    """Build a canonical token, e.g. make_reference("USERNAME", "ITEM", id)."""
    tag = field_tag.name if isinstance(field_tag, Enum) else str(field_tag)
    target_tag = target.value if isinstance(target, ReferenceTarget) else str(target)
    return f"{{REF:{tag.upper()}@{target_tag.upper()}:{target_id}}}"


@dataclass(frozen=True)
class Resolution:
    """Result of resolving one raw value."""
    value: Optional[str]
    error: Optional[RecursionLimitExceeded] = None
    depth: int = 0

    @property
    def complete(self) -> bool:
        return self.error is None


class ReferenceResolver:
    """Read-time interpreter for reference tokens.

    Usage::

        resolver = ReferenceResolver(store, max_depth=10)
        resolver.resolve("{REF:USERNAME@ITEM:6f1c...}")   # -> "alice"
        resolver.resolve("plain text")                   # -> "plain text"
    """

    def __init__(
        self,
        store: EntityStore,
        max_depth: int = DEFAULT_MAX_REFERENCE_DEPTH,
        audit: Optional[AuditLogger] = None,
    ):
        if max_depth < 1:
            raise ValueError("max_depth must be at least 1")
        self.store = store
        self.max_depth = max_depth
        self.audit = audit or get_audit_logger()

    def resolve(self, raw: Optional[str]) -> Optional[str]:
        """Fully dereference ``raw``; never raises for malformed input."""
        return self.resolve_detailed(raw).value

    def resolve_detailed(self, raw: Optional[str]) -> Resolution:
        return self._resolve(raw, 0, frozenset())

    def resolve_item(self, item_id: str) -> Dict[str, Any]:
        """Item details and custom fields with every value resolved.

        Raises:
            NotFound: The item does not exist.
        """
        item = self.store.select_item(item_id)
        if item is None:
            raise NotFound(f"Item {item_id} not found")

        data = item.to_dict()
        for name in _DISPLAY_FIELDS:
            data[name] = self.resolve(data[name])
        data["key_values"] = [
            {"id": kv.id, "key": kv.key, "value": self.resolve(kv.value)}
            for kv in self.store.select_key_values(item_id)
        ]
        return data

    # ── Internal ─────────────────────────────────────────────────────

    def _resolve(
        self,
        value: Optional[str],
        depth: int,
        visited: FrozenSet[Tuple[ReferenceTarget, str, str]],
    ) -> Resolution:
        reference = Reference.parse(value)
        if reference is None:
            return Resolution(value, depth=depth)

        key = (reference.target, reference.target_id.lower(), reference.field)
        if key in visited:
            return self._cut(value, depth, "reference cycle")
        if depth >= self.max_depth:
            return self._cut(value, depth, f"reference chain deeper than {self.max_depth}")

        fetched = self._lookup(reference)
        if fetched is _MISSING:
            return Resolution(value, depth=depth)
        return self._resolve(fetched, depth + 1, visited | {key})

    def _lookup(self, reference: Reference) -> Any:
        """Field value behind a reference, or _MISSING when unresolvable."""
        if reference.target is ReferenceTarget.ITEM:
            item_field = ITEM_FIELD_TAGS.get(reference.field)
            if item_field is None:
                return _MISSING
            item = self.store.select_item(reference.target_id)
            if item is None:
                return _MISSING
            return getattr(item, item_field.value)

        if reference.target is ReferenceTarget.ITEM_EXTRA:
            for kv in self.store.select_key_values(reference.target_id):
                if kv.key and kv.key.upper() == reference.field:
                    return kv.value if kv.value else _MISSING
            return _MISSING

        group_field = GROUP_FIELD_TAGS.get(reference.field)
        if group_field is None:
            return _MISSING
        group = self.store.select_group(reference.target_id)
        if group is None:
            return _MISSING
        return getattr(group, group_field.value)

    def _cut(self, value: Optional[str], depth: int, reason: str) -> Resolution:
        marker = RecursionLimitExceeded(reason, depth=depth)
        logger.warning("Reference resolution stopped at depth %d: %s", depth, reason)
        self.audit.log_event(
            event_type=EventType.REFERENCE_LIMIT,
            severity=EventSeverity.INVESTIGATE,
            message=f"Vault: {reason}",
            details={"depth": depth},
        )
        return Resolution(value, error=marker, depth=depth)
