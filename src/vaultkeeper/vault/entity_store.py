# Vault - Entity Store (SQLite)
#
# Typed CRUD primitives over the vault tables. No business rules here:
# the group tree, resolver and clone orchestrator sit on top.
#
# Tables:
#   groups            folder tree, parent_id -> groups.id ON DELETE CASCADE
#   items             secret records
#   group_items       one membership row per item, group_id nullable
#   item_key_values   ordered custom fields
#   binaries          content-addressed attachment bytes (sha256)
#   item_attachments  attachment metadata -> binaries.hash
#
# Cascade contract: deleting a group removes its descendant groups and every
# membership pointing into that subtree. Deleting an item removes its
# membership, custom fields and attachment rows. Both are enforced by
# foreign keys (core.db.connect turns them on for every connection).
#
# Design:
#   - SQLite + WAL, short-lived connection per call, dataclass rows
#   - Writes serialized by a process-local lock (single writer)
#   - sqlite3.IntegrityError surfaces as ConstraintViolation

import hashlib
import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Union
from uuid import uuid4

from ..core.db import session as db_session
from .exceptions import ConstraintViolation, NotInitialized
from .models import Attachment, Group, GroupMembership, ItemDetails, KeyValue

logger = logging.getLogger(__name__)

# Filter sentinel: "no filter" as opposed to "filter on NULL".
UNSET: Any = object()

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS groups (
        id          TEXT PRIMARY KEY,
        parent_id   TEXT REFERENCES groups(id) ON DELETE CASCADE,
        name        TEXT NOT NULL DEFAULT '',
        description TEXT,
        icon        TEXT,
        color       TEXT,
        sort_order  INTEGER,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_groups_parent ON groups(parent_id)",
    """
    CREATE TABLE IF NOT EXISTS items (
        id          TEXT PRIMARY KEY,
        title       TEXT NOT NULL DEFAULT '',
        username    TEXT,
        password    TEXT,
        url         TEXT,
        note        TEXT,
        otp_secret  TEXT,
        tags        TEXT,
        icon        TEXT,
        color       TEXT,
        created_at  TEXT NOT NULL,
        updated_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_items (
        item_id   TEXT PRIMARY KEY REFERENCES items(id) ON DELETE CASCADE,
        group_id  TEXT REFERENCES groups(id) ON DELETE CASCADE
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_group_items_group ON group_items(group_id)",
    """
    CREATE TABLE IF NOT EXISTS item_key_values (
        id        TEXT PRIMARY KEY,
        item_id   TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
        key       TEXT,
        value     TEXT,
        position  INTEGER NOT NULL DEFAULT 0
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_key_values_item ON item_key_values(item_id)",
    """
    CREATE TABLE IF NOT EXISTS binaries (
        hash        TEXT PRIMARY KEY,
        data        BLOB NOT NULL,
        size        INTEGER NOT NULL,
        created_at  TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS item_attachments (
        id           TEXT PRIMARY KEY,
        item_id      TEXT NOT NULL REFERENCES items(id) ON DELETE CASCADE,
        binary_hash  TEXT NOT NULL REFERENCES binaries(hash),
        file_name    TEXT NOT NULL DEFAULT '',
        created_at   TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_attachments_item ON item_attachments(item_id)",
)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class EntityStore:
    """SQLite-backed entity store for groups, memberships and items.

    Usage::

        store = EntityStore("data/vault.db")
        store.initialize()
        store.insert_group(Group(id="g1", name="Work"))
        children = store.select_groups(parent_id="g1")
        store.close()

    Every primitive raises NotInitialized until initialize() has run, and
    again after close().
    """

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._initialized = False

    # ── Lifecycle ────────────────────────────────────────────────────

    def initialize(self) -> None:
        """Create the schema if needed and open the store for use."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with db_session(self.db_path) as conn:
                for statement in _SCHEMA:
                    conn.execute(statement)
            self._initialized = True
        logger.info("Entity store initialized: %s", self.db_path)

    def close(self) -> None:
        self._initialized = False

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        if not self._initialized:
            raise NotInitialized("Entity store not initialized")
        try:
            with db_session(self.db_path) as conn:
                yield conn
        except sqlite3.IntegrityError as exc:
            raise ConstraintViolation(str(exc)) from exc

    @contextmanager
    def _write(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            with self._session() as conn:
                yield conn

    # ── Groups ───────────────────────────────────────────────────────

    def insert_group(self, group: Group) -> Group:
        """Insert a group row.

        Raises:
            ConstraintViolation: Duplicate id or parent_id naming no group.
        """
        now = _now()
        group.created_at = group.created_at or now
        group.updated_at = now
        with self._write() as conn:
            conn.execute(
                """INSERT INTO groups
                   (id, parent_id, name, description, icon, color,
                    sort_order, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    group.id, group.parent_id, group.name or "",
                    group.description, group.icon, group.color,
                    group.order, group.created_at, group.updated_at,
                ),
            )
        return group

    def update_group(self, group: Group) -> bool:
        """Overwrite every mutable column of a group. Returns False if absent."""
        group.updated_at = _now()
        with self._write() as conn:
            cursor = conn.execute(
                """UPDATE groups
                   SET parent_id = ?, name = ?, description = ?, icon = ?,
                       color = ?, sort_order = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    group.parent_id, group.name or "", group.description,
                    group.icon, group.color, group.order, group.updated_at,
                    group.id,
                ),
            )
            return cursor.rowcount > 0

    def delete_group(self, group_id: str) -> bool:
        """Delete a group; descendants and memberships go with it (cascade)."""
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM groups WHERE id = ?", (group_id,))
            return cursor.rowcount > 0

    def select_group(self, group_id: str) -> Optional[Group]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM groups WHERE id = ?", (group_id,)
            ).fetchone()
        return self._row_to_group(row) if row else None

    def select_groups(self, parent_id: Any = UNSET) -> List[Group]:
        """List groups ordered by sort order (nulls last).

        Args:
            parent_id: UNSET for every group, None for root groups,
                or a group id for its direct children.
        """
        query = "SELECT * FROM groups"
        params: tuple = ()
        if parent_id is None:
            query += " WHERE parent_id IS NULL"
        elif parent_id is not UNSET:
            query += " WHERE parent_id = ?"
            params = (parent_id,)
        query += " ORDER BY sort_order IS NULL, sort_order, rowid"

        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [self._row_to_group(r) for r in rows]

    # ── Memberships ──────────────────────────────────────────────────

    def insert_membership(self, membership: GroupMembership) -> GroupMembership:
        with self._write() as conn:
            conn.execute(
                "INSERT INTO group_items (item_id, group_id) VALUES (?, ?)",
                (membership.item_id, membership.group_id),
            )
        return membership

    def update_membership(self, item_id: str, group_id: Optional[str]) -> bool:
        """Retarget an item's membership edge. Returns False if it has none."""
        with self._write() as conn:
            cursor = conn.execute(
                "UPDATE group_items SET group_id = ? WHERE item_id = ?",
                (group_id, item_id),
            )
            return cursor.rowcount > 0

    def select_membership(self, item_id: str) -> Optional[GroupMembership]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT item_id, group_id FROM group_items WHERE item_id = ?",
                (item_id,),
            ).fetchone()
        return GroupMembership(row["item_id"], row["group_id"]) if row else None

    def select_memberships(self, group_id: Any = UNSET) -> List[GroupMembership]:
        """List memberships; group_id None selects unfiled items."""
        query = "SELECT item_id, group_id FROM group_items"
        params: tuple = ()
        if group_id is None:
            query += " WHERE group_id IS NULL"
        elif group_id is not UNSET:
            query += " WHERE group_id = ?"
            params = (group_id,)
        query += " ORDER BY rowid"

        with self._session() as conn:
            rows = conn.execute(query, params).fetchall()
        return [GroupMembership(r["item_id"], r["group_id"]) for r in rows]

    # ── Items ────────────────────────────────────────────────────────

    def insert_item(
        self,
        details: ItemDetails,
        key_values: Iterable[KeyValue] = (),
        group_id: Optional[str] = None,
    ) -> ItemDetails:
        """Insert an item, its custom fields and its membership atomically.

        Raises:
            ConstraintViolation: Duplicate id or group_id naming no group.
        """
        now = _now()
        details.created_at = details.created_at or now
        details.updated_at = now

        with self._write() as conn:
            conn.execute(
                """INSERT INTO items
                   (id, title, username, password, url, note, otp_secret,
                    tags, icon, color, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    details.id, details.title or "", details.username,
                    details.password, details.url, details.note,
                    details.otp_secret, details.tags, details.icon,
                    details.color, details.created_at, details.updated_at,
                ),
            )
            for position, kv in enumerate(key_values):
                conn.execute(
                    """INSERT INTO item_key_values (id, item_id, key, value, position)
                       VALUES (?, ?, ?, ?, ?)""",
                    (kv.id or str(uuid4()), details.id, kv.key, kv.value, position),
                )
            conn.execute(
                "INSERT INTO group_items (item_id, group_id) VALUES (?, ?)",
                (details.id, group_id),
            )
        return details

    def update_item(self, details: ItemDetails) -> bool:
        details.updated_at = _now()
        with self._write() as conn:
            cursor = conn.execute(
                """UPDATE items
                   SET title = ?, username = ?, password = ?, url = ?, note = ?,
                       otp_secret = ?, tags = ?, icon = ?, color = ?, updated_at = ?
                   WHERE id = ?""",
                (
                    details.title or "", details.username, details.password,
                    details.url, details.note, details.otp_secret, details.tags,
                    details.icon, details.color, details.updated_at, details.id,
                ),
            )
            return cursor.rowcount > 0

    def delete_item(self, item_id: str) -> bool:
        with self._write() as conn:
            cursor = conn.execute("DELETE FROM items WHERE id = ?", (item_id,))
            return cursor.rowcount > 0

    def select_item(self, item_id: str) -> Optional[ItemDetails]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT * FROM items WHERE id = ?", (item_id,)
            ).fetchone()
        return self._row_to_item(row) if row else None

    def select_items(self) -> List[ItemDetails]:
        with self._session() as conn:
            rows = conn.execute("SELECT * FROM items ORDER BY title, rowid").fetchall()
        return [self._row_to_item(r) for r in rows]

    def select_key_values(self, item_id: str) -> List[KeyValue]:
        """Custom fields of an item in insertion order."""
        with self._session() as conn:
            rows = conn.execute(
                """SELECT id, item_id, key, value FROM item_key_values
                   WHERE item_id = ? ORDER BY position, rowid""",
                (item_id,),
            ).fetchall()
        return [KeyValue(r["id"], r["item_id"], r["key"], r["value"]) for r in rows]

    # ── Attachments ──────────────────────────────────────────────────

    def insert_binary(self, data: bytes) -> str:
        """Store attachment bytes once per content hash; returns the sha256 hex."""
        digest = hashlib.sha256(data).hexdigest()
        with self._write() as conn:
            conn.execute(
                """INSERT OR IGNORE INTO binaries (hash, data, size, created_at)
                   VALUES (?, ?, ?, ?)""",
                (digest, sqlite3.Binary(data), len(data), _now()),
            )
        return digest

    def select_binary(self, binary_hash: str) -> Optional[bytes]:
        with self._session() as conn:
            row = conn.execute(
                "SELECT data FROM binaries WHERE hash = ?", (binary_hash,)
            ).fetchone()
        return bytes(row["data"]) if row else None

    def insert_attachment(self, attachment: Attachment) -> Attachment:
        """Insert attachment metadata. The binary must already be stored."""
        attachment.created_at = attachment.created_at or _now()
        with self._write() as conn:
            conn.execute(
                """INSERT INTO item_attachments
                   (id, item_id, binary_hash, file_name, created_at)
                   VALUES (?, ?, ?, ?, ?)""",
                (
                    attachment.id, attachment.item_id, attachment.binary_hash,
                    attachment.file_name or "", attachment.created_at,
                ),
            )
        return attachment

    def select_attachments(self, item_id: str) -> List[Attachment]:
        with self._session() as conn:
            rows = conn.execute(
                """SELECT * FROM item_attachments
                   WHERE item_id = ? ORDER BY created_at, rowid""",
                (item_id,),
            ).fetchall()
        return [
            Attachment(
                id=r["id"],
                item_id=r["item_id"],
                binary_hash=r["binary_hash"],
                file_name=r["file_name"] or "",
                created_at=r["created_at"],
            )
            for r in rows
        ]

    # ── Internal ─────────────────────────────────────────────────────

    @staticmethod
    def _row_to_group(row: sqlite3.Row) -> Group:
        return Group(
            id=row["id"],
            name=row["name"] or "",
            parent_id=row["parent_id"],
            description=row["description"],
            icon=row["icon"],
            color=row["color"],
            order=row["sort_order"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    @staticmethod
    def _row_to_item(row: sqlite3.Row) -> ItemDetails:
        return ItemDetails(
            id=row["id"],
            title=row["title"] or "",
            username=row["username"],
            password=row["password"],
            url=row["url"],
            note=row["note"],
            otp_secret=row["otp_secret"],
            tags=row["tags"],
            icon=row["icon"],
            color=row["color"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
