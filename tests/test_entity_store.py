# Tests for the SQLite entity store
#
# Coverage:
#   - Lifecycle: NotInitialized before initialize() and after close()
#   - Groups: insert/select/update/delete, ordering, parent filter
#   - Cascade: group delete removes descendants and memberships
#   - Items: atomic insert with custom fields and membership
#   - Attachments: content-addressed binaries, cascade on item delete

import pytest

from vaultkeeper.vault import (
    UNSET,
    Attachment,
    ConstraintViolation,
    EntityStore,
    Group,
    GroupMembership,
    ItemDetails,
    KeyValue,
    NotInitialized,
)


def _item(item_id: str, title: str = "Item", **fields) -> ItemDetails:
    return ItemDetails(id=item_id, title=title, **fields)


# ── Lifecycle ───────────────────────────────────────────────────────


class TestLifecycle:
    def test_uninitialized_store_raises(self, tmp_path):
        store = EntityStore(tmp_path / "vault.db")
        assert store.is_initialized is False
        with pytest.raises(NotInitialized):
            store.select_groups()

    def test_closed_store_raises(self, store):
        store.close()
        with pytest.raises(NotInitialized):
            store.select_group("g1")

    def test_initialize_creates_parent_directory(self, tmp_path):
        store = EntityStore(tmp_path / "nested" / "dir" / "vault.db")
        store.initialize()
        assert (tmp_path / "nested" / "dir" / "vault.db").exists()
        assert store.select_groups() == []

    def test_initialize_is_idempotent(self, store):
        store.insert_group(Group(id="g1", name="Work"))
        store.initialize()
        assert store.select_group("g1").name == "Work"


# ── Groups ──────────────────────────────────────────────────────────


class TestGroups:
    def test_insert_and_select(self, store):
        store.insert_group(Group(id="g1", name="Work", icon="mdi:briefcase", color="blue"))
        group = store.select_group("g1")
        assert group.name == "Work"
        assert group.icon == "mdi:briefcase"
        assert group.parent_id is None
        assert group.created_at
        assert group.updated_at

    def test_select_missing_returns_none(self, store):
        assert store.select_group("nope") is None

    def test_duplicate_id_is_constraint_violation(self, store):
        store.insert_group(Group(id="g1", name="A"))
        with pytest.raises(ConstraintViolation):
            store.insert_group(Group(id="g1", name="B"))

    def test_unknown_parent_is_constraint_violation(self, store):
        with pytest.raises(ConstraintViolation):
            store.insert_group(Group(id="g1", name="A", parent_id="ghost"))

    def test_select_groups_filters(self, store):
        store.insert_group(Group(id="root1", name="R1"))
        store.insert_group(Group(id="root2", name="R2"))
        store.insert_group(Group(id="child", name="C", parent_id="root1"))

        assert {g.id for g in store.select_groups()} == {"root1", "root2", "child"}
        assert {g.id for g in store.select_groups(parent_id=UNSET)} == {"root1", "root2", "child"}
        assert {g.id for g in store.select_groups(parent_id=None)} == {"root1", "root2"}
        assert [g.id for g in store.select_groups(parent_id="root1")] == ["child"]

    def test_ordering_nulls_last(self, store):
        store.insert_group(Group(id="a", name="A"))
        store.insert_group(Group(id="b", name="B", order=2))
        store.insert_group(Group(id="c", name="C", order=1))
        assert [g.id for g in store.select_groups()] == ["c", "b", "a"]

    def test_update_group(self, store):
        store.insert_group(Group(id="g1", name="Old"))
        group = store.select_group("g1")
        group.name = "New"
        group.color = "red"
        assert store.update_group(group) is True
        assert store.select_group("g1").name == "New"
        assert store.select_group("g1").color == "red"

    def test_update_missing_group_returns_false(self, store):
        assert store.update_group(Group(id="ghost", name="X")) is False

    def test_delete_missing_group_returns_false(self, store):
        assert store.delete_group("ghost") is False


# ── Cascade ─────────────────────────────────────────────────────────


class TestCascade:
    def test_delete_cascades_to_descendants(self, store):
        store.insert_group(Group(id="a", name="A"))
        store.insert_group(Group(id="b", name="B", parent_id="a"))
        store.insert_group(Group(id="c", name="C", parent_id="b"))
        store.insert_group(Group(id="other", name="Other"))

        assert store.delete_group("a") is True
        assert [g.id for g in store.select_groups()] == ["other"]

    def test_delete_cascades_to_memberships(self, store):
        store.insert_group(Group(id="a", name="A"))
        store.insert_group(Group(id="b", name="B", parent_id="a"))
        store.insert_item(_item("i1"), group_id="b")

        store.delete_group("a")
        assert store.select_membership("i1") is None
        # The item row itself is left to the caller.
        assert store.select_item("i1") is not None


# ── Memberships ─────────────────────────────────────────────────────


class TestMemberships:
    def test_insert_item_creates_membership(self, store):
        store.insert_group(Group(id="g1", name="G"))
        store.insert_item(_item("i1"), group_id="g1")
        store.insert_item(_item("i2"))

        assert store.select_membership("i1") == GroupMembership("i1", "g1")
        assert store.select_membership("i2") == GroupMembership("i2", None)

    def test_select_memberships_unfiled(self, store):
        store.insert_group(Group(id="g1", name="G"))
        store.insert_item(_item("i1"), group_id="g1")
        store.insert_item(_item("i2"))

        assert [m.item_id for m in store.select_memberships(group_id=None)] == ["i2"]
        assert [m.item_id for m in store.select_memberships(group_id="g1")] == ["i1"]
        assert len(store.select_memberships()) == 2

    def test_update_membership(self, store):
        store.insert_group(Group(id="g1", name="G"))
        store.insert_item(_item("i1"))
        assert store.update_membership("i1", "g1") is True
        assert store.select_membership("i1").group_id == "g1"

    def test_update_membership_without_edge_returns_false(self, store):
        assert store.update_membership("ghost", None) is False

    def test_one_membership_per_item(self, store):
        store.insert_item(_item("i1"))
        with pytest.raises(ConstraintViolation):
            store.insert_membership(GroupMembership("i1", None))

    def test_membership_to_unknown_group_rejected(self, store):
        with pytest.raises(ConstraintViolation):
            store.insert_item(_item("i1"), group_id="ghost")
        # Atomic: no partial item left behind
        assert store.select_item("i1") is None


# ── Items ───────────────────────────────────────────────────────────


class TestItems:
    def test_insert_with_key_values_keeps_order(self, store):
        store.insert_item(
            _item("i1", username="alice"),
            key_values=[
                KeyValue(id="", item_id="i1", key="zeta", value="1"),
                KeyValue(id="", item_id="i1", key="alpha", value="2"),
            ],
        )
        kvs = store.select_key_values("i1")
        assert [kv.key for kv in kvs] == ["zeta", "alpha"]
        assert all(kv.id for kv in kvs)
        assert store.select_item("i1").username == "alice"

    def test_update_item(self, store):
        store.insert_item(_item("i1", password="old"))
        item = store.select_item("i1")
        item.password = "new"
        assert store.update_item(item) is True
        assert store.select_item("i1").password == "new"

    def test_delete_item_cascades(self, store):
        store.insert_item(
            _item("i1"), key_values=[KeyValue(id="kv1", item_id="i1", key="k", value="v")]
        )
        digest = store.insert_binary(b"data")
        store.insert_attachment(Attachment(id="a1", item_id="i1", binary_hash=digest))

        assert store.delete_item("i1") is True
        assert store.select_item("i1") is None
        assert store.select_membership("i1") is None
        assert store.select_key_values("i1") == []
        assert store.select_attachments("i1") == []

    def test_select_items_sorted_by_title(self, store):
        store.insert_item(_item("i1", title="beta"))
        store.insert_item(_item("i2", title="alpha"))
        assert [i.title for i in store.select_items()] == ["alpha", "beta"]

    def test_to_dict_without_secrets(self):
        data = _item("i1", password="p", otp_secret="o").to_dict(include_secrets=False)
        assert "password" not in data
        assert "otp_secret" not in data
        assert data["title"] == "Item"


# ── Attachments ─────────────────────────────────────────────────────


class TestAttachments:
    def test_binary_stored_once_per_hash(self, store):
        h1 = store.insert_binary(b"same bytes")
        h2 = store.insert_binary(b"same bytes")
        assert h1 == h2
        assert len(h1) == 64
        assert store.select_binary(h1) == b"same bytes"

    def test_missing_binary_returns_none(self, store):
        assert store.select_binary("0" * 64) is None

    def test_attachment_requires_binary(self, store):
        store.insert_item(_item("i1"))
        with pytest.raises(ConstraintViolation):
            store.insert_attachment(Attachment(id="a1", item_id="i1", binary_hash="f" * 64))

    def test_attachment_round_trip(self, store):
        store.insert_item(_item("i1"))
        digest = store.insert_binary(b"pdf")
        store.insert_attachment(
            Attachment(id="a1", item_id="i1", binary_hash=digest, file_name="doc.pdf")
        )
        [attachment] = store.select_attachments("i1")
        assert attachment.file_name == "doc.pdf"
        assert attachment.binary_hash == digest
