# Tests for the clone orchestrator
#
# Coverage:
#   - Item clone: fresh id, suffix, custom fields, target membership
#   - reference_credentials: copies hold live references to the source
#   - include_history: attachments share the source binary hash
#   - Group clone: shallow by default, deep option copies children + items
#   - Batch isolation, strict mode, missing target

import pytest

from vaultkeeper.vault import (
    Attachment,
    CloneOptions,
    ConstraintViolation,
    ItemDetails,
    KeyValue,
    NotFound,
    make_reference,
)
from vaultkeeper.vault.cloning import with_suffix


@pytest.fixture
def source(store, tree):
    """Group 'src' holding item 'i1' with a custom field and an attachment."""
    tree.create(id="src", name="Source", description="desc", icon="mdi:folder", color="red")
    tree.create(id="dst", name="Destination")
    store.insert_item(
        ItemDetails(id="i1", title="Mail", username="alice", password="s3cret"),
        key_values=[KeyValue(id="", item_id="i1", key="pin", value="1234")],
        group_id="src",
    )
    digest = store.insert_binary(b"scan")
    store.insert_attachment(
        Attachment(id="att1", item_id="i1", binary_hash=digest, file_name="scan.png")
    )
    return digest


class TestSuffix:
    def test_with_suffix(self):
        assert with_suffix("Mail", "(copy)") == "Mail (copy)"
        assert with_suffix("Mail", None) == "Mail"
        assert with_suffix("Mail", "") == "Mail"
        assert with_suffix(None, "x") == " x"


class TestCloneItem:
    def test_reference_credentials_default(self, store, resolver, cloner, source):
        result = cloner.clone_many(["i1"], "dst")
        new_id = result.created["i1"]
        clone = store.select_item(new_id)

        assert new_id != "i1"
        assert clone.title == "Mail"
        assert clone.username == make_reference("USERNAME", "ITEM", "i1")
        assert clone.password == make_reference("PASSWORD", "ITEM", "i1")
        assert resolver.resolve(clone.username) == "alice"
        assert resolver.resolve(clone.password) == "s3cret"

    def test_references_follow_source_changes(self, store, resolver, cloner, source):
        new_id = cloner.clone_many(["i1"], "dst").created["i1"]
        original = store.select_item("i1")
        original.password = "rotated"
        store.update_item(original)
        assert resolver.resolve(store.select_item(new_id).password) == "rotated"

    def test_copy_credentials_verbatim(self, store, cloner, source):
        options = CloneOptions(reference_credentials=False)
        new_id = cloner.clone_many(["i1"], "dst", options=options).created["i1"]
        clone = store.select_item(new_id)
        assert clone.username == "alice"
        assert clone.password == "s3cret"

    def test_suffix_and_membership(self, store, cloner, source):
        options = CloneOptions(title_suffix="(copy)")
        new_id = cloner.clone_many(["i1"], "dst", options=options).created["i1"]
        assert store.select_item(new_id).title == "Mail (copy)"
        assert store.select_membership(new_id).group_id == "dst"
        assert store.select_membership("i1").group_id == "src"

    def test_clone_to_unfiled(self, store, cloner, source):
        new_id = cloner.clone_many(["i1"]).created["i1"]
        assert store.select_membership(new_id).group_id is None

    def test_custom_fields_copied(self, store, cloner, source):
        new_id = cloner.clone_many(["i1"], "dst").created["i1"]
        [kv] = store.select_key_values(new_id)
        assert (kv.key, kv.value) == ("pin", "1234")
        assert kv.id != store.select_key_values("i1")[0].id

    def test_attachments_skipped_by_default(self, store, cloner, source):
        new_id = cloner.clone_many(["i1"], "dst").created["i1"]
        assert store.select_attachments(new_id) == []

    def test_include_history_shares_binary(self, store, cloner, source):
        options = CloneOptions(include_history=True)
        new_id = cloner.clone_many(["i1"], "dst", options=options).created["i1"]
        [attachment] = store.select_attachments(new_id)
        assert attachment.binary_hash == source
        assert attachment.file_name == "scan.png"
        assert attachment.id != "att1"


class TestCloneGroup:
    def test_shallow_by_default(self, store, tree, cloner, source):
        tree.create(id="child", name="Child", parent_id="src")
        new_id = cloner.clone_many(["src"], "dst").created["src"]

        clone = tree.require(new_id)
        assert clone.name == "Source"
        assert clone.parent_id == "dst"
        assert (clone.description, clone.icon, clone.color) == ("desc", "mdi:folder", "red")
        assert tree.list(parent_id=new_id) == []
        assert tree.memberships(new_id) == []

    def test_group_suffix(self, tree, cloner, source):
        options = CloneOptions(title_suffix="2")
        new_id = cloner.clone_many(["src"], None, options=options).created["src"]
        assert tree.require(new_id).name == "Source 2"
        assert tree.require(new_id).parent_id is None

    def test_deep_copies_children_and_items(self, store, tree, cloner, source):
        tree.create(id="child", name="Child", parent_id="src")
        store.insert_item(ItemDetails(id="i2", title="Nested"), group_id="child")

        options = CloneOptions(deep=True, title_suffix="(copy)")
        new_id = cloner.clone_many(["src"], "dst", options=options).created["src"]

        assert tree.require(new_id).name == "Source (copy)"
        [child] = tree.list(parent_id=new_id)
        assert child.name == "Child"
        assert child.id != "child"

        [top_item] = tree.memberships(new_id)
        assert store.select_item(top_item.item_id).title == "Mail"
        [nested_item] = tree.memberships(child.id)
        assert store.select_item(nested_item.item_id).title == "Nested"
        # Source untouched
        assert [m.item_id for m in tree.memberships("src")] == ["i1"]

    def test_deep_clone_into_own_subtree_terminates(self, store, tree, cloner, source):
        tree.create(id="child", name="Child", parent_id="src")
        options = CloneOptions(deep=True)
        new_id = cloner.clone_many(["src"], "child", options=options).created["src"]

        assert tree.require(new_id).parent_id == "child"
        assert [g.name for g in tree.list(parent_id=new_id)] == ["Child"]
        # Two groups existed below src before; one copy of src and one of child added.
        assert len(tree.descendants_recursive("src")) == 3

    def test_deep_clone_failure_points_at_partial_copy(
        self, store, tree, cloner, source, monkeypatch
    ):
        tree.create(id="child", name="Child", parent_id="src")

        def vanish(item_id, *args, **kwargs):
            raise NotFound(f"No group or item with id {item_id}")

        monkeypatch.setattr(cloner, "clone_item", vanish)
        result = cloner.clone_many(["src"], "dst", options=CloneOptions(deep=True))

        assert isinstance(result.failed["src"], NotFound)
        assert result.succeeded == []
        partial = tree.require(result.created["src"])
        assert partial.parent_id == "dst"
        assert [g.name for g in tree.list(parent_id=partial.id)] == ["Child"]


class TestCloneBatch:
    def test_unknown_id_recorded(self, cloner, source):
        result = cloner.clone_many(["ghost", "i1"], "dst")
        assert isinstance(result.failed["ghost"], NotFound)
        assert result.succeeded == ["i1"]
        assert "i1" in result.created

    def test_strict_raises(self, store, cloner, source):
        with pytest.raises(NotFound):
            cloner.clone_many(["ghost", "i1"], "dst", strict=True)
        assert len(store.select_memberships(group_id="dst")) == 1

    def test_missing_target(self, cloner, source):
        with pytest.raises(ConstraintViolation):
            cloner.clone_many(["i1"], "nowhere")

    def test_tree_synced_after_batch(self, tree, cloner, source):
        before = len(tree.groups)
        cloner.clone_many(["src", "dst"], None)
        assert len(tree.groups) == before + 2

    def test_clone_of_mixed_ids(self, tree, store, cloner, source):
        result = cloner.clone_many(["src", "i1"], "dst")
        assert result.ok
        assert tree.get(result.created["src"]).parent_id == "dst"
        assert store.select_item(result.created["i1"]) is not None
