"""Tests for collection tree editing."""

import asyncio

import pytest

from postie.errors import NotFoundError
from postie.importer import parse_collection
from postie.models import (
    BodyMode,
    CollectionRequest,
    CollectionUrl,
    Folder,
    HttpMethod,
    HttpRequest,
    Item,
    RequestBody,
)
from postie.tree import CollectionEditor, folder_path, item_from_request, rewrite_children


def names(nodes):
    return [node.name for node in nodes]


def saved_request(name, url="http://x"):
    return Item(name=name, request=CollectionRequest(url=CollectionUrl(raw=url)))


@pytest.fixture
def editor(storage):
    return CollectionEditor(storage)


@pytest.fixture
async def stored(storage, collection_json):
    collection = parse_collection(collection_json)
    await storage.save_collection(collection)
    return collection


class TestFolderPath:
    def test_normalizes_addresses(self):
        assert folder_path(None) == []
        assert folder_path("users") == ["users"]
        assert folder_path(("users", "admin")) == ["users", "admin"]

    def test_rewrite_children_copies_only_the_path(self, collection_json):
        """
        Given a tree with two sibling folders
        When the children of one folder are rewritten
        Then the sibling is the very same object and the original tree is untouched
        """
        collection = parse_collection(collection_json)
        updated = rewrite_children(collection.item, ["users"], lambda nodes: nodes[:1])

        assert names(updated[1].item) == ["list users"]
        assert names(collection.item[1].item) == ["list users", "admin"]
        assert updated[0] is collection.item[0]
        assert updated[2] is collection.item[2]

    def test_rewrite_children_unknown_segment(self, collection_json):
        collection = parse_collection(collection_json)
        with pytest.raises(NotFoundError):
            rewrite_children(collection.item, ["users", "nobody"], lambda nodes: nodes)


class TestItemFromRequest:
    def test_builds_saved_request(self):
        request = HttpRequest(
            name="create",
            method=HttpMethod.POST,
            url="{{HOST}}/items",
            headers=[("Accept", "application/json")],
            body=RequestBody.json_body({"a": 1}),
        )
        item = item_from_request(request)

        assert item.name == "create"
        assert item.request.method == "POST"
        assert item.request.url.raw == "{{HOST}}/items"
        assert item.request.header[0].key == "Accept"
        assert item.request.body.raw == '{"a": 1}'
        assert item.request.body.options == {"raw": {"language": "json"}}

    def test_unnamed_request_uses_url(self):
        item = item_from_request(HttpRequest(url="http://x/y", body=RequestBody(mode=BodyMode.FORM, content="a=1")))
        assert item.name == "http://x/y"
        assert item.request.header is None
        assert item.request.body.options is None


class TestCollections:
    async def test_new_collection_is_stored(self, editor, storage):
        collection = await editor.new_collection("Fresh")
        assert await storage.get_collection(collection.id) == collection
        assert collection.item == []

    async def test_delete_collection(self, editor, storage, stored):
        await editor.delete_collection(stored.id)
        assert await storage.get_collection(stored.id) is None

    async def test_delete_missing_collection(self, editor):
        with pytest.raises(NotFoundError):
            await editor.delete_collection("nope")

    async def test_edit_of_missing_collection(self, editor):
        with pytest.raises(NotFoundError):
            await editor.add_folder("nope", "f")


class TestAddNodes:
    async def test_add_folder_at_root(self, editor, storage, stored):
        """
        Given a stored collection
        When a folder is added at the root
        Then it is appended after the existing nodes and nothing else changes
        """
        updated = await editor.add_folder(stored.id, "new")

        assert names(updated.item) == ["Request 1", "users", "empty", "new"]
        assert isinstance(updated.item[3], Folder)
        assert updated.item[:3] == stored.item
        assert await storage.get_collection(stored.id) == updated

    async def test_add_folder_nested(self, editor, stored):
        updated = await editor.add_folder(stored.id, "deep", ["users", "admin"])

        admin = updated.item[1].item[1]
        assert names(admin.item) == ["delete user", "deep"]
        assert updated.item[0] == stored.item[0]
        assert updated.item[1].item[0] == stored.item[1].item[0]

    async def test_add_request_to_root(self, editor, stored):
        updated = await editor.add_request_to_collection(stored.id, saved_request("new request"))
        assert names(updated.item) == ["Request 1", "users", "empty", "new request"]

    async def test_add_request_to_folder(self, editor, stored):
        updated = await editor.add_request_to_collection(stored.id, saved_request("r"), "empty")

        assert names(updated.item[2].item) == ["r"]
        assert updated.item[1] == stored.item[1]

    async def test_add_submitted_request(self, editor, stored):
        request = HttpRequest(name="from tab", url="http://x/tab")
        updated = await editor.add_request_to_collection(stored.id, request, ["users"])

        added = updated.item[1].item[-1]
        assert isinstance(added, Item)
        assert added.name == "from tab"
        assert added.request.url.raw == "http://x/tab"

    async def test_add_to_missing_folder(self, editor, storage, stored):
        with pytest.raises(NotFoundError):
            await editor.add_request_to_collection(stored.id, saved_request("r"), ["users", "ghost"])
        assert await storage.get_collection(stored.id) == stored


class TestDeleteNodes:
    async def test_delete_top_level_folder(self, editor, stored):
        """
        Given a collection with the folders users and empty
        When users is deleted
        Then only users and its contents are gone
        """
        updated = await editor.delete_collection_folder(stored.id, "users")
        assert names(updated.item) == ["Request 1", "empty"]
        assert updated.item[0] == stored.item[0]

    async def test_delete_nested_folder(self, editor, stored):
        updated = await editor.delete_collection_folder(stored.id, ["users", "admin"])
        assert names(updated.item[1].item) == ["list users"]
        assert names(updated.item) == ["Request 1", "users", "empty"]

    async def test_delete_folder_removes_same_named_siblings(self, editor, stored):
        await editor.add_folder(stored.id, "empty")
        updated = await editor.delete_collection_folder(stored.id, "empty")
        assert names(updated.item) == ["Request 1", "users"]

    async def test_delete_missing_folder(self, editor, stored):
        with pytest.raises(NotFoundError):
            await editor.delete_collection_folder(stored.id, "ghost")

    async def test_delete_folder_requires_a_path(self, editor, stored):
        with pytest.raises(ValueError):
            await editor.delete_collection_folder(stored.id, None)

    async def test_delete_top_level_request(self, editor, stored):
        updated = await editor.delete_collection_request(stored.id, "Request 1")
        assert names(updated.item) == ["users", "empty"]

    async def test_delete_request_does_not_touch_folders_of_same_name(self, editor, stored):
        await editor.add_request_to_collection(stored.id, saved_request("users"))
        updated = await editor.delete_collection_request(stored.id, "users")

        assert names(updated.item) == ["Request 1", "users", "empty"]
        assert isinstance(updated.item[1], Folder)

    async def test_delete_folder_request(self, editor, stored):
        updated = await editor.delete_folder_request(stored.id, ["users", "admin"], "delete user")

        assert updated.item[1].item[1].item == []
        assert names(updated.item[1].item) == ["list users", "admin"]

    async def test_delete_missing_request(self, editor, stored):
        with pytest.raises(NotFoundError):
            await editor.delete_folder_request(stored.id, "users", "ghost")


class TestDeleteNode:
    async def test_request_name_deletes_request(self, editor, stored):
        updated = await editor.delete_node(stored.id, "users", "list users")
        assert names(updated.item[1].item) == ["admin"]

    async def test_request_name_without_folder_deletes_from_root(self, editor, stored):
        updated = await editor.delete_node(stored.id, request_name="Request 1")
        assert names(updated.item) == ["users", "empty"]

    async def test_folder_alone_deletes_folder(self, editor, stored):
        updated = await editor.delete_node(stored.id, folder="empty")
        assert names(updated.item) == ["Request 1", "users"]

    async def test_nothing_else_deletes_collection(self, editor, storage, stored):
        assert await editor.delete_node(stored.id) is None
        assert await storage.get_all_collections() == []


class TestConcurrentEdits:
    async def test_overlapping_edits_keep_both_changes(self, editor, storage, stored):
        """
        Given two edits of the same collection started together
        When both complete
        Then the stored collection contains both additions
        """
        await asyncio.gather(
            editor.add_request_to_collection(stored.id, saved_request("first")),
            editor.add_request_to_collection(stored.id, saved_request("second")),
            editor.add_folder(stored.id, "third", "users"),
        )

        collection = await storage.get_collection(stored.id)
        assert set(names(collection.item)) >= {"first", "second"}
        assert "third" in names(collection.item[1].item)
