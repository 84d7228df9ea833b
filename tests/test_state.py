"""Tests for the application state and its command channel."""

import asyncio
import json

import httpx
import pytest

from postie import commands as cmd
from postie.http_client import HttpResult
from postie.importer import parse_collection, parse_environment
from postie.models import DEFAULT_HEADERS, HttpRequest, OAuth2Request, ResponseKind
from postie.state import AppState


@pytest.fixture
def transport(make_transport):
    transport, _ = make_transport(lambda request: httpx.Response(200, json={"hello": "world"}))
    return transport


@pytest.fixture
async def state(storage, transport):
    return await AppState.load(storage, transport)


async def run(state, *commands):
    """Post commands, close the channel and wait until all of them are handled."""
    for command in commands:
        state.post(command)
    state.close()
    await state.run()
    return state.snapshot()


class TestLoad:
    async def test_empty_store_gets_a_tab_and_default_environment(self, state, storage):
        """
        Given an empty store
        When the state is loaded
        Then one blank tab with the default headers is created, stored and active,
        and a default environment is offered without being stored
        """
        snapshot = state.snapshot()

        assert len(snapshot.tabs) == 1
        tab = snapshot.active_tab
        assert [(h.key, h.value) for h in tab.req_headers] == DEFAULT_HEADERS
        assert await storage.get_all_tabs() == [tab]
        assert [e.name for e in snapshot.environments] == ["default"]
        assert await storage.get_all_environments() == []

    async def test_existing_tabs_are_reused(self, storage, transport, state):
        again = await AppState.load(storage, transport)
        assert set(again.snapshot().tabs) == set(state.snapshot().tabs)

    async def test_loads_stored_collections(self, storage, transport, collection_json):
        await storage.save_collection(parse_collection(collection_json))
        state = await AppState.load(storage, transport)
        assert [c.name for c in state.snapshot().collections] == ["Test Collection"]


class TestSnapshot:
    async def test_snapshot_is_read_only(self, state):
        snapshot = state.snapshot()
        with pytest.raises(TypeError):
            snapshot.tabs["x"] = None
        with pytest.raises(AttributeError):
            snapshot.status = "changed"

    async def test_snapshot_does_not_follow_later_changes(self, state):
        before = state.snapshot()
        await run(state, cmd.NewRequest())
        assert len(before.tabs) == 1
        assert len(state.snapshot().tabs) == 2

    async def test_subscribers_receive_a_snapshot_per_command(self, state):
        queue = state.subscribe()
        await run(state, cmd.NewCollection("a"), cmd.NewCollection("b"))
        assert queue.qsize() == 2


class TestRequests:
    async def test_submit_updates_response_history_and_tab(self, state):
        """
        Given the active tab
        When a request for it is submitted through the channel
        Then the response, the history maps and the tab all reflect the exchange
        """
        tab_id = state.snapshot().active_tab_id
        snapshot = await run(state, cmd.SubmitRequest(HttpRequest(tab_id=tab_id, url="http://api.test/hello")))

        assert snapshot.status == "200 OK"
        assert snapshot.error is None
        assert snapshot.is_requesting is False
        assert snapshot.last_response.data.kind == ResponseKind.JSON
        assert snapshot.last_response.data.payload == {"hello": "world"}
        assert len(snapshot.history) == 1
        item = snapshot.history[0]
        assert snapshot.requests_by_id[item.request_id].url == "http://api.test/hello"
        assert snapshot.responses_by_id[item.response_id].status_code == 200
        assert snapshot.tabs[tab_id].res_status == "200 OK"

    async def test_network_failure_sets_status(self, storage, make_transport):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        transport, _ = make_transport(refuse)
        state = await AppState.load(storage, transport)
        snapshot = await run(state, cmd.SubmitRequest(HttpRequest(url="http://api.test/x")))

        assert snapshot.status == "Request failed"
        assert "refused" in snapshot.error
        assert snapshot.last_response is None
        assert snapshot.history == ()

    async def test_oauth_token_is_kept_in_memory(self, storage, make_transport):
        transport, _ = make_transport(
            lambda request: httpx.Response(200, json={"access_token": "t", "expires_in": 60, "token_type": "Bearer"})
        )
        state = await AppState.load(storage, transport)
        request = OAuth2Request(access_token_url="http://auth.test/token", client_id="c", client_secret="s")

        snapshot = await run(state, cmd.SubmitOAuth2Request(request))

        assert snapshot.status == "Token received"
        assert snapshot.oauth_token.access_token == "t"
        assert snapshot.history == ()


class GatedTransport:
    """Transport that holds each request until its URL is released."""

    def __init__(self):
        self.gates = {}
        self.started = asyncio.Queue()

    async def send(self, method, url, headers, body=None):
        gate = self.gates.setdefault(url, asyncio.Event())
        await self.started.put(url)
        await gate.wait()
        return HttpResult(status_code=200, reason="OK", headers=[("Content-Type", "text/plain")], body="ok")

    async def close(self):
        pass


class TestRequestingFlag:
    async def test_flag_stays_set_until_the_last_request_finishes(self, storage):
        """
        Given two requests in flight at once
        When the first one completes
        Then the state still reports a request in progress until the second completes
        """
        transport = GatedTransport()
        state = await AppState.load(storage, transport)
        assert state.snapshot().is_requesting is False

        first = state.spawn(state.handle(cmd.SubmitRequest(HttpRequest(url="http://api.test/a"))))
        second = state.spawn(state.handle(cmd.SubmitRequest(HttpRequest(url="http://api.test/b"))))
        await transport.started.get()
        await transport.started.get()
        assert state.snapshot().is_requesting is True

        transport.gates["http://api.test/a"].set()
        await first
        assert state.snapshot().is_requesting is True

        transport.gates["http://api.test/b"].set()
        await second
        assert state.snapshot().is_requesting is False
        assert len(state.snapshot().history) == 2


class TestImportExport:
    async def test_import_collection(self, state, tmp_path, collection_json):
        path = tmp_path / "collection.json"
        path.write_text(collection_json)

        snapshot = await run(state, cmd.ImportCollection(str(path)))

        assert snapshot.status == "Import successful"
        assert [c.name for c in snapshot.collections] == ["Test Collection"]

    async def test_import_invalid_collection(self, state, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"info": {"name": "x"}, "item": [{"name": "neither"}]}))

        snapshot = await run(state, cmd.ImportCollection(str(path)))

        assert snapshot.status == "Could not parse input"
        assert snapshot.collections == ()

    async def test_import_missing_file(self, state, tmp_path):
        snapshot = await run(state, cmd.ImportCollection(str(tmp_path / "missing.json")))
        assert snapshot.status == "Error with importing"

    async def test_import_environment_replaces_default(self, state, tmp_path, environment_data):
        path = tmp_path / "env.json"
        path.write_text(json.dumps(environment_data))

        snapshot = await run(state, cmd.ImportEnvironment(str(path)))

        assert snapshot.status == "Import successful"
        assert [e.name for e in snapshot.environments] == ["Local"]

    async def test_export_collection(self, state, storage, tmp_path, collection_json):
        collection = parse_collection(collection_json)
        await storage.save_collection(collection)
        target = tmp_path / "out" / "collection.json"

        snapshot = await run(state, cmd.ExportCollection(collection.id, str(target)))

        assert snapshot.status == "Export successful"
        assert parse_collection(target.read_text()) == collection

    async def test_export_environment(self, state, storage, tmp_path, environment_data):
        environment = parse_environment(json.dumps(environment_data))
        await storage.save_environment(environment)
        target = tmp_path / "env.json"

        await run(state, cmd.ExportEnvironment(environment.id, str(target)))

        assert parse_environment(target.read_text()) == environment

    async def test_export_unknown_collection(self, state, tmp_path):
        snapshot = await run(state, cmd.ExportCollection("nope", str(tmp_path / "x.json")))
        assert snapshot.status.startswith("Not found")


class TestCollectionCommands:
    async def test_build_and_prune_a_collection(self, state):
        """
        Given a new collection
        When a folder, a nested folder and a request are added and the request deleted
        Then each step reports its status and the cached tree follows
        """
        snapshot = await run(state, cmd.NewCollection("API"))
        assert snapshot.status == "Collection created"
        collection_id = snapshot.collections[0].id

        for command in (
            cmd.AddFolder(collection_id, "users"),
            cmd.AddFolder(collection_id, "admin", parent="users"),
            cmd.AddRequestToCollection(collection_id, HttpRequest(name="list", url="http://x"), ["users", "admin"]),
        ):
            await state.handle(command)

        collection = state.snapshot().collections[0]
        assert collection.item[0].item[0].item[0].name == "list"
        assert state.snapshot().status == "Request saved"

        status = await state.handle(cmd.DeleteNode(collection_id, ["users", "admin"], "list"))
        assert status == "Deleted"
        assert state.snapshot().collections[0].item[0].item[0].item == []

    async def test_delete_collection(self, state):
        snapshot = await run(state, cmd.NewCollection("API"))
        collection_id = snapshot.collections[0].id

        assert await state.handle(cmd.DeleteNode(collection_id)) == "Deleted"
        assert state.snapshot().collections == ()

    async def test_missing_target_is_reported(self, state):
        status = await state.handle(cmd.AddFolder("nope", "f"))
        assert status.startswith("Not found")
        assert state.snapshot().error

    async def test_new_environment(self, state):
        snapshot = await run(state, cmd.NewEnvironment("staging"))
        assert snapshot.status == "Environment created"
        assert [e.name for e in snapshot.environments] == ["staging"]


class TestTabs:
    async def test_new_request_opens_and_activates_a_tab(self, state, storage):
        snapshot = await run(state, cmd.NewRequest())
        assert len(snapshot.tabs) == 2
        assert len(await storage.get_all_tabs()) == 2
        assert snapshot.active_tab_id in snapshot.tabs

    async def test_set_active_tab(self, state):
        first = state.snapshot().active_tab_id
        await state.handle(cmd.NewRequest())
        assert state.snapshot().active_tab_id != first

        assert await state.handle(cmd.SetActiveTab(first)) == "Tab selected"
        assert state.snapshot().active_tab_id == first

    async def test_remove_active_tab_moves_selection(self, state, storage):
        first = state.snapshot().active_tab_id
        await state.handle(cmd.NewRequest())
        second = state.snapshot().active_tab_id

        assert await state.handle(cmd.RemoveTab(second)) == "Tab closed"
        assert state.snapshot().active_tab_id == first
        assert [t.id for t in await storage.get_all_tabs()] == [first]

    async def test_remove_unknown_tab(self, state):
        status = await state.handle(cmd.RemoveTab("nope"))
        assert status.startswith("Not found")


class TestRefresh:
    async def test_refresh_picks_up_external_writes(self, state, storage, collection_json):
        await storage.save_collection(parse_collection(collection_json))
        snapshot = await run(state, cmd.RefreshCollections(), cmd.RefreshEnvironments(), cmd.RefreshRequestData())
        assert [c.name for c in snapshot.collections] == ["Test Collection"]
