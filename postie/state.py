"""Application state shared between the presentation layer and background work.

The presentation layer posts commands and reads immutable snapshots; it never
touches the state's containers directly. Command handlers run as asyncio tasks
and only assign to the state once their awaited I/O has finished.
"""

import asyncio
import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Set, Tuple

from . import commands as cmd
from .errors import NetworkError, NotFoundError, ParseError, PersistenceError, PostieError
from .http_client import HttpTransport
from .importer import (
    parse_collection,
    parse_environment,
    read_file,
    serialize_collection,
    serialize_environment,
    write_file,
)
from .models import (
    Collection,
    DBRequest,
    DBResponse,
    EnvironmentFile,
    EnvironmentValue,
    OAuthResponse,
    RequestHistoryItem,
    Response,
    Tab,
)
from .pipeline import RequestPipeline
from .storage import StorageBackend
from .tree import CollectionEditor

logger = logging.getLogger(__name__)


def default_environment() -> EnvironmentFile:
    return EnvironmentFile(
        name="default",
        values=[EnvironmentValue(key="", value="", type="default", enabled=True)],
    )


@dataclass(frozen=True)
class StateSnapshot:
    collections: Tuple[Collection, ...]
    environments: Tuple[EnvironmentFile, ...]
    tabs: Mapping[str, Tab]
    active_tab_id: Optional[str]
    history: Tuple[RequestHistoryItem, ...]
    requests_by_id: Mapping[str, DBRequest]
    responses_by_id: Mapping[str, DBResponse]
    last_response: Optional[Response]
    oauth_token: Optional[OAuthResponse]
    is_requesting: bool
    status: str
    error: Optional[str] = None

    @property
    def active_tab(self) -> Optional[Tab]:
        if self.active_tab_id is None:
            return None
        return self.tabs.get(self.active_tab_id)


class AppState:
    """Owns the cached collections, environments, tabs and history."""

    def __init__(self, storage: StorageBackend, transport: HttpTransport):
        self.storage = storage
        self.transport = transport
        self.pipeline = RequestPipeline(storage, transport)
        self.editor = CollectionEditor(storage)

        self._collections: List[Collection] = []
        self._environments: List[EnvironmentFile] = []
        self._tabs: Dict[str, Tab] = {}
        self._active_tab_id: Optional[str] = None
        self._history: List[RequestHistoryItem] = []
        self._requests_by_id: Dict[str, DBRequest] = {}
        self._responses_by_id: Dict[str, DBResponse] = {}
        self._last_response: Optional[Response] = None
        self._oauth_token: Optional[OAuthResponse] = None
        self._requests_in_flight = 0
        self._status = ""
        self._error: Optional[str] = None

        self._commands: "asyncio.Queue[Optional[cmd.Command]]" = asyncio.Queue()
        self._listeners: List["asyncio.Queue[StateSnapshot]"] = []
        self._tasks: Set[asyncio.Task] = set()

        self._handlers = {
            cmd.SubmitRequest: self._submit_request,
            cmd.SubmitOAuth2Request: self._submit_oauth2_request,
            cmd.ImportCollection: self._import_collection,
            cmd.ImportEnvironment: self._import_environment,
            cmd.ExportCollection: self._export_collection,
            cmd.ExportEnvironment: self._export_environment,
            cmd.NewCollection: self._new_collection,
            cmd.NewEnvironment: self._new_environment,
            cmd.AddFolder: self._add_folder,
            cmd.AddRequestToCollection: self._add_request,
            cmd.DeleteNode: self._delete_node,
            cmd.RefreshCollections: self._refresh_collections,
            cmd.RefreshEnvironments: self._refresh_environments,
            cmd.RefreshRequestData: self._refresh_request_data,
            cmd.NewRequest: self._new_request,
            cmd.RemoveTab: self._remove_tab,
            cmd.SetActiveTab: self._set_active_tab,
        }

    @classmethod
    async def load(cls, storage: StorageBackend, transport: HttpTransport) -> "AppState":
        """Create the state and fill it from the store."""
        state = cls(storage, transport)
        await state.refresh_environments()
        await state.refresh_collections()
        await state.refresh_request_data()
        await state.refresh_tabs()
        if not state._tabs:
            await state._new_request(cmd.NewRequest())
        return state

    # Snapshots

    def snapshot(self) -> StateSnapshot:
        return StateSnapshot(
            collections=tuple(self._collections),
            environments=tuple(self._environments),
            tabs=MappingProxyType(dict(self._tabs)),
            active_tab_id=self._active_tab_id,
            history=tuple(self._history),
            requests_by_id=MappingProxyType(dict(self._requests_by_id)),
            responses_by_id=MappingProxyType(dict(self._responses_by_id)),
            last_response=self._last_response,
            oauth_token=self._oauth_token,
            is_requesting=self._requests_in_flight > 0,
            status=self._status,
            error=self._error,
        )

    def subscribe(self) -> "asyncio.Queue[StateSnapshot]":
        """Return a queue receiving a snapshot after every handled command."""
        queue: "asyncio.Queue[StateSnapshot]" = asyncio.Queue()
        self._listeners.append(queue)
        return queue

    def _publish(self):
        snapshot = self.snapshot()
        for queue in self._listeners:
            queue.put_nowait(snapshot)

    # Command channel

    def post(self, command: cmd.Command) -> None:
        self._commands.put_nowait(command)

    def close(self) -> None:
        """Stop ``run`` once the commands already posted are dispatched."""
        self._commands.put_nowait(None)

    async def run(self) -> None:
        """Dispatch posted commands, each as its own task, until closed."""
        while True:
            command = await self._commands.get()
            if command is None:
                break
            self.spawn(self.handle(command))
        await self.drain()

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for every spawned command task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def handle(self, command: cmd.Command) -> str:
        """Run one command and return its short status message."""
        handler = self._handlers[type(command)]
        error = None
        try:
            status = await handler(command)
        except NotFoundError as exc:
            logger.warning("%s: %s", type(command).__name__, exc)
            error = str(exc)
            status = f"Not found: {exc}"
        except PostieError as exc:
            logger.error("%s failed: %s", type(command).__name__, exc, exc_info=True)
            error = str(exc)
            status = _failure_message(command, exc)
        self._status = status
        self._error = error
        self._publish()
        return status

    # Refreshing

    async def refresh_collections(self) -> None:
        collections = await self.storage.get_all_collections()
        self._collections = collections

    async def refresh_environments(self) -> None:
        environments = await self.storage.get_all_environments()
        self._environments = environments or [default_environment()]

    async def refresh_tabs(self) -> None:
        tabs = await self.storage.get_all_tabs()
        self._tabs = {tab.id: tab for tab in tabs}
        if self._active_tab_id not in self._tabs:
            self._active_tab_id = next(iter(self._tabs), None)

    async def refresh_request_data(self) -> None:
        history = await self.storage.get_request_response_items()
        requests = await self.storage.get_all_requests()
        responses = await self.storage.get_all_responses()
        self._history = history
        self._requests_by_id = {r.id: r for r in requests}
        self._responses_by_id = {r.id: r for r in responses}

    async def _refresh_collections(self, command: cmd.RefreshCollections) -> str:
        await self.refresh_collections()
        return "Collections refreshed"

    async def _refresh_environments(self, command: cmd.RefreshEnvironments) -> str:
        await self.refresh_environments()
        return "Environments refreshed"

    async def _refresh_request_data(self, command: cmd.RefreshRequestData) -> str:
        await self.refresh_request_data()
        return "History refreshed"

    # Requests

    async def _submit_request(self, command: cmd.SubmitRequest) -> str:
        self._requests_in_flight += 1
        try:
            response = await self.pipeline.submit(command.request)
        except NetworkError:
            self._last_response = None
            raise
        finally:
            self._requests_in_flight -= 1
        self._last_response = response
        await self.refresh_tabs()
        await self.refresh_request_data()
        return response.status

    async def _submit_oauth2_request(self, command: cmd.SubmitOAuth2Request) -> str:
        token = await self.pipeline.request_token(command.request)
        self._oauth_token = token
        return "Token received"

    # Import / export

    async def _import_collection(self, command: cmd.ImportCollection) -> str:
        text = await asyncio.to_thread(read_file, command.path)
        collection = parse_collection(text)
        await self.storage.save_collection(collection)
        await self.refresh_collections()
        return "Import successful"

    async def _import_environment(self, command: cmd.ImportEnvironment) -> str:
        text = await asyncio.to_thread(read_file, command.path)
        environment = parse_environment(text)
        await self.storage.save_environment(environment)
        await self.refresh_environments()
        return "Import successful"

    async def _export_collection(self, command: cmd.ExportCollection) -> str:
        collection = await self.storage.get_collection(command.collection_id)
        if collection is None:
            raise NotFoundError(f"collection {command.collection_id!r} not found")
        await asyncio.to_thread(write_file, command.path, serialize_collection(collection))
        return "Export successful"

    async def _export_environment(self, command: cmd.ExportEnvironment) -> str:
        environments = await self.storage.get_all_environments()
        environment = next((e for e in environments if e.id == command.environment_id), None)
        if environment is None:
            raise NotFoundError(f"environment {command.environment_id!r} not found")
        await asyncio.to_thread(write_file, command.path, serialize_environment(environment))
        return "Export successful"

    # Collections and environments

    async def _new_collection(self, command: cmd.NewCollection) -> str:
        await self.editor.new_collection(command.name)
        await self.refresh_collections()
        return "Collection created"

    async def _new_environment(self, command: cmd.NewEnvironment) -> str:
        await self.storage.save_environment(EnvironmentFile(name=command.name, values=[]))
        await self.refresh_environments()
        return "Environment created"

    async def _add_folder(self, command: cmd.AddFolder) -> str:
        await self.editor.add_folder(command.collection_id, command.name, command.parent)
        await self.refresh_collections()
        return "Folder added"

    async def _add_request(self, command: cmd.AddRequestToCollection) -> str:
        await self.editor.add_request_to_collection(
            command.collection_id, command.request, command.folder
        )
        await self.refresh_collections()
        return "Request saved"

    async def _delete_node(self, command: cmd.DeleteNode) -> str:
        await self.editor.delete_node(command.collection_id, command.folder, command.request_name)
        await self.refresh_collections()
        return "Deleted"

    # Tabs

    async def _new_request(self, command: cmd.NewRequest) -> str:
        tab = Tab.blank()
        await self.storage.save_tab(tab)
        self._tabs[tab.id] = tab
        self._active_tab_id = tab.id
        return "New request"

    async def _remove_tab(self, command: cmd.RemoveTab) -> str:
        if not await self.storage.delete_tab(command.tab_id):
            raise NotFoundError(f"tab {command.tab_id!r} not found")
        self._tabs.pop(command.tab_id, None)
        if self._active_tab_id == command.tab_id:
            self._active_tab_id = next(iter(self._tabs), None)
        return "Tab closed"

    async def _set_active_tab(self, command: cmd.SetActiveTab) -> str:
        if command.tab_id not in self._tabs:
            raise NotFoundError(f"tab {command.tab_id!r} not found")
        self._active_tab_id = command.tab_id
        return "Tab selected"


def _failure_message(command: cmd.Command, exc: PostieError) -> str:
    if isinstance(exc, NetworkError):
        return "Request failed"
    if isinstance(exc, ParseError):
        return "Could not parse input"
    if isinstance(exc, PersistenceError):
        if isinstance(command, (cmd.ImportCollection, cmd.ImportEnvironment)):
            return "Error with importing"
        return "Error saving data"
    return "Error"
