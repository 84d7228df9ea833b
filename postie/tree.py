"""Editing of collection trees.

Every edit loads the stored collection, rebuilds the part of the item tree it
touches and saves the whole document back. Folders are addressed by a path of
folder names starting at the collection root; each segment resolves to the
first folder of that name at its level.

Edits to the same collection are serialized so that two overlapping
read-modify-write sequences cannot overwrite each other.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Sequence, Union

from .errors import NotFoundError
from .models import (
    BodyMode,
    Collection,
    CollectionBody,
    CollectionHeader,
    CollectionInfo,
    CollectionRequest,
    CollectionUrl,
    Folder,
    HttpRequest,
    Item,
    ItemOrFolder,
)
from .storage import StorageBackend

logger = logging.getLogger(__name__)

FolderPath = Union[str, Sequence[str], None]
Nodes = List[ItemOrFolder]


def folder_path(path: FolderPath) -> List[str]:
    """Normalize a folder address; a plain string is a single folder name."""
    if path is None:
        return []
    if isinstance(path, str):
        return [path]
    return list(path)


def rewrite_children(nodes: Nodes, path: Sequence[str], edit: Callable[[Nodes], Nodes]) -> Nodes:
    """Return a copy of ``nodes`` with ``edit`` applied to the child list at ``path``.

    Folders along the path are copied; everything else is shared with the
    original tree. Raises NotFoundError when a path segment does not resolve.
    """
    if not path:
        return edit(nodes)
    head, rest = path[0], path[1:]
    for index, node in enumerate(nodes):
        if isinstance(node, Folder) and node.name == head:
            updated = node.model_copy(update={"item": rewrite_children(node.item, rest, edit)})
            return nodes[:index] + [updated] + nodes[index + 1:]
    raise NotFoundError(f"folder {head!r} not found")


def item_from_request(request: HttpRequest) -> Item:
    """Build a saved collection request from a submitted request."""
    body = None
    if request.body is not None:
        options = {"raw": {"language": "json"}} if request.body.mode == BodyMode.JSON else None
        body = CollectionBody(mode="raw", raw=request.body.as_text(), options=options)
    headers = [CollectionHeader(key=key, value=value, type="text") for key, value in request.headers]
    return Item(
        name=request.name or request.url,
        request=CollectionRequest(
            method=request.method.value,
            url=CollectionUrl(raw=request.url),
            header=headers or None,
            body=body,
        ),
    )


class CollectionEditor:
    """Add and delete nodes of stored collections."""

    def __init__(self, storage: StorageBackend):
        self.storage = storage
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, collection_id: str) -> asyncio.Lock:
        return self._locks.setdefault(collection_id, asyncio.Lock())

    async def _mutate(self, collection_id: str, mutate: Callable[[Collection], Collection]) -> Collection:
        async with self._lock_for(collection_id):
            collections = await self.storage.get_all_collections()
            collection = next((c for c in collections if c.info.id == collection_id), None)
            if collection is None:
                raise NotFoundError(f"collection {collection_id!r} not found")
            updated = mutate(collection)
            await self.storage.save_collection(updated)
            return updated

    def _mutate_children(self, collection_id: str, path: Sequence[str], edit: Callable[[Nodes], Nodes]):
        return self._mutate(
            collection_id,
            lambda c: c.model_copy(update={"item": rewrite_children(c.item, path, edit)}),
        )

    async def new_collection(self, name: str, description: Optional[str] = None) -> Collection:
        collection = Collection(info=CollectionInfo(name=name, description=description))
        await self.storage.save_collection(collection)
        logger.info("created collection %s (%s)", name, collection.info.id)
        return collection

    async def delete_collection(self, collection_id: str) -> None:
        async with self._lock_for(collection_id):
            if not await self.storage.delete_collection(collection_id):
                raise NotFoundError(f"collection {collection_id!r} not found")
        logger.info("deleted collection %s", collection_id)

    async def add_folder(self, collection_id: str, name: str, parent: FolderPath = None) -> Collection:
        return await self._mutate_children(
            collection_id, folder_path(parent), lambda nodes: nodes + [Folder(name=name)]
        )

    async def add_request_to_collection(
        self,
        collection_id: str,
        request: Union[HttpRequest, Item],
        folder: FolderPath = None,
    ) -> Collection:
        """Append one saved request to the folder at ``folder`` (the root when None)."""
        item = request if isinstance(request, Item) else item_from_request(request)
        return await self._mutate_children(
            collection_id, folder_path(folder), lambda nodes: nodes + [item]
        )

    async def delete_collection_folder(self, collection_id: str, folder: FolderPath) -> Collection:
        """Remove every folder named like the last path segment, at its level."""
        path = folder_path(folder)
        if not path:
            raise ValueError("a folder path is required")
        parent, name = path[:-1], path[-1]

        def drop_folder(nodes: Nodes) -> Nodes:
            kept = [n for n in nodes if not (isinstance(n, Folder) and n.name == name)]
            if len(kept) == len(nodes):
                raise NotFoundError(f"folder {name!r} not found")
            return kept

        return await self._mutate_children(collection_id, parent, drop_folder)

    async def delete_collection_request(self, collection_id: str, request_name: str) -> Collection:
        """Remove top-level requests with the given name."""
        return await self.delete_folder_request(collection_id, None, request_name)

    async def delete_folder_request(
        self, collection_id: str, folder: FolderPath, request_name: str
    ) -> Collection:
        """Remove requests with the given name from the folder at ``folder``."""

        def drop_request(nodes: Nodes) -> Nodes:
            kept = [n for n in nodes if not (isinstance(n, Item) and n.name == request_name)]
            if len(kept) == len(nodes):
                raise NotFoundError(f"request {request_name!r} not found")
            return kept

        return await self._mutate_children(collection_id, folder_path(folder), drop_request)

    async def delete_node(
        self,
        collection_id: str,
        folder: FolderPath = None,
        request_name: Optional[str] = None,
    ) -> Optional[Collection]:
        """Delete whatever the arguments address.

        No folder and no request deletes the collection itself; a folder alone
        deletes that folder; a request name deletes the request from the folder
        (or from the root when no folder is given).
        """
        path = folder_path(folder)
        if request_name is not None:
            return await self.delete_folder_request(collection_id, path, request_name)
        if path:
            return await self.delete_collection_folder(collection_id, path)
        await self.delete_collection(collection_id)
        return None
