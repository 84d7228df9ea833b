"""Storage backend for collections, environments, tabs and request history."""

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, List, Optional, Union

from pydantic import TypeAdapter, ValidationError

from .errors import InvalidMethodError, PersistenceError
from .models import (
    Collection,
    CollectionAuth,
    CollectionInfo,
    DBRequest,
    DBResponse,
    EnvironmentFile,
    EnvironmentValue,
    HttpMethod,
    ItemOrFolder,
    RequestHeader,
    RequestHistoryItem,
    ResponseHeader,
    Tab,
    new_id,
)

logger = logging.getLogger(__name__)

_ITEMS = TypeAdapter(List[ItemOrFolder])
_AUTH = TypeAdapter(Optional[CollectionAuth])
_ENV_VALUES = TypeAdapter(List[EnvironmentValue])
_REQUEST_HEADERS = TypeAdapter(List[RequestHeader])
_RESPONSE_HEADERS = TypeAdapter(List[ResponseHeader])

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class StorageBackend:
    """SQLite persistence.

    Every public method is a coroutine that runs its statements on a worker
    thread, on a connection of its own, inside a single transaction.
    """

    def __init__(self, db_path: Union[str, Path, None] = None):
        if db_path is None:
            from .config import get_settings

            db_path = get_settings().db_path

        path = Path(db_path).expanduser()
        if not path.is_absolute():
            path = Path.cwd() / path
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = path
        self._init_db()

    def _init_db(self):
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS request (
                    id TEXT PRIMARY KEY,
                    method TEXT NOT NULL,
                    url TEXT NOT NULL,
                    name TEXT,
                    headers TEXT NOT NULL,
                    body TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS response (
                    id TEXT PRIMARY KEY,
                    status_code INTEGER NOT NULL,
                    name TEXT,
                    headers TEXT NOT NULL,
                    body TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS request_history (
                    id TEXT PRIMARY KEY,
                    request_id TEXT NOT NULL,
                    response_id TEXT NOT NULL,
                    sent_at TEXT NOT NULL,
                    response_time_ms INTEGER NOT NULL,
                    FOREIGN KEY (request_id) REFERENCES request(id),
                    FOREIGN KEY (response_id) REFERENCES response(id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS environment (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    "values" TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS collections (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    description TEXT,
                    schema TEXT,
                    item TEXT NOT NULL,
                    auth TEXT
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS tabs (
                    id TEXT PRIMARY KEY,
                    method TEXT NOT NULL,
                    url TEXT NOT NULL,
                    req_body TEXT,
                    req_headers TEXT NOT NULL,
                    res_status TEXT,
                    res_body TEXT,
                    res_headers TEXT
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_request_history_sent_at ON request_history(sent_at DESC)"
            )

    @contextmanager
    def _get_connection(self):
        try:
            conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as exc:
            raise PersistenceError(f"cannot open {self.db_path}: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as exc:
            conn.rollback()
            raise PersistenceError(str(exc)) from exc
        except BaseException:
            conn.rollback()
            raise
        finally:
            conn.close()

    async def _run(self, fn, *args):
        return await asyncio.to_thread(fn, *args)

    # Collections

    async def save_collection(self, collection: Collection) -> None:
        """Insert the collection, or replace the stored document with the same id."""
        await self._run(self._save_collection, collection)

    def _save_collection(self, collection: Collection):
        logger.debug("saving collection %s (%s)", collection.info.name, collection.info.id)
        info = collection.info
        with self._get_connection() as conn:
            conn.execute("""
                INSERT OR REPLACE INTO collections (id, name, description, schema, item, auth)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                info.id,
                info.name,
                json.dumps(info.description) if info.description is not None else None,
                info.schema_url,
                json.dumps([node.to_postman() for node in collection.item]),
                json.dumps(collection.auth.to_postman()) if collection.auth else None,
            ))

    async def get_all_collections(self) -> List[Collection]:
        return await self._run(self._get_all_collections)

    def _get_all_collections(self) -> List[Collection]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM collections").fetchall()
        return [self._row_to_collection(row) for row in rows]

    async def get_collection(self, collection_id: str) -> Optional[Collection]:
        return await self._run(self._get_collection, collection_id)

    def _get_collection(self, collection_id: str) -> Optional[Collection]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT * FROM collections WHERE id = ?", (collection_id,)).fetchone()
        return self._row_to_collection(row) if row else None

    async def delete_collection(self, collection_id: str) -> bool:
        """Delete a collection. Returns False when no row had that id."""
        return await self._run(self._delete, "collections", collection_id)

    # Environments

    async def save_environment(self, environment: EnvironmentFile) -> None:
        await self._run(self._save_environment, environment)

    def _save_environment(self, environment: EnvironmentFile):
        logger.debug("saving environment %s (%s)", environment.name, environment.id)
        values = None
        if environment.values is not None:
            values = json.dumps([value.to_postman() for value in environment.values])
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO environment (id, name, "values") VALUES (?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET name = excluded.name, "values" = excluded."values"
            """, (environment.id, environment.name, values))

    async def get_all_environments(self) -> List[EnvironmentFile]:
        return await self._run(self._get_all_environments)

    def _get_all_environments(self) -> List[EnvironmentFile]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM environment").fetchall()
        environments = []
        for row in rows:
            row_dict = dict(row)
            values = _decode(row_dict["values"], _ENV_VALUES, None, f"environment {row_dict['id']} values")
            environments.append(EnvironmentFile(id=row_dict["id"], name=row_dict["name"], values=values))
        return environments

    async def delete_environment(self, environment_id: str) -> bool:
        return await self._run(self._delete, "environment", environment_id)

    # Tabs

    async def save_tab(self, tab: Tab) -> None:
        await self._run(self._save_tab, tab)

    def _save_tab(self, tab: Tab):
        with self._get_connection() as conn:
            self._upsert_tab(conn, tab)

    def _upsert_tab(self, conn: sqlite3.Connection, tab: Tab):
        logger.debug("saving tab %s", tab.id)
        conn.execute("""
            INSERT INTO tabs (id, method, url, req_body, req_headers, res_status, res_body, res_headers)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT (id) DO UPDATE SET
                method = excluded.method,
                url = excluded.url,
                req_body = excluded.req_body,
                req_headers = excluded.req_headers,
                res_status = excluded.res_status,
                res_body = excluded.res_body,
                res_headers = excluded.res_headers
        """, (
            tab.id,
            tab.method.value,
            tab.url,
            tab.req_body,
            _dump_headers(tab.req_headers),
            tab.res_status,
            tab.res_body,
            _dump_headers(tab.res_headers),
        ))

    async def get_all_tabs(self) -> List[Tab]:
        return await self._run(self._get_all_tabs)

    def _get_all_tabs(self) -> List[Tab]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM tabs").fetchall()
        return [self._row_to_tab(row) for row in rows]

    async def delete_tab(self, tab_id: str) -> bool:
        return await self._run(self._delete, "tabs", tab_id)

    # Requests, responses and history: append-only

    async def save_request(self, request: DBRequest) -> DBRequest:
        """Insert a new request row under a fresh id and return the stored copy."""
        return await self._run(self._save_request, request)

    def _save_request(self, request: DBRequest) -> DBRequest:
        with self._get_connection() as conn:
            return self._insert_request(conn, request)

    def _insert_request(self, conn: sqlite3.Connection, request: DBRequest) -> DBRequest:
        stored = request.model_copy(update={"id": new_id()})
        logger.debug("inserting request %s %s as %s", stored.method, stored.url, stored.id)
        conn.execute("""
            INSERT INTO request (id, method, url, name, headers, body)
            VALUES (?, ?, ?, ?, ?, ?)
        """, (
            stored.id,
            stored.method,
            stored.url,
            stored.name,
            _dump_headers(stored.headers),
            stored.body,
        ))
        return stored

    async def save_response(self, response: DBResponse) -> DBResponse:
        """Insert a new response row under a fresh id and return the stored copy."""
        return await self._run(self._save_response, response)

    def _save_response(self, response: DBResponse) -> DBResponse:
        with self._get_connection() as conn:
            return self._insert_response(conn, response)

    def _insert_response(self, conn: sqlite3.Connection, response: DBResponse) -> DBResponse:
        stored = response.model_copy(update={"id": new_id()})
        logger.debug("inserting response %s as %s", stored.status_code, stored.id)
        conn.execute("""
            INSERT INTO response (id, status_code, name, headers, body)
            VALUES (?, ?, ?, ?, ?)
        """, (
            stored.id,
            stored.status_code,
            stored.name,
            _dump_headers(stored.headers),
            stored.body,
        ))
        return stored

    async def save_request_response_item(
        self,
        request: DBRequest,
        response: DBResponse,
        sent_at: datetime,
        response_time: int,
    ) -> RequestHistoryItem:
        """Insert a history row linking an already stored request and response."""
        return await self._run(self._save_history_item, request.id, response.id, sent_at, response_time)

    def _save_history_item(self, request_id, response_id, sent_at, response_time) -> RequestHistoryItem:
        with self._get_connection() as conn:
            return self._insert_history_item(conn, request_id, response_id, sent_at, response_time)

    def _insert_history_item(
        self,
        conn: sqlite3.Connection,
        request_id: str,
        response_id: str,
        sent_at: datetime,
        response_time: int,
    ) -> RequestHistoryItem:
        item = RequestHistoryItem(
            request_id=request_id,
            response_id=response_id,
            sent_at=sent_at,
            response_time=response_time,
        )
        conn.execute("""
            INSERT INTO request_history (id, request_id, response_id, sent_at, response_time_ms)
            VALUES (?, ?, ?, ?, ?)
        """, (item.id, item.request_id, item.response_id, item.sent_at.isoformat(), item.response_time))
        return item

    async def record_execution(
        self,
        request: DBRequest,
        response: DBResponse,
        sent_at: datetime,
        response_time: int,
        tab: Tab,
    ) -> RequestHistoryItem:
        """Persist everything one submitted request produces.

        Writes, in order, the request row, the response row, the history row
        referencing both, and the tab upsert. All four share one transaction.
        """
        return await self._run(self._record_execution, request, response, sent_at, response_time, tab)

    def _record_execution(self, request, response, sent_at, response_time, tab) -> RequestHistoryItem:
        with self._get_connection() as conn:
            stored_request = self._insert_request(conn, request)
            stored_response = self._insert_response(conn, response)
            item = self._insert_history_item(
                conn, stored_request.id, stored_response.id, sent_at, response_time
            )
            self._upsert_tab(conn, tab)
        return item

    async def get_all_requests(self) -> List[DBRequest]:
        return await self._run(self._get_all_requests)

    def _get_all_requests(self) -> List[DBRequest]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM request").fetchall()
        requests = []
        for row in rows:
            row_dict = dict(row)
            requests.append(DBRequest(
                id=row_dict["id"],
                method=row_dict["method"],
                url=row_dict["url"],
                name=row_dict["name"],
                headers=_decode(row_dict["headers"], _REQUEST_HEADERS, [], f"request {row_dict['id']} headers"),
                body=row_dict["body"],
            ))
        return requests

    async def get_all_responses(self) -> List[DBResponse]:
        return await self._run(self._get_all_responses)

    def _get_all_responses(self) -> List[DBResponse]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM response").fetchall()
        responses = []
        for row in rows:
            row_dict = dict(row)
            responses.append(DBResponse(
                id=row_dict["id"],
                status_code=row_dict["status_code"],
                name=row_dict["name"],
                headers=_decode(row_dict["headers"], _RESPONSE_HEADERS, [], f"response {row_dict['id']} headers"),
                body=row_dict["body"],
            ))
        return responses

    async def get_request_response_items(self) -> List[RequestHistoryItem]:
        return await self._run(self._get_request_response_items)

    def _get_request_response_items(self) -> List[RequestHistoryItem]:
        with self._get_connection() as conn:
            rows = conn.execute("SELECT * FROM request_history ORDER BY sent_at").fetchall()
        return [self._row_to_history_item(row) for row in rows]

    # Helpers

    def _delete(self, table: str, row_id: str) -> bool:
        with self._get_connection() as conn:
            cursor = conn.execute(f"DELETE FROM {table} WHERE id = ?", (row_id,))
            return cursor.rowcount > 0

    def _row_to_collection(self, row) -> Collection:
        row_dict = dict(row)
        collection_id = row_dict["id"]
        description = None
        if row_dict["description"] is not None:
            try:
                description = json.loads(row_dict["description"])
            except json.JSONDecodeError:
                # rows written before descriptions were JSON encoded
                description = row_dict["description"]
        return Collection(
            info=CollectionInfo(
                id=collection_id,
                name=row_dict["name"],
                description=description,
                schema_url=row_dict["schema"],
            ),
            item=_decode(row_dict["item"], _ITEMS, [], f"collection {collection_id} items"),
            auth=_decode(row_dict["auth"], _AUTH, None, f"collection {collection_id} auth"),
        )

    def _row_to_tab(self, row) -> Tab:
        row_dict = dict(row)
        try:
            method = HttpMethod.parse(row_dict["method"])
        except InvalidMethodError:
            logger.warning("tab %s has unknown method %r, using GET", row_dict["id"], row_dict["method"])
            method = HttpMethod.GET
        return Tab(
            id=row_dict["id"],
            method=method,
            url=row_dict["url"],
            req_body=row_dict["req_body"] or "",
            req_headers=_decode(row_dict["req_headers"], _REQUEST_HEADERS, [], f"tab {row_dict['id']} headers"),
            res_status=row_dict["res_status"],
            res_body=row_dict["res_body"] or "",
            res_headers=_decode(row_dict["res_headers"], _REQUEST_HEADERS, [], f"tab {row_dict['id']} response headers"),
        )

    def _row_to_history_item(self, row) -> RequestHistoryItem:
        row_dict = dict(row)
        try:
            response_time = int(row_dict["response_time_ms"])
        except (TypeError, ValueError):
            logger.warning("history item %s has malformed response time", row_dict["id"])
            response_time = 0
        try:
            sent_at = datetime.fromisoformat(row_dict["sent_at"])
        except (TypeError, ValueError):
            logger.warning("history item %s has malformed timestamp", row_dict["id"])
            sent_at = _EPOCH
        return RequestHistoryItem(
            id=row_dict["id"],
            request_id=row_dict["request_id"],
            response_id=row_dict["response_id"],
            sent_at=sent_at,
            response_time=response_time,
        )


def _dump_headers(headers: List[RequestHeader]) -> str:
    return json.dumps([header.model_dump() for header in headers])


def _decode(raw: Optional[str], adapter: TypeAdapter, default: Any, what: str) -> Any:
    """Decode a JSON column, falling back to ``default`` for a malformed value."""
    if raw is None:
        return default
    try:
        return adapter.validate_json(raw)
    except ValidationError as exc:
        logger.warning("ignoring malformed %s: %s", what, exc.errors(include_url=False)[:1])
        return default
