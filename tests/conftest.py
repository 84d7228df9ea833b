"""Shared fixtures."""

import json
from typing import Callable, List

import httpx
import pytest

from postie.http_client import HttpxTransport
from postie.storage import StorageBackend


@pytest.fixture
def storage(tmp_path) -> StorageBackend:
    return StorageBackend(tmp_path / "postie.db")


@pytest.fixture
def collection_data() -> dict:
    """A Postman export with a top-level request and a nested folder tree."""
    return {
        "info": {
            "_postman_id": "c0ffee00-0000-4000-8000-000000000001",
            "name": "Test Collection",
            "description": "A collection for unit testing",
            "schema": "https://schema.getpostman.com/json/collection/v2.1.0/collection.json",
        },
        "item": [
            {
                "name": "Request 1",
                "request": {
                    "method": "GET",
                    "url": {"raw": "http://localhost:3000", "host": ["localhost"]},
                },
            },
            {
                "name": "users",
                "item": [
                    {
                        "name": "list users",
                        "request": {
                            "method": "GET",
                            "header": [{"key": "Accept", "value": "application/json", "type": "text"}],
                            "url": {"raw": "{{HOST_URL}}/users", "path": ["users"]},
                        },
                    },
                    {
                        "name": "admin",
                        "item": [
                            {
                                "name": "delete user",
                                "request": {
                                    "method": "DELETE",
                                    "url": {"raw": "{{HOST_URL}}/users/1"},
                                    "body": {"mode": "raw", "raw": "{}", "options": {"raw": {"language": "json"}}},
                                },
                            }
                        ],
                    },
                ],
            },
            {"name": "empty", "item": []},
        ],
        "auth": {
            "type": "bearer",
            "bearer": [{"key": "token", "value": "secret", "type": "string"}],
        },
    }


@pytest.fixture
def collection_json(collection_data) -> str:
    return json.dumps(collection_data)


@pytest.fixture
def environment_data() -> dict:
    return {
        "id": "3ab687f6-4d2d-4d15-b129-962721cd5c5a",
        "name": "Local",
        "values": [
            {"key": "HOST_URL", "value": "http://localhost:3000/v1", "type": "default", "enabled": True}
        ],
    }


class RecordingHandler:
    """httpx.MockTransport handler that records requests and replies with a fixed response."""

    def __init__(self, responder: Callable[[httpx.Request], httpx.Response]):
        self.responder = responder
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)


@pytest.fixture
def make_transport():
    """Build an HttpxTransport whose client answers through ``responder``."""

    def factory(responder):
        handler = RecordingHandler(responder)
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return HttpxTransport(client=client), handler

    return factory
