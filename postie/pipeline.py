"""Request execution and history recording."""

import logging
import time
from datetime import datetime, timezone
from typing import List, Tuple, Union

from pydantic import ValidationError

from .auth import Headers, auth_headers, basic_auth_header, merge_headers
from .classifier import classify_response
from .errors import NetworkError, ParseError
from .http_client import HttpTransport
from .models import (
    DBRequest,
    DBResponse,
    HttpRequest,
    OAuth2Request,
    OAuthResponse,
    RequestBody,
    RequestHeader,
    Response,
    ResponseHeader,
    Tab,
)
from .storage import StorageBackend
from .variables import substitute_variables

logger = logging.getLogger(__name__)


class RequestPipeline:
    """Sends user requests and records each exchange in the history tables."""

    def __init__(self, storage: StorageBackend, transport: HttpTransport):
        self.storage = storage
        self.transport = transport

    async def execute(self, request: Union[HttpRequest, OAuth2Request]) -> Union[Response, OAuthResponse]:
        if isinstance(request, OAuth2Request):
            return await self.request_token(request)
        return await self.submit(request)

    def build_headers(self, request: HttpRequest) -> Headers:
        return merge_headers(request.headers, auth_headers(request.auth))

    async def submit(self, request: HttpRequest) -> Response:
        """Send an HTTP request and record it.

        Raises NetworkError when the request cannot be sent and
        PersistenceError when the exchange cannot be recorded.
        """
        headers = self.build_headers(request)
        url = substitute_variables(request.environment, request.url)
        logger.info("submitting %s %s", request.method.value, url)

        sent_at = datetime.now(timezone.utc)
        start_time = time.perf_counter()
        result = await self.transport.send(request.method.value, url, headers, request.body)
        response_time = int((time.perf_counter() - start_time) * 1000)

        data = classify_response(result.header("content-type"), result.body)
        request_headers = _to_headers(request.headers, RequestHeader)
        response_headers = _to_headers(result.headers, ResponseHeader)
        body_text = request.body.as_text() if request.body is not None else None

        db_request = DBRequest(
            method=request.method.value,
            url=request.url,
            name=request.name,
            headers=request_headers,
            body=body_text,
        )
        db_response = DBResponse(
            status_code=result.status_code,
            name=request.name,
            headers=response_headers,
            body=result.body,
        )
        tab = Tab(
            id=request.tab_id,
            method=request.method,
            url=request.url,
            req_body=body_text or "",
            req_headers=request_headers,
            res_status=result.status,
            res_body=result.body,
            res_headers=response_headers,
        )
        history_item = await self.storage.record_execution(
            db_request, db_response, sent_at, response_time, tab
        )
        logger.info("%s %s -> %s in %dms", request.method.value, url, result.status, response_time)

        return Response(
            status=result.status,
            status_code=result.status_code,
            data=data,
            headers=response_headers,
            body=result.body,
            elapsed_ms=response_time,
            history_id=history_item.id,
        )

    async def request_token(self, request: OAuth2Request) -> OAuthResponse:
        """Run an OAuth2 token grant. Token calls are not recorded in history."""
        logger.info("requesting oauth2 token from %s", request.access_token_url)
        headers = [
            basic_auth_header(request.client_id, request.client_secret),
            ("Content-Type", "application/x-www-form-urlencoded"),
        ]
        result = await self.transport.send(
            "POST",
            request.access_token_url,
            headers,
            RequestBody.form_body(request.request.model_dump()),
        )
        if result.status_code >= 400:
            raise NetworkError(f"token request failed with {result.status}")
        try:
            return OAuthResponse.model_validate_json(result.body)
        except ValidationError as exc:
            raise ParseError(f"unexpected token response: {exc}") from exc


def _to_headers(pairs: List[Tuple[str, str]], model):
    return [model(key=key, value=value) for key, value in pairs]
