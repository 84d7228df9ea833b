"""HTTP transport used to dispatch requests."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from .errors import NetworkError
from .models import BodyMode, RequestBody

logger = logging.getLogger(__name__)


@dataclass
class HttpResult:
    """Raw outcome of one HTTP exchange."""
    status_code: int
    reason: str
    headers: List[Tuple[str, str]] = field(default_factory=list)
    body: str = ""

    def header(self, name: str) -> Optional[str]:
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    @property
    def status(self) -> str:
        return f"{self.status_code} {self.reason}".strip()


class HttpTransport(Protocol):
    """Anything able to send a request and return its result."""

    async def send(
        self,
        method: str,
        url: str,
        headers: List[Tuple[str, str]],
        body: Optional[RequestBody] = None,
    ) -> HttpResult: ...

    async def close(self) -> None: ...


class HttpxTransport:
    """Transport backed by an ``httpx.AsyncClient``."""

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        verify_ssl: bool = True,
        follow_redirects: bool = True,
    ):
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self.follow_redirects = follow_redirects
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                verify=self.verify_ssl,
                follow_redirects=self.follow_redirects,
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(
        self,
        method: str,
        url: str,
        headers: List[Tuple[str, str]],
        body: Optional[RequestBody] = None,
    ) -> HttpResult:
        kwargs: Dict[str, Any] = {"method": method, "url": url, "headers": headers}
        if body is not None:
            if body.mode == BodyMode.JSON:
                kwargs["json"] = body.content
            elif isinstance(body.content, dict):
                kwargs["data"] = body.content
            else:
                kwargs["content"] = str(body.content).encode()

        logger.debug("sending %s %s", method, url)
        try:
            response = await self._get_client().request(**kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            raise NetworkError(f"{method} {url} failed: {exc}") from exc

        return HttpResult(
            status_code=response.status_code,
            reason=response.reason_phrase,
            headers=list(response.headers.multi_items()),
            body=response.text,
        )
