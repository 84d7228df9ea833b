"""Data models for collections, environments, tabs and request history."""

import json
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Tuple, Union
from urllib.parse import urlencode

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Discriminator,
    Field,
    Tag,
    field_validator,
)

from .errors import InvalidMethodError


def new_id() -> str:
    return str(uuid.uuid4())


class HttpMethod(str, Enum):
    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    PATCH = "PATCH"
    DELETE = "DELETE"
    OPTIONS = "OPTIONS"
    HEAD = "HEAD"

    @classmethod
    def parse(cls, value: str) -> "HttpMethod":
        """Parse an exact, upper-case method name."""
        try:
            return cls(value)
        except ValueError:
            raise InvalidMethodError(f"unsupported HTTP method: {value!r}") from None

    def __str__(self) -> str:
        return self.value


class AuthMode(str, Enum):
    APIKEY = "APIKEY"
    BEARER = "BEARER"
    OAUTH2 = "OAUTH2"
    NONE = "NONE"


# Postman collection v2.1 -------------------------------------------------------


class _PostmanModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_postman(self) -> Dict[str, Any]:
        """Dump using Postman key names, leaving out unset optional keys."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class AuthValue(_PostmanModel):
    key: str
    # Postman exports use strings for most auth values but arbitrary JSON for some
    value: Any = None
    type: Optional[str] = None


class CollectionAuth(_PostmanModel):
    type: str
    bearer: Optional[List[AuthValue]] = None
    oauth2: Optional[List[AuthValue]] = None
    apikey: Optional[List[AuthValue]] = None

    def value_of(self, scheme: str, key: str) -> Optional[Any]:
        for entry in getattr(self, scheme, None) or []:
            if entry.key == key:
                return entry.value
        return None


class CollectionHeader(_PostmanModel):
    key: str
    value: str = ""
    type: Optional[str] = None
    disabled: Optional[bool] = None


class CollectionBody(_PostmanModel):
    mode: str
    raw: Optional[str] = None
    options: Optional[Dict[str, Any]] = None


class CollectionUrl(_PostmanModel):
    raw: str
    protocol: Optional[str] = None
    host: Optional[List[str]] = None
    path: Optional[List[str]] = None
    query: Optional[List[Dict[str, Any]]] = None


class CollectionRequest(_PostmanModel):
    method: str = "GET"
    url: CollectionUrl
    auth: Optional[CollectionAuth] = None
    header: Optional[List[CollectionHeader]] = Field(
        default=None, validation_alias=AliasChoices("header", "headers")
    )
    body: Optional[CollectionBody] = None
    description: Optional[Union[str, Dict[str, Any]]] = None

    @field_validator("url", mode="before")
    @classmethod
    def _url_from_string(cls, value: Any) -> Any:
        # Postman allows the url to be exported as a bare string
        if isinstance(value, str):
            return {"raw": value}
        return value


class Item(_PostmanModel):
    """A saved request: leaf node of a collection tree."""

    name: str
    request: CollectionRequest
    response: Optional[List[Any]] = None


class Folder(_PostmanModel):
    """An internal node of a collection tree."""

    name: str
    item: List["ItemOrFolder"] = Field(default_factory=list)
    description: Optional[Union[str, Dict[str, Any]]] = None
    auth: Optional[CollectionAuth] = None


def node_kind(value: Any) -> Optional[str]:
    """Classify a collection node by the keys it carries.

    Postman does not tag nodes: anything with a ``request`` key is a request,
    anything else with an ``item`` key is a folder. Returns None for values
    that are neither, which pydantic reports as a validation error.
    """
    if isinstance(value, dict):
        if "request" in value:
            return "item"
        if "item" in value:
            return "folder"
        return None
    if isinstance(value, Item):
        return "item"
    if isinstance(value, Folder):
        return "folder"
    return None


ItemOrFolder = Annotated[
    Union[Annotated[Item, Tag("item")], Annotated[Folder, Tag("folder")]],
    Discriminator(
        node_kind,
        custom_error_type="invalid_collection_node",
        custom_error_message="collection node must be an object with a 'request' or 'item' key",
    ),
]

Folder.model_rebuild()


class CollectionInfo(_PostmanModel):
    id: str = Field(
        default_factory=new_id,
        validation_alias=AliasChoices("_postman_id", "id"),
        serialization_alias="_postman_id",
    )
    name: str
    description: Optional[Union[str, Dict[str, Any]]] = None
    schema_url: Optional[str] = Field(default=None, alias="schema")


class Collection(_PostmanModel):
    info: CollectionInfo
    item: List[ItemOrFolder] = Field(default_factory=list)
    auth: Optional[CollectionAuth] = None

    @property
    def id(self) -> str:
        return self.info.id

    @property
    def name(self) -> str:
        return self.info.name


# Postman environment -----------------------------------------------------------


class EnvironmentValue(_PostmanModel):
    key: str
    value: str = ""
    type: str = "default"
    enabled: bool = True


class EnvironmentFile(_PostmanModel):
    id: str = Field(default_factory=new_id)
    name: str
    values: Optional[List[EnvironmentValue]] = None


# Persisted request/response records ------------------------------------------


class RequestHeader(BaseModel):
    key: str
    value: str


class ResponseHeader(RequestHeader):
    pass


DEFAULT_HEADERS: List[Tuple[str, str]] = [
    ("Content-Type", "application/json"),
    ("User-Agent", "postie"),
    ("Cache-Control", "no-cache"),
]


class Tab(BaseModel):
    """One request/response editing session."""

    id: str = Field(default_factory=new_id)
    method: HttpMethod = HttpMethod.GET
    url: str = ""
    req_body: str = ""
    req_headers: List[RequestHeader] = Field(default_factory=list)
    res_status: Optional[str] = None
    res_body: str = ""
    res_headers: List[RequestHeader] = Field(default_factory=list)

    @classmethod
    def blank(cls) -> "Tab":
        return cls(req_headers=[RequestHeader(key=k, value=v) for k, v in DEFAULT_HEADERS])


class DBRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    method: str
    url: str
    name: Optional[str] = None
    headers: List[RequestHeader] = Field(default_factory=list)
    body: Optional[str] = None


class DBResponse(BaseModel):
    id: str = Field(default_factory=new_id)
    status_code: int
    name: Optional[str] = None
    headers: List[ResponseHeader] = Field(default_factory=list)
    body: Optional[str] = None


class RequestHistoryItem(BaseModel):
    id: str = Field(default_factory=new_id)
    request_id: str
    response_id: str
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    response_time: int = 0


# Request submission ------------------------------------------------------------


class BodyMode(str, Enum):
    JSON = "json"
    FORM = "form"


class RequestBody(BaseModel):
    mode: BodyMode
    content: Any

    @classmethod
    def json_body(cls, value: Any) -> "RequestBody":
        return cls(mode=BodyMode.JSON, content=value)

    @classmethod
    def form_body(cls, value: Union[str, Dict[str, str]]) -> "RequestBody":
        return cls(mode=BodyMode.FORM, content=value)

    def as_text(self) -> str:
        if self.mode == BodyMode.JSON:
            return json.dumps(self.content)
        if isinstance(self.content, dict):
            return urlencode(self.content)
        return str(self.content)


class RequestAuth(BaseModel):
    """Auth settings of the request editor; only the active mode is applied."""

    mode: AuthMode = AuthMode.NONE
    api_key_name: str = ""
    api_key: str = ""
    bearer_token: str = ""
    oauth_token: str = ""


class HttpRequest(BaseModel):
    id: str = Field(default_factory=new_id)
    tab_id: str = Field(default_factory=new_id)
    name: Optional[str] = None
    method: HttpMethod = HttpMethod.GET
    url: str
    headers: List[Tuple[str, str]] = Field(default_factory=list)
    body: Optional[RequestBody] = None
    environment: EnvironmentFile = Field(
        default_factory=lambda: EnvironmentFile(id="", name="", values=None)
    )
    auth: RequestAuth = Field(default_factory=RequestAuth)


class OAuthRequestBody(BaseModel):
    grant_type: str = "client_credentials"
    scope: str = ""
    audience: str = ""


class OAuth2Request(BaseModel):
    access_token_url: str
    refresh_url: str = ""
    client_id: str
    client_secret: str
    request: OAuthRequestBody = Field(default_factory=OAuthRequestBody)


class OAuthResponse(BaseModel):
    access_token: str
    expires_in: int
    token_type: str


# Responses -------------------------------------------------------------------


class ResponseKind(str, Enum):
    JSON = "JSON"
    TEXT = "TEXT"
    XML = "XML"
    UNKNOWN = "UNKNOWN"


class ResponseData(BaseModel):
    kind: ResponseKind
    payload: Any = ""

    @classmethod
    def unknown(cls) -> "ResponseData":
        return cls(kind=ResponseKind.UNKNOWN, payload="")


class Response(BaseModel):
    """Outcome of one submitted HTTP request."""

    status: str
    status_code: int
    data: ResponseData
    headers: List[ResponseHeader] = Field(default_factory=list)
    body: str = ""
    elapsed_ms: int = 0
    history_id: Optional[str] = None
