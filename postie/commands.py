"""Commands the presentation layer sends to the application state."""

from dataclasses import dataclass
from typing import Optional, Sequence, Union

from .models import HttpRequest, Item, OAuth2Request

FolderAddress = Union[str, Sequence[str], None]


@dataclass(frozen=True)
class SubmitRequest:
    request: HttpRequest


@dataclass(frozen=True)
class SubmitOAuth2Request:
    request: OAuth2Request


@dataclass(frozen=True)
class ImportCollection:
    path: str


@dataclass(frozen=True)
class ImportEnvironment:
    path: str


@dataclass(frozen=True)
class ExportCollection:
    collection_id: str
    path: str


@dataclass(frozen=True)
class ExportEnvironment:
    environment_id: str
    path: str


@dataclass(frozen=True)
class NewCollection:
    name: str


@dataclass(frozen=True)
class NewEnvironment:
    name: str


@dataclass(frozen=True)
class AddFolder:
    collection_id: str
    name: str
    parent: FolderAddress = None


@dataclass(frozen=True)
class AddRequestToCollection:
    collection_id: str
    request: Union[HttpRequest, Item]
    folder: FolderAddress = None


@dataclass(frozen=True)
class DeleteNode:
    """Delete a collection, a folder, or a request, depending on what is set."""
    collection_id: str
    folder: FolderAddress = None
    request_name: Optional[str] = None


@dataclass(frozen=True)
class RefreshCollections:
    pass


@dataclass(frozen=True)
class RefreshEnvironments:
    pass


@dataclass(frozen=True)
class RefreshRequestData:
    pass


@dataclass(frozen=True)
class NewRequest:
    pass


@dataclass(frozen=True)
class RemoveTab:
    tab_id: str


@dataclass(frozen=True)
class SetActiveTab:
    tab_id: str


Command = Union[
    SubmitRequest,
    SubmitOAuth2Request,
    ImportCollection,
    ImportEnvironment,
    ExportCollection,
    ExportEnvironment,
    NewCollection,
    NewEnvironment,
    AddFolder,
    AddRequestToCollection,
    DeleteNode,
    RefreshCollections,
    RefreshEnvironments,
    RefreshRequestData,
    NewRequest,
    RemoveTab,
    SetActiveTab,
]
