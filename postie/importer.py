"""Postman collection and environment import/export."""

import json
import logging
from pathlib import Path
from typing import Union

from pydantic import ValidationError

from .errors import ParseError, PersistenceError
from .models import Collection, EnvironmentFile

logger = logging.getLogger(__name__)


def read_file(path: Union[str, Path]) -> str:
    logger.debug("reading %s", path)
    try:
        return Path(path).expanduser().read_text(encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"cannot read {path}: {exc}") from exc


def write_file(path: Union[str, Path], content: str) -> None:
    target = Path(path).expanduser()
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise PersistenceError(f"cannot write {path}: {exc}") from exc


def parse_collection(collection_json: str) -> Collection:
    """Parse a Postman v2.1 collection export."""
    try:
        return Collection.model_validate_json(collection_json)
    except ValidationError as exc:
        raise ParseError(f"invalid collection: {exc}") from exc


def parse_environment(environment_json: str) -> EnvironmentFile:
    """Parse a Postman environment export."""
    try:
        return EnvironmentFile.model_validate_json(environment_json)
    except ValidationError as exc:
        raise ParseError(f"invalid environment: {exc}") from exc


def serialize_collection(collection: Collection) -> str:
    return json.dumps(collection.to_postman(), indent=2)


def serialize_environment(environment: EnvironmentFile) -> str:
    return json.dumps(environment.to_postman(), indent=2)
