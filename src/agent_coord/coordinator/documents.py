"""Opaque structured documents carried by tasks, results and messages.

Documents are validated for well-formedness only (JSON-representable values
with string keys, finite numbers and valid unicode); their shape is never
checked against the task type. Only lists are accepted as arrays, so a
document reads back exactly as written.
"""

from __future__ import annotations

import json
import math
from typing import Any

from agent_coord.coordinator.errors import InvalidPayloadError

_MAX_DEPTH = 64


def encode_document(value: Any, *, field_name: str = "payload", allow_null: bool = False) -> str:
    """Validate a document and serialize it for storage."""

    if value is None and not allow_null:
        raise InvalidPayloadError(f"Invalid {field_name}: a document is required, got null.")
    _check_value(value, field_name=field_name, path="$", depth=0)
    try:
        return json.dumps(value, ensure_ascii=False, allow_nan=False)
    except (TypeError, ValueError) as error:
        raise InvalidPayloadError(f"Invalid {field_name}: {error}") from error


def decode_document(raw: str | None) -> Any:
    """Inverse of ``encode_document`` for stored columns."""

    if raw is None:
        return None
    return json.loads(raw)


def parse_document(text: str, *, field_name: str = "payload") -> Any:
    """Parse JSON text supplied by a CLI-style caller."""

    try:
        value = json.loads(text)
    except json.JSONDecodeError as error:
        raise InvalidPayloadError(f"Invalid JSON {field_name}: {error.msg}") from error
    encode_document(value, field_name=field_name)
    return value


def _check_value(value: Any, *, field_name: str, path: str, depth: int) -> None:
    if depth > _MAX_DEPTH:
        raise InvalidPayloadError(f"Invalid {field_name}: nesting deeper than {_MAX_DEPTH} at {path}")
    if value is None or isinstance(value, (bool, int)):
        return
    if isinstance(value, str):
        _check_text(value, field_name=field_name, path=path)
        return
    if isinstance(value, float):
        if not math.isfinite(value):
            raise InvalidPayloadError(f"Invalid {field_name}: non-finite number at {path}")
        return
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise InvalidPayloadError(
                    f"Invalid {field_name}: object key {key!r} at {path} is not a string",
                )
            _check_text(key, field_name=field_name, path=path)
            _check_value(item, field_name=field_name, path=f"{path}.{key}", depth=depth + 1)
        return
    if isinstance(value, list):
        for index, item in enumerate(value):
            _check_value(item, field_name=field_name, path=f"{path}[{index}]", depth=depth + 1)
        return
    raise InvalidPayloadError(
        f"Invalid {field_name}: unsupported value of type {type(value).__name__} at {path}",
    )


def _check_text(value: str, *, field_name: str, path: str) -> None:
    # Lone surrogates survive json.dumps but cannot be stored as UTF-8.
    try:
        value.encode("utf-8")
    except UnicodeEncodeError as error:
        raise InvalidPayloadError(f"Invalid {field_name}: invalid unicode at {path}") from error
