"""Normalization helpers.

Centralizes JSON decoding of inbound MQTT bodies so the validator and the
handshake handlers agree on what counts as malformed.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from odotrack.exceptions import MalformedPayloadError


def decode_json_object(body: bytes | bytearray | str | Mapping[str, Any]) -> dict[str, Any]:
    """Decode an MQTT body into a JSON object.

    Mappings are passed through (copied). Raises
    :class:`MalformedPayloadError` for undecodable bytes, invalid JSON, or
    JSON that is not an object.
    """
    if isinstance(body, Mapping):
        return dict(body)

    if isinstance(body, (bytes, bytearray)):
        try:
            text = bytes(body).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError(f"payload is not valid UTF-8: {exc}") from exc
    else:
        text = body

    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedPayloadError(f"payload is not valid JSON: {exc.msg}") from exc

    if not isinstance(parsed, dict):
        raise MalformedPayloadError(f"payload is JSON {type(parsed).__name__}, expected object")
    return parsed


def is_blank_body(body: bytes | bytearray | str | Mapping[str, Any] | None) -> bool:
    """Return True for bodies that carry nothing (``None``, empty, whitespace)."""
    if body is None:
        return True
    if isinstance(body, Mapping):
        return not body
    if isinstance(body, (bytes, bytearray)):
        return not bytes(body).strip()
    return not body.strip()
