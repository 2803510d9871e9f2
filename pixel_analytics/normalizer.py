"""
Turns inbound tracking bodies into ``TrackEvent`` and cleans data bound for
the Conversions API.

Accepted body shapes:
    - flat JSON object: ``{"pixelId": "...", "eventName": "pageview", ...}``
    - GraphQL-style wrapper: ``{"query": "...", "variables": {"input": {...}}}``
    - GET fallback: ``?e=<event name>&d=<base64 JSON object>``

Storefront themes sometimes leak unrendered Liquid (``{{ product.price }}``)
into tracking calls. Those values are kept on the stored event for debugging
but never forwarded.
"""

import base64
import binascii
import json
import math
import re
from typing import Any

from loguru import logger
from pydantic import ValidationError

from pixel_analytics.exceptions import InvalidPayloadError, MissingFieldsError
from pixel_analytics.schemas import TrackEvent, TrackPayload

NUMERIC_FIELDS = frozenset({"value", "quantity", "num_items"})

_PLACEHOLDER = re.compile(r"\{\{.*?\}\}", re.DOTALL)


def has_placeholder(value: Any) -> bool:
    return isinstance(value, str) and bool(_PLACEHOLDER.search(value))


def parse_body(raw: bytes | str) -> dict[str, Any]:
    """Decode a request body; beacons may arrive as text/plain so the content type is ignored."""
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidPayloadError("Request body is not valid UTF-8", e) from e
    if not raw or not raw.strip():
        raise InvalidPayloadError("Request body is empty")
    try:
        body = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InvalidPayloadError("Malformed JSON body", e) from e
    if not isinstance(body, dict):
        raise InvalidPayloadError("Request body must be a JSON object")
    return body


def unwrap_envelope(body: dict[str, Any]) -> dict[str, Any]:
    variables = body.get("variables")
    if isinstance(variables, dict) and ("query" in body or "input" in variables):
        data = variables.get("input")
        if not isinstance(data, dict):
            raise InvalidPayloadError("GraphQL body is missing variables.input")
        logger.debug("Unwrapped GraphQL-style tracking body")
        return data
    return body


def normalize(body: dict[str, Any]) -> TrackEvent:
    """Validate the envelope and return the canonical event.

    Raises:
        InvalidPayloadError: the envelope cannot be read.
        MissingFieldsError: pixel id or event name is absent.
    """
    data = unwrap_envelope(body)
    try:
        payload = TrackPayload.model_validate(data)
    except ValidationError as e:
        raise InvalidPayloadError("Invalid tracking payload", e) from e

    missing = [
        name
        for name, present in (("pixelId", payload.pixel_id), ("eventName", payload.event_name))
        if not present
    ]
    if missing:
        raise MissingFieldsError(missing)

    fields = payload.model_dump(exclude={"custom_data", "properties"})
    custom_data = payload.custom_data if payload.custom_data is not None else payload.properties
    return TrackEvent(**fields, custom_data=custom_data, properties=payload.properties)


def decode_beacon_query(event_param: str | None, data_param: str | None) -> dict[str, Any]:
    """Decode the ``e``/``d`` query parameters of the GET fallback into a flat body."""
    if not data_param:
        raise InvalidPayloadError("Missing data parameter")

    padded = data_param.strip() + "=" * (-len(data_param.strip()) % 4)
    decoded = None
    for altchars in (None, b"-_"):
        try:
            decoded = base64.b64decode(padded, altchars=altchars, validate=True)
            break
        except (binascii.Error, ValueError):
            continue
    if decoded is None:
        raise InvalidPayloadError("Data parameter is not valid base64")

    body = parse_body(decoded)
    if event_param and not (body.get("eventName") or body.get("event_name")):
        body["eventName"] = event_param
    return body


def _coerce_number(key: str, value: Any) -> int | float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value if math.isfinite(value) else None
    if not isinstance(value, str):
        return None
    if has_placeholder(value):
        logger.debug(f"Dropping template placeholder in {key}: {value}")
        return None
    try:
        number = float(value.strip())
    except ValueError:
        logger.debug(f"Dropping non-numeric {key}: {value}")
        return None
    if not math.isfinite(number):
        return None
    if key != "value" and number.is_integer():
        return int(number)
    return number


def _sanitize_list(items: list[Any]) -> list[Any]:
    cleaned = []
    for item in items:
        if item is None or has_placeholder(item):
            continue
        if isinstance(item, dict):
            item = sanitize_for_conversions(item)
            if not item:
                continue
        elif isinstance(item, list):
            item = _sanitize_list(item)
            if not item:
                continue
        cleaned.append(item)
    return cleaned


def sanitize_for_conversions(data: dict[str, Any] | None) -> dict[str, Any]:
    """Return a copy of ``data`` safe to forward; never mutates the input."""
    if not isinstance(data, dict):
        return {}

    sanitized: dict[str, Any] = {}
    for key, value in data.items():
        if value is None:
            continue

        if key in NUMERIC_FIELDS:
            number = _coerce_number(key, value)
            if number is not None:
                sanitized[key] = number
            continue

        if isinstance(value, str):
            if has_placeholder(value):
                logger.debug(f"Dropping template placeholder in {key}: {value}")
                continue
            sanitized[key] = value
        elif isinstance(value, (bool, int, float)):
            sanitized[key] = value
        elif isinstance(value, list):
            cleaned = _sanitize_list(value)
            if cleaned:
                sanitized[key] = cleaned
        elif isinstance(value, dict):
            nested = sanitize_for_conversions(value)
            if nested:
                sanitized[key] = nested

    return sanitized
