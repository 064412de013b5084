"""Normalizer - Converts transport outcomes into ResponseRecords.

Every dispatch outcome, including failures, ends up as a ResponseRecord so
callers never handle raw httpx objects. The body is classified once here as
JSON, text, or empty.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from api_workbench.dispatcher import TransportError, TransportResponse
from api_workbench.models import (
    TRANSPORT_FAILURE_MESSAGE,
    TRANSPORT_FAILURE_STATUS_TEXT,
    EmptyBody,
    JsonBody,
    ResponseBody,
    ResponseRecord,
    ResponseSize,
    TextBody,
)


def _compact_json(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def flatten_headers(headers: httpx.Headers) -> dict[str, str]:
    """Lowercase keys; repeated headers are joined with ', '."""
    flat: dict[str, str] = {}
    for key, value in headers.multi_items():
        key_lower = key.lower()
        if key_lower in flat:
            flat[key_lower] = f"{flat[key_lower]}, {value}"
        else:
            flat[key_lower] = value
    return flat


def parse_body(content: bytes, text: str, content_type: str) -> ResponseBody:
    """Classify a payload as JSON, text, or empty.

    JSON is attempted only when the content type says so. A payload that
    claims JSON but does not parse is kept as text.
    """
    if not content:
        return EmptyBody()
    if "json" in content_type.lower():
        try:
            return JsonBody(value=json.loads(content))
        except ValueError:
            # Not valid JSON despite content-type (UnicodeDecodeError is a ValueError too)
            pass
    return TextBody(text=text)


def body_size(body: ResponseBody) -> int:
    """UTF-8 bytes of the serialized body."""
    if isinstance(body, JsonBody):
        return len(_compact_json(body.value).encode("utf-8"))
    if isinstance(body, TextBody):
        return len(body.text.encode("utf-8"))
    return 0


def headers_size(headers: dict[str, str]) -> int:
    """UTF-8 bytes of the header map serialized as JSON."""
    return len(_compact_json(headers).encode("utf-8"))


def normalize_response(response: httpx.Response, elapsed_ms: float) -> ResponseRecord:
    """Build a ResponseRecord from an httpx response."""
    headers = flatten_headers(response.headers)
    content_type = headers.get("content-type", "")
    body = parse_body(response.content, response.text, content_type)

    return ResponseRecord(
        status=response.status_code,
        status_text=response.reason_phrase,
        headers=headers,
        body=body,
        content_type=content_type,
        size=ResponseSize(headers=headers_size(headers), body=body_size(body)),
        time=elapsed_ms,
    )


def transport_failure_record() -> ResponseRecord:
    """The record used when no response was received at all."""
    return ResponseRecord(
        status=0,
        status_text=TRANSPORT_FAILURE_STATUS_TEXT,
        headers={},
        body=JsonBody(value={"error": TRANSPORT_FAILURE_MESSAGE}),
        content_type="application/json",
        size=ResponseSize(headers=0, body=0),
        time=0.0,
    )


def normalize(outcome: TransportResponse | TransportError) -> ResponseRecord:
    """Convert any dispatch outcome into a ResponseRecord.

    A TransportError that carries a response is normalized like a success but
    with time=0; elapsed time is not reported for that path.
    """
    if isinstance(outcome, TransportResponse):
        return normalize_response(outcome.response, outcome.elapsed_ms)
    if outcome.response is not None:
        return normalize_response(outcome.response, 0.0)
    return transport_failure_record()
