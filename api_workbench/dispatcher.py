"""Dispatcher - Builds and sends one HTTP request for a RequestSpec.

The Dispatcher turns a RequestSpec into a transport-level request (merging
enabled headers/params, attaching the body when allowed), sends it once, and
measures the elapsed wall-clock time. Transport failures, including error
statuses the transport treats as exceptional, are raised as TransportError.
"""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from api_workbench.models import HttpMethod, RequestSpec

logger = structlog.get_logger(__name__)

DEFAULT_CONTENT_TYPE = "application/json"


class DispatchError(Exception):
    """Base class for dispatcher errors."""


class TransportError(DispatchError):
    """Raised when a dispatch does not produce a successful response.

    response is the HTTP response when the server answered with a status the
    transport treats as exceptional (anything outside 2xx). It is None when
    nothing was received (DNS, connection refused, timeout, bad URL).
    """

    def __init__(self, message: str, response: httpx.Response | None = None) -> None:
        super().__init__(message)
        self.response = response

    @property
    def has_response(self) -> bool:
        return self.response is not None


@dataclass(frozen=True)
class TransportResponse:
    """A successful transport outcome with its measured duration."""

    response: httpx.Response
    elapsed_ms: float


def _sanitize_header_value(value: str) -> str:
    """Replace non-ASCII characters with '?' so the header can be sent.

    HTTP header values must be ASCII per RFC 7230; user-typed values may not be.
    """
    return value.encode("ascii", errors="replace").decode("ascii")


def build_headers(spec: RequestSpec) -> dict[str, str]:
    """Merge the default Content-Type with the spec's active header rows.

    Keys are trimmed. A row whose key matches Content-Type in any letter case
    replaces the default, so only one Content-Type is ever sent.
    """
    headers: dict[str, str] = {"Content-Type": DEFAULT_CONTENT_TYPE}
    for entry in spec.active_headers():
        key = entry.key.strip()
        if key.lower() == "content-type":
            headers.pop("Content-Type", None)
        headers[key] = _sanitize_header_value(entry.value)
    return headers


def build_params(spec: RequestSpec) -> dict[str, str]:
    """Active query parameters keyed by trimmed name. Later rows win."""
    return {entry.key.strip(): entry.value for entry in spec.active_params()}


def encode_body(spec: RequestSpec) -> bytes | None:
    """Body bytes to send, or None when no body is attached.

    GET never carries a body. Strings are sent verbatim, structured values
    are JSON-encoded.
    """
    if not spec.has_body:
        return None
    if isinstance(spec.body, bytes):
        return spec.body
    if isinstance(spec.body, str):
        return spec.body.encode("utf-8")
    return json.dumps(spec.body, ensure_ascii=False).encode("utf-8")


class Dispatcher:
    """Sends RequestSpecs over a single httpx client.

    Usage:
        with Dispatcher(timeout=10.0) as dispatcher:
            outcome = dispatcher.dispatch(spec)

    One attempt per dispatch; there is no retry. The timeout bounds every
    call so a dispatch can never hang indefinitely.
    """

    def __init__(
        self,
        timeout: float = 30.0,
        follow_redirects: bool = True,
        verify_ssl: bool = True,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            timeout: Timeout in seconds for each request.
            follow_redirects: Follow 3xx responses to their final target.
            verify_ssl: Verify server certificates.
            transport: Optional httpx transport (tests inject MockTransport).
        """
        self._timeout = timeout
        client_kwargs: dict[str, Any] = {
            "timeout": timeout,
            "follow_redirects": follow_redirects,
            "verify": verify_ssl,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.Client(**client_kwargs)

    def __enter__(self) -> "Dispatcher":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def build_request(self, spec: RequestSpec) -> httpx.Request:
        """Build the transport request for a spec without sending it.

        Raises:
            TransportError: If the URL cannot be parsed or encoded.
        """
        params = build_params(spec)
        try:
            return self._client.build_request(
                method=HttpMethod(spec.method).value,
                url=spec.url,
                params=params if params else None,
                headers=build_headers(spec),
                content=encode_body(spec),
            )
        except httpx.InvalidURL as e:
            raise TransportError(f"Invalid URL {spec.url!r}: {e}") from e
        except UnicodeEncodeError as e:
            raise TransportError(
                f"Encoding error: non-ASCII characters in header key or URL. "
                f"Character: {e.object[e.start:e.end]!r} at position {e.start}."
            ) from e

    def dispatch(self, spec: RequestSpec) -> TransportResponse:
        """Send one request for spec and time it.

        Returns:
            TransportResponse for a 2xx response.

        Raises:
            TransportError: On any transport failure. For non-2xx responses
                the error carries the response.
        """
        request = self.build_request(spec)

        try:
            start_time = time.perf_counter()
            response = self._client.send(request)
            elapsed_ms = (time.perf_counter() - start_time) * 1000
        except httpx.TimeoutException as e:
            logger.warning("dispatch.transport_error", url=spec.url, error_type="timeout")
            raise TransportError(f"Request timeout: {e}") from e
        except httpx.ConnectError as e:
            logger.warning("dispatch.transport_error", url=spec.url, error_type="connect")
            raise TransportError(f"Connection error: {e}") from e
        except httpx.RequestError as e:
            logger.warning("dispatch.transport_error", url=spec.url, error_type=type(e).__name__)
            raise TransportError(f"Request error: {e}") from e

        logger.debug(
            "dispatch.sent",
            method=request.method,
            url=str(request.url),
            status=response.status_code,
            elapsed_ms=round(elapsed_ms, 2),
        )

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransportError(
                f"HTTP {response.status_code} {response.reason_phrase}", response=response
            ) from e

        return TransportResponse(response=response, elapsed_ms=elapsed_ms)
