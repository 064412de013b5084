"""Pytest configuration and fixtures for api-workbench tests.

This file provides:
- Factories: make_response_record, make_test_case, RecordingTransport
- PortReservation: Race-free port allocation for the mock server
- MockServer: Subprocess management for the mock API server
"""

from __future__ import annotations

import socket
import subprocess
import sys
import time
from pathlib import Path
from typing import Any, Callable, Generator

import httpx
import pytest

from api_workbench.models import (
    HttpMethod,
    JsonBody,
    KeyValueEntry,
    ResponseRecord,
    ResponseSize,
    TestCase,
    TextBody,
)

PROJECT_ROOT = Path(__file__).parent.parent
MOCK_SERVER_MODULE = "tests.integration.mock_server"


def make_response_record(
    status: int = 200,
    status_text: str = "OK",
    headers: dict[str, str] | None = None,
    data: Any = None,
    time: float = 10.0,
) -> ResponseRecord:
    """Create a ResponseRecord for evaluator and runner tests.

    Strings become text bodies, None stays empty, anything else is JSON.
    """
    if isinstance(data, str):
        body: Any = TextBody(text=data)
    elif data is None:
        body = None
    else:
        body = JsonBody(value=data)
    kwargs: dict[str, Any] = {}
    if body is not None:
        kwargs["body"] = body
    return ResponseRecord(
        status=status,
        status_text=status_text,
        headers=headers or {},
        content_type=(headers or {}).get("content-type", ""),
        size=ResponseSize(),
        time=time,
        **kwargs,
    )


def make_test_case(
    url: str = "http://api.test/items",
    method: HttpMethod = HttpMethod.GET,
    expected_status: bool = True,
    **overrides: Any,
) -> TestCase:
    """Create a TestCase with sensible defaults."""
    return TestCase(url=url, method=method, expected_status=expected_status, **overrides)


def entry(key: str, value: str = "", enabled: bool = True) -> KeyValueEntry:
    return KeyValueEntry(key=key, value=value, enabled=enabled)


class RecordingTransport(httpx.MockTransport):
    """MockTransport that remembers every request it handled, in order."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.requests: list[httpx.Request] = []

        def recording_handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(recording_handler)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def json_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"ok": True})


@pytest.fixture
def ok_transport() -> RecordingTransport:
    return RecordingTransport(json_ok)


class PortReservation:
    """Holds a reserved port with socket kept open to prevent races.

    The socket stays bound until just before the server starts, so no other
    process can take the port in between.
    """

    def __init__(self) -> None:
        self._socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self._socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        self._socket.bind(("127.0.0.1", 0))  # Port 0 = OS assigns ephemeral port
        self._port = self._socket.getsockname()[1]
        self._released = False

    @property
    def port(self) -> int:
        return self._port

    def release(self) -> int:
        """Release the socket and return the port. Safe to call twice."""
        if not self._released:
            self._socket.close()
            self._released = True
        return self._port


def wait_for_server_ready(host: str, port: int, timeout: float = 10.0) -> bool:
    """Block until server accepts TCP connections, or timeout expires."""
    start = time.time()
    while time.time() - start < timeout:
        try:
            with socket.create_connection((host, port), timeout=1.0):
                return True
        except (ConnectionRefusedError, socket.timeout, OSError):
            time.sleep(0.1)
    return False


class MockServer:
    """Runs tests/integration/mock_server.py as a subprocess."""

    def __init__(self, reservation: PortReservation) -> None:
        self._reservation = reservation
        self.port = reservation.port
        self.host = "127.0.0.1"
        self.base_url = f"http://{self.host}:{self.port}"
        self._process: subprocess.Popen | None = None

    def start(self) -> None:
        """Start the mock server subprocess.

        Raises:
            RuntimeError: If server fails to start within 10 seconds.
        """
        self._reservation.release()

        self._process = subprocess.Popen(
            [
                sys.executable, "-m", MOCK_SERVER_MODULE,
                "--host", self.host,
                "--port", str(self.port),
            ],
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=PROJECT_ROOT,
        )

        if not wait_for_server_ready(self.host, self.port):
            stderr = ""
            if self._process and self._process.stderr:
                stderr = self._process.stderr.read().decode(errors="replace")
            self.stop()
            raise RuntimeError(
                f"MockServer failed to start on port {self.port}. stderr: {stderr or '(empty)'}"
            )

    def stop(self) -> None:
        """Terminate, escalating to kill after 5s. Safe to call twice."""
        if self._process:
            self._process.terminate()
            try:
                self._process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self._process.kill()
                try:
                    self._process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    pass  # Unkillable, nothing more to do
            self._process = None

    def __enter__(self) -> MockServer:
        self.start()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.stop()


@pytest.fixture(scope="session")
def mock_server() -> Generator[MockServer, None, None]:
    """Session-scoped mock API server."""
    with MockServer(PortReservation()) as server:
        yield server


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    return PortReservation().release()


def pytest_collection_modifyitems(
    config: pytest.Config, items: list[pytest.Item]
) -> None:
    """Tag tests with unit/integration markers based on their directory."""
    for item in items:
        test_path = Path(item.fspath)
        if "integration" in test_path.parts:
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)
