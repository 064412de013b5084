"""Tests for api_workbench.dispatcher.

Requests go through an httpx.MockTransport so the exact outgoing request
(URL, headers, body) can be inspected without a network.
"""

import json

import httpx
import pytest

from api_workbench.dispatcher import (
    Dispatcher,
    TransportError,
    TransportResponse,
    build_headers,
    build_params,
    encode_body,
)
from api_workbench.models import HttpMethod, RequestSpec
from tests.conftest import RecordingTransport, entry


def _dispatch(spec: RequestSpec, transport: httpx.BaseTransport) -> TransportResponse:
    with Dispatcher(transport=transport) as dispatcher:
        return dispatcher.dispatch(spec)


class TestBuildHeaders:
    def test_default_content_type(self):
        assert build_headers(RequestSpec()) == {"Content-Type": "application/json"}

    def test_disabled_and_blank_keys_skipped(self):
        spec = RequestSpec(
            headers=[
                entry("X-On", "1"),
                entry("X-Off", "2", enabled=False),
                entry("   ", "3"),
                entry("", "4"),
            ]
        )
        assert build_headers(spec) == {"Content-Type": "application/json", "X-On": "1"}

    def test_keys_trimmed(self):
        spec = RequestSpec(headers=[entry("  X-Trace  ", "abc")])
        assert build_headers(spec)["X-Trace"] == "abc"

    def test_same_case_content_type_overrides_default(self):
        spec = RequestSpec(headers=[entry("Content-Type", "text/plain")])
        assert build_headers(spec) == {"Content-Type": "text/plain"}

    def test_other_case_content_type_replaces_default(self):
        spec = RequestSpec(headers=[entry("content-type", "application/xml")])
        assert build_headers(spec) == {"content-type": "application/xml"}

    def test_non_ascii_value_sanitized(self):
        spec = RequestSpec(headers=[entry("X-Name", "café")])
        assert build_headers(spec)["X-Name"] == "caf?"


class TestBuildParams:
    def test_only_active_params(self):
        spec = RequestSpec(params=[entry("q", "x"), entry("skip", "y", enabled=False), entry(" ", "z")])
        assert build_params(spec) == {"q": "x"}

    def test_later_duplicate_wins(self):
        spec = RequestSpec(params=[entry("page", "1"), entry(" page ", "2")])
        assert build_params(spec) == {"page": "2"}


class TestEncodeBody:
    @pytest.mark.parametrize("body", ['{"a": 1}', {"a": 1}, "plain"])
    def test_get_has_no_body(self, body):
        assert encode_body(RequestSpec(method=HttpMethod.GET, body=body)) is None

    def test_string_sent_verbatim(self):
        spec = RequestSpec(method=HttpMethod.POST, body='{"a":  1}')
        assert encode_body(spec) == b'{"a":  1}'

    def test_structured_body_json_encoded(self):
        spec = RequestSpec(method=HttpMethod.PUT, body={"name": "Zoë"})
        assert json.loads(encode_body(spec)) == {"name": "Zoë"}

    @pytest.mark.parametrize("body", [None, ""])
    def test_empty_body_omitted(self, body):
        assert encode_body(RequestSpec(method=HttpMethod.POST, body=body)) is None


class TestDispatch:
    def test_query_params_appended_to_url(self, ok_transport: RecordingTransport):
        spec = RequestSpec(
            method=HttpMethod.GET,
            url="https://api.example.com/items",
            params=[entry("q", "x"), entry("skip", "y", enabled=False)],
        )
        _dispatch(spec, ok_transport)
        assert str(ok_transport.last.url) == "https://api.example.com/items?q=x"

    def test_url_untouched_without_params(self, ok_transport: RecordingTransport):
        _dispatch(RequestSpec(url="https://api.example.com/items"), ok_transport)
        assert str(ok_transport.last.url) == "https://api.example.com/items"

    def test_sent_headers_exclude_disabled(self, ok_transport: RecordingTransport):
        spec = RequestSpec(
            url="http://api.test/",
            headers=[entry("X-Keep", "1"), entry("X-Drop", "2", enabled=False)],
        )
        _dispatch(spec, ok_transport)
        sent = ok_transport.last.headers
        assert sent["x-keep"] == "1"
        assert "x-drop" not in sent
        assert sent["content-type"] == "application/json"

    def test_single_content_type_sent(self, ok_transport: RecordingTransport):
        spec = RequestSpec(url="http://api.test/", headers=[entry("content-type", "text/csv")])
        _dispatch(spec, ok_transport)
        assert ok_transport.last.headers.get_list("content-type") == ["text/csv"]

    def test_get_sends_no_body(self, ok_transport: RecordingTransport):
        spec = RequestSpec(method=HttpMethod.GET, url="http://api.test/", body='{"a": 1}')
        _dispatch(spec, ok_transport)
        assert ok_transport.last.content == b""

    def test_post_sends_body(self, ok_transport: RecordingTransport):
        spec = RequestSpec(method=HttpMethod.POST, url="http://api.test/", body={"a": 1})
        _dispatch(spec, ok_transport)
        assert ok_transport.last.method == "POST"
        assert json.loads(ok_transport.last.content) == {"a": 1}

    def test_success_returns_response_and_time(self, ok_transport: RecordingTransport):
        outcome = _dispatch(RequestSpec(url="http://api.test/"), ok_transport)
        assert outcome.response.status_code == 200
        assert outcome.elapsed_ms >= 0

    def test_single_attempt(self, ok_transport: RecordingTransport):
        _dispatch(RequestSpec(url="http://api.test/"), ok_transport)
        assert len(ok_transport.requests) == 1

    @pytest.mark.parametrize("status", [301, 404, 500])
    def test_non_2xx_raises_with_response(self, status: int):
        transport = httpx.MockTransport(lambda request: httpx.Response(status, json={"err": 1}))
        with pytest.raises(TransportError) as exc_info:
            _dispatch(RequestSpec(url="http://api.test/"), transport)
        assert exc_info.value.has_response
        assert exc_info.value.response.status_code == status

    def test_connect_error_has_no_response(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransportError, match="Connection error") as exc_info:
            _dispatch(RequestSpec(url="http://api.test/"), httpx.MockTransport(refuse))
        assert exc_info.value.response is None

    def test_timeout(self):
        def slow(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(TransportError, match="timeout"):
            _dispatch(RequestSpec(url="http://api.test/"), httpx.MockTransport(slow))

    def test_non_ascii_header_key(self, ok_transport: RecordingTransport):
        spec = RequestSpec(url="http://api.test/", headers=[entry("X-Clé", "v")])
        with pytest.raises(TransportError, match="non-ASCII"):
            _dispatch(spec, ok_transport)
        assert ok_transport.requests == []
