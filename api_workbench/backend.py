"""Backend client - Persists collections, request groups, test cases and results.

Thin typed wrapper over the REST backend that owns collection storage. List
endpoints answer with the envelope {"data": {"records": [...]}}. Writes
always send full values for the fields they touch.
"""

from __future__ import annotations

import json
import uuid
from typing import Any

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from api_workbench.models import (
    Collection,
    HttpMethod,
    RequestGroup,
    RequestSpec,
    SavedRequest,
    TestCase,
)

logger = structlog.get_logger(__name__)


class BackendError(Exception):
    """Raised when a backend call fails or returns an unexpected payload."""


class InvalidBodyError(ValueError):
    """Raised when a request body that must be JSON does not parse."""


class _Records(BaseModel):
    model_config = ConfigDict(extra="ignore")

    records: list[dict[str, Any]] = Field(default_factory=list)


class RecordsEnvelope(BaseModel):
    """List response shape: {"data": {"records": [...]}}."""

    model_config = ConfigDict(extra="ignore")

    data: _Records


def prepare_body_for_save(body: Any) -> Any:
    """Parse a text body into JSON before it is saved.

    Structured and empty bodies pass through unchanged.

    Raises:
        InvalidBodyError: If body is a non-empty string that is not valid JSON.
    """
    if not body or not isinstance(body, str):
        return body
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise InvalidBodyError(f"Invalid JSON body: {e.msg} (line {e.lineno}, column {e.colno})") from e


class BackendClient:
    """Client for the collection store.

    Usage:
        with BackendClient("https://backend.example.com", token=token) as backend:
            collections = backend.list_collections()
    """

    def __init__(
        self,
        api_link: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        headers: dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        client_kwargs: dict[str, Any] = {
            "base_url": f"{api_link.rstrip('/')}/v1",
            "headers": headers,
            "timeout": timeout,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.Client(**client_kwargs)

    def __enter__(self) -> "BackendClient":
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

    def _request(
        self,
        method: str,
        path: str,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=json_body, params=params)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "backend.request_failed",
                method=method,
                path=path,
                status_code=e.response.status_code,
            )
            raise BackendError(
                f"{method} {path} failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.error(
                "backend.request_failed",
                method=method,
                path=path,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise BackendError(f"{method} {path} failed: {e}") from e
        return response

    def _list_records(self, path: str) -> list[dict[str, Any]]:
        response = self._request("GET", path, params={"page": 1, "perPage": -1})
        try:
            return RecordsEnvelope.model_validate(response.json()).data.records
        except (ValueError, ValidationError) as e:
            raise BackendError(f"Unexpected response shape from {path}: {e}") from e

    # --- Collections ---

    def list_collections(self) -> list[Collection]:
        """Test collections with their cases."""
        records = self._list_records("/published-records")
        try:
            return [Collection.model_validate(record) for record in records]
        except ValidationError as e:
            raise BackendError(f"Invalid collection record: {e}") from e

    def create_collection(self, name: str = "New Collection") -> Collection:
        collection = Collection(id=str(uuid.uuid4()), name=name)
        self._request("POST", "/published-records", {"id": collection.id, "name": collection.name})
        return collection

    def rename_collection(self, collection_id: str, name: str) -> None:
        self._request("PUT", "/published-records", {"id": collection_id, "name": name})

    def delete_collection(self, collection_id: str) -> None:
        """The backend cascades the delete to the collection's cases."""
        self._request("DELETE", f"/published-records/{collection_id}")

    # --- Request groups ---

    def list_groups(self) -> list[RequestGroup]:
        """Plain request groups with their requests."""
        records = self._list_records("/groups")
        try:
            return [RequestGroup.model_validate(record) for record in records]
        except ValidationError as e:
            raise BackendError(f"Invalid group record: {e}") from e

    def create_group(self, name: str = "New Collection") -> RequestGroup:
        group = RequestGroup(id=str(uuid.uuid4()), name=name)
        self._request("POST", "/groups", {"id": group.id, "name": group.name})
        return group

    def rename_group(self, group_id: str, name: str) -> None:
        self._request("PUT", "/groups", {"id": group_id, "name": name})

    def delete_group(self, group_id: str) -> None:
        self._request("DELETE", f"/groups/{group_id}")

    def create_request(self, group_id: str, name: str = "New Request") -> SavedRequest:
        request = SavedRequest.new(name)
        self._request(
            "POST",
            "/api-requests",
            {
                "id": request.id,
                "group_id": group_id,
                "name": request.name,
                "method": request.method.value,
            },
        )
        return request

    def rename_request(self, request_id: str, name: str) -> None:
        self._request("PUT", "/api-requests", {"id": request_id, "name": name})

    def delete_request(self, request_id: str) -> None:
        self._request("DELETE", f"/api-requests/{request_id}")

    def save_request(self, request: RequestSpec) -> None:
        """Save the definition of a plain request.

        Raises:
            InvalidBodyError: If the body is text that is not valid JSON.
                Nothing is sent in that case.
        """
        body = prepare_body_for_save(request.body)
        self._request(
            "PUT",
            "/api-requests",
            {
                "id": request.id,
                "name": request.name,
                "method": request.method.value,
                "url": request.url,
                "body": body,
                "params": [p.model_dump() for p in request.params],
                "headers": [h.model_dump() for h in request.headers],
            },
        )

    # --- Test cases ---

    def create_test_case(self, collection_id: str, name: str = "New Request") -> TestCase:
        case = TestCase.new(name)
        self._request(
            "POST",
            "/ai-test-cases",
            {
                "id": case.id,
                "publish_id": collection_id,
                "test_case_name": case.test_case_name,
                "method": HttpMethod.GET.value,
                "expected_status": case.expected_status,
            },
        )
        return case

    def rename_test_case(self, case_id: str, name: str) -> None:
        self._request("PUT", "/ai-test-cases", {"id": case_id, "test_case_name": name})

    def delete_test_case(self, case_id: str) -> None:
        self._request("DELETE", f"/ai-test-cases/{case_id}")

    def save_test_case(self, case: TestCase) -> None:
        """Save the request definition of a case.

        Raises:
            InvalidBodyError: If the body is text that is not valid JSON.
                Nothing is sent in that case.
        """
        body = prepare_body_for_save(case.body)
        self._request(
            "PUT",
            "/ai-test-cases",
            {
                "id": case.id,
                "test_case_name": case.test_case_name,
                "method": case.method.value,
                "description": case.description,
                "url": case.url,
                "body": body,
                "params": [p.model_dump() for p in case.params],
                "headers": [h.model_dump() for h in case.headers],
                "expected_status": case.expected_status,
            },
        )

    def save_result(self, case: TestCase) -> None:
        """Write the case's recorded result fields."""
        payload = case.result_payload().model_dump(mode="json")
        self._request("PUT", "/ai-test-cases", {"id": case.id, **payload})
