"""Internal data models for api-workbench.

All models use Pydantic v2. Updates are value updates: helpers return a new
model via model_copy() and never mutate the instance they were called on.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator

TRANSPORT_FAILURE_STATUS_TEXT = "Request Failed"
TRANSPORT_FAILURE_MESSAGE = "Failed to send request"


# =============================================================================
# Request Models
# =============================================================================


class HttpMethod(str, Enum):
    """Methods the workbench can dispatch."""

    GET = "GET"
    POST = "POST"
    PUT = "PUT"
    DELETE = "DELETE"
    PATCH = "PATCH"


class KeyValueEntry(BaseModel):
    """One header or query parameter row as edited by the user."""

    model_config = ConfigDict(extra="forbid")

    key: str = Field(default="", description="Header or parameter name")
    value: str = Field(default="", description="Header or parameter value")
    enabled: bool = Field(default=True, description="Unchecked rows are never sent")

    @property
    def is_active(self) -> bool:
        """True when this row should be applied to an outgoing request."""
        return self.enabled and bool(self.key.strip())


class RequestSpec(BaseModel):
    """Declarative description of one HTTP call.

    Header and param rows keep their editing order. Only active rows (enabled
    with a non-blank key) are sent, and body is ignored for GET.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier")
    name: str = Field(default="New Request", description="Display name")
    method: HttpMethod = Field(default=HttpMethod.GET, description="HTTP method")
    url: str = Field(default="", description="Absolute request URL")
    headers: list[KeyValueEntry] = Field(default_factory=list, description="Header rows")
    params: list[KeyValueEntry] = Field(default_factory=list, description="Query parameter rows")
    body: Any = Field(default=None, description="Raw text, structured JSON value, or None")

    def active_headers(self) -> list[KeyValueEntry]:
        return [h for h in self.headers if h.is_active]

    def active_params(self) -> list[KeyValueEntry]:
        return [p for p in self.params if p.is_active]

    @property
    def has_body(self) -> bool:
        """Whether a body would be attached when dispatching."""
        if self.method == HttpMethod.GET:
            return False
        return self.body is not None and self.body != ""


class SavedRequest(RequestSpec):
    """A plain request as stored in a request group on the backend."""

    # Backend records carry bookkeeping columns (group_id, created_at, ...)
    model_config = ConfigDict(extra="ignore")

    @field_validator("headers", "params", mode="before")
    @classmethod
    def null_rows_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @classmethod
    def new(cls, name: str = "New Request") -> SavedRequest:
        """Blank GET request with an empty text body."""
        return cls(name=name, body="")


class ResultHeader(BaseModel):
    """A recorded response header."""

    model_config = ConfigDict(extra="forbid")

    key: str
    value: str


class TestCase(RequestSpec):
    """A RequestSpec with an expected outcome and the last recorded result.

    expected_status=True means the call should succeed (2xx). result_status
    is the observed success of the last dispatch, None if never run.
    """

    __test__ = False  # not a pytest test class

    # Backend records carry bookkeeping columns (publish_id, updated_at, ...)
    model_config = ConfigDict(extra="ignore")

    test_case_name: str = Field(default="New Request", description="Display name of the case")
    description: str | None = Field(default=None, description="Free-form notes")
    expected_status: bool = Field(default=True, description="True if the call should return 2xx")
    result_status: bool | None = Field(default=None, description="Observed success of last run")
    result_body: Any = Field(default=None, description="Body recorded from last run")
    result_headers: list[ResultHeader] = Field(
        default_factory=list, description="Headers recorded from last run"
    )
    time_taken: str | None = Field(default=None, description="Milliseconds, as a numeric string")
    created_at: datetime | None = Field(default=None, description="Used for display ordering only")

    @field_validator("headers", "params", "result_headers", mode="before")
    @classmethod
    def null_rows_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("expected_status", mode="before")
    @classmethod
    def null_expectation_is_failure(cls, v: Any) -> Any:
        return False if v is None else v

    @field_validator("time_taken", mode="before")
    @classmethod
    def stringify_time_taken(cls, v: Any) -> Any:
        if isinstance(v, (int, float)) and not isinstance(v, bool):
            return str(v)
        return v

    @classmethod
    def new(cls, name: str = "New Request") -> TestCase:
        """Blank GET case, as created from the sidebar. It expects success."""
        return cls(
            name=name,
            test_case_name=name,
            expected_status=True,
            created_at=datetime.now(timezone.utc),
        )

    @property
    def passed(self) -> bool | None:
        """Whether the last result matched the expectation (None if never run)."""
        if self.result_status is None:
            return None
        return self.expected_status == self.result_status

    def result_payload(self) -> TestResultPayload:
        return TestResultPayload(
            result_status=bool(self.result_status),
            result_headers=list(self.result_headers),
            result_body=self.result_body,
            time_taken=self.time_taken or "0",
        )


class TestResultPayload(BaseModel):
    """Result fields written back to the backend for one case."""

    __test__ = False

    model_config = ConfigDict(extra="forbid")

    result_status: bool
    result_headers: list[ResultHeader] = Field(default_factory=list)
    result_body: Any = None
    time_taken: str


class Collection(BaseModel):
    """An ordered set of test cases. Owns its cases exclusively."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier")
    name: str = Field(default="New Collection", description="Display name")
    test_cases: list[TestCase] = Field(default_factory=list, description="Cases in stored order")

    @field_validator("test_cases", mode="before")
    @classmethod
    def null_cases_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def find_case(self, case_id: str) -> TestCase | None:
        for case in self.test_cases:
            if case.id == case_id:
                return case
        return None

    def ordered_cases(self) -> list[TestCase]:
        """Cases oldest first for display. Cases without a timestamp go last."""
        return sorted(
            self.test_cases,
            key=lambda c: (c.created_at is None, c.created_at.timestamp() if c.created_at else 0.0),
        )

    def with_case(self, updated: TestCase) -> Collection:
        """Return a copy with the case of the same id replaced."""
        return self.model_copy(
            update={
                "test_cases": [updated if c.id == updated.id else c for c in self.test_cases]
            }
        )


class RequestGroup(BaseModel):
    """An ordered set of plain requests, with no expectations or results."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique identifier")
    name: str = Field(default="New Collection", description="Display name")
    api_requests: list[SavedRequest] = Field(
        default_factory=list, description="Requests in stored order"
    )

    @field_validator("api_requests", mode="before")
    @classmethod
    def null_requests_to_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    def find_request(self, request_id: str) -> SavedRequest | None:
        for request in self.api_requests:
            if request.id == request_id:
                return request
        return None

    def with_request(self, updated: SavedRequest) -> RequestGroup:
        """Return a copy with the request of the same id replaced."""
        return self.model_copy(
            update={
                "api_requests": [
                    updated if r.id == updated.id else r for r in self.api_requests
                ]
            }
        )


# =============================================================================
# Response Models
# =============================================================================


class TextBody(BaseModel):
    """Response payload kept as raw text."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["text"] = "text"
    text: str


class JsonBody(BaseModel):
    """Response payload parsed as JSON."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["json"] = "json"
    value: Any


class EmptyBody(BaseModel):
    """No response payload."""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["empty"] = "empty"


ResponseBody = Annotated[Union[TextBody, JsonBody, EmptyBody], Field(discriminator="kind")]


class ResponseSize(BaseModel):
    model_config = ConfigDict(extra="forbid")

    headers: int = Field(default=0, description="Bytes of the serialized header map")
    body: int = Field(default=0, description="Bytes of the serialized body")


class ResponseRecord(BaseModel):
    """Uniform view of one dispatch outcome.

    status=0 with status_text "Request Failed" means no response was
    received. HTTP error statuses (4xx/5xx) are ordinary records.
    Dump with by_alias=True for the camelCase display/storage shape.
    """

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    status: int = Field(description="HTTP status code, 0 on transport failure")
    status_text: str = Field(serialization_alias="statusText", description="Reason phrase")
    headers: dict[str, str] = Field(default_factory=dict, description="Lowercase header map")
    body: ResponseBody = Field(default_factory=EmptyBody, exclude=True)
    content_type: str = Field(default="", serialization_alias="contentType")
    size: ResponseSize = Field(default_factory=ResponseSize)
    time: float = Field(default=0.0, description="Elapsed milliseconds")

    @computed_field  # type: ignore[prop-decorator]
    @property
    def data(self) -> Any:
        """The body as displayed: text, JSON value, or None."""
        if isinstance(self.body, TextBody):
            return self.body.text
        if isinstance(self.body, JsonBody):
            return self.body.value
        return None

    @property
    def is_transport_failure(self) -> bool:
        return self.status == 0 and self.status_text == TRANSPORT_FAILURE_STATUS_TEXT
