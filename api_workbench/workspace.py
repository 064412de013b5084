"""Workspace - The in-memory collection list shared by runners and callers.

Every change replaces a whole Collection with an updated copy, so readers
always see a consistent value. The workspace also tracks which case is
currently executing and which cases have a dispatch in flight.
"""

from __future__ import annotations

from contextlib import contextmanager
from threading import Lock
from typing import Iterator

from api_workbench.models import Collection, TestCase


class WorkspaceError(KeyError):
    """Raised when a collection or case id is unknown."""


class CaseBusyError(Exception):
    """Raised when a case is dispatched while a dispatch for it is in flight."""


class Workspace:
    """Holds collections and the "currently executing" pointer."""

    def __init__(self, collections: list[Collection] | None = None) -> None:
        self._collections: list[Collection] = list(collections or [])
        self._current_case_id: str | None = None
        self._in_flight: set[str] = set()
        self._lock = Lock()

    @property
    def collections(self) -> list[Collection]:
        with self._lock:
            return list(self._collections)

    @property
    def current_case_id(self) -> str | None:
        with self._lock:
            return self._current_case_id

    def select(self, case_id: str | None) -> None:
        """Point the UI at the case being edited or executed."""
        with self._lock:
            self._current_case_id = case_id

    def replace_collections(self, collections: list[Collection]) -> None:
        with self._lock:
            self._collections = list(collections)

    def get_collection(self, collection_id: str) -> Collection:
        with self._lock:
            for collection in self._collections:
                if collection.id == collection_id:
                    return collection
        raise WorkspaceError(f"Unknown collection: {collection_id}")

    def find_case(self, case_id: str) -> TestCase:
        with self._lock:
            for collection in self._collections:
                case = collection.find_case(case_id)
                if case is not None:
                    return case
        raise WorkspaceError(f"Unknown test case: {case_id}")

    def update_case(self, updated: TestCase) -> None:
        """Swap in an updated copy of a case, wherever it lives."""
        with self._lock:
            for index, collection in enumerate(self._collections):
                if collection.find_case(updated.id) is not None:
                    self._collections[index] = collection.with_case(updated)
                    return
        raise WorkspaceError(f"Unknown test case: {updated.id}")

    def add_collection(self, collection: Collection) -> None:
        with self._lock:
            self._collections.append(collection)

    def remove_collection(self, collection_id: str) -> None:
        with self._lock:
            removed = [c for c in self._collections if c.id == collection_id]
            self._collections = [c for c in self._collections if c.id != collection_id]
            if removed and self._current_case_id is not None:
                if removed[0].find_case(self._current_case_id) is not None:
                    self._current_case_id = None

    def add_case(self, collection_id: str, case: TestCase) -> None:
        with self._lock:
            for index, collection in enumerate(self._collections):
                if collection.id == collection_id:
                    self._collections[index] = collection.model_copy(
                        update={"test_cases": [*collection.test_cases, case]}
                    )
                    return
        raise WorkspaceError(f"Unknown collection: {collection_id}")

    def remove_case(self, case_id: str) -> None:
        with self._lock:
            self._collections = [
                c.model_copy(update={"test_cases": [t for t in c.test_cases if t.id != case_id]})
                for c in self._collections
            ]
            if self._current_case_id == case_id:
                self._current_case_id = None

    @contextmanager
    def dispatching(self, case_id: str) -> Iterator[None]:
        """Hold the in-flight slot for a case for the duration of a dispatch.

        Raises:
            CaseBusyError: If the case already has a dispatch in flight.
        """
        with self._lock:
            if case_id in self._in_flight:
                raise CaseBusyError(f"Test case {case_id} is already running")
            self._in_flight.add(case_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_flight.discard(case_id)

    def is_dispatching(self, case_id: str) -> bool:
        with self._lock:
            return case_id in self._in_flight
