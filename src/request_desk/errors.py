"""Typed failures raised by the request desk core.

Every error carries a stable ``kind`` string so the tool layer can report
the failure class without parsing messages.
"""

from __future__ import annotations

from typing import Any


class RequestDeskError(Exception):
    """Base class for all core failures."""

    kind = "error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": str(self), "kind": self.kind}


class NotFoundError(RequestDeskError, LookupError):
    kind = "not_found"

    def __init__(self, collection: str, record_id: str) -> None:
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{_singular(collection)} not found: {record_id}")


class UnauthenticatedError(RequestDeskError):
    kind = "unauthenticated"


class UnauthorizedError(RequestDeskError, PermissionError):
    kind = "unauthorized"


class InvalidInputError(RequestDeskError, ValueError):
    kind = "invalid_input"


class TransientStoreError(RequestDeskError):
    """Retryable store failure (busy database, row not yet visible)."""

    kind = "transient_store"


class StoreError(RequestDeskError):
    kind = "store_error"


class PartialFailureError(RequestDeskError):
    """A bulk or multi-step operation completed only some of its steps.

    ``detail`` is the BulkResult or WorkflowProgress describing exactly
    which steps landed.
    """

    kind = "partial_failure"

    def __init__(
        self,
        message: str,
        *,
        completed: int,
        total: int,
        first_error: RequestDeskError | None = None,
        detail: Any = None,
    ) -> None:
        self.completed = completed
        self.total = total
        self.first_error = first_error
        self.detail = detail
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        payload = super().to_dict()
        payload["completed"] = self.completed
        payload["total"] = self.total
        if self.first_error is not None:
            payload["first_error"] = self.first_error.to_dict()
        if self.detail is not None and hasattr(self.detail, "model_dump"):
            payload["detail"] = self.detail.model_dump(mode="json")
        elif self.detail is not None:
            payload["detail"] = self.detail
        return payload


def _singular(collection: str) -> str:
    names = {
        "requests": "Request",
        "messages": "Message",
        "profiles": "Profile",
        "request_views": "Request view",
    }
    return names.get(collection, collection)
