"""Pydantic models and enums for the request desk."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class Role(StrEnum):
    """Role of an identity. NONE covers unresolved or unrecognized roles."""

    CLIENT = "client"
    REVIEWER = "reviewer"
    ADMIN = "admin"
    NONE = "none"


STAFF_ROLES: frozenset[Role] = frozenset({Role.ADMIN, Role.REVIEWER})


class RequestStatus(StrEnum):
    """Request lifecycle states."""

    NEW = "New"
    IN_PROGRESS = "In Progress"
    INFO_NEEDED = "Info Needed"
    PEER_REVIEW = "Peer Review"
    COMPLETE = "Complete"


class Urgency(StrEnum):
    NORMAL = "Normal"
    URGENT = "Urgent"


class ReviewDecision(StrEnum):
    """Outcome a reviewer records on a request in peer review."""

    APPROVE = "approve"
    REQUEST_CHANGES = "request_changes"


class Identity(BaseModel):
    """The viewing identity passed explicitly into every core call."""

    user_id: str
    role: Role = Role.NONE

    @property
    def is_staff(self) -> bool:
        return self.role in STAFF_ROLES


class Profile(BaseModel):
    id: str
    email: str
    role: Role


class Request(BaseModel):
    """A client-submitted unit of work tracked through the status lifecycle."""

    id: str
    title: str
    client_id: str
    reviewer_id: str | None = None
    status: RequestStatus = RequestStatus.NEW
    urgency: Urgency = Urgency.NORMAL
    created_at: datetime
    updated_at: datetime | None = None


class Message(BaseModel):
    """One entry in a request's thread. Never edited or deleted."""

    id: str
    request_id: str
    user_id: str
    text: str
    created_at: datetime
    is_internal: bool = False


class RequestView(BaseModel):
    """Latest time a user opened a request."""

    user_id: str
    request_id: str
    last_viewed_at: datetime


class MessageView(Message):
    author_email: str | None = None
    author_role: Role | None = None


class RequestSummary(Request):
    """Request as listed for a given viewer."""

    client_email: str | None = None
    reviewer_email: str | None = None
    total_messages: int = 0
    unseen_count: int = 0
    last_viewed_at: datetime | None = None


class RequestDetail(RequestSummary):
    messages: list[MessageView] = Field(default_factory=list)


class FailureDetail(BaseModel):
    kind: str
    message: str


class BulkResult(BaseModel):
    """Per-id outcome of a best-effort bulk operation.

    ``partial`` holds ids whose main change landed while a follow-up write
    (such as the status message) failed. They count as completed.
    """

    total: int
    succeeded: list[str] = Field(default_factory=list)
    partial: dict[str, FailureDetail] = Field(default_factory=dict)
    failed: dict[str, FailureDetail] = Field(default_factory=dict)

    @property
    def completed(self) -> int:
        return len(self.succeeded) + len(self.partial)


class WorkflowProgress(BaseModel):
    """Recorded progress of a multi-step workflow."""

    steps: list[str]
    completed: list[str] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.steps)

    @property
    def finished(self) -> bool:
        return len(self.completed) == len(self.steps)


class RequestReport(BaseModel):
    total: int = 0
    by_status: dict[RequestStatus, int] = Field(default_factory=dict)
    urgent: int = 0
    by_client: dict[str, int] = Field(default_factory=dict)
