"""Request and message aggregation: the read and write operations callers use.

Reads join requests with profiles, messages and the viewer's view marker,
then apply the visibility filter and unread tracker. Writes validate input
and role before touching the store.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from request_desk.errors import (
    InvalidInputError,
    PartialFailureError,
    RequestDeskError,
    UnauthorizedError,
)
from request_desk.models import (
    Identity,
    Message,
    MessageView,
    Profile,
    Request,
    RequestDetail,
    RequestReport,
    RequestStatus,
    RequestSummary,
    RequestView,
    Role,
    Urgency,
)
from request_desk.listing import summarize
from request_desk.store import MESSAGES, PROFILES, REQUEST_VIEWS, REQUESTS
from request_desk.unread import compute_unseen, mark_viewed
from request_desk.visibility import filter_messages

if TYPE_CHECKING:
    from request_desk.db import AppContext

logger = logging.getLogger("request_desk")


def require_text(value: str | None, field_name: str) -> str:
    """Reject None, empty and whitespace-only text."""
    if value is None or value.strip() == "":
        raise InvalidInputError(f"{field_name} must not be empty")
    return value


def parse_urgency(value: str | Urgency) -> Urgency:
    try:
        return Urgency(value)
    except ValueError:
        allowed = ", ".join(urgency.value for urgency in Urgency)
        raise InvalidInputError(f"Unknown urgency: {value!r}. Allowed: {allowed}") from None


def require_role(viewer: Identity, *roles: Role, action: str) -> None:
    if viewer.role not in roles:
        raise UnauthorizedError(f"Role {viewer.role.value!r} may not {action}")


async def load_request(app: AppContext, request_id: str) -> Request:
    return Request.model_validate(await app.store.get(REQUESTS, request_id))


def ensure_can_open(viewer: Identity, request: Request) -> None:
    """Clients may only touch their own requests; unresolved roles nothing."""
    if viewer.role == Role.NONE:
        raise UnauthorizedError("Caller has no role")
    if viewer.role == Role.CLIENT and request.client_id != viewer.user_id:
        raise UnauthorizedError(f"Request {request.id} belongs to another client")


async def append_message(
    app: AppContext,
    request_id: str,
    user_id: str,
    text: str,
    is_internal: bool = False,
) -> Message:
    """Insert a message into a request thread without role checks."""
    require_text(text, "Message text")
    record = await app.store.insert(
        MESSAGES,
        {
            "request_id": request_id,
            "user_id": user_id,
            "text": text,
            "is_internal": is_internal,
        },
    )
    return Message.model_validate(record)


async def _profiles_by_id(app: AppContext, ids: set[str]) -> dict[str, Profile]:
    if not ids:
        return {}
    rows = await app.store.find(PROFILES, {"id": sorted(ids)})
    profiles: dict[str, Profile] = {}
    for row in rows:
        # Unknown role strings degrade to NONE instead of failing the listing.
        role = row.get("role")
        if role not in {r.value for r in Role}:
            row = {**row, "role": Role.NONE}
        profiles[row["id"]] = Profile.model_validate(row)
    return profiles


def _summary_fields(request: Request, profiles: dict[str, Profile]) -> dict:
    client = profiles.get(request.client_id)
    reviewer = profiles.get(request.reviewer_id) if request.reviewer_id else None
    return {
        **request.model_dump(),
        "client_email": client.email if client else None,
        "reviewer_email": reviewer.email if reviewer else None,
    }


async def list_requests(app: AppContext, viewer: Identity) -> list[RequestSummary]:
    """List requests for ``viewer``, newest first, with message counts.

    Clients only see their own requests. ``total_messages`` and
    ``unseen_count`` only count messages the viewer is allowed to see.
    """
    if viewer.role == Role.NONE:
        raise UnauthorizedError("Caller has no role")

    filters = {"client_id": viewer.user_id} if viewer.role == Role.CLIENT else None
    rows = await app.store.find(REQUESTS, filters, order_by=[("created_at", "desc")])
    requests = [Request.model_validate(row) for row in rows]
    if not requests:
        logger.info("list_requests -> 0 requests (viewer=%s)", viewer.role)
        return []

    request_ids = [request.id for request in requests]
    people = {request.client_id for request in requests}
    people.update(request.reviewer_id for request in requests if request.reviewer_id)
    profiles = await _profiles_by_id(app, people)

    threads: dict[str, list[Message]] = {request_id: [] for request_id in request_ids}
    for row in await app.store.find(
        MESSAGES, {"request_id": request_ids}, order_by=[("created_at", "asc")]
    ):
        threads[row["request_id"]].append(Message.model_validate(row))

    markers = {
        row["request_id"]: RequestView.model_validate(row).last_viewed_at
        for row in await app.store.find(
            REQUEST_VIEWS, {"user_id": viewer.user_id, "request_id": request_ids}
        )
    }

    summaries: list[RequestSummary] = []
    for request in requests:
        visible = filter_messages(threads[request.id], viewer.role)
        last_viewed_at = markers.get(request.id)
        summaries.append(
            RequestSummary(
                **_summary_fields(request, profiles),
                total_messages=len(visible),
                unseen_count=compute_unseen(visible, last_viewed_at),
                last_viewed_at=last_viewed_at,
            )
        )

    logger.info("list_requests -> %s requests (viewer=%s)", len(summaries), viewer.role)
    return summaries


async def get_request(app: AppContext, request_id: str, viewer: Identity) -> RequestDetail:
    """Fetch one request with its visible thread and mark it viewed.

    ``unseen_count`` reflects the marker as it stood before this view.
    """
    request = await load_request(app, request_id)
    ensure_can_open(viewer, request)

    rows = await app.store.find(
        MESSAGES, {"request_id": request_id}, order_by=[("created_at", "asc")]
    )
    thread = [Message.model_validate(row) for row in rows]
    visible = filter_messages(thread, viewer.role)

    people = {request.client_id, *(message.user_id for message in visible)}
    if request.reviewer_id:
        people.add(request.reviewer_id)
    profiles = await _profiles_by_id(app, people)

    marker_rows = await app.store.find(
        REQUEST_VIEWS, {"user_id": viewer.user_id, "request_id": request_id}
    )
    last_viewed_at = (
        RequestView.model_validate(marker_rows[0]).last_viewed_at if marker_rows else None
    )
    unseen = compute_unseen(visible, last_viewed_at)

    await mark_viewed(app, request_id, viewer.user_id)

    messages = []
    for message in visible:
        author = profiles.get(message.user_id)
        messages.append(
            MessageView(
                **message.model_dump(),
                author_email=author.email if author else None,
                author_role=author.role if author else None,
            )
        )

    logger.info(
        "get_request -> %s messages=%s unseen=%s (viewer=%s)",
        request_id[:8],
        len(messages),
        unseen,
        viewer.role,
    )
    return RequestDetail(
        **_summary_fields(request, profiles),
        total_messages=len(messages),
        unseen_count=unseen,
        last_viewed_at=last_viewed_at,
        messages=messages,
    )


async def create_request(
    app: AppContext,
    title: str,
    urgency: str | Urgency,
    viewer: Identity,
    description: str | None = None,
) -> Request:
    """Create a request in status New for the calling client.

    With ``description`` the text becomes the thread's first message. That
    is a second write; if it fails the request still exists and the caller
    gets PartialFailureError naming it.
    """
    require_role(viewer, Role.CLIENT, action="create requests")
    require_text(title, "Title")
    urgency_value = parse_urgency(urgency)
    if description is not None:
        require_text(description, "Description")

    record = await app.store.insert(
        REQUESTS,
        {
            "title": title.strip(),
            "client_id": viewer.user_id,
            "status": RequestStatus.NEW,
            "urgency": urgency_value,
        },
    )
    request = Request.model_validate(record)

    if description is not None:
        try:
            await append_message(app, request.id, viewer.user_id, description)
        except RequestDeskError as exc:
            raise PartialFailureError(
                f"Request {request.id} created but its description was not saved: {exc}",
                completed=1,
                total=2,
                first_error=exc,
                detail={"request_id": request.id},
            ) from exc

    logger.info(
        'create_request -> %s new (urgency=%s) "%s"',
        request.id[:8],
        request.urgency,
        request.title[:72],
    )
    return request


async def request_report(app: AppContext, viewer: Identity) -> RequestReport:
    """Admin report over every request."""
    require_role(viewer, Role.ADMIN, action="view reports")
    return summarize(await list_requests(app, viewer))


async def send_message(
    app: AppContext,
    request_id: str,
    viewer: Identity,
    text: str,
    is_internal: bool = False,
) -> Message:
    """Post a message to a request thread.

    Clients may only write to their own requests and never internally.
    """
    require_text(text, "Message text")
    request = await load_request(app, request_id)
    ensure_can_open(viewer, request)
    if is_internal and not viewer.is_staff:
        raise UnauthorizedError("Only staff may post internal messages")

    message = await append_message(app, request_id, viewer.user_id, text, is_internal)
    logger.info(
        "send_message -> %s by %s (internal=%s)",
        request_id[:8],
        viewer.role,
        is_internal,
    )
    return message
