"""Status transitions for requests.

Every transition is checked against the configured TransitionPolicy and,
unless the caller posts its own notice, followed by a system message in the
request thread. The status update and the message are separate writes.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from request_desk.bulk import run_bulk
from request_desk.errors import InvalidInputError, PartialFailureError, RequestDeskError
from request_desk.models import BulkResult, Identity, Request, RequestStatus, ReviewDecision
from request_desk.service import append_message, ensure_can_open, load_request
from request_desk.state_machine import parse_status
from request_desk.store import REQUESTS

if TYPE_CHECKING:
    from request_desk.db import AppContext

logger = logging.getLogger("request_desk")

REVIEW_MESSAGES: dict[ReviewDecision, str] = {
    ReviewDecision.APPROVE: "Reviewer approved the work; admin notified.",
    ReviewDecision.REQUEST_CHANGES: "Reviewer requested changes; admin notified.",
}


def status_message(status: RequestStatus) -> str:
    return f"Status updated to: {status.value}"


async def change_status(
    app: AppContext,
    request_id: str,
    target: str | RequestStatus,
    viewer: Identity,
    *,
    message: str | None = None,
    announce: bool = True,
) -> Request:
    """Move a request to ``target`` on behalf of ``viewer``.

    Raises NotFoundError for an unknown request, InvalidInputError for an
    unknown status and UnauthorizedError when the policy denies the
    transition. When the status lands but the system message does not,
    raises PartialFailureError with ``completed=1``.
    """
    target_status = parse_status(target)
    request = await load_request(app, request_id)
    ensure_can_open(viewer, request)
    app.policy.validate(viewer.role, request.status, target_status)

    await app.store.update(REQUESTS, request_id, {"status": target_status})
    if announce:
        text = message if message is not None else status_message(target_status)
        try:
            await append_message(app, request_id, viewer.user_id, text)
        except RequestDeskError as exc:
            raise PartialFailureError(
                f"Status of {request_id} set to {target_status.value} "
                f"but the system message failed: {exc}",
                completed=1,
                total=2,
                first_error=exc,
                detail={"request_id": request_id, "status": target_status.value},
            ) from exc

    logger.info(
        "change_status -> %s %s -> %s by %s",
        request_id[:8],
        request.status.value,
        target_status.value,
        viewer.role,
    )
    return await load_request(app, request_id)


async def bulk_change_status(
    app: AppContext,
    request_ids: Iterable[str],
    target: str | RequestStatus,
    viewer: Identity,
) -> BulkResult:
    """Apply change_status to each id, best effort.

    Each request gets its own system message, same as a single change.
    """
    target_status = parse_status(target)

    async def _apply(request_id: str) -> None:
        await change_status(app, request_id, target_status, viewer)

    return await run_bulk("bulk_change_status", request_ids, _apply)


async def submit_review(
    app: AppContext,
    request_id: str,
    viewer: Identity,
    decision: str | ReviewDecision,
) -> Request:
    """Record a reviewer verdict: the request returns to In Progress for the admin."""
    try:
        verdict = ReviewDecision(decision)
    except ValueError:
        allowed = ", ".join(d.value for d in ReviewDecision)
        raise InvalidInputError(f"Unknown decision: {decision!r}. Allowed: {allowed}") from None

    request = await change_status(
        app,
        request_id,
        RequestStatus.IN_PROGRESS,
        viewer,
        message=REVIEW_MESSAGES[verdict],
    )
    logger.info("submit_review -> %s %s by %s", request_id[:8], verdict.value, viewer.user_id)
    return request
