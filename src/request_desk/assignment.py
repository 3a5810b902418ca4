"""Reviewer assignment for requests."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from request_desk.bulk import run_bulk
from request_desk.errors import InvalidInputError
from request_desk.models import BulkResult, Identity, Profile, Request, Role
from request_desk.service import load_request, require_role
from request_desk.store import PROFILES, REQUESTS

if TYPE_CHECKING:
    from request_desk.db import AppContext

logger = logging.getLogger("request_desk")


async def resolve_reviewer(app: AppContext, reviewer_id: str | None) -> Profile | None:
    """Return the reviewer profile, or None when unassigning.

    Raises NotFoundError for an unknown id and InvalidInputError when the
    id belongs to a non-reviewer.
    """
    if reviewer_id is None:
        return None
    if reviewer_id.strip() == "":
        raise InvalidInputError("Reviewer id must not be blank; pass None to unassign")
    row = await app.store.get(PROFILES, reviewer_id)
    if row.get("role") != Role.REVIEWER.value:
        raise InvalidInputError(f"Profile {reviewer_id} is not a reviewer")
    return Profile.model_validate(row)


async def _set_reviewer(app: AppContext, request_id: str, reviewer_id: str | None) -> None:
    await app.store.update(REQUESTS, request_id, {"reviewer_id": reviewer_id})


async def assign(
    app: AppContext,
    request_id: str,
    reviewer_id: str | None,
    viewer: Identity,
) -> Request:
    """Attach ``reviewer_id`` to a request, or detach with None. Status is untouched."""
    require_role(viewer, Role.ADMIN, action="assign reviewers")
    await resolve_reviewer(app, reviewer_id)
    await _set_reviewer(app, request_id, reviewer_id)
    logger.info(
        "assign -> %s reviewer=%s by %s",
        request_id[:8],
        reviewer_id or "unassigned",
        viewer.user_id,
    )
    return await load_request(app, request_id)


async def bulk_assign(
    app: AppContext,
    request_ids: Iterable[str],
    reviewer_id: str | None,
    viewer: Identity,
) -> BulkResult:
    """Assign one reviewer to many requests, best effort.

    The reviewer is validated once for the whole call. Missing request ids
    are reported per id and the call raises PartialFailureError.
    """
    require_role(viewer, Role.ADMIN, action="assign reviewers")
    await resolve_reviewer(app, reviewer_id)

    async def _apply(request_id: str) -> None:
        await _set_reviewer(app, request_id, reviewer_id)

    return await run_bulk("bulk_assign", request_ids, _apply)


async def list_reviewers(app: AppContext, viewer: Identity) -> list[Profile]:
    require_role(viewer, Role.ADMIN, Role.REVIEWER, action="list reviewers")
    rows = await app.store.find(PROFILES, {"role": Role.REVIEWER}, order_by=[("email", "asc")])
    return [Profile.model_validate(row) for row in rows]
