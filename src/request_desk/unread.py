"""Unseen message counting and per-user view markers."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from request_desk.models import Message
from request_desk.store import REQUEST_VIEWS, REQUESTS, format_timestamp, utc_now

if TYPE_CHECKING:
    from request_desk.db import AppContext

logger = logging.getLogger("request_desk")

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def compute_unseen(messages: Iterable[Message], last_viewed_at: datetime | None) -> int:
    """Count messages created strictly after ``last_viewed_at``.

    Callers pass the already visibility-filtered thread. A missing marker
    counts as the epoch, so every message is unseen.
    """
    marker = last_viewed_at if last_viewed_at is not None else EPOCH
    return sum(1 for message in messages if message.created_at > marker)


async def mark_viewed(app: AppContext, request_id: str, user_id: str) -> datetime:
    """Record that ``user_id`` opened ``request_id`` now.

    The stored marker only ever moves forward. Raises NotFoundError for an
    unknown request; store failures propagate to the caller.
    """
    await app.store.get(REQUESTS, request_id)
    viewed_at = utc_now()
    await app.store.upsert(
        REQUEST_VIEWS,
        {
            "user_id": user_id,
            "request_id": request_id,
            "last_viewed_at": format_timestamp(viewed_at),
        },
        conflict_key=("user_id", "request_id"),
        monotonic=("last_viewed_at",),
    )
    logger.info("mark_viewed -> %s by %s", request_id[:8], user_id)
    return viewed_at
