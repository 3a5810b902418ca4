"""Best-effort execution of one operation across many requests."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Iterable

from request_desk.errors import InvalidInputError, PartialFailureError, RequestDeskError
from request_desk.models import BulkResult, FailureDetail

logger = logging.getLogger("request_desk")


def dedupe_ids(request_ids: Iterable[str]) -> list[str]:
    """Drop blanks and duplicates, keeping first-seen order."""
    ids = [rid.strip() for rid in request_ids if rid is not None and rid.strip() != ""]
    ids = list(dict.fromkeys(ids))
    if not ids:
        raise InvalidInputError("No requests selected")
    return ids


async def run_bulk(
    label: str,
    request_ids: Iterable[str],
    operation: Callable[[str], Awaitable[object]],
) -> BulkResult:
    """Apply ``operation`` to every id independently.

    Ids that succeed stay applied. An id whose own operation reports a
    partial failure is filed under ``partial`` and still counts as
    completed. If any id is partial or failed, PartialFailureError is
    raised with the full BulkResult as detail and the first failure as
    ``first_error``.
    """
    ids = dedupe_ids(request_ids)
    result = BulkResult(total=len(ids))
    first_error: RequestDeskError | None = None
    for request_id in ids:
        try:
            await operation(request_id)
        except PartialFailureError as exc:
            cause = exc.first_error or exc
            if first_error is None:
                first_error = cause
            result.partial[request_id] = FailureDetail(kind=cause.kind, message=str(exc))
            continue
        except RequestDeskError as exc:
            if first_error is None:
                first_error = exc
            result.failed[request_id] = FailureDetail(kind=exc.kind, message=str(exc))
            continue
        result.succeeded.append(request_id)

    logger.info(
        "%s -> %s/%s applied",
        label,
        result.completed,
        result.total,
    )
    if result.failed or result.partial:
        raise PartialFailureError(
            f"{label}: {result.completed} of {result.total} applied",
            completed=result.completed,
            total=result.total,
            first_error=first_error,
            detail=result,
        )
    return result
