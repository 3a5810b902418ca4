"""Sorting, filtering, search and reporting over listed requests.

These run on the caller side of list_requests: the store already returns
requests newest first, and dashboards re-sort or narrow that list.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from enum import StrEnum

from request_desk.errors import InvalidInputError
from request_desk.models import RequestReport, RequestStatus, RequestSummary, Urgency


class SortMode(StrEnum):
    DATE_DESC = "date_desc"
    DATE_ASC = "date_asc"
    URGENCY = "urgency"


def parse_sort_mode(value: str | SortMode) -> SortMode:
    try:
        return SortMode(value)
    except ValueError:
        allowed = ", ".join(mode.value for mode in SortMode)
        raise InvalidInputError(f"Unknown sort mode: {value!r}. Allowed: {allowed}") from None


def sort_requests(
    requests: Sequence[RequestSummary],
    mode: str | SortMode = SortMode.DATE_DESC,
) -> list[RequestSummary]:
    """Return a re-ordered copy of ``requests``.

    All modes are stable. URGENCY is a partition: Urgent before Normal with
    the incoming relative order kept inside each group.
    """
    mode = parse_sort_mode(mode)
    if mode == SortMode.DATE_ASC:
        return sorted(requests, key=lambda r: r.created_at)
    if mode == SortMode.DATE_DESC:
        return sorted(requests, key=lambda r: r.created_at, reverse=True)
    urgent = [r for r in requests if r.urgency == Urgency.URGENT]
    rest = [r for r in requests if r.urgency != Urgency.URGENT]
    return urgent + rest


def filter_requests(
    requests: Sequence[RequestSummary],
    status: str | None = None,
    urgency: str | None = None,
    client_email: str | None = None,
    query: str | None = None,
) -> list[RequestSummary]:
    """Narrow ``requests``; every given criterion must match.

    ``query`` is a case-insensitive substring match on the title followed
    by the client email.
    """
    needle = query.strip().lower() if query else ""
    matched: list[RequestSummary] = []
    for request in requests:
        if status is not None and request.status != status:
            continue
        if urgency is not None and request.urgency != urgency:
            continue
        if client_email is not None and request.client_email != client_email:
            continue
        if needle:
            haystack = (request.title + (request.client_email or "")).lower()
            if needle not in haystack:
                continue
        matched.append(request)
    return matched


def summarize(requests: Sequence[RequestSummary]) -> RequestReport:
    """Count requests by status, urgency and client."""
    by_status = Counter(request.status for request in requests)
    by_client = Counter(
        request.client_email for request in requests if request.client_email is not None
    )
    return RequestReport(
        total=len(requests),
        by_status={status: by_status.get(status, 0) for status in RequestStatus},
        urgent=sum(1 for request in requests if request.urgency == Urgency.URGENT),
        by_client=dict(by_client),
    )
