"""MCP tool definitions for the request desk.

Every tool takes the caller's ``user_id``, resolves it to an Identity and
calls the core with that identity explicitly. Core failures come back as
``{"error": ..., "kind": ...}``; partial failures also carry ``completed``,
``total`` and ``detail``.
"""

from __future__ import annotations

import logging

from fastmcp import Context
from pydantic import BaseModel

from request_desk import assignment, lifecycle, listing, service, workflow
from request_desk.db import AppContext
from request_desk.errors import RequestDeskError
from request_desk.server import caller_tag, mcp
from request_desk.state_machine import parse_status

logger = logging.getLogger("request_desk")


def mcp_tool(*args, **kwargs):
    """FastMCP tool decorator with legacy `.fn` compatibility for tests/internal calls."""
    raw_tool = mcp.tool

    # Bare decorator usage: @mcp_tool
    if args and callable(args[0]) and len(args) == 1 and not kwargs:
        fn = args[0]
        registered = raw_tool(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    decorator = raw_tool(*args, **kwargs)

    def _decorate(fn):
        registered = decorator(fn)
        if not hasattr(registered, "fn"):
            registered.fn = registered
        return registered

    return _decorate


def _app_ctx(ctx: Context) -> AppContext:
    """Resolve the desk AppContext from a FastMCP Context, across versions."""
    if ctx is None:
        raise RuntimeError("Missing MCP context")
    if hasattr(ctx, "lifespan_context"):
        return ctx.lifespan_context
    rc = getattr(ctx, "request_context", None)
    if rc is not None and hasattr(rc, "lifespan_context"):
        return rc.lifespan_context
    fm = getattr(ctx, "fastmcp", None)
    if fm is not None and hasattr(fm, "_lifespan_result"):
        return fm._lifespan_result
    raise RuntimeError("Unable to resolve desk lifespan context")


def _failure(tool_name: str, exc: RequestDeskError) -> dict:
    logger.info("%s -> %s: %s", tool_name, exc.kind, exc)
    return exc.to_dict()


def _dump(model: BaseModel) -> dict:
    return model.model_dump(mode="json")


def _short(request_id: str | None) -> str:
    """Render compact request IDs in logs."""
    if not request_id:
        return "unknown"
    return request_id[:8]


def _tag(user_id: str | None) -> None:
    caller_tag.set(user_id.strip() if user_id and user_id.strip() else "anonymous")


@mcp_tool
async def create_request(
    user_id: str,
    title: str,
    urgency: str = "Normal",
    description: str | None = None,
    ctx: Context = None,
) -> dict:
    """Submit a new website update request as a client.

    The request starts in status New. If description is given it is posted
    as the first message in the request thread.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        request = await service.create_request(app, title, urgency, viewer, description)
    except RequestDeskError as exc:
        return _failure("create_request", exc)
    return {"request": _dump(request)}


@mcp_tool
async def list_requests(
    user_id: str,
    status: str | None = None,
    urgency: str | None = None,
    client_email: str | None = None,
    query: str | None = None,
    sort: str = "date_desc",
    ctx: Context = None,
) -> dict:
    """List requests visible to the caller with message and unseen counts.

    Clients only see their own requests. Optional filters narrow by status,
    urgency, client email, or a case-insensitive title/client search.
    sort is one of date_desc (default), date_asc, urgency.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        if status is not None:
            status = parse_status(status).value
        if urgency is not None:
            urgency = service.parse_urgency(urgency).value
        mode = listing.parse_sort_mode(sort)
        viewer = await app.identity.resolve(user_id)
        requests = await service.list_requests(app, viewer)
    except RequestDeskError as exc:
        return _failure("list_requests", exc)

    requests = listing.filter_requests(
        requests,
        status=status,
        urgency=urgency,
        client_email=client_email,
        query=query,
    )
    requests = listing.sort_requests(requests, mode)
    return {"requests": [_dump(r) for r in requests], "count": len(requests)}


@mcp_tool
async def get_request(user_id: str, request_id: str, ctx: Context = None) -> dict:
    """Open one request with its message thread and mark it as viewed.

    Internal staff notes are omitted for clients.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        detail = await service.get_request(app, request_id, viewer)
    except RequestDeskError as exc:
        return _failure("get_request", exc)
    return {"request": _dump(detail)}


@mcp_tool
async def send_message(
    user_id: str,
    request_id: str,
    text: str,
    is_internal: bool = False,
    ctx: Context = None,
) -> dict:
    """Post a message to a request thread.

    Set is_internal=True for a staff-only note (admins and reviewers only).
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        message = await service.send_message(app, request_id, viewer, text, is_internal)
    except RequestDeskError as exc:
        return _failure("send_message", exc)
    return {"message": _dump(message)}


@mcp_tool
async def update_status(
    user_id: str,
    request_id: str,
    status: str,
    ctx: Context = None,
) -> dict:
    """Change a request's status and post a status notice in its thread."""
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        request = await lifecycle.change_status(app, request_id, status, viewer)
    except RequestDeskError as exc:
        return _failure("update_status", exc)
    return {"request": _dump(request)}


@mcp_tool
async def bulk_update_status(
    user_id: str,
    request_ids: list[str],
    status: str,
    ctx: Context = None,
) -> dict:
    """Change the status of several requests, best effort.

    Requests that succeed stay updated. When any fail the response is an
    error that reports completed/total and the per-request outcome.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        result = await lifecycle.bulk_change_status(app, request_ids, status, viewer)
    except RequestDeskError as exc:
        return _failure("bulk_update_status", exc)
    return {**_dump(result), "completed": result.completed}


@mcp_tool
async def submit_review(
    user_id: str,
    request_id: str,
    decision: str,
    ctx: Context = None,
) -> dict:
    """Record a reviewer verdict: decision is 'approve' or 'request_changes'.

    Either way the request returns to In Progress and the admin is notified
    through the thread.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        request = await lifecycle.submit_review(app, request_id, viewer, decision)
    except RequestDeskError as exc:
        return _failure("submit_review", exc)
    return {"request": _dump(request), "decision": decision}


@mcp_tool
async def assign_reviewer(
    user_id: str,
    request_id: str,
    reviewer_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Assign a reviewer to a request (admin only). Omit reviewer_id to unassign."""
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        request = await assignment.assign(app, request_id, reviewer_id, viewer)
    except RequestDeskError as exc:
        return _failure("assign_reviewer", exc)
    return {"request": _dump(request)}


@mcp_tool
async def bulk_assign(
    user_id: str,
    request_ids: list[str],
    reviewer_id: str | None = None,
    ctx: Context = None,
) -> dict:
    """Assign one reviewer to several requests (admin only), best effort."""
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        result = await assignment.bulk_assign(app, request_ids, reviewer_id, viewer)
    except RequestDeskError as exc:
        return _failure("bulk_assign", exc)
    return {**_dump(result), "completed": result.completed}


@mcp_tool
async def hand_off_for_review(
    user_id: str,
    request_id: str,
    reviewer_id: str,
    ctx: Context = None,
) -> dict:
    """Assign a reviewer, move the request to Peer Review and notify the thread.

    The three steps are separate writes. On failure the response reports
    how many steps completed.
    """
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        request, progress = await workflow.hand_off_for_review(
            app, request_id, reviewer_id, viewer
        )
    except RequestDeskError as exc:
        return _failure("hand_off_for_review", exc)
    logger.info("hand_off_for_review -> %s done", _short(request_id))
    return {
        "request": _dump(request),
        "completed": len(progress.completed),
        "total": progress.total,
    }


@mcp_tool
async def list_reviewers(user_id: str, ctx: Context = None) -> dict:
    """List reviewer profiles that requests can be assigned to."""
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        reviewers = await assignment.list_reviewers(app, viewer)
    except RequestDeskError as exc:
        return _failure("list_reviewers", exc)
    return {"reviewers": [_dump(r) for r in reviewers], "count": len(reviewers)}


@mcp_tool
async def get_report(user_id: str, ctx: Context = None) -> dict:
    """Summary counts by status, urgency and client (admin only)."""
    _tag(user_id)
    app = _app_ctx(ctx)
    try:
        viewer = await app.identity.resolve(user_id)
        report = await service.request_report(app, viewer)
    except RequestDeskError as exc:
        return _failure("get_report", exc)
    return {"report": _dump(report)}
