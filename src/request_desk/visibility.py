"""Role-scoped visibility of request message threads."""

from __future__ import annotations

from collections.abc import Iterable
from typing import TypeVar

from request_desk.models import STAFF_ROLES, Message, Role

M = TypeVar("M", bound=Message)


def can_see_internal(viewer_role: str | None) -> bool:
    """Return True when the viewer role may read internal (staff-only) messages."""
    try:
        role = Role(viewer_role)
    except ValueError:
        return False
    return role in STAFF_ROLES


def filter_messages(messages: Iterable[M], viewer_role: str | None) -> list[M]:
    """Return the messages a viewer with ``viewer_role`` may see.

    Admins and reviewers see every message. Clients, unresolved roles and
    unknown role strings only see messages that are not internal. Order is
    preserved and the function never raises.
    """
    if can_see_internal(viewer_role):
        return list(messages)
    return [message for message in messages if not message.is_internal]
