"""Caller identity and role resolution.

Profiles are written by the sign-up flow, which is outside this package. A
freshly registered user may call in before their profile row is visible,
so a missing profile is treated as transient and retried under the
configured RetryPolicy before the caller is reported as unauthenticated.
"""

from __future__ import annotations

import asyncio
import logging

from request_desk.config_schema import RetryPolicy
from request_desk.errors import NotFoundError, TransientStoreError, UnauthenticatedError
from request_desk.models import Identity, Role
from request_desk.store import PROFILES, RecordStore

logger = logging.getLogger("request_desk")


def coerce_role(value: str | None) -> Role:
    """Map a stored role string onto Role, degrading unknown values to NONE."""
    if value is None:
        return Role.NONE
    try:
        return Role(value)
    except ValueError:
        return Role.NONE


class IdentityResolver:
    """Resolve a caller user id to an Identity with bounded retries."""

    def __init__(self, store: RecordStore, retry: RetryPolicy | None = None) -> None:
        self.store = store
        self.retry = retry if retry is not None else RetryPolicy()

    async def _lookup(self, user_id: str) -> Identity:
        try:
            profile = await self.store.get(PROFILES, user_id)
        except NotFoundError as exc:
            raise TransientStoreError(f"Profile not yet available: {user_id}") from exc
        return Identity(user_id=user_id, role=coerce_role(profile.get("role")))

    async def resolve(self, user_id: str | None) -> Identity:
        if user_id is None or user_id.strip() == "":
            raise UnauthenticatedError("No caller identity supplied")
        user_id = user_id.strip()

        last_error: TransientStoreError | None = None
        for attempt in range(1, self.retry.max_attempts + 1):
            try:
                return await self._lookup(user_id)
            except TransientStoreError as exc:
                last_error = exc
                if attempt == self.retry.max_attempts:
                    break
                delay = self.retry.delay_for(attempt)
                logger.info(
                    "resolve_identity -> %s attempt %s/%s failed, retrying in %.1fs",
                    user_id,
                    attempt,
                    self.retry.max_attempts,
                    delay,
                )
                await asyncio.sleep(delay)

        logger.warning(
            "resolve_identity -> %s unresolved after %s attempts",
            user_id,
            self.retry.max_attempts,
        )
        raise UnauthenticatedError(
            f"Could not resolve identity for {user_id} after "
            f"{self.retry.max_attempts} attempts: {last_error}"
        )
