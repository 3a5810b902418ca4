"""State machine and transition authorization for the request lifecycle."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from request_desk.errors import InvalidInputError, UnauthorizedError
from request_desk.models import RequestStatus, Role

WILDCARD = "*"

# Conventional flow. Informational: authorization is decided by TransitionPolicy.
CANONICAL_TRANSITIONS: dict[RequestStatus, set[RequestStatus]] = {
    RequestStatus.NEW: {
        RequestStatus.IN_PROGRESS,
        RequestStatus.INFO_NEEDED,
        RequestStatus.PEER_REVIEW,
    },
    RequestStatus.IN_PROGRESS: {
        RequestStatus.INFO_NEEDED,
        RequestStatus.PEER_REVIEW,
        RequestStatus.COMPLETE,
    },
    RequestStatus.INFO_NEEDED: {RequestStatus.IN_PROGRESS},
    RequestStatus.PEER_REVIEW: {
        RequestStatus.IN_PROGRESS,  # approved or changes requested
        RequestStatus.COMPLETE,
    },
    RequestStatus.COMPLETE: set(),  # terminal
}

DEFAULT_TRANSITION_RULES: dict[str, dict[str, list[str]]] = {
    Role.ADMIN: {WILDCARD: [WILDCARD]},
    Role.REVIEWER: {
        RequestStatus.IN_PROGRESS: [RequestStatus.PEER_REVIEW],
        RequestStatus.PEER_REVIEW: [RequestStatus.IN_PROGRESS],
    },
}


def parse_status(value: str | RequestStatus) -> RequestStatus:
    """Coerce a status string, raising InvalidInputError when unrecognized."""
    try:
        return RequestStatus(value)
    except ValueError:
        allowed = ", ".join(status.value for status in RequestStatus)
        raise InvalidInputError(f"Unknown status: {value!r}. Allowed: {allowed}") from None


def _expand(token: str, universe: Sequence[RequestStatus]) -> set[RequestStatus]:
    if token == WILDCARD:
        return set(universe)
    return {parse_status(token)}


@dataclass(frozen=True)
class TransitionPolicy:
    """Authorization table ``role x from_status x to_status -> allowed``."""

    allowed: frozenset[tuple[Role, RequestStatus, RequestStatus]] = field(
        default_factory=frozenset
    )

    @classmethod
    def from_rules(
        cls,
        rules: Mapping[str, Mapping[str, Sequence[str]]],
    ) -> TransitionPolicy:
        """Build a policy from ``{role: {from_status | "*": [to_status | "*"]}}``."""
        statuses = list(RequestStatus)
        allowed: set[tuple[Role, RequestStatus, RequestStatus]] = set()
        for role_name, table in rules.items():
            try:
                role = Role(role_name)
            except ValueError:
                raise InvalidInputError(f"Unknown role in transition rules: {role_name!r}") from None
            for source_token, targets in table.items():
                for source in _expand(source_token, statuses):
                    for target_token in targets:
                        for target in _expand(target_token, statuses):
                            allowed.add((role, source, target))
        return cls(allowed=frozenset(allowed))

    @classmethod
    def default(cls) -> TransitionPolicy:
        return cls.from_rules(DEFAULT_TRANSITION_RULES)

    def is_allowed(self, role: Role, current: RequestStatus, target: RequestStatus) -> bool:
        return (role, current, target) in self.allowed

    def targets_for(self, role: Role, current: RequestStatus) -> set[RequestStatus]:
        return {target for (r, source, target) in self.allowed if r == role and source == current}

    def validate(self, role: Role, current: RequestStatus, target: RequestStatus) -> None:
        """Raise UnauthorizedError when ``role`` may not move ``current`` to ``target``."""
        if self.is_allowed(role, current, target):
            return
        allowed = sorted(status.value for status in self.targets_for(role, current))
        raise UnauthorizedError(
            f"Role {role.value!r} may not change status {current.value!r} -> {target.value!r}. "
            f"Allowed targets: {allowed}"
        )
