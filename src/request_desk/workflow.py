"""Hand-off of a request to a reviewer as a resumable multi-step workflow.

Steps run in order: assign the reviewer, move the request to Peer Review,
post a notice in the thread. Each step is an independent write. Progress is
recorded on the workflow object so a failed run reports how far it got and
a later ``run`` call picks up at the first unfinished step.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from request_desk.assignment import assign, resolve_reviewer
from request_desk.errors import PartialFailureError, RequestDeskError
from request_desk.lifecycle import change_status
from request_desk.models import Identity, Request, RequestStatus, Role, WorkflowProgress
from request_desk.service import append_message, load_request, require_role

if TYPE_CHECKING:
    from request_desk.db import AppContext

logger = logging.getLogger("request_desk")

ASSIGN = "assign"
TRANSITION = "transition"
NOTIFY = "notify"
HANDOFF_STEPS = (ASSIGN, TRANSITION, NOTIFY)


@dataclass
class HandoffWorkflow:
    """Assign a reviewer, move to Peer Review, and notify the thread."""

    request_id: str
    reviewer_id: str
    actor: Identity
    completed: list[str] = field(default_factory=list)

    @property
    def progress(self) -> WorkflowProgress:
        return WorkflowProgress(steps=list(HANDOFF_STEPS), completed=list(self.completed))

    @property
    def finished(self) -> bool:
        return len(self.completed) == len(HANDOFF_STEPS)

    async def _run_step(self, app: AppContext, step: str) -> None:
        if step == ASSIGN:
            await assign(app, self.request_id, self.reviewer_id, self.actor)
        elif step == TRANSITION:
            await change_status(
                app,
                self.request_id,
                RequestStatus.PEER_REVIEW,
                self.actor,
                announce=False,
            )
        elif step == NOTIFY:
            reviewer = await resolve_reviewer(app, self.reviewer_id)
            label = reviewer.email if reviewer is not None else self.reviewer_id
            await append_message(
                app,
                self.request_id,
                self.actor.user_id,
                f"Assigned to reviewer {label} for peer review.",
            )

    async def run(self, app: AppContext) -> Request:
        """Run every step not yet completed.

        A failure before any step has landed propagates unchanged. Later
        failures raise PartialFailureError; ``completed`` counts all steps
        finished so far, including earlier runs.
        """
        require_role(self.actor, Role.ADMIN, action="hand off requests for review")
        for step in HANDOFF_STEPS:
            if step in self.completed:
                continue
            try:
                await self._run_step(app, step)
            except RequestDeskError as exc:
                if not self.completed:
                    raise
                logger.warning(
                    "handoff -> %s stopped at %s (%s/%s done): %s",
                    self.request_id[:8],
                    step,
                    len(self.completed),
                    len(HANDOFF_STEPS),
                    exc,
                )
                raise PartialFailureError(
                    f"Hand-off of {self.request_id} stopped at step '{step}': {exc}",
                    completed=len(self.completed),
                    total=len(HANDOFF_STEPS),
                    first_error=exc,
                    detail=self.progress,
                ) from exc
            self.completed.append(step)

        logger.info(
            "handoff -> %s assigned to %s and moved to Peer Review",
            self.request_id[:8],
            self.reviewer_id,
        )
        return await load_request(app, self.request_id)


async def hand_off_for_review(
    app: AppContext,
    request_id: str,
    reviewer_id: str,
    viewer: Identity,
) -> tuple[Request, WorkflowProgress]:
    """Run a fresh hand-off workflow to completion."""
    workflow = HandoffWorkflow(request_id=request_id, reviewer_id=reviewer_id, actor=viewer)
    request = await workflow.run(app)
    return request, workflow.progress
