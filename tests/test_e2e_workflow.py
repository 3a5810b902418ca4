"""End-to-end request lifecycle through the MCP tools.

Each test drives a complete flow across client, admin and reviewer identities
and checks what each of them sees at every step.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from request_desk.tools import (
    create_request,
    get_report,
    get_request,
    hand_off_for_review,
    list_requests,
    send_message,
    submit_review,
    update_status,
)

if TYPE_CHECKING:
    from conftest import MockContext


# ---- TestRequestLifecycle ----


class TestRequestLifecycle:
    """Happy path: create -> triage -> hand off -> review -> complete."""

    async def test_full_lifecycle_with_visibility(self, ctx: MockContext) -> None:
        # Step 1: Client submits an urgent request with a description
        created = await create_request.fn(
            user_id="client-1",
            title="Update homepage banner",
            urgency="Urgent",
            description="Please swap the spring banner for the summer one.",
            ctx=ctx,
        )
        rid = created["request"]["id"]
        assert created["request"]["status"] == "New"

        listed = await list_requests.fn(user_id="admin-1", ctx=ctx)
        assert listed["count"] == 1
        assert listed["requests"][0]["unseen_count"] == 1
        assert listed["requests"][0]["client_email"] == "alice@client.test"

        # Step 2: Admin opens it, starts work and leaves an internal note
        opened = await get_request.fn(user_id="admin-1", request_id=rid, ctx=ctx)
        assert opened["request"]["unseen_count"] == 1
        listed = await list_requests.fn(user_id="admin-1", ctx=ctx)
        assert listed["requests"][0]["unseen_count"] == 0

        await update_status.fn(user_id="admin-1", request_id=rid, status="In Progress", ctx=ctx)
        await send_message.fn(
            user_id="admin-1",
            request_id=rid,
            text="Design has not delivered the asset yet",
            is_internal=True,
            ctx=ctx,
        )

        # Step 3: Client sees the status notice but not the internal note
        client_view = await get_request.fn(user_id="client-1", request_id=rid, ctx=ctx)
        texts = [m["text"] for m in client_view["request"]["messages"]]
        assert texts == [
            "Please swap the spring banner for the summer one.",
            "Status updated to: In Progress",
        ]
        assert client_view["request"]["total_messages"] == 2

        # Step 4: Admin hands the request to a reviewer
        handed = await hand_off_for_review.fn(
            user_id="admin-1", request_id=rid, reviewer_id="reviewer-1", ctx=ctx
        )
        assert handed["completed"] == 3
        assert handed["request"]["status"] == "Peer Review"
        assert handed["request"]["reviewer_id"] == "reviewer-1"

        # Step 5: Reviewer sees the internal note and requests changes
        reviewer_view = await get_request.fn(user_id="reviewer-1", request_id=rid, ctx=ctx)
        assert reviewer_view["request"]["reviewer_email"] == "rita@desk.test"
        assert any(m["is_internal"] for m in reviewer_view["request"]["messages"])

        reviewed = await submit_review.fn(
            user_id="reviewer-1", request_id=rid, decision="request_changes", ctx=ctx
        )
        assert reviewed["request"]["status"] == "In Progress"

        # Step 6: Second review round ends in approval, admin completes
        await update_status.fn(user_id="admin-1", request_id=rid, status="Peer Review", ctx=ctx)
        await submit_review.fn(user_id="reviewer-1", request_id=rid, decision="approve", ctx=ctx)
        denied = await update_status.fn(
            user_id="reviewer-1", request_id=rid, status="Complete", ctx=ctx
        )
        assert denied["kind"] == "unauthorized"
        done = await update_status.fn(
            user_id="admin-1", request_id=rid, status="Complete", ctx=ctx
        )
        assert done["request"]["status"] == "Complete"

        # Verify final thread as the client sees it
        final = await get_request.fn(user_id="client-1", request_id=rid, ctx=ctx)
        texts = [m["text"] for m in final["request"]["messages"]]
        assert texts[0] == "Please swap the spring banner for the summer one."
        assert "Assigned to reviewer rita@desk.test for peer review." in texts
        assert "Reviewer requested changes; admin notified." in texts
        assert "Reviewer approved the work; admin notified." in texts
        assert texts[-1] == "Status updated to: Complete"
        assert "Design has not delivered the asset yet" not in texts

        # Verify final report
        report = (await get_report.fn(user_id="admin-1", ctx=ctx))["report"]
        assert report["total"] == 1
        assert report["by_status"]["Complete"] == 1
        assert report["urgent"] == 1


# ---- TestClientIsolation ----


class TestClientIsolation:
    """Two clients never see or touch each other's requests."""

    async def test_clients_are_isolated(self, ctx: MockContext) -> None:
        alice = await create_request.fn(user_id="client-1", title="Alice's page", ctx=ctx)
        bob = await create_request.fn(user_id="client-2", title="Bob's page", ctx=ctx)

        alice_list = await list_requests.fn(user_id="client-1", ctx=ctx)
        assert [r["title"] for r in alice_list["requests"]] == ["Alice's page"]

        peek = await get_request.fn(
            user_id="client-1", request_id=bob["request"]["id"], ctx=ctx
        )
        assert peek["kind"] == "unauthorized"

        post = await send_message.fn(
            user_id="client-2", request_id=alice["request"]["id"], text="hi", ctx=ctx
        )
        assert post["kind"] == "unauthorized"

        admin_list = await list_requests.fn(user_id="admin-1", ctx=ctx)
        assert admin_list["count"] == 2
