"""Tests for request listing, detail, creation and messaging."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from request_desk import service
from request_desk.db import AppContext
from request_desk.errors import (
    InvalidInputError,
    NotFoundError,
    PartialFailureError,
    StoreError,
    UnauthorizedError,
)
from request_desk.models import Identity, RequestStatus, Role, Urgency
from request_desk.store import MESSAGES, PROFILES, REQUESTS


class TestCreateRequest:
    async def test_create_then_get_round_trip(self, app: AppContext, client: Identity) -> None:
        created = await service.create_request(app, "Update homepage banner", "Urgent", client)
        assert created.status == RequestStatus.NEW
        assert created.urgency == Urgency.URGENT
        assert created.client_id == client.user_id
        assert created.reviewer_id is None

        detail = await service.get_request(app, created.id, client)
        assert detail.title == "Update homepage banner"
        assert detail.status == RequestStatus.NEW
        assert detail.urgency == Urgency.URGENT
        assert detail.messages == []
        assert detail.client_email == "alice@client.test"

    async def test_title_is_trimmed(self, app: AppContext, client: Identity) -> None:
        created = await service.create_request(app, "  New logo  ", "Normal", client)
        assert created.title == "New logo"

    @pytest.mark.parametrize("title", ["", "   ", "\n\t"])
    async def test_blank_title_rejected(
        self, app: AppContext, client: Identity, title: str
    ) -> None:
        with pytest.raises(InvalidInputError, match="Title"):
            await service.create_request(app, title, "Normal", client)
        assert await app.store.find(REQUESTS) == []

    async def test_unknown_urgency_rejected(self, app: AppContext, client: Identity) -> None:
        with pytest.raises(InvalidInputError, match="Unknown urgency"):
            await service.create_request(app, "Fix nav", "Critical", client)

    @pytest.mark.parametrize("role_fixture", ["admin", "reviewer"])
    async def test_staff_cannot_create(
        self, app: AppContext, request: pytest.FixtureRequest, role_fixture: str
    ) -> None:
        viewer = request.getfixturevalue(role_fixture)
        with pytest.raises(UnauthorizedError, match="may not create requests"):
            await service.create_request(app, "Fix nav", "Normal", viewer)

    async def test_description_becomes_first_message(
        self, app: AppContext, client: Identity
    ) -> None:
        created = await service.create_request(
            app, "Fix nav", "Normal", client, description="The menu overlaps on mobile."
        )
        detail = await service.get_request(app, created.id, client)
        assert [m.text for m in detail.messages] == ["The menu overlaps on mobile."]
        assert detail.messages[0].author_role == Role.CLIENT
        assert not detail.messages[0].is_internal

    async def test_blank_description_rejected_before_any_write(
        self, app: AppContext, client: Identity
    ) -> None:
        with pytest.raises(InvalidInputError, match="Description"):
            await service.create_request(app, "Fix nav", "Normal", client, description="  ")
        assert await app.store.find(REQUESTS) == []

    async def test_description_failure_is_partial(
        self, app: AppContext, client: Identity
    ) -> None:
        with patch(
            "request_desk.service.append_message",
            new=AsyncMock(side_effect=StoreError("disk full")),
        ):
            with pytest.raises(PartialFailureError) as exc_info:
                await service.create_request(
                    app, "Fix nav", "Normal", client, description="details"
                )

        err = exc_info.value
        assert err.completed == 1
        assert err.total == 2
        assert isinstance(err.first_error, StoreError)
        stored = await app.store.find(REQUESTS)
        assert len(stored) == 1
        assert err.detail == {"request_id": stored[0]["id"]}
        payload = err.to_dict()
        assert payload["kind"] == "partial_failure"
        assert payload["first_error"]["kind"] == "store_error"


class TestSendMessage:
    async def test_client_message_on_own_request(
        self, app: AppContext, client: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        message = await service.send_message(app, created.id, client, "Any update?")
        assert message.user_id == client.user_id
        assert message.is_internal is False

    @pytest.mark.parametrize("text", ["", "   ", "\n"])
    async def test_blank_message_rejected(
        self, app: AppContext, client: Identity, text: str
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with pytest.raises(InvalidInputError, match="Message text"):
            await service.send_message(app, created.id, client, text)
        assert await app.store.find(MESSAGES, {"request_id": created.id}) == []

    async def test_unknown_request(self, app: AppContext, admin: Identity) -> None:
        with pytest.raises(NotFoundError):
            await service.send_message(app, "ghost", admin, "hello")

    async def test_client_cannot_post_internal(
        self, app: AppContext, client: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with pytest.raises(UnauthorizedError, match="internal"):
            await service.send_message(app, created.id, client, "psst", is_internal=True)

    async def test_client_cannot_post_on_other_clients_request(
        self, app: AppContext, client: Identity, other_client: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with pytest.raises(UnauthorizedError, match="another client"):
            await service.send_message(app, created.id, other_client, "hi")

    async def test_staff_internal_note(
        self, app: AppContext, client: Identity, reviewer: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        note = await service.send_message(app, created.id, reviewer, "css bug", is_internal=True)
        assert note.is_internal is True


class TestVisibilityThroughDetail:
    async def test_internal_notes_hidden_from_client(
        self, app: AppContext, client: Identity, admin: Identity, reviewer: Identity
    ) -> None:
        created = await service.create_request(app, "Update homepage banner", "Urgent", client)
        await service.send_message(app, created.id, admin, "On it.")
        await service.send_message(app, created.id, admin, "Needs new asset", is_internal=True)
        await service.send_message(app, created.id, client, "Thanks!")

        client_view = await service.get_request(app, created.id, client)
        assert [m.text for m in client_view.messages] == ["On it.", "Thanks!"]
        assert client_view.total_messages == 2

        staff_view = await service.get_request(app, created.id, reviewer)
        assert [m.text for m in staff_view.messages] == [
            "On it.",
            "Needs new asset",
            "Thanks!",
        ]
        assert staff_view.messages[1].author_email == "ops@desk.test"

    async def test_client_cannot_open_other_clients_request(
        self, app: AppContext, client: Identity, other_client: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with pytest.raises(UnauthorizedError):
            await service.get_request(app, created.id, other_client)

    async def test_none_role_cannot_open(self, app: AppContext, client: Identity) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with pytest.raises(UnauthorizedError, match="no role"):
            await service.get_request(app, created.id, Identity(user_id="x", role=Role.NONE))

    async def test_get_unknown_request(self, app: AppContext, admin: Identity) -> None:
        with pytest.raises(NotFoundError):
            await service.get_request(app, "ghost", admin)


class TestUnseenCounts:
    async def test_unseen_counts_reset_after_view(
        self, app: AppContext, client: Identity, admin: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        await service.send_message(app, created.id, admin, "Looking now")
        await service.send_message(app, created.id, admin, "Done, please check")

        [summary] = await service.list_requests(app, client)
        assert summary.total_messages == 2
        assert summary.unseen_count == 2
        assert summary.last_viewed_at is None

        detail = await service.get_request(app, created.id, client)
        assert detail.unseen_count == 2

        [summary] = await service.list_requests(app, client)
        assert summary.unseen_count == 0
        assert summary.last_viewed_at is not None

    async def test_message_in_same_millisecond_as_view_is_unseen(
        self, app: AppContext, client: Identity, admin: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        viewed_at = datetime(2030, 1, 1, 12, 0, 0, 123456, tzinfo=UTC)
        clock = MagicMock(return_value=viewed_at)

        with patch("request_desk.store.utc_now", new=clock), patch(
            "request_desk.unread.utc_now", new=clock
        ):
            await service.get_request(app, created.id, client)
            clock.return_value = viewed_at + timedelta(microseconds=1)
            await service.send_message(app, created.id, admin, "Follow-up")

        [summary] = await service.list_requests(app, client)
        assert summary.total_messages == 1
        assert summary.last_viewed_at == viewed_at
        assert summary.unseen_count == 1

    async def test_internal_notes_never_count_for_clients(
        self, app: AppContext, client: Identity, admin: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        await service.send_message(app, created.id, admin, "internal", is_internal=True)

        [client_summary] = await service.list_requests(app, client)
        assert client_summary.total_messages == 0
        assert client_summary.unseen_count == 0

        [admin_summary] = await service.list_requests(app, admin)
        assert admin_summary.total_messages == 1
        assert admin_summary.unseen_count == 1

    async def test_markers_are_per_user(
        self, app: AppContext, client: Identity, admin: Identity, reviewer: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        await service.send_message(app, created.id, client, "hello")
        await service.get_request(app, created.id, admin)

        [admin_summary] = await service.list_requests(app, admin)
        [reviewer_summary] = await service.list_requests(app, reviewer)
        assert admin_summary.unseen_count == 0
        assert reviewer_summary.unseen_count == 1

    async def test_mark_viewed_failure_propagates(
        self, app: AppContext, client: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        with patch(
            "request_desk.service.mark_viewed",
            new=AsyncMock(side_effect=StoreError("read-only database")),
        ):
            with pytest.raises(StoreError):
                await service.get_request(app, created.id, client)


class TestListRequests:
    async def test_clients_only_see_their_own(
        self, app: AppContext, client: Identity, other_client: Identity, admin: Identity
    ) -> None:
        mine = await service.create_request(app, "Mine", "Normal", client)
        await service.create_request(app, "Theirs", "Normal", other_client)

        client_list = await service.list_requests(app, client)
        assert [r.id for r in client_list] == [mine.id]

        admin_list = await service.list_requests(app, admin)
        assert len(admin_list) == 2

    async def test_newest_first(self, app: AppContext, client: Identity, admin: Identity) -> None:
        ids = []
        for title in ("first", "second", "third"):
            ids.append((await service.create_request(app, title, "Normal", client)).id)
        listed = await service.list_requests(app, admin)
        assert [r.id for r in listed] == list(reversed(ids))

    async def test_reviewer_email_joined(
        self, app: AppContext, client: Identity, admin: Identity
    ) -> None:
        created = await service.create_request(app, "Fix nav", "Normal", client)
        await app.store.update(REQUESTS, created.id, {"reviewer_id": "reviewer-2"})
        [summary] = await service.list_requests(app, admin)
        assert summary.reviewer_email == "raj@desk.test"
        assert summary.client_email == "alice@client.test"

    async def test_empty(self, app: AppContext, admin: Identity) -> None:
        assert await service.list_requests(app, admin) == []

    async def test_none_role_rejected(self, app: AppContext) -> None:
        with pytest.raises(UnauthorizedError):
            await service.list_requests(app, Identity(user_id="x", role=Role.NONE))

    async def test_unknown_profile_role_degrades(
        self, app: AppContext, admin: Identity
    ) -> None:
        await app.store.insert(PROFILES, {"id": "odd-1", "email": "odd@x.test", "role": "owner"})
        odd = Identity(user_id="odd-1", role=Role.CLIENT)
        created = await service.create_request(app, "Odd", "Normal", odd)
        await service.send_message(app, created.id, odd, "hi")
        detail = await service.get_request(app, created.id, admin)
        assert detail.messages[0].author_role == Role.NONE


class TestReport:
    async def test_report_counts(
        self, app: AppContext, client: Identity, other_client: Identity, admin: Identity
    ) -> None:
        await service.create_request(app, "A", "Urgent", client)
        await service.create_request(app, "B", "Normal", client)
        await service.create_request(app, "C", "Urgent", other_client)

        report = await service.request_report(app, admin)
        assert report.total == 3
        assert report.urgent == 2
        assert report.by_status[RequestStatus.NEW] == 3
        assert report.by_status[RequestStatus.COMPLETE] == 0
        assert report.by_client == {"alice@client.test": 2, "bob@client.test": 1}

    @pytest.mark.parametrize("role_fixture", ["client", "reviewer"])
    async def test_report_is_admin_only(
        self, app: AppContext, request: pytest.FixtureRequest, role_fixture: str
    ) -> None:
        with pytest.raises(UnauthorizedError):
            await service.request_report(app, request.getfixturevalue(role_fixture))
