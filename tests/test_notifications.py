"""Tests for notification delivery helpers and recipient operations."""
import logging
from uuid import uuid4

import pytest

from issueflow_core import crud, models
from issueflow_core import notifications as notification_service
from issueflow_core.channels import ChannelEventKind, make_event
from issueflow_core.notifications import (
    build_comment_link,
    mention_message,
    publish_safely,
)
from issueflow_core.permissions import PermissionDeniedError


@pytest.fixture
def mentioned_twice(db, issue, dave, carol):
    """Two mention notifications for carol."""
    crud.create_comment(db, issue.id, "@carol one", dave)
    crud.create_comment(db, issue.id, "@carol two", dave)
    return notification_service.list_notifications(db, carol)


class TestHelpers:
    """Test message, link and publish helpers."""

    def test_comment_link_format(self):
        project_id, comment_id = uuid4(), uuid4()
        assert (
            build_comment_link(project_id, "TEST-7", comment_id)
            == f"/projects/{project_id}/issues/TEST-7#comment-{comment_id}"
        )

    def test_mention_message_uses_full_name(self):
        assert mention_message(models.User(username="dave", full_name="Dave Developer")) == (
            "Dave Developer mentioned you in a comment"
        )

    def test_mention_message_falls_back_to_username(self):
        assert mention_message(models.User(username="dave", full_name="")) == "dave mentioned you in a comment"

    def test_publish_safely_without_publisher(self):
        assert publish_safely(None, "issues/x", make_event(ChannelEventKind.ISSUE_UPDATED, {})) is False

    def test_publish_safely_logs_and_swallows(self, failing_publisher, caplog):
        event = make_event(ChannelEventKind.COMMENT_ADDED, {"id": "1"})
        with caplog.at_level(logging.ERROR, logger="issueflow-core.notifications"):
            assert publish_safely(failing_publisher, "issues/1", event) is False

        record = caplog.records[-1]
        assert record.levelno == logging.ERROR
        assert record.exc_info is not None

    def test_publish_safely_delivers(self, publisher):
        event = make_event(ChannelEventKind.COMMENT_ADDED, {"id": "1"})
        assert publish_safely(publisher, "issues/1", event) is True
        assert publisher.published == [("issues/1", event)]


class TestRecipientOperations:
    """Test listing and marking notifications read."""

    def test_list_newest_first(self, db, carol, mentioned_twice):
        timestamps = [n.created_at for n in mentioned_twice]
        assert len(timestamps) == 2
        assert timestamps == sorted(timestamps, reverse=True)

    def test_unread_and_count(self, db, carol, mentioned_twice):
        assert notification_service.count_unread_notifications(db, carol) == 2
        assert len(notification_service.list_unread_notifications(db, carol)) == 2

    def test_mark_read_sets_timestamp(self, db, carol, mentioned_twice):
        target = mentioned_twice[0]

        result = crud.mark_notification_read(db, target.id, carol)

        assert result.is_read is True
        assert result.read_at is not None
        assert notification_service.count_unread_notifications(db, carol) == 1

    def test_mark_read_twice_keeps_first_timestamp(self, db, carol, mentioned_twice):
        target = mentioned_twice[0]
        first = crud.mark_notification_read(db, target.id, carol).read_at
        second = crud.mark_notification_read(db, target.id, carol).read_at
        assert first == second

    def test_only_recipient_can_mark_read(self, db, dave, mentioned_twice):
        with pytest.raises(PermissionDeniedError):
            crud.mark_notification_read(db, mentioned_twice[0].id, dave)
        assert mentioned_twice[0].is_read is False

    def test_mark_unknown_notification(self, db, carol):
        with pytest.raises(crud.NotFoundError):
            crud.mark_notification_read(db, uuid4(), carol)

    def test_mark_all_read(self, db, carol, mentioned_twice):
        assert crud.mark_all_notifications_read(db, carol) == 2
        assert notification_service.count_unread_notifications(db, carol) == 0
        assert crud.mark_all_notifications_read(db, carol) == 0

    def test_mark_all_read_leaves_other_users_alone(self, db, issue, dave, alice, carol, mentioned_twice):
        crud.create_comment(db, issue.id, "@alice hi", dave)
        crud.mark_all_notifications_read(db, carol)
        assert notification_service.count_unread_notifications(db, alice) == 1
