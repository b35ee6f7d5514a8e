"""Notification fan-out for mentions and live channel events.

Writes (Mention and Notification rows) join the caller's transaction.
Publication happens only after that transaction commits and is best-effort:
a failing publisher is logged and never affects the committed write.
"""
import logging
from datetime import datetime
from typing import Iterable, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from . import models, schemas
from .channels import (
    ChannelEventKind,
    ChannelPublisher,
    issue_channel,
    make_event,
    user_notification_channel,
)
from .mentions import ResolvedMention
from .permissions import PermissionDeniedError

logger = logging.getLogger("issueflow-core.notifications")

COMMENT_ENTITY_TYPE = "COMMENT"
ISSUE_ENTITY_TYPE = "ISSUE"


def build_issue_link(project_id: UUID, issue_key: str) -> str:
    return f"/projects/{project_id}/issues/{issue_key}"


def build_comment_link(project_id: UUID, issue_key: str, comment_id: UUID) -> str:
    """Deep link to a comment inside an issue."""
    return f"{build_issue_link(project_id, issue_key)}#comment-{comment_id}"


def mention_message(mentioned_by: models.User) -> str:
    return f"{mentioned_by.display_name} mentioned you in a comment"


def create_mention_notifications(
    db: Session,
    comment: models.Comment,
    issue: models.Issue,
    resolved: Iterable[ResolvedMention],
) -> list[models.Notification]:
    """
    Persist one Mention and one MENTION Notification per resolved mention.

    Nothing is committed here; the rows join the caller's transaction.

    Args:
        db: Database session
        comment: Comment containing the mentions (must have an id)
        issue: Issue the comment belongs to
        resolved: Output of mentions.extract_mentions

    Returns:
        The new notifications, in mention order
    """
    author = comment.author
    notifications = []
    for position, mention in enumerate(resolved):
        db.add(
            models.Mention(
                comment_id=comment.id,
                position=position,
                mentioned_user=mention.user,
                mentioned_by_user_id=author.id,
            )
        )
        notification = models.Notification(
            user=mention.user,
            type=models.NotificationType.MENTION,
            message=mention_message(author),
            link=build_comment_link(issue.project_id, issue.key, comment.id),
            related_entity_id=comment.id,
            related_entity_type=COMMENT_ENTITY_TYPE,
            is_read=False,
        )
        db.add(notification)
        notifications.append(notification)
        logger.info(f"Created mention notification for user {mention.user.username} from user {author.username}")
    return notifications


def create_assignment_notification(
    db: Session,
    issue: models.Issue,
    assignee: models.User,
    assigned_by: models.User,
) -> Optional[models.Notification]:
    """
    Notify a user that an issue was assigned to them.

    Self-assignment produces no notification. Nothing is committed here.
    """
    if assignee.id == assigned_by.id:
        return None
    notification = models.Notification(
        user=assignee,
        type=models.NotificationType.ASSIGNMENT,
        message=f"{assigned_by.display_name} assigned {issue.key} to you",
        link=build_issue_link(issue.project_id, issue.key),
        related_entity_id=issue.id,
        related_entity_type=ISSUE_ENTITY_TYPE,
        is_read=False,
    )
    db.add(notification)
    logger.info(f"Created assignment notification for user {assignee.username} on {issue.key}")
    return notification


def publish_safely(publisher: Optional[ChannelPublisher], channel: str, event) -> bool:
    """
    Publish an event, logging and swallowing any publisher failure.

    Returns:
        True if the publisher accepted the event
    """
    if publisher is None:
        return False
    try:
        publisher.publish(channel, event)
        return True
    except Exception:
        logger.error(f"Failed to publish {event.kind} on {channel}", exc_info=True)
        return False


def publish_issue_event(
    publisher: Optional[ChannelPublisher],
    issue_id: UUID,
    kind: ChannelEventKind,
    payload: dict,
) -> bool:
    """Publish a comment or issue mutation event on the issue's channel."""
    return publish_safely(publisher, issue_channel(issue_id), make_event(kind, payload))


def publish_notifications(
    publisher: Optional[ChannelPublisher],
    notifications: Iterable[models.Notification],
) -> None:
    """Publish NOTIFICATION_CREATED on each recipient's channel."""
    for notification in notifications:
        payload = schemas.NotificationResponse.model_validate(notification).model_dump(mode="json")
        publish_safely(
            publisher,
            user_notification_channel(notification.user.username),
            make_event(ChannelEventKind.NOTIFICATION_CREATED, payload),
        )


# ============================================================================
# Recipient operations
# ============================================================================

def list_notifications(db: Session, user: models.User) -> list[models.Notification]:
    """All notifications for a user, newest first."""
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user.id)
        .order_by(models.Notification.created_at.desc())
        .all()
    )


def list_unread_notifications(db: Session, user: models.User) -> list[models.Notification]:
    """Unread notifications for a user, newest first."""
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == user.id,
            models.Notification.is_read.is_(False),
        )
        .order_by(models.Notification.created_at.desc())
        .all()
    )


def count_unread_notifications(db: Session, user: models.User) -> int:
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.user_id == user.id,
            models.Notification.is_read.is_(False),
        )
        .count()
    )


def mark_read(notification: models.Notification, user: models.User, now: Optional[datetime] = None) -> bool:
    """
    Mark a notification read on behalf of its recipient.

    Returns:
        True if the notification changed, False if it was already read

    Raises:
        PermissionDeniedError: If ``user`` is not the recipient
    """
    if notification.user_id != user.id:
        logger.warning(f"User {user.username} tried to mark notification {notification.id} of another user")
        raise PermissionDeniedError("You can only mark your own notifications as read")
    if notification.is_read:
        return False
    notification.is_read = True
    notification.read_at = now or datetime.utcnow()
    return True


def mark_all_read(db: Session, user: models.User, now: Optional[datetime] = None) -> int:
    """Mark every unread notification of a user read. Returns the number changed."""
    now = now or datetime.utcnow()
    unread = list_unread_notifications(db, user)
    for notification in unread:
        notification.is_read = True
        notification.read_at = now
    return len(unread)
