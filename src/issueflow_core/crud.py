"""CRUD operations for projects, issues, comments and notifications.

Every write here is one transaction: permission checks, validation, history,
mentions and notifications are all staged on the session and committed
together, or rolled back together. Channel publication happens only after
the commit succeeds.
"""
import logging
import re
from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.exc import SQLAlchemyError

from . import models, schemas
from .change_tracking import CrossProjectReferenceError, apply_issue_changes
from .channels import ChannelEventKind, ChannelPublisher
from .mentions import extract_mentions
from .notifications import (
    create_assignment_notification,
    create_mention_notifications,
    mark_all_read,
    mark_read,
    publish_issue_event,
    publish_notifications,
)
from .permissions import (
    PermissionDeniedError,
    is_member,
    is_owner,
    require_contributor,
    require_project_access,
)
from .state_machine import build_workflow_states, initial_state

logger = logging.getLogger("issueflow-core.crud")

PROJECT_KEY_PATTERN = re.compile(r"^[A-Z0-9]{2,10}$")
USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]{3,50}$")


class NotFoundError(LookupError):
    """Raised when a referenced project, issue, comment, user or state does not exist."""


def _get_or_404(db: Session, model, entity_id: UUID, label: str):
    entity = db.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{label} not found: {entity_id}")
    return entity


# ============================================================================
# User Operations
# ============================================================================

def create_user(
    db: Session,
    username: str,
    email: str,
    full_name: Optional[str] = None,
) -> models.User:
    """
    Provision a user record for an identity issued elsewhere.

    Raises:
        ValueError: If the username is malformed or already taken
    """
    if not USERNAME_PATTERN.match(username):
        raise ValueError("Username must be 3-50 letters, digits or underscores")
    if find_user_by_handle(db, username) is not None:
        raise ValueError(f"Username '{username}' is already taken")

    db_user = models.User(username=username, email=email, full_name=full_name)
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.debug(f"Created user {db_user.username}")
    return db_user


def find_user_by_handle(db: Session, handle: str) -> Optional[models.User]:
    """Resolve an @handle (exact, case-sensitive username) to an active user."""
    return (
        db.query(models.User)
        .filter(models.User.username == handle, models.User.is_active.is_(True))
        .first()
    )


def get_user_by_username(db: Session, username: str) -> models.User:
    """
    Get a user by username.

    Raises:
        NotFoundError: If no active user has this username
    """
    user = find_user_by_handle(db, username)
    if user is None:
        raise NotFoundError(f"User not found: {username}")
    return user


# ============================================================================
# Project Operations
# ============================================================================

def create_project(
    db: Session,
    key: str,
    name: str,
    owner: models.User,
    description: Optional[str] = None,
) -> models.Project:
    """
    Create a project with the default workflow and an issue counter.

    Args:
        db: Database session
        key: 2-10 uppercase alphanumeric characters (globally unique)
        name: Project name
        owner: User who owns the project
        description: Optional description

    Returns:
        Created project instance

    Raises:
        ValueError: If the key is malformed or already used
    """
    if not PROJECT_KEY_PATTERN.match(key):
        raise ValueError("Project key must be 2-10 uppercase letters or digits")
    if db.query(models.Project).filter(models.Project.key == key).first():
        raise ValueError(f"Project key '{key}' already exists")

    try:
        db_project = models.Project(
            key=key,
            name=name,
            description=description,
            owner_id=owner.id,
        )
        db.add(db_project)
        db.add_all(build_workflow_states(db_project))
        db.add(models.IDSequence(project=db_project, next_number=1))
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating project {key}: {e}", exc_info=True)
        db.rollback()
        raise

    db.refresh(db_project)
    logger.info(f"Created project {db_project.key} owned by {owner.username}")
    return db_project


def get_project(
    db: Session,
    project_id: UUID,
    requester: Optional[models.User] = None,
) -> models.Project:
    """
    Get a project by ID.

    Raises:
        NotFoundError: If the project does not exist
        PermissionDeniedError: If ``requester`` is given and has no access
    """
    project = _get_or_404(db, models.Project, project_id, "Project")
    if requester is not None:
        require_project_access(db, project, requester)
    return project


def add_project_member(
    db: Session,
    project: models.Project,
    user: models.User,
    role: models.ProjectRole = models.ProjectRole.MEMBER,
) -> models.ProjectMember:
    """
    Add a user to a project with a specific role.

    Raises:
        ValueError: If the user is the owner or already a member
    """
    if is_owner(project, user):
        raise ValueError("The project owner is already a member of this project")
    if is_member(db, project, user):
        raise ValueError("User is already a member of this project")

    db_member = models.ProjectMember(project_id=project.id, user_id=user.id, role=role)
    db.add(db_member)
    db.commit()
    db.refresh(db_member)
    logger.info(f"Added user {user.username} to project {project.key} with role {role.value}")
    return db_member


def create_label(
    db: Session,
    project: models.Project,
    name: str,
    color: str,
    actor: models.User,
) -> models.Label:
    """
    Create a project label.

    Raises:
        PermissionDeniedError: If ``actor`` cannot contribute to the project
        ValueError: If a label with this name already exists in the project
    """
    require_contributor(db, project, actor)
    existing = (
        db.query(models.Label)
        .filter(models.Label.project_id == project.id, models.Label.name == name)
        .first()
    )
    if existing:
        raise ValueError(f"Label '{name}' already exists in project {project.key}")

    db_label = models.Label(project_id=project.id, name=name, color=color)
    db.add(db_label)
    db.commit()
    db.refresh(db_label)
    logger.debug(f"Created label {name} in project {project.key}")
    return db_label


def get_workflow_states(
    db: Session,
    project_id: UUID,
    requester: models.User,
) -> list[models.WorkflowState]:
    """Workflow states of a project in ordinal order."""
    project = get_project(db, project_id, requester)
    return list(project.workflow_states)


# ============================================================================
# Issue Operations
# ============================================================================

def _next_issue_number(db: Session, project: models.Project) -> int:
    """Reserve the next issue number, locking the project's counter row."""
    sequence = (
        db.query(models.IDSequence)
        .filter(models.IDSequence.project_id == project.id)
        .with_for_update()
        .one_or_none()
    )
    if sequence is None:
        sequence = models.IDSequence(project_id=project.id, next_number=1)
        db.add(sequence)
        db.flush()

    number = sequence.next_number
    sequence.next_number = number + 1
    return number


def _resolve_labels(db: Session, label_ids: Optional[list[UUID]]) -> list[models.Label]:
    labels = []
    seen = set()
    for label_id in label_ids or []:
        if label_id in seen:
            continue
        seen.add(label_id)
        labels.append(_get_or_404(db, models.Label, label_id, "Label"))
    return labels


def create_issue(
    db: Session,
    project_id: UUID,
    data: schemas.IssueCreate,
    actor: models.User,
    publisher: Optional[ChannelPublisher] = None,
) -> models.Issue:
    """
    Create an issue in the project's first workflow state.

    Args:
        db: Database session
        project_id: Project UUID
        data: Issue creation data
        actor: Reporter
        publisher: Channel publisher for the assignment notification (optional)

    Returns:
        Created issue with its key assigned

    Raises:
        NotFoundError: If the project, assignee or a label does not exist
        PermissionDeniedError: If ``actor`` cannot contribute to the project
        CrossProjectReferenceError: If the assignee or a label is outside the project
    """
    project = get_project(db, project_id)
    require_contributor(db, project, actor)

    assignee = None
    if data.assignee_id is not None:
        assignee = _get_or_404(db, models.User, data.assignee_id, "User")
        if not is_member(db, project, assignee):
            raise CrossProjectReferenceError(
                f"User '{assignee.username}' is not a member of project {project.key}"
            )
    labels = _resolve_labels(db, data.label_ids)
    for label in labels:
        if label.project_id != project.id:
            raise CrossProjectReferenceError(
                f"Label '{label.name}' does not belong to project {project.key}"
            )

    notifications = []
    now = datetime.utcnow()
    try:
        number = _next_issue_number(db, project)
        db_issue = models.Issue(
            project_id=project.id,
            number=number,
            key=f"{project.key}-{number}",
            title=data.title,
            description=data.description,
            issue_type=data.type,
            workflow_state=initial_state(project.workflow_states),
            priority=data.priority,
            reporter_id=actor.id,
            assignee=assignee,
            story_points=data.story_points,
            due_date=data.due_date,
            created_at=now,
            updated_at=now,
        )
        db_issue.set_labels(labels)
        db.add(db_issue)
        db.flush()

        db.add(
            models.IssueHistory(
                issue_id=db_issue.id,
                field_name="created",
                old_value=None,
                new_value=db_issue.key,
                changed_by_user_id=actor.id,
                changed_at=now,
            )
        )
        if assignee is not None:
            notification = create_assignment_notification(db, db_issue, assignee, actor)
            if notification is not None:
                notifications.append(notification)
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error creating issue in {project.key}: {e}", exc_info=True)
        db.rollback()
        raise

    db.refresh(db_issue)
    logger.info(f"Created issue {db_issue.key} by {actor.username}")
    publish_notifications(publisher, notifications)
    return db_issue


def get_issue(db: Session, issue_id: UUID, requester: models.User) -> models.Issue:
    """
    Get an issue by ID.

    Raises:
        NotFoundError: If the issue does not exist
        PermissionDeniedError: If ``requester`` has no access to its project
    """
    issue = _get_or_404(db, models.Issue, issue_id, "Issue")
    require_project_access(db, issue.project, requester)
    return issue


def get_issue_by_key(db: Session, key: str, requester: models.User) -> models.Issue:
    """Get an issue by its human-readable key (e.g. TEST-42)."""
    issue = db.query(models.Issue).filter(models.Issue.key == key).first()
    if issue is None:
        raise NotFoundError(f"Issue not found: {key}")
    require_project_access(db, issue.project, requester)
    return issue


def list_project_issues(
    db: Session,
    project_id: UUID,
    requester: models.User,
) -> list[models.Issue]:
    """Issues of a project ordered by number."""
    project = get_project(db, project_id, requester)
    return (
        db.query(models.Issue)
        .filter(models.Issue.project_id == project.id)
        .order_by(models.Issue.number)
        .all()
    )


def _resolve_issue_changes(db: Session, update_data: dict) -> dict:
    """Map request fields to ledger fields, loading referenced entities."""
    changes = {}
    for field_name in (
        "title", "description", "type", "priority", "story_points", "due_date",
        "key", "reporter_id", "created_at",
    ):
        if field_name in update_data:
            changes[field_name] = update_data[field_name]

    if "status_id" in update_data:
        state_id = update_data["status_id"]
        changes["status"] = (
            None if state_id is None
            else _get_or_404(db, models.WorkflowState, state_id, "Workflow state")
        )
    if "assignee_id" in update_data:
        assignee_id = update_data["assignee_id"]
        changes["assignee"] = (
            None if assignee_id is None
            else _get_or_404(db, models.User, assignee_id, "User")
        )
    if "label_ids" in update_data:
        changes["labels"] = _resolve_labels(db, update_data["label_ids"])
    return changes


def _issue_payload(issue: models.Issue) -> dict:
    return schemas.IssueResponse.model_validate(issue).model_dump(mode="json")


def update_issue(
    db: Session,
    issue_id: UUID,
    update: schemas.IssueUpdate,
    actor: models.User,
    publisher: Optional[ChannelPublisher] = None,
) -> models.Issue:
    """
    Apply a sparse update to an issue and record one history row per changed field.

    Only fields explicitly set on ``update`` are considered. Either every
    change and its history commit together or nothing does. ISSUE_UPDATED
    is published on the issue channel after the commit.

    Args:
        db: Database session
        issue_id: Issue UUID
        update: Partial update
        actor: User making the change
        publisher: Channel publisher (optional)

    Returns:
        The updated issue

    Raises:
        NotFoundError: If the issue or a referenced entity does not exist
        PermissionDeniedError: If ``actor`` cannot contribute to the project
        InvalidTransitionError: If the status change is not allowed
        CrossProjectReferenceError: If a reference is outside the project
        ImmutableFieldError: If key, reporter or creation time would change
    """
    issue = _get_or_404(db, models.Issue, issue_id, "Issue")
    require_contributor(db, issue.project, actor)

    update_data = update.model_dump(exclude_unset=True)
    notifications = []
    try:
        changes = _resolve_issue_changes(db, update_data)
        previous_assignee_id = issue.assignee_id
        entries = apply_issue_changes(db, issue, changes, actor, now=datetime.utcnow())

        new_assignee = changes.get("assignee")
        if new_assignee is not None and new_assignee.id != previous_assignee_id:
            notification = create_assignment_notification(db, issue, new_assignee, actor)
            if notification is not None:
                notifications.append(notification)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(issue)
    if entries:
        logger.info(f"Updated issue {issue.key} by {actor.username}: {[e.field_name for e in entries]}")

    publish_issue_event(publisher, issue.id, ChannelEventKind.ISSUE_UPDATED, _issue_payload(issue))
    publish_notifications(publisher, notifications)
    return issue


def get_issue_history(
    db: Session,
    issue_id: UUID,
    requester: models.User,
    limit: Optional[int] = None,
) -> list[models.IssueHistory]:
    """
    Get history for an issue, newest first.

    Rows sharing a timestamp come back in reverse insertion order.
    """
    issue = get_issue(db, issue_id, requester)
    query = (
        db.query(models.IssueHistory)
        .filter(models.IssueHistory.issue_id == issue.id)
        .order_by(models.IssueHistory.changed_at.desc(), models.IssueHistory.id.desc())
    )
    if limit is not None:
        query = query.limit(limit)
    return query.all()


# ============================================================================
# Comment Operations
# ============================================================================

def _clean_content(content: str) -> str:
    if content is None or not content.strip():
        raise ValueError("Comment content cannot be empty")
    return content


def _comment_payload(comment: models.Comment) -> dict:
    return schemas.CommentResponse.model_validate(comment).model_dump(mode="json")


def create_comment(
    db: Session,
    issue_id: UUID,
    content: str,
    actor: models.User,
    publisher: Optional[ChannelPublisher] = None,
) -> models.Comment:
    """
    Post a comment and notify every user it @mentions.

    Raises:
        NotFoundError: If the issue does not exist
        PermissionDeniedError: If ``actor`` has no access to the project
        ValueError: If the content is blank
    """
    issue = _get_or_404(db, models.Issue, issue_id, "Issue")
    require_project_access(db, issue.project, actor)
    content = _clean_content(content)

    try:
        db_comment = models.Comment(issue_id=issue.id, author=actor, content=content)
        db.add(db_comment)
        db.flush()

        resolved = extract_mentions(content, actor, lambda handle: find_user_by_handle(db, handle))
        notifications = create_mention_notifications(db, db_comment, issue, resolved)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(db_comment)
    logger.info(f"Created comment {db_comment.id} on {issue.key} by {actor.username} ({len(notifications)} mention(s))")

    publish_issue_event(publisher, issue.id, ChannelEventKind.COMMENT_ADDED, _comment_payload(db_comment))
    publish_notifications(publisher, notifications)
    return db_comment


def update_comment(
    db: Session,
    comment_id: UUID,
    content: str,
    actor: models.User,
    publisher: Optional[ChannelPublisher] = None,
) -> models.Comment:
    """
    Edit a comment (author only).

    When the text changes, the comment's mentions are discarded and
    re-derived from the new text, and every user mentioned in it is
    notified again.

    Raises:
        NotFoundError: If the comment does not exist
        PermissionDeniedError: If ``actor`` is not the author
        ValueError: If the content is blank
    """
    db_comment = _get_or_404(db, models.Comment, comment_id, "Comment")
    if db_comment.author_id != actor.id:
        logger.warning(f"User {actor.username} tried to edit comment {comment_id} of another user")
        raise PermissionDeniedError("You can only edit your own comments")
    content = _clean_content(content)
    issue = db_comment.issue

    notifications = []
    try:
        if content != db_comment.content:
            db_comment.content = content
            db_comment.is_edited = True

            db_comment.mentions.clear()
            db.flush()

            resolved = extract_mentions(content, actor, lambda handle: find_user_by_handle(db, handle))
            notifications = create_mention_notifications(db, db_comment, issue, resolved)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(db_comment)
    logger.info(f"Updated comment {db_comment.id} on {issue.key} by {actor.username}")

    publish_issue_event(publisher, issue.id, ChannelEventKind.COMMENT_UPDATED, _comment_payload(db_comment))
    publish_notifications(publisher, notifications)
    return db_comment


def delete_comment(
    db: Session,
    comment_id: UUID,
    actor: models.User,
    publisher: Optional[ChannelPublisher] = None,
) -> None:
    """
    Delete a comment and its mentions (author or project owner).

    Raises:
        NotFoundError: If the comment does not exist
        PermissionDeniedError: If ``actor`` is neither author nor project owner
    """
    db_comment = _get_or_404(db, models.Comment, comment_id, "Comment")
    issue = db_comment.issue
    if db_comment.author_id != actor.id and not is_owner(issue.project, actor):
        logger.warning(f"User {actor.username} denied deleting comment {comment_id}")
        raise PermissionDeniedError(
            "You can only delete your own comments or you must be project owner"
        )

    issue_id = issue.id
    try:
        db.delete(db_comment)
        db.commit()
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting comment {comment_id}: {e}", exc_info=True)
        db.rollback()
        raise

    logger.info(f"Deleted comment {comment_id} by {actor.username}")
    publish_issue_event(publisher, issue_id, ChannelEventKind.COMMENT_DELETED, {"id": str(comment_id)})


def list_comments(db: Session, issue_id: UUID, requester: models.User) -> list[models.Comment]:
    """Comments on an issue, oldest first."""
    issue = get_issue(db, issue_id, requester)
    return (
        db.query(models.Comment)
        .filter(models.Comment.issue_id == issue.id)
        .order_by(models.Comment.created_at.asc())
        .all()
    )


def get_comment_mentions(db: Session, comment_id: UUID) -> list[models.Mention]:
    """Current mentions of a comment."""
    _get_or_404(db, models.Comment, comment_id, "Comment")
    return (
        db.query(models.Mention)
        .filter(models.Mention.comment_id == comment_id)
        .order_by(models.Mention.position)
        .all()
    )


# ============================================================================
# Notification Operations
# ============================================================================

def mark_notification_read(
    db: Session,
    notification_id: UUID,
    user: models.User,
) -> models.Notification:
    """
    Mark one notification read (recipient only).

    Raises:
        NotFoundError: If the notification does not exist
        PermissionDeniedError: If ``user`` is not the recipient
    """
    notification = _get_or_404(db, models.Notification, notification_id, "Notification")
    if mark_read(notification, user):
        db.commit()
        db.refresh(notification)
        logger.info(f"Marked notification {notification_id} as read for user {user.username}")
    return notification


def mark_all_notifications_read(db: Session, user: models.User) -> int:
    """Mark every unread notification of ``user`` read. Returns the count."""
    updated = mark_all_read(db, user)
    db.commit()
    logger.info(f"Marked {updated} notifications as read for user {user.username}")
    return updated
