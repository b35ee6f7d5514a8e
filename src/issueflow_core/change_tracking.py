"""Field-level change tracking for issue updates.

Every field that actually changes in an update produces exactly one
IssueHistory row holding the rendered old and new values. Rows written by
one update share the actor and timestamp.

Callers pass a ``changes`` mapping holding only the fields present in the
request, with references already resolved to model instances:

    title, description, type, status, priority, assignee,
    story_points, due_date, labels, key, reporter_id, created_at

Validation (immutable fields, required fields, project ownership of every
referenced entity, workflow transition) runs before anything is applied,
so a failed call leaves the issue untouched.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models
from .permissions import is_member
from .state_machine import validate_transition

logger = logging.getLogger("issueflow-core.change_tracking")

UNASSIGNED = "Unassigned"

# Tracked field name → Issue attribute, in the order history rows are written
TRACKED_FIELDS: dict[str, str] = {
    "title": "title",
    "description": "description",
    "type": "issue_type",
    "status": "workflow_state",
    "priority": "priority",
    "assignee": "assignee",
    "story_points": "story_points",
    "due_date": "due_date",
    "labels": "labels",
}

# System fields that may be echoed back but never changed
IMMUTABLE_FIELDS: dict[str, str] = {
    "key": "key",
    "reporter_id": "reporter_id",
    "created_at": "created_at",
}

# Tracked fields that may not be cleared with an explicit null
REQUIRED_FIELDS = ("title", "type", "status", "priority")


class CrossProjectReferenceError(ValueError):
    """Raised when an update references a state, label or user outside the issue's project."""


class ImmutableFieldError(ValueError):
    """Raised when an update tries to change a system-managed field."""

    def __init__(self, field_name: str):
        super().__init__(f"Field '{field_name}' is immutable and cannot be changed")
        self.field_name = field_name


@dataclass(frozen=True)
class FieldChange:
    """One detected difference between the stored and proposed value."""

    field_name: str
    old_value: Optional[str]
    new_value: Optional[str]


def render_value(field_name: str, value: Any) -> Optional[str]:
    """
    Render a field value the way it is stored in issue history.

    Args:
        field_name: Tracked field name
        value: Model-level value (WorkflowState, User, enum, list of Label, ...)

    Returns:
        Human-readable string, or None for an empty value
    """
    if field_name in ("title", "description"):
        return value
    if field_name == "status":
        return value.name if value is not None else None
    if field_name in ("priority", "type"):
        return value.name if value is not None else None
    if field_name == "assignee":
        return value.username if value is not None else UNASSIGNED
    if field_name == "labels":
        names = [label.name for label in value or []]
        return ", ".join(names) if names else None
    # story_points, due_date
    return str(value) if value is not None else None


def _as_naive_utc(value: Any) -> Any:
    # Timestamps are stored as naive UTC
    if isinstance(value, datetime) and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _comparable(field_name: str, value: Any) -> Any:
    if field_name in ("status", "assignee"):
        return value.id if value is not None else None
    if field_name == "labels":
        return [label.name for label in value or []]
    return value


def validate_changes(
    db: Session,
    issue: models.Issue,
    changes: dict[str, Any],
) -> None:
    """
    Check a change set before any field is applied.

    Raises:
        ImmutableFieldError: If key, reporter or creation time would change
        ValueError: If a required field is explicitly cleared
        CrossProjectReferenceError: If a referenced state, label or assignee
            does not belong to the issue's project
    """
    for field_name, attribute in IMMUTABLE_FIELDS.items():
        if field_name in changes and _as_naive_utc(changes[field_name]) != _as_naive_utc(getattr(issue, attribute)):
            logger.warning(f"Rejected change to immutable field {field_name} on {issue.key}")
            raise ImmutableFieldError(field_name)

    for field_name in REQUIRED_FIELDS:
        if field_name in changes and changes[field_name] is None:
            raise ValueError(f"Field '{field_name}' cannot be null")

    story_points = changes.get("story_points")
    if story_points is not None and story_points <= 0:
        raise ValueError("Story points must be a positive integer")

    project = issue.project

    state = changes.get("status")
    if state is not None and state.project_id != issue.project_id:
        raise CrossProjectReferenceError(
            f"Workflow state '{state.name}' does not belong to project {project.key}"
        )

    for label in changes.get("labels") or []:
        if label.project_id != issue.project_id:
            raise CrossProjectReferenceError(
                f"Label '{label.name}' does not belong to project {project.key}"
            )

    assignee = changes.get("assignee")
    if assignee is not None and not is_member(db, project, assignee):
        raise CrossProjectReferenceError(
            f"User '{assignee.username}' is not a member of project {project.key}"
        )


def diff_issue(issue: models.Issue, changes: dict[str, Any]) -> list[FieldChange]:
    """
    Compute the field changes an update would produce, without applying them.

    Fields absent from ``changes`` and fields whose proposed value equals the
    current one are skipped.
    """
    diffs = []
    for field_name, attribute in TRACKED_FIELDS.items():
        if field_name not in changes:
            continue
        current = getattr(issue, attribute)
        proposed = changes[field_name]
        if _comparable(field_name, current) == _comparable(field_name, proposed):
            continue
        diffs.append(
            FieldChange(
                field_name=field_name,
                old_value=render_value(field_name, current),
                new_value=render_value(field_name, proposed),
            )
        )
    return diffs


def _apply_field(issue: models.Issue, field_name: str, value: Any) -> None:
    if field_name == "labels":
        issue.set_labels(list(value or []))
    else:
        setattr(issue, TRACKED_FIELDS[field_name], value)


def apply_issue_changes(
    db: Session,
    issue: models.Issue,
    changes: dict[str, Any],
    actor: models.User,
    now: Optional[datetime] = None,
) -> list[models.IssueHistory]:
    """
    Validate, apply and record a sparse update on an issue.

    Nothing is committed here; the caller owns the transaction.

    Args:
        db: Database session
        issue: Issue to update
        changes: Present fields only, references resolved to model instances
        actor: User making the change
        now: Timestamp shared by every history row (defaults to utcnow)

    Returns:
        The history rows added to the session, one per changed field

    Raises:
        ImmutableFieldError, CrossProjectReferenceError, ValueError: See validate_changes
        InvalidTransitionError: If the status change is not allowed by the workflow
    """
    validate_changes(db, issue, changes)

    target_state = changes.get("status")
    if target_state is not None and target_state.id != issue.workflow_state.id:
        validate_transition(issue.workflow_state, target_state, issue.project.workflow_states)

    diffs = diff_issue(issue, changes)
    if not diffs:
        logger.debug(f"No effective changes for {issue.key}")
        return []

    now = now or datetime.utcnow()
    entries = []
    for change in diffs:
        _apply_field(issue, change.field_name, changes[change.field_name])
        entry = models.IssueHistory(
            issue_id=issue.id,
            field_name=change.field_name,
            old_value=change.old_value,
            new_value=change.new_value,
            changed_by_user_id=actor.id,
            changed_at=now,
        )
        db.add(entry)
        entries.append(entry)

    issue.updated_at = now
    logger.debug(f"Recorded {len(entries)} change(s) on {issue.key}: {[e.field_name for e in entries]}")
    return entries
