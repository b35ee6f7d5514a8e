"""Project-level permission checks.

Access model:
- The project owner is implicitly a member with full rights.
- MEMBER role: read, create/update issues, post comments.
- VIEWER role: read-only.
- Non-members see nothing inside the project.

The ``is_*``/``can_*`` helpers are pure predicates; the ``require_*``
guards raise ``PermissionDeniedError`` and are what the CRUD layer calls.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("issueflow-core.permissions")


class PermissionDeniedError(Exception):
    """Raised when a user lacks the rights for an operation."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def get_membership(
    db: Session, project: models.Project, user: models.User
) -> Optional[models.ProjectMember]:
    """Return the explicit membership row for a user, if any."""
    return (
        db.query(models.ProjectMember)
        .filter(
            models.ProjectMember.project_id == project.id,
            models.ProjectMember.user_id == user.id,
        )
        .first()
    )


def is_owner(project: models.Project, user: models.User) -> bool:
    return project.owner_id == user.id


def is_member(db: Session, project: models.Project, user: models.User) -> bool:
    """True if the user is the owner or holds any membership role."""
    if is_owner(project, user):
        return True
    return get_membership(db, project, user) is not None


def has_project_access(db: Session, project: models.Project, user: models.User) -> bool:
    """Read access: owner, members and viewers."""
    return is_member(db, project, user)


def can_contribute(db: Session, project: models.Project, user: models.User) -> bool:
    """Write access to issues and comments: owner or MEMBER role."""
    if is_owner(project, user):
        return True
    membership = get_membership(db, project, user)
    return membership is not None and membership.role == models.ProjectRole.MEMBER


def require_project_access(db: Session, project: models.Project, user: models.User) -> None:
    """
    Ensure the user can read inside the project.

    Raises:
        PermissionDeniedError: If the user is neither owner nor member
    """
    if not has_project_access(db, project, user):
        logger.warning(f"User {user.username} denied read access to project {project.key}")
        raise PermissionDeniedError(
            f"User '{user.username}' is not a member of project {project.key}"
        )


def require_contributor(db: Session, project: models.Project, user: models.User) -> None:
    """
    Ensure the user can create or modify issues and comments.

    Raises:
        PermissionDeniedError: If the user is not the owner or a MEMBER
    """
    if not can_contribute(db, project, user):
        logger.warning(f"User {user.username} denied write access to project {project.key}")
        raise PermissionDeniedError(
            f"User '{user.username}' does not have write access to project {project.key}"
        )


def require_owner(project: models.Project, user: models.User) -> None:
    """
    Ensure the user owns the project (membership and label administration).

    Raises:
        PermissionDeniedError: If the user is not the project owner
    """
    if not is_owner(project, user):
        logger.warning(f"User {user.username} is not the owner of project {project.key}")
        raise PermissionDeniedError(
            f"Only the owner of project {project.key} can perform this action"
        )
