"""Pydantic schemas for request/response validation."""
from datetime import date, datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict

from .models import (
    ProjectRole,
    Priority,
    IssueType,
    NotificationType,
)


# ============================================================================
# User Schemas
# ============================================================================

class UserSummary(BaseModel):
    """Compact user representation embedded in other responses."""

    id: UUID
    username: str
    full_name: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class UserResponse(UserSummary):
    """Schema for user responses."""

    email: str
    is_active: bool
    created_at: datetime


# ============================================================================
# Project Schemas
# ============================================================================

class ProjectBase(BaseModel):
    """Base schema for project fields."""

    key: str = Field(..., min_length=2, max_length=10, pattern=r"^[A-Z0-9]{2,10}$")
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None


class ProjectCreate(ProjectBase):
    """Schema for creating a new project. The caller becomes the owner."""

    pass


class ProjectResponse(ProjectBase):
    """Schema for project responses."""

    id: UUID
    owner_id: UUID
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ProjectMemberCreate(BaseModel):
    """Schema for adding a user to a project."""

    username: str = Field(..., min_length=3, max_length=50)
    role: ProjectRole = ProjectRole.MEMBER


class ProjectMemberResponse(BaseModel):
    """Schema for project member responses."""

    id: UUID
    project_id: UUID
    user: UserSummary
    role: ProjectRole
    joined_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


# ============================================================================
# Workflow and Label Schemas
# ============================================================================

class WorkflowStateResponse(BaseModel):
    """Schema for workflow state responses."""

    id: UUID
    name: str
    ordinal: int
    terminal: bool
    allowed_transitions: list[UUID] = Field(
        default_factory=list,
        description="State ids reachable in one step (empty = any state)",
    )

    model_config = ConfigDict(from_attributes=True)


class LabelCreate(BaseModel):
    """Schema for creating a project label."""

    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field("#6B778C", pattern=r"^#[0-9A-Fa-f]{6}$")


class LabelResponse(BaseModel):
    """Schema for label responses."""

    id: UUID
    project_id: UUID
    name: str
    color: str

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Issue Schemas
# ============================================================================

class IssueCreate(BaseModel):
    """Schema for creating a new issue.

    The issue always starts in the project's first workflow state; the
    caller becomes the reporter.
    """

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    type: IssueType = IssueType.TASK
    priority: Priority = Priority.MEDIUM
    assignee_id: Optional[UUID] = None
    story_points: Optional[int] = Field(None, gt=0)
    due_date: Optional[date] = None
    label_ids: list[UUID] = Field(default_factory=list)


class IssueUpdate(BaseModel):
    """Sparse partial update of an issue.

    Only fields explicitly present in the request are considered; an
    explicit ``null`` clears optional fields (assignee, story points, due
    date, description). ``key``, ``reporter_id`` and ``created_at`` are
    accepted only when they match the stored value.
    """

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    type: Optional[IssueType] = None
    status_id: Optional[UUID] = Field(None, description="Target workflow state id")
    priority: Optional[Priority] = None
    assignee_id: Optional[UUID] = None
    story_points: Optional[int] = Field(None, gt=0)
    due_date: Optional[date] = None
    label_ids: Optional[list[UUID]] = None

    # System fields (immutable)
    key: Optional[str] = None
    reporter_id: Optional[UUID] = None
    created_at: Optional[datetime] = None


class IssueResponse(BaseModel):
    """Schema for issue responses."""

    id: UUID
    project_id: UUID
    number: int
    key: str
    title: str
    description: Optional[str] = None
    issue_type: IssueType
    workflow_state: WorkflowStateResponse
    priority: Priority
    reporter: UserSummary
    assignee: Optional[UserSummary] = None
    story_points: Optional[int] = None
    due_date: Optional[date] = None
    labels: list[LabelResponse] = Field(default_factory=list)
    is_overdue: bool = False
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class IssueHistoryResponse(BaseModel):
    """Schema for issue history entries."""

    id: int
    issue_id: UUID
    field_name: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    changed_by_user_id: Optional[UUID] = None
    changed_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Comment Schemas
# ============================================================================

class CommentCreate(BaseModel):
    """Schema for posting a comment. ``@username`` tokens notify those users."""

    content: str = Field(..., min_length=1, max_length=10000)


class CommentUpdate(BaseModel):
    """Schema for editing a comment (author only)."""

    content: str = Field(..., min_length=1, max_length=10000)


class MentionResponse(BaseModel):
    """Schema for a resolved mention."""

    id: UUID
    comment_id: UUID
    mentioned_user: UserSummary
    mentioned_by_user_id: UUID
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    """Schema for comment responses."""

    id: UUID
    issue_id: UUID
    author: UserSummary
    content: str
    is_edited: bool
    mentions: list[MentionResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Notification Schemas
# ============================================================================

class NotificationResponse(BaseModel):
    """Schema for notification responses."""

    id: UUID
    user_id: UUID
    type: NotificationType
    message: str
    link: Optional[str] = None
    related_entity_id: Optional[UUID] = None
    related_entity_type: Optional[str] = None
    is_read: bool
    created_at: datetime
    read_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class UnreadCountResponse(BaseModel):
    """Schema for the unread notification counter."""

    count: int


class MarkAllReadResponse(BaseModel):
    """Schema for bulk mark-read results."""

    updated: int
