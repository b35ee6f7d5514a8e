"""SQLAlchemy database models."""
from datetime import date, datetime
from typing import Iterable, Optional
from uuid import UUID, uuid4
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    Integer,
    Date,
    DateTime,
    ForeignKey,
    Enum,
    CheckConstraint,
    Boolean,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import declarative_base, relationship
from sqlalchemy.types import TypeDecorator

# Base class for all models
Base = declarative_base()


# =============================================================================
# Workflow adjacency storage
# =============================================================================


class MalformedTransitionListError(ValueError):
    """Raised when a stored workflow adjacency list contains an unparseable entry."""


TRANSITION_DELIMITER = ","


def parse_transition_ids(raw: Optional[str]) -> frozenset[UUID]:
    """Parse a stored adjacency list into a set of workflow-state ids.

    Raises:
        MalformedTransitionListError: If any entry is not a valid UUID
    """
    if not raw or not raw.strip():
        return frozenset()

    ids = set()
    for token in raw.split(TRANSITION_DELIMITER):
        token = token.strip()
        try:
            ids.add(UUID(token))
        except ValueError as e:
            raise MalformedTransitionListError(
                f"Malformed workflow transition entry: {token!r}"
            ) from e
    return frozenset(ids)


def serialize_transition_ids(ids: Optional[Iterable[UUID]]) -> str:
    """Serialize a set of workflow-state ids for storage (sorted, stable)."""
    if not ids:
        return ""
    return TRANSITION_DELIMITER.join(sorted(str(UUID(str(state_id))) for state_id in ids))


class TransitionIdSet(TypeDecorator):
    """Column type exposing a delimited id string as ``frozenset[UUID]``.

    The raw string never leaves this type: ORM attributes, services and the
    API only ever see the typed set.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return serialize_transition_ids(value)

    def process_result_value(self, value, dialect):
        return parse_transition_ids(value)


# =============================================================================
# Enums
# =============================================================================


class ProjectRole(str, enum.Enum):
    """Project member role enum.

    The project owner is tracked on Project.owner_id, not as a membership row.
    """

    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


class Priority(str, enum.Enum):
    """Issue priority levels."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class IssueType(str, enum.Enum):
    """Issue type enum."""

    STORY = "STORY"
    BUG = "BUG"
    TASK = "TASK"
    EPIC = "EPIC"


class NotificationType(str, enum.Enum):
    """Kinds of notifications delivered to users."""

    MENTION = "MENTION"
    ASSIGNMENT = "ASSIGNMENT"
    STATUS_CHANGE = "STATUS_CHANGE"
    COMMENT_ADDED = "COMMENT_ADDED"
    ISSUE_UPDATED = "ISSUE_UPDATED"


# =============================================================================
# Accounts and projects
# =============================================================================


class User(Base):
    """
    User model.

    Credentials live with the external identity provider; this table only
    holds the handle used for @mentions and the display name.
    """

    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    username = Column(String(50), nullable=False, unique=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    full_name = Column(String(255))
    is_active = Column(Boolean, nullable=False, default=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def display_name(self) -> str:
        """Full name, falling back to the username when unset."""
        return self.full_name or self.username

    def __repr__(self) -> str:
        return f"<User {self.username}>"


class Project(Base):
    """
    Project model - the tenant boundary.

    Every issue, label, workflow state and membership belongs to exactly one
    project. The key prefixes human-readable issue keys (e.g. TEST-42).
    """

    __tablename__ = "projects"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    key = Column(String(10), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text)
    owner_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    owner = relationship("User", foreign_keys=[owner_id])
    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    workflow_states = relationship(
        "WorkflowState",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="WorkflowState.ordinal",
    )
    labels = relationship("Label", back_populates="project", cascade="all, delete-orphan")
    issues = relationship("Issue", back_populates="project", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Project {self.key}: {self.name}>"


class ProjectMember(Base):
    """
    Junction table linking users to projects with roles.
    """

    __tablename__ = "project_members"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(
        Enum(ProjectRole, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=ProjectRole.MEMBER,
    )
    joined_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="members")
    user = relationship("User")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="unique_project_user"),
    )

    def __repr__(self) -> str:
        return f"<ProjectMember {self.role.value}>"


class IDSequence(Base):
    """
    Tracks the next available issue number per project.

    Locked (SELECT ... FOR UPDATE) and incremented inside the issue-create
    transaction so concurrent creates never hand out the same number.
    """

    __tablename__ = "id_sequences"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True
    )
    next_number = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project")

    # Constraints
    __table_args__ = (
        CheckConstraint("next_number > 0", name="chk_next_number_positive"),
    )

    def __repr__(self) -> str:
        return f"<IDSequence {self.project_id} next={self.next_number}>"


class WorkflowState(Base):
    """
    A named status an issue can occupy within one project.

    ``allowed_transitions`` is the set of state ids reachable in one step.
    An empty set leaves the state unconstrained (any target accepted).
    """

    __tablename__ = "workflow_states"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    ordinal = Column(Integer, nullable=False)
    terminal = Column(Boolean, nullable=False, default=False)
    allowed_transitions = Column(TransitionIdSet, nullable=False, default=lambda: frozenset())

    # Relationships
    project = relationship("Project", back_populates="workflow_states")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "name", name="unique_project_state_name"),
    )

    @property
    def is_unconstrained(self) -> bool:
        return not self.allowed_transitions

    def __repr__(self) -> str:
        return f"<WorkflowState {self.name} (#{self.ordinal})>"


class Label(Base):
    """Project-scoped label."""

    __tablename__ = "labels"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(50), nullable=False)
    color = Column(String(7), nullable=False, default="#6B778C")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="labels")

    __table_args__ = (
        UniqueConstraint("project_id", "name", name="unique_project_label_name"),
    )

    def __repr__(self) -> str:
        return f"<Label {self.name}>"


# =============================================================================
# Issues and audit trail
# =============================================================================


class IssueLabel(Base):
    """Ordered link between an issue and a label."""

    __tablename__ = "issue_labels"

    issue_id = Column(Uuid(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), primary_key=True)
    label_id = Column(Uuid(as_uuid=True), ForeignKey("labels.id", ondelete="CASCADE"), primary_key=True)
    position = Column(Integer, nullable=False, default=0)

    label = relationship("Label")


class Issue(Base):
    """
    Issue model - a unit of tracked work.

    The key (PROJECT_KEY-number) is assigned once at creation and never
    changes; numbers are strictly increasing per project and never reused.
    """

    __tablename__ = "issues"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id = Column(Uuid(as_uuid=True), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    number = Column(Integer, nullable=False)
    key = Column(String(50), nullable=False, unique=True, index=True)

    # Core fields
    title = Column(String(255), nullable=False)
    description = Column(Text)
    issue_type = Column(
        Enum(IssueType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=IssueType.TASK,
    )
    workflow_state_id = Column(Uuid(as_uuid=True), ForeignKey("workflow_states.id"), nullable=False, index=True)
    priority = Column(
        Enum(Priority, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=Priority.MEDIUM,
        index=True
    )
    reporter_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False)
    assignee_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    story_points = Column(Integer, nullable=True)
    due_date = Column(Date, nullable=True)

    # Audit fields
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    project = relationship("Project", back_populates="issues")
    workflow_state = relationship("WorkflowState")
    reporter = relationship("User", foreign_keys=[reporter_id])
    assignee = relationship("User", foreign_keys=[assignee_id])
    label_links = relationship(
        "IssueLabel",
        order_by="IssueLabel.position",
        cascade="all, delete-orphan",
    )
    history = relationship(
        "IssueHistory",
        back_populates="issue",
        cascade="all, delete-orphan",
        order_by="IssueHistory.changed_at.desc()",
    )
    comments = relationship("Comment", back_populates="issue", cascade="all, delete-orphan")

    # Constraints
    __table_args__ = (
        UniqueConstraint("project_id", "number", name="unique_project_issue_number"),
        CheckConstraint("story_points IS NULL OR story_points > 0", name="chk_story_points_positive"),
    )

    @property
    def labels(self) -> list["Label"]:
        """Labels in their assigned order."""
        return [link.label for link in self.label_links]

    def set_labels(self, labels: list["Label"]) -> None:
        """Replace the label list, reusing existing links to keep row identity."""
        existing = {link.label_id: link for link in self.label_links}
        links = []
        for position, label in enumerate(labels):
            link = existing.pop(label.id, None) or IssueLabel(label=label)
            link.position = position
            links.append(link)
        self.label_links = links

    @property
    def is_overdue(self) -> bool:
        if self.due_date is None:
            return False
        if self.workflow_state is not None and self.workflow_state.terminal:
            return False
        return self.due_date < date.today()

    def __repr__(self) -> str:
        return f"<Issue {self.key}: {self.title[:30]}>"


class IssueHistory(Base):
    """Append-only, field-level audit trail for issue changes.

    One row per changed field per update call; rows written by the same call
    share ``changed_at``. The integer key preserves insertion order.
    """

    __tablename__ = "issue_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    issue_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("issues.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    # What changed
    field_name = Column(String(100), nullable=False)
    old_value = Column(Text)
    new_value = Column(Text)

    # Who and when
    changed_by_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), index=True)
    changed_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    # Relationships
    issue = relationship("Issue", back_populates="history")
    changed_by_user = relationship("User")

    def __repr__(self) -> str:
        return f"<IssueHistory {self.field_name} at {self.changed_at}>"


# =============================================================================
# Collaboration
# =============================================================================


class Comment(Base):
    """Comment on an issue. Only the author may edit it."""

    __tablename__ = "comments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    issue_id = Column(Uuid(as_uuid=True), ForeignKey("issues.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    content = Column(Text, nullable=False)
    is_edited = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    issue = relationship("Issue", back_populates="comments")
    author = relationship("User")
    mentions = relationship(
        "Mention",
        back_populates="comment",
        order_by="Mention.position",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Comment {self.id} on {self.issue_id}>"


class Mention(Base):
    """A resolved @handle reference inside a comment."""

    __tablename__ = "mentions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    comment_id = Column(Uuid(as_uuid=True), ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True)
    mentioned_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    mentioned_by_user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    # First-occurrence order within the comment text
    position = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    # Relationships
    comment = relationship("Comment", back_populates="mentions")
    mentioned_user = relationship("User", foreign_keys=[mentioned_user_id])
    mentioned_by = relationship("User", foreign_keys=[mentioned_by_user_id])

    __table_args__ = (
        UniqueConstraint("comment_id", "mentioned_user_id", name="uq_mention_comment_user"),
    )

    def __repr__(self) -> str:
        return f"<Mention {self.mentioned_user_id} in {self.comment_id}>"


class Notification(Base):
    """Notification delivered to one recipient. Only the recipient marks it read."""

    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    type = Column(
        Enum(NotificationType, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    message = Column(String(500), nullable=False)
    link = Column(String(500))
    related_entity_id = Column(Uuid(as_uuid=True), nullable=True)
    related_entity_type = Column(String(50), nullable=True)
    is_read = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)
    read_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User")

    def __repr__(self) -> str:
        return f"<Notification {self.type.value} for {self.user_id}>"
