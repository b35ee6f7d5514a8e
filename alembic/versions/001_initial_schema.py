"""Initial schema: projects, workflow, issues, history, comments, notifications.

Revision ID: 001
Revises:
Create Date: 2026-10-18

This migration adds:
- users, projects, project_members and id_sequences
- workflow_states with their allowed transition lists
- labels, issues and the ordered issue_labels link table
- issue_history (field-level audit trail)
- comments, mentions and notifications

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Accounts and projects
    op.create_table(
        'users',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('username', sa.String(50), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('full_name', sa.String(255)),
        sa.Column('is_active', sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_users_username', 'users', ['username'], unique=True)
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('key', sa.String(10), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('owner_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='RESTRICT'), nullable=False),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_projects_key', 'projects', ['key'], unique=True)
    op.create_index('ix_projects_owner_id', 'projects', ['owner_id'])
    op.create_index('ix_projects_created_at', 'projects', ['created_at'])

    op.create_table(
        'project_members',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('role', sa.Enum('MEMBER', 'VIEWER', name='projectrole'), nullable=False, server_default='MEMBER'),
        sa.Column('joined_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('project_id', 'user_id', name='unique_project_user'),
    )
    op.create_index('ix_project_members_project_id', 'project_members', ['project_id'])
    op.create_index('ix_project_members_user_id', 'project_members', ['user_id'])

    op.create_table(
        'id_sequences',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('next_number', sa.Integer, nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint('next_number > 0', name='chk_next_number_positive'),
    )
    op.create_index('ix_id_sequences_project_id', 'id_sequences', ['project_id'], unique=True)

    # Workflow
    op.create_table(
        'workflow_states',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('ordinal', sa.Integer, nullable=False),
        sa.Column('terminal', sa.Boolean, nullable=False, server_default=sa.false()),
        # Comma-delimited workflow_state ids; empty means unconstrained
        sa.Column('allowed_transitions', sa.Text, nullable=False, server_default=''),
        sa.UniqueConstraint('project_id', 'name', name='unique_project_state_name'),
    )
    op.create_index('ix_workflow_states_project_id', 'workflow_states', ['project_id'])

    # Issues
    op.create_table(
        'labels',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('color', sa.String(7), nullable=False, server_default='#6B778C'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('project_id', 'name', name='unique_project_label_name'),
    )
    op.create_index('ix_labels_project_id', 'labels', ['project_id'])

    op.create_table(
        'issues',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('project_id', sa.Uuid(as_uuid=True), sa.ForeignKey('projects.id', ondelete='CASCADE'), nullable=False),
        sa.Column('number', sa.Integer, nullable=False),
        sa.Column('key', sa.String(50), nullable=False),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('issue_type', sa.Enum('STORY', 'BUG', 'TASK', 'EPIC', name='issuetype'), nullable=False, server_default='TASK'),
        sa.Column('workflow_state_id', sa.Uuid(as_uuid=True), sa.ForeignKey('workflow_states.id'), nullable=False),
        sa.Column('priority', sa.Enum('LOW', 'MEDIUM', 'HIGH', 'CRITICAL', name='priority'), nullable=False, server_default='MEDIUM'),
        sa.Column('reporter_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('assignee_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('story_points', sa.Integer),
        sa.Column('due_date', sa.Date),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('project_id', 'number', name='unique_project_issue_number'),
        sa.CheckConstraint('story_points IS NULL OR story_points > 0', name='chk_story_points_positive'),
    )
    op.create_index('ix_issues_project_id', 'issues', ['project_id'])
    op.create_index('ix_issues_key', 'issues', ['key'], unique=True)
    op.create_index('ix_issues_workflow_state_id', 'issues', ['workflow_state_id'])
    op.create_index('ix_issues_priority', 'issues', ['priority'])
    op.create_index('ix_issues_assignee_id', 'issues', ['assignee_id'])
    op.create_index('ix_issues_created_at', 'issues', ['created_at'])

    op.create_table(
        'issue_labels',
        sa.Column('issue_id', sa.Uuid(as_uuid=True), sa.ForeignKey('issues.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('label_id', sa.Uuid(as_uuid=True), sa.ForeignKey('labels.id', ondelete='CASCADE'), primary_key=True),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
    )

    # Audit trail
    op.create_table(
        'issue_history',
        sa.Column('id', sa.Integer, primary_key=True, autoincrement=True),
        sa.Column('issue_id', sa.Uuid(as_uuid=True), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('field_name', sa.String(100), nullable=False),
        sa.Column('old_value', sa.Text),
        sa.Column('new_value', sa.Text),
        sa.Column('changed_by_user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='SET NULL')),
        sa.Column('changed_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_issue_history_issue_id', 'issue_history', ['issue_id'])
    op.create_index('ix_issue_history_changed_by_user_id', 'issue_history', ['changed_by_user_id'])
    op.create_index('ix_issue_history_changed_at', 'issue_history', ['changed_at'], postgresql_ops={'changed_at': 'DESC'})

    # Collaboration
    op.create_table(
        'comments',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('issue_id', sa.Uuid(as_uuid=True), sa.ForeignKey('issues.id', ondelete='CASCADE'), nullable=False),
        sa.Column('author_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('content', sa.Text, nullable=False),
        sa.Column('is_edited', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
    )
    op.create_index('ix_comments_issue_id', 'comments', ['issue_id'])
    op.create_index('ix_comments_author_id', 'comments', ['author_id'])
    op.create_index('ix_comments_created_at', 'comments', ['created_at'])

    op.create_table(
        'mentions',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('comment_id', sa.Uuid(as_uuid=True), sa.ForeignKey('comments.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mentioned_user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('mentioned_by_user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column('position', sa.Integer, nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('comment_id', 'mentioned_user_id', name='uq_mention_comment_user'),
    )
    op.create_index('ix_mentions_comment_id', 'mentions', ['comment_id'])
    op.create_index('ix_mentions_mentioned_user_id', 'mentions', ['mentioned_user_id'])

    op.create_table(
        'notifications',
        sa.Column('id', sa.Uuid(as_uuid=True), primary_key=True),
        sa.Column('user_id', sa.Uuid(as_uuid=True), sa.ForeignKey('users.id', ondelete='CASCADE'), nullable=False),
        sa.Column(
            'type',
            sa.Enum('MENTION', 'ASSIGNMENT', 'STATUS_CHANGE', 'COMMENT_ADDED', 'ISSUE_UPDATED', name='notificationtype'),
            nullable=False,
        ),
        sa.Column('message', sa.String(500), nullable=False),
        sa.Column('link', sa.String(500)),
        sa.Column('related_entity_id', sa.Uuid(as_uuid=True)),
        sa.Column('related_entity_type', sa.String(50)),
        sa.Column('is_read', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime, nullable=False, server_default=sa.func.now()),
        sa.Column('read_at', sa.DateTime),
    )
    op.create_index('ix_notifications_user_id', 'notifications', ['user_id'])
    op.create_index('ix_notifications_is_read', 'notifications', ['is_read'])
    op.create_index('ix_notifications_created_at', 'notifications', ['created_at'], postgresql_ops={'created_at': 'DESC'})


def downgrade() -> None:
    # Drop tables in reverse dependency order
    op.drop_table('notifications')
    op.drop_table('mentions')
    op.drop_table('comments')
    op.drop_table('issue_history')
    op.drop_table('issue_labels')
    op.drop_table('issues')
    op.drop_table('labels')
    op.drop_table('workflow_states')
    op.drop_table('id_sequences')
    op.drop_table('project_members')
    op.drop_table('projects')
    op.drop_table('users')

    # Drop enums
    op.execute('DROP TYPE IF EXISTS notificationtype')
    op.execute('DROP TYPE IF EXISTS priority')
    op.execute('DROP TYPE IF EXISTS issuetype')
    op.execute('DROP TYPE IF EXISTS projectrole')
