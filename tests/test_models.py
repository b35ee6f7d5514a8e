"""Tests for model-level behavior: adjacency storage, label ordering, overdue flag."""
from datetime import date, timedelta
from uuid import uuid4

import pytest

from issueflow_core import crud, models, schemas
from issueflow_core.models import (
    MalformedTransitionListError,
    TransitionIdSet,
    parse_transition_ids,
    serialize_transition_ids,
)


class TestTransitionIdStorage:
    """Test the delimited adjacency column type."""

    def test_parse_empty(self):
        assert parse_transition_ids(None) == frozenset()
        assert parse_transition_ids("") == frozenset()
        assert parse_transition_ids("   ") == frozenset()

    def test_parse_ids_with_whitespace(self):
        first, second = uuid4(), uuid4()
        raw = f" {first} ,{second}"
        assert parse_transition_ids(raw) == frozenset({first, second})

    def test_malformed_entry_raises(self):
        """Bad entries fail loudly instead of being skipped."""
        raw = f"{uuid4()},not-a-state-id"
        with pytest.raises(MalformedTransitionListError, match="not-a-state-id"):
            parse_transition_ids(raw)

    def test_empty_entry_between_delimiters_raises(self):
        with pytest.raises(MalformedTransitionListError):
            parse_transition_ids(f"{uuid4()},,{uuid4()}")

    def test_serialize_is_sorted(self):
        ids = [uuid4() for _ in range(3)]
        assert serialize_transition_ids(ids) == ",".join(sorted(str(i) for i in ids))
        assert serialize_transition_ids(frozenset()) == ""
        assert serialize_transition_ids(None) == ""

    def test_column_type_round_trip(self):
        column_type = TransitionIdSet()
        ids = frozenset({uuid4(), uuid4()})
        stored = column_type.process_bind_param(ids, dialect=None)
        assert isinstance(stored, str)
        assert column_type.process_result_value(stored, dialect=None) == ids

    def test_persisted_states_load_as_frozensets(self, db, project, states):
        db.expire_all()
        backlog = db.get(models.WorkflowState, states["Backlog"].id)
        assert isinstance(backlog.allowed_transitions, frozenset)
        assert backlog.allowed_transitions == frozenset({states["To Do"].id})


class TestIssueLabels:
    """Test ordered label assignment."""

    def test_labels_keep_assigned_order(self, db, project, alice):
        ui = crud.create_label(db, project, "ui", "#FF0000", alice)
        bug = crud.create_label(db, project, "bug", "#00FF00", alice)
        issue = crud.create_issue(
            db, project.id, schemas.IssueCreate(title="Ordered", label_ids=[ui.id, bug.id]), alice
        )
        assert [label.name for label in issue.labels] == ["ui", "bug"]

        issue.set_labels([bug, ui])
        db.commit()
        db.expire_all()
        assert [label.name for label in db.get(models.Issue, issue.id).labels] == ["bug", "ui"]

    def test_removing_label_drops_link(self, db, project, alice):
        ui = crud.create_label(db, project, "ui", "#FF0000", alice)
        bug = crud.create_label(db, project, "bug", "#00FF00", alice)
        issue = crud.create_issue(
            db, project.id, schemas.IssueCreate(title="Trim", label_ids=[ui.id, bug.id]), alice
        )
        issue.set_labels([bug])
        db.commit()

        links = db.query(models.IssueLabel).filter(models.IssueLabel.issue_id == issue.id).all()
        assert [(link.label.name, link.position) for link in links] == [("bug", 0)]


class TestOverdue:
    """Test the is_overdue property."""

    def test_no_due_date(self, issue):
        assert issue.is_overdue is False

    def test_past_due_in_open_state(self, db, issue):
        issue.due_date = date.today() - timedelta(days=1)
        assert issue.is_overdue is True

    def test_future_due_date(self, issue):
        issue.due_date = date.today() + timedelta(days=3)
        assert issue.is_overdue is False

    def test_terminal_state_never_overdue(self, issue, states):
        issue.due_date = date.today() - timedelta(days=10)
        issue.workflow_state = states["Done"]
        assert issue.is_overdue is False
