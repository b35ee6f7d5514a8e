"""Tests for workflow state machine validation."""
from uuid import uuid4

import pytest

from issueflow_core import models
from issueflow_core.state_machine import (
    DEFAULT_WORKFLOW,
    InvalidTransitionError,
    build_workflow_states,
    get_allowed_transitions,
    initial_state,
    is_transition_valid,
    validate_transition,
)


@pytest.fixture
def workflow():
    """Default workflow states for an unsaved project, by name."""
    project = models.Project(key="WF", name="Workflow")
    return {state.name: state for state in build_workflow_states(project)}


def _state(name, ordinal=0, transitions=()):
    return models.WorkflowState(
        id=uuid4(),
        name=name,
        ordinal=ordinal,
        terminal=False,
        allowed_transitions=frozenset(transitions),
    )


class TestDefaultWorkflow:
    """Test the workflow provisioned for new projects."""

    def test_states_in_ordinal_order(self, workflow):
        ordered = sorted(workflow.values(), key=lambda s: s.ordinal)
        assert [s.name for s in ordered] == [
            "Backlog", "To Do", "In Progress", "Review", "Testing", "Done",
        ]

    def test_only_done_is_terminal(self, workflow):
        assert [s.name for s in workflow.values() if s.terminal] == ["Done"]

    def test_every_state_is_constrained(self, workflow):
        """No default state is an unconstrained escape hatch."""
        assert all(state.allowed_transitions for state in workflow.values())

    def test_initial_state_is_backlog(self, workflow):
        assert initial_state(workflow.values()).name == "Backlog"

    def test_unknown_transition_target_rejected(self):
        blueprint = [{"name": "Open", "terminal": False, "transitions": ["Closed"]}]
        with pytest.raises(ValueError, match="Closed"):
            build_workflow_states(models.Project(key="BAD", name="Bad"), blueprint)

    def test_blueprint_names_match_constant(self, workflow):
        assert set(workflow) == {entry["name"] for entry in DEFAULT_WORKFLOW}


class TestStateTransitions:
    """Test state machine transition validation."""

    def test_valid_forward_transitions(self, workflow):
        """Test that valid forward transitions are allowed."""
        path = ["Backlog", "To Do", "In Progress", "Review", "Testing", "Done"]
        for current, target in zip(path, path[1:]):
            assert is_transition_valid(workflow[current], workflow[target])
            validate_transition(workflow[current], workflow[target])  # Should not raise

    def test_in_progress_can_skip_review(self, workflow):
        validate_transition(workflow["In Progress"], workflow["Testing"])

    def test_valid_back_transitions(self, workflow):
        """Test that rework back-transitions are allowed."""
        for current, target in [
            ("To Do", "Backlog"),
            ("In Progress", "To Do"),
            ("Review", "In Progress"),
            ("Testing", "In Progress"),
            ("Done", "In Progress"),
        ]:
            validate_transition(workflow[current], workflow[target])

    def test_invalid_skip_transitions(self, workflow):
        """Test that skipping steps is blocked."""
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(workflow["Backlog"], workflow["Done"])

        error = exc_info.value
        assert error.from_state is workflow["Backlog"]
        assert error.to_state is workflow["Done"]
        assert "Backlog" in str(error)
        assert "Done" in str(error)

        assert not is_transition_valid(workflow["Backlog"], workflow["In Progress"])
        assert not is_transition_valid(workflow["To Do"], workflow["Review"])

    def test_error_lists_allowed_targets(self, workflow):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_transition(workflow["Done"], workflow["Backlog"], workflow.values())

        assert [s.name for s in exc_info.value.allowed] == ["In Progress"]
        assert "you can only transition to: In Progress" in exc_info.value.message

    def test_invalid_transition_is_value_error(self, workflow):
        with pytest.raises(ValueError):
            validate_transition(workflow["Testing"], workflow["Backlog"])

    def test_noop_transitions_allowed(self, workflow):
        """Test that same-state is never a transition."""
        for state in workflow.values():
            assert is_transition_valid(state, state)
            validate_transition(state, state)


class TestUnconstrainedStates:
    """Test the empty adjacency escape hatch."""

    def test_empty_adjacency_accepts_any_target(self):
        free = _state("Free")
        other = _state("Anywhere", ordinal=1)
        assert is_transition_valid(free, other)
        validate_transition(free, other)

    def test_constraint_is_per_source_state(self):
        target = _state("Target", ordinal=2)
        free = _state("Free")
        locked = _state("Locked", ordinal=1, transitions=[free.id])

        validate_transition(free, target)
        with pytest.raises(InvalidTransitionError):
            validate_transition(locked, target)


class TestAllowedTransitions:
    """Test get_allowed_transitions helper."""

    def test_allowed_from_in_progress(self, workflow):
        allowed = get_allowed_transitions(workflow["In Progress"], workflow.values())
        assert [s.name for s in allowed] == ["To Do", "Review", "Testing"]

    def test_allowed_from_backlog(self, workflow):
        allowed = get_allowed_transitions(workflow["Backlog"], workflow.values())
        assert [s.name for s in allowed] == ["To Do"]

    def test_unconstrained_lists_every_other_state(self):
        free = _state("Free")
        others = [_state("B", ordinal=2), _state("A", ordinal=1)]
        allowed = get_allowed_transitions(free, [free, *others])
        assert [s.name for s in allowed] == ["A", "B"]
