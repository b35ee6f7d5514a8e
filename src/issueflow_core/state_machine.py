"""Per-project workflow state machine for issue status transitions.

Each project owns its workflow states. A state's ``allowed_transitions``
lists the state ids reachable in one step:
- Non-empty list: the target must be in it
- Empty list: the state is unconstrained and accepts any target
- Setting the same state is a no-op, not a transition
"""
import logging
from typing import Iterable, Optional
from uuid import uuid4

from . import models

logger = logging.getLogger("issueflow-core.state_machine")


class InvalidTransitionError(ValueError):
    """Raised when an issue is moved to a state not reachable from its current one."""

    def __init__(
        self,
        message: str,
        from_state: models.WorkflowState,
        to_state: models.WorkflowState,
        allowed: list[models.WorkflowState],
    ):
        super().__init__(message)
        self.message = message
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed


# Workflow provisioned for every new project, in ordinal order.
# Maps state name → names of states reachable in one step.
DEFAULT_WORKFLOW: list[dict] = [
    {"name": "Backlog", "terminal": False, "transitions": ["To Do"]},
    {"name": "To Do", "terminal": False, "transitions": ["In Progress", "Backlog"]},
    {"name": "In Progress", "terminal": False, "transitions": ["Review", "Testing", "To Do"]},
    {"name": "Review", "terminal": False, "transitions": ["Testing", "In Progress"]},
    {"name": "Testing", "terminal": False, "transitions": ["Done", "In Progress"]},
    # Reopen for rework
    {"name": "Done", "terminal": True, "transitions": ["In Progress"]},
]


def build_workflow_states(
    project: models.Project,
    blueprint: Optional[list[dict]] = None,
) -> list[models.WorkflowState]:
    """
    Instantiate workflow states for a project from a blueprint.

    Ids are assigned up front so the adjacency sets can reference states
    that have not been flushed yet.

    Args:
        project: Project that will own the states
        blueprint: State definitions (defaults to DEFAULT_WORKFLOW)

    Returns:
        New, unsaved WorkflowState instances in ordinal order

    Raises:
        ValueError: If a transition names a state missing from the blueprint
    """
    blueprint = blueprint if blueprint is not None else DEFAULT_WORKFLOW
    ids_by_name = {entry["name"]: uuid4() for entry in blueprint}

    states = []
    for ordinal, entry in enumerate(blueprint):
        missing = [name for name in entry["transitions"] if name not in ids_by_name]
        if missing:
            raise ValueError(
                f"Workflow state '{entry['name']}' references unknown states: {', '.join(missing)}"
            )
        states.append(
            models.WorkflowState(
                id=ids_by_name[entry["name"]],
                project=project,
                name=entry["name"],
                ordinal=ordinal,
                terminal=entry["terminal"],
                allowed_transitions=frozenset(ids_by_name[name] for name in entry["transitions"]),
            )
        )
    return states


def initial_state(states: Iterable[models.WorkflowState]) -> models.WorkflowState:
    """Return the entry state of a workflow (lowest ordinal)."""
    ordered = sorted(states, key=lambda s: s.ordinal)
    if not ordered:
        raise ValueError("Project has no workflow states")
    return ordered[0]


def is_transition_valid(
    current: models.WorkflowState,
    target: models.WorkflowState,
) -> bool:
    """
    Check if a state transition is valid.

    Args:
        current: Issue's current workflow state
        target: Requested workflow state

    Returns:
        True if the transition is allowed, False otherwise
    """
    if current.id == target.id:
        return True
    if not current.allowed_transitions:
        return True
    return target.id in current.allowed_transitions


def get_allowed_transitions(
    current: models.WorkflowState,
    states: Iterable[models.WorkflowState],
) -> list[models.WorkflowState]:
    """
    Get the states reachable from ``current`` in one step.

    Args:
        current: Current workflow state
        states: All workflow states of the project

    Returns:
        Reachable states in ordinal order (excluding ``current`` itself)
    """
    candidates = [s for s in states if s.id != current.id]
    if current.allowed_transitions:
        candidates = [s for s in candidates if s.id in current.allowed_transitions]
    return sorted(candidates, key=lambda s: s.ordinal)


def validate_transition(
    current: models.WorkflowState,
    target: models.WorkflowState,
    states: Optional[Iterable[models.WorkflowState]] = None,
) -> None:
    """
    Validate a state transition and raise exception if invalid.

    Args:
        current: Issue's current workflow state
        target: Requested workflow state
        states: All workflow states of the project, used to name the
            allowed targets in the error message

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if current.id == target.id:
        logger.debug(f"No-op transition: {current.name} → {target.name}")
        return

    if is_transition_valid(current, target):
        logger.debug(f"Valid transition: {current.name} → {target.name}")
        return

    allowed = get_allowed_transitions(current, states) if states is not None else []
    if allowed:
        allowed_names = ", ".join(s.name for s in allowed)
    else:
        allowed_names = ", ".join(sorted(str(state_id) for state_id in current.allowed_transitions))

    error_msg = (
        f"Invalid status transition: {current.name} → {target.name}. "
        f"From {current.name}, you can only transition to: {allowed_names}."
    )
    logger.warning(f"Blocked transition: {error_msg}")
    raise InvalidTransitionError(
        message=error_msg,
        from_state=current,
        to_state=target,
        allowed=allowed,
    )
