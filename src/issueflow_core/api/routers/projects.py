"""Projects API endpoints: provisioning, members, labels, workflow and issue creation."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from issueflow_core import crud, schemas, models
from issueflow_core.permissions import require_owner

from ...database import get_db
from ..dependencies import DOMAIN_ERRORS, get_current_user, get_publisher, to_http_error

logger = logging.getLogger("issueflow-core.projects")

router = APIRouter(tags=["projects"])


@router.post("/projects", response_model=schemas.ProjectResponse, status_code=201)
def create_project(
    project: schemas.ProjectCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Create a new project owned by the caller.

    - **key**: 2-10 uppercase alphanumeric characters (e.g., "TEST", "WEB")
    - **name**: Project name
    - **description**: Optional description

    The project is provisioned with the default workflow
    (Backlog → To Do → In Progress → Review/Testing → Done).
    """
    try:
        return crud.create_project(
            db=db,
            key=project.key,
            name=project.name,
            owner=current_user,
            description=project.description,
        )
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/projects/{project_id}", response_model=schemas.ProjectResponse)
def get_project(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get a project the caller has access to."""
    try:
        return crud.get_project(db, project_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.post(
    "/projects/{project_id}/members",
    response_model=schemas.ProjectMemberResponse,
    status_code=201,
)
def add_project_member(
    project_id: UUID,
    member: schemas.ProjectMemberCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """
    Add a user to the project (owner only).

    - **username**: User to add
    - **role**: MEMBER (read/write) or VIEWER (read-only)
    """
    try:
        project = crud.get_project(db, project_id)
        require_owner(project, current_user)
        user = crud.get_user_by_username(db, member.username)
        return crud.add_project_member(db, project, user, member.role)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.post("/projects/{project_id}/labels", response_model=schemas.LabelResponse, status_code=201)
def create_label(
    project_id: UUID,
    label: schemas.LabelCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Create a label in the project."""
    try:
        project = crud.get_project(db, project_id)
        return crud.create_label(db, project, label.name, label.color, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get(
    "/projects/{project_id}/workflow-states",
    response_model=list[schemas.WorkflowStateResponse],
)
def list_workflow_states(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Workflow states of the project with their allowed transitions."""
    try:
        return crud.get_workflow_states(db, project_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.post("/projects/{project_id}/issues", response_model=schemas.IssueResponse, status_code=201)
def create_issue(
    project_id: UUID,
    issue: schemas.IssueCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    publisher=Depends(get_publisher),
):
    """
    Create an issue in the project's first workflow state.

    The caller becomes the reporter; the issue key is PROJECT_KEY-number.
    """
    try:
        result = crud.create_issue(db, project_id, issue, current_user, publisher=publisher)
        logger.info(f"Created issue {result.key} (ID: {result.id})")
        return result
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/projects/{project_id}/issues", response_model=list[schemas.IssueResponse])
def list_project_issues(
    project_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """List the project's issues ordered by number."""
    try:
        return crud.list_project_issues(db, project_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
