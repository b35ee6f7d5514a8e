"""Issues API endpoints: lookup, partial update and audit history."""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from issueflow_core import crud, schemas, models

from ...database import get_db
from ..dependencies import DOMAIN_ERRORS, get_current_user, get_publisher, to_http_error

logger = logging.getLogger("issueflow-core.issues")

router = APIRouter(tags=["issues"])


@router.get("/issues/key/{issue_key}", response_model=schemas.IssueResponse)
def get_issue_by_key(
    issue_key: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get an issue by its human-readable key (e.g. TEST-42)."""
    try:
        return crud.get_issue_by_key(db, issue_key, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/issues/{issue_id}", response_model=schemas.IssueResponse)
def get_issue(
    issue_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Get an issue by ID."""
    try:
        return crud.get_issue(db, issue_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.patch("/issues/{issue_id}", response_model=schemas.IssueResponse)
def update_issue(
    issue_id: UUID,
    update: schemas.IssueUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    publisher=Depends(get_publisher),
):
    """
    Partially update an issue.

    Only fields present in the body are changed; ``null`` clears optional
    fields. Status changes must follow the project's workflow. Every
    changed field is recorded in the issue history.
    """
    try:
        return crud.update_issue(db, issue_id, update, current_user, publisher=publisher)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/issues/{issue_id}/history", response_model=list[schemas.IssueHistoryResponse])
def get_issue_history(
    issue_id: UUID,
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Maximum number of entries (all when omitted)"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Field-level change history of an issue, newest first."""
    try:
        return crud.get_issue_history(db, issue_id, current_user, limit=limit)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
