"""Comments API endpoints."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from issueflow_core import crud, schemas, models

from ...database import get_db
from ..dependencies import DOMAIN_ERRORS, get_current_user, get_publisher, to_http_error

logger = logging.getLogger("issueflow-core.comments")

router = APIRouter(tags=["comments"])


@router.post("/issues/{issue_id}/comments", response_model=schemas.CommentResponse, status_code=201)
def create_comment(
    issue_id: UUID,
    comment: schemas.CommentCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    publisher=Depends(get_publisher),
):
    """
    Post a comment on an issue.

    Every ``@username`` in the content notifies that user (self-mentions
    and unknown usernames are ignored).
    """
    try:
        return crud.create_comment(db, issue_id, comment.content, current_user, publisher=publisher)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.get("/issues/{issue_id}/comments", response_model=list[schemas.CommentResponse])
def list_comments(
    issue_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Comments on an issue, oldest first."""
    try:
        return crud.list_comments(db, issue_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.put("/comments/{comment_id}", response_model=schemas.CommentResponse)
def update_comment(
    comment_id: UUID,
    comment: schemas.CommentUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    publisher=Depends(get_publisher),
):
    """Edit a comment (author only). Mentions are re-derived from the new text."""
    try:
        return crud.update_comment(db, comment_id, comment.content, current_user, publisher=publisher)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)


@router.delete("/comments/{comment_id}", status_code=204)
def delete_comment(
    comment_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
    publisher=Depends(get_publisher),
):
    """Delete a comment (author or project owner)."""
    try:
        crud.delete_comment(db, comment_id, current_user, publisher=publisher)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
    return Response(status_code=204)
