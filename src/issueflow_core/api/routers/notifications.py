"""Notifications API endpoints for the calling user."""
import logging
from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from issueflow_core import crud, schemas, models
from issueflow_core import notifications as notification_service

from ...database import get_db
from ..dependencies import DOMAIN_ERRORS, get_current_user, to_http_error

logger = logging.getLogger("issueflow-core.notifications")

router = APIRouter(tags=["notifications"])


@router.get("/notifications", response_model=list[schemas.NotificationResponse])
def list_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """All of the caller's notifications, newest first."""
    return notification_service.list_notifications(db, current_user)


@router.get("/notifications/unread", response_model=list[schemas.NotificationResponse])
def list_unread_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """The caller's unread notifications, newest first."""
    return notification_service.list_unread_notifications(db, current_user)


@router.get("/notifications/unread/count", response_model=schemas.UnreadCountResponse)
def count_unread_notifications(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Number of unread notifications (for the bell badge)."""
    return {"count": notification_service.count_unread_notifications(db, current_user)}


@router.put("/notifications/read-all", response_model=schemas.MarkAllReadResponse)
def mark_all_notifications_read(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Mark every unread notification of the caller as read."""
    return {"updated": crud.mark_all_notifications_read(db, current_user)}


@router.put("/notifications/{notification_id}/read", response_model=schemas.NotificationResponse)
def mark_notification_read(
    notification_id: UUID,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(get_current_user),
):
    """Mark one notification as read (recipient only)."""
    try:
        return crud.mark_notification_read(db, notification_id, current_user)
    except DOMAIN_ERRORS as e:
        raise to_http_error(e)
