"""Shared FastAPI dependencies and error translation."""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session

from issueflow_core import crud, models
from issueflow_core.channels import ChannelBroker, get_broker
from issueflow_core.permissions import PermissionDeniedError
from issueflow_core.state_machine import InvalidTransitionError

from ..database import get_db

logger = logging.getLogger("issueflow-core.api")


def get_current_user(
    x_username: Optional[str] = Header(None, description="Authenticated username"),
    db: Session = Depends(get_db),
) -> models.User:
    """
    Resolve the caller from the ``X-Username`` header.

    Token validation happens upstream; by the time a request reaches this
    service the header carries an already-authenticated username.
    """
    if not x_username:
        raise HTTPException(status_code=401, detail="Missing X-Username header")
    user = crud.find_user_by_handle(db, x_username)
    if user is None:
        raise HTTPException(status_code=401, detail=f"Unknown user: {x_username}")
    return user


def get_publisher() -> ChannelBroker:
    """Channel publisher used by write endpoints."""
    return get_broker()


def to_http_error(error: Exception) -> HTTPException:
    """Translate a domain exception into the matching HTTP error."""
    if isinstance(error, crud.NotFoundError):
        return HTTPException(status_code=404, detail=str(error))
    if isinstance(error, PermissionDeniedError):
        return HTTPException(status_code=403, detail=error.message)
    if isinstance(error, InvalidTransitionError):
        return HTTPException(
            status_code=400,
            detail={
                "error": "invalid_transition",
                "message": error.message,
                "from_state": error.from_state.name,
                "to_state": error.to_state.name,
                "allowed": [state.name for state in error.allowed],
            },
        )
    logger.warning(f"Validation error: {error}")
    return HTTPException(status_code=400, detail=str(error))


# Domain errors every router translates through to_http_error
DOMAIN_ERRORS = (crud.NotFoundError, PermissionDeniedError, ValueError)
