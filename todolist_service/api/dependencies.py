"""
FastAPI dependencies exposing the authenticated caller to route handlers.
"""

import logging

from fastapi import Depends, HTTPException, Request, status

from todolist_service.auth.outcome import ClaimSet
from todolist_service.models.user import AuthenticatedUser
from todolist_service.services.todo_store import TodoStore

logger = logging.getLogger(__name__)


def get_claims(request: Request) -> ClaimSet:
    """
    Dependency returning the claims the token gate attached to the request.

    Raises:
        HTTPException: If the route is reached without passing the gate
    """
    claims = getattr(request.state, "claims", None)
    if claims is None:
        logger.warning(f"No verified claims on request to {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return claims


async def get_current_user(claims: ClaimSet = Depends(get_claims)) -> AuthenticatedUser:
    """
    Dependency to extract authenticated user information from verified claims.

    Returns:
        AuthenticatedUser: Structured user information
    """
    if not claims.subject:
        logger.error("Verified token carries no subject claim")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload structure",
        )
    user = AuthenticatedUser.from_claims(claims)
    logger.info(f"User authenticated: {user.email or user.subject}")
    return user


def get_todo_store(request: Request) -> TodoStore:
    return request.app.state.todo_store
