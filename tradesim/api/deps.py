"""Shared API dependencies."""

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlmodel import Session, select

from tradesim.database import get_session
from tradesim.models.trading_run import TradingRun
from tradesim.models.user import User
from tradesim.services.auth import decode_access_token
from tradesim.services.container import Services
from tradesim.utils.errors import AuthorizationError

# Guests are allowed unless the app's config sets require_auth
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_optional_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    session: Session = Depends(get_session),
) -> User | None:
    """Return the token's user, None without a token. A bad token is always a 401."""
    if credentials is None:
        return None
    username = decode_access_token(credentials.credentials)
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    user = session.exec(select(User).where(User.username == username)).first()
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def get_current_user(user: User | None = Depends(get_optional_user)) -> User:
    """Validate JWT and return the current user."""
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def get_run_user(
    user: User | None = Depends(get_optional_user),
    services: Services = Depends(get_services),
) -> User | None:
    """Caller for run endpoints: a user, or None for a guest when allowed."""
    if user is None and services.config.require_auth:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user


def check_run_access(run: TradingRun, user: User | None):
    """Guest runs are open to anyone; owned runs only to their owner."""
    if run.owner_id is None:
        return
    if user is None:
        raise AuthorizationError("Authentication required for this run")
    if user.id != run.owner_id:
        raise AuthorizationError("Run belongs to another user", forbidden=True)
