"""API dependencies for dependency injection."""

from collections.abc import Generator
from typing import Annotated, Any
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlmodel import Session

from notifier.config import get_settings
from notifier.db.session import get_session
from notifier.workers.runner import QueueRunner, get_queue_runner

security = HTTPBearer()


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    yield from get_session()


DBSession = Annotated[Session, Depends(get_db_session)]


def get_token_claims(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> dict[str, Any]:
    """Decode and verify the bearer JWT."""
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Invalid or expired token",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        return jwt.decode(
            credentials.credentials,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise credentials_exception


TokenClaims = Annotated[dict[str, Any], Depends(get_token_claims)]


def require_service_role(claims: TokenClaims) -> dict[str, Any]:
    """Only service callers may trigger queue processing."""
    if claims.get("role") != get_settings().SERVICE_ROLE:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Service role required",
        )
    return claims


ServiceRole = Annotated[dict[str, Any], Depends(require_service_role)]


def get_current_user_id(claims: TokenClaims) -> UUID:
    """Get the authenticated user id from the token's sub claim."""
    user_id = claims.get("sub")
    try:
        return UUID(str(user_id))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )


CurrentUserId = Annotated[UUID, Depends(get_current_user_id)]


def get_runner() -> QueueRunner:
    """Get the process-wide queue runner."""
    return get_queue_runner()


Runner = Annotated[QueueRunner, Depends(get_runner)]
