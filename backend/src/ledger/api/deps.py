"""FastAPI dependencies for database sessions, identity and services."""
from typing import AsyncGenerator, Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ledger.auth.capabilities import AdminUserCapabilityChecker, Capability, CapabilityChecker
from ledger.auth.jwt import jwt_auth
from ledger.database import AsyncSessionLocal
from ledger.exceptions import PermissionDenied

logger = structlog.get_logger(__name__)

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Request-scoped database session.

    Commits when the endpoint returns normally and rolls back if it raises.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory for operations that manage their own transactions."""
    return AsyncSessionLocal


async def get_capability_checker(db: AsyncSession = Depends(get_db)) -> CapabilityChecker:
    """Identity port used by the order approval chain."""
    return AdminUserCapabilityChecker(db)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """
    Resolve the acting user from the bearer token.

    Only identity comes from the token; capabilities are looked up separately.

    Returns:
        str: Actor ID (the token's ``sub`` claim)

    Raises:
        HTTPException: 401 if the token is missing, expired or invalid
    """
    if not credentials:
        raise _unauthorized("Authentication required")

    try:
        claims = jwt_auth.verify_access_token(credentials.credentials)
    except jwt.ExpiredSignatureError:
        logger.info("actor_token_expired")
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        logger.warning("actor_token_invalid", error=str(e))
        raise _unauthorized(f"Invalid authentication token: {e}")

    actor_id = claims["sub"]
    structlog.contextvars.bind_contextvars(actor_id=actor_id)
    return actor_id


async def require_owner_or_capability(
    capabilities: CapabilityChecker,
    actor_id: str,
    user_id: str,
    action: str,
    allowed: tuple[Capability, ...] = (Capability.ADMIN,),
) -> None:
    """
    Allow a user to act on their own credits and orders, and back-office staff on anyone's.

    Raises:
        PermissionDenied: If the actor is neither the user nor holds one of ``allowed``
    """
    if actor_id == user_id:
        return
    for capability in allowed:
        if await capabilities.has_capability(actor_id, capability):
            return
    logger.info("actor_not_owner", actor_id=actor_id, user_id=user_id, action=action)
    raise PermissionDenied(actor_id, action, [c.value for c in allowed] + ["owner"])
