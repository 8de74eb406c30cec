"""Bearer token authentication against the staff session table."""

from dataclasses import dataclass
from datetime import datetime, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.database import get_db
from prestrack.models.auth import AuthSession, StaffUser

bearer_scheme = HTTPBearer(auto_error=False)

ROLE_ADMIN = "admin"
ROLE_PROVIDER = "provider"


@dataclass(frozen=True)
class Caller:
    """Authenticated staff member, passed explicitly to services."""

    user_id: str
    role: str
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_provider(self) -> bool:
        return self.role == ROLE_PROVIDER

    @property
    def label(self) -> str:
        """Human-readable name used in audit lines."""
        return self.email or self.user_id


async def verify_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Caller:
    """Validate a bearer token against the session table.

    Returns:
        The authenticated caller with its role.

    Raises:
        HTTPException: 401 if token is missing, invalid, or expired.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
        )

    result = await db.execute(
        select(StaffUser)
        .join(AuthSession, AuthSession.user_id == StaffUser.id)
        .where(
            AuthSession.token == credentials.credentials,
            AuthSession.expires_at > datetime.now(timezone.utc),
        )
    )
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )

    return Caller(user_id=user.id, role=user.role, email=user.email)
