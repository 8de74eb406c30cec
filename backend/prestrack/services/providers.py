"""Provider escalation privileges."""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from prestrack.auth import Caller
from prestrack.config import settings
from prestrack.errors import AuthzError, NotFoundError, ValidationError
from prestrack.models import ProviderProfile, StaffUser

logger = logging.getLogger(__name__)


async def update_privileges(
    db: AsyncSession,
    caller: Caller,
    user_id: str,
    *,
    can_update_escalations: bool | None = None,
    can_close_escalations: bool | None = None,
) -> ProviderProfile:
    """Set a provider's escalation bits, creating the profile if missing.

    Admins may edit anyone. Providers may edit themselves only when
    ``ALLOW_PROVIDER_PRIVILEGE_EDIT`` is on.

    Raises:
        AuthzError: Caller may not edit this user.
        ValidationError: No change requested.
        NotFoundError: Unknown user.
    """
    is_self = caller.user_id == user_id
    if not (caller.is_admin or (settings.allow_provider_privilege_edit and is_self)):
        raise AuthzError("forbidden", code="forbidden")

    changes = {
        key: value
        for key, value in (
            ("can_update_escalations", can_update_escalations),
            ("can_close_escalations", can_close_escalations),
        )
        if value is not None
    }
    if not changes:
        raise ValidationError("no changes")

    if await db.get(StaffUser, user_id) is None:
        raise NotFoundError("user not found")

    profile = (
        await db.execute(select(ProviderProfile).where(ProviderProfile.user_id == user_id))
    ).scalar_one_or_none()
    if profile is None:
        profile = ProviderProfile(
            user_id=user_id,
            can_update_escalations=False,
            can_close_escalations=False,
        )
        db.add(profile)

    for key, value in changes.items():
        setattr(profile, key, value)
    await db.flush()

    logger.info("Privileges for %s set by %s: %s", user_id, caller.label, changes)
    return profile
