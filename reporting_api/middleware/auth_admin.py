"""Admin authentication for operator endpoints."""
import hmac
import logging
from typing import Optional

from fastapi import Depends, Header

from reporting_api.errors import InvalidAdminSecret
from reporting_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)


async def require_admin(
    x_admin_secret: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Require ``x-admin-secret`` to match the configured admin secret.

    An unconfigured secret rejects every caller.
    """
    if not settings.admin_secret:
        logger.error("Admin endpoint called but ADMIN_SECRET is not configured")
        raise InvalidAdminSecret()
    if not x_admin_secret or not hmac.compare_digest(x_admin_secret.encode(), settings.admin_secret.encode()):
        raise InvalidAdminSecret()
