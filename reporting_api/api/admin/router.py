"""Admin API Router - operator-only credential management."""
import logging

from fastapi import APIRouter, Depends

from reporting_api.api.envelope import ok
from reporting_api.dependencies import get_credential_store
from reporting_api.domain.credentials import CredentialStore
from reporting_api.middleware.auth_admin import require_admin

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/api/admin/agency/{agency_id}/rotate-key", dependencies=[Depends(require_admin)])
async def rotate_agency_key(
    agency_id: str,
    credentials: CredentialStore = Depends(get_credential_store),
):
    """Issue a new API key for an agency. The old key stops working immediately.

    The new key is returned exactly once.
    """
    new_api_key = await credentials.rotate(agency_id)
    logger.info(f"Admin rotated API key for agency {agency_id}")
    return ok({"newApiKey": new_api_key})
