from fastapi import Request, Depends, Header
from typing import Optional

from reporting_api.dependencies import get_credential_store
from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.models import AgencyRecord


async def get_current_agency(
    request: Request,
    x_api_key: Optional[str] = Header(None),
    credentials: CredentialStore = Depends(get_credential_store),
) -> AgencyRecord:
    """Resolve the ``x-api-key`` header to its agency. Raises ``InvalidApiKey``."""
    agency = await credentials.lookup(x_api_key)
    request.state.agency_id = agency.agency_id
    return agency
