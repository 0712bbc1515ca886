"""Agency self-service endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from reporting_api.api.envelope import ok
from reporting_api.core.rate_limiter import RateLimiter
from reporting_api.dependencies import get_credential_store, get_rate_limiter
from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.models import ActionClass, AgencyRecord
from reporting_api.middleware.auth_agency import get_current_agency
from reporting_api.middleware.rate_limit import client_ip_subject, enforce_rate_limit

router = APIRouter()
logger = logging.getLogger(__name__)


class RegisterAgencyRequest(BaseModel):
    name: Optional[str] = None
    billingEmail: Optional[str] = None


@router.post("/api/agency/register")
async def register_agency(
    request: Request,
    body: RegisterAgencyRequest,
    credentials: CredentialStore = Depends(get_credential_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
):
    headers = await enforce_rate_limit(limiter, client_ip_subject(request, ActionClass.REGISTRATION))
    request.state.rate_limit_headers = headers

    agency, api_key = await credentials.create_agency(body.name or "", body.billingEmail or "")

    view = agency.public_view()
    view["apiKey"] = api_key
    return ok({"agency": view}, status_code=201, headers=headers)


@router.get("/api/agency/me")
async def get_agency(
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
):
    full = await credentials.get_agency(agency.agency_id)
    return ok({"agency": full.public_view()})
