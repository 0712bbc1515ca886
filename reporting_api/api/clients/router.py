"""Client management and GA4 CSV uploads."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from pydantic import BaseModel

from reporting_api.api.envelope import ok, render_idempotent, stored
from reporting_api.core.rate_limiter import RateLimiter
from reporting_api.dependencies import (
    get_credential_store,
    get_idempotency_cache,
    get_rate_limiter,
    get_report_service,
)
from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.idempotency import IdempotencyCache
from reporting_api.domain.models import ActionClass, AgencyRecord, SubjectKey
from reporting_api.domain.reports import ReportService
from reporting_api.errors import PayloadTooLarge
from reporting_api.middleware.auth_agency import get_current_agency
from reporting_api.middleware.rate_limit import enforce_rate_limit

router = APIRouter()
logger = logging.getLogger(__name__)


class CreateClientRequest(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    brandLogoUrl: Optional[str] = None
    reportSchedule: Optional[str] = None


@router.post("/api/client")
async def create_client(
    body: CreateClientRequest,
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
):
    client = await credentials.create_client(
        agency,
        name=body.name or "",
        email=body.email or "",
        brand_logo_url=body.brandLogoUrl,
        report_schedule=body.reportSchedule,
    )
    return ok({"client": client.public_view()}, status_code=201)


@router.get("/api/clients")
async def list_clients(
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
):
    clients = await credentials.list_clients(agency)
    return ok({"clients": [c.public_view() for c in clients]})


@router.delete("/api/client/{client_id}")
async def delete_client(
    client_id: str,
    cascade: bool = Query(False),
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
):
    deleted_objects = await credentials.delete_client(agency, client_id, cascade=cascade)
    return ok({"clientId": client_id, "deleted": True, "objectsDeleted": deleted_objects})


@router.post("/api/client/{client_id}/ga4-csv")
async def upload_ga4_csv(
    client_id: str,
    request: Request,
    idempotency_key: Optional[str] = Header(None),
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
    limiter: RateLimiter = Depends(get_rate_limiter),
    cache: IdempotencyCache = Depends(get_idempotency_cache),
    reports: ReportService = Depends(get_report_service),
):
    client = await credentials.get_owned_client(agency, client_id)

    # Reject oversized uploads before buffering the body or spending quota
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > reports.max_csv_bytes:
        raise PayloadTooLarge(
            f"CSV file exceeds maximum size of {reports.max_csv_bytes / 1024 / 1024:g}MB",
            code="CSV_TOO_LARGE",
        )

    subject = SubjectKey(client.id, ActionClass.CSV_UPLOAD)
    headers = await enforce_rate_limit(limiter, subject)
    request.state.rate_limit_headers = headers
    content = await request.body()

    async def action():
        return stored(await reports.upload_csv(agency, client, content))

    result = await cache.execute_once(
        subject,
        idempotency_key,
        action,
        payload={"clientId": client.id, "csv": content.decode("utf-8", errors="replace")},
    )
    return render_idempotent(result, headers)
