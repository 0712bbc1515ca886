"""Report delivery and signed-URL artifact access."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request
from fastapi.responses import Response

from reporting_api.api.envelope import ok, render_idempotent, stored
from reporting_api.core.rate_limiter import RateLimiter
from reporting_api.dependencies import (
    get_credential_store,
    get_idempotency_cache,
    get_object_store,
    get_rate_limiter,
    get_report_service,
    get_signed_url_authority,
)
from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.idempotency import IdempotencyCache
from reporting_api.domain.interfaces import ObjectStore
from reporting_api.domain.models import ActionClass, AgencyRecord, SubjectKey
from reporting_api.domain.reports import ReportService
from reporting_api.domain.signed_url import ResourcePath, SignedUrlAuthority
from reporting_api.errors import ArtifactNotFound, InvalidRequest, TokenRequired
from reporting_api.middleware.auth_agency import get_current_agency
from reporting_api.middleware.rate_limit import enforce_rate_limit
from reporting_api.settings import Settings, get_settings

router = APIRouter()
logger = logging.getLogger(__name__)

PDF_CACHE_CONTROL = "private, max-age=900"


@router.post("/api/client/{client_id}/report/send")
async def send_report(
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

    subject = SubjectKey(client.id, ActionClass.REPORT_SEND)
    headers = await enforce_rate_limit(limiter, subject)
    request.state.rate_limit_headers = headers

    async def action():
        return stored(await reports.send_report(agency, client))

    result = await cache.execute_once(subject, idempotency_key, action, payload={"clientId": client.id})
    return render_idempotent(result, headers)


@router.post("/api/reports/{client_id}/{filename}/signed-url")
async def create_signed_url(
    client_id: str,
    filename: str,
    ttl: Optional[str] = Query(None),
    agency: AgencyRecord = Depends(get_current_agency),
    credentials: CredentialStore = Depends(get_credential_store),
    authority: SignedUrlAuthority = Depends(get_signed_url_authority),
    settings: Settings = Depends(get_settings),
):
    resource = ResourcePath.validated(agency.agency_id, client_id, filename)
    await credentials.get_owned_client(agency, client_id)

    ttl_seconds = None
    if ttl is not None:
        try:
            ttl_seconds = int(ttl)
        except ValueError:
            raise InvalidRequest("TTL must be a positive integer", code="INVALID_TTL")

    signed = authority.mint(resource, ttl_seconds)
    url = authority.build_url(settings.base_url, resource, signed.token)
    return ok({
        "url": url,
        "signedUrl": url,
        "expiresAt": signed.expires_at_iso(),
        "ttl": signed.ttl,
    })


@router.get("/reports/{agency_id}/{client_id}/{filename}")
async def download_report(
    agency_id: str,
    client_id: str,
    filename: str,
    token: Optional[str] = Query(None),
    authority: SignedUrlAuthority = Depends(get_signed_url_authority),
    object_store: ObjectStore = Depends(get_object_store),
):
    """Serve a report artifact to the holder of a valid signed URL.

    Token errors are returned before any store access; a missing artifact is
    only reported for a token bound to this exact path.
    """
    if not token:
        raise TokenRequired()

    resource = ResourcePath(agency_id, client_id, filename)
    authority.verify(resource, token).raise_for_reason()

    artifact = await object_store.get(resource.canonical())
    if artifact is None:
        raise ArtifactNotFound()

    return Response(
        content=artifact.data,
        media_type="application/pdf",
        headers={
            "Content-Disposition": f'inline; filename="{filename}"',
            "Cache-Control": PDF_CACHE_CONTROL,
        },
    )
