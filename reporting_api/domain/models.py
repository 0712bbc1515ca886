"""Domain records shared by the credential store, limiter and caches."""
from enum import Enum
from typing import Any, Dict, List, NamedTuple, Optional
from datetime import datetime

from pydantic import BaseModel, Field


class AgencyRecord(BaseModel):
    agency_id: str
    name: str
    billing_email: str
    # Peppered HMAC of the current API key; the raw key is never persisted
    api_key_hash: str
    created_at: datetime
    updated_at: datetime
    client_ids: List[str] = Field(default_factory=list, exclude=True)

    def public_view(self) -> Dict[str, Any]:
        return {
            "id": self.agency_id,
            "name": self.name,
            "billingEmail": self.billing_email,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "clientIds": list(self.client_ids),
        }


class ReportSchedule(str, Enum):
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"


class ClientRecord(BaseModel):
    id: str
    agency_id: str
    name: str
    email: str
    brand_logo_url: Optional[str] = None
    report_schedule: ReportSchedule = ReportSchedule.WEEKLY
    created_at: datetime
    last_report_sent_at: Optional[datetime] = None

    def public_view(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agencyId": self.agency_id,
            "name": self.name,
            "email": self.email,
            "brandLogoUrl": self.brand_logo_url,
            "reportSchedule": self.report_schedule.value,
            "createdAt": self.created_at.isoformat(),
            "lastReportSentAt": self.last_report_sent_at.isoformat() if self.last_report_sent_at else None,
        }


class ActionClass(str, Enum):
    REPORT_SEND = "report_send"
    CSV_UPLOAD = "csv_upload"
    REGISTRATION = "registration"


class SubjectKey(NamedTuple):
    """Who is acting and which quota the action draws from."""
    client_id: str
    action_class: ActionClass


class RateLimitResult(BaseModel):
    allowed: bool
    limit: int
    remaining: int
    reset_at: int  # Unix seconds

    def headers(self) -> Dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at)
        }


class StoredResponse(BaseModel):
    status_code: int
    body: Dict[str, Any]


class IdempotencyState(str, Enum):
    PENDING = "pending"
    COMPLETE = "complete"


class IdempotencyRecord(BaseModel):
    token: str
    client_id: str
    action_class: ActionClass
    request_hash: str
    state: IdempotencyState
    owner: str
    response: Optional[StoredResponse] = None
    created_at: float
    ttl_seconds: int


class IntegrationConfig(BaseModel):
    client_id: str
    ga4_csv_latest_key: Optional[str] = None
    ga4_csv_uploaded_at: Optional[datetime] = None


class TopPage(BaseModel):
    path: str
    pageviews: int


class ReportMetrics(BaseModel):
    period_start: str
    period_end: str
    sessions: int
    users: int
    pageviews: int
    top_pages: List[TopPage] = Field(default_factory=list)
