"""GA4 CSV uploads and report delivery."""
import abc
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.interfaces import KeyValueStore, ObjectStore
from reporting_api.domain.keys import csv_object_key, integration_key, report_object_key
from reporting_api.domain.models import (
    AgencyRecord,
    ClientRecord,
    IntegrationConfig,
    ReportMetrics,
    TopPage,
)
from reporting_api.errors import InvalidRequest, PayloadTooLarge

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ("date", "sessions", "users")
TOP_PAGES_LIMIT = 10


class CsvFormatError(ValueError):
    pass


def _to_int(value: str) -> int:
    try:
        return int(value)
    except ValueError:
        return 0


def parse_ga4_csv(content: str) -> List[Dict[str, Any]]:
    """Parse GA4 export rows.

    Required columns: date, sessions, users
    Optional columns: pageviews, page_path, page_views
    """
    lines = content.strip().split("\n")
    if len(lines) < 2:
        raise CsvFormatError("CSV must contain header row and at least one data row")

    header = [h.strip().lower() for h in lines[0].split(",")]
    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        raise CsvFormatError(
            f"Missing required CSV columns: {', '.join(missing)}. "
            f"Required columns are: {', '.join(REQUIRED_COLUMNS)}"
        )

    rows = []
    for i, line in enumerate(lines[1:], start=1):
        line = line.strip()
        if not line:
            continue
        values = [v.strip() for v in line.split(",")]
        if len(values) != len(header):
            logger.warning(f"Skipping malformed row {i}: column count mismatch")
            continue

        record = dict(zip(header, values))
        row: Dict[str, Any] = {
            "date": record["date"],
            "sessions": _to_int(record["sessions"]),
            "users": _to_int(record["users"]),
            "pageviews": _to_int(record.get("pageviews", "0")),
        }
        if "page_path" in record:
            row["page_path"] = record["page_path"]
        if "page_views" in record:
            row["page_views"] = _to_int(record["page_views"])
        rows.append(row)

    return rows


def aggregate_metrics(rows: List[Dict[str, Any]]) -> ReportMetrics:
    if not rows:
        raise CsvFormatError("No data to aggregate")

    dates = sorted(row["date"] for row in rows)

    pages: Dict[str, int] = {}
    for row in rows:
        if row.get("page_path") and row.get("page_views"):
            pages[row["page_path"]] = pages.get(row["page_path"], 0) + row["page_views"]

    top_pages = sorted(pages.items(), key=lambda item: item[1], reverse=True)[:TOP_PAGES_LIMIT]

    return ReportMetrics(
        period_start=dates[0],
        period_end=dates[-1],
        sessions=sum(row["sessions"] for row in rows),
        users=sum(row["users"] for row in rows),
        pageviews=sum(row["pageviews"] for row in rows),
        top_pages=[TopPage(path=path, pageviews=views) for path, views in top_pages],
    )


def object_stamp(moment: datetime) -> str:
    """ISO timestamp safe for object keys, e.g. 2025-12-19T00-00-00-000Z."""
    iso = moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"
    return iso.replace(":", "-").replace(".", "-")


def render_summary_pdf(client: ClientRecord, metrics: ReportMetrics) -> bytes:
    """Minimal single-page PDF summary. Full rendering happens downstream."""
    lines = [
        f"Report for {client.name}",
        f"Period: {metrics.period_start} to {metrics.period_end}",
        f"Sessions: {metrics.sessions}  Users: {metrics.users}  Pageviews: {metrics.pageviews}",
    ] + [f"{page.path}: {page.pageviews}" for page in metrics.top_pages]

    def escape(text: str) -> str:
        return text.replace("\\", "\\\\").replace("(", "\\(").replace(")", "\\)")

    stream = "BT /F1 12 Tf 72 720 Td 16 TL " + " ".join(f"({escape(l)}) '" for l in lines) + " ET"
    objects = [
        "<< /Type /Catalog /Pages 2 0 R >>",
        "<< /Type /Pages /Kids [3 0 R] /Count 1 >>",
        "<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] /Contents 4 0 R "
        "/Resources << /Font << /F1 5 0 R >> >> >>",
        f"<< /Length {len(stream.encode('latin-1', 'replace'))} >>\nstream\n{stream}\nendstream",
        "<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>",
    ]

    out = b"%PDF-1.4\n"
    offsets = []
    for number, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{number} 0 obj\n{body}\nendobj\n".encode("latin-1", "replace")
    xref_at = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_at}\n%%EOF\n".encode()
    return out


class SendReceipt(NamedTuple):
    pdf_key: str
    sent_to: str


class ReportSender(abc.ABC):
    """Port for rendering and delivering a report."""

    @abc.abstractmethod
    async def send(self, agency: AgencyRecord, client: ClientRecord, metrics: ReportMetrics, sent_at: datetime) -> SendReceipt:
        pass


class ArtifactReportSender(ReportSender):
    """Stores the rendered PDF; email delivery is handled outside this service."""

    def __init__(self, object_store: ObjectStore, renderer: Optional[Callable[[ClientRecord, ReportMetrics], bytes]] = None):
        self.object_store = object_store
        self.renderer = renderer or render_summary_pdf

    async def send(self, agency: AgencyRecord, client: ClientRecord, metrics: ReportMetrics, sent_at: datetime) -> SendReceipt:
        key = report_object_key(agency.agency_id, client.id, f"{object_stamp(sent_at)}.pdf")
        await self.object_store.put(key, self.renderer(client, metrics), "application/pdf")
        logger.info(f"Stored report artifact for client {client.id}")
        return SendReceipt(pdf_key=key, sent_to=client.email)


class ReportService:
    def __init__(
        self,
        credentials: CredentialStore,
        kv: KeyValueStore,
        object_store: ObjectStore,
        sender: ReportSender,
        max_csv_bytes: int = 5 * 1024 * 1024,
        max_csv_rows: int = 100_000,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.credentials = credentials
        self.kv = kv
        self.object_store = object_store
        self.sender = sender
        self.max_csv_bytes = max_csv_bytes
        self.max_csv_rows = max_csv_rows
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def get_integration(self, client_id: str) -> Optional[IntegrationConfig]:
        raw = await self.kv.get(integration_key(client_id))
        if raw is None:
            return None
        return IntegrationConfig.model_validate_json(raw)

    async def upload_csv(self, agency: AgencyRecord, client: ClientRecord, content: bytes) -> Dict[str, Any]:
        if not content or not content.strip():
            raise InvalidRequest("Empty CSV content", code="INVALID_CSV")

        if len(content) > self.max_csv_bytes:
            raise PayloadTooLarge(
                f"CSV file exceeds maximum size of {self.max_csv_bytes / 1024 / 1024:g}MB "
                f"(actual: {len(content) / 1024 / 1024:.2f}MB)",
                code="CSV_TOO_LARGE",
            )

        try:
            rows = parse_ga4_csv(content.decode("utf-8"))
        except UnicodeDecodeError:
            raise InvalidRequest("CSV must be UTF-8 encoded", code="INVALID_CSV")
        except CsvFormatError as e:
            raise InvalidRequest(str(e), code="INVALID_CSV")

        if not rows:
            raise InvalidRequest("No valid rows found in CSV", code="INVALID_CSV")
        if len(rows) > self.max_csv_rows:
            raise PayloadTooLarge(
                f"CSV file exceeds maximum row count of {self.max_csv_rows} (actual: {len(rows)})",
                code="CSV_TOO_MANY_ROWS",
            )

        uploaded_at = self._clock()
        key = csv_object_key(agency.agency_id, client.id, object_stamp(uploaded_at))
        await self.object_store.put(key, content, "text/csv")

        config = IntegrationConfig(client_id=client.id, ga4_csv_latest_key=key, ga4_csv_uploaded_at=uploaded_at)
        await self.kv.put(integration_key(client.id), config.model_dump_json())
        logger.info(f"Stored GA4 CSV for client {client.id} ({len(rows)} rows)")

        return {
            "uploadedAt": uploaded_at.isoformat(),
            "rowsProcessed": len(rows),
        }

    async def send_report(self, agency: AgencyRecord, client: ClientRecord) -> Dict[str, Any]:
        config = await self.get_integration(client.id)
        stored = None
        if config and config.ga4_csv_latest_key:
            stored = await self.object_store.get(config.ga4_csv_latest_key)
        if stored is None:
            raise InvalidRequest(
                "No GA4 data uploaded for this client. Upload a CSV first.",
                code="NO_DATA",
                status_code=404,
            )

        try:
            metrics = aggregate_metrics(parse_ga4_csv(stored.data.decode("utf-8")))
        except (CsvFormatError, UnicodeDecodeError):
            raise InvalidRequest("Stored GA4 data is unreadable. Upload a new CSV.", code="NO_DATA", status_code=404)

        sent_at = self._clock()
        receipt = await self.sender.send(agency, client, metrics, sent_at)

        await self.credentials.mark_report_sent(client.id, sent_at)

        return {
            "clientId": client.id,
            "sentTo": receipt.sent_to,
            "pdfKey": receipt.pdf_key,
            "sentAt": sent_at.isoformat(),
        }
