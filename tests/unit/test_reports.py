"""Tests for GA4 CSV parsing, uploads and report sends."""
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.reports import (
    ArtifactReportSender,
    CsvFormatError,
    ReportService,
    aggregate_metrics,
    object_stamp,
    parse_ga4_csv,
)
from reporting_api.errors import InvalidRequest, PayloadTooLarge

SENT_AT = datetime(2025, 12, 19, 9, 30, 15, 123000, tzinfo=timezone.utc)

CSV = (
    "date,sessions,users,pageviews,page_path,page_views\n"
    "2025-12-02,100,70,250,/pricing,90\n"
    "2025-12-01,120,80,300,/home,150\n"
    "2025-12-03,90,60,200,/home,110\n"
)


@pytest.fixture
def credentials(kv, object_store):
    return CredentialStore(kv, pepper="test-pepper", object_store=object_store)


@pytest.fixture
def service(credentials, kv, object_store):
    return ReportService(
        credentials,
        kv,
        object_store,
        ArtifactReportSender(object_store),
        max_csv_bytes=1024,
        max_csv_rows=5,
        clock=lambda: SENT_AT,
    )


@pytest_asyncio.fixture
async def owned(credentials):
    agency, _ = await credentials.create_agency("Acme", "billing@acme.test")
    client = await credentials.create_client(agency, "Bakery", "owner@bakery.test")
    return agency, client


def test_parse_rows():
    rows = parse_ga4_csv(CSV)
    assert len(rows) == 3
    assert rows[0] == {
        "date": "2025-12-02",
        "sessions": 100,
        "users": 70,
        "pageviews": 250,
        "page_path": "/pricing",
        "page_views": 90,
    }


def test_parse_header_is_case_insensitive_and_optional_columns_default():
    rows = parse_ga4_csv("Date,Sessions,Users\n2025-12-01,5,3\n")
    assert rows == [{"date": "2025-12-01", "sessions": 5, "users": 3, "pageviews": 0}]


def test_parse_missing_columns():
    with pytest.raises(CsvFormatError) as exc:
        parse_ga4_csv("date,sessions\n2025-12-01,5\n")
    assert "users" in str(exc.value)

    with pytest.raises(CsvFormatError):
        parse_ga4_csv("date,sessions,users\n")


def test_parse_skips_malformed_rows():
    rows = parse_ga4_csv("date,sessions,users\n2025-12-01,5,3\n2025-12-02,7\n\n2025-12-03,x,4\n")
    assert [r["date"] for r in rows] == ["2025-12-01", "2025-12-03"]
    # Non-numeric values count as zero
    assert rows[1]["sessions"] == 0


def test_aggregate_metrics():
    metrics = aggregate_metrics(parse_ga4_csv(CSV))

    assert metrics.period_start == "2025-12-01"
    assert metrics.period_end == "2025-12-03"
    assert (metrics.sessions, metrics.users, metrics.pageviews) == (310, 210, 750)
    assert [(p.path, p.pageviews) for p in metrics.top_pages] == [("/home", 260), ("/pricing", 90)]


def test_aggregate_keeps_top_ten_pages():
    lines = ["date,sessions,users,page_path,page_views"]
    lines += [f"2025-12-01,1,1,/p{i},{i + 1}" for i in range(15)]
    metrics = aggregate_metrics(parse_ga4_csv("\n".join(lines)))

    assert len(metrics.top_pages) == 10
    assert metrics.top_pages[0].path == "/p14"
    assert metrics.top_pages[-1].path == "/p5"


def test_object_stamp():
    assert object_stamp(datetime(2025, 12, 19, tzinfo=timezone.utc)) == "2025-12-19T00-00-00-000Z"
    assert object_stamp(SENT_AT) == "2025-12-19T09-30-15-123Z"


@pytest.mark.asyncio
async def test_upload_stores_csv_and_integration(service, owned, object_store):
    agency, client = owned

    result = await service.upload_csv(agency, client, CSV.encode())

    assert result == {"uploadedAt": SENT_AT.isoformat(), "rowsProcessed": 3}
    config = await service.get_integration(client.id)
    assert config.ga4_csv_latest_key == f"ga4-csv/{agency.agency_id}/{client.id}/2025-12-19T09-30-15-123Z.csv"
    assert (await object_store.get(config.ga4_csv_latest_key)).data == CSV.encode()


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"", b"   \n", b"date,sessions\n1,2\n", b"\xff\xfe\x00"])
async def test_upload_rejects_invalid_csv(service, owned, content):
    agency, client = owned
    with pytest.raises(InvalidRequest) as exc:
        await service.upload_csv(agency, client, content)
    assert exc.value.code == "INVALID_CSV"


@pytest.mark.asyncio
async def test_upload_limits(service, owned):
    agency, client = owned

    with pytest.raises(PayloadTooLarge) as exc:
        await service.upload_csv(agency, client, b"date,sessions,users\n" + b"2025-12-01,1,1\n" * 100)
    assert exc.value.code == "CSV_TOO_LARGE"
    assert exc.value.status_code == 413

    with pytest.raises(PayloadTooLarge) as exc:
        await service.upload_csv(agency, client, b"date,sessions,users\n" + b"2025-12-01,1,1\n" * 6)
    assert exc.value.code == "CSV_TOO_MANY_ROWS"


@pytest.mark.asyncio
async def test_send_without_data(service, owned):
    agency, client = owned
    with pytest.raises(InvalidRequest) as exc:
        await service.send_report(agency, client)
    assert exc.value.code == "NO_DATA"
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_send_stores_pdf_and_stamps_client(service, owned, credentials, object_store):
    agency, client = owned
    await service.upload_csv(agency, client, CSV.encode())

    result = await service.send_report(agency, client)

    pdf_key = f"reports/{agency.agency_id}/{client.id}/2025-12-19T09-30-15-123Z.pdf"
    assert result == {
        "clientId": client.id,
        "sentTo": "owner@bakery.test",
        "pdfKey": pdf_key,
        "sentAt": SENT_AT.isoformat(),
    }
    stored = await object_store.get(pdf_key)
    assert stored.content_type == "application/pdf"
    assert stored.data.startswith(b"%PDF-1.4")
    assert stored.data.rstrip().endswith(b"%%EOF")
    assert (await credentials.get_client(client.id)).last_report_sent_at == SENT_AT


@pytest.mark.asyncio
async def test_send_does_not_recreate_client_deleted_mid_send(credentials, kv, object_store, owned):
    agency, client = owned

    class DeletingSender(ArtifactReportSender):
        async def send(self, agency, client, metrics, sent_at):
            receipt = await super().send(agency, client, metrics, sent_at)
            await credentials.delete_client(agency, client.id)
            return receipt

    service = ReportService(credentials, kv, object_store, DeletingSender(object_store), clock=lambda: SENT_AT)
    await service.upload_csv(agency, client, CSV.encode())

    result = await service.send_report(agency, client)

    assert result["clientId"] == client.id
    assert await credentials.get_client(client.id) is None
    assert await credentials.mark_report_sent(client.id, SENT_AT) is None
