import logging
from unittest.mock import MagicMock

from opentelemetry.sdk.trace import ReadableSpan, SpanProcessor

from reporting_api.logging_hardening import SecretRedactionFilter, redact
from reporting_api.observability.tracing import RedactingSpanProcessor


def _record(msg, *args):
    return logging.LogRecord("test", logging.INFO, __file__, 1, msg, args, None)


def test_redact_patterns():
    assert "rk_abcdefgh12345" not in redact("issued rk_abcdefgh12345 to agency")
    assert redact("x-admin-secret: hunter2") == "x-admin-secret: [REDACTED]"
    assert redact("{'x-api-key': 'rk_live'}") == "{'x-api-key': '[REDACTED]'}"
    assert redact("GET /reports/a/c/r.pdf?token=abc.def 200") == "GET /reports/a/c/r.pdf?token=[REDACTED] 200"
    assert redact('{"newApiKey": "rk_whatever"}') == '{"newApiKey": "[REDACTED]"}'
    assert redact("nothing to see") == "nothing to see"


def test_filter_redacts_message_and_args():
    f = SecretRedactionFilter()
    record = _record("rotated key %s for %s", "rk_supersecretvalue", "agency-1")

    assert f.filter(record) is True
    assert "rk_supersecretvalue" not in record.getMessage()
    assert "agency-1" in record.getMessage()


def test_filter_ignores_non_string_messages():
    f = SecretRedactionFilter()
    record = _record({"x-api-key": "rk_supersecretvalue"})
    assert f.filter(record) is True
    assert record.msg == {"x-api-key": "rk_supersecretvalue"}


def test_span_processor_redacts_credentials():
    """Verify RedactingSpanProcessor scrubs credential attributes before export."""
    inner = MagicMock(spec=SpanProcessor)
    processor = RedactingSpanProcessor(inner)

    mock_span = MagicMock(spec=ReadableSpan)
    mock_span.attributes = {
        "http.request.header.x-api-key": "rk_supersecretvalue",
        "x-admin-secret": "hunter2",
        "idempotency-key": "tok-1",
        "http.url": "https://api.example.test/reports/a/c/r.pdf?token=abc.def",
        "http.route": "/reports/{agency_id}/{client_id}/{filename}",
        "http.status_code": 200,
    }
    mock_span._attributes = mock_span.attributes.copy()

    processor.on_end(mock_span)

    assert mock_span._attributes["http.request.header.x-api-key"] == "[REDACTED]"
    assert mock_span._attributes["x-admin-secret"] == "[REDACTED]"
    assert mock_span._attributes["idempotency-key"] == "[REDACTED]"
    assert mock_span._attributes["http.url"] == "https://api.example.test/reports/a/c/r.pdf?token=[REDACTED]"
    assert mock_span._attributes["http.route"] == "/reports/{agency_id}/{client_id}/{filename}"
    assert mock_span._attributes["http.status_code"] == 200
    inner.on_end.assert_called_once_with(mock_span)


def test_span_processor_delegates_lifecycle():
    inner = MagicMock(spec=SpanProcessor)
    inner.force_flush.return_value = True
    processor = RedactingSpanProcessor(inner)

    assert processor.force_flush(100) is True
    processor.shutdown()

    inner.force_flush.assert_called_once_with(100)
    inner.shutdown.assert_called_once()
