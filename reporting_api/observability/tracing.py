from opentelemetry.sdk.trace import SpanProcessor, ReadableSpan
import re


class RedactingSpanProcessor(SpanProcessor):
    """
    SpanProcessor that redacts credentials from spans before they are exported.
    """
    def __init__(self, processor: SpanProcessor):
        self._processor = processor
        self._sensitive_keys = {
            "authorization", "cookie", "set-cookie",
            "x-api-key", "x-admin-secret", "idempotency-key",
        }
        self._sensitive_patterns = [
            re.compile(r"http\.request\.header\..*", re.IGNORECASE),
            re.compile(r"http\.response\.header\..*", re.IGNORECASE),
            re.compile(r".*(signature|token|secret|api_key|apikey|pepper).*", re.IGNORECASE)
        ]
        # URLs keep their path but lose signed-URL tokens
        self._query_token = re.compile(r"([?&]token=)[^&]+")

    def on_start(self, span, parent_context=None) -> None:
        self._processor.on_start(span, parent_context)

    def on_end(self, span: ReadableSpan) -> None:
        if not span.attributes:
            self._processor.on_end(span)
            return

        new_attributes = {}
        for key, value in span.attributes.items():
            if self._should_redact(key):
                new_attributes[key] = "[REDACTED]"
            elif isinstance(value, str) and "token=" in value:
                new_attributes[key] = self._query_token.sub(r"\1[REDACTED]", value)
            else:
                new_attributes[key] = value

        # ReadableSpan is immutable after end(); rewrite the backing store before delegating
        if hasattr(span, "_attributes"):
            span._attributes = new_attributes

        self._processor.on_end(span)

    def shutdown(self) -> None:
        self._processor.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        return self._processor.force_flush(timeout_millis)

    def _should_redact(self, key: str) -> bool:
        key_lower = key.lower()
        if key_lower in self._sensitive_keys:
            return True
        for pattern in self._sensitive_patterns:
            if pattern.match(key_lower):
                return True
        return False
