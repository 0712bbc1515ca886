"""Signed-URL authority for private report artifacts.

Token format: ``b64url(payload) "." b64url(HMAC-SHA256(payload))`` where
payload is ``reports/{agency_id}/{client_id}/{filename}\\n{exp}`` and both
segments are unpadded base64url. Verification is stateless.

Checks run in this order:
1. structure (segments must be canonical base64url, so no two texts decode
   to the same bytes),
2. MAC, constant time, against the current and previous secrets,
3. expiry (``exp <= now`` is expired),
4. bound path against the presented path.
"""
import base64
import binascii
import hashlib
import hmac
import logging
import re
import time
from datetime import datetime, timezone
from typing import Callable, Iterable, NamedTuple, Optional

from reporting_api.errors import ConfigurationError, InvalidRequest, TokenValidationError

logger = logging.getLogger(__name__)

TOKEN_INVALID = "PDF_TOKEN_INVALID"
TOKEN_EXPIRED = "PDF_TOKEN_EXPIRED"
TOKEN_MISMATCH = "PDF_TOKEN_MISMATCH"

ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
FILENAME_RE = re.compile(r"^[A-Za-z0-9_-]+\.pdf$")
TOKEN_RE = re.compile(r"^[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+$")
EXP_RE = re.compile(r"^(0|[1-9][0-9]*)$")

SIGNATURE_BYTES = hashlib.sha256().digest_size


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding = "=" * (-len(value) % 4)
    return base64.urlsafe_b64decode(value + padding)


class ResourcePath(NamedTuple):
    agency_id: str
    client_id: str
    filename: str

    @classmethod
    def validated(cls, agency_id: str, client_id: str, filename: str) -> "ResourcePath":
        """Build a path that is safe to sign. Raises ``InvalidRequest``."""
        if not agency_id or not client_id or not filename:
            raise InvalidRequest("Missing clientId or filename", code="MISSING_REQUIRED_FIELDS")
        if not filename.lower().endswith(".pdf"):
            raise InvalidRequest("Filename must end with .pdf", code="INVALID_FILE_TYPE")
        if not FILENAME_RE.match(filename):
            raise InvalidRequest("Filename contains invalid characters", code="INVALID_FILENAME")
        if not ID_RE.match(agency_id) or not ID_RE.match(client_id):
            raise InvalidRequest("Invalid resource identifier", code="INVALID_REQUEST")
        return cls(agency_id, client_id, filename)

    def canonical(self) -> str:
        return f"reports/{self.agency_id}/{self.client_id}/{self.filename}"


class SignedToken(NamedTuple):
    token: str
    expires_at: int  # Unix seconds
    ttl: int

    def expires_at_iso(self) -> str:
        return datetime.fromtimestamp(self.expires_at, tz=timezone.utc).isoformat().replace("+00:00", "Z")


class Verification(NamedTuple):
    valid: bool
    reason: Optional[str] = None

    def raise_for_reason(self) -> None:
        if not self.valid:
            raise TokenValidationError(self.reason or TOKEN_INVALID)


class _Decoded(NamedTuple):
    payload: bytes
    signature: bytes
    path: str
    exp: int


class SignedUrlAuthority:
    def __init__(
        self,
        secret: Optional[str],
        previous_secrets: Iterable[str] = (),
        default_ttl_seconds: int = 900,
        max_ttl_seconds: int = 3600,
        clock: Optional[Callable[[], float]] = None,
    ):
        if not secret:
            raise ConfigurationError("PDF signing not configured")
        self._secret = secret.encode("utf-8")
        # Accepted for verification only
        self._verify_secrets = [self._secret] + [s.encode("utf-8") for s in previous_secrets if s]
        self.default_ttl_seconds = default_ttl_seconds
        self.max_ttl_seconds = max_ttl_seconds
        self._clock = clock or time.time

    @staticmethod
    def _sign(secret: bytes, payload: bytes) -> bytes:
        return hmac.new(secret, payload, hashlib.sha256).digest()

    def resolve_ttl(self, ttl_seconds: Optional[int]) -> int:
        if ttl_seconds is None:
            return self.default_ttl_seconds
        if ttl_seconds < 1:
            raise InvalidRequest("TTL must be a positive integer", code="INVALID_TTL")
        return min(ttl_seconds, self.max_ttl_seconds)

    def mint(self, resource: ResourcePath, ttl_seconds: Optional[int] = None) -> SignedToken:
        ttl = self.resolve_ttl(ttl_seconds)
        exp = int(self._clock()) + ttl
        payload = f"{resource.canonical()}\n{exp}".encode("utf-8")
        token = f"{_b64url_encode(payload)}.{_b64url_encode(self._sign(self._secret, payload))}"
        return SignedToken(token=token, expires_at=exp, ttl=ttl)

    def _decode(self, token: str) -> Optional[_Decoded]:
        if not token or not TOKEN_RE.match(token):
            return None
        payload_b64, signature_b64 = token.split(".")
        try:
            payload = _b64url_decode(payload_b64)
            signature = _b64url_decode(signature_b64)
        except (binascii.Error, ValueError):
            return None
        # Reject texts that decode fine but are not the canonical encoding
        if _b64url_encode(payload) != payload_b64 or _b64url_encode(signature) != signature_b64:
            return None
        if len(signature) != SIGNATURE_BYTES:
            return None
        try:
            text = payload.decode("utf-8")
        except UnicodeDecodeError:
            return None
        parts = text.split("\n")
        if len(parts) != 2 or not parts[0] or not EXP_RE.match(parts[1]):
            return None
        return _Decoded(payload=payload, signature=signature, path=parts[0], exp=int(parts[1]))

    def verify(self, resource: ResourcePath, token: Optional[str], now: Optional[float] = None) -> Verification:
        decoded = self._decode(token or "")
        if decoded is None:
            return Verification(False, TOKEN_INVALID)

        # Try every accepted secret without short-circuiting
        matched = False
        for secret in self._verify_secrets:
            if hmac.compare_digest(self._sign(secret, decoded.payload), decoded.signature):
                matched = True
        if not matched:
            return Verification(False, TOKEN_INVALID)

        current = self._clock() if now is None else now
        if decoded.exp <= current:
            return Verification(False, TOKEN_EXPIRED)

        if not hmac.compare_digest(decoded.path.encode("utf-8"), resource.canonical().encode("utf-8")):
            return Verification(False, TOKEN_MISMATCH)

        return Verification(True)

    def build_url(self, base_url: str, resource: ResourcePath, token: str) -> str:
        return f"{base_url.rstrip('/')}/{resource.canonical()}?token={token}"
