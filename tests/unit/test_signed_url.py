"""Tests for SignedUrlAuthority minting and verification."""
import pytest

from reporting_api.domain.signed_url import (
    TOKEN_EXPIRED,
    TOKEN_INVALID,
    TOKEN_MISMATCH,
    ResourcePath,
    SignedUrlAuthority,
)
from reporting_api.errors import ConfigurationError, InvalidRequest, TokenValidationError

RESOURCE = ResourcePath("agency-1", "client-1", "2025-12-19T00-00-00-000Z.pdf")
B64URL_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_"


@pytest.fixture
def authority(clock):
    return SignedUrlAuthority("signing-secret", clock=clock)


def test_requires_secret():
    for secret in (None, ""):
        with pytest.raises(ConfigurationError):
            SignedUrlAuthority(secret)


def test_valid_token(authority, clock):
    signed = authority.mint(RESOURCE)

    assert signed.ttl == 900
    assert signed.expires_at == int(clock.now) + 900
    assert authority.verify(RESOURCE, signed.token).valid is True


def test_expiry_boundary(authority, clock):
    signed = authority.mint(RESOURCE, 60)

    assert authority.verify(RESOURCE, signed.token, now=signed.expires_at - 1).valid is True
    # exp <= now is expired
    result = authority.verify(RESOURCE, signed.token, now=signed.expires_at)
    assert result == (False, TOKEN_EXPIRED)

    clock.advance(61)
    assert authority.verify(RESOURCE, signed.token).reason == TOKEN_EXPIRED


def test_path_mismatch(authority):
    signed = authority.mint(RESOURCE)

    for other in (
        ResourcePath("agency-2", "client-1", RESOURCE.filename),
        ResourcePath("agency-1", "client-2", RESOURCE.filename),
        ResourcePath("agency-1", "client-1", "other.pdf"),
    ):
        assert authority.verify(other, signed.token) == (False, TOKEN_MISMATCH)


def test_expired_is_reported_before_mismatch(authority):
    signed = authority.mint(RESOURCE, 60)
    other = ResourcePath("agency-2", "client-1", RESOURCE.filename)
    assert authority.verify(other, signed.token, now=signed.expires_at + 1).reason == TOKEN_EXPIRED


def test_every_signature_mutation_is_invalid(authority):
    token = authority.mint(RESOURCE).token
    payload, signature = token.split(".")

    for i, original in enumerate(signature):
        for replacement in B64URL_ALPHABET:
            if replacement == original:
                continue
            mutated = f"{payload}.{signature[:i]}{replacement}{signature[i + 1:]}"
            assert authority.verify(RESOURCE, mutated) == (False, TOKEN_INVALID), mutated


def test_payload_tampering_is_invalid(authority):
    token = authority.mint(RESOURCE).token
    payload, signature = token.split(".")
    flipped = ("B" if payload[0] == "A" else "A") + payload[1:]
    assert authority.verify(RESOURCE, f"{flipped}.{signature}").reason == TOKEN_INVALID


@pytest.mark.parametrize("token", [
    None,
    "",
    "no-dot",
    "a.b.c",
    "a b.c",
    "abc=.def",
    ".",
])
def test_malformed_tokens(authority, token):
    assert authority.verify(RESOURCE, token) == (False, TOKEN_INVALID)


def test_token_from_other_secret_is_invalid(authority, clock):
    other = SignedUrlAuthority("other-secret", clock=clock)
    token = other.mint(RESOURCE).token
    assert authority.verify(RESOURCE, token).reason == TOKEN_INVALID


def test_previous_secret_still_verifies(clock):
    old = SignedUrlAuthority("old-secret", clock=clock)
    token = old.mint(RESOURCE).token

    rotated = SignedUrlAuthority("new-secret", previous_secrets=["old-secret"], clock=clock)
    assert rotated.verify(RESOURCE, token).valid is True

    # New tokens are signed with the current secret only
    fresh = rotated.mint(RESOURCE).token
    assert old.verify(RESOURCE, fresh).reason == TOKEN_INVALID


def test_ttl_resolution(authority):
    assert authority.resolve_ttl(None) == 900
    assert authority.resolve_ttl(30) == 30
    assert authority.resolve_ttl(86400) == 3600

    for bad in (0, -5):
        with pytest.raises(InvalidRequest) as exc:
            authority.resolve_ttl(bad)
        assert exc.value.code == "INVALID_TTL"


def test_capped_ttl_is_reported(authority, clock):
    signed = authority.mint(RESOURCE, 7200)
    assert signed.ttl == 3600
    assert signed.expires_at == int(clock.now) + 3600


@pytest.mark.parametrize("filename,code", [
    ("report.txt", "INVALID_FILE_TYPE"),
    ("../secret.pdf", "INVALID_FILENAME"),
    ("a b.pdf", "INVALID_FILENAME"),
    ("", "MISSING_REQUIRED_FIELDS"),
])
def test_resource_validation(filename, code):
    with pytest.raises(InvalidRequest) as exc:
        ResourcePath.validated("agency-1", "client-1", filename)
    assert exc.value.code == code


def test_resource_validation_rejects_bad_ids():
    with pytest.raises(InvalidRequest):
        ResourcePath.validated("agency/1", "client-1", "r.pdf")


def test_build_url(authority):
    signed = authority.mint(RESOURCE)
    url = authority.build_url("https://reports.example.test/", RESOURCE, signed.token)
    assert url == (
        "https://reports.example.test/reports/agency-1/client-1/"
        f"2025-12-19T00-00-00-000Z.pdf?token={signed.token}"
    )


def test_expires_at_iso(authority):
    signed = authority.mint(RESOURCE)._replace(expires_at=1766102400)
    assert signed.expires_at_iso() == "2025-12-19T00:00:00Z"


def test_raise_for_reason(authority):
    result = authority.verify(RESOURCE, "garbage")
    with pytest.raises(TokenValidationError) as exc:
        result.raise_for_reason()
    assert exc.value.code == TOKEN_INVALID
    assert exc.value.status_code == 403
