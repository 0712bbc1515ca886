"""Dependency Injection Module.

Backing stores are process-wide singletons. Services are cheap wrappers
built per request from them, so tests can override any layer through
``app.dependency_overrides``.
"""
import logging
from typing import Optional

from fastapi import Depends

from reporting_api.adapters.memory_store.stores import MemoryKeyValueStore, MemoryObjectStore
from reporting_api.adapters.object_store.local import LocalObjectStore
from reporting_api.adapters.redis.client import get_redis
from reporting_api.adapters.redis.stores import RedisKeyValueStore
from reporting_api.core.rate_limiter import (
    MemoryRateLimitStorage,
    RateLimiter,
    RateLimitStorage,
    RedisRateLimitStorage,
)
from reporting_api.domain.credentials import CredentialStore
from reporting_api.domain.idempotency import IdempotencyCache
from reporting_api.domain.interfaces import KeyValueStore, ObjectStore
from reporting_api.domain.models import ActionClass
from reporting_api.domain.reports import ArtifactReportSender, ReportSender, ReportService
from reporting_api.domain.signed_url import SignedUrlAuthority
from reporting_api.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# --- Singletons ---
_kv_store: Optional[KeyValueStore] = None
_object_store: Optional[ObjectStore] = None
_rate_limit_storage: Optional[RateLimitStorage] = None


def reset_dependencies() -> None:
    """Drop cached singletons (tests and CLI reconfiguration)."""
    global _kv_store, _object_store, _rate_limit_storage
    _kv_store = None
    _object_store = None
    _rate_limit_storage = None


async def get_kv_store() -> KeyValueStore:
    global _kv_store
    if _kv_store is None:
        settings = get_settings()
        if settings.store_backend.lower() == "redis":
            _kv_store = RedisKeyValueStore(await get_redis())
        else:
            if settings.is_prod:
                logger.warning("Using in-memory key-value store in prod mode")
            _kv_store = MemoryKeyValueStore()
    return _kv_store


def get_object_store() -> ObjectStore:
    global _object_store
    if _object_store is None:
        settings = get_settings()
        if settings.object_store_path:
            _object_store = LocalObjectStore(settings.object_store_path)
        else:
            _object_store = MemoryObjectStore()
    return _object_store


async def get_rate_limit_storage() -> RateLimitStorage:
    global _rate_limit_storage
    if _rate_limit_storage is None:
        if get_settings().store_backend.lower() == "redis":
            _rate_limit_storage = RedisRateLimitStorage(await get_redis())
        else:
            _rate_limit_storage = MemoryRateLimitStorage()
    return _rate_limit_storage


# --- Services ---

def get_credential_store(
    kv: KeyValueStore = Depends(get_kv_store),
    object_store: ObjectStore = Depends(get_object_store),
    settings: Settings = Depends(get_settings),
) -> CredentialStore:
    return CredentialStore(
        kv,
        pepper=settings.api_key_pepper,
        pepper_id=settings.api_key_pepper_id,
        max_rotation_attempts=settings.rotation_max_attempts,
        object_store=object_store,
        require_secure_pepper=settings.is_prod,
    )


def get_rate_limiter(
    storage: RateLimitStorage = Depends(get_rate_limit_storage),
    settings: Settings = Depends(get_settings),
) -> RateLimiter:
    return RateLimiter(
        storage,
        limits={
            ActionClass.REPORT_SEND: settings.report_send_limit,
            ActionClass.CSV_UPLOAD: settings.csv_upload_limit,
            ActionClass.REGISTRATION: settings.registration_limit,
        },
        window_seconds=settings.rate_limit_window_seconds,
        enabled=settings.rate_limit_enabled,
        # Prod always fails closed
        fail_open=settings.rate_limit_dev_fail_open and not settings.is_prod,
    )


def get_idempotency_cache(
    kv: KeyValueStore = Depends(get_kv_store),
    settings: Settings = Depends(get_settings),
) -> IdempotencyCache:
    return IdempotencyCache(
        kv,
        ttl_seconds=settings.idempotency_ttl_seconds,
        lock_ttl_seconds=settings.idempotency_lock_ttl_seconds,
        wait_timeout_seconds=settings.idempotency_wait_timeout_seconds,
        poll_interval_seconds=settings.idempotency_poll_interval_seconds,
    )


def get_signed_url_authority(settings: Settings = Depends(get_settings)) -> SignedUrlAuthority:
    """Raises ``ConfigurationError`` (500) when no signing secret is configured."""
    return SignedUrlAuthority(
        settings.pdf_signing_secret,
        previous_secrets=settings.pdf_signing_previous_secrets,
        default_ttl_seconds=settings.signed_url_default_ttl_seconds,
        max_ttl_seconds=settings.signed_url_max_ttl_seconds,
    )


def get_report_sender(object_store: ObjectStore = Depends(get_object_store)) -> ReportSender:
    return ArtifactReportSender(object_store)


def get_report_service(
    credentials: CredentialStore = Depends(get_credential_store),
    kv: KeyValueStore = Depends(get_kv_store),
    object_store: ObjectStore = Depends(get_object_store),
    sender: ReportSender = Depends(get_report_sender),
    settings: Settings = Depends(get_settings),
) -> ReportService:
    return ReportService(
        credentials,
        kv,
        object_store,
        sender,
        max_csv_bytes=settings.max_csv_bytes,
        max_csv_rows=settings.max_csv_rows,
    )
