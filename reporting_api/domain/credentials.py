"""Agency credentials, API key rotation and client ownership.

API keys are stored only as a peppered HMAC-SHA256 hash in
``{pepper_id}:{hex}`` form. The agency record's ``api_key_hash`` is the
single source of truth; the ``agency_api_key:{hash}`` reverse index only
speeds up lookup and is always re-validated against the record.

Rotation ordering:
1. write the new reverse-index entry,
2. compare-and-swap the record's hash (retry on a lost race),
3. delete the old reverse-index entry (failure tolerated).

A reverse-index entry whose hash does not match its record is never
deleted during lookup, since it may belong to a rotation between steps
1 and 2.
"""
import hashlib
import hmac
import json
import logging
import re
import secrets
import uuid
from datetime import datetime, timezone
from typing import Callable, List, Optional, Tuple

from reporting_api.domain.interfaces import KeyValueStore, ObjectStore
from reporting_api.domain.keys import (
    agency_clients_key,
    agency_key,
    api_key_lookup_key,
    client_key,
    integration_key,
)
from reporting_api.domain.models import AgencyRecord, ClientRecord, ReportSchedule
from reporting_api.errors import (
    AgencyNotFound,
    ClientNotFound,
    ConfigurationError,
    InvalidApiKey,
    InvalidRequest,
    StoreTransientError,
)
from reporting_api.settings import DEV_PEPPER

logger = logging.getLogger(__name__)

API_KEY_PREFIX = "rk_"
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
INDEX_MAX_ATTEMPTS = 10


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def require_fields(**fields: Optional[str]) -> None:
    missing = [name for name, value in fields.items() if not value or not str(value).strip()]
    if missing:
        raise InvalidRequest(
            f"Missing required fields: {', '.join(missing)}",
            code="MISSING_REQUIRED_FIELDS",
        )


def validate_email(email: str) -> None:
    if not EMAIL_RE.match(email):
        raise InvalidRequest("Invalid email format", code="INVALID_EMAIL")


class CredentialStore:
    """Agency and client records on top of a shared ``KeyValueStore``."""

    def __init__(
        self,
        kv: KeyValueStore,
        pepper: str = DEV_PEPPER,
        pepper_id: str = "p1",
        clock: Optional[Callable[[], datetime]] = None,
        max_rotation_attempts: int = 3,
        object_store: Optional[ObjectStore] = None,
        require_secure_pepper: bool = False,
    ):
        if require_secure_pepper and (not pepper or pepper == DEV_PEPPER):
            raise ConfigurationError("Production credential store must have a unique API key pepper")
        self.kv = kv
        self._pepper = pepper.encode()
        self._pepper_id = pepper_id
        self._clock = clock or _utcnow
        self.max_rotation_attempts = max(1, max_rotation_attempts)
        self.object_store = object_store

    # --- Keys ---

    def hash_key(self, raw_key: str) -> str:
        """Hash a raw API key using HMAC-SHA256 with pepper.

        Format: {pepper_id}:{hex_hash}
        """
        h = hmac.new(self._pepper, raw_key.encode(), hashlib.sha256)
        return f"{self._pepper_id}:{h.hexdigest()}"

    @staticmethod
    def generate_api_key() -> str:
        # 128 bits of randomness; collisions are not checked
        return API_KEY_PREFIX + secrets.token_urlsafe(16)

    # --- Agencies ---

    async def _read_agency(self, agency_id: str) -> Tuple[str, AgencyRecord]:
        raw = await self.kv.get(agency_key(agency_id))
        if raw is None:
            raise AgencyNotFound()
        return raw, AgencyRecord.model_validate_json(raw)

    async def get_agency(self, agency_id: str) -> AgencyRecord:
        _, record = await self._read_agency(agency_id)
        record.client_ids = await self._client_ids(agency_id)
        return record

    async def create_agency(self, name: str, billing_email: str) -> Tuple[AgencyRecord, str]:
        """Create an agency and return it with its API key. The key is not retrievable later."""
        require_fields(name=name, email=billing_email)
        validate_email(billing_email)

        now = self._clock()
        api_key = self.generate_api_key()
        record = AgencyRecord(
            agency_id=str(uuid.uuid4()),
            name=name.strip(),
            billing_email=billing_email.strip(),
            api_key_hash=self.hash_key(api_key),
            created_at=now,
            updated_at=now,
        )

        # Lookup entry first, same ordering as rotation
        await self.kv.put(api_key_lookup_key(record.api_key_hash), record.agency_id)
        await self.kv.put(agency_key(record.agency_id), record.model_dump_json())
        logger.info(f"Created agency {record.agency_id}")
        return record, api_key

    async def lookup(self, api_key: Optional[str]) -> AgencyRecord:
        """Resolve an API key to its agency or raise ``InvalidApiKey``."""
        if not api_key:
            raise InvalidApiKey()

        presented_hash = self.hash_key(api_key)
        agency_id = await self.kv.get(api_key_lookup_key(presented_hash))
        if agency_id is None:
            raise InvalidApiKey()

        raw = await self.kv.get(agency_key(agency_id))
        if raw is None:
            raise InvalidApiKey()
        record = AgencyRecord.model_validate_json(raw)

        if not hmac.compare_digest(record.api_key_hash, presented_hash):
            # Stale or in-flight entry; leave it for rotation to clean up
            logger.debug(f"Reverse index entry for agency {agency_id} does not match current credential")
            raise InvalidApiKey()
        return record

    async def rotate(self, agency_id: str) -> str:
        """Issue a new API key for the agency and invalidate the previous one."""
        for attempt in range(1, self.max_rotation_attempts + 1):
            raw, record = await self._read_agency(agency_id)

            new_key = self.generate_api_key()
            new_hash = self.hash_key(new_key)
            await self.kv.put(api_key_lookup_key(new_hash), agency_id)

            updated = record.model_copy(update={"api_key_hash": new_hash, "updated_at": self._clock()})
            if await self.kv.compare_and_swap(agency_key(agency_id), raw, updated.model_dump_json()):
                await self._discard_lookup(record.api_key_hash, agency_id)
                logger.info(f"Rotated API key for agency {agency_id} (attempt {attempt})")
                return new_key

            # A concurrent rotation won; our entry never became current
            logger.warning(f"CAS failure rotating key for agency {agency_id} (attempt {attempt})")
            await self._discard_lookup(new_hash, agency_id)

        raise StoreTransientError("Key rotation contended. Please retry.")

    async def _discard_lookup(self, key_hash: str, agency_id: str) -> None:
        try:
            await self.kv.compare_and_delete(api_key_lookup_key(key_hash), agency_id)
        except StoreTransientError as e:
            logger.warning(f"Failed to delete reverse index entry for agency {agency_id}: {e}")

    # --- Clients ---

    async def _client_ids(self, agency_id: str) -> List[str]:
        raw = await self.kv.get(agency_clients_key(agency_id))
        return json.loads(raw) if raw else []

    async def _update_index(self, agency_id: str, mutate: Callable[[List[str]], List[str]]) -> None:
        key = agency_clients_key(agency_id)
        for _ in range(INDEX_MAX_ATTEMPTS):
            raw = await self.kv.get(key)
            if raw is None:
                if await self.kv.put_if_absent(key, json.dumps(mutate([]))):
                    return
                continue
            if await self.kv.compare_and_swap(key, raw, json.dumps(mutate(json.loads(raw)))):
                return
        raise StoreTransientError("Client index contended. Please retry.")

    async def create_client(
        self,
        agency: AgencyRecord,
        name: str,
        email: str,
        brand_logo_url: Optional[str] = None,
        report_schedule: Optional[str] = None,
    ) -> ClientRecord:
        require_fields(name=name, email=email)
        validate_email(email)
        try:
            schedule = ReportSchedule(report_schedule or ReportSchedule.WEEKLY.value)
        except ValueError:
            raise InvalidRequest("Invalid report schedule", code="INVALID_SCHEDULE")

        client = ClientRecord(
            id=str(uuid.uuid4()),
            agency_id=agency.agency_id,
            name=name.strip(),
            email=email.strip(),
            brand_logo_url=brand_logo_url,
            report_schedule=schedule,
            created_at=self._clock(),
        )
        await self.save_client(client)
        await self._update_index(
            agency.agency_id,
            lambda ids: ids if client.id in ids else ids + [client.id],
        )
        return client

    async def save_client(self, client: ClientRecord) -> None:
        await self.kv.put(client_key(client.id), client.model_dump_json())

    async def mark_report_sent(self, client_id: str, sent_at: datetime) -> Optional[ClientRecord]:
        """Stamp ``last_report_sent_at``. Returns None if the client was deleted meanwhile."""
        key = client_key(client_id)
        for _ in range(INDEX_MAX_ATTEMPTS):
            raw = await self.kv.get(key)
            if raw is None:
                logger.info(f"Client {client_id} deleted before its report send was recorded")
                return None
            client = ClientRecord.model_validate_json(raw)
            client.last_report_sent_at = sent_at
            if await self.kv.compare_and_swap(key, raw, client.model_dump_json()):
                return client
        raise StoreTransientError("Client record contended. Please retry.")

    async def get_client(self, client_id: str) -> Optional[ClientRecord]:
        raw = await self.kv.get(client_key(client_id))
        if raw is None:
            return None
        return ClientRecord.model_validate_json(raw)

    async def get_owned_client(self, agency: AgencyRecord, client_id: str) -> ClientRecord:
        """Clients of other agencies are indistinguishable from missing ones."""
        client = await self.get_client(client_id)
        if client is None or client.agency_id != agency.agency_id:
            raise ClientNotFound()
        return client

    async def list_clients(self, agency: AgencyRecord) -> List[ClientRecord]:
        clients = []
        for client_id in await self._client_ids(agency.agency_id):
            client = await self.get_client(client_id)
            if client is not None and client.agency_id == agency.agency_id:
                clients.append(client)
        return clients

    async def delete_client(self, agency: AgencyRecord, client_id: str, cascade: bool = False) -> int:
        """Remove a client. Returns the number of stored objects deleted by the cascade."""
        client = await self.get_owned_client(agency, client_id)

        await self._update_index(agency.agency_id, lambda ids: [i for i in ids if i != client.id])
        await self.kv.delete(client_key(client.id))
        await self.kv.delete(integration_key(client.id))

        deleted = 0
        if cascade and self.object_store is not None:
            for prefix in (f"reports/{agency.agency_id}/{client.id}/", f"ga4-csv/{agency.agency_id}/{client.id}/"):
                deleted += await self.object_store.delete_prefix(prefix)
        logger.info(f"Deleted client {client.id} (objects removed: {deleted})")
        return deleted
