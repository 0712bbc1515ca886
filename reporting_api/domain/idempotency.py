"""Idempotent execution of mutating requests.

A request carrying an idempotency token is executed at most once per
(subject, token) while its record is retained. The first caller claims the
token with a ``pending`` marker (create-if-absent), runs the action and then
swaps the marker for the ``complete`` record. Later callers get the stored
response back with ``replayed=True``; callers arriving while the marker is
pending wait for it to complete.

The marker carries a lease of ``lock_ttl_seconds`` that the owner renews
while the action runs, so a slow action keeps its claim. Callers in the
same process also see the owner's in-flight set and never re-claim a token
whose action is still running, even if the lease lapsed.
"""
import asyncio
import logging
import time
import uuid
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Set, Tuple

from reporting_api.domain.interfaces import KeyValueStore
from reporting_api.domain.keys import idempotency_key
from reporting_api.domain.models import IdempotencyRecord, IdempotencyState, StoredResponse, SubjectKey
from reporting_api.errors import (
    IdempotencyCheckFailed,
    IdempotencyKeyReuseMismatch,
    ReportingError,
    StoreTransientError,
)
from reporting_api.utils.canonical import payload_hash

logger = logging.getLogger(__name__)

Action = Callable[[], Awaitable[StoredResponse]]


class IdempotentResult(NamedTuple):
    response: StoredResponse
    replayed: bool


class IdempotencyCache:
    # (store identity, key) pairs whose action is running in this process
    _in_flight: Set[Tuple[int, str]] = set()

    def __init__(
        self,
        kv: KeyValueStore,
        ttl_seconds: int = 86400,
        lock_ttl_seconds: int = 60,
        wait_timeout_seconds: float = 10.0,
        poll_interval_seconds: float = 0.1,
        clock: Optional[Callable[[], float]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        self.kv = kv
        self.ttl_seconds = ttl_seconds
        self.lock_ttl_seconds = lock_ttl_seconds
        self.wait_timeout_seconds = wait_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self._clock = clock or time.time
        self._sleep = sleep or asyncio.sleep

    async def execute_once(
        self,
        subject: SubjectKey,
        token: Optional[str],
        action: Action,
        payload: Any = None,
    ) -> IdempotentResult:
        """Run ``action`` unless a completed result for ``token`` already exists.

        Without a token the action always runs. Replayable ``ReportingError``
        outcomes are stored and re-raised; transient and unexpected failures
        release the claim so a retry executes again.
        """
        if not token:
            return IdempotentResult(await action(), False)

        key = idempotency_key(subject, token)
        request_hash = payload_hash(payload)
        deadline = self._clock() + self.wait_timeout_seconds

        while True:
            raw = await self._guarded(self.kv.get(key))

            if raw is None and self._marker(key) not in self._in_flight:
                pending = IdempotencyRecord(
                    token=token,
                    client_id=subject.client_id,
                    action_class=subject.action_class,
                    request_hash=request_hash,
                    state=IdempotencyState.PENDING,
                    owner=uuid.uuid4().hex,
                    created_at=self._clock(),
                    ttl_seconds=self.lock_ttl_seconds,
                )
                pending_raw = pending.model_dump_json()
                claimed = await self._guarded(
                    self.kv.put_if_absent(key, pending_raw, ttl_seconds=self.lock_ttl_seconds)
                )
                if claimed:
                    marker = self._marker(key)
                    self._in_flight.add(marker)
                    try:
                        return await self._execute(key, pending, pending_raw, action)
                    finally:
                        self._in_flight.discard(marker)
                # Lost the claim race; re-read the winner's record
                continue

            if raw is not None:
                record = IdempotencyRecord.model_validate_json(raw)
                if record.request_hash != request_hash:
                    raise IdempotencyKeyReuseMismatch()

                if record.state == IdempotencyState.COMPLETE and record.response is not None:
                    logger.info(f"Replaying {subject.action_class.value} for client {subject.client_id}")
                    return IdempotentResult(record.response, True)

            if self._clock() >= deadline:
                logger.warning(f"Timed out waiting on in-flight {subject.action_class.value} for client {subject.client_id}")
                raise IdempotencyCheckFailed("A request with this idempotency key is still in progress. Retry shortly.")
            await self._sleep(self.poll_interval_seconds)

    async def _guarded(self, op: Awaitable[Any]) -> Any:
        try:
            return await op
        except StoreTransientError as e:
            logger.error(f"Idempotency store unavailable: {e}")
            raise IdempotencyCheckFailed() from e

    def _marker(self, key: str) -> Tuple[int, str]:
        return id(self.kv), key

    async def _hold_claim(self, key: str, pending_raw: str) -> None:
        """Renew the pending lease until cancelled or the claim is lost."""
        interval = self.lock_ttl_seconds / 3
        while True:
            await self._sleep(interval)
            try:
                held = await self.kv.compare_and_swap(key, pending_raw, pending_raw, ttl_seconds=self.lock_ttl_seconds)
            except StoreTransientError as e:
                logger.warning(f"Failed to renew idempotency claim for {key}: {e}")
                continue
            if not held:
                logger.warning(f"Idempotency claim for {key} lapsed while the action was running")
                return

    async def _run_holding_claim(self, key: str, pending_raw: str, action: Action) -> StoredResponse:
        heartbeat = asyncio.ensure_future(self._hold_claim(key, pending_raw))
        try:
            return await action()
        finally:
            heartbeat.cancel()

    async def _execute(self, key: str, pending: IdempotencyRecord, pending_raw: str, action: Action) -> IdempotentResult:
        try:
            response = await self._run_holding_claim(key, pending_raw, action)
        except ReportingError as e:
            if not e.replayable:
                await self._release(key, pending_raw)
                raise
            await self._complete(key, pending, pending_raw, StoredResponse(status_code=e.status_code, body=e.to_body()))
            raise
        except Exception:
            await self._release(key, pending_raw)
            raise

        await self._complete(key, pending, pending_raw, response)
        return IdempotentResult(response, False)

    async def _complete(self, key: str, pending: IdempotencyRecord, pending_raw: str, response: StoredResponse) -> None:
        record = pending.model_copy(update={
            "state": IdempotencyState.COMPLETE,
            "response": response,
            "ttl_seconds": self.ttl_seconds,
        })
        record_raw = record.model_dump_json()
        try:
            stored = await self.kv.compare_and_swap(key, pending_raw, record_raw, ttl_seconds=self.ttl_seconds)
            if not stored:
                # Lease lapsed; keep the result unless another caller claimed the token since
                stored = await self.kv.put_if_absent(key, record_raw, ttl_seconds=self.ttl_seconds)
        except StoreTransientError as e:
            # The action already ran; the claim expires on its own after the lock TTL
            logger.error(f"Failed to record idempotent result for {key}: {e}")
            return
        if not stored:
            logger.warning(f"Idempotency claim for {key} was taken over before completion")

    async def _release(self, key: str, pending_raw: str) -> None:
        try:
            await self.kv.compare_and_delete(key, pending_raw)
        except StoreTransientError as e:
            logger.warning(f"Failed to release idempotency claim for {key}: {e}")
