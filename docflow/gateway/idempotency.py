import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from docflow.database.models import IdempotencyRecord
from docflow.database.repositories.idempotency_repository import IdempotencyRepository
from docflow.exceptions import IdempotencyInProgressError, IdempotencyKeyMismatchError
from docflow.logging.logger import Log


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class IdempotencyStore:
    """Exactly-once handling of requests that carry an idempotency key.

    A caller first claims the key with an atomic insert. The winner does the
    work and stores the response; everyone else either replays that response
    or waits for it. In-flight claims expire after a short lease so a crashed
    caller does not block the key for the whole retention window. Each claim
    carries a token, and only its holder can complete or release it, so a
    caller whose lease was taken over cannot overwrite the stored response.
    """

    def __init__(
        self,
        repo: IdempotencyRepository,
        *,
        ttl_hours: int = 24,
        lease_seconds: int = 60,
        wait_seconds: float = 10.0,
        poll_interval_seconds: float = 0.2,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._repo = repo
        self._ttl = timedelta(hours=ttl_hours)
        self._lease = timedelta(seconds=lease_seconds)
        self._wait_seconds = wait_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep

    def begin(
        self,
        tenant_id: str,
        key: str,
        endpoint: str,
        method: str,
        request_hash: str,
    ) -> IdempotencyRecord:
        """Claim the key, or return the completed record to replay.

        An incomplete record is the caller's own claim. It must be finished
        with complete() or abandon().

        Raises:
            IdempotencyKeyMismatchError: if the key was used for a different request.
            IdempotencyInProgressError: if another caller still holds the claim
                after the wait expired.
        """
        deadline = self._monotonic() + self._wait_seconds
        while True:
            now = self._clock()
            claim = IdempotencyRecord(
                tenant_id=tenant_id,
                key=key,
                endpoint=endpoint,
                method=method,
                request_hash=request_hash,
                expires_at=now + self._lease,
                claim_token=str(uuid4()),
            )
            if self._repo.try_claim(claim):
                Log.debug("Idempotency key claimed", tenant=tenant_id, key=key)
                return claim

            existing = self._repo.find(tenant_id, key, endpoint, method)
            if existing is None:
                continue
            if existing.expires_at <= now:
                self._repo.delete_if_expired(tenant_id, key, endpoint, method, now)
                continue
            if existing.request_hash != request_hash:
                raise IdempotencyKeyMismatchError(
                    "Idempotency key was already used with a different request"
                )
            if existing.is_complete:
                return existing
            if self._monotonic() >= deadline:
                raise IdempotencyInProgressError(
                    "A request with this idempotency key is still being processed"
                )
            self._sleep(self._poll_interval_seconds)

    def complete(self, claim: IdempotencyRecord, status_code: int, response_body: str) -> bool:
        """Store the response for replays.

        Returns False when the lease ran out and another caller took the key
        over. The stored record is then left untouched.
        """
        completed = self._repo.complete(
            claim, status_code, response_body, expires_at=self._clock() + self._ttl
        )
        if not completed:
            Log.warning("Idempotency claim was lost before completion", key=claim.key)
        return completed

    def abandon(self, claim: IdempotencyRecord) -> None:
        """Release a claim whose request failed, so the client can try again."""
        self._repo.release(claim)

    def purge_expired(self) -> int:
        deleted = self._repo.delete_expired(self._clock())
        if deleted:
            Log.info(f"Purged {deleted} expired idempotency records")
        return deleted
