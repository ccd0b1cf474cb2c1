from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone

import pytest

from docflow.database.models import IdempotencyRecord
from docflow.database.repositories.idempotency_repository import IdempotencyRepository

_ENDPOINT = "documents.upload"


def _record(
    tenant_id: str, key: str, expires_in: timedelta, token: str = "token-1"
) -> IdempotencyRecord:
    return IdempotencyRecord(
        tenant_id=tenant_id,
        key=key,
        endpoint=_ENDPOINT,
        method="POST",
        request_hash="f" * 64,
        expires_at=datetime.now(timezone.utc) + expires_in,
        claim_token=token,
    )


@pytest.mark.integration
class TestIdempotencyRepository:
    def test_concurrent_claims_have_exactly_one_winner(self, tenant_id: str) -> None:
        repo = IdempotencyRepository()
        record = _record(tenant_id, "key-1", timedelta(hours=1))

        with ThreadPoolExecutor(max_workers=4) as pool:
            outcomes = list(pool.map(lambda _: repo.try_claim(record), range(8)))

        assert outcomes.count(True) == 1

    def test_complete_then_release_keeps_the_response(self, tenant_id: str) -> None:
        repo = IdempotencyRepository()
        record = _record(tenant_id, "key-2", timedelta(hours=1))
        repo.try_claim(record)

        assert repo.complete(record, 201, '{"id": "pd-1"}', record.expires_at)
        repo.release(record)

        stored = repo.find(tenant_id, "key-2", _ENDPOINT, "POST")
        assert stored is not None
        assert (stored.status_code, stored.response_body) == (201, '{"id": "pd-1"}')

    def test_other_token_cannot_complete_or_release(self, tenant_id: str) -> None:
        repo = IdempotencyRepository()
        held = _record(tenant_id, "key-3", timedelta(hours=1), token="current")
        stale = _record(tenant_id, "key-3", timedelta(hours=1), token="stale")
        repo.try_claim(held)

        assert repo.complete(stale, 201, '{"id": "late"}', stale.expires_at) is False
        repo.release(stale)

        stored = repo.find(tenant_id, "key-3", _ENDPOINT, "POST")
        assert stored is not None
        assert stored.claim_token == "current"
        assert not stored.is_complete

    def test_expired_claims_can_be_deleted(self, tenant_id: str) -> None:
        repo = IdempotencyRepository()
        repo.try_claim(_record(tenant_id, "old", timedelta(hours=-1)))
        repo.try_claim(_record(tenant_id, "fresh", timedelta(hours=1)))
        now = datetime.now(timezone.utc)

        assert repo.delete_if_expired(tenant_id, "fresh", _ENDPOINT, "POST", now) is False
        assert repo.delete_if_expired(tenant_id, "old", _ENDPOINT, "POST", now) is True
        assert repo.find(tenant_id, "old", _ENDPOINT, "POST") is None
        assert repo.find(tenant_id, "fresh", _ENDPOINT, "POST") is not None
