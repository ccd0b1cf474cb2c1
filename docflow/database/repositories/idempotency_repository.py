from datetime import datetime
from typing import Any

from psycopg.rows import dict_row

from docflow.database.connection import get_connection
from docflow.database.models import IdempotencyRecord

_COLUMNS = """
    tenant_id, key, endpoint, method, request_hash, claim_token, status_code,
    response_body, expires_at, created_at
"""


class IdempotencyRepository:
    """Database operations for the idempotency_records table.

    Claims rely on the primary key: of several concurrent inserts for the same
    (tenant_id, key, endpoint, method) exactly one succeeds. Completing or
    releasing a claim only touches the row while it still carries the
    caller's claim token.
    """

    def try_claim(self, record: IdempotencyRecord) -> bool:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO idempotency_records
                    (tenant_id, key, endpoint, method, request_hash, claim_token, expires_at)
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    ON CONFLICT (tenant_id, key, endpoint, method) DO NOTHING
                    RETURNING key
                    """,
                    (
                        record.tenant_id,
                        record.key,
                        record.endpoint,
                        record.method,
                        record.request_hash,
                        record.claim_token,
                        record.expires_at,
                    ),
                )
                claimed = cur.fetchone() is not None
            conn.commit()
        return claimed

    def find(
        self, tenant_id: str, key: str, endpoint: str, method: str
    ) -> IdempotencyRecord | None:
        with get_connection() as conn:
            with conn.cursor(row_factory=dict_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_COLUMNS}
                    FROM idempotency_records
                    WHERE tenant_id = %s AND key = %s AND endpoint = %s AND method = %s
                    """,
                    (tenant_id, key, endpoint, method),
                )
                row = cur.fetchone()
        return _row_to_record(row) if row else None

    def complete(
        self,
        claim: IdempotencyRecord,
        status_code: int,
        response_body: str,
        expires_at: datetime,
    ) -> bool:
        """Store the response on a claim. False when the claim is no longer held."""
        with get_connection() as conn:
            cur = conn.execute(
                """
                UPDATE idempotency_records
                SET status_code = %s, response_body = %s, expires_at = %s
                WHERE tenant_id = %s AND key = %s AND endpoint = %s AND method = %s
                  AND claim_token = %s AND status_code IS NULL
                """,
                (
                    status_code,
                    response_body,
                    expires_at,
                    claim.tenant_id,
                    claim.key,
                    claim.endpoint,
                    claim.method,
                    claim.claim_token,
                ),
            )
            completed = cur.rowcount > 0
            conn.commit()
        return completed

    def release(self, claim: IdempotencyRecord) -> None:
        """Drop an in-flight claim so the key can be used again."""
        with get_connection() as conn:
            conn.execute(
                """
                DELETE FROM idempotency_records
                WHERE tenant_id = %s AND key = %s AND endpoint = %s AND method = %s
                  AND claim_token = %s AND status_code IS NULL
                """,
                (claim.tenant_id, claim.key, claim.endpoint, claim.method, claim.claim_token),
            )
            conn.commit()

    def delete_if_expired(
        self, tenant_id: str, key: str, endpoint: str, method: str, now: datetime
    ) -> bool:
        with get_connection() as conn:
            cur = conn.execute(
                """
                DELETE FROM idempotency_records
                WHERE tenant_id = %s AND key = %s AND endpoint = %s AND method = %s
                  AND expires_at <= %s
                """,
                (tenant_id, key, endpoint, method, now),
            )
            deleted = cur.rowcount > 0
            conn.commit()
        return deleted

    def delete_expired(self, now: datetime) -> int:
        with get_connection() as conn:
            cur = conn.execute(
                "DELETE FROM idempotency_records WHERE expires_at <= %s",
                (now,),
            )
            deleted = cur.rowcount
            conn.commit()
        return deleted


def _row_to_record(row: dict[str, Any]) -> IdempotencyRecord:
    return IdempotencyRecord(
        tenant_id=row["tenant_id"],
        key=row["key"],
        endpoint=row["endpoint"],
        method=row["method"],
        request_hash=row["request_hash"],
        claim_token=row["claim_token"],
        status_code=row["status_code"],
        response_body=row["response_body"],
        expires_at=row["expires_at"],
        created_at=row["created_at"],
    )
