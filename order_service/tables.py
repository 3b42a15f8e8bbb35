"""Client for the table service, plus the retry/reconcile path for table status.

Table status is a secondary effect of order changes: the order mutation is
committed first, then the table update is retried a few times and, if it still
fails, parked in ``pending_table_syncs`` for the reconciler.
"""
import asyncio
import datetime
import logging
from typing import Optional

import httpx
from sqlalchemy.orm import Session

from order_service import models
from pos_common.config import HTTP_TIMEOUT, TABLE_SERVICE_URL, TABLE_SYNC_BACKOFF, TABLE_SYNC_RETRIES
from pos_common.errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)

AVAILABLE = "Available"
RUNNING = "Running"


class TableClient:
    def __init__(self, base_url: str = TABLE_SERVICE_URL, transport: Optional[httpx.AsyncBaseTransport] = None,
                 authorization: Optional[str] = None, status_authorization: Optional[str] = None):
        self.base_url = base_url
        self.transport = transport
        self.authorization = authorization
        # Status writes are admin-only on the table service
        self.status_authorization = status_authorization or authorization

    def with_authorization(self, authorization: Optional[str],
                           status_authorization: Optional[str] = None) -> "TableClient":
        return TableClient(self.base_url, self.transport, authorization, status_authorization)

    def _client(self, authorization: Optional[str] = None) -> httpx.AsyncClient:
        authorization = authorization or self.authorization
        headers = {"Authorization": authorization} if authorization else {}
        return httpx.AsyncClient(base_url=self.base_url, transport=self.transport,
                                 headers=headers, timeout=HTTP_TIMEOUT)

    async def get_table(self, table_id: int) -> dict:
        try:
            async with self._client() as client:
                res = await client.get(f"/tables/{table_id}")
        except httpx.HTTPError as e:
            raise UpstreamError(f"Table service unavailable: {e}")
        if res.status_code == 404:
            raise NotFoundError(f"Table {table_id} not found")
        if res.status_code != 200:
            raise UpstreamError(f"Table service error {res.status_code}")
        return res.json()["result"]

    async def set_status(self, table_id: int, status: str) -> dict:
        try:
            async with self._client(self.status_authorization) as client:
                res = await client.put(f"/tables/{table_id}/status", json={"status": status})
        except httpx.HTTPError as e:
            raise UpstreamError(f"Table service unavailable: {e}")
        if res.status_code != 200:
            raise UpstreamError(f"Table service error {res.status_code}: {res.text[:200]}")
        return res.json()["result"]


async def push_status(client: TableClient, table_id: int, status: str,
                      retries: int = TABLE_SYNC_RETRIES, backoff: float = TABLE_SYNC_BACKOFF):
    last_error = None
    for attempt in range(retries):
        try:
            return await client.set_status(table_id, status)
        except UpstreamError as e:
            last_error = e
            logger.warning("Table %s -> %s failed (attempt %s/%s): %s",
                           table_id, status, attempt + 1, retries, e.message)
            if attempt < retries - 1:
                await asyncio.sleep(backoff * (2 ** attempt))
    raise last_error


def supersede_pending(db: Session, table_id: int):
    """A direct push won, so older parked targets for the table are stale."""
    stale = db.query(models.PendingTableSync).filter(
        models.PendingTableSync.table_id == table_id,
        models.PendingTableSync.resolved == False,  # noqa: E712
    ).all()
    if not stale:
        return
    for row in stale:
        row.resolved = True
        row.resolved_at = datetime.datetime.utcnow()
    db.commit()
    logger.info("Table %s: dropped %s stale pending sync(s)", table_id, len(stale))


async def sync_tables(db: Session, client: TableClient, changes, order_id: int):
    """Apply ``(table_id, status)`` changes after the order has been committed.

    Returns the list of error messages for changes that were parked.
    """
    failures = []
    for table_id, status in changes:
        if table_id is None:
            continue
        try:
            await push_status(client, table_id, status)
        except UpstreamError as e:
            db.add(models.PendingTableSync(
                table_id=table_id, target_status=status, order_id=order_id,
                attempts=TABLE_SYNC_RETRIES, last_error=e.message[:500],
            ))
            db.commit()
            failures.append(f"table {table_id} -> {status}: {e.message}")
            continue
        supersede_pending(db, table_id)
    return failures


async def reconcile(db: Session, client: TableClient):
    pending = db.query(models.PendingTableSync).filter(
        models.PendingTableSync.resolved == False  # noqa: E712
    ).order_by(models.PendingTableSync.id).all()

    # Only the newest target per table matters
    latest = {}
    for row in pending:
        latest[row.table_id] = row

    resolved = 0
    for row in pending:
        if latest[row.table_id] is not row:
            row.resolved = True
            row.resolved_at = datetime.datetime.utcnow()
            continue
        try:
            await client.set_status(row.table_id, row.target_status)
        except UpstreamError as e:
            row.attempts = (row.attempts or 0) + 1
            row.last_error = e.message[:500]
            continue
        row.resolved = True
        row.resolved_at = datetime.datetime.utcnow()
        resolved += 1
    db.commit()

    remaining = db.query(models.PendingTableSync).filter(
        models.PendingTableSync.resolved == False  # noqa: E712
    ).count()
    if resolved or remaining:
        logger.info("Table reconcile: %s resolved, %s still pending", resolved, remaining)
    return resolved, remaining
