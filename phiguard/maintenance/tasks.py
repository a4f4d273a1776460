"""Periodic security maintenance.

* purge expired or revoked refresh tokens (daily)
* evict rate-limit buckets (every ten minutes)
* re-encrypt protected values still stored as legacy plaintext (on demand)
"""

import asyncio
from datetime import timedelta
from typing import Callable

from sqlalchemy import column, table

from ..auth.rate_limit import RateLimiter
from ..auth.refresh import RefreshTokenStore
from ..core.crypto import FieldCipher
from ..core.database import SessionFactory
from ..core.logging import get_logger
from ..models.ClinicalRecord import CLINICAL_PHI_FIELDS
from ..models.Patient import PHI_FIELDS

logger = get_logger(__name__)

# Tables holding PhiEncryptedString columns, with those columns
PROTECTED_TABLES = (
    ("patients", PHI_FIELDS),
    ("clinical_records", CLINICAL_PHI_FIELDS),
)


def purge_expired_refresh_tokens(session_factory: SessionFactory, store: RefreshTokenStore) -> int:
    with session_factory() as session:
        deleted = store.purge(session)
    if deleted > 0:
        logger.info("refresh_tokens_purged", deleted=deleted)
    return deleted


def evict_rate_limit_buckets(limiter: RateLimiter) -> int:
    return limiter.evict_all()


def reencrypt_legacy_values(session_factory: SessionFactory, cipher: FieldCipher) -> int:
    """
    Rewrites protected patient and clinical record columns that still hold
    legacy plaintext as envelopes. Reads raw column values, bypassing the
    transparent codec, so it can tell envelopes from plaintext. Returns the
    number of rows changed across all tables.
    """
    changed_rows = 0
    with session_factory() as session:
        for table_name, fields in PROTECTED_TABLES:
            protected = table(table_name, column("id"), *(column(name) for name in fields))
            rows = session.connection().execute(protected.select()).mappings().all()
            for row in rows:
                updates = {
                    name: cipher.encrypt(row[name])
                    for name in fields
                    if row[name] is not None and not cipher.is_envelope(row[name])
                }
                if not updates:
                    continue
                session.connection().execute(
                    protected.update().where(protected.c.id == row["id"]).values(**updates)
                )
                changed_rows += 1
                logger.info("legacy_phi_reencrypted", table=table_name, fields=sorted(updates))
        session.commit()
    return changed_rows


class MaintenanceScheduler:
    """
    Runs maintenance jobs as asyncio background loops for the lifetime of
    the application. A failing run is logged and the loop keeps going.
    """

    def __init__(self):
        self._jobs: list[tuple[str, timedelta, Callable[[], object]]] = []
        self._tasks: list[asyncio.Task] = []

    def add_job(self, name: str, interval: timedelta, func: Callable[[], object]) -> None:
        self._jobs.append((name, interval, func))

    async def _loop(self, name: str, interval: timedelta, func: Callable[[], object]) -> None:
        while True:
            await asyncio.sleep(interval.total_seconds())
            try:
                await asyncio.to_thread(func)
            except Exception:
                logger.exception("maintenance_job_failed", job=name)

    def start(self) -> None:
        for name, interval, func in self._jobs:
            self._tasks.append(asyncio.create_task(self._loop(name, interval, func), name=name))
        logger.info("maintenance_scheduler_started", jobs=[name for name, _, _ in self._jobs])

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)
