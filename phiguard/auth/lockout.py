from datetime import timedelta
from typing import Optional

from sqlalchemy import update
from sqlmodel import Session

from ..audit.service import AuditWriter
from ..core.clock import Clock, utcnow
from ..core.logging import get_logger
from ..models.User import User

logger = get_logger(__name__)

MAX_FAILED_ATTEMPTS = 5
LOCK_DURATION = timedelta(minutes=15)


class LockoutGuard:
    """
    Per-account brute-force protection.

    Consecutive failures are counted on the account row; reaching the
    threshold locks the account until lock_expires_at. The lock lapses on its
    own, and the counter is only reset by a successful authentication.
    """

    def __init__(self, audit_writer: AuditWriter, max_attempts: int = MAX_FAILED_ATTEMPTS,
                 lock_duration: timedelta = LOCK_DURATION, clock: Clock = utcnow):
        self.audit_writer = audit_writer
        self.max_attempts = max_attempts
        self.lock_duration = lock_duration
        self.clock = clock

    @classmethod
    def from_settings(cls, settings, audit_writer: AuditWriter, clock: Clock = utcnow) -> "LockoutGuard":
        return cls(
            audit_writer,
            max_attempts=settings.LOCKOUT_MAX_ATTEMPTS,
            lock_duration=timedelta(minutes=settings.LOCKOUT_DURATION_MINUTES),
            clock=clock,
        )

    def on_success(self, session: Session, account: User) -> None:
        if account.failed_login_attempts == 0 and account.lock_expires_at is None:
            return
        session.exec(
            update(User)
            .where(User.id == account.id)
            .values(failed_login_attempts=0, lock_expires_at=None)
        )
        session.commit()
        session.refresh(account)

    def on_failure(self, session: Session, account: User, ip_address: Optional[str] = None) -> None:
        # Increment in the store so concurrent failures are not lost
        session.exec(
            update(User)
            .where(User.id == account.id)
            .values(failed_login_attempts=User.failed_login_attempts + 1)
        )
        session.flush()
        session.refresh(account)

        locked = False
        if account.failed_login_attempts >= self.max_attempts:
            account.lock_expires_at = self.clock() + self.lock_duration
            session.add(account)
            locked = True
        session.commit()

        if locked:
            logger.warning(
                "account_locked",
                username=account.username,
                attempts=account.failed_login_attempts,
            )
            self.audit_writer.record(
                "ACCOUNT_LOCKED",
                "USER",
                entity_id=account.id,
                performed_by=account.username,
                ip_address=ip_address,
                detail=f"Locked after {account.failed_login_attempts} failed attempts",
            )

    def is_locked(self, account: User) -> bool:
        return account.is_account_locked(self.clock())

    def retry_after(self, account: User) -> int:
        """Seconds until the lock lapses, 0 when not locked."""
        if not self.is_locked(account):
            return 0
        remaining = account.lock_expires_at - self.clock()
        return max(1, int(remaining.total_seconds()))
