from typing import Optional
from uuid import UUID

from sqlmodel import Session, select

from ..core.clock import Clock, utcnow
from ..core.database import SessionFactory
from ..core.logging import get_logger
from ..models.Audit import IP_ADDRESS_MAX_LENGTH, PERFORMED_BY_MAX_LENGTH, AuditLog

logger = get_logger(__name__)

ANONYMOUS = "anonymous"


def _clip(value: Optional[str], limit: int) -> Optional[str]:
    # Actor and origin come from client input; oversized values must not fail the insert
    if value is None:
        return None
    return value[:limit]


class AuditWriter:
    """
    Appends audit records in a unit of work of their own.

    Each call opens a fresh session from `session_factory` and commits it,
    so the record persists even when the caller's transaction later rolls
    back. A failed write is logged and swallowed: auditing never vetoes the
    business operation that triggered it.
    """

    def __init__(self, session_factory: SessionFactory, clock: Clock = utcnow):
        self.session_factory = session_factory
        self.clock = clock

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[UUID] = None,
        performed_by: Optional[str] = None,
        ip_address: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> None:
        performed_by = _clip(performed_by or ANONYMOUS, PERFORMED_BY_MAX_LENGTH)
        ip_address = _clip(ip_address, IP_ADDRESS_MAX_LENGTH)
        try:
            entry = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                performed_by=performed_by,
                ip_address=ip_address,
                detail=detail,
                timestamp=self.clock(),
            )
            with self.session_factory() as session:
                session.add(entry)
                session.commit()
        except Exception:
            logger.exception(
                "audit_write_failed",
                action=action,
                entity_type=entity_type,
                performed_by=performed_by,
            )
            return

        logger.debug(
            "audit_event",
            action=action,
            entity_type=entity_type,
            performed_by=performed_by,
            ip=ip_address,
        )


def list_records(session: Session, limit: int = 100, offset: int = 0) -> list[AuditLog]:
    """Audit records in timestamp order, oldest first."""
    statement = (
        select(AuditLog)
        .order_by(AuditLog.timestamp.asc(), AuditLog.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(session.exec(statement).all())
