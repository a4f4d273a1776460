from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from ..core.clock import utcnow
from ..core.database import utc_timestamp_column

PERFORMED_BY_MAX_LENGTH = 100
IP_ADDRESS_MAX_LENGTH = 45  # IPv6 textual form


class AuditLog(SQLModel, table=True):
    """
    One immutable audit event. Rows are only ever inserted.
    `detail` carries field names and identifiers, never protected values.
    """
    __tablename__ = "audit_logs"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    action: str = Field(nullable=False, max_length=100)
    entity_type: str = Field(nullable=False, max_length=100)
    entity_id: Optional[UUID] = Field(default=None, nullable=True)  # not a foreign key
    performed_by: str = Field(default="anonymous", max_length=PERFORMED_BY_MAX_LENGTH)
    ip_address: Optional[str] = Field(default=None, nullable=True, max_length=IP_ADDRESS_MAX_LENGTH)
    detail: Optional[str] = Field(default=None, nullable=True)
    timestamp: datetime = Field(default_factory=utcnow, sa_column=utc_timestamp_column(index=True))


class AuditLogResponse(SQLModel):
    id: UUID
    action: str
    entity_type: str
    entity_id: Optional[UUID]
    performed_by: str
    ip_address: Optional[str]
    detail: Optional[str]
    timestamp: datetime
