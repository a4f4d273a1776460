from datetime import datetime
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from ..core.database import utc_timestamp_column


class RefreshToken(SQLModel, table=True):
    __tablename__ = "refresh_tokens"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    # SHA-256 of the opaque value handed to the client; the value itself is never stored
    token_hash: str = Field(unique=True, index=True, nullable=False, max_length=64)
    account_id: UUID = Field(index=True, nullable=False)
    expiry_date: datetime = Field(sa_column=utc_timestamp_column())
    revoked: bool = Field(default=False, nullable=False)
