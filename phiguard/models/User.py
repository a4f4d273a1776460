from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow
from ..core.database import utc_timestamp_column


class Role(str, Enum):
    USER = "ROLE_USER"
    ADMIN = "ROLE_ADMIN"
    DOCTOR = "ROLE_DOCTOR"
    NURSE = "ROLE_NURSE"


CLINICAL_ROLES = frozenset({Role.ADMIN.value, Role.DOCTOR.value, Role.NURSE.value})

PASSWORD_SPECIALS = "@$!%*?&"

# ==========================================
# SQLModel (Database Entity)
# ==========================================
class User(SQLModel, table=True):
    __tablename__ = "users"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    username: str = Field(unique=True, index=True, nullable=False, max_length=100)
    hashed_password: str = Field(nullable=False)
    role: str = Field(nullable=False, max_length=50)
    enabled: bool = Field(default=True)
    failed_login_attempts: int = Field(default=0, nullable=False)
    lock_expires_at: datetime | None = Field(default=None, sa_column=utc_timestamp_column(nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_timestamp_column())

    def is_account_locked(self, now: datetime | None = None) -> bool:
        now = now or utcnow()
        return self.lock_expires_at is not None and self.lock_expires_at > now

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

def _check_password_strength(password: str) -> str:
    if not (8 <= len(password) <= 128):
        raise ValueError("Password must be between 8 and 128 characters")
    if not any(c.isupper() for c in password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not any(c.islower() for c in password):
        raise ValueError("Password must contain at least one lowercase letter")
    if not any(c.isdigit() for c in password):
        raise ValueError("Password must contain at least one digit")
    if not any(c in PASSWORD_SPECIALS for c in password):
        raise ValueError(f"Password must contain at least one of {PASSWORD_SPECIALS}")
    return password


class UserRegistrationRequest(SQLModel):
    username: str = Field(min_length=3, max_length=50)
    password: str
    role: Role

    @field_validator("password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginRequest(SQLModel):
    username: str
    password: str


class RefreshTokenRequest(SQLModel):
    refresh_token: str


class ChangePasswordRequest(SQLModel):
    current_password: str
    new_password: str

    @field_validator("new_password")
    @classmethod
    def password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class AuthResponse(SQLModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    username: str
    role: str


class UserResponse(SQLModel):
    id: UUID
    username: str
    role: str
    enabled: bool
