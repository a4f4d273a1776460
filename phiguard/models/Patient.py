from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4
import re

from pydantic import EmailStr, field_validator
from sqlalchemy import Column
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow
from ..core.codec import PhiEncryptedString
from ..core.database import utc_timestamp_column

SSN_PATTERN = r"^\d{3}-\d{2}-\d{4}$"
DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"

# Attributes carried through PhiEncryptedString
PHI_FIELDS = (
    "first_name",
    "last_name",
    "ssn",
    "email",
    "date_of_birth",
    "medical_record_number",
)


def _phi_column(nullable: bool = False) -> Column:
    return Column(PhiEncryptedString(), nullable=nullable)


# ==========================================
# SQLModel (Database Entity)
# ==========================================
class Patient(SQLModel, table=True):
    __tablename__ = "patients"

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    first_name: str = Field(sa_column=_phi_column())
    last_name: str = Field(sa_column=_phi_column())
    ssn: str = Field(sa_column=_phi_column())
    email: Optional[str] = Field(default=None, sa_column=_phi_column(nullable=True))
    date_of_birth: Optional[str] = Field(default=None, sa_column=_phi_column(nullable=True))
    # Not unique at the database level: envelopes differ for equal values
    medical_record_number: str = Field(sa_column=_phi_column())
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_timestamp_column())
    updated_at: Optional[datetime] = Field(default=None, sa_column=utc_timestamp_column(nullable=True))

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

class CreatePatientRequest(SQLModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    ssn: str
    email: Optional[EmailStr] = None
    date_of_birth: str
    medical_record_number: str = Field(min_length=1, max_length=50)

    @field_validator("ssn")
    @classmethod
    def ssn_format(cls, value: str) -> str:
        return _check_format(SSN_PATTERN, value, "SSN must be in format XXX-XX-XXXX")

    @field_validator("date_of_birth")
    @classmethod
    def date_of_birth_format(cls, value: str) -> str:
        return _check_format(DATE_PATTERN, value, "Date of birth must be in format YYYY-MM-DD")


class UpdatePatientRequest(SQLModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    ssn: Optional[str] = None
    email: Optional[EmailStr] = None
    date_of_birth: Optional[str] = None

    @field_validator("ssn")
    @classmethod
    def ssn_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_format(SSN_PATTERN, value, "SSN must be in format XXX-XX-XXXX")

    @field_validator("date_of_birth")
    @classmethod
    def date_of_birth_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_format(DATE_PATTERN, value, "Date of birth must be in format YYYY-MM-DD")

    def changed_fields(self) -> list[str]:
        """Names of the fields this request sets, in declaration order."""
        return [name for name in type(self).model_fields if getattr(self, name) is not None]


class PatientResponse(SQLModel):
    id: UUID
    first_name: str
    last_name: str
    masked_ssn: str
    email: Optional[str] = None
    date_of_birth: Optional[str] = None
    medical_record_number: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_patient(cls, patient: Patient) -> "PatientResponse":
        return cls(
            id=patient.id,
            first_name=patient.first_name,
            last_name=patient.last_name,
            masked_ssn=mask_ssn(patient.ssn),
            email=patient.email,
            date_of_birth=patient.date_of_birth,
            medical_record_number=patient.medical_record_number,
            created_at=patient.created_at,
            updated_at=patient.updated_at,
        )


def _check_format(pattern: str, value: Optional[str], message: str) -> Optional[str]:
    # Error messages never echo the rejected value
    if value is not None and not re.fullmatch(pattern, value):
        raise ValueError(message)
    return value


def mask_ssn(ssn: Optional[str]) -> str:
    # Only the last 4 digits leave the service
    if ssn is None or len(ssn) < 4:
        return "***-**-****"
    return "***-**-" + ssn[-4:]
