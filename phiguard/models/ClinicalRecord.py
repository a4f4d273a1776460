from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import field_validator
from sqlalchemy import Index
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow
from ..core.database import utc_timestamp_column
from .Patient import DATE_PATTERN, _check_format, _phi_column


class RecordType(str, Enum):
    CONSULTATION = "CONSULTATION"
    LAB_RESULT = "LAB_RESULT"
    IMAGING = "IMAGING"
    PRESCRIPTION = "PRESCRIPTION"
    SURGERY = "SURGERY"
    FOLLOW_UP = "FOLLOW_UP"
    EMERGENCY = "EMERGENCY"


RECORD_TYPE_MESSAGE = "Record type must be one of: " + ", ".join(t.value for t in RecordType)

# Attributes carried through PhiEncryptedString
CLINICAL_PHI_FIELDS = (
    "diagnosis",
    "treatment_plan",
    "notes",
    "medications",
    "visit_date",
)


# ==========================================
# SQLModel (Database Entity)
# ==========================================
class ClinicalRecord(SQLModel, table=True):
    __tablename__ = "clinical_records"
    __table_args__ = (Index("idx_clinical_patient_type", "patient_id", "record_type"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    patient_id: UUID = Field(index=True)
    record_type: str = Field(max_length=50)
    diagnosis: str = Field(sa_column=_phi_column())
    treatment_plan: Optional[str] = Field(default=None, sa_column=_phi_column(nullable=True))
    notes: Optional[str] = Field(default=None, sa_column=_phi_column(nullable=True))
    medications: Optional[str] = Field(default=None, sa_column=_phi_column(nullable=True))
    # Encrypted, so not usable for ordering or range queries
    visit_date: str = Field(sa_column=_phi_column())
    attending_physician: str = Field(max_length=200)
    deleted: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_timestamp_column())
    updated_at: Optional[datetime] = Field(default=None, sa_column=utc_timestamp_column(nullable=True))

# ==========================================
# Pydantic Models (DTOs)
# ==========================================

def _check_record_type(value: Optional[str]) -> Optional[str]:
    if value is not None and value not in RecordType.__members__:
        raise ValueError(RECORD_TYPE_MESSAGE)
    return value


class CreateClinicalRecordRequest(SQLModel):
    patient_id: UUID
    record_type: str
    diagnosis: str = Field(min_length=1, max_length=500)
    treatment_plan: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    medications: Optional[str] = Field(default=None, max_length=1000)
    visit_date: str
    attending_physician: str = Field(min_length=1, max_length=200)

    @field_validator("record_type")
    @classmethod
    def record_type_known(cls, value: str) -> str:
        return _check_record_type(value)

    @field_validator("visit_date")
    @classmethod
    def visit_date_format(cls, value: str) -> str:
        return _check_format(DATE_PATTERN, value, "Visit date must be in format YYYY-MM-DD")


class UpdateClinicalRecordRequest(SQLModel):
    record_type: Optional[str] = None
    diagnosis: Optional[str] = Field(default=None, min_length=1, max_length=500)
    treatment_plan: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=2000)
    medications: Optional[str] = Field(default=None, max_length=1000)
    attending_physician: Optional[str] = Field(default=None, min_length=1, max_length=200)
    visit_date: Optional[str] = None

    @field_validator("record_type")
    @classmethod
    def record_type_known(cls, value: Optional[str]) -> Optional[str]:
        return _check_record_type(value)

    @field_validator("visit_date")
    @classmethod
    def visit_date_format(cls, value: Optional[str]) -> Optional[str]:
        return _check_format(DATE_PATTERN, value, "Visit date must be in format YYYY-MM-DD")

    def changed_fields(self) -> list[str]:
        """Names of the fields this request sets, in declaration order."""
        return [name for name in type(self).model_fields if getattr(self, name) is not None]


class ClinicalRecordResponse(SQLModel):
    id: UUID
    patient_id: UUID
    record_type: str
    diagnosis: str
    treatment_plan: Optional[str] = None
    notes: Optional[str] = None
    medications: Optional[str] = None
    visit_date: str
    attending_physician: str
    created_at: datetime
    updated_at: Optional[datetime] = None

    @classmethod
    def from_record(cls, record: ClinicalRecord) -> "ClinicalRecordResponse":
        return cls(
            id=record.id,
            patient_id=record.patient_id,
            record_type=record.record_type,
            diagnosis=record.diagnosis,
            treatment_plan=record.treatment_plan,
            notes=record.notes,
            medications=record.medications,
            visit_date=record.visit_date,
            attending_physician=record.attending_physician,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
