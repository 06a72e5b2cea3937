from pydantic import BaseModel, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime, timezone
from typing import Literal, Optional

LabStatus = Literal["pending", "in-review", "completed"]
Priority = Literal["low", "normal", "high", "urgent"]

LAB_STATUSES = ("pending", "in-review", "completed")


class CamelModel(BaseModel):
    """Serialises with the camelCase keys used by the stored collection."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class Doctor(CamelModel):
    id: str
    name: str
    email: str
    specialization: Optional[str] = None


class LabResult(CamelModel):
    id: str
    patient_email: str
    file_name: str
    file_data: str
    file_type: str
    upload_date: datetime
    status: LabStatus
    file_size: str
    test_type: str
    interpretation: Optional[str] = None
    assigned_doctor: Optional[Doctor] = None
    assigned_at: Optional[datetime] = None
    priority: Optional[Priority] = None
    version: int = 1

    @field_validator("upload_date", "assigned_at")
    @classmethod
    def assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def effective_priority(self) -> str:
        return self.priority or "normal"


class LabResultSummary(CamelModel):
    """A lab result without its encoded file content."""

    id: str
    patient_email: str
    file_name: str
    file_type: str
    upload_date: datetime
    status: LabStatus
    file_size: str
    test_type: str
    interpretation: Optional[str] = None
    assigned_doctor: Optional[Doctor] = None
    assigned_at: Optional[datetime] = None
    priority: Priority = "normal"
    version: int = 1

    @classmethod
    def from_result(cls, result: LabResult) -> "LabResultSummary":
        data = result.model_dump(exclude={"file_data"})
        data["priority"] = result.effective_priority
        return cls.model_validate(data)


class LabResultListResponse(BaseModel):
    results: list[LabResultSummary]
    total: int


class AssignRequest(BaseModel):
    doctor_id: Optional[str] = None
    version: Optional[int] = None


class VersionedRequest(BaseModel):
    version: Optional[int] = None


class StatusUpdateRequest(BaseModel):
    status: LabStatus
    version: Optional[int] = None


class InterpretationRequest(BaseModel):
    text: str = ""
    version: Optional[int] = None


class StatusCounts(BaseModel):
    pending: int = 0
    in_review: int = 0
    completed: int = 0
    fresh: int = 0
    total: int = 0
