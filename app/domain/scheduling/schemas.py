"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date, datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

AppointmentStatus = Literal["agendado", "em_atendimento", "concluido", "cancelado"]


class AppointmentCreate(BaseModel):
    """Schema for booking a new appointment"""

    patientId: int
    dentistId: int
    procedureId: int
    scheduledDate: datetime
    notes: Optional[str] = None


class AppointmentUpdate(BaseModel):
    """Partial update: reschedule fields, status, or notes"""

    patientId: Optional[int] = None
    dentistId: Optional[int] = None
    procedureId: Optional[int] = None
    scheduledDate: Optional[datetime] = None
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None


class AvailabilityRequest(BaseModel):
    dentistId: int
    scheduledDate: datetime
    procedureId: int
    excludeId: Optional[int] = None


class PersonSummary(BaseModel):
    id: int
    name: str
    phone: Optional[str] = None


class ProcedureSummary(BaseModel):
    id: int
    name: str
    duration: int
    price: float


class AppointmentResponse(BaseModel):
    """Appointment joined with patient, dentist and procedure"""

    id: int
    companyId: int
    patientId: int
    dentistId: int
    procedureId: int
    consultationId: Optional[int] = None
    scheduledDate: datetime
    endDate: datetime
    slotSpan: int
    status: AppointmentStatus
    allowedActions: list[str] = []
    notes: Optional[str] = None
    patient: Optional[PersonSummary] = None
    dentist: Optional[PersonSummary] = None
    procedure: Optional[ProcedureSummary] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class AvailabilityResponse(BaseModel):
    available: bool
    conflictingAppointment: Optional[AppointmentResponse] = None
    message: Optional[str] = None


class SlotCell(BaseModel):
    time: str
    kind: Literal["start", "continuation", "free"]
    appointmentId: Optional[int] = None
    span: int = 0


class DayGridResponse(BaseModel):
    date: date
    dentistId: Optional[int] = None
    slots: list[SlotCell]
    appointments: list[AppointmentResponse]


class CleanupResponse(BaseModel):
    message: str
    deletedCount: int


class ProcedureSnapshot(BaseModel):
    """Procedure as it was when the consultation was recorded"""

    procedureId: int
    name: str
    duration: int


class ConsultationCreate(BaseModel):
    """
    Schema for recording a consultation.

    `procedures` takes procedure ids; plain names are still accepted and
    resolved by exact match.
    """

    patientId: int
    dentistId: int
    date: datetime
    procedures: list[Union[int, str]] = Field(default_factory=list)
    clinicalNotes: Optional[str] = None
    observations: Optional[str] = None

    @field_validator("procedures")
    @classmethod
    def strip_blank_names(cls, v):
        return [p.strip() if isinstance(p, str) else p for p in v if not (isinstance(p, str) and not p.strip())]


class ConsultationUpdate(BaseModel):
    clinicalNotes: Optional[str] = None
    observations: Optional[str] = None
    status: Optional[AppointmentStatus] = None


class ConsultationResponse(BaseModel):
    id: int
    companyId: int
    patientId: int
    dentistId: int
    appointmentId: Optional[int] = None
    date: datetime
    procedures: list[ProcedureSnapshot] = []
    clinicalNotes: Optional[str] = None
    observations: Optional[str] = None
    status: AppointmentStatus
    allowedActions: list[str] = []
    patient: Optional[PersonSummary] = None
    dentist: Optional[PersonSummary] = None
    createdAt: Optional[datetime] = None
    updatedAt: Optional[datetime] = None


class SkippedProcedure(BaseModel):
    procedure: str
    scheduledDate: Optional[datetime] = None
    reason: Literal["not_found", "conflict"]
    message: str


class ConsultationCreatedResponse(ConsultationResponse):
    """Consultation plus the outcome of the automatic booking"""

    appointments: list[AppointmentResponse] = []
    skipped: list[SkippedProcedure] = []


class ConsultationDeletedResponse(BaseModel):
    message: str
    deletedAppointments: int
