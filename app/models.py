from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

# Appointment / consultation workflow:
# agendado → em_atendimento → concluido, cancelado from either of the first two
STATUS_SCHEDULED = "agendado"
STATUS_IN_PROGRESS = "em_atendimento"
STATUS_COMPLETED = "concluido"
STATUS_CANCELLED = "cancelado"
APPOINTMENT_STATUSES = (STATUS_SCHEDULED, STATUS_IN_PROGRESS, STATUS_COMPLETED, STATUS_CANCELLED)


class Company(Base):
    """Tenant: one clinic and its data partition"""

    __tablename__ = "companies"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    # IANA zone used to interpret every naive timestamp stored for this tenant
    timezone = Column(String(64), nullable=True)
    whatsapp_instance = Column(String(255), nullable=True)
    whatsapp_enabled = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    users = relationship("User", back_populates="company")


class User(Base):
    """Clinic staff member; dentists are users with role 'dentist'"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    username = Column(String(100), unique=True, nullable=False)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    role = Column(String(50), default="dentist", nullable=False)  # admin, dentist, receptionist...
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())

    company = relationship("Company", back_populates="users")


class Patient(Base):
    __tablename__ = "patients"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    cpf = Column(String(14), nullable=True)
    phone = Column(String(30), nullable=True)
    email = Column(String(255), nullable=True)
    birth_date = Column(Date, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Procedure(Base):
    __tablename__ = "procedures"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    duration = Column(Integer, nullable=False, default=30)  # minutes
    category = Column(String(100), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())


class Appointment(Base):
    """A dentist's booked slot for one procedure"""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    procedure_id = Column(Integer, ForeignKey("procedures.id"), nullable=False)
    # Set on appointments synthesized from a consultation's procedure list
    consultation_id = Column(Integer, ForeignKey("consultations.id"), nullable=True, index=True)

    # Naive civil time in the company's timezone
    scheduled_date = Column(DateTime, nullable=False, index=True)
    status = Column(String(20), default=STATUS_SCHEDULED, nullable=False, index=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    dentist = relationship("User")
    procedure = relationship("Procedure")

    __table_args__ = (
        # Same dentist cannot hold two live bookings starting at the same instant.
        # Interval overlap is enforced by the booking service under a dentist row lock.
        Index(
            "uq_appointments_live_start",
            "company_id",
            "dentist_id",
            "scheduled_date",
            unique=True,
            postgresql_where=text("status != 'cancelado'"),
            sqlite_where=text("status != 'cancelado'"),
        ),
    )


class Consultation(Base):
    """Clinical attendance record; may be linked to one appointment"""

    __tablename__ = "consultations"

    id = Column(Integer, primary_key=True, index=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False)
    dentist_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    # Back-reference to the first appointment created for this consultation (no FK: avoids a cycle)
    appointment_id = Column(Integer, nullable=True, index=True)

    date = Column(DateTime, nullable=False)
    # Snapshot taken at creation: [{"procedureId": int, "name": str, "duration": int}]
    procedures = Column(JSON, nullable=False, default=list)
    clinical_notes = Column(Text, nullable=True)
    observations = Column(Text, nullable=True)
    status = Column(String(20), default=STATUS_SCHEDULED, nullable=False, index=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("Patient")
    dentist = relationship("User")
