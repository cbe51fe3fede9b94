"""Scheduling repositories - Database operations scoped by company (tenant)"""

from datetime import date, datetime
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from ...models import (
    STATUS_CANCELLED,
    Appointment,
    Company,
    Consultation,
    Patient,
    Procedure,
    User,
)
from .time_calculator import day_bounds


class DirectoryRepository:
    """Read-only lookups for patients, dentists and procedures"""

    @staticmethod
    def get_company(db: Session, company_id: int) -> Optional[Company]:
        return db.query(Company).filter(Company.id == company_id).first()

    @staticmethod
    def list_companies(db: Session) -> list[Company]:
        return db.query(Company).filter(Company.is_active.is_(True)).order_by(Company.id).all()

    @staticmethod
    def get_patient(db: Session, company_id: int, patient_id: int) -> Optional[Patient]:
        return (
            db.query(Patient)
            .filter(Patient.id == patient_id, Patient.company_id == company_id)
            .first()
        )

    @staticmethod
    def get_dentist(db: Session, company_id: int, dentist_id: int) -> Optional[User]:
        return (
            db.query(User)
            .filter(User.id == dentist_id, User.company_id == company_id, User.is_active.is_(True))
            .first()
        )

    @staticmethod
    def get_procedure(db: Session, company_id: int, procedure_id: int) -> Optional[Procedure]:
        return (
            db.query(Procedure)
            .filter(Procedure.id == procedure_id, Procedure.company_id == company_id)
            .first()
        )

    @staticmethod
    def find_procedure_by_name(db: Session, company_id: int, name: str) -> Optional[Procedure]:
        """Exact name match among active procedures"""
        return (
            db.query(Procedure)
            .filter(
                Procedure.company_id == company_id,
                Procedure.name == name,
                Procedure.is_active.is_(True),
            )
            .order_by(Procedure.id)
            .first()
        )

    @staticmethod
    def list_patients(db: Session, company_id: int, search: Optional[str] = None) -> list[Patient]:
        query = db.query(Patient).filter(Patient.company_id == company_id, Patient.is_active.is_(True))
        if search:
            query = query.filter(Patient.name.ilike(f"%{search}%"))
        return query.order_by(Patient.name).all()

    @staticmethod
    def list_dentists(db: Session, company_id: int) -> list[User]:
        return (
            db.query(User)
            .filter(
                User.company_id == company_id,
                User.role == "dentist",
                User.is_active.is_(True),
            )
            .order_by(User.name)
            .all()
        )

    @staticmethod
    def list_procedures(db: Session, company_id: int) -> list[Procedure]:
        return (
            db.query(Procedure)
            .filter(Procedure.company_id == company_id, Procedure.is_active.is_(True))
            .order_by(Procedure.name)
            .all()
        )


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def _with_directory(query):
        return query.options(
            joinedload(Appointment.patient),
            joinedload(Appointment.dentist),
            joinedload(Appointment.procedure),
        )

    @staticmethod
    def get_appointment(db: Session, company_id: int, appointment_id: int) -> Optional[Appointment]:
        return (
            AppointmentRepository._with_directory(db.query(Appointment))
            .filter(Appointment.id == appointment_id, Appointment.company_id == company_id)
            .first()
        )

    @staticmethod
    def list_appointments(
        db: Session,
        company_id: int,
        day: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        dentist_id: Optional[int] = None,
        include_cancelled: bool = False,
    ) -> list[Appointment]:
        """List appointments of a tenant; date filters are inclusive whole days"""
        query = AppointmentRepository._with_directory(db.query(Appointment)).filter(
            Appointment.company_id == company_id
        )

        if day:
            start, end = day_bounds(day)
            query = query.filter(Appointment.scheduled_date >= start, Appointment.scheduled_date <= end)
        else:
            if start_date:
                query = query.filter(Appointment.scheduled_date >= day_bounds(start_date)[0])
            if end_date:
                query = query.filter(Appointment.scheduled_date <= day_bounds(end_date)[1])

        if dentist_id:
            query = query.filter(Appointment.dentist_id == dentist_id)

        if not include_cancelled:
            query = query.filter(Appointment.status != STATUS_CANCELLED)

        return query.order_by(Appointment.scheduled_date, Appointment.id).all()

    @staticmethod
    def active_for_dentist(
        db: Session, company_id: int, dentist_id: int, exclude_id: Optional[int] = None
    ) -> list[Appointment]:
        """Live (non-cancelled) appointments of a dentist, with their procedures"""
        query = (
            db.query(Appointment)
            .options(joinedload(Appointment.procedure))
            .filter(
                Appointment.company_id == company_id,
                Appointment.dentist_id == dentist_id,
                Appointment.status != STATUS_CANCELLED,
            )
        )
        if exclude_id:
            query = query.filter(Appointment.id != exclude_id)
        return query.order_by(Appointment.scheduled_date).all()

    @staticmethod
    def lock_dentist(db: Session, company_id: int, dentist_id: int) -> Optional[User]:
        """SELECT ... FOR UPDATE on the dentist row; serializes bookings per dentist"""
        return (
            db.query(User)
            .filter(User.id == dentist_id, User.company_id == company_id)
            .with_for_update()
            .first()
        )

    @staticmethod
    def add_appointment(db: Session, company_id: int, **appointment_data) -> Appointment:
        """Stage a new appointment; the caller owns the commit"""
        appointment = Appointment(company_id=company_id, **appointment_data)
        db.add(appointment)
        db.flush()
        return appointment

    @staticmethod
    def apply_updates(appointment: Appointment, **updates) -> Appointment:
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)
        return appointment

    @staticmethod
    def due_between(
        db: Session, company_id: int, start: datetime, end: datetime, status: str
    ) -> list[Appointment]:
        """Appointments of a tenant in a civil-time window [start, end)"""
        return (
            AppointmentRepository._with_directory(db.query(Appointment))
            .filter(
                Appointment.company_id == company_id,
                Appointment.scheduled_date >= start,
                Appointment.scheduled_date < end,
                Appointment.status == status,
            )
            .order_by(Appointment.scheduled_date)
            .all()
        )

    @staticmethod
    def cleanup_cancelled(db: Session, company_id: int) -> int:
        """Hard delete cancelled appointments of a tenant. Returns deleted count"""
        count = (
            db.query(Appointment)
            .filter(Appointment.company_id == company_id, Appointment.status == STATUS_CANCELLED)
            .delete(synchronize_session=False)
        )
        db.commit()
        return count


class ConsultationRepository:
    """Repository for consultation database operations"""

    @staticmethod
    def get_consultation(db: Session, company_id: int, consultation_id: int) -> Optional[Consultation]:
        return (
            db.query(Consultation)
            .options(joinedload(Consultation.patient), joinedload(Consultation.dentist))
            .filter(Consultation.id == consultation_id, Consultation.company_id == company_id)
            .first()
        )

    @staticmethod
    def list_consultations(
        db: Session,
        company_id: int,
        patient_id: Optional[int] = None,
        dentist_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Consultation]:
        query = (
            db.query(Consultation)
            .options(joinedload(Consultation.patient), joinedload(Consultation.dentist))
            .filter(Consultation.company_id == company_id)
        )
        if patient_id:
            query = query.filter(Consultation.patient_id == patient_id)
        if dentist_id:
            query = query.filter(Consultation.dentist_id == dentist_id)
        if status:
            query = query.filter(Consultation.status == status)
        return query.order_by(Consultation.date.desc()).all()

    @staticmethod
    def add_consultation(db: Session, company_id: int, **consultation_data) -> Consultation:
        consultation = Consultation(company_id=company_id, **consultation_data)
        db.add(consultation)
        db.flush()
        return consultation

    @staticmethod
    def linked_to(db: Session, appointment: Appointment) -> list[Consultation]:
        """
        Consultations that follow this appointment's status.

        Explicit links win (consultation.appointment_id, or the consultation that
        synthesized the appointment). Without one, fall back to the consultation of
        the same patient and dentist on the same civil day.
        """
        explicit = (
            db.query(Consultation)
            .filter(
                Consultation.company_id == appointment.company_id,
                (Consultation.appointment_id == appointment.id)
                | (Consultation.id == appointment.consultation_id),
            )
            .all()
        )
        if explicit:
            return explicit

        day_start, day_end = day_bounds(appointment.scheduled_date.date())
        return (
            db.query(Consultation)
            .filter(
                Consultation.company_id == appointment.company_id,
                Consultation.patient_id == appointment.patient_id,
                Consultation.dentist_id == appointment.dentist_id,
                Consultation.appointment_id.is_(None),
                Consultation.date >= day_start,
                Consultation.date <= day_end,
            )
            .all()
        )

    @staticmethod
    def delete_consultation(db: Session, consultation: Consultation) -> int:
        """
        Hard delete a consultation together with the appointments it owns:
        the linked one (appointment_id) and every one it synthesized
        (consultation_id). Returns the number of appointments removed.
        """
        owned = (
            db.query(Appointment)
            .filter(
                Appointment.company_id == consultation.company_id,
                (Appointment.consultation_id == consultation.id)
                | (Appointment.id == consultation.appointment_id),
            )
            .all()
        )
        for appointment in owned:
            db.delete(appointment)
        db.flush()
        db.delete(consultation)
        db.commit()
        return len(owned)
