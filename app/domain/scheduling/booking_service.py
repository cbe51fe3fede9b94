"""
Booking orchestration.

Every write that can create or move an appointment runs the same sequence
inside one transaction: lock the dentist row, re-check the interval against
the dentist's live bookings, then write. Two concurrent requests for the same
dentist are serialized by the lock, so the second one sees the first one's
booking and gets a conflict.
"""

import logging
from datetime import date, datetime, timedelta
from typing import NamedTuple, Optional, Union
from zoneinfo import ZoneInfo

from fastapi import BackgroundTasks
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import BOOKING_MIN_LEAD_SECONDS
from ...models import STATUS_CANCELLED, STATUS_SCHEDULED, Appointment, Consultation, Procedure
from ...services.notification_service import send_appointment_confirmation
from .availability_service import AvailabilityResult, AvailabilityService
from .exceptions import ConflictError, NotFoundError, ValidationError
from .repository import AppointmentRepository, ConsultationRepository, DirectoryRepository
from .slots import build_day_grid
from .status_service import StatusService, ensure_transition
from .time_calculator import civil_now, effective_duration, get_zone, to_civil

logger = logging.getLogger(__name__)

DUPLICATE_START_MESSAGE = "Já existe um agendamento para este dentista neste horário."

RESCHEDULE_FIELDS = ("scheduled_date", "dentist_id", "procedure_id")


class SkippedBooking(NamedTuple):
    procedure: str
    scheduled_date: Optional[datetime]
    reason: str  # not_found | conflict
    message: str


class FanOutResult(NamedTuple):
    consultation: Consultation
    appointments: list[Appointment]
    skipped: list[SkippedBooking]


class BookingService:
    """Service layer for appointment booking and consultation-driven auto-booking"""

    def __init__(self, db: Session, background_tasks: Optional[BackgroundTasks] = None):
        self.db = db
        self.background_tasks = background_tasks
        self.repo = AppointmentRepository()
        self.consultations = ConsultationRepository()
        self.directory = DirectoryRepository()
        self.availability = AvailabilityService(db)
        self.status = StatusService(db)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def company_zone(self, company_id: int) -> ZoneInfo:
        company = self.directory.get_company(self.db, company_id)
        return get_zone(company.timezone if company else None)

    def _require_patient(self, company_id: int, patient_id: int):
        patient = self.directory.get_patient(self.db, company_id, patient_id)
        if not patient:
            raise NotFoundError("Paciente", patient_id)
        return patient

    def _require_dentist(self, company_id: int, dentist_id: int):
        dentist = self.directory.get_dentist(self.db, company_id, dentist_id)
        if not dentist:
            raise NotFoundError("Dentista", dentist_id)
        return dentist

    def _require_procedure(self, company_id: int, procedure_id: int) -> Procedure:
        procedure = self.directory.get_procedure(self.db, company_id, procedure_id)
        if not procedure:
            raise NotFoundError("Procedimento", procedure_id)
        return procedure

    def _lock_and_check(
        self,
        company_id: int,
        dentist_id: int,
        start: datetime,
        duration: Optional[int],
        exclude_appointment_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """Take the dentist lock, then run the overlap check inside it"""
        self.repo.lock_dentist(self.db, company_id, dentist_id)
        return self.availability.check_interval(
            company_id, dentist_id, start, effective_duration(duration), exclude_appointment_id
        )

    def _queue_confirmation(self, appointment: Appointment) -> None:
        """Hand the patient confirmation to a background task; never raises"""
        if self.background_tasks is None:
            return

        try:
            company = self.directory.get_company(self.db, appointment.company_id)
            if not company or not company.whatsapp_enabled:
                logger.debug(f"WhatsApp disabled for company {appointment.company_id}")
                return

            self.background_tasks.add_task(
                send_appointment_confirmation,
                appointment_id=appointment.id,
                patient_name=appointment.patient.name,
                patient_phone=appointment.patient.phone,
                scheduled_date=appointment.scheduled_date,
                procedure_name=appointment.procedure.name,
                dentist_name=appointment.dentist.name,
                instance_name=company.whatsapp_instance,
            )
        except Exception as e:
            logger.error(f"❌ Failed to queue confirmation for appointment {appointment.id}: {e}")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_appointment(self, company_id: int, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, company_id, appointment_id)
        if not appointment:
            raise NotFoundError("Agendamento", appointment_id)
        return appointment

    def list_appointments(
        self,
        company_id: int,
        day: Optional[date] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        dentist_id: Optional[int] = None,
        include_cancelled: bool = False,
    ) -> list[Appointment]:
        if start_date and end_date and end_date < start_date:
            raise ValidationError("endDate deve ser maior ou igual a startDate.")
        return self.repo.list_appointments(
            self.db, company_id, day, start_date, end_date, dentist_id, include_cancelled
        )

    def day_grid(self, company_id: int, day: date, dentist_id: Optional[int] = None):
        appointments = self.repo.list_appointments(self.db, company_id, day=day, dentist_id=dentist_id)
        return appointments, build_day_grid(appointments, day, dentist_id)

    def check_availability(
        self,
        company_id: int,
        dentist_id: int,
        scheduled_date: datetime,
        procedure_id: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> AvailabilityResult:
        start = to_civil(scheduled_date, self.company_zone(company_id))
        return self.availability.is_slot_available(
            company_id, dentist_id, start, procedure_id, exclude_appointment_id
        )

    # ------------------------------------------------------------------
    # Explicit booking
    # ------------------------------------------------------------------

    def create_appointment(
        self,
        company_id: int,
        patient_id: int,
        dentist_id: int,
        procedure_id: int,
        scheduled_date: datetime,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Book an appointment; raises ConflictError when the dentist is busy"""
        start = to_civil(scheduled_date, self.company_zone(company_id))
        self._require_patient(company_id, patient_id)
        self._require_dentist(company_id, dentist_id)
        procedure = self._require_procedure(company_id, procedure_id)

        logger.info(f"📅 Booking dentist {dentist_id} at {start} for patient {patient_id}")

        try:
            result = self._lock_and_check(company_id, dentist_id, start, procedure.duration)
            if not result.available:
                self.db.rollback()
                logger.warning(f"⚠️ Booking rejected for dentist {dentist_id} at {start}: {result.message}")
                raise ConflictError(result.message, result.conflicting_appointment)

            appointment = self.repo.add_appointment(
                self.db,
                company_id,
                patient_id=patient_id,
                dentist_id=dentist_id,
                procedure_id=procedure_id,
                scheduled_date=start,
                status=STATUS_SCHEDULED,
                notes=notes,
            )
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Duplicate start for dentist {dentist_id} at {start}: {e}")
            raise ConflictError(DUPLICATE_START_MESSAGE) from e

        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} booked")

        self._queue_confirmation(appointment)
        return appointment

    def reschedule_appointment(self, company_id: int, appointment_id: int, changes: dict) -> Appointment:
        """
        Apply a partial update.

        Moving the appointment (date, dentist or procedure) re-runs the conflict
        check without the appointment itself. Field and status changes are
        validated first and saved in one commit; the status is then copied to
        linked consultations.
        """
        appointment = self.get_appointment(company_id, appointment_id)
        changes = {key: value for key, value in changes.items() if value is not None}
        new_status = changes.pop("status", None)
        previous_status = appointment.status

        if new_status == previous_status:
            new_status = None
        if new_status:
            ensure_transition(previous_status, new_status)
            changes["status"] = new_status

        if "patient_id" in changes:
            self._require_patient(company_id, changes["patient_id"])

        if "scheduled_date" in changes:
            changes["scheduled_date"] = to_civil(
                changes["scheduled_date"], self.company_zone(company_id)
            )

        moving = any(
            key in changes and changes[key] != getattr(appointment, key) for key in RESCHEDULE_FIELDS
        )

        try:
            if moving:
                dentist_id = changes.get("dentist_id", appointment.dentist_id)
                procedure_id = changes.get("procedure_id", appointment.procedure_id)
                start = changes.get("scheduled_date", appointment.scheduled_date)
                self._require_dentist(company_id, dentist_id)
                procedure = self._require_procedure(company_id, procedure_id)

                # A cancelled appointment holds no slot, so it can move anywhere
                if changes.get("status", previous_status) != STATUS_CANCELLED:
                    result = self._lock_and_check(
                        company_id, dentist_id, start, procedure.duration, appointment.id
                    )
                    if not result.available:
                        self.db.rollback()
                        logger.warning(
                            f"⚠️ Reschedule of appointment {appointment.id} rejected: {result.message}"
                        )
                        raise ConflictError(result.message, result.conflicting_appointment)

            if changes:
                self.repo.apply_updates(appointment, **changes)
                self.db.commit()
                self.db.refresh(appointment)
                logger.info(f"✅ Appointment {appointment.id} updated: {sorted(changes)}")
        except IntegrityError as e:
            self.db.rollback()
            raise ConflictError(DUPLICATE_START_MESSAGE) from e

        if new_status:
            logger.info(
                f"✅ Appointment {appointment.id} transitioned: {previous_status} → {new_status}"
            )
            self.status.sync_consultations(appointment)

        return appointment

    def cleanup_cancelled(self, company_id: int) -> int:
        count = self.repo.cleanup_cancelled(self.db, company_id)
        logger.info(f"🧹 Removed {count} cancelled appointment(s) for company {company_id}")
        return count

    # ------------------------------------------------------------------
    # Consultation-driven fan-out
    # ------------------------------------------------------------------

    def _resolve_procedures(
        self, company_id: int, entries: list[Union[int, str]]
    ) -> tuple[list[Procedure], list[SkippedBooking]]:
        """Map ids (or legacy names) to procedures, keeping request order"""
        resolved: list[Procedure] = []
        skipped: list[SkippedBooking] = []
        for entry in entries:
            if isinstance(entry, int):
                procedure = self.directory.get_procedure(self.db, company_id, entry)
            else:
                procedure = self.directory.find_procedure_by_name(self.db, company_id, entry)

            if procedure is None:
                logger.warning(f"⚠️ Procedure '{entry}' not found for company {company_id}; skipping")
                skipped.append(
                    SkippedBooking(str(entry), None, "not_found", f"Procedimento '{entry}' não encontrado.")
                )
                continue
            resolved.append(procedure)
        return resolved, skipped

    def _book_for_consultation(
        self, consultation: Consultation, procedure: Procedure, start: datetime
    ) -> Union[Appointment, SkippedBooking]:
        """One fan-out step; commits on its own so a later clash can't undo it"""
        try:
            result = self._lock_and_check(
                consultation.company_id, consultation.dentist_id, start, procedure.duration
            )
            if not result.available:
                self.db.rollback()
                logger.warning(
                    f"⚠️ Consultation {consultation.id}: skipping '{procedure.name}' at {start}: "
                    f"{result.message}"
                )
                return SkippedBooking(procedure.name, start, "conflict", result.message)

            appointment = self.repo.add_appointment(
                self.db,
                consultation.company_id,
                patient_id=consultation.patient_id,
                dentist_id=consultation.dentist_id,
                procedure_id=procedure.id,
                consultation_id=consultation.id,
                scheduled_date=start,
                status=STATUS_SCHEDULED,
                notes=f"Agendamento automático da consulta #{consultation.id}",
            )
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"⚠️ Consultation {consultation.id}: duplicate start for '{procedure.name}' at {start}"
            )
            return SkippedBooking(procedure.name, start, "conflict", DUPLICATE_START_MESSAGE)

        self.db.refresh(appointment)
        logger.info(
            f"✅ Consultation {consultation.id}: booked '{procedure.name}' at {start} "
            f"(appointment {appointment.id})"
        )
        return appointment

    def create_consultation_with_appointments(
        self,
        company_id: int,
        patient_id: int,
        dentist_id: int,
        consultation_date: datetime,
        procedures: list[Union[int, str]],
        clinical_notes: Optional[str] = None,
        observations: Optional[str] = None,
    ) -> FanOutResult:
        """
        Save a consultation, then book its procedures back to back.

        The clock starts at the consultation date and advances by each
        procedure's duration, whether or not that procedure could be booked.
        A clash skips only that procedure; the consultation stays saved.
        """
        zone = self.company_zone(company_id)
        start = to_civil(consultation_date, zone)
        earliest = civil_now(zone) + timedelta(seconds=BOOKING_MIN_LEAD_SECONDS)
        if start < earliest:
            raise ValidationError(
                f"A data da consulta deve ser posterior a {earliest.strftime('%d/%m/%Y %H:%M')}."
            )

        self._require_patient(company_id, patient_id)
        self._require_dentist(company_id, dentist_id)
        resolved, skipped = self._resolve_procedures(company_id, procedures)

        consultation = self.consultations.add_consultation(
            self.db,
            company_id,
            patient_id=patient_id,
            dentist_id=dentist_id,
            date=start,
            procedures=[
                {
                    "procedureId": procedure.id,
                    "name": procedure.name,
                    "duration": effective_duration(procedure.duration),
                }
                for procedure in resolved
            ],
            clinical_notes=clinical_notes,
            observations=observations,
            status=STATUS_SCHEDULED,
        )
        self.db.commit()
        self.db.refresh(consultation)
        logger.info(
            f"✅ Consultation {consultation.id} saved with {len(resolved)} procedure(s) starting {start}"
        )

        booked: list[Appointment] = []
        clock = start
        for procedure in resolved:
            outcome = self._book_for_consultation(consultation, procedure, clock)
            if isinstance(outcome, Appointment):
                booked.append(outcome)
            else:
                skipped.append(outcome)
            clock = clock + timedelta(minutes=effective_duration(procedure.duration))

        if booked:
            consultation.appointment_id = booked[0].id
            self.db.commit()
            self.db.refresh(consultation)
            for appointment in booked:
                self._queue_confirmation(appointment)

        if skipped:
            logger.warning(
                f"⚠️ Consultation {consultation.id}: {len(skipped)} procedure(s) not booked"
            )

        return FanOutResult(consultation, booked, skipped)

    # ------------------------------------------------------------------
    # Consultations
    # ------------------------------------------------------------------

    def get_consultation(self, company_id: int, consultation_id: int) -> Consultation:
        consultation = self.consultations.get_consultation(self.db, company_id, consultation_id)
        if not consultation:
            raise NotFoundError("Consulta", consultation_id)
        return consultation

    def list_consultations(
        self,
        company_id: int,
        patient_id: Optional[int] = None,
        dentist_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[Consultation]:
        return self.consultations.list_consultations(
            self.db, company_id, patient_id, dentist_id, status
        )

    def update_consultation(self, company_id: int, consultation_id: int, changes: dict) -> Consultation:
        consultation = self.get_consultation(company_id, consultation_id)
        changes = {key: value for key, value in changes.items() if value is not None}
        new_status = changes.pop("status", None)

        if changes:
            for key, value in changes.items():
                setattr(consultation, key, value)
            self.db.commit()
            self.db.refresh(consultation)

        if new_status and new_status != consultation.status:
            consultation = self.status.change_consultation_status(
                company_id, consultation.id, new_status
            )
        return consultation

    def delete_consultation(self, company_id: int, consultation_id: int) -> int:
        """
        Delete a consultation and the appointments it owns, so none of them
        lingers on the agenda as a booking without its consultation.
        """
        consultation = self.get_consultation(company_id, consultation_id)
        removed = self.consultations.delete_consultation(self.db, consultation)
        logger.info(
            f"🗑️ Consultation {consultation_id} deleted with {removed} linked appointment(s)"
        )
        return removed
