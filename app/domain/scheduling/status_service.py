"""
Status workflow shared by appointments and consultations.

    agendado → em_atendimento → concluido
         ↘            ↘
          cancelado    cancelado

concluido and cancelado are terminal. A status change on one side is copied
to the linked record on the other side. That copy is best-effort: failures
are logged and never undo the change that triggered it.
"""

import logging
from typing import Optional

from sqlalchemy.orm import Session

from ...models import (
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_IN_PROGRESS,
    STATUS_SCHEDULED,
    Appointment,
    Consultation,
)
from .exceptions import NotFoundError, ValidationError
from .repository import AppointmentRepository, ConsultationRepository

logger = logging.getLogger(__name__)

ACTION_START = "start"
ACTION_COMPLETE = "complete"
ACTION_CANCEL = "cancel"

# Anything not listed is illegal
TRANSITIONS = {
    (STATUS_SCHEDULED, ACTION_START): STATUS_IN_PROGRESS,
    (STATUS_SCHEDULED, ACTION_CANCEL): STATUS_CANCELLED,
    (STATUS_IN_PROGRESS, ACTION_COMPLETE): STATUS_COMPLETED,
    (STATUS_IN_PROGRESS, ACTION_CANCEL): STATUS_CANCELLED,
}


def allowed_actions(status: str) -> list[str]:
    """Actions the UI may offer for a record in this status"""
    return [action for (current, action) in TRANSITIONS if current == status]


def validate_status_transition(current_status: str, new_status: str) -> bool:
    # Allow same status (no-op)
    if current_status == new_status:
        return True
    return new_status in {
        target for (current, _action), target in TRANSITIONS.items() if current == current_status
    }


def next_status(current_status: str, action: str) -> str:
    key = (current_status, action)
    if key not in TRANSITIONS:
        raise ValidationError(
            f"Ação '{action}' não é permitida para um registro com status '{current_status}'."
        )
    return TRANSITIONS[key]


def ensure_transition(current_status: str, new_status: str) -> None:
    if not validate_status_transition(current_status, new_status):
        raise ValidationError(
            f"Transição de status inválida: {current_status} → {new_status}."
        )


class StatusService:
    """Applies status changes and keeps appointment and consultation in step"""

    def __init__(self, db: Session):
        self.db = db
        self.appointments = AppointmentRepository()
        self.consultations = ConsultationRepository()

    # ------------------------------------------------------------------
    # Appointment side
    # ------------------------------------------------------------------

    def change_appointment_status(
        self, company_id: int, appointment_id: int, new_status: str
    ) -> Appointment:
        appointment = self.appointments.get_appointment(self.db, company_id, appointment_id)
        if not appointment:
            raise NotFoundError("Agendamento", appointment_id)

        previous = appointment.status
        ensure_transition(previous, new_status)
        if previous == new_status:
            return appointment

        appointment.status = new_status
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"✅ Appointment {appointment.id} transitioned: {previous} → {new_status}")

        self.sync_consultations(appointment)
        return appointment

    def apply_action(self, company_id: int, appointment_id: int, action: str) -> Appointment:
        appointment = self.appointments.get_appointment(self.db, company_id, appointment_id)
        if not appointment:
            raise NotFoundError("Agendamento", appointment_id)
        return self.change_appointment_status(
            company_id, appointment_id, next_status(appointment.status, action)
        )

    def sync_consultations(self, appointment: Appointment) -> None:
        """Copy the appointment's status to its consultations; never raises"""
        try:
            linked = self.consultations.linked_to(self.db, appointment)
            changed = 0
            for consultation in linked:
                if consultation.status == appointment.status:
                    continue
                if not validate_status_transition(consultation.status, appointment.status):
                    logger.warning(
                        f"⚠️ Consultation {consultation.id} left at '{consultation.status}': "
                        f"cannot follow appointment {appointment.id} to '{appointment.status}'"
                    )
                    continue
                consultation.status = appointment.status
                changed += 1

            if changed:
                self.db.commit()
                logger.info(
                    f"🔄 Synced {changed} consultation(s) to appointment {appointment.id} "
                    f"status '{appointment.status}'"
                )
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to sync consultations for appointment {appointment.id}: {e}")

    # ------------------------------------------------------------------
    # Consultation side
    # ------------------------------------------------------------------

    def change_consultation_status(
        self, company_id: int, consultation_id: int, new_status: str
    ) -> Consultation:
        consultation = self.consultations.get_consultation(self.db, company_id, consultation_id)
        if not consultation:
            raise NotFoundError("Consulta", consultation_id)

        previous = consultation.status
        ensure_transition(previous, new_status)
        if previous == new_status:
            return consultation

        consultation.status = new_status
        self.db.commit()
        self.db.refresh(consultation)
        logger.info(f"✅ Consultation {consultation.id} transitioned: {previous} → {new_status}")

        self._sync_appointment(consultation)
        return consultation

    def _sync_appointment(self, consultation: Consultation) -> Optional[Appointment]:
        """Update only the explicitly linked appointment; never fan out, never raises"""
        if not consultation.appointment_id:
            return None

        try:
            appointment = self.appointments.get_appointment(
                self.db, consultation.company_id, consultation.appointment_id
            )
            if not appointment:
                logger.warning(
                    f"⚠️ Consultation {consultation.id} links missing appointment "
                    f"{consultation.appointment_id}"
                )
                return None

            if appointment.status == consultation.status:
                return appointment
            if not validate_status_transition(appointment.status, consultation.status):
                logger.warning(
                    f"⚠️ Appointment {appointment.id} left at '{appointment.status}': "
                    f"cannot follow consultation {consultation.id} to '{consultation.status}'"
                )
                return appointment

            appointment.status = consultation.status
            self.db.commit()
            logger.info(
                f"🔄 Synced appointment {appointment.id} to consultation {consultation.id} "
                f"status '{consultation.status}'"
            )
            return appointment
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to sync appointment for consultation {consultation.id}: {e}")
            return None
