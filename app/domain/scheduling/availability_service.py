"""Conflict detection - does a candidate interval collide with a dentist's live bookings?"""

import logging
from datetime import datetime
from typing import NamedTuple, Optional

from sqlalchemy.orm import Session

from ...models import Appointment
from .repository import AppointmentRepository, DirectoryRepository
from .time_calculator import effective_duration, format_hhmm, interval_end, intervals_overlap

logger = logging.getLogger(__name__)


class AvailabilityResult(NamedTuple):
    available: bool
    conflicting_appointment: Optional[Appointment] = None
    message: Optional[str] = None


def conflict_message(existing: Appointment) -> str:
    """Human readable clash description shown next to the time field"""
    procedure = existing.procedure
    start = existing.scheduled_date
    end = interval_end(start, procedure.duration if procedure else None)
    procedure_name = procedure.name if procedure else "procedimento"
    return (
        f"Conflito de horário: já existe um agendamento de {format_hhmm(start)} "
        f"até {format_hhmm(end)} ({procedure_name})."
    )


class AvailabilityService:
    """Read-only checks against the appointment store; never writes"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = AppointmentRepository()
        self.directory = DirectoryRepository()

    def procedure_duration(self, company_id: int, procedure_id: Optional[int]) -> int:
        procedure = (
            self.directory.get_procedure(self.db, company_id, procedure_id) if procedure_id else None
        )
        return effective_duration(procedure.duration if procedure else None)

    def check_interval(
        self,
        company_id: int,
        dentist_id: int,
        candidate_start: datetime,
        duration: int,
        exclude_appointment_id: Optional[int] = None,
    ) -> AvailabilityResult:
        """Half-open overlap test of [start, start + duration) against every live booking"""
        candidate_end = interval_end(candidate_start, duration)
        existing_appointments = self.repo.active_for_dentist(
            self.db, company_id, dentist_id, exclude_id=exclude_appointment_id
        )

        for existing in existing_appointments:
            existing_start = existing.scheduled_date
            existing_end = interval_end(
                existing_start, existing.procedure.duration if existing.procedure else None
            )
            if intervals_overlap(candidate_start, candidate_end, existing_start, existing_end):
                logger.debug(
                    f"Conflict for dentist {dentist_id}: {candidate_start}-{candidate_end} "
                    f"overlaps appointment {existing.id} ({existing_start}-{existing_end})"
                )
                return AvailabilityResult(False, existing, conflict_message(existing))

        return AvailabilityResult(True)

    def is_slot_available(
        self,
        company_id: int,
        dentist_id: int,
        candidate_start: datetime,
        procedure_id: Optional[int],
        exclude_appointment_id: Optional[int] = None,
    ) -> AvailabilityResult:
        duration = self.procedure_duration(company_id, procedure_id)
        return self.check_interval(
            company_id, dentist_id, candidate_start, duration, exclude_appointment_id
        )
