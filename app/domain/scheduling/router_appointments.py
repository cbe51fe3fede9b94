"""Appointment router - FastAPI endpoints for booking and the daily grid"""

import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_admin
from ...database import get_db
from ...models import Appointment, User
from .booking_service import BookingService
from .schemas import (
    AppointmentCreate,
    AppointmentResponse,
    AppointmentUpdate,
    AvailabilityRequest,
    AvailabilityResponse,
    CleanupResponse,
    DayGridResponse,
    PersonSummary,
    ProcedureSummary,
    SlotCell,
)
from .slots import slot_span
from .status_service import ACTION_CANCEL, ACTION_COMPLETE, ACTION_START, allowed_actions
from .time_calculator import effective_duration, interval_end

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_booking_service(
    background_tasks: BackgroundTasks, db: Session = Depends(get_db)
) -> BookingService:
    """Dependency injection for BookingService"""
    return BookingService(db, background_tasks)


def to_appointment_response(a: Appointment) -> AppointmentResponse:
    duration = a.procedure.duration if a.procedure else None
    return AppointmentResponse(
        id=a.id,
        companyId=a.company_id,
        patientId=a.patient_id,
        dentistId=a.dentist_id,
        procedureId=a.procedure_id,
        consultationId=a.consultation_id,
        scheduledDate=a.scheduled_date,
        endDate=interval_end(a.scheduled_date, effective_duration(duration)),
        slotSpan=slot_span(duration),
        status=a.status,
        allowedActions=allowed_actions(a.status),
        notes=a.notes,
        patient=PersonSummary(id=a.patient.id, name=a.patient.name, phone=a.patient.phone)
        if a.patient
        else None,
        dentist=PersonSummary(id=a.dentist.id, name=a.dentist.name) if a.dentist else None,
        procedure=ProcedureSummary(
            id=a.procedure.id,
            name=a.procedure.name,
            duration=effective_duration(a.procedure.duration),
            price=float(a.procedure.price or 0),
        )
        if a.procedure
        else None,
        createdAt=a.created_at,
        updatedAt=a.updated_at,
    )


# ============================================================================
# QUERIES
# ============================================================================


@router.get("", response_model=list[AppointmentResponse])
async def get_appointments(
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    day: Optional[date] = Query(None, alias="date"),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    dentist_id: Optional[int] = Query(None, alias="dentistId"),
    include_cancelled: bool = Query(False, alias="includeCancelled"),
):
    """List appointments of the clinic, optionally for one day, range or dentist"""
    appointments = service.list_appointments(
        current_user.company_id, day, start_date, end_date, dentist_id, include_cancelled
    )
    return [to_appointment_response(a) for a in appointments]


@router.get("/grid", response_model=DayGridResponse)
async def get_day_grid(
    day: date = Query(..., alias="date"),
    dentist_id: Optional[int] = Query(None, alias="dentistId"),
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Half-hour grid of one day with start/continuation/free cells"""
    appointments, cells = service.day_grid(current_user.company_id, day, dentist_id)
    return DayGridResponse(
        date=day,
        dentistId=dentist_id,
        slots=[SlotCell(**cell) for cell in cells],
        appointments=[to_appointment_response(a) for a in appointments],
    )


@router.post("/check-availability", response_model=AvailabilityResponse)
async def check_availability(
    data: AvailabilityRequest,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Dry-run conflict check; never writes"""
    result = service.check_availability(
        current_user.company_id,
        data.dentistId,
        data.scheduledDate,
        data.procedureId,
        data.excludeId,
    )
    return AvailabilityResponse(
        available=result.available,
        conflictingAppointment=to_appointment_response(result.conflicting_appointment)
        if result.conflicting_appointment
        else None,
        message=result.message,
    )


@router.post("/cleanup-cancelled", response_model=CleanupResponse)
async def cleanup_cancelled(
    current_user: User = Depends(require_admin),
    service: BookingService = Depends(get_booking_service),
):
    """Hard delete every cancelled appointment of the clinic"""
    count = service.cleanup_cancelled(current_user.company_id)
    return CleanupResponse(
        message=f"{count} agendamento(s) cancelado(s) removido(s).", deletedCount=count
    )


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return to_appointment_response(service.get_appointment(current_user.company_id, appointment_id))


# ============================================================================
# BOOKING
# ============================================================================


@router.post("", response_model=AppointmentResponse)
async def create_appointment(
    data: AppointmentCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Book an appointment; 409 when the dentist already has an overlapping one"""
    appointment = service.create_appointment(
        current_user.company_id,
        patient_id=data.patientId,
        dentist_id=data.dentistId,
        procedure_id=data.procedureId,
        scheduled_date=data.scheduledDate,
        notes=data.notes,
    )
    return to_appointment_response(appointment)


@router.put("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: int,
    data: AppointmentUpdate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Partial update; moving the appointment re-runs the conflict check"""
    changes = {
        "patient_id": data.patientId,
        "dentist_id": data.dentistId,
        "procedure_id": data.procedureId,
        "scheduled_date": data.scheduledDate,
        "status": data.status,
        "notes": data.notes,
    }
    appointment = service.reschedule_appointment(current_user.company_id, appointment_id, changes)
    return to_appointment_response(appointment)


# ============================================================================
# STATUS ACTIONS
# ============================================================================


def _apply_action(service: BookingService, company_id: int, appointment_id: int, action: str):
    appointment = service.status.apply_action(company_id, appointment_id, action)
    return to_appointment_response(appointment)


@router.post("/{appointment_id}/start", response_model=AppointmentResponse)
async def start_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return _apply_action(service, current_user.company_id, appointment_id, ACTION_START)


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return _apply_action(service, current_user.company_id, appointment_id, ACTION_COMPLETE)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return _apply_action(service, current_user.company_id, appointment_id, ACTION_CANCEL)
