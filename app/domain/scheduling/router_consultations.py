"""Consultation router - FastAPI endpoints for consultations and their auto-booking"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ...auth import get_current_user
from ...models import Consultation, User
from .booking_service import BookingService, FanOutResult
from .router_appointments import get_booking_service, to_appointment_response
from .schemas import (
    AppointmentStatus,
    ConsultationCreate,
    ConsultationCreatedResponse,
    ConsultationDeletedResponse,
    ConsultationResponse,
    ConsultationUpdate,
    PersonSummary,
    ProcedureSnapshot,
    SkippedProcedure,
)
from .status_service import allowed_actions

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/consultations", tags=["Consultations"])


def _consultation_fields(c: Consultation) -> dict:
    return {
        "id": c.id,
        "companyId": c.company_id,
        "patientId": c.patient_id,
        "dentistId": c.dentist_id,
        "appointmentId": c.appointment_id,
        "date": c.date,
        "procedures": [ProcedureSnapshot(**p) for p in (c.procedures or [])],
        "clinicalNotes": c.clinical_notes,
        "observations": c.observations,
        "status": c.status,
        "allowedActions": allowed_actions(c.status),
        "patient": PersonSummary(id=c.patient.id, name=c.patient.name, phone=c.patient.phone)
        if c.patient
        else None,
        "dentist": PersonSummary(id=c.dentist.id, name=c.dentist.name) if c.dentist else None,
        "createdAt": c.created_at,
        "updatedAt": c.updated_at,
    }


def to_consultation_response(c: Consultation) -> ConsultationResponse:
    return ConsultationResponse(**_consultation_fields(c))


def to_created_response(result: FanOutResult) -> ConsultationCreatedResponse:
    return ConsultationCreatedResponse(
        **_consultation_fields(result.consultation),
        appointments=[to_appointment_response(a) for a in result.appointments],
        skipped=[
            SkippedProcedure(
                procedure=s.procedure,
                scheduledDate=s.scheduled_date,
                reason=s.reason,
                message=s.message,
            )
            for s in result.skipped
        ],
    )


@router.get("", response_model=list[ConsultationResponse])
async def get_consultations(
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
    patient_id: Optional[int] = Query(None, alias="patientId"),
    dentist_id: Optional[int] = Query(None, alias="dentistId"),
    status: Optional[AppointmentStatus] = Query(None),
):
    """Get consultations of the clinic, most recent first"""
    consultations = service.list_consultations(
        current_user.company_id, patient_id, dentist_id, status
    )
    return [to_consultation_response(c) for c in consultations]


@router.get("/{consultation_id}", response_model=ConsultationResponse)
async def get_consultation(
    consultation_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    return to_consultation_response(
        service.get_consultation(current_user.company_id, consultation_id)
    )


@router.post("", response_model=ConsultationCreatedResponse)
async def create_consultation(
    data: ConsultationCreate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """
    Record a consultation and book its procedures back to back.

    Procedures that clash with the dentist's agenda are reported under
    `skipped`; the consultation is saved regardless.
    """
    result = service.create_consultation_with_appointments(
        current_user.company_id,
        patient_id=data.patientId,
        dentist_id=data.dentistId,
        consultation_date=data.date,
        procedures=data.procedures,
        clinical_notes=data.clinicalNotes,
        observations=data.observations,
    )
    return to_created_response(result)


@router.put("/{consultation_id}", response_model=ConsultationResponse)
async def update_consultation(
    consultation_id: int,
    data: ConsultationUpdate,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Partial update; a status change is copied to the linked appointment only"""
    changes = {
        "clinical_notes": data.clinicalNotes,
        "observations": data.observations,
        "status": data.status,
    }
    consultation = service.update_consultation(current_user.company_id, consultation_id, changes)
    return to_consultation_response(consultation)


@router.delete("/{consultation_id}", response_model=ConsultationDeletedResponse)
async def delete_consultation(
    consultation_id: int,
    current_user: User = Depends(get_current_user),
    service: BookingService = Depends(get_booking_service),
):
    """Delete a consultation and the appointments booked for it"""
    removed = service.delete_consultation(current_user.company_id, consultation_id)
    return ConsultationDeletedResponse(
        message=f"Consulta {consultation_id} removida.", deletedAppointments=removed
    )
