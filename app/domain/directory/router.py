"""Directory router - lookups that feed the booking form and the grid columns"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import User
from ..scheduling.repository import DirectoryRepository
from ..scheduling.slots import slot_span
from ..scheduling.time_calculator import effective_duration
from .schemas import DentistResponse, PatientResponse, ProcedureResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Directory"])


@router.get("/patients", response_model=list[PatientResponse])
async def get_patients(
    search: Optional[str] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    patients = DirectoryRepository.list_patients(db, current_user.company_id, search)
    return [
        PatientResponse(
            id=p.id,
            name=p.name,
            cpf=p.cpf,
            phone=p.phone,
            email=p.email,
            birthDate=p.birth_date,
        )
        for p in patients
    ]


@router.get("/dentists", response_model=list[DentistResponse])
async def get_dentists(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Active dentists of the clinic, one grid column each"""
    dentists = DirectoryRepository.list_dentists(db, current_user.company_id)
    return [DentistResponse(id=d.id, name=d.name, email=d.email, role=d.role) for d in dentists]


@router.get("/procedures", response_model=list[ProcedureResponse])
async def get_procedures(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    procedures = DirectoryRepository.list_procedures(db, current_user.company_id)
    return [
        ProcedureResponse(
            id=p.id,
            name=p.name,
            description=p.description,
            price=float(p.price or 0),
            duration=effective_duration(p.duration),
            slotSpan=slot_span(p.duration),
            category=p.category,
        )
        for p in procedures
    ]
