"""Directory schemas - read-only views of patients, dentists and procedures"""

from datetime import date
from typing import Optional

from pydantic import BaseModel


class PatientResponse(BaseModel):
    id: int
    name: str
    cpf: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    birthDate: Optional[date] = None


class DentistResponse(BaseModel):
    id: int
    name: str
    email: str
    role: str


class ProcedureResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    price: float
    duration: int
    slotSpan: int
    category: Optional[str] = None
