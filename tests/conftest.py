import os

# Configure before the app modules read the environment
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.pop("WHATSAPP_API_URL", None)
os.environ.pop("WHATSAPP_API_KEY", None)

from datetime import datetime  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.auth import create_access_token  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.main import app  # noqa: E402
from app.models import (  # noqa: E402
    STATUS_SCHEDULED,
    Appointment,
    Company,
    Consultation,
    Patient,
    Procedure,
    User,
)

# Far enough ahead that the lead-time guard never trips
FUTURE_DAY = datetime(2099, 1, 5)


def at(hour: int, minute: int = 0, day: datetime = FUTURE_DAY) -> datetime:
    return day.replace(hour=hour, minute=minute)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def clinic(db):
    """Two tenants; the first one is fully staffed"""
    company = Company(name="Clínica Sorriso", timezone="America/Sao_Paulo")
    other_company = Company(name="Clínica Norte", timezone="America/Manaus")
    db.add_all([company, other_company])
    db.flush()

    admin = User(
        company_id=company.id,
        username="admin",
        name="Ana Admin",
        email="admin@sorriso.test",
        role="admin",
    )
    dentist = User(
        company_id=company.id,
        username="drcarlos",
        name="Dr. Carlos",
        email="carlos@sorriso.test",
        role="dentist",
    )
    second_dentist = User(
        company_id=company.id,
        username="drabeatriz",
        name="Dra. Beatriz",
        email="beatriz@sorriso.test",
        role="dentist",
    )
    outsider = User(
        company_id=other_company.id,
        username="drnorte",
        name="Dr. Norte",
        email="norte@norte.test",
        role="dentist",
    )
    patient = Patient(company_id=company.id, name="João Silva", phone="(11) 98888-7777")
    second_patient = Patient(company_id=company.id, name="Maria Souza", phone=None)
    outsider_patient = Patient(company_id=other_company.id, name="Pedro Norte", phone="92999990000")

    cleaning = Procedure(company_id=company.id, name="Limpeza", price=150, duration=30)
    root_canal = Procedure(company_id=company.id, name="Canal", price=900, duration=90)
    extraction = Procedure(company_id=company.id, name="Extração", price=300, duration=60)
    evaluation = Procedure(company_id=company.id, name="Avaliação", price=0, duration=0)
    outsider_procedure = Procedure(company_id=other_company.id, name="Limpeza", price=120, duration=30)

    db.add_all(
        [
            admin,
            dentist,
            second_dentist,
            outsider,
            patient,
            second_patient,
            outsider_patient,
            cleaning,
            root_canal,
            extraction,
            evaluation,
            outsider_procedure,
        ]
    )
    db.commit()

    return SimpleNamespace(
        company=company,
        other_company=other_company,
        admin=admin,
        dentist=dentist,
        second_dentist=second_dentist,
        outsider=outsider,
        patient=patient,
        second_patient=second_patient,
        outsider_patient=outsider_patient,
        cleaning=cleaning,
        root_canal=root_canal,
        extraction=extraction,
        evaluation=evaluation,
        outsider_procedure=outsider_procedure,
    )


@pytest.fixture
def make_appointment(db, clinic):
    """Insert an appointment directly, bypassing the booking checks"""

    def _make(start, procedure=None, dentist=None, patient=None, status=STATUS_SCHEDULED, company=None):
        appointment = Appointment(
            company_id=(company or clinic.company).id,
            patient_id=(patient or clinic.patient).id,
            dentist_id=(dentist or clinic.dentist).id,
            procedure_id=(procedure or clinic.cleaning).id,
            scheduled_date=start,
            status=status,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make


@pytest.fixture
def make_consultation(db, clinic):
    def _make(start, appointment_id=None, status=STATUS_SCHEDULED, patient=None, dentist=None):
        consultation = Consultation(
            company_id=clinic.company.id,
            patient_id=(patient or clinic.patient).id,
            dentist_id=(dentist or clinic.dentist).id,
            appointment_id=appointment_id,
            date=start,
            procedures=[],
            status=status,
        )
        db.add(consultation)
        db.commit()
        db.refresh(consultation)
        return consultation

    return _make


@pytest.fixture
def client(session_factory, clinic):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(clinic):
    return {"Authorization": f"Bearer {create_access_token(clinic.dentist)}"}


@pytest.fixture
def admin_headers(clinic):
    return {"Authorization": f"Bearer {create_access_token(clinic.admin)}"}


@pytest.fixture
def outsider_headers(clinic):
    return {"Authorization": f"Bearer {create_access_token(clinic.outsider)}"}
