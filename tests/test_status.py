import pytest
from conftest import at

from app.domain.scheduling.booking_service import BookingService
from app.domain.scheduling.exceptions import ValidationError
from app.domain.scheduling.repository import ConsultationRepository
from app.domain.scheduling.status_service import (
    ACTION_CANCEL,
    ACTION_COMPLETE,
    ACTION_START,
    StatusService,
    allowed_actions,
    next_status,
    validate_status_transition,
)
from app.models import Appointment, Consultation


def test_allowed_actions_per_status():
    assert allowed_actions("agendado") == [ACTION_START, ACTION_CANCEL]
    assert allowed_actions("em_atendimento") == [ACTION_COMPLETE, ACTION_CANCEL]
    assert allowed_actions("concluido") == []
    assert allowed_actions("cancelado") == []


@pytest.mark.parametrize(
    "current,new,valid",
    [
        ("agendado", "em_atendimento", True),
        ("agendado", "cancelado", True),
        ("agendado", "concluido", False),
        ("em_atendimento", "concluido", True),
        ("em_atendimento", "cancelado", True),
        ("em_atendimento", "agendado", False),
        ("concluido", "cancelado", False),
        ("cancelado", "agendado", False),
        ("concluido", "concluido", True),
    ],
)
def test_status_transitions(current, new, valid):
    assert validate_status_transition(current, new) is valid


def test_actions_on_terminal_states_are_rejected():
    assert next_status("agendado", ACTION_START) == "em_atendimento"
    with pytest.raises(ValidationError):
        next_status("concluido", ACTION_CANCEL)
    with pytest.raises(ValidationError):
        next_status("agendado", ACTION_COMPLETE)


def test_appointment_status_follows_actions(db, clinic, make_appointment):
    appointment = make_appointment(at(9))
    service = StatusService(db)

    assert service.apply_action(clinic.company.id, appointment.id, ACTION_START).status == "em_atendimento"
    assert service.apply_action(clinic.company.id, appointment.id, ACTION_COMPLETE).status == "concluido"
    with pytest.raises(ValidationError):
        service.apply_action(clinic.company.id, appointment.id, ACTION_CANCEL)


def test_explicitly_linked_consultation_follows_the_appointment(db, clinic, make_appointment, make_consultation):
    appointment = make_appointment(at(9))
    consultation = make_consultation(at(9), appointment_id=appointment.id)

    StatusService(db).change_appointment_status(clinic.company.id, appointment.id, "em_atendimento")

    db.expire_all()
    assert db.get(Consultation, consultation.id).status == "em_atendimento"


def test_same_day_consultation_without_link_follows_the_appointment(db, clinic, make_appointment, make_consultation):
    appointment = make_appointment(at(9))
    same_day = make_consultation(at(16))
    other_day = make_consultation(at(9).replace(day=6))
    other_patient = make_consultation(at(9), patient=clinic.second_patient)

    StatusService(db).change_appointment_status(clinic.company.id, appointment.id, "cancelado")

    db.expire_all()
    assert db.get(Consultation, same_day.id).status == "cancelado"
    assert db.get(Consultation, other_day.id).status == "agendado"
    assert db.get(Consultation, other_patient.id).status == "agendado"


def test_consultation_that_cannot_follow_is_left_alone(db, clinic, make_appointment, make_consultation):
    appointment = make_appointment(at(9))
    consultation = make_consultation(at(9), appointment_id=appointment.id, status="concluido")

    updated = StatusService(db).change_appointment_status(clinic.company.id, appointment.id, "cancelado")

    db.expire_all()
    assert updated.status == "cancelado"
    assert db.get(Consultation, consultation.id).status == "concluido"


def test_consultation_status_updates_only_the_linked_appointment(db, clinic):
    result = BookingService(db).create_consultation_with_appointments(
        clinic.company.id,
        patient_id=clinic.patient.id,
        dentist_id=clinic.dentist.id,
        consultation_date=at(14),
        procedures=[clinic.cleaning.id, clinic.cleaning.id, clinic.extraction.id],
    )
    first, *others = [a.id for a in result.appointments]

    StatusService(db).change_consultation_status(clinic.company.id, result.consultation.id, "em_atendimento")

    db.expire_all()
    assert db.get(Appointment, first).status == "em_atendimento"
    assert [db.get(Appointment, a).status for a in others] == ["agendado", "agendado"]


def test_consultation_without_link_changes_no_appointment(db, clinic, make_appointment, make_consultation):
    appointment = make_appointment(at(9))
    consultation = make_consultation(at(9))

    StatusService(db).change_consultation_status(clinic.company.id, consultation.id, "cancelado")

    db.expire_all()
    assert db.get(Appointment, appointment.id).status == "agendado"


def test_sync_failure_does_not_undo_the_primary_update(db, clinic, make_appointment, monkeypatch):
    appointment = make_appointment(at(9))

    def broken_lookup(db, appointment):
        raise RuntimeError("lost connection")

    monkeypatch.setattr(ConsultationRepository, "linked_to", staticmethod(broken_lookup))

    updated = StatusService(db).change_appointment_status(clinic.company.id, appointment.id, "em_atendimento")

    db.expire_all()
    assert updated.status == "em_atendimento"
    assert db.get(Appointment, appointment.id).status == "em_atendimento"
