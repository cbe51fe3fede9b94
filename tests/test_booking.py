import asyncio
from datetime import datetime, timezone

import pytest
from conftest import at
from fastapi import BackgroundTasks

from app.domain.scheduling.booking_service import BookingService
from app.domain.scheduling.exceptions import ConflictError, NotFoundError, ValidationError
from app.models import STATUS_CANCELLED, STATUS_SCHEDULED, Appointment, Consultation
from app.services import notification_service, whatsapp_service


def book(service, clinic, start, procedure=None, dentist=None, patient=None):
    return service.create_appointment(
        clinic.company.id,
        patient_id=(patient or clinic.patient).id,
        dentist_id=(dentist or clinic.dentist).id,
        procedure_id=(procedure or clinic.cleaning).id,
        scheduled_date=start,
    )


# ============================================================================
# Explicit booking
# ============================================================================


def test_create_appointment(db, clinic):
    appointment = book(BookingService(db), clinic, at(9), clinic.root_canal)

    assert appointment.id is not None
    assert appointment.status == STATUS_SCHEDULED
    assert appointment.scheduled_date == at(9)
    assert appointment.procedure.name == "Canal"


def test_conflicting_booking_is_rejected_and_not_stored(db, clinic):
    service = BookingService(db)
    book(service, clinic, at(9), clinic.root_canal)

    with pytest.raises(ConflictError) as exc_info:
        book(service, clinic, at(10), clinic.cleaning, patient=clinic.second_patient)

    assert "09:00 até 10:30 (Canal)" in exc_info.value.message
    assert exc_info.value.status_code == 409
    assert db.query(Appointment).count() == 1


def test_same_start_is_allowed_after_cancellation(db, clinic, make_appointment):
    make_appointment(at(9), status=STATUS_CANCELLED)

    appointment = book(BookingService(db), clinic, at(9))

    assert appointment.status == STATUS_SCHEDULED
    assert db.query(Appointment).count() == 2


def test_offset_aware_input_is_stored_as_clinic_civil_time(db, clinic):
    # 17:00 UTC is 14:00 in São Paulo
    start = datetime(2099, 1, 5, 17, 0, tzinfo=timezone.utc)

    appointment = book(BookingService(db), clinic, start)

    assert appointment.scheduled_date == at(14)
    assert appointment.scheduled_date.tzinfo is None


def test_directory_references_must_belong_to_the_tenant(db, clinic):
    service = BookingService(db)

    with pytest.raises(NotFoundError):
        book(service, clinic, at(9), patient=clinic.outsider_patient)
    with pytest.raises(NotFoundError):
        book(service, clinic, at(9), dentist=clinic.outsider)
    with pytest.raises(NotFoundError):
        book(service, clinic, at(9), procedure=clinic.outsider_procedure)

    assert db.query(Appointment).count() == 0


# ============================================================================
# Rescheduling
# ============================================================================


def test_reschedule_into_another_booking_is_rejected(db, clinic):
    service = BookingService(db)
    book(service, clinic, at(9), clinic.root_canal)
    second = book(service, clinic, at(11), patient=clinic.second_patient)

    with pytest.raises(ConflictError):
        service.reschedule_appointment(clinic.company.id, second.id, {"scheduled_date": at(10)})

    db.expire_all()
    assert db.get(Appointment, second.id).scheduled_date == at(11)


def test_reschedule_overlapping_its_own_slot(db, clinic):
    service = BookingService(db)
    appointment = book(service, clinic, at(9), clinic.root_canal)

    moved = service.reschedule_appointment(clinic.company.id, appointment.id, {"scheduled_date": at(9, 30)})

    assert moved.scheduled_date == at(9, 30)


def test_reschedule_to_another_dentist_checks_that_dentist(db, clinic, make_appointment):
    make_appointment(at(9), procedure=clinic.root_canal, dentist=clinic.second_dentist)
    service = BookingService(db)
    appointment = book(service, clinic, at(9))

    with pytest.raises(ConflictError):
        service.reschedule_appointment(
            clinic.company.id, appointment.id, {"dentist_id": clinic.second_dentist.id}
        )


def test_update_with_status_goes_through_the_workflow(db, clinic):
    service = BookingService(db)
    appointment = book(service, clinic, at(9))

    updated = service.reschedule_appointment(
        clinic.company.id, appointment.id, {"status": "em_atendimento", "notes": "Paciente chegou"}
    )

    assert updated.status == "em_atendimento"
    assert updated.notes == "Paciente chegou"

    with pytest.raises(ValidationError):
        service.reschedule_appointment(clinic.company.id, appointment.id, {"status": "agendado"})


def test_rejected_status_change_leaves_the_move_unsaved(db, clinic):
    service = BookingService(db)
    appointment = book(service, clinic, at(9))

    # agendado cannot jump straight to concluido
    with pytest.raises(ValidationError):
        service.reschedule_appointment(
            clinic.company.id,
            appointment.id,
            {"scheduled_date": at(11), "notes": "moved", "status": "concluido"},
        )

    db.expire_all()
    stored = db.get(Appointment, appointment.id)
    assert stored.scheduled_date == at(9)
    assert stored.notes is None
    assert stored.status == STATUS_SCHEDULED


def test_move_and_cancel_together_skips_the_conflict_check(db, clinic):
    service = BookingService(db)
    book(service, clinic, at(10))
    appointment = book(service, clinic, at(14), patient=clinic.second_patient)

    cancelled = service.reschedule_appointment(
        clinic.company.id, appointment.id, {"scheduled_date": at(10), "status": STATUS_CANCELLED}
    )

    assert cancelled.status == STATUS_CANCELLED
    assert cancelled.scheduled_date == at(10)


# ============================================================================
# Consultation fan-out
# ============================================================================


def test_consultation_books_procedures_back_to_back(db, clinic):
    result = BookingService(db).create_consultation_with_appointments(
        clinic.company.id,
        patient_id=clinic.patient.id,
        dentist_id=clinic.dentist.id,
        consultation_date=at(14),
        procedures=[clinic.cleaning.id, clinic.root_canal.id],
    )

    starts = [a.scheduled_date for a in result.appointments]
    assert starts == [at(14), at(14, 30)]
    assert result.skipped == []

    consultation = result.consultation
    assert consultation.appointment_id == result.appointments[0].id
    assert [p["name"] for p in consultation.procedures] == ["Limpeza", "Canal"]
    assert consultation.procedures[1] == {
        "procedureId": clinic.root_canal.id,
        "name": "Canal",
        "duration": 90,
    }
    for appointment in result.appointments:
        assert appointment.consultation_id == consultation.id
        assert appointment.notes == f"Agendamento automático da consulta #{consultation.id}"
        assert appointment.status == STATUS_SCHEDULED


def test_fan_out_skips_clashes_and_keeps_advancing_the_clock(db, clinic, make_appointment):
    blocker = make_appointment(at(14, 30), patient=clinic.second_patient)

    result = BookingService(db).create_consultation_with_appointments(
        clinic.company.id,
        patient_id=clinic.patient.id,
        dentist_id=clinic.dentist.id,
        consultation_date=at(14),
        procedures=[clinic.cleaning.id, clinic.extraction.id, clinic.cleaning.id],
    )

    # Extração (14:30-15:30) clashes; the clock still moves to 15:30
    assert [a.scheduled_date for a in result.appointments] == [at(14), at(15, 30)]
    assert len(result.skipped) == 1
    skipped = result.skipped[0]
    assert skipped.procedure == "Extração"
    assert skipped.reason == "conflict"
    assert skipped.scheduled_date == at(14, 30)

    db.expire_all()
    assert db.get(Appointment, blocker.id).status == STATUS_SCHEDULED
    assert db.query(Consultation).count() == 1


def test_fan_out_with_every_step_clashing_still_saves_the_consultation(db, clinic, make_appointment):
    make_appointment(at(14), procedure=clinic.root_canal, patient=clinic.second_patient)

    result = BookingService(db).create_consultation_with_appointments(
        clinic.company.id,
        patient_id=clinic.patient.id,
        dentist_id=clinic.dentist.id,
        consultation_date=at(14),
        procedures=[clinic.cleaning.id],
    )

    assert result.appointments == []
    assert result.consultation.id is not None
    assert result.consultation.appointment_id is None


def test_fan_out_resolves_legacy_names_and_reports_unknown_ones(db, clinic):
    result = BookingService(db).create_consultation_with_appointments(
        clinic.company.id,
        patient_id=clinic.patient.id,
        dentist_id=clinic.dentist.id,
        consultation_date=at(14),
        procedures=["Inexistente", "Limpeza"],
    )

    assert [a.procedure_id for a in result.appointments] == [clinic.cleaning.id]
    assert result.appointments[0].scheduled_date == at(14)
    assert [(s.procedure, s.reason) for s in result.skipped] == [("Inexistente", "not_found")]


def test_consultation_in_the_past_is_rejected_before_any_write(db, clinic):
    with pytest.raises(ValidationError):
        BookingService(db).create_consultation_with_appointments(
            clinic.company.id,
            patient_id=clinic.patient.id,
            dentist_id=clinic.dentist.id,
            consultation_date=datetime(2000, 1, 1, 9, 0),
            procedures=[clinic.cleaning.id],
        )

    assert db.query(Consultation).count() == 0
    assert db.query(Appointment).count() == 0


# ============================================================================
# Notifications
# ============================================================================


def test_confirmation_is_queued_only_when_whatsapp_is_enabled(db, clinic):
    tasks = BackgroundTasks()
    book(BookingService(db, tasks), clinic, at(9))
    assert tasks.tasks == []

    clinic.company.whatsapp_enabled = True
    clinic.company.whatsapp_instance = "sorriso"
    db.commit()

    book(BookingService(db, tasks), clinic, at(10))
    assert len(tasks.tasks) == 1
    assert tasks.tasks[0].kwargs["instance_name"] == "sorriso"
    assert tasks.tasks[0].kwargs["patient_phone"] == "(11) 98888-7777"


def test_failure_to_queue_a_confirmation_does_not_fail_the_booking(db, clinic, monkeypatch):
    clinic.company.whatsapp_enabled = True
    db.commit()
    tasks = BackgroundTasks()

    def broken_add_task(*args, **kwargs):
        raise RuntimeError("queue is down")

    monkeypatch.setattr(tasks, "add_task", broken_add_task)

    appointment = book(BookingService(db, tasks), clinic, at(9))

    assert appointment.id is not None
    assert db.query(Appointment).count() == 1


def test_failed_send_is_reported_not_raised(monkeypatch):
    async def gateway_down(**kwargs):
        raise RuntimeError("connection refused")

    monkeypatch.setattr(whatsapp_service, "send_whatsapp_message", gateway_down)

    result = asyncio.run(
        notification_service.send_appointment_confirmation(
            appointment_id=1,
            patient_name="João Silva",
            patient_phone="11988887777",
            scheduled_date=at(9),
            procedure_name="Limpeza",
            dentist_name="Dr. Carlos",
        )
    )

    assert result == {"whatsapp_sent": False, "whatsapp_error": "connection refused"}


def test_confirmation_message_text():
    message = notification_service.format_confirmation_message("João", at(9, 30), "Limpeza", "Dr. Carlos")
    assert message == (
        "Olá João, sua consulta de Limpeza com Dr. Carlos foi agendada para 05/01/2099 às 09:30."
    )


def test_phone_numbers_are_normalised():
    assert whatsapp_service.format_phone("(11) 98888-7777") == "5511988887777"
    assert whatsapp_service.format_phone("+55 11 98888-7777") == "5511988887777"
    assert whatsapp_service.format_phone("123") is None
    assert whatsapp_service.format_phone(None) is None
