"""
Patient Notification Service
Booking confirmations and appointment reminders over WhatsApp.

Every function here is best-effort: errors are logged and reported in the
returned dict, never raised, so a failed message can't affect the booking
that triggered it.
"""

import logging
from datetime import datetime
from typing import Optional

from . import whatsapp_service

logger = logging.getLogger(__name__)


def format_confirmation_message(
    patient_name: str, scheduled_date: datetime, procedure_name: str, dentist_name: str
) -> str:
    return (
        f"Olá {patient_name}, sua consulta de {procedure_name} com {dentist_name} foi agendada "
        f"para {scheduled_date.strftime('%d/%m/%Y')} às {scheduled_date.strftime('%H:%M')}."
    )


def format_reminder_message(patient_name: str, scheduled_date: datetime) -> str:
    return (
        f"Olá {patient_name}, passando para lembrar que você tem uma consulta marcada "
        f"para amanhã às {scheduled_date.strftime('%H:%M')}."
    )


async def send_patient_message(
    appointment_id: int,
    patient_name: str,
    patient_phone: Optional[str],
    message: str,
    notification_type: str,
    instance_name: Optional[str] = None,
) -> dict:
    """
    Send one WhatsApp message to a patient

    Returns:
        Dict with whatsapp_sent and whatsapp_error
    """
    result = {"whatsapp_sent": False, "whatsapp_error": None}

    if not patient_phone:
        logger.debug(
            f"⚠️ No phone number for {notification_type} of appointment {appointment_id} ({patient_name})"
        )
        result["whatsapp_error"] = "No phone number"
        return result

    try:
        logger.info(f"📱 Sending {notification_type} for appointment {appointment_id}")
        success, error = await whatsapp_service.send_whatsapp_message(
            to_phone=patient_phone, message=message, instance_name=instance_name
        )
        result["whatsapp_sent"] = success
        result["whatsapp_error"] = error
        if not success:
            if error and "disabled" not in error.lower():
                logger.warning(
                    f"⚠️ {notification_type} not sent for appointment {appointment_id}: {error}"
                )
            else:
                logger.debug(f"ℹ️ {notification_type} skipped: {error}")
    except Exception as e:
        result["whatsapp_error"] = str(e)
        logger.error(f"❌ Failed to send {notification_type} for appointment {appointment_id}: {e}")

    return result


async def send_appointment_confirmation(
    appointment_id: int,
    patient_name: str,
    patient_phone: Optional[str],
    scheduled_date: datetime,
    procedure_name: str,
    dentist_name: str,
    instance_name: Optional[str] = None,
) -> dict:
    """Confirmation sent right after a booking is committed"""
    return await send_patient_message(
        appointment_id=appointment_id,
        patient_name=patient_name,
        patient_phone=patient_phone,
        message=format_confirmation_message(
            patient_name, scheduled_date, procedure_name, dentist_name
        ),
        notification_type="appointment_confirmation",
        instance_name=instance_name,
    )


async def send_appointment_reminder(
    appointment_id: int,
    patient_name: str,
    patient_phone: Optional[str],
    scheduled_date: datetime,
    instance_name: Optional[str] = None,
) -> dict:
    """Day-before reminder sent by the worker"""
    return await send_patient_message(
        appointment_id=appointment_id,
        patient_name=patient_name,
        patient_phone=patient_phone,
        message=format_reminder_message(patient_name, scheduled_date),
        notification_type="appointment_reminder",
        instance_name=instance_name,
    )
