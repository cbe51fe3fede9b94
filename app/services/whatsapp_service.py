"""
WhatsApp Messaging Service
Sends text messages through an Evolution-API compatible gateway
"""

import logging
import re
from typing import Optional

import httpx

from ..config import (
    WHATSAPP_API_KEY,
    WHATSAPP_API_URL,
    WHATSAPP_COUNTRY_CODE,
    WHATSAPP_TIMEOUT,
)

logger = logging.getLogger(__name__)


def format_phone(phone: Optional[str]) -> Optional[str]:
    """
    Normalize a phone number to digits with country code.

    Returns None when nothing usable is left after stripping formatting.
    """
    if not phone:
        return None

    digits = re.sub(r"\D", "", phone)
    if len(digits) < 8:
        return None

    if not digits.startswith(WHATSAPP_COUNTRY_CODE):
        digits = f"{WHATSAPP_COUNTRY_CODE}{digits}"
    return digits


async def send_whatsapp_message(
    to_phone: str,
    message: str,
    instance_name: Optional[str] = None,
) -> tuple[bool, Optional[str]]:
    """
    Send a WhatsApp text message

    Args:
        to_phone: Recipient phone number (any formatting)
        message: Message text
        instance_name: Gateway instance of the clinic; falls back to the default instance

    Returns:
        Tuple of (success: bool, error_message: Optional[str])
    """
    if not WHATSAPP_API_URL or not WHATSAPP_API_KEY:
        logger.debug("WhatsApp gateway not configured")
        return False, "WhatsApp disabled"

    formatted = format_phone(to_phone)
    if not formatted:
        logger.warning(f"⚠️ Invalid phone number for WhatsApp: {to_phone}")
        return False, "Invalid phone number"

    endpoint = f"{WHATSAPP_API_URL.rstrip('/')}/message/sendText"
    if instance_name:
        endpoint = f"{endpoint}/{instance_name}"

    try:
        async with httpx.AsyncClient(timeout=WHATSAPP_TIMEOUT) as client:
            response = await client.post(
                endpoint,
                headers={"Content-Type": "application/json", "apikey": WHATSAPP_API_KEY},
                json={"number": formatted, "text": message},
            )
    except httpx.HTTPError as e:
        logger.error(f"❌ WhatsApp gateway request failed: {e}")
        return False, str(e)

    if response.is_success:
        logger.info(f"✅ WhatsApp message sent to {formatted}")
        return True, None

    logger.error(f"❌ Failed to send WhatsApp message: {response.status_code} - {response.text[:200]}")
    return False, f"HTTP {response.status_code}"
