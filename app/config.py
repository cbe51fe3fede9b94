import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./odontosync.db")

# Security - CRITICAL: No default secret key in production
SECRET_KEY = os.getenv("SECRET_KEY")
if not SECRET_KEY:
    import warnings

    warnings.warn(
        "SECRET_KEY not set! Using insecure default - DO NOT USE IN PRODUCTION", RuntimeWarning, stacklevel=2
    )
    SECRET_KEY = "INSECURE-DEV-KEY-CHANGE-IN-PRODUCTION"  # noqa: S105 - Dev fallback only

JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "720"))

# Comma separated list of allowed frontend origins
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:5173").split(",")
    if origin.strip()
]

# Scheduling grid
# Companies without an explicit timezone fall back to this IANA zone
DEFAULT_TIMEZONE = os.getenv("DEFAULT_TIMEZONE", "America/Sao_Paulo")
SCHEDULE_START_HOUR = int(os.getenv("SCHEDULE_START_HOUR", "8"))
SLOT_MINUTES = int(os.getenv("SLOT_MINUTES", "30"))
SLOTS_PER_DAY = int(os.getenv("SLOTS_PER_DAY", "20"))
DEFAULT_PROCEDURE_DURATION = int(os.getenv("DEFAULT_PROCEDURE_DURATION", "30"))
# Consultations must start at least this far in the future (clock skew margin)
BOOKING_MIN_LEAD_SECONDS = int(os.getenv("BOOKING_MIN_LEAD_SECONDS", "60"))

# WhatsApp gateway (Evolution API compatible)
WHATSAPP_API_URL = os.getenv("WHATSAPP_API_URL")
WHATSAPP_API_KEY = os.getenv("WHATSAPP_API_KEY")
WHATSAPP_COUNTRY_CODE = os.getenv("WHATSAPP_COUNTRY_CODE", "55")
WHATSAPP_TIMEOUT = float(os.getenv("WHATSAPP_TIMEOUT", "10"))

# Daily reminder job (hour in each clinic's local time)
REMINDER_HOUR = int(os.getenv("REMINDER_HOUR", "8"))
