"""Scheduling domain errors, mapped to HTTP responses in app.main"""

from typing import Optional


class SchedulingError(Exception):
    """Base class for errors surfaced to the caller as {"message": ...}"""

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ConflictError(SchedulingError):
    """The requested interval overlaps a live appointment of the same dentist"""

    status_code = 409

    def __init__(self, message: str, conflicting_appointment=None):
        super().__init__(message)
        self.conflicting_appointment = conflicting_appointment


class ValidationError(SchedulingError):
    status_code = 422


class NotFoundError(SchedulingError):
    status_code = 404

    def __init__(self, entity: str, entity_id: Optional[int] = None):
        label = f"{entity} {entity_id}" if entity_id is not None else entity
        super().__init__(f"{label} não encontrado")
        self.entity = entity
        self.entity_id = entity_id


class PermissionDeniedError(SchedulingError):
    status_code = 403
