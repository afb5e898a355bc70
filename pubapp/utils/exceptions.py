"""
Eccezioni del motore prenotazioni.

Gli handler in pubapp/__init__.py le traducono in risposte JSON:

    ValidationError -> 400  (errori per campo)
    NotFoundError   -> 404
    ConflictError   -> 409  (code TABLE_UNAVAILABLE)
    StateError      -> 409  (code INVALID_STATE)
"""
import logging
from typing import Any

logger = logging.getLogger(__name__)


class BookingError(Exception):
    """Base di tutti gli errori del dominio prenotazioni."""

    status_code = 400
    code = "BOOKING_ERROR"

    def __init__(self, message: str, **log_context: Any):
        super().__init__(message)
        self.message = message
        logger.warning("%s: %s %s", self.code, message, log_context or "")

    def to_dict(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(BookingError):
    """
    Input malformato: slot non allineato, coperti oltre la capienza, data passata...

    Uso:
        raise ValidationError({"party_size": "Troppi coperti per il tavolo A1 (max 4)"})
    """

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, errors: dict[str, str] | str, **log_context: Any):
        if isinstance(errors, str):
            errors = {"_": errors}
        self.errors = errors
        super().__init__("; ".join(errors.values()), **log_context)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NotFoundError(BookingError):
    """Entità sconosciuta (404)."""

    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: Any = None, **log_context: Any):
        self.entity = entity
        self.entity_id = entity_id
        if entity_id is not None:
            message = f"{entity} con ID {entity_id} non trovato"
        else:
            message = f"{entity} non trovato"
        super().__init__(message, **log_context)


class ConflictError(BookingError):
    """Il tavolo è già occupato nell'intervallo richiesto."""

    status_code = 409
    code = "TABLE_UNAVAILABLE"

    def __init__(self, message: str | None = None, blocked: list[str] | None = None, **log_context: Any):
        self.blocked = blocked or []
        if message is None:
            message = "Tavolo non disponibile nell'orario richiesto"
            if self.blocked:
                message += f" (occupato: {', '.join(self.blocked)})"
        super().__init__(message, **log_context)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data["blocked_intervals"] = self.blocked
        return data


class StateError(BookingError):
    """Transizione di stato non ammessa (es. completare una prenotazione non iniziata)."""

    status_code = 409
    code = "INVALID_STATE"
