from __future__ import annotations
from typing import Dict


GENERIC_MESSAGE = "Erreur interne, réessayez plus tard."


class BillingError(Exception):
    """Erreur métier exposée à la couche requête sous forme (kind, message)."""
    kind = "BillingError"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.kind

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class ValidationError(BillingError):
    kind = "ValidationError"


class NotFound(BillingError):
    kind = "NotFound"


class InvalidDate(BillingError):
    kind = "InvalidDate"


class SequenceExhausted(BillingError):
    kind = "SequenceExhausted"


class Conflict(BillingError):
    kind = "Conflict"


class StoreFailure(BillingError):
    kind = "StoreFailure"


def to_failure(exc: BaseException) -> Dict[str, str]:
    # jamais le texte d'une exception inattendue
    if isinstance(exc, BillingError):
        return exc.to_dict()
    return {"kind": "InternalError", "message": GENERIC_MESSAGE}
