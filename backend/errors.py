"""
Domain errors. Each carries the HTTP status the API answers with.
"""
from typing import Dict, Optional

from pydantic import ValidationError


class MarketError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class FormValidationError(MarketError):
    """Field-scoped validation failure: ``errors`` maps field name -> message."""
    status_code = 422

    def __init__(self, errors: Dict[str, str], message: Optional[str] = None):
        super().__init__(message or "Validation failed")
        self.errors = errors

    @classmethod
    def from_pydantic(cls, exc: ValidationError) -> "FormValidationError":
        errors: Dict[str, str] = {}
        for err in exc.errors():
            field = str(err["loc"][0]) if err["loc"] else "form"
            errors.setdefault(field, err["msg"])
        return cls(errors)


class NotFoundError(MarketError):
    status_code = 404


class AuthError(MarketError):
    status_code = 401


class ConflictError(MarketError):
    status_code = 400


class StaleWriteError(MarketError):
    status_code = 409

    def __init__(self, key: str, expected: int, actual: int):
        super().__init__(f"Stale write to {key!r}: expected revision {expected}, found {actual}")
        self.key = key
        self.expected = expected
        self.actual = actual


class ServiceabilityUnknown(MarketError):
    """The lookup itself failed; says nothing about whether the area is served."""
    status_code = 503
