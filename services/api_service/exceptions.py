"""
Domain exceptions for API service
"""
from typing import Iterable

from shared.exceptions import (
    DomainException,
    NotFoundError,
    NotReadyError,
    QueryFailedError,
)


class ValidationError(DomainException):
    """Validation error"""
    error_code = "ValidationError"
    status_code = 400


class InvalidResolutionError(ValidationError):
    """Requested resolution is not served"""
    error_code = "InvalidResolution"

    def __init__(self, resolution: str, valid: Iterable[str]):
        valid = list(valid)
        super().__init__(
            f"Invalid resolution '{resolution}'. Valid resolutions: {', '.join(valid)}",
            valid_resolutions=valid
        )


class InvalidLimitError(ValidationError):
    """Limit is not an integer or out of range"""
    error_code = "InvalidLimit"


__all__ = [
    "DomainException",
    "NotFoundError",
    "NotReadyError",
    "QueryFailedError",
    "ValidationError",
    "InvalidResolutionError",
    "InvalidLimitError",
]
