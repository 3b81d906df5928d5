"""
Error taxonomy shared by the read API and the ingester
"""
from typing import Any, Dict, Optional


class DomainException(Exception):
    """Base exception for domain errors

    ``error_code`` is the public name reported in API error bodies and
    ``status_code`` the HTTP status it maps to.
    """
    error_code = "InternalError"
    status_code = 500

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra: Dict[str, Any] = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error_code, "message": self.message}
        body.update(self.extra)
        return body


class NotReadyError(DomainException):
    """Store connection has not been established yet"""
    error_code = "NotReady"
    status_code = 503


class QueryFailedError(DomainException):
    """Non-transient database error, or transient error after retries ran out"""
    error_code = "QueryFailed"
    status_code = 500

    def __init__(self, message: str, code: Optional[str] = None, attempts: int = 1):
        super().__init__(message)
        self.code = code
        self.attempts = attempts

    def to_dict(self) -> Dict[str, Any]:
        body = super().to_dict()
        if self.code:
            body["code"] = self.code
        return body


class NotFoundError(DomainException):
    """Resource not found"""
    error_code = "NotFound"
    status_code = 404


class UpstreamUnavailableError(DomainException):
    """Market-data API answered with a non-success status or could not be reached"""
    error_code = "UpstreamUnavailable"
    status_code = 502

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class MalformedUpstreamDataError(DomainException):
    """A kline could not be decoded"""
    error_code = "MalformedUpstreamData"
    status_code = 502
