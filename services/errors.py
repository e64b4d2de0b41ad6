# services/errors.py
# Error taxonomy shared by the aspect resolver and the market-value lookup.

from typing import Optional


class VehicleDataError(RuntimeError):
    """Base class for everything the vehicle data layer raises on purpose."""


class AuthError(VehicleDataError):
    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body


class UpstreamError(VehicleDataError):
    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body

    @property
    def retryable(self) -> bool:
        # 5xx and transport failures; 4xx means the request itself is wrong
        return self.status is None or self.status >= 500


class RateLimitError(UpstreamError):
    def __init__(self, message: str = "Rate limit exceeded", status: Optional[int] = 429, body: str = ""):
        super().__init__(message, status=status, body=body)

    @property
    def retryable(self) -> bool:
        return False


class NetworkError(UpstreamError):
    """Timeout or connection failure; there is no HTTP status."""

    def __init__(self, message: str, body: str = ""):
        super().__init__(message, status=None, body=body)


class InvalidUpstreamShapeError(UpstreamError):
    """Upstream answered 2xx but the payload is missing what we need."""


class ValidationError(VehicleDataError, ValueError):
    pass


# UI-facing granularity
RATE_LIMITED = "rate_limited"
UNAVAILABLE = "unavailable"
INVALID_INPUT = "invalid_input"


def classify_error(exc: BaseException) -> str:
    if isinstance(exc, ValidationError):
        return INVALID_INPUT
    if isinstance(exc, RateLimitError):
        return RATE_LIMITED
    return UNAVAILABLE


def body_excerpt(body: Optional[str], limit: int = 200) -> str:
    return (body or "")[:limit]
