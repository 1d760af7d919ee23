"""Custom exception classes for structured error handling."""

from typing import Any


class RelayError(Exception):
    """Base exception for all relay errors."""

    def __init__(self, code: str, message: str, status_code: int = 500) -> None:
        self.code = code
        self.message = message
        self.status_code = status_code
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


class ConfigurationError(RelayError):
    def __init__(self, message: str = "Service is not configured") -> None:
        super().__init__(code="CONFIGURATION_ERROR", message=message, status_code=500)


class GatewayError(RelayError):
    def __init__(
        self,
        message: str = "Assistant service request failed",
        upstream_status: int | None = None,
    ) -> None:
        self.upstream_status = upstream_status
        super().__init__(code="GATEWAY_ERROR", message=message, status_code=502)


class NotFoundError(RelayError):
    def __init__(self, message: str = "Resource not found") -> None:
        super().__init__(code="NOT_FOUND", message=message, status_code=404)


class TicketNotFoundError(NotFoundError):
    def __init__(self, message: str = "Session not found") -> None:
        super().__init__(message=message)
        self.code = "TICKET_NOT_FOUND"


class ValidationError(RelayError):
    def __init__(
        self, code: str = "VALIDATION_ERROR", message: str = "Invalid request", status_code: int = 400
    ) -> None:
        super().__init__(code=code, message=message, status_code=status_code)


class InvalidPayloadError(ValidationError):
    def __init__(self, message: str = "Invalid webhook payload") -> None:
        super().__init__(code="INVALID_PAYLOAD", message=message, status_code=400)


class UnauthorizedError(ValidationError):
    def __init__(self, message: str = "Unauthorized") -> None:
        super().__init__(code="UNAUTHORIZED", message=message, status_code=401)


class PersistenceError(RelayError):
    def __init__(
        self, message: str = "Database write failed", message_id: str | None = None
    ) -> None:
        self.message_id = message_id
        super().__init__(code="PERSISTENCE_ERROR", message=message, status_code=503)


class RedisConnectionError(RelayError):
    def __init__(self, message: str = "Redis connection failed") -> None:
        super().__init__(code="REDIS_CONNECTION_ERROR", message=message, status_code=503)
