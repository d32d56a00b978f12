# core/llm/exceptions.py
"""Error taxonomy shared by the conversation adapter, the registry and the API layer."""
from typing import Any, Dict, Optional

from fastapi import status


class GatewayError(Exception):
    """Base exception for the gateway. Carries the HTTP status it maps to."""

    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class InvalidModel(GatewayError):
    """Raised when a model alias is not in the catalogue."""

    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, alias: str):
        super().__init__("Invalid model", "INVALID_MODEL", {"alias": alias})


class MissingIdentifier(GatewayError):
    """Raised when a request carries no client identifier."""

    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, header: str = "User-ID"):
        super().__init__(f"{header} header is required", "MISSING_IDENTIFIER", {"header": header})


class InvalidRequestBody(GatewayError):
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, details: Optional[Dict[str, Any]] = None):
        super().__init__("Invalid request body", "INVALID_BODY", details)


class TurnInProgress(GatewayError):
    """Raised when a client already has a turn in flight and queueing is disabled."""

    http_status = status.HTTP_409_CONFLICT

    def __init__(self, client_id: str):
        super().__init__(
            "A chat turn is already in progress for this client",
            "TURN_IN_PROGRESS",
            {"client_id": client_id},
        )


class UpstreamUnavailable(GatewayError):
    """Raised when a session token cannot be obtained from the upstream service."""

    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message, "UPSTREAM_UNAVAILABLE", {"status_code": status_code})


class UpstreamError(GatewayError):
    """Raised when the upstream chat call answers with a non-success status."""

    http_status = status.HTTP_502_BAD_GATEWAY

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"{status_code}: Failed to send message. Body: {body}",
            "UPSTREAM_ERROR",
            {"status_code": status_code, "body": body},
        )


class NetworkError(GatewayError):
    """Raised on transport failures (connect, read, timeout) talking to the upstream."""

    http_status = status.HTTP_504_GATEWAY_TIMEOUT

    def __init__(self, message: str):
        super().__init__(message, "NETWORK_ERROR")


class MalformedEvent(GatewayError):
    """An event-stream record that could not be decoded. Never propagated out of a turn."""

    def __init__(self, payload: str, reason: str):
        self.payload = payload
        super().__init__(f"Malformed event: {reason}", "MALFORMED_EVENT", {"payload": payload})
