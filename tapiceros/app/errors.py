"""Domain error taxonomy surfaced to API callers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from fastapi import status


@dataclass
class AppError(Exception):
    """Base class for errors that map onto an HTTP status and envelope."""

    message: str
    code: str = "internal_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    errors: Optional[Sequence[Mapping[str, Any]]] = None

    def __post_init__(self) -> None:
        super().__init__(self.message)

    @property
    def payload(self) -> Dict[str, Any]:
        """Serialized response envelope for the error."""

        body: Dict[str, Any] = {"success": False, "error": self.message}
        if self.errors:
            body["errors"] = [dict(item) for item in self.errors]
        return body


@dataclass
class ValidationError(AppError):
    code: str = "validation_error"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class AuthenticationError(AppError):
    code: str = "authentication_error"
    status_code: int = status.HTTP_401_UNAUTHORIZED


@dataclass
class AuthorizationError(AppError):
    code: str = "authorization_error"
    status_code: int = status.HTTP_403_FORBIDDEN


@dataclass
class NotFoundError(AppError):
    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class ConflictError(AppError):
    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class UpstreamServiceError(AppError):
    """A payment, notification or identity provider call failed."""

    code: str = "upstream_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    service: Optional[str] = None


@dataclass
class SignatureError(AppError):
    """The webhook body does not match its signature header."""

    code: str = "invalid_signature"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class ConfigurationError(AppError):
    code: str = "configuration_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass
class WebhookProcessingError(AppError):
    """A verified webhook event could not be applied; the sender should retry."""

    code: str = "webhook_processing_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    event_id: Optional[str] = None
    event_type: Optional[str] = None


@dataclass
class WebhookPayloadError(WebhookProcessingError):
    """A recognized event is missing data required to apply it."""

    code: str = "webhook_payload_error"


def field_errors(*pairs: tuple) -> List[Dict[str, str]]:
    """Build the ``errors`` list for :class:`ValidationError` from (field, message) pairs."""

    return [{"field": name, "message": message} for name, message in pairs]
