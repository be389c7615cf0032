from __future__ import annotations

from typing import Any, Dict, Optional


class StoreError(Exception):
    """Base for errors converted to HTTP responses at the handler boundary."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message
        self.details = details or {}


class ValidationError(StoreError):
    status_code = 400
    public_message = "Invalid request"


class ProviderError(StoreError):
    """Payment provider call failed, timed out or could not be made."""

    status_code = 500
    public_message = "Payment provider error"

    def __init__(self, message: str = "", *, step: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details=details)
        self.step = step


class CaptureDeclined(StoreError):
    """Provider answered, but the capture did not complete."""

    status_code = 400
    public_message = "Capture not completed"


class NotFoundError(StoreError):
    status_code = 404
    public_message = "File not found"


class AssetError(StoreError):
    """A download is mapped but the file behind it cannot be read."""

    status_code = 500
    public_message = "Error downloading file"


class AuthError(StoreError):
    status_code = 401
    public_message = "Authentication required"


class ConfigError(Exception):
    """Raised at startup when configuration is missing or invalid."""


class TokenError(StoreError):
    """Download link missing, forged, or not covering the product."""

    status_code = 403
    public_message = "Access denied"


class TokenExpired(TokenError):
    status_code = 410
    public_message = "Link expired"
