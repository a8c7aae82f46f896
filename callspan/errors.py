"""Callspan error hierarchy and exceptions."""

from __future__ import annotations


class CallspanError(Exception):
    """Base exception for all callspan errors."""

    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConfigError(CallspanError):
    """Raised when configuration or a sampling rule is invalid."""
    pass


class ValidationError(CallspanError):
    """Raised when validation fails."""
    pass


class DecodingError(ValidationError):
    """Raised when an inbound trace carrier cannot be decoded."""
    pass


class ExportError(CallspanError):
    """Raised when span export fails."""
    pass


class InitializationError(CallspanError):
    """Raised when tracing initialization fails."""
    pass
