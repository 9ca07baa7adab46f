"""Custom exceptions for cookieswitch."""

from typing import Any


class CookieSwitchError(Exception):
    """Base exception for all cookieswitch errors."""

    def __init__(
        self,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.details = details or {}


class ProfileValidationError(CookieSwitchError):
    """Raised when a profile file fails schema or model validation."""


class RegistryError(CookieSwitchError):
    """Raised when profile registry files cannot be read or written."""


class CompilationError(CookieSwitchError):
    """Raised when auto-switch rules cannot be compiled into filter rules."""


class CommandError(CookieSwitchError):
    """Raised when a command message cannot be carried out."""


class AccountNotFoundError(CookieSwitchError):
    """Raised when an operation names an account that is not stored."""
