from __future__ import annotations


class LocintelError(Exception):
    """Base class for location core errors."""


class PositionUnavailable(LocintelError):
    """The position source could not deliver a fix.

    reason: "permission_denied" | "timeout" | "unavailable"
    """

    def __init__(self, reason: str = "unavailable", message: str | None = None):
        self.reason = reason
        super().__init__(message or f"position unavailable: {reason}")


class PersistenceFailure(LocintelError):
    """A write to the location store failed."""


class InvalidAlertParameters(LocintelError, ValueError):
    pass


class AlertNotFound(LocintelError, KeyError):
    def __str__(self) -> str:
        return f"alert not found: {self.args[0] if self.args else '?'}"


class NoSosRecipients(LocintelError):
    """SOS requested by a user without accepted friends."""
