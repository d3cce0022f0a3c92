"""
Rua Exception Hierarchy

Defines the exception hierarchy shared by the extension runtime.
"""

from typing import Any, Dict, List, Optional


class RuaException(Exception):
    """Base exception for all Rua errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(RuaException):
    """Configuration-related errors."""

    pass


class ValidationError(RuaException):
    """Schema or business-rule violation in extension data."""

    def __init__(
        self,
        message: str,
        errors: Optional[List["ManifestValidationError"]] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, details)
        self.errors = list(errors or [])


class ManifestValidationError(ValidationError):
    """
    A single manifest validation finding.

    Returned inside validation results rather than raised. ``field`` is a dotted
    path into the manifest (``rua.actions[0].name``) and ``value`` the offending value.
    """

    def __init__(
        self, message: str, field: Optional[str] = None, value: Any = None
    ) -> None:
        super().__init__(message)
        self.field = field
        self.value = value

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ManifestValidationError):
            return NotImplemented
        return (self.message, self.field, repr(self.value)) == (
            other.message,
            other.field,
            repr(other.value),
        )

    def __hash__(self) -> int:
        return hash((self.message, self.field))

    def __repr__(self) -> str:
        return f"ManifestValidationError({self.message!r}, field={self.field!r})"


class NotFoundError(RuaException):
    """Unknown extension id."""

    def __init__(self, extension_id: str) -> None:
        super().__init__(
            f"Extension not found: {extension_id}", {"extension_id": extension_id}
        )
        self.extension_id = extension_id


class StorageError(RuaException):
    """Storage and filesystem errors."""

    pass


class ExtensionTimeoutError(RuaException):
    """Extension activation exceeded its deadline."""

    def __init__(self, extension_id: str, timeout_ms: float) -> None:
        super().__init__(
            f"Extension {extension_id} initialization timed out after {timeout_ms:g}ms",
            {"extension_id": extension_id, "timeout_ms": timeout_ms},
        )
        self.extension_id = extension_id
        self.timeout_ms = timeout_ms


class ActivationError(RuaException):
    """Extension code raised during import, activate or deactivate."""

    def __init__(self, extension_id: str, message: str, phase: str = "activate") -> None:
        super().__init__(message, {"extension_id": extension_id, "phase": phase})
        self.extension_id = extension_id
        self.phase = phase


class CapabilityError(RuaException):
    """Base class for rejected capability calls."""

    def __init__(self, message: str, capability: str, method: str) -> None:
        super().__init__(message)
        self.capability = capability
        self.method = method


class CapabilityPermissionError(CapabilityError):
    """Capability invoked without the required manifest permission."""

    def __init__(
        self, extension_id: str, capability: str, method: str, permission: str
    ) -> None:
        super().__init__(
            f"{capability}.{method}: permission denied, extension '{extension_id}' "
            f"must declare the '{permission}' permission to use {capability}",
            capability,
            method,
        )
        self.extension_id = extension_id
        self.permission = permission


class CapabilityUnavailableError(CapabilityError):
    """The host platform provides no implementation for a capability."""

    def __init__(self, capability: str, method: str) -> None:
        super().__init__(
            f"{capability}.{method}: capability unavailable, {capability} is not "
            f"provided by this platform",
            capability,
            method,
        )
