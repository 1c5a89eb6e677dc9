"""Error taxonomy shared by the capability backends and the registry."""

from __future__ import annotations


class CapabilityError(Exception):
    """Base class for every capability-level failure."""

    code = "CAPABILITY_ERROR"


class ConfigError(CapabilityError):
    """Raised when a backend config unit or procedure document is malformed."""

    code = "CONFIG_ERROR"


class AuthError(CapabilityError):
    """Raised when no usable credential remains after all fallbacks."""

    code = "AUTH_ERROR"

    def __init__(self, message: str, backend_id: str | None = None):
        super().__init__(message)
        self.backend_id = backend_id


class ProtocolError(CapabilityError):
    """Raised on a non-success status or a JSON-RPC error field."""

    code = "PROTOCOL_ERROR"

    def __init__(
        self,
        message: str,
        backend_id: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.backend_id = backend_id
        self.status_code = status_code


class NotFoundError(CapabilityError):
    """Raised when a name or id does not resolve to a known implementation."""

    code = "NOT_FOUND"


class ExecutionError(CapabilityError):
    """Raised when code execution times out or exits non-zero."""

    code = "EXECUTION_ERROR"

    def __init__(
        self,
        message: str,
        stderr: str = "",
        exit_code: int | None = None,
        timed_out: bool = False,
    ):
        super().__init__(message)
        self.stderr = stderr
        self.exit_code = exit_code
        self.timed_out = timed_out


class CapabilityBlockedError(CapabilityError):
    """Raised when the active policy forbids a capability kind."""

    code = "BLOCKED"


class RegistryError(CapabilityError):
    """Raised when the registry cannot load its sources at all."""

    code = "REGISTRY_ERROR"
