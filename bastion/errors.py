"""Error taxonomy shared by every pipeline component.

Components raise ``BastionError`` subclasses internally. The orchestrator,
the firewall reconciler and the service layer catch them at their phase
boundaries and turn them into result models carrying ``error`` and
``error_kind``; nothing raised here is meant to reach the caller.
"""

from enum import Enum


class ErrorKind(str, Enum):
    SOURCE_UNAVAILABLE = "source_unavailable"
    PARSE_SKIP = "parse_skip"
    PERSISTENCE_FAILURE = "persistence_failure"
    FIREWALL_PERMISSION_DENIED = "firewall_permission_denied"
    FIREWALL_TRANSIENT = "firewall_transient"
    FIREWALL_FAILURE = "firewall_failure"
    RATE_LIMITED = "rate_limited"
    INVALID_INPUT = "invalid_input"
    SCAN_IN_PROGRESS = "scan_in_progress"
    INTERNAL = "internal"


class BastionError(Exception):
    """Base class for all pipeline errors."""

    kind: ErrorKind = ErrorKind.PERSISTENCE_FAILURE

    def __init__(self, message: str = "", kind: ErrorKind | None = None):
        super().__init__(message or self.__class__.__name__)
        if kind is not None:
            self.kind = kind


class SourceUnavailable(BastionError):
    kind = ErrorKind.SOURCE_UNAVAILABLE


class PersistenceFailure(BastionError):
    kind = ErrorKind.PERSISTENCE_FAILURE


class InvalidInput(BastionError):
    kind = ErrorKind.INVALID_INPUT


class ScanInProgress(BastionError):
    kind = ErrorKind.SCAN_IN_PROGRESS


class RateLimited(BastionError):
    kind = ErrorKind.RATE_LIMITED


# --- External command failures ---

class CommandError(BastionError):
    """An external command failed in a way that retrying will not fix."""

    kind = ErrorKind.FIREWALL_FAILURE

    def __init__(self, message: str = "", returncode: int | None = None, stderr: str = ""):
        super().__init__(message)
        self.returncode = returncode
        self.stderr = stderr


class TransientCommandError(CommandError):
    """Spawn failure or timeout; safe to retry with backoff."""

    kind = ErrorKind.FIREWALL_TRANSIENT


class PermissionDenied(CommandError):
    """The command ran but the OS refused the operation. Never retried."""

    kind = ErrorKind.FIREWALL_PERMISSION_DENIED
