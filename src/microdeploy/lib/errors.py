"""Custom exception hierarchy for microdeploy operations.

Every layer re-raises its own error type ``from`` the lower-level error, so
the full causal chain is available through ``__cause__`` and can be rendered
with :func:`format_error_chain`.
"""

from __future__ import annotations

from collections.abc import Iterable


class MicroDeployError(Exception):
    """Base exception for all microdeploy errors.

    All microdeploy-specific exceptions inherit from this class, enabling
    centralized exception handling in the CLI.
    """

    pass


class ConfigError(MicroDeployError):
    """Exception raised for configuration errors.

    Attributes:
        field: The configuration field that caused the error
        message: Human-readable error message describing the issue
    """

    def __init__(self, field: str, message: str) -> None:
        """Initialize ConfigError with field and message.

        Args:
            field: Configuration field name where error occurred
            message: Descriptive error message
        """
        self.field = field
        self.message = message
        super().__init__(f"Configuration error in '{field}': {message}")


class ValidationError(MicroDeployError):
    """Exception raised when a release or manifest is structurally invalid.

    Collects every failure found during validation so the user can fix them
    all in one pass.

    Attributes:
        subject: What was validated (e.g. "release", "CPI release")
        errors: Individual validation failure messages
    """

    def __init__(self, subject: str, errors: Iterable[str]) -> None:
        """Initialize ValidationError with the failing subject and messages.

        Args:
            subject: Human-readable name of the validated object
            errors: One message per validation failure
        """
        self.subject = subject
        self.errors = list(errors)
        details = "\n".join(f"  - {error}" for error in self.errors)
        super().__init__(f"Validating {subject}:\n{details}")


class DeploymentError(MicroDeployError):
    """Exception raised when a deployment step fails.

    Attributes:
        operation: The deployment operation that failed
        message: Human-readable error message
    """

    def __init__(self, operation: str, message: str) -> None:
        """Create a deployment error for a named operation."""
        self.operation = operation
        self.message = message
        super().__init__(f"{operation}: {message}")


class CompileError(MicroDeployError):
    """Exception raised when compiling a package or job fails.

    Attributes:
        name: Package or job name
        message: Human-readable error message
        output: Captured build output (stdout and stderr), if any
    """

    def __init__(self, name: str, message: str, output: str = "") -> None:
        """Create a compile error for a package or job."""
        self.name = name
        self.message = message
        self.output = output
        full_message = f"Compiling '{name}': {message}"
        if output:
            full_message += f"\n{output}"
        super().__init__(full_message)


class CycleError(MicroDeployError):
    """Exception raised when package dependencies contain a cycle.

    Attributes:
        cycle: Package names forming the cycle, first name repeated at the end
    """

    def __init__(self, cycle: list[str]) -> None:
        """Create a cycle error from the offending package path."""
        self.cycle = cycle
        super().__init__(f"Circular package dependency: {' -> '.join(cycle)}")


class CacheError(MicroDeployError):
    """Exception raised when an index or repository cannot be read or written."""

    pass


class WriteError(CacheError):
    """Exception raised when an index backing store is not writable."""

    pass


class ArchiveError(MicroDeployError):
    """Exception raised when an archive cannot be created or extracted."""

    pass


class BlobstoreError(MicroDeployError):
    """Exception raised for blob store failures."""

    pass


class IntegrityError(BlobstoreError):
    """Exception raised when a blob does not match its expected checksum.

    Attributes:
        blob_id: Blob identifier
        expected: Expected sha1
        actual: Computed sha1
    """

    def __init__(self, blob_id: str, expected: str, actual: str) -> None:
        """Create an integrity error for a blob checksum mismatch."""
        self.blob_id = blob_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Blob '{blob_id}' sha1 mismatch: expected {expected}, got {actual}"
        )


class CPIError(MicroDeployError):
    """Exception raised when a CPI method fails.

    Attributes:
        method: CPI method name
        error_type: Error class reported by the CPI
        message: Error message reported by the CPI
        ok_to_retry: Whether the CPI flagged the call as retryable
    """

    def __init__(
        self,
        method: str,
        error_type: str,
        message: str,
        ok_to_retry: bool = False,
    ) -> None:
        """Create a CPI error from the CPI response payload."""
        self.method = method
        self.error_type = error_type
        self.message = message
        self.ok_to_retry = ok_to_retry
        super().__init__(f"CPI '{method}' method responded with error: {error_type}: {message}")


class AgentError(MicroDeployError):
    """Exception raised when the in-VM agent rejects or fails a request."""

    pass


class AgentTimeoutError(AgentError):
    """Exception raised when the agent is unreachable within the retry budget."""

    pass


class RegistryError(MicroDeployError):
    """Exception raised for registry server lifecycle failures."""

    pass


class SSHTunnelError(MicroDeployError):
    """Exception raised when the SSH tunnel cannot be established."""

    pass


def format_error_chain(error: BaseException) -> str:
    """Render an exception and its causes as a single colon-separated chain.

    A ``CacheError("Saving record")`` raised from ``OSError("disk full")``
    renders as ``"Saving record: disk full"``.
    """
    parts: list[str] = []
    current: BaseException | None = error
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        text = str(current) or type(current).__name__
        if not parts or parts[-1] != text:
            parts.append(text)
        current = current.__cause__
    return ": ".join(parts)


def leaf_message(error: BaseException) -> str:
    """Return the message of the innermost cause of ``error``."""
    current = error
    seen: set[int] = {id(current)}
    while current.__cause__ is not None and id(current.__cause__) not in seen:
        current = current.__cause__
        seen.add(id(current))
    return str(current) or type(current).__name__
