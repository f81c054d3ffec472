"""Error taxonomy shared by the solve pipeline."""

from __future__ import annotations

PARSE_ERROR_MARKER = "Could not parse response from AI"


class SolverError(RuntimeError):
    """Base class for every error raised by the solve pipeline."""

    def with_context(self, prefix: str) -> "SolverError":
        """Return an error of the same kind whose message is prefixed."""

        # Subclass constructors take different arguments, so the clone skips __init__.
        clone = type(self).__new__(type(self))
        clone.__dict__.update(vars(self))
        clone.args = (f"{prefix}: {self}",)
        return clone


class ConfigError(SolverError):
    """Raised when a required setting (usually the API key) is missing."""


class ParseError(SolverError):
    """Raised when no valid JSON object can be recovered from model output."""

    def __init__(self, raw_text: str, detail: str) -> None:
        message = f"{PARSE_ERROR_MARKER}. Invalid JSON format."
        if detail:
            message += f" Error details: {detail}"
        super().__init__(message)
        self.raw_text = raw_text
        self.detail = detail


class APIError(SolverError):
    """Raised when the upstream model call fails."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ExecutionError(SolverError):
    """A sandboxed snippet failed. Attached to results, never fatal to a solve."""

    def __init__(self, message: str, *, exception_type: str | None = None) -> None:
        super().__init__(message)
        self.exception_type = exception_type


class ValidationError(SolverError):
    """A result is structurally present but semantically empty."""


def is_parse_failure(exc: BaseException) -> bool:
    """Whether an error came from unrecoverable model output."""

    return isinstance(exc, ParseError) or PARSE_ERROR_MARKER in str(exc)
