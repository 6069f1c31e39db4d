from __future__ import annotations

import json
import socket
import sqlite3
from typing import Any, Literal

ErrorCode = Literal[
    "NOT_FOUND",
    "PRECONDITION_FAILED",
    "RUN_IN_PROGRESS",
    "GENERATION_FAILED",
    "TRANSPORT_ERROR",
    "VALIDATION_ERROR",
    "LLM_INVALID_JSON",
    "STORAGE_ERROR",
    "UNKNOWN_ERROR",
]

ERROR_FRIENDLY_MESSAGES: dict[ErrorCode, str] = {
    "NOT_FOUND": "Requested batch or run does not exist.",
    "PRECONDITION_FAILED": "A required upstream pipeline output is missing.",
    "RUN_IN_PROGRESS": "A pipeline run is already executing for this batch.",
    "GENERATION_FAILED": (
        "Model did not return a valid structured result after all retries."
    ),
    "TRANSPORT_ERROR": "Network or storage request failed. Please retry.",
    "VALIDATION_ERROR": "Payload failed schema validation.",
    "LLM_INVALID_JSON": "Model returned output that could not be parsed as JSON.",
    "STORAGE_ERROR": "Storage operation failed while saving pipeline data.",
    "UNKNOWN_ERROR": "Unexpected error occurred during pipeline run.",
}


class PipelineError(Exception):
    """Base class for errors raised by the valuation pipeline."""

    code: ErrorCode = "UNKNOWN_ERROR"


class NotFoundError(PipelineError, LookupError):
    """Raised when a referenced batch, run or image does not exist."""

    code: ErrorCode = "NOT_FOUND"


class PreconditionError(PipelineError):
    """Raised when a step's required upstream output is missing."""

    code: ErrorCode = "PRECONDITION_FAILED"


class RunInProgressError(PreconditionError):
    """Raised when a batch already has a pipeline run executing."""

    code: ErrorCode = "RUN_IN_PROGRESS"


class TransportError(PipelineError):
    """Raised when a collaborator (generator, detector, blob store) I/O fails."""

    code: ErrorCode = "TRANSPORT_ERROR"


class SchemaValidationError(PipelineError, ValueError):
    """Raised when a generated or submitted payload fails schema validation."""

    code: ErrorCode = "VALIDATION_ERROR"

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.errors = list(errors or [])


class MalformedOutputError(SchemaValidationError):
    """Raised when generator output cannot be parsed as JSON, even after repair."""

    code: ErrorCode = "LLM_INVALID_JSON"


class InputValidationError(PipelineError, ValueError):
    """Raised when caller-supplied input is rejected before it is stored."""

    code: ErrorCode = "VALIDATION_ERROR"


class GenerationFailure(PipelineError):
    """Raised when structured generation exhausts its retry budget."""

    code: ErrorCode = "GENERATION_FAILED"

    def __init__(self, attempts: int, last_error: Exception) -> None:
        super().__init__(
            f"Structured generation failed after {attempts} attempts: "
            f"{last_error.__class__.__name__}: {last_error}"
        )
        self.attempts = attempts
        self.last_error = last_error


def classify_error(error: Exception) -> ErrorCode:
    if isinstance(error, PipelineError):
        return error.code
    if isinstance(error, json.JSONDecodeError):
        return "LLM_INVALID_JSON"
    if is_storage_error_exception(error):
        return "STORAGE_ERROR"
    if extract_http_status_code(error) is not None:
        return "TRANSPORT_ERROR"
    if isinstance(error, (ConnectionError, TimeoutError, socket.timeout)):
        return "TRANSPORT_ERROR"
    return "UNKNOWN_ERROR"


def is_retryable_generation_error(error: Exception) -> bool:
    return isinstance(error, (TransportError, SchemaValidationError))


def is_retryable_status_code(status_code: int) -> bool:
    return status_code == 429 or 500 <= status_code <= 599


def extract_http_status_code(error: Exception) -> int | None:
    for field_name in ("status_code", "status", "http_status", "code"):
        value = getattr(error, field_name, None)
        parsed = _to_int_or_none(value)
        if parsed is not None:
            return parsed

    response = getattr(error, "response", None)
    if response is not None:
        parsed = _to_int_or_none(getattr(response, "status_code", None))
        if parsed is not None:
            return parsed

    return None


def build_error_details(error: Exception) -> str:
    details: list[str] = [f"{error.__class__.__name__}: {error}"]
    status_code = extract_http_status_code(error)
    if status_code is not None:
        details.append(f"status_code={status_code}")

    validation_errors = getattr(error, "errors", None)
    if isinstance(validation_errors, list) and validation_errors:
        details.append("errors=" + "; ".join(str(item) for item in validation_errors))

    cause = getattr(error, "last_error", None) or error.__cause__
    if isinstance(cause, Exception) and cause is not error:
        details.append(f"caused_by={cause.__class__.__name__}: {cause}")
    return "\n".join(details)


def is_storage_error_exception(error: Exception) -> bool:
    if isinstance(error, sqlite3.Error):
        return True
    if isinstance(error, OSError) and not isinstance(
        error, (ConnectionError, TimeoutError, socket.timeout)
    ):
        return True
    return False


def _to_int_or_none(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str) and not value.strip().isdigit():
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None
