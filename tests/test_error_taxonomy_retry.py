from __future__ import annotations

import json
import sqlite3

import pytest

from ewaste.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    GenerationFailure,
    MalformedOutputError,
    NotFoundError,
    RunInProgressError,
    SchemaValidationError,
    TransportError,
    build_error_details,
    classify_error,
    extract_http_status_code,
    is_retryable_generation_error,
    is_retryable_status_code,
)
from ewaste.utils.retry import run_with_retry


class HttpError(RuntimeError):
    def __init__(self, status_code: int, message: str = "http error") -> None:
        super().__init__(message)
        self.status_code = status_code


def test_error_code_mapping() -> None:
    assert classify_error(NotFoundError("x")) == "NOT_FOUND"
    assert classify_error(RunInProgressError("x")) == "RUN_IN_PROGRESS"
    assert classify_error(MalformedOutputError("x")) == "LLM_INVALID_JSON"
    assert classify_error(SchemaValidationError("x")) == "VALIDATION_ERROR"
    assert (
        classify_error(GenerationFailure(3, TransportError("down")))
        == "GENERATION_FAILED"
    )
    assert classify_error(json.JSONDecodeError("msg", "{}", 0)) == "LLM_INVALID_JSON"
    assert classify_error(sqlite3.OperationalError("db fail")) == "STORAGE_ERROR"
    assert classify_error(PermissionError("disk denied")) == "STORAGE_ERROR"
    assert classify_error(HttpError(503)) == "TRANSPORT_ERROR"
    assert classify_error(TimeoutError("slow")) == "TRANSPORT_ERROR"

    class WeirdError(Exception):
        pass

    assert classify_error(WeirdError("boom")) == "UNKNOWN_ERROR"


def test_every_error_code_has_a_friendly_message() -> None:
    for code in (
        "NOT_FOUND",
        "PRECONDITION_FAILED",
        "RUN_IN_PROGRESS",
        "GENERATION_FAILED",
        "TRANSPORT_ERROR",
        "VALIDATION_ERROR",
        "LLM_INVALID_JSON",
        "STORAGE_ERROR",
        "UNKNOWN_ERROR",
    ):
        assert ERROR_FRIENDLY_MESSAGES[code]


def test_retry_classifier_for_generation_errors() -> None:
    assert is_retryable_generation_error(TransportError("x")) is True
    assert is_retryable_generation_error(SchemaValidationError("x")) is True
    assert is_retryable_generation_error(MalformedOutputError("x")) is True
    assert is_retryable_generation_error(ValueError("x")) is False

    assert is_retryable_status_code(429) is True
    assert is_retryable_status_code(502) is True
    assert is_retryable_status_code(400) is False


def test_http_status_extraction_and_details() -> None:
    error = HttpError(502)
    assert extract_http_status_code(error) == 502
    assert extract_http_status_code(ValueError("x")) is None

    details = build_error_details(
        SchemaValidationError("bad", errors=["a: required", "b: wrong type"])
    )
    assert details.splitlines() == [
        "SchemaValidationError: bad",
        "errors=a: required; b: wrong type",
    ]


def test_generation_failure_message_names_attempts_and_last_error() -> None:
    failure = GenerationFailure(3, MalformedOutputError("not json"))

    assert str(failure) == (
        "Structured generation failed after 3 attempts: "
        "MalformedOutputError: not json"
    )
    assert "caused_by=MalformedOutputError: not json" in build_error_details(failure)


def test_run_with_retry_backs_off_exponentially_then_succeeds() -> None:
    sleeps: list[float] = []
    retries: list[tuple[int, float]] = []
    attempts: list[int] = []

    def operation(attempt: int) -> str:
        attempts.append(attempt)
        if attempt < 2:
            raise TransportError("flaky")
        return "ok"

    result = run_with_retry(
        operation=operation,
        should_retry=is_retryable_generation_error,
        max_retries=2,
        base_delay_seconds=1.0,
        sleep_fn=sleeps.append,
        on_retry=lambda number, delay, error: retries.append((number, delay)),
    )

    assert result == "ok"
    assert attempts == [0, 1, 2]
    assert sleeps == [1.0, 2.0]
    assert retries == [(1, 1.0), (2, 2.0)]


def test_run_with_retry_reraises_last_error_without_final_sleep() -> None:
    sleeps: list[float] = []

    def operation(attempt: int) -> str:
        raise TransportError(f"attempt {attempt}")

    with pytest.raises(TransportError, match="attempt 2"):
        run_with_retry(
            operation=operation,
            should_retry=is_retryable_generation_error,
            max_retries=2,
            base_delay_seconds=0.5,
            sleep_fn=sleeps.append,
        )

    assert sleeps == [0.5, 1.0]


def test_run_with_retry_stops_on_non_retryable_error() -> None:
    sleeps: list[float] = []

    def operation(attempt: int) -> str:
        raise ValueError("programming error")

    with pytest.raises(ValueError):
        run_with_retry(
            operation=operation,
            should_retry=is_retryable_generation_error,
            sleep_fn=sleeps.append,
        )

    assert sleeps == []
