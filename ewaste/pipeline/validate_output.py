from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

from jsonschema import Draft202012Validator

InvariantCheck = Callable[[Any], list[str]]


@dataclass(frozen=True, slots=True)
class ValidationResult:
    valid: bool
    schema_errors: list[str]
    invariant_errors: list[str]

    @property
    def errors(self) -> list[str]:
        return self.schema_errors + self.invariant_errors


def validate_output(
    *,
    parsed_json: Any,
    schema: dict[str, Any],
    invariants: InvariantCheck | None = None,
) -> ValidationResult:
    schema_errors = _validate_schema(parsed_json=parsed_json, schema=schema)
    # Invariants assume the structural shape, so they only run on schema-clean data.
    invariant_errors: list[str] = []
    if not schema_errors and invariants is not None:
        invariant_errors = invariants(parsed_json)

    return ValidationResult(
        valid=not schema_errors and not invariant_errors,
        schema_errors=schema_errors,
        invariant_errors=invariant_errors,
    )


def _validate_schema(*, parsed_json: Any, schema: dict[str, Any]) -> list[str]:
    validator = Draft202012Validator(schema)
    errors = sorted(
        validator.iter_errors(parsed_json),
        key=lambda item: [str(part) for part in item.path],
    )

    messages: list[str] = []
    for error in errors:
        path = "/".join(str(item) for item in error.path)
        if path:
            messages.append(f"{path}: {error.message}")
        else:
            messages.append(error.message)

    return messages
