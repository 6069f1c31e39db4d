from __future__ import annotations

import json
import re
import time
from dataclasses import asdict, dataclass
from typing import Any, Callable

from ewaste.llm_client.base import TextGenerator
from ewaste.llm_client.schema_text import render_schema_text
from ewaste.pipeline.contracts import StructuredSchema
from ewaste.pipeline.validate_output import validate_output
from ewaste.utils.error_taxonomy import (
    GenerationFailure,
    MalformedOutputError,
    SchemaValidationError,
    TransportError,
    build_error_details,
    is_retryable_generation_error,
)
from ewaste.utils.hashing import content_hash, hash_json
from ewaste.utils.logging import get_logger
from ewaste.utils.retry import run_with_retry

logger = get_logger(__name__)

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0

_LEADING_FENCE_RE = re.compile(r"^\s*```(?:json)?[ \t]*\r?\n?", re.IGNORECASE)
_TRAILING_FENCE_RE = re.compile(r"\r?\n?[ \t]*```\s*$")

_SYSTEM_PREAMBLE = """You are a JSON generation assistant. You must respond ONLY with valid JSON that matches the provided schema. Do not include any markdown formatting, code blocks, or explanations.

Schema to follow:
{schema_text}

Requirements:
1. Return ONLY valid JSON
2. Do not wrap in code blocks or markdown
3. Ensure all fields match the schema exactly
4. Use exact enum values if specified
5. Do not add extra fields"""

_GROUNDED_REQUIREMENT = (
    "6. Include citations and sources for factual claims when possible"
)


@dataclass(frozen=True, slots=True)
class LlmMeta:
    model_name: str
    prompt_hash: str
    response_hash: str
    latency_ms: float
    retry_count: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class StructuredResult:
    data: dict[str, Any]
    meta: LlmMeta


class StructuredGenerationClient:
    """Turns "prompt + schema" into a schema-conforming object.

    Every attempt is a fresh generator call. Transport errors, unparseable
    output and schema violations all count as failed attempts; after the last
    one a ``GenerationFailure`` carries the final underlying error.
    """

    def __init__(
        self,
        *,
        generator: TextGenerator,
        default_model: str,
        default_temperature: float = DEFAULT_TEMPERATURE,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay_seconds: float = DEFAULT_BASE_DELAY_SECONDS,
        sleep_fn: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generator = generator
        self.default_model = default_model
        self.default_temperature = default_temperature
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.sleep_fn = sleep_fn

    def generate_structured(
        self,
        prompt: str,
        schema: StructuredSchema,
        *,
        grounded: bool = False,
        model: str | None = None,
        temperature: float | None = None,
    ) -> StructuredResult:
        active_model = model or self.default_model
        params = {
            "temperature": (
                self.default_temperature if temperature is None else temperature
            ),
        }
        full_prompt = (
            build_system_prompt(schema.json_schema, grounded=grounded) + "\n\n" + prompt
        )
        prompt_hash = content_hash(prompt)
        started_at = time.perf_counter()

        def attempt(index: int) -> StructuredResult:
            logger.debug(
                "Generation attempt %d for schema %s",
                index + 1,
                schema.name,
                extra={"metrics": {"model": active_model, "prompt_hash": prompt_hash}},
            )
            data = self._attempt(full_prompt, schema, active_model, params)
            meta = LlmMeta(
                model_name=active_model,
                prompt_hash=prompt_hash,
                response_hash=hash_json(data),
                latency_ms=(time.perf_counter() - started_at) * 1000,
                retry_count=index,
            )
            return StructuredResult(data=data, meta=meta)

        try:
            return run_with_retry(
                operation=attempt,
                should_retry=is_retryable_generation_error,
                max_retries=self.max_attempts - 1,
                base_delay_seconds=self.base_delay_seconds,
                sleep_fn=self.sleep_fn,
                on_retry=lambda retry_number, delay, error: logger.warning(
                    "Generation attempt %d failed, retrying in %.1fs: %s",
                    retry_number,
                    delay,
                    build_error_details(error),
                ),
            )
        except (TransportError, SchemaValidationError) as error:
            logger.error(
                "All generation attempts failed for schema %s",
                schema.name,
                extra={"metrics": {"prompt_hash": prompt_hash}},
            )
            raise GenerationFailure(self.max_attempts, error) from error

    def _attempt(
        self,
        full_prompt: str,
        schema: StructuredSchema,
        model: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        try:
            generated = self.generator.generate_text(
                prompt=full_prompt, model=model, params=params
            )
        except Exception as error:  # noqa: BLE001
            raise TransportError(build_error_details(error)) from error

        parsed = parse_json_output(generated.raw_text)

        validation = validate_output(
            parsed_json=parsed,
            schema=schema.json_schema,
            invariants=schema.invariants,
        )
        if not validation.valid:
            raise SchemaValidationError(
                f"Output does not conform to {schema.name}: "
                + "; ".join(validation.errors),
                errors=validation.errors,
            )
        return parsed


def build_system_prompt(json_schema: dict[str, Any], *, grounded: bool = False) -> str:
    prompt = _SYSTEM_PREAMBLE.format(schema_text=render_schema_text(json_schema))
    if grounded:
        prompt += "\n" + _GROUNDED_REQUIREMENT
    return prompt


def strip_code_fences(text: str) -> str:
    repaired = text.strip()
    repaired = _LEADING_FENCE_RE.sub("", repaired, count=1)
    repaired = _TRAILING_FENCE_RE.sub("", repaired, count=1)
    return repaired.strip()


def _reject_constant(token: str) -> Any:
    raise MalformedOutputError(f"Generator output contains non-JSON number: {token}")


def parse_json_output(raw_text: str) -> Any:
    if not raw_text or not raw_text.strip():
        raise MalformedOutputError("Empty response from generator")

    try:
        return json.loads(raw_text, parse_constant=_reject_constant)
    except json.JSONDecodeError:
        pass

    repaired = strip_code_fences(raw_text)
    try:
        return json.loads(repaired, parse_constant=_reject_constant)
    except json.JSONDecodeError as error:
        raise MalformedOutputError(
            f"Generator output is not valid JSON after repair: {error.msg}"
        ) from error
