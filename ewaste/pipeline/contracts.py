from __future__ import annotations

import copy
import json
from dataclasses import dataclass, field
from datetime import datetime
from functools import lru_cache
from pathlib import Path
from typing import Any

from ewaste.pipeline.validate_output import InvariantCheck

SCHEMAS_DIR = Path(__file__).resolve().parents[1] / "schemas"


@dataclass(frozen=True, slots=True)
class StructuredSchema:
    """A named JSON Schema plus cross-field checks the schema cannot express."""

    name: str
    json_schema: dict[str, Any] = field(repr=False)
    invariants: InvariantCheck | None = None


@lru_cache(maxsize=None)
def _read_schema_text(name: str) -> str:
    path = SCHEMAS_DIR / f"{name}.json"
    if not path.exists():
        raise FileNotFoundError(f"Schema not found: {path}")
    return path.read_text(encoding="utf-8")


def load_schema(name: str) -> dict[str, Any]:
    schema = json.loads(_read_schema_text(name))
    if not isinstance(schema, dict):
        raise ValueError(f"Schema must be a JSON object: {name}")
    return copy.deepcopy(schema)


def _metal_estimate_invariants(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if not payload.get("aggregateTotalsKg"):
        errors.append("aggregateTotalsKg must list at least one metal")
    return errors


def _price_snapshot_invariants(payload: dict[str, Any]) -> list[str]:
    errors: list[str] = []
    if parse_utc_timestamp(payload.get("timestampUtc")) is None:
        errors.append("timestampUtc must be an ISO-8601 date-time")
    return errors


def parse_utc_timestamp(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


METAL_ESTIMATE_SCHEMA = StructuredSchema(
    name="metal_estimate",
    json_schema=load_schema("metal_estimate"),
    invariants=_metal_estimate_invariants,
)
PRICE_SNAPSHOT_SCHEMA = StructuredSchema(
    name="price_snapshot",
    json_schema=load_schema("price_snapshot"),
    invariants=_price_snapshot_invariants,
)
EXTRACTION_PLAN_SCHEMA = StructuredSchema(
    name="extraction_plan",
    json_schema=load_schema("extraction_plan"),
)
DETECTION_OUTPUT_SCHEMA = StructuredSchema(
    name="detection_output",
    json_schema=load_schema("detection_output"),
)
