from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from typing import Literal

StepName = Literal[
    "DETECTING",
    "PARSING_TEXT_INVENTORY",
    "NORMALIZING_INVENTORY",
    "ESTIMATING_METALS",
    "PRICING_METALS",
    "PLANNING_EXTRACTION",
    "GENERATING_REPORT",
    "DONE",
]
RunStatus = Literal["pending", "in_progress", "completed", "failed"]
StepStatus = Literal["in_progress", "completed", "failed"]
InventoryType = Literal["laptop", "smartphone", "pcb", "battery", "cable", "other"]
Unit = Literal["count", "kg", "tons"]
Confidence = Literal["high", "medium", "low"]
Verdict = Literal["Viable", "Uncertain", "NotViable"]

PIPELINE_STEPS: tuple[StepName, ...] = (
    "DETECTING",
    "PARSING_TEXT_INVENTORY",
    "NORMALIZING_INVENTORY",
    "ESTIMATING_METALS",
    "PRICING_METALS",
    "PLANNING_EXTRACTION",
    "GENERATING_REPORT",
    "DONE",
)


@dataclass(frozen=True, slots=True)
class BatchRecord:
    batch_id: str
    location: str
    metadata: dict[str, Any]
    created_at: str


@dataclass(frozen=True, slots=True)
class DetectionResultRecord:
    image_id: str
    raw_boxes: list[dict[str, Any]]
    summary_labels: list[dict[str, Any]]
    model_version: str
    created_at: str


@dataclass(frozen=True, slots=True)
class ImageAssetRecord:
    image_id: str
    batch_id: str
    filename: str
    storage_key: str
    mime_type: str
    size_bytes: int
    created_at: str
    detection: DetectionResultRecord | None = None


@dataclass(frozen=True, slots=True)
class TextInventoryEntryRecord:
    entry_id: str
    batch_id: str
    raw_text: str
    submitted_at: str


@dataclass(frozen=True, slots=True)
class InventoryItemRecord:
    item_id: str
    batch_id: str
    raw_label: str
    normalized_type: InventoryType
    quantity: int | float
    unit: Unit
    confidence: Confidence
    manufacturer: str | None = None
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.item_id,
            "rawLabel": self.raw_label,
            "normalizedType": self.normalized_type,
            "manufacturer": self.manufacturer,
            "model": self.model,
            "quantity": self.quantity,
            "unit": self.unit,
            "confidence": self.confidence,
        }


@dataclass(frozen=True, slots=True)
class NewInventoryItem:
    """An inventory item before it is assigned an id by the store."""

    raw_label: str
    normalized_type: InventoryType
    quantity: int | float
    unit: Unit
    confidence: Confidence
    manufacturer: str | None = None
    model: str | None = None


@dataclass(frozen=True, slots=True)
class StepResult:
    status: StepStatus
    output: Any = None
    error: str | None = None
    duration_ms: float | None = None
    timestamp: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "output": self.output,
            "error": self.error,
            "durationMs": self.duration_ms,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> StepResult:
        return cls(
            status=payload["status"],
            output=payload.get("output"),
            error=payload.get("error"),
            duration_ms=payload.get("durationMs"),
            timestamp=payload.get("timestamp"),
        )


@dataclass(frozen=True, slots=True)
class PipelineRunRecord:
    run_id: str
    batch_id: str
    created_at: str
    current_step: StepName
    status: RunStatus
    step_results: dict[str, StepResult] = field(default_factory=dict)
    model_versions: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class MetalEstimateRecord:
    batch_id: str
    composition: dict[str, Any]
    aggregate_totals_kg: dict[str, float]
    uncertainty: dict[str, Any]
    citations: list[dict[str, Any]]
    prompt_hash: str
    model_used: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "composition": self.composition,
            "aggregateTotalsKg": self.aggregate_totals_kg,
            "uncertainty": self.uncertainty,
            "citations": self.citations,
        }


@dataclass(frozen=True, slots=True)
class PriceSnapshotRecord:
    batch_id: str
    timestamp_utc: str
    currency: str
    prices_per_kg: dict[str, float]
    sources: list[dict[str, Any]]
    total_gross_value_usd: float
    prompt_hash: str
    model_used: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestampUtc": self.timestamp_utc,
            "currency": self.currency,
            "pricesPerKg": self.prices_per_kg,
            "sources": self.sources,
            "totalGrossValueUsd": self.total_gross_value_usd,
        }


@dataclass(frozen=True, slots=True)
class ExtractionPlanRecord:
    batch_id: str
    plan: dict[str, Any]
    total_cost_usd: float
    net_profit_usd: float
    prompt_hash: str
    model_used: str
    updated_at: str

    def to_dict(self) -> dict[str, Any]:
        return dict(self.plan)


@dataclass(frozen=True, slots=True)
class InvestorReportRecord:
    batch_id: str
    report: dict[str, Any]
    verdict: Verdict
    updated_at: str


@dataclass(frozen=True, slots=True)
class BatchBundle:
    batch: BatchRecord
    image_assets: list[ImageAssetRecord]
    text_entries: list[TextInventoryEntryRecord]
    inventory_items: list[InventoryItemRecord]
    metal_estimate: MetalEstimateRecord | None
    price_snapshot: PriceSnapshotRecord | None
    extraction_plan: ExtractionPlanRecord | None
    investor_report: InvestorReportRecord | None
    runs: list[PipelineRunRecord]
