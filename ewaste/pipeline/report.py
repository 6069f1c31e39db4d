from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from ewaste.storage.models import (
    ExtractionPlanRecord,
    ImageAssetRecord,
    InventoryItemRecord,
    MetalEstimateRecord,
    PriceSnapshotRecord,
    Verdict,
)

UNCERTAIN_LOSS_FLOOR_USD = -1000.0
DEFAULT_REPORT_CONFIDENCE = "medium"


def derive_verdict(net_profit: float) -> Verdict:
    if net_profit > 0:
        return "Viable"
    if net_profit > UNCERTAIN_LOSS_FLOOR_USD:
        return "Uncertain"
    return "NotViable"


def summarize_detections(image_assets: list[ImageAssetRecord]) -> dict[str, Any] | None:
    """Roll detection labels up across images, or ``None`` when nothing was detected.

    Counts are summed per label; confidence is the mean of the per-image
    confidence means for that label.
    """
    counts: dict[str, int] = {}
    confidences: dict[str, list[float]] = {}

    for asset in image_assets:
        if asset.detection is None:
            continue
        for label in asset.detection.summary_labels:
            name = str(label["label"])
            counts[name] = counts.get(name, 0) + int(label["count"])
            confidences.setdefault(name, []).append(float(label["confidenceMean"]))

    if not counts:
        return None

    return {
        "imagesProcessed": len(image_assets),
        "labels": [
            {
                "label": name,
                "count": counts[name],
                "confidenceMean": sum(confidences[name]) / len(confidences[name]),
            }
            for name in counts
        ],
    }


def build_investor_report(
    *,
    inventory: list[InventoryItemRecord],
    image_assets: list[ImageAssetRecord],
    metal_estimate: MetalEstimateRecord,
    price_snapshot: PriceSnapshotRecord,
    extraction_plan: ExtractionPlanRecord,
    detector_version: str,
    llm_models: dict[str, str],
    prompt_hashes: dict[str, str],
    created_at: str | None = None,
) -> dict[str, Any]:
    gross_value = price_snapshot.total_gross_value_usd
    total_cost = extraction_plan.total_cost_usd
    net_profit = gross_value - total_cost

    report: dict[str, Any] = {
        "executiveSummary": {
            "grossValueUsd": gross_value,
            "totalCostUsd": total_cost,
            "netProfitUsd": net_profit,
            "verdict": derive_verdict(net_profit),
            "confidence": metal_estimate.uncertainty.get("aggregate")
            or DEFAULT_REPORT_CONFIDENCE,
        },
        "inventory": [item.to_dict() for item in inventory],
    }

    detections = summarize_detections(image_assets)
    if detections is not None:
        report["detections"] = detections

    plan = extraction_plan.to_dict()
    report["metals"] = {
        "aggregateTotalsKg": metal_estimate.aggregate_totals_kg,
        "uncertainty": metal_estimate.uncertainty,
        "citations": metal_estimate.citations,
    }
    report["pricing"] = price_snapshot.to_dict()
    report["extraction"] = {
        "totalCostUsd": extraction_plan.total_cost_usd,
        "netProfitUsd": extraction_plan.net_profit_usd,
        "plan": plan,
        "risks": plan.get("risks", []),
        "sensitivity": plan.get("sensitivity", {}),
        "citations": plan.get("citations", []),
    }
    report["auditTrail"] = {
        "detectorVersion": detector_version,
        "llmModels": dict(llm_models),
        "promptHashes": dict(prompt_hashes),
        "createdAtUtc": created_at or datetime.now(tz=timezone.utc).isoformat(),
    }
    return report
