"""Pure helpers used by the pipeline step bodies: fan-in and prompt builders."""

from __future__ import annotations

import json
from typing import Any

from ewaste.pipeline.normalize import normalize_ewaste_type, normalize_unit
from ewaste.storage.models import (
    Confidence,
    InventoryItemRecord,
    MetalEstimateRecord,
    NewInventoryItem,
    PriceSnapshotRecord,
)
from ewaste.utils.logging import get_logger

logger = get_logger(__name__)

HIGH_CONFIDENCE_THRESHOLD = 0.8
_CONFIDENCE_VALUES: frozenset[str] = frozenset({"high", "medium", "low"})


def build_normalized_items(
    *,
    detections: list[dict[str, Any]],
    text_items: list[dict[str, Any]],
) -> list[NewInventoryItem]:
    """Merge detection labels and parsed text lines into inventory items.

    Detection labels come first, in detection order, followed by text items.
    Items whose quantity is not positive are dropped.
    """
    items: list[NewInventoryItem] = []

    for detection in detections:
        for label in detection.get("summaryLabels") or []:
            raw_label = str(label.get("label", ""))
            quantity = label.get("count", 0)
            if not _is_positive(quantity):
                logger.info(
                    "Dropping detection label with non-positive count",
                    extra={"metrics": {"label": raw_label, "count": quantity}},
                )
                continue

            confidence_mean = float(label.get("confidenceMean") or 0.0)
            items.append(
                NewInventoryItem(
                    raw_label=raw_label,
                    normalized_type=normalize_ewaste_type(raw_label),
                    quantity=quantity,
                    unit="count",
                    confidence=(
                        "high"
                        if confidence_mean > HIGH_CONFIDENCE_THRESHOLD
                        else "medium"
                    ),
                )
            )

    for text_item in text_items:
        raw_label = str(text_item.get("rawLabel", ""))
        quantity = text_item.get("quantity", 0)
        if not _is_positive(quantity):
            logger.info(
                "Dropping text inventory item with non-positive quantity",
                extra={"metrics": {"label": raw_label, "quantity": quantity}},
            )
            continue

        items.append(
            NewInventoryItem(
                raw_label=raw_label,
                normalized_type=normalize_ewaste_type(raw_label),
                quantity=quantity,
                unit=normalize_unit(text_item.get("unit")),
                confidence=_coerce_confidence(text_item.get("confidence")),
            )
        )

    return items


def build_metal_estimate_prompt(inventory: list[InventoryItemRecord]) -> str:
    inventory_text = "\n".join(
        f"{item.normalized_type} - Quantity: {item.quantity} {item.unit}"
        for item in inventory
    )
    return (
        "Analyze the following e-waste inventory and provide detailed metal "
        "composition estimates:\n\n"
        f"{inventory_text}\n\n"
        "For each item type, estimate:\n"
        "1. Precious metals (gold, silver, palladium, etc.)\n"
        "2. Base metals (copper, aluminum, etc.)\n"
        "3. Confidence levels\n\n"
        "Provide aggregate totals in kilograms. Put an overall confidence for the "
        "whole estimate under uncertainty.aggregate."
    )


def build_pricing_prompt(metal_estimate: MetalEstimateRecord) -> str:
    metals_text = "\n".join(
        f"{metal}: {kg} kg" for metal, kg in metal_estimate.aggregate_totals_kg.items()
    )
    return (
        "Provide current market prices (USD) for these precious and base metals:\n\n"
        f"{metals_text}\n\n"
        "Include:\n"
        "1. Current market price per kg\n"
        "2. Source of pricing data\n"
        "3. Timestamp\n"
        "4. Market citations\n\n"
        "Calculate gross value for the inventory."
    )


def build_extraction_prompt(
    *,
    metal_estimate: MetalEstimateRecord,
    price_snapshot: PriceSnapshotRecord,
    location: str,
) -> str:
    metals_json = json.dumps(metal_estimate.aggregate_totals_kg, indent=2)
    prices_json = json.dumps(price_snapshot.prices_per_kg, indent=2)
    return (
        "Create an extraction and recycling plan for this e-waste batch:\n\n"
        f"Metals (kg): {metals_json}\n"
        f"Market Prices (USD/kg): {prices_json}\n"
        f"Gross Value: ${price_snapshot.total_gross_value_usd}\n"
        f"Location: {location}\n\n"
        "Provide:\n"
        "1. Recommended processes per metal type\n"
        "2. CAPEX estimate\n"
        "3. OPEX estimate\n"
        "4. Logistics costs\n"
        "5. Timeline\n"
        "6. Risks and mitigation\n"
        "7. Sensitivity analysis (best/base/worst case)\n"
        "8. Net profit calculation"
    )


def _is_positive(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return value > 0


def _coerce_confidence(value: Any) -> Confidence:
    if isinstance(value, str) and value in _CONFIDENCE_VALUES:
        return value
    return "high"
