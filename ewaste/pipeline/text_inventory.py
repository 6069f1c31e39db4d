from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from ewaste.storage.models import Confidence

_SEPARATOR_RE = re.compile(r"[,\n;]+")
_LABEL_DASH_QUANTITY_RE = re.compile(r"^(.+?)\s*-\s*(\d+(?:\.\d+)?)\s*(.*)$")
_QUANTITY_LABEL_RE = re.compile(r"(\d+(?:\.\d+)?)\s+(.+)")

DEFAULT_UNIT = "count"
_MAX_SQLITE_INTEGER = 2**63 - 1


@dataclass(frozen=True, slots=True)
class ParsedInventoryItem:
    raw_label: str
    quantity: int | float
    unit: str
    confidence: Confidence = "high"

    def to_dict(self) -> dict[str, Any]:
        return {
            "rawLabel": self.raw_label,
            "quantity": self.quantity,
            "unit": self.unit,
            "confidence": self.confidence,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> ParsedInventoryItem:
        return cls(
            raw_label=str(payload["rawLabel"]),
            quantity=payload["quantity"],
            unit=str(payload.get("unit") or DEFAULT_UNIT),
            confidence=payload.get("confidence") or "high",
        )


def parse_text_inventory(text: str) -> list[ParsedInventoryItem]:
    """Best-effort extraction of ``label - quantity [unit]`` / ``quantity label`` lines.

    Lines matching neither form are dropped without error.
    """
    items: list[ParsedInventoryItem] = []
    for line in _SEPARATOR_RE.split(text or ""):
        candidate = line.strip()
        if not candidate:
            continue

        item = _parse_line(candidate)
        if item is not None:
            items.append(item)

    return items


def _parse_line(line: str) -> ParsedInventoryItem | None:
    match = _LABEL_DASH_QUANTITY_RE.match(line)
    if match is not None:
        label, quantity, unit = match.groups()
        return ParsedInventoryItem(
            raw_label=label.strip(),
            quantity=_to_number(quantity),
            unit=unit.strip() or DEFAULT_UNIT,
        )

    match = _QUANTITY_LABEL_RE.search(line)
    if match is not None:
        quantity, label = match.groups()
        return ParsedInventoryItem(
            raw_label=label.strip(),
            quantity=_to_number(quantity),
            unit=DEFAULT_UNIT,
        )

    return None


def _to_number(text: str) -> int | float:
    value = float(text)
    if value.is_integer() and abs(value) <= _MAX_SQLITE_INTEGER:
        return int(value)
    return value
