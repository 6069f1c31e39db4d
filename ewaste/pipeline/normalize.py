from __future__ import annotations

from ewaste.storage.models import InventoryType, Unit

# Checked in order; the first category with a matching keyword wins.
TYPE_KEYWORDS: tuple[tuple[InventoryType, tuple[str, ...]], ...] = (
    ("laptop", ("laptop", "computer", "notebook")),
    ("smartphone", ("phone", "iphone", "android")),
    ("pcb", ("pcb", "board", "circuit")),
    ("battery", ("battery", "cell")),
    ("cable", ("cable", "wire", "cord")),
)

_KG_UNITS = frozenset({"kg", "kgs", "kilogram", "kilograms"})
_TON_UNITS = frozenset({"t", "ton", "tons", "tonne", "tonnes"})


def normalize_ewaste_type(label: str) -> InventoryType:
    lowered = (label or "").lower()
    for inventory_type, keywords in TYPE_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return inventory_type
    return "other"


def normalize_unit(unit: str | None) -> Unit:
    lowered = (unit or "").strip().lower().rstrip(".")
    if lowered in _KG_UNITS:
        return "kg"
    if lowered in _TON_UNITS:
        return "tons"
    return "count"
