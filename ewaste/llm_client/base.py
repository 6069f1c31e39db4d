from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class GeneratedText:
    raw_text: str
    raw_response: dict[str, Any] = field(default_factory=dict)
    timings: dict[str, float] = field(default_factory=dict)


class TextGenerator(Protocol):
    def generate_text(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> GeneratedText: ...


def to_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        return value

    model_dump = getattr(value, "model_dump", None)
    if callable(model_dump):
        dumped = model_dump()
        if isinstance(dumped, dict):
            return dumped

    return {}
