from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True, slots=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float
    confidence: float
    label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "confidence": self.confidence,
            "label": self.label,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> BoundingBox:
        return cls(
            x=float(payload["x"]),
            y=float(payload["y"]),
            width=float(payload["width"]),
            height=float(payload["height"]),
            confidence=float(payload["confidence"]),
            label=str(payload["label"]),
        )


@dataclass(frozen=True, slots=True)
class DetectionLabel:
    label: str
    count: int
    confidence_mean: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "label": self.label,
            "count": self.count,
            "confidenceMean": self.confidence_mean,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DetectionLabel:
        return cls(
            label=str(payload["label"]),
            count=int(payload["count"]),
            confidence_mean=float(payload["confidenceMean"]),
        )


@dataclass(frozen=True, slots=True)
class DetectionOutput:
    raw_boxes: list[BoundingBox] = field(default_factory=list)
    summary_labels: list[DetectionLabel] = field(default_factory=list)
    model_version: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "rawBoxes": [box.to_dict() for box in self.raw_boxes],
            "summaryLabels": [label.to_dict() for label in self.summary_labels],
            "modelVersion": self.model_version,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> DetectionOutput:
        return cls(
            raw_boxes=[BoundingBox.from_dict(item) for item in payload["rawBoxes"]],
            summary_labels=[
                DetectionLabel.from_dict(item) for item in payload["summaryLabels"]
            ],
            model_version=str(payload["modelVersion"]),
        )


class Detector(Protocol):
    def detect(self, image_bytes: bytes) -> DetectionOutput: ...
