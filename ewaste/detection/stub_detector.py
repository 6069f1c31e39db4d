from __future__ import annotations

import random

from ewaste.detection.types import BoundingBox, DetectionLabel, DetectionOutput

STUB_MODEL_VERSION = "stub-v1"
STUB_LABELS: tuple[str, ...] = (
    "cpu",
    "ram",
    "pcb",
    "battery",
    "cable",
    "display",
    "power_supply",
)

FRAME_WIDTH = 640
FRAME_HEIGHT = 480


class StubDetector:
    """Synthesizes plausible detections so the pipeline runs without a model.

    The image content is ignored. Output honours the same contract as a real
    detector: 2-4 labels, counts 1-5, confidences in [0.65, 0.95] and 1-3
    boxes per label inside a 640x480 frame.
    """

    model_version = STUB_MODEL_VERSION

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def detect(self, image_bytes: bytes) -> DetectionOutput:
        label_count = self._rng.randint(2, 4)
        labels = STUB_LABELS[:label_count]

        summary_labels: list[DetectionLabel] = []
        raw_boxes: list[BoundingBox] = []
        for label in labels:
            confidence = round(0.65 + self._rng.random() * 0.3, 4)
            summary_labels.append(
                DetectionLabel(
                    label=label,
                    count=self._rng.randint(1, 5),
                    confidence_mean=confidence,
                )
            )
            for _ in range(self._rng.randint(1, 3)):
                raw_boxes.append(
                    BoundingBox(
                        x=float(self._rng.randint(0, FRAME_WIDTH)),
                        y=float(self._rng.randint(0, FRAME_HEIGHT)),
                        width=float(self._rng.randint(50, 150)),
                        height=float(self._rng.randint(50, 150)),
                        confidence=confidence,
                        label=label,
                    )
                )

        return DetectionOutput(
            raw_boxes=raw_boxes,
            summary_labels=summary_labels,
            model_version=self.model_version,
        )
