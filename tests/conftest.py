from __future__ import annotations

import copy
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from ewaste.detection.types import BoundingBox, DetectionLabel, DetectionOutput
from ewaste.llm_client.base import GeneratedText
from ewaste.llm_client.structured import StructuredGenerationClient
from ewaste.pipeline.orchestrator import PipelineOrchestrator
from ewaste.service import EWasteService
from ewaste.storage.blobs import LocalBlobStore
from ewaste.storage.repo import StorageRepo

METAL_ESTIMATE_PAYLOAD: dict[str, Any] = {
    "composition": {
        "gold": {"grams": 25.0, "confidence": "medium"},
        "copper": {"grams": 12000.0, "confidence": "high"},
    },
    "aggregateTotalsKg": {"gold": 0.025, "copper": 12.0},
    "uncertainty": {"gold": "medium", "copper": "high", "aggregate": "low"},
    "citations": [{"source": "EPA e-waste composition study"}],
}

PRICE_SNAPSHOT_PAYLOAD: dict[str, Any] = {
    "timestampUtc": "2026-01-15T12:00:00Z",
    "currency": "USD",
    "pricesPerKg": {"gold": 36000.0, "copper": 8.0},
    "totalGrossValueUsd": 1000.0,
    "sources": [{"source": "LME", "url": "https://www.lme.com"}],
}

EXTRACTION_PLAN_PAYLOAD: dict[str, Any] = {
    "recommendedProcesses": [
        {
            "metalType": "gold",
            "process": "hydrometallurgical leaching",
            "duration": "4 weeks",
            "yield": 92,
        }
    ],
    "totalCostUsd": 200.0,
    "capexUsd": 50.0,
    "opexUsd": 100.0,
    "logisticsCostUsd": 50.0,
    "timeline": {
        "phases": [
            {"name": "Collection", "duration": "1 week", "activities": ["sorting"]}
        ]
    },
    "risks": [
        {
            "category": "market",
            "description": "Gold price volatility",
            "impactLevel": "medium",
        }
    ],
    "sensitivity": {"bestCase": 1200.0, "baseCase": 800.0, "worstCase": -100.0},
    "netProfitUsd": 800.0,
    "citations": [],
}


class RoutingGenerator:
    """Answers each structured prompt with the payload for the schema it embeds."""

    def __init__(self, payloads: dict[str, dict[str, Any]] | None = None) -> None:
        self.payloads = payloads or default_payloads()
        self.calls: list[dict[str, Any]] = []

    def generate_text(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> GeneratedText:
        self.calls.append({"prompt": prompt, "model": model, "params": params})
        for title, payload in self.payloads.items():
            if f"{title}: object" in prompt:
                return GeneratedText(raw_text=json.dumps(payload))
        raise AssertionError("Prompt does not embed a known schema")

    def titles_called(self) -> list[str]:
        titles: list[str] = []
        for call in self.calls:
            for title in self.payloads:
                if f"{title}: object" in call["prompt"]:
                    titles.append(title)
        return titles


class FixedDetector:
    model_version = "fixed-v1"

    def __init__(self, labels: list[tuple[str, int, float]] | None = None) -> None:
        self.labels = labels or [("pcb", 3, 0.9), ("battery", 2, 0.7)]
        self.calls: list[bytes] = []

    def detect(self, image_bytes: bytes) -> DetectionOutput:
        self.calls.append(image_bytes)
        return DetectionOutput(
            raw_boxes=[
                BoundingBox(
                    x=10.0, y=20.0, width=60.0, height=80.0, confidence=conf, label=name
                )
                for name, _, conf in self.labels
            ],
            summary_labels=[
                DetectionLabel(label=name, count=count, confidence_mean=conf)
                for name, count, conf in self.labels
            ],
            model_version=self.model_version,
        )


def default_payloads() -> dict[str, dict[str, Any]]:
    return {
        "MetalEstimate": copy.deepcopy(METAL_ESTIMATE_PAYLOAD),
        "PriceSnapshot": copy.deepcopy(PRICE_SNAPSHOT_PAYLOAD),
        "ExtractionPlan": copy.deepcopy(EXTRACTION_PLAN_PAYLOAD),
    }


@pytest.fixture
def payloads() -> dict[str, dict[str, Any]]:
    return default_payloads()


@pytest.fixture
def make_service(tmp_path: Path) -> Callable[..., EWasteService]:
    def _make(
        *,
        generator: Any = None,
        detector: Any = None,
        max_attempts: int = 3,
    ) -> EWasteService:
        repo = StorageRepo(tmp_path / "ewaste.sqlite3")
        blob_store = LocalBlobStore(tmp_path / "blobs")
        client = StructuredGenerationClient(
            generator=generator or RoutingGenerator(),
            default_model="test-model",
            max_attempts=max_attempts,
            sleep_fn=lambda _: None,
        )
        orchestrator = PipelineOrchestrator(
            repo=repo,
            blob_store=blob_store,
            detector=detector or FixedDetector(),
            generation_client=client,
        )
        return EWasteService(repo=repo, blob_store=blob_store, orchestrator=orchestrator)

    return _make


@pytest.fixture
def make_generator() -> Callable[..., RoutingGenerator]:
    return RoutingGenerator


@pytest.fixture
def make_detector() -> Callable[..., FixedDetector]:
    return FixedDetector
