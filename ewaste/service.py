from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any, Callable, Literal

from ewaste.pipeline.orchestrator import PipelineOrchestrator, PipelineStatus
from ewaste.storage.blobs import BlobStore
from ewaste.storage.models import (
    BatchRecord,
    ExtractionPlanRecord,
    InventoryItemRecord,
    InvestorReportRecord,
    MetalEstimateRecord,
    PipelineRunRecord,
    PriceSnapshotRecord,
)
from ewaste.storage.repo import StorageRepo
from ewaste.utils.error_taxonomy import InputValidationError, NotFoundError
from ewaste.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_LOCATION = "USA"

NotReadyCode = Literal[
    "REPORT_NOT_READY",
    "METALS_NOT_READY",
    "VALUATION_NOT_READY",
    "EXTRACTION_NOT_READY",
]


@dataclass(frozen=True, slots=True)
class NotReady:
    """Returned by read queries whose upstream step has not produced output yet."""

    code: NotReadyCode
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"error": {"code": self.code, "message": self.message}}


@dataclass(frozen=True, slots=True)
class RunPipelineResponse:
    batch_id: str
    run_id: str
    status: str

    def to_dict(self) -> dict[str, Any]:
        return {"batchId": self.batch_id, "runId": self.run_id, "status": self.status}


class EWasteService:
    def __init__(
        self,
        *,
        repo: StorageRepo,
        blob_store: BlobStore,
        orchestrator: PipelineOrchestrator,
        default_location: str = DEFAULT_LOCATION,
        now_ms: Callable[[], int] | None = None,
    ) -> None:
        self.repo = repo
        self.blob_store = blob_store
        self.orchestrator = orchestrator
        self.default_location = default_location
        self._now_ms = now_ms or (lambda: int(time.time() * 1000))

    def create_batch(
        self,
        location: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> BatchRecord:
        batch = self.repo.create_batch(
            location=(location or "").strip() or self.default_location,
            metadata=metadata,
        )
        logger.info("Batch created", extra={"batch_id": batch.batch_id})
        return batch

    def attach_image(
        self,
        batch_id: str,
        filename: str,
        data: bytes,
        mime_type: str,
    ) -> str:
        self._require_batch(batch_id)
        safe_name = PurePosixPath((filename or "").replace("\\", "/")).name
        if not safe_name:
            raise InputValidationError("Image filename must not be empty")

        storage_key = f"batches/{batch_id}/images/{self._now_ms()}-{safe_name}"
        try:
            self.blob_store.put(storage_key, data, mime_type)
        except ValueError as error:
            raise InputValidationError(f"Image filename is not allowed: {safe_name}") from error
        try:
            asset = self.repo.add_image_asset(
                batch_id=batch_id,
                filename=safe_name,
                storage_key=storage_key,
                mime_type=mime_type,
                size_bytes=len(data),
            )
        except Exception:
            self.blob_store.delete(storage_key)
            raise

        logger.info(
            "Image attached",
            extra={"batch_id": batch_id, "metrics": {"size_bytes": len(data)}},
        )
        return asset.image_id

    def submit_inventory_text(self, batch_id: str, text: str) -> str:
        self._require_batch(batch_id)
        if not text or not text.strip():
            raise InputValidationError("Inventory text must not be empty")

        entry = self.repo.add_text_inventory_entry(batch_id=batch_id, raw_text=text)
        return entry.entry_id

    def run_pipeline(self, batch_id: str, force: bool = False) -> RunPipelineResponse:
        result = self.orchestrator.run_full_pipeline(batch_id, force=force)
        return RunPipelineResponse(
            batch_id=result.batch_id,
            run_id=result.run_id,
            status=result.status,
        )

    def get_status(self, batch_id: str) -> PipelineStatus:
        return self.orchestrator.get_status(batch_id)

    def get_inventory(self, batch_id: str) -> list[InventoryItemRecord]:
        self._require_batch(batch_id)
        return self.repo.list_inventory_items(batch_id)

    def get_report(self, batch_id: str) -> InvestorReportRecord | NotReady:
        self._require_batch(batch_id)
        report = self.repo.get_investor_report(batch_id)
        if report is None:
            return NotReady("REPORT_NOT_READY", "Report not yet generated")
        return report

    def get_detections(self, batch_id: str) -> list[dict[str, Any]]:
        self._require_batch(batch_id)
        detections: list[dict[str, Any]] = []
        for asset in self.repo.list_image_assets(batch_id):
            detection = None
            if asset.detection is not None:
                detection = {
                    "rawBoxes": asset.detection.raw_boxes,
                    "summaryLabels": asset.detection.summary_labels,
                    "modelVersion": asset.detection.model_version,
                }
            detections.append(
                {
                    "imageId": asset.image_id,
                    "filename": asset.filename,
                    "detection": detection,
                }
            )
        return detections

    def get_metals(self, batch_id: str) -> MetalEstimateRecord | NotReady:
        self._require_batch(batch_id)
        estimate = self.repo.get_metal_estimate(batch_id)
        if estimate is None:
            return NotReady("METALS_NOT_READY", "Metal estimate not yet available")
        return estimate

    def get_valuation(self, batch_id: str) -> PriceSnapshotRecord | NotReady:
        self._require_batch(batch_id)
        snapshot = self.repo.get_price_snapshot(batch_id)
        if snapshot is None:
            return NotReady("VALUATION_NOT_READY", "Valuation not yet available")
        return snapshot

    def get_extraction(self, batch_id: str) -> ExtractionPlanRecord | NotReady:
        self._require_batch(batch_id)
        plan = self.repo.get_extraction_plan(batch_id)
        if plan is None:
            return NotReady("EXTRACTION_NOT_READY", "Extraction plan not yet available")
        return plan

    def list_runs(self, batch_id: str, *, limit: int = 50) -> list[PipelineRunRecord]:
        self._require_batch(batch_id)
        return self.repo.list_pipeline_runs(batch_id, limit=limit)

    def _require_batch(self, batch_id: str) -> BatchRecord:
        batch = self.repo.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")
        return batch
