from __future__ import annotations

import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Literal

from ewaste.detection.types import Detector
from ewaste.llm_client.structured import StructuredGenerationClient
from ewaste.pipeline.contracts import (
    EXTRACTION_PLAN_SCHEMA,
    METAL_ESTIMATE_SCHEMA,
    PRICE_SNAPSHOT_SCHEMA,
)
from ewaste.pipeline.report import build_investor_report
from ewaste.pipeline.steps import (
    build_extraction_prompt,
    build_metal_estimate_prompt,
    build_normalized_items,
    build_pricing_prompt,
)
from ewaste.pipeline.text_inventory import parse_text_inventory
from ewaste.storage.blobs import BlobStore
from ewaste.storage.models import (
    PIPELINE_STEPS,
    ImageAssetRecord,
    PipelineRunRecord,
    StepName,
)
from ewaste.storage.repo import StorageRepo
from ewaste.utils.error_taxonomy import (
    NotFoundError,
    PreconditionError,
    RunInProgressError,
    build_error_details,
    classify_error,
)
from ewaste.utils.logging import clear_log_context, get_logger, set_log_context

logger = get_logger(__name__)

NOT_STARTED = "NOT_STARTED"

_LOG_CONTEXT_KEYS = ("batch_id", "run_id", "step")


@dataclass(frozen=True, slots=True)
class PipelineResult:
    batch_id: str
    run_id: str
    status: Literal["completed"]
    report: dict[str, Any]


@dataclass(frozen=True, slots=True)
class PipelineStatus:
    batch_id: str
    run_id: str | None
    current_step: str
    status: str
    step_results: dict[str, dict[str, Any]] = field(default_factory=dict)
    progress: float = 0.0
    error: str | None = None
    failed_step: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "runId": self.run_id,
            "currentStep": self.current_step,
            "status": self.status,
            "stepResults": self.step_results,
            "progress": self.progress,
            "error": self.error,
            "failedStep": self.failed_step,
        }


class PipelineOrchestrator:
    """Runs the seven functional steps of a batch in order, then marks DONE.

    Each step body re-reads its inputs from the store. The step wrapper
    records ``in_progress`` before the body runs and ``completed`` or
    ``failed`` after it; a failure is recorded and re-raised, which stops the
    run. Only one run per batch may execute at a time in this process.
    """

    def __init__(
        self,
        *,
        repo: StorageRepo,
        blob_store: BlobStore,
        detector: Detector,
        generation_client: StructuredGenerationClient,
    ) -> None:
        self.repo = repo
        self.blob_store = blob_store
        self.detector = detector
        self.generation_client = generation_client
        self._active_lock = threading.Lock()
        self._active_batches: set[str] = set()

    def run_full_pipeline(self, batch_id: str, *, force: bool = False) -> PipelineResult:
        if self.repo.get_batch(batch_id) is None:
            raise NotFoundError(f"Batch not found: {batch_id}")

        with self._single_flight(batch_id):
            run = self.repo.create_pipeline_run(
                batch_id=batch_id,
                model_versions={
                    "detector": _detector_version(self.detector),
                    "llm": self.generation_client.default_model,
                },
            )
            run_id = run.run_id
            set_log_context(batch_id=batch_id, run_id=run_id)
            logger.info("Pipeline run started", extra={"metrics": {"force": force}})
            started_at = time.perf_counter()

            try:
                self._execute_step(
                    run_id, "DETECTING", lambda: self._detect(batch_id, force=force)
                )
                self._execute_step(
                    run_id,
                    "PARSING_TEXT_INVENTORY",
                    lambda: self._parse_text_inventory(batch_id),
                )
                self._execute_step(
                    run_id,
                    "NORMALIZING_INVENTORY",
                    lambda: self._normalize_inventory(batch_id, run_id),
                )
                self._execute_step(
                    run_id, "ESTIMATING_METALS", lambda: self._estimate_metals(batch_id)
                )
                self._execute_step(
                    run_id, "PRICING_METALS", lambda: self._price_metals(batch_id)
                )
                self._execute_step(
                    run_id,
                    "PLANNING_EXTRACTION",
                    lambda: self._plan_extraction(batch_id),
                )
                report_output = self._execute_step(
                    run_id,
                    "GENERATING_REPORT",
                    lambda: self._generate_report(batch_id, run_id),
                )

                self.repo.update_pipeline_step(
                    run_id=run_id,
                    step="DONE",
                    status="completed",
                    output={"status": "success"},
                )
                logger.info(
                    "Pipeline run completed",
                    extra={"duration_ms": _elapsed_ms(started_at)},
                )
            except Exception:
                logger.error(
                    "Pipeline run failed",
                    extra={"duration_ms": _elapsed_ms(started_at)},
                )
                raise
            finally:
                clear_log_context(_LOG_CONTEXT_KEYS)

        return PipelineResult(
            batch_id=batch_id,
            run_id=run_id,
            status="completed",
            report=report_output["report"],
        )

    def get_status(self, batch_id: str) -> PipelineStatus:
        if self.repo.get_batch(batch_id) is None:
            raise NotFoundError(f"Batch not found: {batch_id}")

        run = self.repo.get_latest_pipeline_run(batch_id)
        if run is None:
            return PipelineStatus(
                batch_id=batch_id,
                run_id=None,
                current_step=NOT_STARTED,
                status="pending",
            )

        return build_pipeline_status(run)

    def is_running(self, batch_id: str) -> bool:
        with self._active_lock:
            return batch_id in self._active_batches

    @contextmanager
    def _single_flight(self, batch_id: str) -> Iterator[None]:
        with self._active_lock:
            if batch_id in self._active_batches:
                raise RunInProgressError(
                    f"A pipeline run is already in progress for batch {batch_id}"
                )
            self._active_batches.add(batch_id)
        try:
            yield
        finally:
            with self._active_lock:
                self._active_batches.discard(batch_id)

    def _execute_step(
        self,
        run_id: str,
        step: StepName,
        body: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        self.repo.update_pipeline_step(run_id=run_id, step=step, status="in_progress")
        set_log_context(step=step)
        logger.info("Step started: %s", step)
        started_at = time.perf_counter()

        try:
            output = body()
        except Exception as error:
            duration_ms = _elapsed_ms(started_at)
            logger.error(
                "Step failed: %s",
                step,
                extra={
                    "duration_ms": duration_ms,
                    "metrics": {
                        "error_code": classify_error(error),
                        "details": build_error_details(error),
                    },
                },
            )
            self._record_step_failure(
                run_id=run_id,
                step=step,
                error=error,
                duration_ms=duration_ms,
            )
            raise

        duration_ms = _elapsed_ms(started_at)
        self.repo.update_pipeline_step(
            run_id=run_id,
            step=step,
            status="completed",
            output=output,
            duration_ms=duration_ms,
        )
        logger.info("Step completed: %s", step, extra={"duration_ms": duration_ms})
        return output

    def _record_step_failure(
        self,
        *,
        run_id: str,
        step: StepName,
        error: Exception,
        duration_ms: float,
    ) -> None:
        # The step error is what the caller must see, so a failure to record it
        # is logged instead of replacing it.
        try:
            self.repo.update_pipeline_step(
                run_id=run_id,
                step=step,
                status="failed",
                error=str(error) or error.__class__.__name__,
                duration_ms=duration_ms,
            )
        except Exception as record_error:  # noqa: BLE001
            logger.error(
                "Failed to record step failure: %s",
                build_error_details(record_error),
            )

    # Step bodies

    def _detect(self, batch_id: str, *, force: bool) -> dict[str, Any]:
        image_assets = self.repo.list_image_assets(batch_id)
        if not image_assets:
            logger.info("No images to detect")
            return {"imagesProcessed": 0, "detections": []}

        detections: list[dict[str, Any]] = []
        for asset in image_assets:
            if asset.detection is not None and not force:
                detections.append(
                    {
                        "imageId": asset.image_id,
                        "rawBoxes": asset.detection.raw_boxes,
                        "summaryLabels": asset.detection.summary_labels,
                        "modelVersion": asset.detection.model_version,
                        "reused": True,
                    }
                )
                continue

            image_bytes = self.blob_store.get(asset.storage_key)
            output = self.detector.detect(image_bytes)
            wire = output.to_dict()
            self.repo.upsert_detection_result(
                image_id=asset.image_id,
                raw_boxes=wire["rawBoxes"],
                summary_labels=wire["summaryLabels"],
                model_version=output.model_version,
            )
            detections.append({"imageId": asset.image_id, **wire, "reused": False})

        return {"imagesProcessed": len(image_assets), "detections": detections}

    def _parse_text_inventory(self, batch_id: str) -> dict[str, Any]:
        parsed: list[dict[str, Any]] = []
        for entry in self.repo.list_text_inventory_entries(batch_id):
            parsed.extend(item.to_dict() for item in parse_text_inventory(entry.raw_text))
        return {"textInventoryItems": parsed, "count": len(parsed)}

    def _normalize_inventory(self, batch_id: str, run_id: str) -> dict[str, Any]:
        run = self.repo.get_pipeline_run(run_id)
        if run is None:
            raise NotFoundError(f"Pipeline run not found: {run_id}")

        detection_output = _completed_step_output(run, "DETECTING")
        parsing_output = _completed_step_output(run, "PARSING_TEXT_INVENTORY")

        items = build_normalized_items(
            detections=list(detection_output.get("detections") or []),
            text_items=list(parsing_output.get("textInventoryItems") or []),
        )
        stored = self.repo.replace_inventory_items(batch_id=batch_id, items=items)
        return {
            "normalizedItems": [item.to_dict() for item in stored],
            "count": len(stored),
        }

    def _estimate_metals(self, batch_id: str) -> dict[str, Any]:
        inventory = self.repo.list_inventory_items(batch_id)
        if not inventory:
            raise PreconditionError("No normalized inventory for metal estimation")

        result = self.generation_client.generate_structured(
            build_metal_estimate_prompt(inventory),
            METAL_ESTIMATE_SCHEMA,
        )
        self.repo.upsert_metal_estimate(
            batch_id=batch_id,
            payload=result.data,
            prompt_hash=result.meta.prompt_hash,
            model_used=result.meta.model_name,
        )
        return {"metalEstimate": result.data, "meta": result.meta.to_dict()}

    def _price_metals(self, batch_id: str) -> dict[str, Any]:
        metal_estimate = self.repo.get_metal_estimate(batch_id)
        if metal_estimate is None:
            raise PreconditionError("Metal estimate required for pricing")

        result = self.generation_client.generate_structured(
            build_pricing_prompt(metal_estimate),
            PRICE_SNAPSHOT_SCHEMA,
            grounded=True,
        )
        self.repo.upsert_price_snapshot(
            batch_id=batch_id,
            payload=result.data,
            prompt_hash=result.meta.prompt_hash,
            model_used=result.meta.model_name,
        )
        return {"priceSnapshot": result.data, "meta": result.meta.to_dict()}

    def _plan_extraction(self, batch_id: str) -> dict[str, Any]:
        metal_estimate = self.repo.get_metal_estimate(batch_id)
        price_snapshot = self.repo.get_price_snapshot(batch_id)
        if metal_estimate is None or price_snapshot is None:
            raise PreconditionError("Metal estimate and pricing required for extraction")

        batch = self.repo.get_batch(batch_id)
        if batch is None:
            raise NotFoundError(f"Batch not found: {batch_id}")

        result = self.generation_client.generate_structured(
            build_extraction_prompt(
                metal_estimate=metal_estimate,
                price_snapshot=price_snapshot,
                location=batch.location,
            ),
            EXTRACTION_PLAN_SCHEMA,
            grounded=True,
        )
        self.repo.upsert_extraction_plan(
            batch_id=batch_id,
            payload=result.data,
            prompt_hash=result.meta.prompt_hash,
            model_used=result.meta.model_name,
        )
        return {"extractionPlan": result.data, "meta": result.meta.to_dict()}

    def _generate_report(self, batch_id: str, run_id: str) -> dict[str, Any]:
        metal_estimate = self.repo.get_metal_estimate(batch_id)
        price_snapshot = self.repo.get_price_snapshot(batch_id)
        extraction_plan = self.repo.get_extraction_plan(batch_id)
        if metal_estimate is None or price_snapshot is None or extraction_plan is None:
            raise PreconditionError(
                "Missing required pipeline outputs for report generation"
            )

        run = self.repo.get_pipeline_run(run_id)
        if run is None:
            raise NotFoundError(f"Pipeline run not found: {run_id}")

        image_assets = self.repo.list_image_assets(batch_id)
        report = build_investor_report(
            inventory=self.repo.list_inventory_items(batch_id),
            image_assets=image_assets,
            metal_estimate=metal_estimate,
            price_snapshot=price_snapshot,
            extraction_plan=extraction_plan,
            detector_version=_report_detector_version(image_assets, run),
            llm_models={
                "ESTIMATING_METALS": metal_estimate.model_used,
                "PRICING_METALS": price_snapshot.model_used,
                "PLANNING_EXTRACTION": extraction_plan.model_used,
            },
            prompt_hashes={
                "ESTIMATING_METALS": metal_estimate.prompt_hash,
                "PRICING_METALS": price_snapshot.prompt_hash,
                "PLANNING_EXTRACTION": extraction_plan.prompt_hash,
            },
        )
        self.repo.upsert_investor_report(
            batch_id=batch_id,
            report=report,
            verdict=report["executiveSummary"]["verdict"],
        )
        return {"report": report}


def build_pipeline_status(run: PipelineRunRecord) -> PipelineStatus:
    failed_step: str | None = None
    error: str | None = None
    if run.status == "failed":
        failed_step = run.current_step
        result = run.step_results.get(run.current_step)
        error = result.error if result is not None else None

    return PipelineStatus(
        batch_id=run.batch_id,
        run_id=run.run_id,
        current_step=run.current_step,
        status=run.status,
        step_results={
            step: result.to_dict() for step, result in run.step_results.items()
        },
        progress=step_progress(run.current_step),
        error=error,
        failed_step=failed_step,
    )


def step_progress(current_step: str) -> float:
    if current_step not in PIPELINE_STEPS:
        return 0.0
    return (PIPELINE_STEPS.index(current_step) + 1) / len(PIPELINE_STEPS) * 100


def _completed_step_output(run: PipelineRunRecord, step: StepName) -> dict[str, Any]:
    result = run.step_results.get(step)
    if result is None or result.status != "completed":
        raise PreconditionError(f"{step} must complete before NORMALIZING_INVENTORY")
    if not isinstance(result.output, dict):
        return {}
    return result.output


def _detector_version(detector: Detector) -> str:
    version = getattr(detector, "model_version", None)
    if isinstance(version, str) and version:
        return version
    return detector.__class__.__name__


def _report_detector_version(
    image_assets: list[ImageAssetRecord], run: PipelineRunRecord
) -> str:
    versions = sorted(
        {asset.detection.model_version for asset in image_assets if asset.detection}
    )
    if versions:
        return ", ".join(versions)
    return str(run.model_versions.get("detector", "unknown"))


def _elapsed_ms(started_at: float) -> float:
    return (time.perf_counter() - started_at) * 1000
