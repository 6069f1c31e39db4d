from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

from ewaste.storage.db import connection, init_db
from ewaste.storage.models import (
    BatchBundle,
    BatchRecord,
    DetectionResultRecord,
    ExtractionPlanRecord,
    ImageAssetRecord,
    InventoryItemRecord,
    InvestorReportRecord,
    MetalEstimateRecord,
    NewInventoryItem,
    PipelineRunRecord,
    PriceSnapshotRecord,
    RunStatus,
    StepName,
    StepResult,
    TextInventoryEntryRecord,
    Verdict,
)
from ewaste.utils.error_taxonomy import NotFoundError

_IMAGE_ASSET_COLUMNS = """
    a.image_id,
    a.batch_id,
    a.filename,
    a.storage_key,
    a.mime_type,
    a.size_bytes,
    a.created_at,
    d.raw_boxes_json,
    d.summary_labels_json,
    d.model_version,
    d.created_at AS detection_created_at
"""

_RUN_COLUMNS = """
    run_id,
    batch_id,
    created_at,
    current_step,
    status,
    step_results_json,
    model_versions_json
"""


class StorageRepo:
    """Keyed record store for batches, their children and pipeline runs.

    Every public method opens its own connection and commits on success, so
    each call is atomic on its own. Writes that reference a missing batch,
    image or run raise ``NotFoundError``.
    """

    def __init__(self, db_path: Path | str) -> None:
        self.db_path = Path(db_path)
        init_db(self.db_path)

    # Batches

    def create_batch(
        self,
        *,
        location: str,
        metadata: dict[str, Any] | None = None,
        batch_id: str | None = None,
        created_at: str | None = None,
    ) -> BatchRecord:
        batch_identifier = batch_id or str(uuid4())
        created_timestamp = created_at or _utc_now()

        with connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO batches (batch_id, location, metadata_json, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (
                    batch_identifier,
                    location,
                    _to_json_text(metadata or {}),
                    created_timestamp,
                ),
            )

        batch = self.get_batch(batch_identifier)
        if batch is None:
            raise RuntimeError("Failed to create batch")
        return batch

    def get_batch(self, batch_id: str) -> BatchRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT batch_id, location, metadata_json, created_at
                FROM batches
                WHERE batch_id = ?
                """,
                (batch_id,),
            ).fetchone()

        if row is None:
            return None

        return BatchRecord(
            batch_id=str(row["batch_id"]),
            location=str(row["location"]),
            metadata=_from_json_object(row["metadata_json"]),
            created_at=str(row["created_at"]),
        )

    def get_batch_bundle(self, batch_id: str) -> BatchBundle | None:
        batch = self.get_batch(batch_id)
        if batch is None:
            return None

        return BatchBundle(
            batch=batch,
            image_assets=self.list_image_assets(batch_id),
            text_entries=self.list_text_inventory_entries(batch_id),
            inventory_items=self.list_inventory_items(batch_id),
            metal_estimate=self.get_metal_estimate(batch_id),
            price_snapshot=self.get_price_snapshot(batch_id),
            extraction_plan=self.get_extraction_plan(batch_id),
            investor_report=self.get_investor_report(batch_id),
            runs=self.list_pipeline_runs(batch_id),
        )

    # Images and detections

    def add_image_asset(
        self,
        *,
        batch_id: str,
        filename: str,
        storage_key: str,
        mime_type: str,
        size_bytes: int,
        image_id: str | None = None,
    ) -> ImageAssetRecord:
        image_identifier = image_id or str(uuid4())

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO image_assets (
                    image_id,
                    batch_id,
                    filename,
                    storage_key,
                    mime_type,
                    size_bytes,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    image_identifier,
                    batch_id,
                    filename,
                    storage_key,
                    mime_type,
                    int(size_bytes),
                    _utc_now(),
                ),
            )

        image = self.get_image_asset(image_identifier)
        if image is None:
            raise RuntimeError("Failed to create image asset")
        return image

    def get_image_asset(self, image_id: str) -> ImageAssetRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                f"""
                SELECT {_IMAGE_ASSET_COLUMNS}
                FROM image_assets a
                LEFT JOIN detection_results d ON d.image_id = a.image_id
                WHERE a.image_id = ?
                """,
                (image_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_image_asset(row)

    def list_image_assets(self, batch_id: str) -> list[ImageAssetRecord]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_IMAGE_ASSET_COLUMNS}
                FROM image_assets a
                LEFT JOIN detection_results d ON d.image_id = a.image_id
                WHERE a.batch_id = ?
                ORDER BY a.seq ASC
                """,
                (batch_id,),
            ).fetchall()

        return [_row_to_image_asset(row) for row in rows]

    def upsert_detection_result(
        self,
        *,
        image_id: str,
        raw_boxes: list[dict[str, Any]],
        summary_labels: list[dict[str, Any]],
        model_version: str,
    ) -> DetectionResultRecord:
        created_at = _utc_now()

        with connection(self.db_path) as conn:
            exists = conn.execute(
                "SELECT 1 FROM image_assets WHERE image_id = ?",
                (image_id,),
            ).fetchone()
            if exists is None:
                raise NotFoundError(f"Image asset not found: {image_id}")

            conn.execute(
                """
                INSERT INTO detection_results (
                    image_id,
                    raw_boxes_json,
                    summary_labels_json,
                    model_version,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(image_id) DO UPDATE SET
                    raw_boxes_json = excluded.raw_boxes_json,
                    summary_labels_json = excluded.summary_labels_json,
                    model_version = excluded.model_version,
                    created_at = excluded.created_at
                """,
                (
                    image_id,
                    _to_json_text(raw_boxes),
                    _to_json_text(summary_labels),
                    model_version,
                    created_at,
                ),
            )

        return DetectionResultRecord(
            image_id=image_id,
            raw_boxes=list(raw_boxes),
            summary_labels=list(summary_labels),
            model_version=model_version,
            created_at=created_at,
        )

    # Text inventory

    def add_text_inventory_entry(
        self,
        *,
        batch_id: str,
        raw_text: str,
        entry_id: str | None = None,
    ) -> TextInventoryEntryRecord:
        entry = TextInventoryEntryRecord(
            entry_id=entry_id or str(uuid4()),
            batch_id=batch_id,
            raw_text=raw_text,
            submitted_at=_utc_now(),
        )

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO text_inventory_entries (
                    entry_id,
                    batch_id,
                    raw_text,
                    submitted_at
                )
                VALUES (?, ?, ?, ?)
                """,
                (entry.entry_id, entry.batch_id, entry.raw_text, entry.submitted_at),
            )

        return entry

    def list_text_inventory_entries(
        self, batch_id: str
    ) -> list[TextInventoryEntryRecord]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT entry_id, batch_id, raw_text, submitted_at
                FROM text_inventory_entries
                WHERE batch_id = ?
                ORDER BY seq ASC
                """,
                (batch_id,),
            ).fetchall()

        return [
            TextInventoryEntryRecord(
                entry_id=str(row["entry_id"]),
                batch_id=str(row["batch_id"]),
                raw_text=str(row["raw_text"]),
                submitted_at=str(row["submitted_at"]),
            )
            for row in rows
        ]

    # Normalized inventory

    def replace_inventory_items(
        self,
        *,
        batch_id: str,
        items: list[NewInventoryItem],
    ) -> list[InventoryItemRecord]:
        """Delete the batch's inventory and insert ``items`` in one transaction."""
        records = [
            InventoryItemRecord(
                item_id=str(uuid4()),
                batch_id=batch_id,
                raw_label=item.raw_label,
                normalized_type=item.normalized_type,
                quantity=item.quantity,
                unit=item.unit,
                confidence=item.confidence,
                manufacturer=item.manufacturer,
                model=item.model,
            )
            for item in items
        ]

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute("DELETE FROM inventory_items WHERE batch_id = ?", (batch_id,))
            conn.executemany(
                """
                INSERT INTO inventory_items (
                    item_id,
                    batch_id,
                    raw_label,
                    normalized_type,
                    manufacturer,
                    model,
                    quantity,
                    unit,
                    confidence
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    (
                        record.item_id,
                        record.batch_id,
                        record.raw_label,
                        record.normalized_type,
                        record.manufacturer,
                        record.model,
                        float(record.quantity),
                        record.unit,
                        record.confidence,
                    )
                    for record in records
                ],
            )

        return records

    def list_inventory_items(self, batch_id: str) -> list[InventoryItemRecord]:
        with connection(self.db_path) as conn:
            rows = conn.execute(
                """
                SELECT
                    item_id,
                    batch_id,
                    raw_label,
                    normalized_type,
                    manufacturer,
                    model,
                    quantity,
                    unit,
                    confidence
                FROM inventory_items
                WHERE batch_id = ?
                ORDER BY seq ASC
                """,
                (batch_id,),
            ).fetchall()

        return [
            InventoryItemRecord(
                item_id=str(row["item_id"]),
                batch_id=str(row["batch_id"]),
                raw_label=str(row["raw_label"]),
                normalized_type=str(row["normalized_type"]),
                manufacturer=_to_optional_str(row["manufacturer"]),
                model=_to_optional_str(row["model"]),
                quantity=_to_number(row["quantity"]),
                unit=str(row["unit"]),
                confidence=str(row["confidence"]),
            )
            for row in rows
        ]

    # Pipeline runs

    def create_pipeline_run(
        self,
        *,
        batch_id: str,
        model_versions: dict[str, Any] | None = None,
        run_id: str | None = None,
    ) -> PipelineRunRecord:
        run_identifier = run_id or str(uuid4())

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO pipeline_runs (
                    run_id,
                    batch_id,
                    created_at,
                    current_step,
                    status,
                    step_results_json,
                    model_versions_json
                )
                VALUES (?, ?, ?, 'DETECTING', 'pending', '{}', ?)
                """,
                (
                    run_identifier,
                    batch_id,
                    _utc_now(),
                    _to_json_text(model_versions or {}),
                ),
            )

        run = self.get_pipeline_run(run_identifier)
        if run is None:
            raise RuntimeError("Failed to create pipeline run")
        return run

    def get_pipeline_run(self, run_id: str) -> PipelineRunRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                f"SELECT {_RUN_COLUMNS} FROM pipeline_runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()

        if row is None:
            return None
        return _row_to_run_record(row)

    def list_pipeline_runs(
        self, batch_id: str, *, limit: int = 50
    ) -> list[PipelineRunRecord]:
        """Runs for ``batch_id``, newest first."""
        with connection(self.db_path) as conn:
            rows = conn.execute(
                f"""
                SELECT {_RUN_COLUMNS}
                FROM pipeline_runs
                WHERE batch_id = ?
                ORDER BY seq DESC
                LIMIT ?
                """,
                (batch_id, max(limit, 1)),
            ).fetchall()

        return [_row_to_run_record(row) for row in rows]

    def get_latest_pipeline_run(self, batch_id: str) -> PipelineRunRecord | None:
        runs = self.list_pipeline_runs(batch_id, limit=1)
        return runs[0] if runs else None

    def update_pipeline_step(
        self,
        *,
        run_id: str,
        step: StepName,
        status: RunStatus,
        output: Any = None,
        error: str | None = None,
        duration_ms: float | None = None,
    ) -> PipelineRunRecord:
        """Move the run to ``step``/``status`` and record the step's result.

        The run-level status mirrors the status of the step being recorded.
        Results of other steps are left untouched.
        """
        with connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT step_results_json FROM pipeline_runs WHERE run_id = ?",
                (run_id,),
            ).fetchone()
            if row is None:
                raise NotFoundError(f"Pipeline run not found: {run_id}")

            step_results = _from_json_object(row["step_results_json"])
            step_results[step] = StepResult(
                status=status,
                output=output,
                error=error,
                duration_ms=duration_ms,
                timestamp=_utc_now(),
            ).to_dict()

            conn.execute(
                """
                UPDATE pipeline_runs
                SET current_step = ?, status = ?, step_results_json = ?
                WHERE run_id = ?
                """,
                (step, status, _to_json_text(step_results), run_id),
            )

        run = self.get_pipeline_run(run_id)
        if run is None:
            raise NotFoundError(f"Pipeline run not found: {run_id}")
        return run

    # Per-batch singletons

    def upsert_metal_estimate(
        self,
        *,
        batch_id: str,
        payload: dict[str, Any],
        prompt_hash: str,
        model_used: str,
    ) -> MetalEstimateRecord:
        record = MetalEstimateRecord(
            batch_id=batch_id,
            composition=dict(payload["composition"]),
            aggregate_totals_kg=dict(payload["aggregateTotalsKg"]),
            uncertainty=dict(payload.get("uncertainty") or {}),
            citations=list(payload.get("citations") or []),
            prompt_hash=prompt_hash,
            model_used=model_used,
            updated_at=_utc_now(),
        )

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO metal_estimates (
                    batch_id,
                    composition_json,
                    aggregate_totals_kg_json,
                    uncertainty_json,
                    citations_json,
                    prompt_hash,
                    model_used,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    composition_json = excluded.composition_json,
                    aggregate_totals_kg_json = excluded.aggregate_totals_kg_json,
                    uncertainty_json = excluded.uncertainty_json,
                    citations_json = excluded.citations_json,
                    prompt_hash = excluded.prompt_hash,
                    model_used = excluded.model_used,
                    updated_at = excluded.updated_at
                """,
                (
                    record.batch_id,
                    _to_json_text(record.composition),
                    _to_json_text(record.aggregate_totals_kg),
                    _to_json_text(record.uncertainty),
                    _to_json_text(record.citations),
                    record.prompt_hash,
                    record.model_used,
                    record.updated_at,
                ),
            )

        return record

    def get_metal_estimate(self, batch_id: str) -> MetalEstimateRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    batch_id,
                    composition_json,
                    aggregate_totals_kg_json,
                    uncertainty_json,
                    citations_json,
                    prompt_hash,
                    model_used,
                    updated_at
                FROM metal_estimates
                WHERE batch_id = ?
                """,
                (batch_id,),
            ).fetchone()

        if row is None:
            return None

        return MetalEstimateRecord(
            batch_id=str(row["batch_id"]),
            composition=_from_json_object(row["composition_json"]),
            aggregate_totals_kg=_from_json_object(row["aggregate_totals_kg_json"]),
            uncertainty=_from_json_object(row["uncertainty_json"]),
            citations=_from_json_list(row["citations_json"]),
            prompt_hash=str(row["prompt_hash"]),
            model_used=str(row["model_used"]),
            updated_at=str(row["updated_at"]),
        )

    def upsert_price_snapshot(
        self,
        *,
        batch_id: str,
        payload: dict[str, Any],
        prompt_hash: str,
        model_used: str,
    ) -> PriceSnapshotRecord:
        record = PriceSnapshotRecord(
            batch_id=batch_id,
            timestamp_utc=str(payload["timestampUtc"]),
            currency=str(payload["currency"]),
            prices_per_kg=dict(payload["pricesPerKg"]),
            sources=list(payload.get("sources") or []),
            total_gross_value_usd=float(payload["totalGrossValueUsd"]),
            prompt_hash=prompt_hash,
            model_used=model_used,
            updated_at=_utc_now(),
        )

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO price_snapshots (
                    batch_id,
                    timestamp_utc,
                    currency,
                    prices_per_kg_json,
                    sources_json,
                    total_gross_value_usd,
                    prompt_hash,
                    model_used,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    timestamp_utc = excluded.timestamp_utc,
                    currency = excluded.currency,
                    prices_per_kg_json = excluded.prices_per_kg_json,
                    sources_json = excluded.sources_json,
                    total_gross_value_usd = excluded.total_gross_value_usd,
                    prompt_hash = excluded.prompt_hash,
                    model_used = excluded.model_used,
                    updated_at = excluded.updated_at
                """,
                (
                    record.batch_id,
                    record.timestamp_utc,
                    record.currency,
                    _to_json_text(record.prices_per_kg),
                    _to_json_text(record.sources),
                    record.total_gross_value_usd,
                    record.prompt_hash,
                    record.model_used,
                    record.updated_at,
                ),
            )

        return record

    def get_price_snapshot(self, batch_id: str) -> PriceSnapshotRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    batch_id,
                    timestamp_utc,
                    currency,
                    prices_per_kg_json,
                    sources_json,
                    total_gross_value_usd,
                    prompt_hash,
                    model_used,
                    updated_at
                FROM price_snapshots
                WHERE batch_id = ?
                """,
                (batch_id,),
            ).fetchone()

        if row is None:
            return None

        return PriceSnapshotRecord(
            batch_id=str(row["batch_id"]),
            timestamp_utc=str(row["timestamp_utc"]),
            currency=str(row["currency"]),
            prices_per_kg=_from_json_object(row["prices_per_kg_json"]),
            sources=_from_json_list(row["sources_json"]),
            total_gross_value_usd=float(row["total_gross_value_usd"]),
            prompt_hash=str(row["prompt_hash"]),
            model_used=str(row["model_used"]),
            updated_at=str(row["updated_at"]),
        )

    def upsert_extraction_plan(
        self,
        *,
        batch_id: str,
        payload: dict[str, Any],
        prompt_hash: str,
        model_used: str,
    ) -> ExtractionPlanRecord:
        record = ExtractionPlanRecord(
            batch_id=batch_id,
            plan=dict(payload),
            total_cost_usd=float(payload["totalCostUsd"]),
            net_profit_usd=float(payload["netProfitUsd"]),
            prompt_hash=prompt_hash,
            model_used=model_used,
            updated_at=_utc_now(),
        )

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO extraction_plans (
                    batch_id,
                    plan_json,
                    total_cost_usd,
                    net_profit_usd,
                    prompt_hash,
                    model_used,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    plan_json = excluded.plan_json,
                    total_cost_usd = excluded.total_cost_usd,
                    net_profit_usd = excluded.net_profit_usd,
                    prompt_hash = excluded.prompt_hash,
                    model_used = excluded.model_used,
                    updated_at = excluded.updated_at
                """,
                (
                    record.batch_id,
                    _to_json_text(record.plan),
                    record.total_cost_usd,
                    record.net_profit_usd,
                    record.prompt_hash,
                    record.model_used,
                    record.updated_at,
                ),
            )

        return record

    def get_extraction_plan(self, batch_id: str) -> ExtractionPlanRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT
                    batch_id,
                    plan_json,
                    total_cost_usd,
                    net_profit_usd,
                    prompt_hash,
                    model_used,
                    updated_at
                FROM extraction_plans
                WHERE batch_id = ?
                """,
                (batch_id,),
            ).fetchone()

        if row is None:
            return None

        return ExtractionPlanRecord(
            batch_id=str(row["batch_id"]),
            plan=_from_json_object(row["plan_json"]),
            total_cost_usd=float(row["total_cost_usd"]),
            net_profit_usd=float(row["net_profit_usd"]),
            prompt_hash=str(row["prompt_hash"]),
            model_used=str(row["model_used"]),
            updated_at=str(row["updated_at"]),
        )

    def upsert_investor_report(
        self,
        *,
        batch_id: str,
        report: dict[str, Any],
        verdict: Verdict,
    ) -> InvestorReportRecord:
        record = InvestorReportRecord(
            batch_id=batch_id,
            report=dict(report),
            verdict=verdict,
            updated_at=_utc_now(),
        )

        with connection(self.db_path) as conn:
            _require_batch(conn, batch_id)
            conn.execute(
                """
                INSERT INTO investor_reports (batch_id, report_json, verdict, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(batch_id) DO UPDATE SET
                    report_json = excluded.report_json,
                    verdict = excluded.verdict,
                    updated_at = excluded.updated_at
                """,
                (
                    record.batch_id,
                    _to_json_text(record.report),
                    record.verdict,
                    record.updated_at,
                ),
            )

        return record

    def get_investor_report(self, batch_id: str) -> InvestorReportRecord | None:
        with connection(self.db_path) as conn:
            row = conn.execute(
                """
                SELECT batch_id, report_json, verdict, updated_at
                FROM investor_reports
                WHERE batch_id = ?
                """,
                (batch_id,),
            ).fetchone()

        if row is None:
            return None

        return InvestorReportRecord(
            batch_id=str(row["batch_id"]),
            report=_from_json_object(row["report_json"]),
            verdict=str(row["verdict"]),
            updated_at=str(row["updated_at"]),
        )


def _require_batch(conn: sqlite3.Connection, batch_id: str) -> None:
    row = conn.execute(
        "SELECT 1 FROM batches WHERE batch_id = ?",
        (batch_id,),
    ).fetchone()
    if row is None:
        raise NotFoundError(f"Batch not found: {batch_id}")


def _utc_now() -> str:
    return datetime.now(tz=timezone.utc).isoformat()


def _to_optional_str(value: object) -> str | None:
    if value is None:
        return None
    return str(value)


def _to_number(value: object) -> int | float:
    number = float(value)
    if number.is_integer() and abs(number) <= 2**63 - 1:
        return int(number)
    return number


def _row_to_image_asset(row: sqlite3.Row) -> ImageAssetRecord:
    detection: DetectionResultRecord | None = None
    if row["model_version"] is not None:
        detection = DetectionResultRecord(
            image_id=str(row["image_id"]),
            raw_boxes=_from_json_list(row["raw_boxes_json"]),
            summary_labels=_from_json_list(row["summary_labels_json"]),
            model_version=str(row["model_version"]),
            created_at=str(row["detection_created_at"]),
        )

    return ImageAssetRecord(
        image_id=str(row["image_id"]),
        batch_id=str(row["batch_id"]),
        filename=str(row["filename"]),
        storage_key=str(row["storage_key"]),
        mime_type=str(row["mime_type"]),
        size_bytes=int(row["size_bytes"]),
        created_at=str(row["created_at"]),
        detection=detection,
    )


def _row_to_run_record(row: sqlite3.Row) -> PipelineRunRecord:
    step_results = {
        step: StepResult.from_dict(result)
        for step, result in _from_json_object(row["step_results_json"]).items()
        if isinstance(result, dict)
    }
    return PipelineRunRecord(
        run_id=str(row["run_id"]),
        batch_id=str(row["batch_id"]),
        created_at=str(row["created_at"]),
        current_step=str(row["current_step"]),
        status=str(row["status"]),
        step_results=step_results,
        model_versions=_from_json_object(row["model_versions_json"]),
    )


def _to_json_text(payload: Any) -> str:
    return json.dumps(payload, ensure_ascii=False)


def _from_json_object(value: object) -> dict[str, Any]:
    text = _to_optional_str(value)
    if text is None:
        return {}

    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        return {"_value": parsed}
    return parsed


def _from_json_list(value: object) -> list[Any]:
    text = _to_optional_str(value)
    if text is None:
        return []

    parsed = json.loads(text)
    if not isinstance(parsed, list):
        return [parsed]
    return parsed
