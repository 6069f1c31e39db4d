from __future__ import annotations

from typing import Any

import pytest

from ewaste.llm_client.base import GeneratedText
from ewaste.storage.models import PIPELINE_STEPS
from ewaste.utils.error_taxonomy import (
    GenerationFailure,
    NotFoundError,
    PreconditionError,
    RunInProgressError,
)


def _inventory_content(service: Any, batch_id: str) -> list[tuple[Any, ...]]:
    return [
        (item.raw_label, item.normalized_type, item.quantity, item.unit, item.confidence)
        for item in service.get_inventory(batch_id)
    ]


def test_full_pipeline_completes_with_report_and_done_sentinel(
    make_service, make_detector
) -> None:
    detector = make_detector()
    service = make_service(detector=detector)
    batch = service.create_batch(location="Poland")
    service.attach_image(batch.batch_id, "pile.jpg", b"jpeg-bytes", "image/jpeg")
    service.submit_inventory_text(
        batch.batch_id, "Intel Core i7 laptops - 10\n5 iPhones"
    )

    response = service.run_pipeline(batch.batch_id)

    assert response.status == "completed"
    assert detector.calls == [b"jpeg-bytes"]

    status = service.get_status(batch.batch_id)
    assert status.run_id == response.run_id
    assert status.current_step == "DONE"
    assert status.status == "completed"
    assert status.progress == 100.0
    assert status.error is None
    assert set(status.step_results) == set(PIPELINE_STEPS)
    assert status.step_results["DONE"]["output"] == {"status": "success"}
    for step in PIPELINE_STEPS[:-1]:
        assert status.step_results[step]["status"] == "completed"
        assert status.step_results[step]["durationMs"] is not None

    assert _inventory_content(service, batch.batch_id) == [
        ("pcb", "pcb", 3, "count", "high"),
        ("battery", "battery", 2, "count", "medium"),
        ("Intel Core i7 laptops", "laptop", 10, "count", "high"),
        ("iPhones", "smartphone", 5, "count", "high"),
    ]

    report = service.get_report(batch.batch_id).report
    summary = report["executiveSummary"]
    assert summary["grossValueUsd"] == 1000.0
    assert summary["totalCostUsd"] == 200.0
    assert summary["netProfitUsd"] == 800.0
    assert summary["verdict"] == "Viable"
    assert summary["confidence"] == "low"
    assert report["detections"]["labels"][0] == {
        "label": "pcb",
        "count": 3,
        "confidenceMean": 0.9,
    }
    assert report["auditTrail"]["detectorVersion"] == "fixed-v1"
    assert report["auditTrail"]["llmModels"] == {
        "ESTIMATING_METALS": "test-model",
        "PRICING_METALS": "test-model",
        "PLANNING_EXTRACTION": "test-model",
    }
    assert set(report["auditTrail"]["promptHashes"]) == {
        "ESTIMATING_METALS",
        "PRICING_METALS",
        "PLANNING_EXTRACTION",
    }


def test_generation_steps_use_grounding_only_for_pricing_and_extraction(
    make_service, make_generator
) -> None:
    generator = make_generator()
    service = make_service(generator=generator)
    batch = service.create_batch(location="Kenya")
    service.submit_inventory_text(batch.batch_id, "laptops - 4")

    service.run_pipeline(batch.batch_id)

    assert generator.titles_called() == ["MetalEstimate", "PriceSnapshot", "ExtractionPlan"]
    metals_prompt, pricing_prompt, extraction_prompt = (
        call["prompt"] for call in generator.calls
    )
    grounded_line = "Include citations and sources for factual claims"
    assert grounded_line not in metals_prompt
    assert grounded_line in pricing_prompt
    assert grounded_line in extraction_prompt
    assert "laptop - Quantity: 4 count" in metals_prompt
    assert "gold: 0.025 kg" in pricing_prompt
    assert "Location: Kenya" in extraction_prompt
    assert "Gross Value: $1000.0" in extraction_prompt


def test_failure_at_estimating_metals_keeps_completed_steps(
    make_service, make_generator
) -> None:
    generator = make_generator()
    service = make_service(generator=generator)
    batch = service.create_batch()

    with pytest.raises(PreconditionError, match="No normalized inventory"):
        service.run_pipeline(batch.batch_id)

    status = service.get_status(batch.batch_id)
    assert status.status == "failed"
    assert status.current_step == "ESTIMATING_METALS"
    assert status.failed_step == "ESTIMATING_METALS"
    assert status.error == "No normalized inventory for metal estimation"
    assert status.step_results["DETECTING"]["status"] == "completed"
    assert status.step_results["PARSING_TEXT_INVENTORY"]["status"] == "completed"
    assert status.step_results["NORMALIZING_INVENTORY"]["status"] == "completed"
    failed = status.step_results["ESTIMATING_METALS"]
    assert failed["status"] == "failed"
    assert failed["output"] is None
    assert failed["durationMs"] is not None
    assert "PRICING_METALS" not in status.step_results

    assert service.repo.get_metal_estimate(batch.batch_id) is None
    assert generator.calls == []


def test_zero_images_with_text_entry_reaches_report(make_service) -> None:
    service = make_service()
    batch = service.create_batch()
    service.submit_inventory_text(batch.batch_id, "10 monitors")

    service.run_pipeline(batch.batch_id)

    status = service.get_status(batch.batch_id)
    assert status.step_results["DETECTING"]["output"] == {
        "imagesProcessed": 0,
        "detections": [],
    }
    assert status.step_results["GENERATING_REPORT"]["status"] == "completed"
    assert _inventory_content(service, batch.batch_id) == [
        ("monitors", "other", 10, "count", "high")
    ]
    report = service.get_report(batch.batch_id).report
    assert "detections" not in report
    assert report["auditTrail"]["detectorVersion"] == "fixed-v1"


def test_existing_detections_are_reused_unless_forced(
    make_service, make_detector
) -> None:
    detector = make_detector()
    service = make_service(detector=detector)
    batch = service.create_batch()
    service.attach_image(batch.batch_id, "a.png", b"png", "image/png")

    service.run_pipeline(batch.batch_id)
    service.run_pipeline(batch.batch_id)

    assert len(detector.calls) == 1
    detections = service.get_status(batch.batch_id).step_results["DETECTING"]["output"]
    assert detections["imagesProcessed"] == 1
    assert detections["detections"][0]["reused"] is True

    service.run_pipeline(batch.batch_id, force=True)

    assert len(detector.calls) == 2
    detections = service.get_status(batch.batch_id).step_results["DETECTING"]["output"]
    assert detections["detections"][0]["reused"] is False
    assert len(service.list_runs(batch.batch_id)) == 3


def test_rerunning_normalization_replaces_inventory_with_equal_content(
    make_service,
) -> None:
    service = make_service()
    batch = service.create_batch()
    service.attach_image(batch.batch_id, "a.png", b"png", "image/png")
    service.submit_inventory_text(batch.batch_id, "old batteries - 3, 2 kg cables")

    service.run_pipeline(batch.batch_id)
    first_ids = [item.item_id for item in service.get_inventory(batch.batch_id)]
    first_content = _inventory_content(service, batch.batch_id)

    service.run_pipeline(batch.batch_id)
    second_ids = [item.item_id for item in service.get_inventory(batch.batch_id)]

    assert _inventory_content(service, batch.batch_id) == first_content
    assert set(first_ids).isdisjoint(second_ids)


def test_generation_failure_stops_run_at_pricing(
    make_service, make_generator, payloads
) -> None:
    payloads["PriceSnapshot"]["currency"] = "EUR"
    generator = make_generator(payloads)
    service = make_service(generator=generator)
    batch = service.create_batch()
    service.submit_inventory_text(batch.batch_id, "laptops - 2")

    with pytest.raises(GenerationFailure) as error_info:
        service.run_pipeline(batch.batch_id)

    assert error_info.value.attempts == 3
    status = service.get_status(batch.batch_id)
    assert status.failed_step == "PRICING_METALS"
    assert "after 3 attempts" in (status.error or "")
    assert status.step_results["ESTIMATING_METALS"]["status"] == "completed"
    assert generator.titles_called() == ["MetalEstimate"] + ["PriceSnapshot"] * 3
    assert service.repo.get_metal_estimate(batch.batch_id) is not None
    assert service.repo.get_price_snapshot(batch.batch_id) is None
    assert service.repo.get_investor_report(batch.batch_id) is None


def test_second_run_on_same_batch_is_rejected_while_first_executes(
    make_service, make_generator
) -> None:
    inner = make_generator()
    captured: list[Exception] = []

    class ReentrantGenerator:
        service: Any = None
        batch_id: str = ""

        def generate_text(self, **kwargs: Any) -> GeneratedText:
            if not captured:
                try:
                    self.service.run_pipeline(self.batch_id)
                except Exception as error:  # noqa: BLE001
                    captured.append(error)
            return inner.generate_text(**kwargs)

    generator = ReentrantGenerator()
    service = make_service(generator=generator)
    batch = service.create_batch()
    service.submit_inventory_text(batch.batch_id, "laptops - 1")
    generator.service = service
    generator.batch_id = batch.batch_id

    service.run_pipeline(batch.batch_id)

    assert len(captured) == 1
    assert isinstance(captured[0], RunInProgressError)
    assert captured[0].code == "RUN_IN_PROGRESS"
    assert len(service.list_runs(batch.batch_id)) == 1
    assert service.orchestrator.is_running(batch.batch_id) is False

    service.run_pipeline(batch.batch_id)
    assert len(service.list_runs(batch.batch_id)) == 2


def test_status_for_batch_without_runs(make_service) -> None:
    service = make_service()
    batch = service.create_batch()

    status = service.get_status(batch.batch_id)

    assert status.run_id is None
    assert status.current_step == "NOT_STARTED"
    assert status.status == "pending"
    assert status.progress == 0.0
    assert status.step_results == {}


def test_unknown_batch_raises_not_found_without_creating_run(make_service) -> None:
    service = make_service()

    with pytest.raises(NotFoundError):
        service.run_pipeline("missing-batch")

    with pytest.raises(NotFoundError):
        service.get_status("missing-batch")


def test_normalization_requires_upstream_steps_on_the_same_run(make_service) -> None:
    service = make_service()
    batch = service.create_batch()
    run = service.repo.create_pipeline_run(batch_id=batch.batch_id)
    service.repo.update_pipeline_step(
        run_id=run.run_id,
        step="DETECTING",
        status="completed",
        output={"imagesProcessed": 0, "detections": []},
    )

    with pytest.raises(PreconditionError, match="PARSING_TEXT_INVENTORY"):
        service.orchestrator._normalize_inventory(batch.batch_id, run.run_id)
