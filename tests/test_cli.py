from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from ewaste import cli
from ewaste.config.settings import get_settings
from ewaste.utils.logging import LOGGER_NAME


@pytest.fixture(autouse=True)
def _isolated_cli(monkeypatch, tmp_path: Path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("EWASTE_LOG_FILE", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    logger = logging.getLogger(LOGGER_NAME)
    logger.handlers.clear()
    logger.propagate = True


@pytest.fixture
def run_cli(make_service, capsys):
    service = make_service()

    def _run(*argv: str) -> tuple[int, str, str]:
        code = cli.main(
            ["--env-file", "missing.env", *argv],
            service_factory=lambda: service,
        )
        captured = capsys.readouterr()
        return code, captured.out, captured.err

    return _run


def test_full_cli_flow_produces_report(run_cli, tmp_path: Path) -> None:
    code, out, _ = run_cli("create-batch", "--location", "Poland", "--metadata", '{"lot": 7}')
    assert code == 0
    batch = json.loads(out)
    assert batch["location"] == "Poland"

    image = tmp_path / "pile.jpg"
    image.write_bytes(b"jpeg")
    code, out, _ = run_cli("add-image", batch["id"], str(image))
    assert code == 0
    assert json.loads(out)["uploaded"] == 1

    inventory_file = tmp_path / "inventory.txt"
    inventory_file.write_text("laptops - 4\n2 kg copper cable", encoding="utf-8")
    code, _, _ = run_cli("add-text", batch["id"], "--file", str(inventory_file))
    assert code == 0

    code, out, _ = run_cli("run", batch["id"])
    assert code == 0
    assert json.loads(out)["status"] == "completed"

    code, out, _ = run_cli("status", batch["id"])
    status = json.loads(out)
    assert status["currentStep"] == "DONE"
    assert status["progress"] == 100.0

    code, out, _ = run_cli("inventory", batch["id"])
    inventory = json.loads(out)
    assert inventory["totalItems"] == 4
    assert [item["normalizedType"] for item in inventory["inventory"]] == [
        "pcb",
        "battery",
        "laptop",
        "cable",
    ]

    code, out, _ = run_cli("report", batch["id"])
    assert code == 0
    assert json.loads(out)["executiveSummary"]["verdict"] == "Viable"


def test_report_before_run_exits_not_ready(run_cli) -> None:
    _, out, _ = run_cli("create-batch")
    batch_id = json.loads(out)["id"]

    code, out, _ = run_cli("report", batch_id)

    assert code == 2
    assert json.loads(out) == {
        "error": {"code": "REPORT_NOT_READY", "message": "Report not yet generated"}
    }


def test_unknown_batch_reports_structured_error(run_cli) -> None:
    code, out, err = run_cli("status", "missing-batch")

    assert code == 1
    assert out == ""
    assert '"code": "NOT_FOUND"' in err
    assert "Batch not found: missing-batch" in err


def test_empty_text_is_a_validation_error(run_cli) -> None:
    _, out, _ = run_cli("create-batch")
    batch_id = json.loads(out)["id"]

    code, _, err = run_cli("add-text", batch_id, "--text", "   ")

    assert code == 1
    assert '"code": "VALIDATION_ERROR"' in err


def test_read_subcommands_expose_stage_outputs(run_cli, tmp_path: Path) -> None:
    _, out, _ = run_cli("create-batch")
    batch_id = json.loads(out)["id"]

    code, out, _ = run_cli("metals", batch_id)
    assert code == 2
    assert json.loads(out)["error"]["code"] == "METALS_NOT_READY"

    image = tmp_path / "board.png"
    image.write_bytes(b"png")
    run_cli("add-image", batch_id, str(image))
    run_cli("add-text", batch_id, "--text", "5 laptops")
    run_cli("run", batch_id)

    code, out, _ = run_cli("detections", batch_id)
    assert code == 0
    (entry,) = json.loads(out)["images"]
    assert entry["filename"] == "board.png"
    assert entry["detection"]["summaryLabels"]

    _, out, _ = run_cli("metals", batch_id)
    assert json.loads(out)["aggregateTotalsKg"]["gold"] == 0.025
    _, out, _ = run_cli("valuation", batch_id)
    assert json.loads(out)["totalGrossValueUsd"] == 1000.0
    _, out, _ = run_cli("extraction", batch_id)
    assert json.loads(out)["totalCostUsd"] == 200.0

    code, out, _ = run_cli("runs", batch_id, "--limit", "5")
    assert code == 0
    (run,) = json.loads(out)["runs"]
    assert run["status"] == "completed"
    assert run["currentStep"] == "DONE"
    assert run["stepResults"]["PRICING_METALS"]["status"] == "completed"
