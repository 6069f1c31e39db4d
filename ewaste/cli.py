from __future__ import annotations

import argparse
import json
import mimetypes
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Callable, Sequence

from dotenv import load_dotenv

from ewaste.bootstrap import build_service
from ewaste.config.settings import get_settings
from ewaste.service import EWasteService, NotReady
from ewaste.storage.models import PipelineRunRecord
from ewaste.utils.error_taxonomy import (
    ERROR_FRIENDLY_MESSAGES,
    build_error_details,
    classify_error,
)
from ewaste.utils.logging import setup_logging

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_NOT_READY = 2

_SINGLETON_READS = {
    "metals": "get_metals",
    "valuation": "get_valuation",
    "extraction": "get_extraction",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ewaste")
    parser.add_argument(
        "--env-file", type=str, default=".env", help="Path to .env file"
    )
    parser.add_argument("--log-level", type=str, default=None)
    subparsers = parser.add_subparsers(dest="command", required=True)

    p_create = subparsers.add_parser("create-batch")
    p_create.add_argument("--location", default=None)
    p_create.add_argument(
        "--metadata", default=None, help="JSON object stored with the batch"
    )

    p_image = subparsers.add_parser("add-image")
    p_image.add_argument("batch_id")
    p_image.add_argument("path")
    p_image.add_argument("--mime-type", default=None)

    p_text = subparsers.add_parser("add-text")
    p_text.add_argument("batch_id")
    source = p_text.add_mutually_exclusive_group(required=True)
    source.add_argument("--text")
    source.add_argument("--file")

    p_run = subparsers.add_parser("run")
    p_run.add_argument("batch_id")
    p_run.add_argument("--force", action="store_true")

    for name in (
        "status",
        "inventory",
        "detections",
        "metals",
        "valuation",
        "extraction",
        "report",
    ):
        p_read = subparsers.add_parser(name)
        p_read.add_argument("batch_id")

    p_runs = subparsers.add_parser("runs")
    p_runs.add_argument("batch_id")
    p_runs.add_argument("--limit", type=int, default=50)

    return parser


def main(
    argv: Sequence[str] | None = None,
    *,
    service_factory: Callable[[], EWasteService] = build_service,
) -> int:
    args = build_parser().parse_args(argv)

    if os.path.exists(args.env_file):
        load_dotenv(dotenv_path=args.env_file)

    settings = get_settings()
    setup_logging(
        level=args.log_level or settings.log_level,
        log_file=settings.log_file,
        stream=sys.stderr,
    )

    try:
        service = service_factory()
        result = _dispatch(service, args)
    except Exception as error:  # noqa: BLE001
        code = classify_error(error)
        _emit(
            {
                "error": {
                    "code": code,
                    "message": ERROR_FRIENDLY_MESSAGES[code],
                    "details": build_error_details(error),
                }
            },
            stream=sys.stderr,
        )
        return EXIT_ERROR

    if isinstance(result, NotReady):
        _emit(result.to_dict())
        return EXIT_NOT_READY

    _emit(result)
    return EXIT_OK


def _dispatch(service: EWasteService, args: argparse.Namespace) -> Any:
    if args.command == "create-batch":
        metadata = json.loads(args.metadata) if args.metadata else None
        batch = service.create_batch(location=args.location, metadata=metadata)
        return {
            "id": batch.batch_id,
            "location": batch.location,
            "createdAt": batch.created_at,
        }

    if args.command == "add-image":
        path = Path(args.path)
        mime_type = args.mime_type or mimetypes.guess_type(path.name)[0]
        image_id = service.attach_image(
            args.batch_id,
            path.name,
            path.read_bytes(),
            mime_type or "application/octet-stream",
        )
        return {"imageIds": [image_id], "uploaded": 1, "failed": 0}

    if args.command == "add-text":
        text = args.text
        if args.file:
            text = Path(args.file).read_text(encoding="utf-8")
        entry_id = service.submit_inventory_text(args.batch_id, text)
        return {"id": entry_id}

    if args.command == "run":
        return service.run_pipeline(args.batch_id, force=args.force).to_dict()

    if args.command == "status":
        return service.get_status(args.batch_id).to_dict()

    if args.command == "inventory":
        items = service.get_inventory(args.batch_id)
        return {
            "inventory": [item.to_dict() for item in items],
            "totalItems": len(items),
        }

    if args.command == "detections":
        return {"images": service.get_detections(args.batch_id)}

    if args.command in _SINGLETON_READS:
        record = getattr(service, _SINGLETON_READS[args.command])(args.batch_id)
        if isinstance(record, NotReady):
            return record
        return record.to_dict()

    if args.command == "runs":
        runs = service.list_runs(args.batch_id, limit=args.limit)
        return {"runs": [_run_to_dict(run) for run in runs]}

    if args.command == "report":
        report = service.get_report(args.batch_id)
        if isinstance(report, NotReady):
            return report
        return report.report

    raise ValueError(f"Unknown command: {args.command}")


def _run_to_dict(run: PipelineRunRecord) -> dict[str, Any]:
    return {
        "runId": run.run_id,
        "createdAt": run.created_at,
        "currentStep": run.current_step,
        "status": run.status,
        "stepResults": {
            step: result.to_dict() for step, result in run.step_results.items()
        },
        "modelVersions": run.model_versions,
    }


def _emit(payload: Any, *, stream: Any = None) -> None:
    print(
        json.dumps(_to_jsonable(payload), ensure_ascii=False, indent=2),
        file=stream or sys.stdout,
    )


def _to_jsonable(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    return value


if __name__ == "__main__":
    sys.exit(main())
