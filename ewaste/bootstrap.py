from __future__ import annotations

import time
from typing import Callable

from ewaste.config.settings import Settings, get_settings
from ewaste.detection.http_detector import HttpDetector
from ewaste.detection.stub_detector import StubDetector
from ewaste.detection.types import Detector
from ewaste.llm_client.base import TextGenerator
from ewaste.llm_client.gemini_client import GeminiTextGenerator
from ewaste.llm_client.openai_client import OpenAITextGenerator
from ewaste.llm_client.structured import StructuredGenerationClient
from ewaste.pipeline.orchestrator import PipelineOrchestrator
from ewaste.service import EWasteService
from ewaste.storage.blobs import BlobStore, LocalBlobStore
from ewaste.storage.repo import StorageRepo


def build_text_generator(settings: Settings) -> TextGenerator:
    if settings.llm_provider == "openai":
        return OpenAITextGenerator(api_key=settings.openai_api_key)
    return GeminiTextGenerator(api_key=settings.google_api_key)


def build_detector(settings: Settings) -> Detector:
    if settings.detector_type == "http":
        return HttpDetector(
            endpoint=settings.detector_endpoint,
            timeout_seconds=settings.detector_timeout_seconds,
        )
    return StubDetector()


def build_generation_client(
    settings: Settings,
    *,
    generator: TextGenerator | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> StructuredGenerationClient:
    return StructuredGenerationClient(
        generator=generator or build_text_generator(settings),
        default_model=settings.resolve_model(),
        default_temperature=settings.generation_temperature,
        max_attempts=settings.generation_max_attempts,
        base_delay_seconds=settings.generation_base_delay_seconds,
        sleep_fn=sleep_fn,
    )


def build_service(
    settings: Settings | None = None,
    *,
    generator: TextGenerator | None = None,
    detector: Detector | None = None,
    blob_store: BlobStore | None = None,
    sleep_fn: Callable[[float], None] = time.sleep,
) -> EWasteService:
    """Assemble the service from settings; collaborators can be overridden."""
    active_settings = settings or get_settings()

    repo = StorageRepo(active_settings.resolved_sqlite_path)
    active_blob_store = blob_store or LocalBlobStore(active_settings.resolved_blob_dir)
    orchestrator = PipelineOrchestrator(
        repo=repo,
        blob_store=active_blob_store,
        detector=detector or build_detector(active_settings),
        generation_client=build_generation_client(
            active_settings, generator=generator, sleep_fn=sleep_fn
        ),
    )
    return EWasteService(
        repo=repo,
        blob_store=active_blob_store,
        orchestrator=orchestrator,
        default_location=active_settings.default_location,
    )
