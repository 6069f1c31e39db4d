from __future__ import annotations

import json

import httpx

from ewaste.detection.types import DetectionOutput
from ewaste.pipeline.contracts import DETECTION_OUTPUT_SCHEMA
from ewaste.pipeline.validate_output import validate_output
from ewaste.utils.error_taxonomy import (
    SchemaValidationError,
    TransportError,
    build_error_details,
)
from ewaste.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class HttpDetector:
    """Calls an external detection service that speaks the detection wire format.

    The image is POSTed as ``application/octet-stream``; the reply must be a
    JSON document matching the detection-output schema.
    """

    def __init__(
        self,
        *,
        endpoint: str,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        client: httpx.Client | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout_seconds = timeout_seconds
        self._client = client

    def detect(self, image_bytes: bytes) -> DetectionOutput:
        try:
            response = self._post(image_bytes)
            response.raise_for_status()
        except httpx.HTTPError as error:
            logger.warning("Detection request failed: %s", build_error_details(error))
            raise TransportError(
                f"Detection service request failed: {error.__class__.__name__}: {error}"
            ) from error

        try:
            payload = response.json()
        except json.JSONDecodeError as error:
            raise SchemaValidationError(
                "Detection service returned a non-JSON body"
            ) from error

        validation = validate_output(
            parsed_json=payload,
            schema=DETECTION_OUTPUT_SCHEMA.json_schema,
        )
        if not validation.valid:
            raise SchemaValidationError(
                "Detection service reply does not match the detection schema",
                errors=validation.errors,
            )

        return DetectionOutput.from_dict(payload)

    def _post(self, image_bytes: bytes) -> httpx.Response:
        headers = {"Content-Type": "application/octet-stream"}
        if self._client is not None:
            return self._client.post(self.endpoint, content=image_bytes, headers=headers)

        with httpx.Client(timeout=self.timeout_seconds) as client:
            return client.post(self.endpoint, content=image_bytes, headers=headers)
