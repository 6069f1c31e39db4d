from __future__ import annotations

import time
from typing import Any, Protocol

from ewaste.llm_client.base import GeneratedText, to_dict

DEFAULT_TOP_P = 0.95
DEFAULT_MAX_OUTPUT_TOKENS = 8192


class OpenAIResponsesService(Protocol):
    def create(self, **kwargs: Any) -> Any: ...


class OpenAITextGenerator:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        responses_service: OpenAIResponsesService | None = None,
    ) -> None:
        self._api_key = api_key
        self._responses_service = responses_service

    def generate_text(
        self,
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> GeneratedText:
        service = self._resolve_service()
        payload = self.build_request_payload(prompt=prompt, model=model, params=params)

        start_time = time.perf_counter()
        response = service.create(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = to_dict(response)
        raw_text = _extract_openai_output_text(
            response=response, payload=response_payload
        )

        return GeneratedText(
            raw_text=raw_text,
            raw_response=response_payload,
            timings={"t_llm_total_ms": elapsed_ms},
        )

    @staticmethod
    def build_request_payload(
        *,
        prompt: str,
        model: str,
        params: dict[str, Any],
    ) -> dict[str, Any]:
        # The Responses API has no top_k; json_object mode is the closest
        # equivalent of Gemini's application/json response type.
        payload: dict[str, Any] = {
            "model": model,
            "input": [
                {
                    "role": "user",
                    "content": [{"type": "input_text", "text": prompt}],
                },
            ],
            "text": {"format": {"type": "json_object"}},
            "top_p": params.get("top_p", DEFAULT_TOP_P),
            "max_output_tokens": int(
                params.get("max_output_tokens") or DEFAULT_MAX_OUTPUT_TOKENS
            ),
            "tools": [],
            "tool_choice": "none",
        }

        temperature = params.get("temperature")
        if temperature is not None:
            payload["temperature"] = temperature

        return payload

    def _resolve_service(self) -> OpenAIResponsesService:
        if self._responses_service is not None:
            return self._responses_service

        if self._api_key is None:
            raise ValueError("OpenAI API key is required when service is not injected")

        try:
            from openai import OpenAI
        except ImportError as error:
            raise RuntimeError("openai package is not installed") from error

        client = OpenAI(api_key=self._api_key)
        self._responses_service = client.responses
        return self._responses_service


def _extract_openai_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    output_text = getattr(response, "output_text", None)
    if isinstance(output_text, str) and output_text.strip():
        return output_text

    payload_text = payload.get("output_text")
    if isinstance(payload_text, str) and payload_text.strip():
        return payload_text

    output = payload.get("output")
    if isinstance(output, list):
        for item in output:
            if not isinstance(item, dict):
                continue
            content = item.get("content")
            if not isinstance(content, list):
                continue
            for content_item in content:
                if not isinstance(content_item, dict):
                    continue
                text = content_item.get("text")
                if isinstance(text, str) and text.strip():
                    return text

    raise ValueError("OpenAI response does not contain output text")
