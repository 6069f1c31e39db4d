from __future__ import annotations

import time
from typing import Any, Protocol

from ewaste.llm_client.base import GeneratedText, to_dict

DEFAULT_TOP_P = 0.95
DEFAULT_TOP_K = 40
DEFAULT_MAX_OUTPUT_TOKENS = 8192


class GeminiGenerateService(Protocol):
    def generate_content(self, **kwargs: Any) -> Any: ...


class GeminiTextGenerator:
    def __init__(
        self,
        *,
        api_key: str | None = None,
        generate_service: GeminiGenerateService | None = None,
    ) -> None:
        self._api_key = api_key
        self._generate_service = generate_service

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
        response = service.generate_content(**payload)
        elapsed_ms = (time.perf_counter() - start_time) * 1000

        response_payload = to_dict(response)
        raw_text = _extract_gemini_output_text(
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
        config: dict[str, Any] = {
            "response_mime_type": "application/json",
            "top_p": params.get("top_p", DEFAULT_TOP_P),
            "top_k": params.get("top_k", DEFAULT_TOP_K),
            "max_output_tokens": int(
                params.get("max_output_tokens") or DEFAULT_MAX_OUTPUT_TOKENS
            ),
        }

        temperature = params.get("temperature")
        if temperature is not None:
            config["temperature"] = temperature

        return {
            "model": model,
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "config": config,
        }

    def _resolve_service(self) -> GeminiGenerateService:
        if self._generate_service is not None:
            return self._generate_service

        if self._api_key is None:
            raise ValueError("Google API key is required when service is not injected")

        try:
            from google import genai
        except ImportError as error:
            raise RuntimeError("google-genai package is not installed") from error

        # Keep the client referenced; dropping it closes the underlying sockets.
        client = getattr(self, "_genai_client", None)
        if client is None:
            client = genai.Client(api_key=self._api_key)
            self._genai_client = client

        self._generate_service = client.models
        return self._generate_service


def _extract_gemini_output_text(*, response: Any, payload: dict[str, Any]) -> str:
    direct_text = getattr(response, "text", None)
    if isinstance(direct_text, str) and direct_text.strip():
        return direct_text

    candidates = payload.get("candidates")
    if isinstance(candidates, list):
        for candidate in candidates:
            if not isinstance(candidate, dict):
                continue
            content = candidate.get("content")
            if not isinstance(content, dict):
                continue
            parts = content.get("parts")
            if not isinstance(parts, list):
                continue
            for part in parts:
                if not isinstance(part, dict):
                    continue
                text = part.get("text")
                if isinstance(text, str) and text.strip():
                    return text

    raise ValueError("Empty response from Gemini")
