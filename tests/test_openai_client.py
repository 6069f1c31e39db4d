from __future__ import annotations

from typing import Any

import pytest

from ewaste.llm_client.openai_client import OpenAITextGenerator


class FakeResponsesService:
    def __init__(self, response: Any) -> None:
        self.calls: list[dict[str, Any]] = []
        self.response = response

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(kwargs)
        return self.response


class SdkResponse:
    output_text = '{"totalGrossValueUsd": 10}'

    def model_dump(self) -> dict[str, Any]:
        return {"id": "resp_1", "output": []}


def test_openai_payload_builder_uses_json_object_format() -> None:
    payload = OpenAITextGenerator.build_request_payload(
        prompt="price metals",
        model="gpt-4o-mini",
        params={"temperature": 0.7},
    )

    assert payload["model"] == "gpt-4o-mini"
    assert payload["input"][0]["content"] == [
        {"type": "input_text", "text": "price metals"}
    ]
    assert payload["text"] == {"format": {"type": "json_object"}}
    assert payload["temperature"] == 0.7
    assert payload["top_p"] == 0.95
    assert payload["tools"] == []
    assert payload["tool_choice"] == "none"


def test_openai_generate_text_prefers_output_text_attribute() -> None:
    service = FakeResponsesService(SdkResponse())
    generator = OpenAITextGenerator(responses_service=service)

    result = generator.generate_text(prompt="p", model="gpt-4o-mini", params={})

    assert result.raw_text == '{"totalGrossValueUsd": 10}'
    assert result.raw_response == {"id": "resp_1", "output": []}
    assert "temperature" not in service.calls[0]


def test_openai_generate_text_falls_back_to_output_content() -> None:
    service = FakeResponsesService(
        {
            "output": [
                {"type": "reasoning", "content": None},
                {
                    "type": "message",
                    "content": [{"type": "output_text", "text": '{"a": 1}'}],
                },
            ]
        }
    )
    generator = OpenAITextGenerator(responses_service=service)

    result = generator.generate_text(prompt="p", model="m", params={})

    assert result.raw_text == '{"a": 1}'


def test_openai_response_without_text_raises() -> None:
    generator = OpenAITextGenerator(responses_service=FakeResponsesService({"output": []}))

    with pytest.raises(ValueError, match="does not contain output text"):
        generator.generate_text(prompt="p", model="m", params={})
