from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import MagicMock

import httpx
import openai
import pytest
from google.genai import errors as genai_errors

from src.app.domain.models import ImagePage, ProviderFailure, TokenUsage
from src.services.errors import ProviderConfigurationError
from src.services.gemini_client import GeminiConfigurationError, GeminiProvider
from src.services.openai_client import OpenAIProvider
from src.services.prompts import PromptPayload

JSON_PROMPT = PromptPayload(user="Structure this.", system="You are a recipe parser.", expect_json=True)
IMAGE_PROMPT = PromptPayload(
    user="Transcribe.",
    images=[
        ImagePage(data=b"\x89PNG", mime_type="image/png"),
        ImagePage(data=b"%PDF", mime_type="application/pdf"),
    ],
)
REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def gemini_with(**kwargs) -> tuple[GeminiProvider, MagicMock]:
    client = MagicMock()
    if "error" in kwargs:
        client.models.generate_content.side_effect = kwargs["error"]
    else:
        client.models.generate_content.return_value = SimpleNamespace(
            text=kwargs.get("text"),
            usage_metadata=SimpleNamespace(prompt_token_count=11, candidates_token_count=7),
        )
    return GeminiProvider("", "gemini-test", client=client), client


def openai_with(**kwargs) -> tuple[OpenAIProvider, MagicMock]:
    client = MagicMock()
    if "error" in kwargs:
        client.chat.completions.create.side_effect = kwargs["error"]
    else:
        client.chat.completions.create.return_value = SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=kwargs.get("text")))],
            usage=SimpleNamespace(prompt_tokens=3, completion_tokens=4),
        )
    return OpenAIProvider("", "gpt-test", client=client), client


class TestGeminiProvider:
    def test_success(self) -> None:
        provider, client = gemini_with(text='{"title": "Soup"}')

        response = provider.generate(JSON_PROMPT)

        assert response.ok
        assert response.output == '{"title": "Soup"}'
        assert response.usage == TokenUsage(input_tokens=11, output_tokens=7)
        config = client.models.generate_content.call_args.kwargs["config"]
        assert config.response_mime_type == "application/json"
        assert config.system_instruction == "You are a recipe parser."

    def test_images_precede_text(self) -> None:
        provider, client = gemini_with(text="recipe text")

        provider.generate(IMAGE_PROMPT)

        contents = client.models.generate_content.call_args.kwargs["contents"]
        assert len(contents) == 3
        assert contents[-1] == "Transcribe."

    def test_empty_text(self) -> None:
        provider, _ = gemini_with(text="  ")
        assert provider.generate(JSON_PROMPT).failure is ProviderFailure.EMPTY

    @pytest.mark.parametrize(
        "error,failure",
        [
            (genai_errors.ClientError(429, {"error": {"status": "RESOURCE_EXHAUSTED", "message": "quota"}}), ProviderFailure.RATE_LIMITED),
            (genai_errors.ClientError(400, {"error": {"status": "INVALID_ARGUMENT", "message": "bad"}}), ProviderFailure.MALFORMED),
            (genai_errors.ServerError(503, {"error": {"status": "UNAVAILABLE", "message": "busy"}}), ProviderFailure.UNAVAILABLE),
            (httpx.ReadTimeout("slow"), ProviderFailure.TIMEOUT),
            (ConnectionError("reset"), ProviderFailure.UNAVAILABLE),
        ],
    )
    def test_error_mapping(self, error, failure) -> None:
        provider, _ = gemini_with(error=error)

        response = provider.generate(JSON_PROMPT)

        assert response.failure is failure
        assert response.output is None

    def test_requires_key(self) -> None:
        with pytest.raises(GeminiConfigurationError):
            GeminiProvider("")


class TestOpenAIProvider:
    def test_json_request(self) -> None:
        provider, client = openai_with(text='{"title": "Soup"}')

        response = provider.generate(JSON_PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "gpt-test"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "You are a recipe parser."}
        assert response.usage == TokenUsage(input_tokens=3, output_tokens=4)
        assert response.provider == "openai"

    def test_image_parts(self) -> None:
        provider, client = openai_with(text="recipe text")

        provider.generate(IMAGE_PROMPT)

        kwargs = client.chat.completions.create.call_args.kwargs
        content = kwargs["messages"][0]["content"]
        assert "response_format" not in kwargs
        assert content[0] == {"type": "text", "text": "Transcribe."}
        assert content[1]["image_url"]["url"].startswith("data:image/png;base64,")
        assert content[2]["type"] == "file"
        assert content[2]["file"]["file_data"].startswith("data:application/pdf;base64,")

    def test_empty_content(self) -> None:
        provider, _ = openai_with(text=None)
        assert provider.generate(JSON_PROMPT).failure is ProviderFailure.EMPTY

    @pytest.mark.parametrize(
        "error,failure",
        [
            (openai.APITimeoutError(request=REQUEST), ProviderFailure.TIMEOUT),
            (
                openai.RateLimitError("slow down", response=httpx.Response(429, request=REQUEST), body=None),
                ProviderFailure.RATE_LIMITED,
            ),
            (openai.APIConnectionError(request=REQUEST), ProviderFailure.UNAVAILABLE),
            (
                openai.BadRequestError("bad", response=httpx.Response(400, request=REQUEST), body=None),
                ProviderFailure.MALFORMED,
            ),
            (
                openai.InternalServerError("oops", response=httpx.Response(500, request=REQUEST), body=None),
                ProviderFailure.UNAVAILABLE,
            ),
        ],
    )
    def test_error_mapping(self, error, failure) -> None:
        provider, _ = openai_with(error=error)
        assert provider.generate(JSON_PROMPT).failure is failure

    def test_requires_key(self) -> None:
        with pytest.raises(ProviderConfigurationError):
            OpenAIProvider("")
