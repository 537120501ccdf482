from __future__ import annotations

import logging

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from src.app.domain.models import ProviderFailure, ProviderResponse, TokenUsage
from src.services.errors import ProviderConfigurationError
from src.services.prompts import PromptPayload

logger = logging.getLogger(__name__)


class GeminiConfigurationError(ProviderConfigurationError):
    pass


def _is_rate_limited_error(exc: Exception) -> bool:
    status_code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    if status_code == 429:
        return True
    return "RESOURCE_EXHAUSTED" in str(exc)


def _usage_from(response: object) -> TokenUsage:
    metadata = getattr(response, "usage_metadata", None)
    if metadata is None:
        return TokenUsage()
    return TokenUsage(
        input_tokens=getattr(metadata, "prompt_token_count", None) or 0,
        output_tokens=getattr(metadata, "candidates_token_count", None) or 0,
    )


class GeminiProvider:
    """Primary text, vision and structuring provider."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gemini-2.5-flash",
        *,
        name: str = "gemini",
        client: genai.Client | None = None,
    ) -> None:
        if client is None and not api_key:
            raise GeminiConfigurationError("Missing Gemini API key.")
        self.name = name
        self.model_name = model_name
        self._client = client or genai.Client(api_key=api_key)

    def _build_contents(self, prompt: PromptPayload) -> list:
        contents: list = [
            types.Part.from_bytes(data=page.data, mime_type=page.mime_type)
            for page in prompt.images
        ]
        contents.append(prompt.user)
        return contents

    def _build_config(self, prompt: PromptPayload) -> types.GenerateContentConfig:
        return types.GenerateContentConfig(
            system_instruction=prompt.system,
            response_mime_type="application/json" if prompt.expect_json else None,
        )

    def _failure(self, kind: ProviderFailure, error: Exception | str) -> ProviderResponse:
        logger.warning("gemini.call_failed model=%s kind=%s error=%s", self.model_name, kind.value, error)
        return ProviderResponse(provider=self.name, error=str(error), failure=kind)

    def generate(self, prompt: PromptPayload) -> ProviderResponse:
        try:
            response = self._client.models.generate_content(
                model=self.model_name,
                contents=self._build_contents(prompt),
                config=self._build_config(prompt),
            )
        except genai_errors.ClientError as err:
            if _is_rate_limited_error(err):
                return self._failure(ProviderFailure.RATE_LIMITED, err)
            return self._failure(ProviderFailure.MALFORMED, err)
        except genai_errors.ServerError as err:
            return self._failure(ProviderFailure.UNAVAILABLE, err)
        except httpx.TimeoutException as err:
            return self._failure(ProviderFailure.TIMEOUT, err)
        except (ConnectionError, httpx.TransportError) as err:
            return self._failure(ProviderFailure.UNAVAILABLE, err)

        usage = _usage_from(response)
        try:
            text = response.text
        except ValueError as err:
            # blocked or candidate-less responses raise on .text
            return ProviderResponse(provider=self.name, error=str(err), failure=ProviderFailure.EMPTY, usage=usage)

        if not text or not text.strip():
            return ProviderResponse(provider=self.name, error="empty response", failure=ProviderFailure.EMPTY, usage=usage)
        return ProviderResponse(provider=self.name, output=text, usage=usage)
