from __future__ import annotations

import base64
import logging

import openai
from openai import OpenAI

from src.app.domain.models import ImagePage, ProviderFailure, ProviderResponse, TokenUsage
from src.services.errors import ProviderConfigurationError
from src.services.prompts import PromptPayload

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"


def _data_url(page: ImagePage) -> str:
    encoded = base64.b64encode(page.data).decode("ascii")
    return f"data:{page.mime_type};base64,{encoded}"


def _image_part(index: int, page: ImagePage) -> dict:
    if page.mime_type == PDF_MIME_TYPE:
        return {"type": "file", "file": {"filename": f"page-{index + 1}.pdf", "file_data": _data_url(page)}}
    return {"type": "image_url", "image_url": {"url": _data_url(page), "detail": "high"}}


class OpenAIProvider:
    """Fallback text, vision and structuring provider."""

    def __init__(
        self,
        api_key: str,
        model_name: str = "gpt-4o-mini",
        *,
        name: str = "openai",
        timeout_seconds: float = 60.0,
        client: OpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise ProviderConfigurationError("Missing OpenAI API key.")
        self.name = name
        self.model_name = model_name
        self._client = client or OpenAI(api_key=api_key, timeout=timeout_seconds)

    def _build_messages(self, prompt: PromptPayload) -> list[dict]:
        messages: list[dict] = []
        if prompt.system:
            messages.append({"role": "system", "content": prompt.system})
        if prompt.images:
            content = [{"type": "text", "text": prompt.user}]
            content.extend(_image_part(i, page) for i, page in enumerate(prompt.images))
            messages.append({"role": "user", "content": content})
        else:
            messages.append({"role": "user", "content": prompt.user})
        return messages

    def _failure(self, kind: ProviderFailure, error: Exception | str) -> ProviderResponse:
        logger.warning("openai.call_failed model=%s kind=%s error=%s", self.model_name, kind.value, error)
        return ProviderResponse(provider=self.name, error=str(error), failure=kind)

    def generate(self, prompt: PromptPayload) -> ProviderResponse:
        kwargs: dict = {
            "model": self.model_name,
            "messages": self._build_messages(prompt),
            "temperature": 0.2,
        }
        if prompt.expect_json:
            kwargs["response_format"] = {"type": "json_object"}

        try:
            response = self._client.chat.completions.create(**kwargs)
        except openai.APITimeoutError as err:
            return self._failure(ProviderFailure.TIMEOUT, err)
        except openai.RateLimitError as err:
            return self._failure(ProviderFailure.RATE_LIMITED, err)
        except openai.APIConnectionError as err:
            return self._failure(ProviderFailure.UNAVAILABLE, err)
        except openai.BadRequestError as err:
            return self._failure(ProviderFailure.MALFORMED, err)
        except openai.APIStatusError as err:
            return self._failure(ProviderFailure.UNAVAILABLE, err)

        usage = TokenUsage()
        if response.usage is not None:
            usage = TokenUsage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
            )

        text = response.choices[0].message.content if response.choices else None
        if not text or not text.strip():
            return ProviderResponse(provider=self.name, error="empty response", failure=ProviderFailure.EMPTY, usage=usage)
        return ProviderResponse(provider=self.name, output=text, usage=usage)
