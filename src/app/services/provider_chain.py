# src/app/services/provider_chain.py
"""
Sequential provider fallback.

Providers are tried one at a time, never raced. The RetryPolicy decides how
many calls the chain may make and which failures are worth another call.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Protocol, Sequence

from src.app.domain.errors import GenerationEmptyError, GenerationFailedError
from src.app.domain.models import (
    ChainOutcome,
    ProviderFailure,
    ProviderResponse,
    RetryPolicy,
    TokenUsage,
)
from src.services.errors import MalformedOutputError
from src.services.prompts import PromptPayload

logger = logging.getLogger(__name__)

_EMPTY_FAILURES = frozenset({ProviderFailure.EMPTY, ProviderFailure.TOO_SHORT})


class Provider(Protocol):
    name: str

    def generate(self, prompt: PromptPayload) -> ProviderResponse:
        ...


class ProviderChain:
    def __init__(
        self,
        providers: Sequence[Provider],
        policy: Optional[RetryPolicy] = None,
        *,
        label: str = "chain",
        sleep: Callable[[float], None] = time.sleep,
    ):
        if not providers:
            raise ValueError("ProviderChain needs at least one provider")
        self._providers = list(providers)
        self._policy = policy or RetryPolicy()
        self._label = label
        self._sleep = sleep

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    @property
    def provider_names(self) -> list[str]:
        return [provider.name for provider in self._providers]

    def _assess(
        self,
        response: ProviderResponse,
        min_output_chars: int,
        check: Optional[Callable[[str], object]],
    ) -> ProviderResponse:
        if response.failure is not None:
            return response
        text = (response.output or "").strip()
        if not text:
            response.failure = ProviderFailure.EMPTY
            response.error = response.error or "empty output"
        elif len(text) < min_output_chars:
            response.failure = ProviderFailure.TOO_SHORT
            response.error = f"output has {len(text)} chars, need {min_output_chars}"
        elif check is not None:
            try:
                check(text)
            except MalformedOutputError as error:
                response.failure = ProviderFailure.MALFORMED
                response.error = str(error)
        return response

    def _call(self, provider: Provider, prompt: PromptPayload) -> ProviderResponse:
        try:
            return provider.generate(prompt)
        except Exception as exc:
            # a raising provider counts as one failed attempt
            logger.warning("%s.provider_raised provider=%s error=%r", self._label, provider.name, exc, exc_info=True)
            return ProviderResponse(provider=provider.name, error=str(exc), failure=ProviderFailure.UNAVAILABLE)

    def run(
        self,
        prompt: PromptPayload,
        *,
        min_output_chars: int = 1,
        check: Optional[Callable[[str], object]] = None,
    ) -> ChainOutcome:
        """
        Walk the chain until one provider returns usable output.

        check, when given, is called with the output and may raise
        MalformedOutputError to reject it as if the provider had failed.

        Raises:
            GenerationEmptyError: the last attempt produced empty or too-short output
            GenerationFailedError: the last attempt errored or the policy stopped retrying
        """
        usage = TokenUsage()
        attempts = 0
        last: Optional[ProviderResponse] = None

        while True:
            provider = self._providers[attempts % len(self._providers)]
            if attempts:
                delay = self._policy.delay_for(attempts)
                if delay > 0:
                    self._sleep(delay)

            started = time.monotonic()
            response = self._assess(self._call(provider, prompt), min_output_chars, check)
            attempts += 1
            usage = usage + response.usage
            elapsed_ms = int((time.monotonic() - started) * 1000)

            if response.failure is None:
                logger.info(
                    "%s.provider_ok provider=%s attempt=%d elapsed_ms=%d tokens_in=%d tokens_out=%d",
                    self._label,
                    response.provider,
                    attempts,
                    elapsed_ms,
                    response.usage.input_tokens,
                    response.usage.output_tokens,
                )
                return ChainOutcome(
                    output=response.output or "",
                    provider=response.provider,
                    attempts=attempts,
                    used_fallback=provider is not self._providers[0],
                    usage=usage,
                )

            last = response
            logger.warning(
                "%s.provider_failed provider=%s attempt=%d kind=%s error=%s",
                self._label,
                response.provider,
                attempts,
                response.failure.value,
                response.error,
            )
            if not self._policy.should_retry(response.failure, attempts):
                break

        logger.error("%s.exhausted attempts=%d last_kind=%s", self._label, attempts, last.failure.value)
        if last.failure in _EMPTY_FAILURES:
            raise GenerationEmptyError()
        raise GenerationFailedError(provider=last.provider)
