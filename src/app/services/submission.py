# src/app/services/submission.py
"""
Client-facing submission state machine.

Sequences one user action and maps its outcome to a SubmissionResult:

    idle -> validating -> checking_cache | parsing -> navigating -> idle

Only one submission runs at a time per instance; a second submit while
busy is ignored. The machine always returns to idle.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Protocol

from src.app.domain.errors import IngestionError
from src.app.domain.models import (
    InputMode,
    NavigateToLoading,
    NavigateToSummary,
    ParseResult,
    ShowMatchModal,
    SubmissionResult,
    SubmissionState,
    ValidationErrorResult,
)
from src.app.schemas.recipes import CanonicalRecipe
from src.app.services.cache_resolver import CacheResolver
from src.app.services.ingestion_pipeline import IngestionPipeline
from src.services.classify import check_input_mode, is_link
from src.services.url_normalize import normalize_url

logger = logging.getLogger(__name__)

_STAGE_MESSAGES = {
    SubmissionState.VALIDATING: "Something went wrong checking your input. Please try again.",
    SubmissionState.CHECKING_CACHE: "We couldn't check that link right now. Please try again.",
    SubmissionState.PARSING: "We couldn't process that recipe. Please try again.",
    SubmissionState.NAVIGATING: "Something went wrong opening the recipe. Please try again.",
}


class SubmissionGateway(Protocol):
    def lookup_url(self, normalized_key: str) -> Optional[CanonicalRecipe]:
        ...

    def parse_text(self, text: str) -> ParseResult:
        ...


class PipelineGateway:
    """Gateway backed directly by the in-process pipeline."""

    def __init__(self, resolver: CacheResolver, pipeline: IngestionPipeline):
        self._resolver = resolver
        self._pipeline = pipeline

    def lookup_url(self, normalized_key: str) -> Optional[CanonicalRecipe]:
        record = self._resolver.lookup_key(normalized_key)
        return record.data if record is not None else None

    def parse_text(self, text: str) -> ParseResult:
        return self._pipeline.parse_input(text, mode=InputMode.NAME)


class RecipeSubmission:
    def __init__(
        self,
        gateway: SubmissionGateway,
        on_state_change: Optional[Callable[[SubmissionState], None]] = None,
    ):
        self._gateway = gateway
        self._on_state_change = on_state_change
        self._busy = threading.Lock()
        self._state = SubmissionState.IDLE

    @property
    def state(self) -> SubmissionState:
        return self._state

    def _set_state(self, state: SubmissionState) -> None:
        if state is self._state:
            return
        logger.debug("submission.state from=%s to=%s", self._state.value, state.value)
        self._state = state
        if self._on_state_change is not None:
            self._on_state_change(state)

    def submit(self, raw: str, mode: Optional[InputMode] = None) -> Optional[SubmissionResult]:
        """
        Run one submission.

        Returns None without doing anything when another submission is in
        flight; otherwise exactly one SubmissionResult.
        """
        if not self._busy.acquire(blocking=False):
            logger.info("submission.ignored reason=in_flight state=%s", self._state.value)
            return None
        try:
            return self._run(raw, mode)
        except IngestionError as error:
            logger.warning("submission.failed stage=%s code=%s", self._state.value, error.code.value)
            return ValidationErrorResult(message=error.message)
        except Exception:
            logger.exception("submission.crashed stage=%s", self._state.value)
            return ValidationErrorResult(message=_STAGE_MESSAGES.get(self._state, _STAGE_MESSAGES[SubmissionState.PARSING]))
        finally:
            self._set_state(SubmissionState.IDLE)
            self._busy.release()

    def _run(self, raw: str, mode: Optional[InputMode]) -> SubmissionResult:
        self._set_state(SubmissionState.VALIDATING)
        input_type = check_input_mode(raw, mode)
        text = raw.strip()

        if is_link(input_type):
            self._set_state(SubmissionState.CHECKING_CACHE)
            key = normalize_url(text)
            recipe = self._gateway.lookup_url(key)
            result: SubmissionResult = NavigateToSummary(recipe=recipe) if recipe is not None else NavigateToLoading(normalized_key=key)
        else:
            self._set_state(SubmissionState.PARSING)
            parsed = self._gateway.parse_text(text)
            if parsed.recipe is not None:
                result = NavigateToSummary(recipe=parsed.recipe)
            elif len(parsed.matches) > 1:
                result = ShowMatchModal(candidates=parsed.matches)
            else:
                result = NavigateToLoading(normalized_key=text)

        self._set_state(SubmissionState.NAVIGATING)
        logger.info("submission.result kind=%s", result.kind)
        return result
