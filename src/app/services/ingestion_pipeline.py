# src/app/services/ingestion_pipeline.py
"""
Extraction orchestrator.

One call handles one submission end to end:

    validating -> checking_cache -> extracting -> structuring -> idle

with any stage able to end in ``failed``. Links and image sets are keyed
exactly and run under a per-key lock so concurrent submissions of the same
source pay for one extraction; the store's unique constraint covers the
multi-process case.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Sequence

from src.app.config import settings
from src.app.domain.errors import (
    GenerationEmptyError,
    GenerationFailedError,
    InvalidInputError,
)
from src.app.domain.models import (
    CacheMatch,
    ImagePage,
    InputMode,
    InputType,
    OriginalRecord,
    ParseDiagnostics,
    ParseResult,
    PipelineStage,
)
from src.app.schemas.recipes import CanonicalRecipe
from src.app.services.cache_resolver import CacheResolver
from src.app.services.provider_chain import ProviderChain
from src.app.services.recipe_store import RecipeStore
from src.app.services.structuring import RecipeStructurer, StructuredRecipe
from src.services import prompts
from src.services.classify import check_input_mode
from src.services.errors import (
    ContentExtractionError,
    FetchFailedError,
    InvalidURLError,
    NetworkTimeoutError,
    PrivateOrUnavailableError,
)
from src.services.fetcher import FetchedPage, VideoContent, build_video_text, fetch_html, fetch_video
from src.services.html_extract import PageContent, extract_recipe_content
from src.services.singleflight import KeyedLocks
from src.services.url_normalize import content_hash, normalize_url

logger = logging.getLogger(__name__)

SUPPORTED_IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/webp", "image/gif", "application/pdf"})

_MIME_ALIASES = {"image/jpg": "image/jpeg", "image/pjpeg": "image/jpeg"}


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


class _StageTracker:
    """Logs stage transitions and collects per-stage timings."""

    def __init__(self, diagnostics: ParseDiagnostics, label: str):
        self._diagnostics = diagnostics
        self._label = label
        self._started = time.monotonic()
        self._stage_started = self._started

    def enter(self, stage: PipelineStage) -> None:
        previous = self._diagnostics.stage
        if previous not in (PipelineStage.IDLE, PipelineStage.FAILED):
            self._diagnostics.timings_ms[previous.value] = _elapsed_ms(self._stage_started)
        self._stage_started = time.monotonic()
        self._diagnostics.stage = stage
        logger.info("pipeline.stage %s from=%s to=%s", self._label, previous.value, stage.value)

    def finish(self) -> None:
        self.enter(PipelineStage.IDLE)
        self._diagnostics.timings_ms["total"] = _elapsed_ms(self._started)

    def fail(self, error: Exception) -> None:
        failed_at = self._diagnostics.stage
        self._diagnostics.timings_ms[failed_at.value] = _elapsed_ms(self._stage_started)
        self._diagnostics.stage = PipelineStage.FAILED
        logger.warning(
            "pipeline.failed %s stage=%s error=%s: %s",
            self._label,
            failed_at.value,
            type(error).__name__,
            error,
        )


class IngestionPipeline:
    def __init__(
        self,
        resolver: CacheResolver,
        store: RecipeStore,
        structurer: RecipeStructurer,
        vision_chain: ProviderChain,
        *,
        fetch_page: Callable[..., FetchedPage] = fetch_html,
        extract_page: Callable[[str, str], PageContent] = extract_recipe_content,
        fetch_video_content: Callable[[str], VideoContent] = fetch_video,
        locks: Optional[KeyedLocks] = None,
        min_extracted_chars: int = settings.MIN_EXTRACTED_TEXT_CHARS,
        max_image_bytes: int = settings.MAX_IMAGE_SIZE_MB * 1024 * 1024,
        max_pages: int = settings.MAX_IMAGE_PAGES,
        scraper_api_key: Optional[str] = settings.SCRAPER_API_KEY or None,
        fetch_timeout: float = settings.FETCH_TIMEOUT_SECONDS,
    ):
        self._resolver = resolver
        self._store = store
        self._structurer = structurer
        self._vision = vision_chain
        self._fetch_page = fetch_page
        self._extract_page = extract_page
        self._fetch_video = fetch_video_content
        self._locks = locks or KeyedLocks()
        self._min_extracted_chars = min_extracted_chars
        self._max_image_bytes = max_image_bytes
        self._max_pages = max_pages
        self._scraper_api_key = scraper_api_key
        self._fetch_timeout = fetch_timeout

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def parse_input(
        self,
        raw: str,
        *,
        mode: Optional[InputMode] = None,
        force_new: bool = False,
    ) -> ParseResult:
        """Parse a link or free-form dish text."""
        diagnostics = ParseDiagnostics()
        tracker = _StageTracker(diagnostics, "kind=text")
        try:
            tracker.enter(PipelineStage.VALIDATING)
            input_type = check_input_mode(raw, mode)
            if input_type is InputType.RAW_TEXT:
                result = self._parse_text(raw.strip(), force_new, diagnostics, tracker)
            else:
                result = self._parse_link(raw.strip(), input_type, force_new, diagnostics, tracker)
        except Exception as error:
            tracker.fail(error)
            raise
        tracker.finish()
        return result

    def parse_images(self, pages: Sequence[ImagePage]) -> ParseResult:
        """Parse one or more photographed recipe pages, in reading order."""
        diagnostics = ParseDiagnostics()
        tracker = _StageTracker(diagnostics, f"kind=image pages={len(pages)}")
        try:
            tracker.enter(PipelineStage.VALIDATING)
            checked = self._validate_pages(pages)
            key = content_hash(checked)
            with self._locks.hold(key):
                result = self._cached(InputType.IMAGE, key, diagnostics, tracker)
                if result is None:
                    result = self._extract_images(checked, key, diagnostics, tracker)
        except Exception as error:
            tracker.fail(error)
            raise
        tracker.finish()
        return result

    # ------------------------------------------------------------------
    # Branches
    # ------------------------------------------------------------------

    def _parse_text(
        self,
        text: str,
        force_new: bool,
        diagnostics: ParseDiagnostics,
        tracker: _StageTracker,
    ) -> ParseResult:
        if not force_new:
            tracker.enter(PipelineStage.CHECKING_CACHE)
            matches = self._resolver.lookup_text(text)
            if len(matches) == 1:
                match = matches[0]
                diagnostics.from_cache = True
                diagnostics.cache_match = CacheMatch.FUZZY
                return ParseResult(
                    input_type=InputType.RAW_TEXT,
                    recipe=match.record.data,
                    record_id=match.record.id,
                    matches=matches,
                    diagnostics=diagnostics,
                )
            if len(matches) > 1:
                diagnostics.from_cache = True
                diagnostics.cache_match = CacheMatch.FUZZY
                return ParseResult(input_type=InputType.RAW_TEXT, matches=matches, diagnostics=diagnostics)

        tracker.enter(PipelineStage.STRUCTURING)
        structured = self._structurer.structure(prompts.build_text_prompt(text))
        self._record_outcome(diagnostics, structured)
        diagnostics.fetch_method = "text"
        record = self._store.commit(structured.recipe, None)
        return self._fresh_result(InputType.RAW_TEXT, record, None, diagnostics)

    def _parse_link(
        self,
        url: str,
        input_type: InputType,
        force_new: bool,
        diagnostics: ParseDiagnostics,
        tracker: _StageTracker,
    ) -> ParseResult:
        """
        Links are keyed exactly, so an existing record is always reused;
        force_new only bypasses the fuzzy match for free-form text.
        """
        try:
            key = normalize_url(url)
        except InvalidURLError as error:
            raise InvalidInputError("That link could not be read. Check it and try again.") from error

        if force_new:
            logger.info("pipeline.force_new_ignored type=%s key=%s", input_type.value, key)

        with self._locks.hold(key):
            result = self._cached(input_type, key, diagnostics, tracker)
            if result is not None:
                return result

            tracker.enter(PipelineStage.EXTRACTING)
            if input_type is InputType.VIDEO:
                prompt, extras = self._extract_video(url, diagnostics)
            else:
                prompt, extras = self._extract_page_text(url, diagnostics)

            tracker.enter(PipelineStage.STRUCTURING)
            structured = self._structurer.structure(prompt, source_url=url)
            self._record_outcome(diagnostics, structured)
            recipe = self._with_page_extras(structured.recipe, extras)
            record = self._store.commit(recipe, key)
        return self._fresh_result(input_type, record, key, diagnostics)

    def _cached(
        self,
        input_type: InputType,
        key: str,
        diagnostics: ParseDiagnostics,
        tracker: _StageTracker,
    ) -> Optional[ParseResult]:
        tracker.enter(PipelineStage.CHECKING_CACHE)
        record = self._resolver.lookup_key(key)
        if record is None:
            return None
        diagnostics.from_cache = True
        diagnostics.cache_match = CacheMatch.EXACT
        return ParseResult(
            input_type=input_type,
            recipe=record.data,
            record_id=record.id,
            cache_key=key,
            diagnostics=diagnostics,
        )

    def _extract_page_text(self, url: str, diagnostics: ParseDiagnostics) -> tuple[prompts.PromptPayload, dict]:
        try:
            page = self._fetch_page(url, timeout=self._fetch_timeout, scraper_api_key=self._scraper_api_key)
        except (FetchFailedError, NetworkTimeoutError) as error:
            raise GenerationFailedError("We couldn't open that page. Check the link or try again later.") from error

        try:
            content = self._extract_page(page.html, page.url)
        except ContentExtractionError as error:
            raise GenerationEmptyError("We couldn't find a recipe on that page.") from error

        diagnostics.fetch_method = f"{page.method}/{content.method}"
        extras = {"image": content.image, "shortDescription": content.description}
        return prompts.build_url_prompt(content.text, url), extras

    def _extract_video(self, url: str, diagnostics: ParseDiagnostics) -> tuple[prompts.PromptPayload, dict]:
        try:
            video = self._fetch_video(url)
        except PrivateOrUnavailableError as error:
            raise InvalidInputError("That video is private or unavailable.") from error
        except (FetchFailedError, InvalidURLError) as error:
            raise GenerationFailedError("We couldn't read that video. Try again later.") from error

        text = build_video_text(video)
        if len(text) < self._min_extracted_chars:
            raise GenerationEmptyError("That video has no recipe text we could read.")

        diagnostics.fetch_method = f"video_{video.platform}" + ("_transcript" if video.transcript else "_caption")
        extras = {"image": video.thumbnail_url, "thumbnailUrl": video.thumbnail_url}
        return prompts.build_video_prompt(text, url), extras

    def _extract_images(
        self,
        pages: list[ImagePage],
        key: str,
        diagnostics: ParseDiagnostics,
        tracker: _StageTracker,
    ) -> ParseResult:
        tracker.enter(PipelineStage.EXTRACTING)
        outcome = self._vision.run(
            prompts.build_image_extraction_prompt(pages),
            min_output_chars=self._min_extracted_chars,
        )
        suffix = "_multiimage" if len(pages) > 1 else ""
        diagnostics.fetch_method = f"{outcome.provider}_vision{'_fallback' if outcome.used_fallback else ''}{suffix}"
        diagnostics.used_fallback = outcome.used_fallback
        diagnostics.usage = diagnostics.usage + outcome.usage
        logger.info("pipeline.image_text chars=%d provider=%s", len(outcome.output), outcome.provider)

        tracker.enter(PipelineStage.STRUCTURING)
        structured = self._structurer.structure(prompts.build_image_text_prompt(outcome.output))
        self._record_outcome(diagnostics, structured, vision_fallback=outcome.used_fallback)
        record = self._store.commit(structured.recipe, key)
        return self._fresh_result(InputType.IMAGE, record, key, diagnostics)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _validate_pages(self, pages: Sequence[ImagePage]) -> list[ImagePage]:
        if not pages:
            raise InvalidInputError("Add at least one photo of the recipe.")
        if len(pages) > self._max_pages:
            raise InvalidInputError(f"Use at most {self._max_pages} photos per recipe.")

        checked: list[ImagePage] = []
        for index, page in enumerate(pages, 1):
            mime_type = _MIME_ALIASES.get(page.mime_type.lower(), page.mime_type.lower())
            if mime_type not in SUPPORTED_IMAGE_TYPES:
                raise InvalidInputError(f"Photo {index} has an unsupported format ({page.mime_type}).")
            if not page.data:
                raise InvalidInputError(f"Photo {index} is empty.")
            if len(page.data) > self._max_image_bytes:
                limit_mb = self._max_image_bytes // (1024 * 1024)
                raise InvalidInputError(f"Photo {index} is larger than {limit_mb} MB.")
            checked.append(ImagePage(data=page.data, mime_type=mime_type))
        return checked

    @staticmethod
    def _record_outcome(
        diagnostics: ParseDiagnostics,
        structured: StructuredRecipe,
        *,
        vision_fallback: bool = False,
    ) -> None:
        diagnostics.provider = structured.outcome.provider
        diagnostics.used_fallback = vision_fallback or structured.outcome.used_fallback
        diagnostics.usage = diagnostics.usage + structured.outcome.usage

    @staticmethod
    def _with_page_extras(recipe: CanonicalRecipe, extras: dict) -> CanonicalRecipe:
        updates = {field: value for field, value in extras.items() if value and not getattr(recipe, field)}
        return recipe.model_copy(update=updates) if updates else recipe

    @staticmethod
    def _fresh_result(
        input_type: InputType,
        record: OriginalRecord,
        key: Optional[str],
        diagnostics: ParseDiagnostics,
    ) -> ParseResult:
        logger.info(
            "pipeline.done type=%s id=%s provider=%s fallback=%s tokens=%d",
            input_type.value,
            record.id,
            diagnostics.provider,
            diagnostics.used_fallback,
            diagnostics.usage.total_tokens,
        )
        return ParseResult(
            input_type=input_type,
            recipe=record.data,
            record_id=record.id,
            cache_key=key,
            diagnostics=diagnostics,
        )

