# src/app/routers/ingest.py
from __future__ import annotations

import base64
import binascii
import logging
import time
from typing import List

from fastapi import APIRouter, Depends, HTTPException
from starlette.concurrency import run_in_threadpool

from src.app.deps import get_pipeline
from src.app.domain.errors import IngestionError
from src.app.domain.models import ImagePage, ParseResult
from src.app.schemas.recipes import (
    DiagnosticsView,
    ImagePayload,
    MatchView,
    ParseImageRequest,
    ParseImagesRequest,
    ParseRequest,
    ParseResponse,
)
from src.app.services.ingestion_pipeline import IngestionPipeline

log = logging.getLogger("ingest")
router = APIRouter(prefix="/recipes", tags=["ingest"])


def _decode_page(index: int, payload: ImagePayload) -> ImagePage:
    data = payload.data
    if data.startswith("data:") and "," in data:
        data = data.split(",", 1)[1]
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as error:
        raise HTTPException(
            status_code=400,
            detail={"code": "INVALID_INPUT", "message": f"Photo {index} is not valid base64 data."},
        ) from error
    return ImagePage(data=raw, mime_type=payload.mimeType)


def to_parse_response(result: ParseResult) -> ParseResponse:
    diagnostics = result.diagnostics
    return ParseResponse(
        inputType=result.input_type.value,
        recipe=result.recipe,
        matches=[MatchView(recipe=match.record.data, similarity=match.similarity) for match in result.matches],
        cacheKey=result.cache_key,
        diagnostics=DiagnosticsView(
            fromCache=diagnostics.from_cache,
            cacheMatch=diagnostics.cache_match.value,
            stage=diagnostics.stage.value,
            fetchMethod=diagnostics.fetch_method,
            provider=diagnostics.provider,
            usedFallback=diagnostics.used_fallback,
            timingsMs=diagnostics.timings_ms,
            inputTokens=diagnostics.usage.input_tokens,
            outputTokens=diagnostics.usage.output_tokens,
        ),
    )


def _http_error(error: IngestionError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.to_detail())


@router.post("/parse", response_model=ParseResponse)
async def parse_recipe(
    body: ParseRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> ParseResponse:
    started = time.monotonic()
    try:
        result = await run_in_threadpool(
            pipeline.parse_input,
            body.input,
            mode=body.mode,
            force_new=body.forceNewParse,
        )
    except IngestionError as error:
        log.warning("parse.failed code=%s message=%s", error.code.value, error.message)
        raise _http_error(error) from error

    log.info(
        "parse.ok type=%s from_cache=%s elapsed_ms=%d",
        result.input_type.value,
        result.diagnostics.from_cache,
        int((time.monotonic() - started) * 1000),
    )
    return to_parse_response(result)


async def _parse_pages(pipeline: IngestionPipeline, payloads: List[ImagePayload]) -> ParseResponse:
    pages = [_decode_page(i, payload) for i, payload in enumerate(payloads, 1)]
    try:
        result = await run_in_threadpool(pipeline.parse_images, pages)
    except IngestionError as error:
        log.warning("parse_images.failed pages=%d code=%s message=%s", len(pages), error.code.value, error.message)
        raise _http_error(error) from error
    return to_parse_response(result)


@router.post("/parse-image", response_model=ParseResponse)
async def parse_recipe_image(
    body: ParseImageRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> ParseResponse:
    return await _parse_pages(pipeline, [body.image])


@router.post("/parse-images", response_model=ParseResponse)
async def parse_recipe_images(
    body: ParseImagesRequest,
    pipeline: IngestionPipeline = Depends(get_pipeline),
) -> ParseResponse:
    return await _parse_pages(pipeline, body.pages)
