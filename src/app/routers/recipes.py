# src/app/routers/recipes.py
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from starlette.concurrency import run_in_threadpool

from src.app.deps import (
    CurrentUser,
    get_current_user,
    get_instruction_editor,
    get_recipe_store,
    get_variation_service,
)
from src.app.domain.errors import IngestionError
from src.app.domain.models import CacheRecord
from src.app.schemas.recipes import (
    PatchRecipeRequest,
    RecordView,
    RewriteInstructionsRequest,
    RewriteInstructionsResponse,
    SaveModifiedRequest,
    SaveModifiedResponse,
    ScaleInstructionsRequest,
    ScaleInstructionsResponse,
    VariationRequest,
)
from src.app.services.instruction_edits import IngredientChange, InstructionEditor
from src.app.services.recipe_store import RecipeStore
from src.app.services.variations import VariationService

log = logging.getLogger("recipes")
router = APIRouter(prefix="/recipes", tags=["recipes"])


def _isoformat(value) -> str | None:
    return value.isoformat() if value is not None else None


def to_record_view(record: CacheRecord) -> RecordView:
    return RecordView(
        id=record.id,
        parentId=record.parent_id,
        sourceType=record.source_type.value,
        isUserModified=record.is_user_modified,
        sourceKey=record.source_key,
        recipe=record.data,
        createdAt=_isoformat(record.created_at),
        lastProcessedAt=_isoformat(record.last_processed_at),
    )


def _http_error(error: IngestionError) -> HTTPException:
    return HTTPException(status_code=error.http_status, detail=error.to_detail())


@router.get("/{recipe_id}", response_model=RecordView)
async def get_recipe(
    recipe_id: int,
    store: RecipeStore = Depends(get_recipe_store),
) -> RecordView:
    try:
        record = await run_in_threadpool(store.get, recipe_id)
    except IngestionError as error:
        raise _http_error(error) from error
    return to_record_view(record)


@router.post("/save-modified", response_model=SaveModifiedResponse, status_code=status.HTTP_201_CREATED)
async def save_modified_recipe(
    body: SaveModifiedRequest,
    user: CurrentUser = Depends(get_current_user),
    store: RecipeStore = Depends(get_recipe_store),
) -> SaveModifiedResponse:
    try:
        result = await run_in_threadpool(
            store.fork,
            body.originalRecipeId,
            body.modifiedRecipeData,
            body.appliedChanges,
            user_id=user.id,
            saved_id=body.savedId,
            folder_id=body.folderId,
        )
    except IngestionError as error:
        log.warning("save_modified.failed user=%s code=%s", user.id, error.code.value)
        raise _http_error(error) from error

    log.info("save_modified.ok user=%s fork=%s parent=%s", user.id, result.record.id, body.originalRecipeId)
    return SaveModifiedResponse(
        record=to_record_view(result.record),
        savedId=result.pointer.id if result.pointer else None,
    )


@router.post("/rewrite-instructions", response_model=RewriteInstructionsResponse)
async def rewrite_instructions(
    body: RewriteInstructionsRequest,
    editor: InstructionEditor = Depends(get_instruction_editor),
) -> RewriteInstructionsResponse:
    changes = [IngredientChange(name=entry.from_, replacement=entry.replacement()) for entry in body.substitutions]
    try:
        edit = await run_in_threadpool(
            editor.rewrite,
            body.originalInstructions,
            changes,
            original_ingredients=body.originalIngredients,
            scaled_ingredients=body.scaledIngredients,
            scaling_factor=body.scalingFactor,
            keep_title=body.keepTitle,
        )
    except IngestionError as error:
        log.warning("rewrite_instructions.failed code=%s", error.code.value)
        raise _http_error(error) from error

    return RewriteInstructionsResponse(
        rewrittenInstructions=edit.instructions,
        newTitle=edit.new_title,
        provider=edit.provider,
        inputTokens=edit.usage.input_tokens,
        outputTokens=edit.usage.output_tokens,
    )


@router.post("/scale-instructions", response_model=ScaleInstructionsResponse)
async def scale_instructions(
    body: ScaleInstructionsRequest,
    editor: InstructionEditor = Depends(get_instruction_editor),
) -> ScaleInstructionsResponse:
    try:
        edit = await run_in_threadpool(
            editor.scale,
            body.instructionsToScale,
            body.originalIngredients,
            body.scaledIngredients,
        )
    except IngestionError as error:
        log.warning("scale_instructions.failed code=%s", error.code.value)
        raise _http_error(error) from error

    return ScaleInstructionsResponse(
        scaledInstructions=edit.instructions,
        provider=edit.provider,
        inputTokens=edit.usage.input_tokens,
        outputTokens=edit.usage.output_tokens,
    )


@router.patch("/{recipe_id}", response_model=RecordView)
async def patch_recipe(
    recipe_id: int,
    body: PatchRecipeRequest,
    user: CurrentUser = Depends(get_current_user),
    store: RecipeStore = Depends(get_recipe_store),
) -> RecordView:
    try:
        record = await run_in_threadpool(store.patch, recipe_id, body.patch)
    except IngestionError as error:
        log.info("patch.rejected user=%s id=%s code=%s", user.id, recipe_id, error.code.value)
        raise _http_error(error) from error
    return to_record_view(record)


@router.post("/{recipe_id}/variations", response_model=SaveModifiedResponse, status_code=status.HTTP_201_CREATED)
async def create_variation(
    recipe_id: int,
    body: VariationRequest,
    user: CurrentUser = Depends(get_current_user),
    service: VariationService = Depends(get_variation_service),
) -> SaveModifiedResponse:
    try:
        result = await run_in_threadpool(
            service.create,
            recipe_id,
            body.variationType,
            user_id=user.id,
            saved_id=body.savedId,
            folder_id=body.folderId,
        )
    except IngestionError as error:
        log.warning("variation.failed user=%s id=%s code=%s", user.id, recipe_id, error.code.value)
        raise _http_error(error) from error

    return SaveModifiedResponse(
        record=to_record_view(result.record),
        savedId=result.pointer.id if result.pointer else None,
    )
