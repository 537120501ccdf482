# src/app/services/recipe_store.py
"""
Persistence and fork management for canonical recipes.

Originals are written once by the pipeline and never edited afterwards.
User edits always land in a fork, a new record pointing at its parent.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Mapping, Optional, Union

from pydantic import ValidationError

from src.app.domain.errors import (
    DuplicateSourceKeyError,
    FinalValidationError,
    InvalidInputError,
    NeedsForkError,
    PersistenceError,
    RecipeRepositoryError,
    RecordNotFoundError,
)
from src.app.domain.models import (
    CacheRecord,
    ForkRecord,
    ForkResult,
    OriginalRecord,
    RecordId,
    SavedPointer,
)
from src.app.infra.db.base import RecipeCacheRepository, SavedRecipeRepository
from src.app.schemas.recipes import CanonicalRecipe, InstructionStep
from src.services.embedding import build_embedding_text
from src.services.validator import validate_recipe

logger = logging.getLogger(__name__)

ScheduleEmbedding = Callable[[RecordId, str], bool]
ChangeDescription = Union[Mapping[str, Any], str, None]


def _changes_as_dict(change_description: ChangeDescription) -> Optional[dict[str, Any]]:
    if change_description is None:
        return None
    if isinstance(change_description, str):
        return {"description": change_description}
    return dict(change_description)


def _validate_patch_steps(value: Any) -> list[InstructionStep]:
    if not isinstance(value, list) or not value:
        raise InvalidInputError("instructions must be a non-empty list of steps")

    steps: list[InstructionStep] = []
    for index, entry in enumerate(value, 1):
        if isinstance(entry, InstructionStep):
            steps.append(entry)
            continue
        if not isinstance(entry, dict):
            raise InvalidInputError(f"Step {index} must be an object with id and text")
        step_id = entry.get("id")
        if not isinstance(step_id, str) or not step_id.strip():
            raise InvalidInputError(f"Step {index} is missing its id")
        try:
            steps.append(InstructionStep.model_validate(entry))
        except ValidationError as error:
            first = error.errors()[0]
            field = ".".join(str(part) for part in first.get("loc", ()))
            raise InvalidInputError(f"Step {index} has an invalid {field}: {first.get('msg')}") from error
    return steps


class RecipeStore:
    def __init__(
        self,
        repository: RecipeCacheRepository,
        saved_repository: Optional[SavedRecipeRepository] = None,
        schedule_embedding: Optional[ScheduleEmbedding] = None,
    ):
        self._repo = repository
        self._saved = saved_repository
        self._schedule_embedding = schedule_embedding

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: RecordId) -> CacheRecord:
        try:
            record = self._repo.get_by_id(record_id)
        except RecipeRepositoryError as error:
            raise PersistenceError("get", error.reason) from error
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    # ------------------------------------------------------------------
    # Originals
    # ------------------------------------------------------------------

    def commit(
        self,
        candidate: CanonicalRecipe,
        source_key: Optional[str],
        *,
        searchable: bool = True,
    ) -> OriginalRecord:
        """
        Store a freshly extracted recipe as an original.

        A conflicting insert under the same source_key returns the record
        that won. Store failures raise PersistenceError; embedding is
        scheduled afterwards and may fail independently.
        """
        data = candidate.model_copy(update={"id": None})
        try:
            record = self._repo.insert_original(data, source_key)
        except DuplicateSourceKeyError as duplicate:
            existing = self._find_existing(source_key)
            if existing is None:
                raise PersistenceError("commit", duplicate.reason) from duplicate
            logger.info("store.commit_deduplicated key=%s id=%s", source_key, existing.id)
            return existing
        except RecipeRepositoryError as error:
            logger.error("store.commit_failed key=%s error=%s", source_key, error)
            raise PersistenceError("commit", error.reason) from error

        logger.info("store.committed id=%s key=%s", record.id, source_key)
        if searchable:
            self._embed(record)
        return record

    def _find_existing(self, source_key: Optional[str]) -> Optional[OriginalRecord]:
        if not source_key:
            return None
        try:
            return self._repo.find_by_source_key(source_key)
        except RecipeRepositoryError as error:
            logger.error("store.duplicate_lookup_failed key=%s error=%s", source_key, error)
            return None

    def _embed(self, record: OriginalRecord) -> None:
        if self._schedule_embedding is None:
            return
        try:
            scheduled = self._schedule_embedding(record.id, build_embedding_text(record.data))
        except Exception:
            logger.exception("store.embedding_schedule_failed id=%s", record.id)
            return
        if not scheduled:
            logger.warning("store.embedding_not_scheduled id=%s", record.id)

    # ------------------------------------------------------------------
    # Forks
    # ------------------------------------------------------------------

    def fork(
        self,
        parent_id: RecordId,
        edited: Union[CanonicalRecipe, Mapping[str, Any]],
        change_description: ChangeDescription = None,
        *,
        user_id: Optional[str] = None,
        saved_id: Optional[RecordId] = None,
        folder_id: Optional[RecordId] = None,
    ) -> ForkResult:
        """
        Create a user-modified copy of parent_id.

        The fork gets a fresh id and is never embedded. When saved_id is
        given, user_id's entry with that id is re-pointed to the fork,
        otherwise a pointer is created for user_id. Pointer failures,
        including a saved_id the user does not own, are logged and do not
        undo the fork.
        """
        parent = self.get(parent_id)

        if isinstance(edited, CanonicalRecipe):
            candidate = edited
        else:
            try:
                candidate = CanonicalRecipe.model_validate(dict(edited))
            except ValidationError as error:
                raise InvalidInputError(f"Edited recipe is malformed: {error.error_count()} invalid field(s)") from error

        result = validate_recipe(candidate)
        if not result.ok:
            raise FinalValidationError(result.reasons)

        try:
            record = self._repo.insert_fork(parent.id, candidate.model_copy(update={"id": None}))
        except RecipeRepositoryError as error:
            logger.error("store.fork_failed parent=%s error=%s", parent.id, error)
            raise PersistenceError("fork", error.reason) from error

        logger.info("store.forked id=%s parent=%s", record.id, parent.id)
        pointer = self._attach_pointer(record, _changes_as_dict(change_description), user_id, saved_id, folder_id)
        return ForkResult(record=record, pointer=pointer)

    def _attach_pointer(
        self,
        record: ForkRecord,
        applied_changes: Optional[dict[str, Any]],
        user_id: Optional[str],
        saved_id: Optional[RecordId],
        folder_id: Optional[RecordId],
    ) -> Optional[SavedPointer]:
        if self._saved is None or user_id is None:
            if saved_id is not None:
                logger.warning("store.pointer_skipped fork=%s saved=%s reason=no_user", record.id, saved_id)
            return None
        try:
            if saved_id is not None:
                return self._saved.repoint(
                    saved_id,
                    user_id,
                    record.id,
                    title_override=record.data.title,
                    applied_changes=applied_changes,
                )
            return self._saved.create_pointer(
                user_id,
                record.id,
                title_override=record.data.title,
                applied_changes=applied_changes,
                folder_id=folder_id,
            )
        except RecipeRepositoryError as error:
            logger.warning("store.pointer_failed fork=%s saved=%s error=%s", record.id, saved_id, error)
            return None

    # ------------------------------------------------------------------
    # Partial updates
    # ------------------------------------------------------------------

    def patch(self, record_id: RecordId, partial: Mapping[str, Any]) -> CacheRecord:
        """
        Shallow-merge fields into a fork.

        Originals raise NeedsForkError without being touched. instructions
        is replaced as a whole and every step needs an id and text.
        """
        record = self.get(record_id)
        if not record.is_user_modified:
            logger.info("store.patch_rejected id=%s reason=original", record.id)
            raise NeedsForkError(record.id)

        fields = {key: value for key, value in partial.items() if key != "id"}
        merged = record.data.model_dump(mode="json")
        if "instructions" in fields:
            steps = _validate_patch_steps(fields.pop("instructions"))
            merged["instructions"] = [step.model_dump(mode="json") for step in steps]
        merged.update(fields)
        merged["id"] = record.id

        try:
            data = CanonicalRecipe.model_validate(merged)
        except ValidationError as error:
            raise InvalidInputError(f"Patch is malformed: {error.error_count()} invalid field(s)") from error

        result = validate_recipe(data)
        if not result.ok:
            raise FinalValidationError(result.reasons)

        try:
            updated = self._repo.update_data(record.id, data)
        except RecipeRepositoryError as error:
            raise PersistenceError("patch", error.reason) from error

        updated.data.id = updated.id
        logger.info("store.patched id=%s fields=%s", record.id, sorted(partial.keys()))
        return updated
