from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from src.app.domain.errors import DuplicateSourceKeyError, RecipeRepositoryError
from src.app.domain.models import (
    CacheRecord,
    ForkRecord,
    OriginalRecord,
    RecordId,
    SavedPointer,
    SimilarMatch,
    SourceType,
)
from src.app.infra.db.base import RecipeCacheRepository, SavedRecipeRepository
from src.app.schemas.recipes import CanonicalRecipe

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"
MATCH_RPC = "match_recipes_by_embedding"
RECORD_COLUMNS = (
    "id, url, normalized_url, recipe_data, parent_recipe_id, source_type, "
    "is_user_modified, created_at, last_processed_at"
)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _parse_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str):
        return None

    try:
        normalized = value.replace("Z", "+00:00") if value.endswith("Z") else value
        return datetime.fromisoformat(normalized)
    except ValueError:
        return None


def _recipe_payload(data: CanonicalRecipe, record_id: RecordId | None = None) -> dict[str, Any]:
    payload = data.model_dump(mode="json", exclude={"id"})
    if record_id is not None:
        payload["id"] = record_id
    return payload


def _row_to_record(row: dict[str, Any]) -> CacheRecord:
    record_id = row["id"]
    data = CanonicalRecipe.model_validate(row.get("recipe_data") or {})
    data.id = record_id

    if row.get("is_user_modified") or row.get("source_type") == SourceType.USER_MODIFIED.value:
        return ForkRecord(
            id=record_id,
            data=data,
            parent_id=row.get("parent_recipe_id"),
            created_at=_parse_datetime(row.get("created_at")),
            last_processed_at=_parse_datetime(row.get("last_processed_at")),
        )
    return OriginalRecord(
        id=record_id,
        data=data,
        source_key=row.get("normalized_url"),
        has_embedding=bool(row.get("embedding")),
        created_at=_parse_datetime(row.get("created_at")),
        last_processed_at=_parse_datetime(row.get("last_processed_at")),
    )


def _row_to_pointer(row: dict[str, Any]) -> SavedPointer:
    return SavedPointer(
        id=row["id"],
        user_id=str(row["user_id"]),
        base_recipe_id=row["base_recipe_id"],
        title_override=row.get("title_override"),
        applied_changes=row.get("applied_changes"),
        folder_id=row.get("folder_id"),
    )


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except APIError as error:
        logger.error("recipes_repo.api_error operation=%s code=%s message=%s", operation, error.code, error.message)
        raise RecipeRepositoryError(operation, str(error.message or error)) from error
    except (ConnectionError, TimeoutError, httpx.HTTPError) as error:
        logger.error("recipes_repo.network_error operation=%s error=%s", operation, error)
        raise RecipeRepositoryError(operation, str(error)) from error


class SupabaseRecipeCacheRepository(RecipeCacheRepository):
    TABLE_NAME = "processed_recipes_cache"

    def __init__(self, client: Client):
        self._client = client
        logger.info("SupabaseRecipeCacheRepository initialized")

    def _table(self):
        return self._client.table(self.TABLE_NAME)

    def _force_id(self, record_id: RecordId, data: CanonicalRecipe) -> None:
        self._table().update({"recipe_data": _recipe_payload(data, record_id)}).eq("id", record_id).execute()

    def get_by_id(self, record_id: RecordId) -> Optional[CacheRecord]:
        with _translate_errors("get_by_id"):
            result = self._table().select(RECORD_COLUMNS).eq("id", record_id).limit(1).execute()
        return _row_to_record(result.data[0]) if result.data else None

    def find_by_source_key(self, source_key: str) -> Optional[OriginalRecord]:
        with _translate_errors("find_by_source_key"):
            result = (
                self._table()
                .select(RECORD_COLUMNS)
                .eq("normalized_url", source_key)
                .eq("is_user_modified", False)
                .limit(1)
                .execute()
            )
        if not result.data:
            return None
        record = _row_to_record(result.data[0])
        return record if isinstance(record, OriginalRecord) else None

    def insert_original(self, data: CanonicalRecipe, source_key: Optional[str]) -> OriginalRecord:
        now = _now_utc().isoformat()
        row = {
            "url": data.sourceUrl or source_key,
            "normalized_url": source_key,
            "recipe_data": _recipe_payload(data),
            "parent_recipe_id": None,
            "source_type": SourceType.ORIGINAL.value,
            "is_user_modified": False,
            "last_processed_at": now,
        }
        with _translate_errors("insert_original"):
            try:
                result = self._table().insert(row).execute()
            except APIError as error:
                if error.code == UNIQUE_VIOLATION and source_key:
                    logger.info("recipes_repo.duplicate_source_key key=%s", source_key)
                    raise DuplicateSourceKeyError(source_key) from error
                raise
            if not result.data:
                raise RecipeRepositoryError("insert_original", "insert returned no row")
            record_id = result.data[0]["id"]
            self._force_id(record_id, data)

        stored = result.data[0]
        logger.info("recipes_repo.inserted_original id=%s key=%s", record_id, source_key)
        return OriginalRecord(
            id=record_id,
            data=data.model_copy(update={"id": record_id}),
            source_key=source_key,
            created_at=_parse_datetime(stored.get("created_at")),
            last_processed_at=_parse_datetime(stored.get("last_processed_at")),
        )

    def insert_fork(self, parent_id: RecordId, data: CanonicalRecipe) -> ForkRecord:
        now = _now_utc().isoformat()
        row = {
            "url": data.sourceUrl,
            "normalized_url": None,
            "recipe_data": _recipe_payload(data),
            "parent_recipe_id": parent_id,
            "source_type": SourceType.USER_MODIFIED.value,
            "is_user_modified": True,
            "last_processed_at": now,
        }
        with _translate_errors("insert_fork"):
            result = self._table().insert(row).execute()
            if not result.data:
                raise RecipeRepositoryError("insert_fork", "insert returned no row")
            record_id = result.data[0]["id"]
            self._force_id(record_id, data)

        stored = result.data[0]
        logger.info("recipes_repo.inserted_fork id=%s parent=%s", record_id, parent_id)
        return ForkRecord(
            id=record_id,
            data=data.model_copy(update={"id": record_id}),
            parent_id=parent_id,
            created_at=_parse_datetime(stored.get("created_at")),
            last_processed_at=_parse_datetime(stored.get("last_processed_at")),
        )

    def update_data(self, record_id: RecordId, data: CanonicalRecipe) -> CacheRecord:
        with _translate_errors("update_data"):
            result = (
                self._table()
                .update({"recipe_data": _recipe_payload(data, record_id), "last_processed_at": _now_utc().isoformat()})
                .eq("id", record_id)
                .execute()
            )
        if not result.data:
            raise RecipeRepositoryError("update_data", f"record {record_id} not found")
        return _row_to_record(result.data[0])

    def touch(self, record_id: RecordId, at: Optional[datetime] = None) -> None:
        with _translate_errors("touch"):
            self._table().update({"last_processed_at": (at or _now_utc()).isoformat()}).eq("id", record_id).execute()

    def save_embedding(self, record_id: RecordId, embedding: list[float]) -> None:
        with _translate_errors("save_embedding"):
            (
                self._table()
                .update({"embedding": embedding})
                .eq("id", record_id)
                .eq("is_user_modified", False)
                .execute()
            )
        logger.info("recipes_repo.embedding_saved id=%s dims=%d", record_id, len(embedding))

    def match_by_embedding(self, embedding: list[float], threshold: float, limit: int) -> list[SimilarMatch]:
        with _translate_errors("match_by_embedding"):
            result = self._client.rpc(
                MATCH_RPC,
                {"query_embedding": embedding, "match_threshold": threshold, "match_count": limit},
            ).execute()

        matches: list[SimilarMatch] = []
        for row in result.data or []:
            record = _row_to_record(row)
            if not isinstance(record, OriginalRecord):
                continue
            matches.append(SimilarMatch(record=record, similarity=float(row.get("similarity") or 0.0)))
        matches.sort(key=lambda match: match.similarity, reverse=True)
        return matches[:limit]


class SupabaseSavedRecipeRepository(SavedRecipeRepository):
    TABLE_NAME = "user_saved_recipes"

    def __init__(self, client: Client):
        self._client = client

    def _table(self):
        return self._client.table(self.TABLE_NAME)

    def get_pointer(self, saved_id: RecordId) -> Optional[SavedPointer]:
        with _translate_errors("get_pointer"):
            result = self._table().select("*").eq("id", saved_id).limit(1).execute()
        return _row_to_pointer(result.data[0]) if result.data else None

    def repoint(
        self,
        saved_id: RecordId,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
    ) -> SavedPointer:
        update: dict[str, Any] = {"base_recipe_id": record_id}
        if title_override is not None:
            update["title_override"] = title_override
        if applied_changes is not None:
            update["applied_changes"] = applied_changes

        with _translate_errors("repoint"):
            result = self._table().update(update).eq("id", saved_id).eq("user_id", user_id).execute()
        if not result.data:
            raise RecipeRepositoryError("repoint", f"saved recipe {saved_id} not found for user {user_id}")
        logger.info("saved_repo.repointed saved=%s record=%s", saved_id, record_id)
        return _row_to_pointer(result.data[0])

    def create_pointer(
        self,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
        folder_id: Optional[RecordId] = None,
    ) -> SavedPointer:
        row = {
            "user_id": user_id,
            "base_recipe_id": record_id,
            "title_override": title_override,
            "applied_changes": applied_changes,
            "folder_id": folder_id,
        }
        with _translate_errors("create_pointer"):
            result = self._table().insert(row).execute()
        if not result.data:
            raise RecipeRepositoryError("create_pointer", "insert returned no row")
        logger.info("saved_repo.created saved=%s user=%s record=%s", result.data[0]["id"], user_id, record_id)
        return _row_to_pointer(result.data[0])
