# src/app/infra/db/base.py
"""
Abstract repositories for the recipe cache and saved-recipe pointers.
These interfaces allow swapping the Supabase backend for in-memory stores.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

from src.app.domain.models import (
    CacheRecord,
    ForkRecord,
    OriginalRecord,
    RecordId,
    SavedPointer,
    SimilarMatch,
)
from src.app.schemas.recipes import CanonicalRecipe


class RecipeCacheRepository(ABC):
    """
    Abstract interface over the processed recipe cache.

    Implementations:
    - SupabaseRecipeCacheRepository: processed_recipes_cache table + pgvector RPC
    """

    @abstractmethod
    def get_by_id(self, record_id: RecordId) -> Optional[CacheRecord]:
        """
        Load a record of either variant.

        Args:
            record_id: Row id

        Returns:
            The OriginalRecord or ForkRecord, or None if it does not exist
        """
        pass

    @abstractmethod
    def find_by_source_key(self, source_key: str) -> Optional[OriginalRecord]:
        """
        Exact lookup of an original by its normalized URL or content hash.

        Args:
            source_key: Normalized URL or "image:<sha256>"

        Returns:
            The matching original, or None
        """
        pass

    @abstractmethod
    def insert_original(self, data: CanonicalRecipe, source_key: Optional[str]) -> OriginalRecord:
        """
        Insert a new original and force data.id to the new row id.

        Args:
            data: Validated recipe document (its id is ignored)
            source_key: Exact-match key, or None for text-originated recipes

        Returns:
            The stored OriginalRecord

        Raises:
            DuplicateSourceKeyError: another original already owns source_key
            RecipeRepositoryError: the store is unavailable
        """
        pass

    @abstractmethod
    def insert_fork(self, parent_id: RecordId, data: CanonicalRecipe) -> ForkRecord:
        """
        Insert a user-modified fork of parent_id with a fresh row id.

        Args:
            parent_id: Record the fork derives from
            data: Edited recipe document (its id is ignored)

        Returns:
            The stored ForkRecord, with data.id equal to its own id
        """
        pass

    @abstractmethod
    def update_data(self, record_id: RecordId, data: CanonicalRecipe) -> CacheRecord:
        """
        Replace the stored document of a record.

        Args:
            record_id: Row to update
            data: Full replacement document (data.id is re-forced)

        Returns:
            The updated record
        """
        pass

    @abstractmethod
    def touch(self, record_id: RecordId, at: Optional[datetime] = None) -> None:
        """Bump last_processed_at after a cache hit."""
        pass

    @abstractmethod
    def save_embedding(self, record_id: RecordId, embedding: list[float]) -> None:
        """
        Attach an embedding to an original. Forks are never embedded.

        Args:
            record_id: Original row id
            embedding: Document embedding vector
        """
        pass

    @abstractmethod
    def match_by_embedding(
        self,
        embedding: list[float],
        threshold: float,
        limit: int,
    ) -> list[SimilarMatch]:
        """
        Nearest originals above a cosine-similarity threshold.

        Args:
            embedding: Query embedding
            threshold: Minimum similarity (0..1)
            limit: Maximum number of matches

        Returns:
            Matches ordered by descending similarity (originals only)
        """
        pass


class SavedRecipeRepository(ABC):
    """Pointers from users to records (user_saved_recipes)."""

    @abstractmethod
    def get_pointer(self, saved_id: RecordId) -> Optional[SavedPointer]:
        pass

    @abstractmethod
    def repoint(
        self,
        saved_id: RecordId,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
    ) -> SavedPointer:
        """
        Re-point an existing saved entry at another record.

        Only entries owned by user_id are touched; a missing or foreign
        entry raises RecipeRepositoryError.

        Args:
            saved_id: Pointer to update
            user_id: Owner of the pointer
            record_id: New target (usually a fresh fork)
            title_override: Display title for the user's copy
            applied_changes: Change description that produced the fork

        Returns:
            The updated pointer
        """
        pass

    @abstractmethod
    def create_pointer(
        self,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
        folder_id: Optional[RecordId] = None,
    ) -> SavedPointer:
        """Save a record for a user."""
        pass
