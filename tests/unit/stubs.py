from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Optional, Union

from src.app.domain.errors import DuplicateSourceKeyError, RecipeRepositoryError
from src.app.domain.models import (
    CacheRecord,
    ForkRecord,
    OriginalRecord,
    ProviderFailure,
    ProviderResponse,
    RecordId,
    SavedPointer,
    SimilarMatch,
    TokenUsage,
)
from src.app.infra.db.base import RecipeCacheRepository, SavedRecipeRepository
from src.app.schemas.recipes import CanonicalRecipe, Ingredient, IngredientGroup, InstructionStep
from src.services.fetcher import FetchedPage
from src.services.html_extract import PageContent
from src.services.prompts import PromptPayload


class RecipeRepositoryStub(RecipeCacheRepository):
    def __init__(self) -> None:
        self.records: dict[RecordId, CacheRecord] = {}
        self.embeddings: dict[RecordId, list[float]] = {}
        self.matches: list[SimilarMatch] = []
        self.match_calls: list[tuple[float, int]] = []
        self.touched: list[RecordId] = []
        self.insert_calls = 0
        self.should_fail = False
        self.fail_match = False
        self._next_id = 1

    def _check(self, operation: str) -> None:
        if self.should_fail:
            raise RecipeRepositoryError(operation, "simulated outage")

    def _allocate(self) -> int:
        record_id = self._next_id
        self._next_id += 1
        return record_id

    def get_by_id(self, record_id: RecordId) -> Optional[CacheRecord]:
        self._check("get")
        return self.records.get(record_id)

    def find_by_source_key(self, source_key: str) -> Optional[OriginalRecord]:
        self._check("find")
        for record in self.records.values():
            if isinstance(record, OriginalRecord) and record.source_key == source_key:
                return record
        return None

    def insert_original(self, data: CanonicalRecipe, source_key: Optional[str]) -> OriginalRecord:
        self._check("insert")
        self.insert_calls += 1
        if source_key and self.find_by_source_key(source_key) is not None:
            raise DuplicateSourceKeyError(source_key)
        record_id = self._allocate()
        now = datetime.now(timezone.utc)
        record = OriginalRecord(
            id=record_id,
            data=data.model_copy(update={"id": record_id}),
            source_key=source_key,
            created_at=now,
            last_processed_at=now,
        )
        self.records[record_id] = record
        return record

    def insert_fork(self, parent_id: RecordId, data: CanonicalRecipe) -> ForkRecord:
        self._check("insert_fork")
        record_id = self._allocate()
        record = ForkRecord(
            id=record_id,
            data=data.model_copy(update={"id": record_id}),
            parent_id=parent_id,
            created_at=datetime.now(timezone.utc),
        )
        self.records[record_id] = record
        return record

    def update_data(self, record_id: RecordId, data: CanonicalRecipe) -> CacheRecord:
        self._check("update")
        record = replace(self.records[record_id], data=data.model_copy(update={"id": record_id}))
        self.records[record_id] = record
        return record

    def touch(self, record_id: RecordId, at: Optional[datetime] = None) -> None:
        self.touched.append(record_id)

    def save_embedding(self, record_id: RecordId, embedding: list[float]) -> None:
        record = self.records[record_id]
        if isinstance(record, OriginalRecord):
            self.embeddings[record_id] = embedding
            record.has_embedding = True

    def match_by_embedding(self, embedding: list[float], threshold: float, limit: int) -> list[SimilarMatch]:
        if self.fail_match:
            raise RecipeRepositoryError("match", "simulated outage")
        self.match_calls.append((threshold, limit))
        return [match for match in self.matches if match.similarity >= threshold][:limit]


class SavedRepositoryStub(SavedRecipeRepository):
    def __init__(self) -> None:
        self.pointers: dict[RecordId, SavedPointer] = {}
        self.should_fail = False
        self._next_id = 100

    def get_pointer(self, saved_id: RecordId) -> Optional[SavedPointer]:
        return self.pointers.get(saved_id)

    def repoint(
        self,
        saved_id: RecordId,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
    ) -> SavedPointer:
        if self.should_fail:
            raise RecipeRepositoryError("repoint", "simulated outage")
        existing = self.pointers.get(saved_id)
        if existing is None or existing.user_id != user_id:
            raise RecipeRepositoryError("repoint", f"saved recipe {saved_id} not found for user {user_id}")
        pointer = replace(
            existing,
            base_recipe_id=record_id,
            title_override=title_override,
            applied_changes=applied_changes,
        )
        self.pointers[saved_id] = pointer
        return pointer

    def create_pointer(
        self,
        user_id: str,
        record_id: RecordId,
        *,
        title_override: Optional[str] = None,
        applied_changes: Optional[dict[str, Any]] = None,
        folder_id: Optional[RecordId] = None,
    ) -> SavedPointer:
        if self.should_fail:
            raise RecipeRepositoryError("create_pointer", "simulated outage")
        pointer = SavedPointer(
            id=self._next_id,
            user_id=user_id,
            base_recipe_id=record_id,
            title_override=title_override,
            applied_changes=applied_changes,
            folder_id=folder_id,
        )
        self.pointers[pointer.id] = pointer
        self._next_id += 1
        return pointer


ScriptItem = Union[str, None, Exception, ProviderResponse]


class ProviderStub:
    """Returns scripted outputs in order; exceptions in the script are raised."""

    def __init__(self, name: str, *script: ScriptItem) -> None:
        self.name = name
        self.script = list(script)
        self.prompts: list[PromptPayload] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    def generate(self, prompt: PromptPayload) -> ProviderResponse:
        self.prompts.append(prompt)
        item = self.script.pop(0) if self.script else None
        if isinstance(item, Exception):
            raise item
        if isinstance(item, ProviderResponse):
            return item
        if item is None:
            return ProviderResponse(provider=self.name, error="no output", failure=ProviderFailure.EMPTY)
        return ProviderResponse(provider=self.name, output=item, usage=TokenUsage(input_tokens=10, output_tokens=20))


class PageFetcherStub:
    def __init__(self, html: str = "<html></html>") -> None:
        self.html = html
        self.urls: list[str] = []

    def __call__(self, url: str, **kwargs: Any) -> FetchedPage:
        self.urls.append(url)
        return FetchedPage(url=url, html=self.html, method="direct", status_code=200)


def extract_page_stub(html: str, url: str) -> PageContent:
    return PageContent(
        text="Ingredients:\n- 4 chicken thighs\n- 6 cloves garlic\nInstructions:\n1. Roast.",
        method="json_ld",
        image="https://example.com/chicken.jpg",
    )


def create_test_recipe(
    title: str = "Garlic Chicken",
    ingredients: tuple[str, ...] = ("chicken thighs", "garlic"),
    steps: tuple[str, ...] = ("Season the chicken.", "Roast for 40 minutes."),
) -> CanonicalRecipe:
    return CanonicalRecipe(
        title=title,
        ingredientGroups=[IngredientGroup(ingredients=[Ingredient(name=name, amount=1) for name in ingredients])],
        instructions=[InstructionStep(id=f"step-{i}", text=text) for i, text in enumerate(steps, 1)],
        recipeYield="4",
    )


def recipe_json(
    title: str = "Garlic Chicken",
    ingredients: tuple[str, ...] = ("chicken thighs", "garlic"),
    steps: tuple[str, ...] = ("Season the chicken.", "Roast for 40 minutes."),
    **extra: Any,
) -> str:
    payload = {
        "title": title,
        "ingredientGroups": [{"name": None, "ingredients": [{"name": name, "amount": 1} for name in ingredients]}],
        "instructions": list(steps),
        "recipeYield": "4",
    }
    payload.update(extra)
    return json.dumps(payload)
