# src/app/deps.py (singletons exposed as FastAPI dependencies)

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel
from supabase import Client, create_client

from src.app.config import settings
from src.app.domain.models import RetryPolicy
from src.app.infra.db.supabase_recipes_repo import (
    SupabaseRecipeCacheRepository,
    SupabaseSavedRecipeRepository,
)
from src.app.services.cache_resolver import CacheResolver
from src.app.services.ingestion_pipeline import IngestionPipeline
from src.app.services.instruction_edits import InstructionEditor
from src.app.services.provider_chain import ProviderChain
from src.app.services.recipe_store import RecipeStore
from src.app.services.structuring import RecipeStructurer
from src.app.services.variations import VariationService
from src.services import embedding_queue
from src.services.gemini_client import GeminiProvider
from src.services.openai_client import OpenAIProvider

_client: Client | None = None


def get_supabase() -> Client:
    global _client
    if _client is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_SERVICE_ROLE_KEY:
            raise RuntimeError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        _client = create_client(str(settings.SUPABASE_URL), settings.SUPABASE_SERVICE_ROLE_KEY)
    return _client


@lru_cache(maxsize=1)
def get_recipe_repository() -> SupabaseRecipeCacheRepository:
    return SupabaseRecipeCacheRepository(get_supabase())


@lru_cache(maxsize=1)
def get_saved_repository() -> SupabaseSavedRecipeRepository:
    return SupabaseSavedRecipeRepository(get_supabase())


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        backoff_seconds=settings.PROVIDER_BACKOFF_SECONDS,
    )


def _providers(gemini_model: str, openai_model: str, label: str) -> list:
    providers: list = []
    if settings.GEMINI_API_KEY:
        providers.append(GeminiProvider(settings.GEMINI_API_KEY, gemini_model, name="gemini"))
    if settings.OPENAI_API_KEY:
        providers.append(
            OpenAIProvider(
                settings.OPENAI_API_KEY,
                openai_model,
                name="openai",
                timeout_seconds=max(settings.FETCH_TIMEOUT_SECONDS, 60.0),
            )
        )
    if not providers:
        raise RuntimeError(f"No provider configured for {label}: set GEMINI_API_KEY or OPENAI_API_KEY")
    return providers


@lru_cache(maxsize=1)
def get_structuring_chain() -> ProviderChain:
    return ProviderChain(
        _providers(settings.GEMINI_MODEL, settings.OPENAI_MODEL, "structuring"),
        get_retry_policy(),
        label="structuring",
    )


@lru_cache(maxsize=1)
def get_structurer() -> RecipeStructurer:
    return RecipeStructurer(get_structuring_chain())


@lru_cache(maxsize=1)
def get_instruction_editor() -> InstructionEditor:
    return InstructionEditor(get_structuring_chain())


@lru_cache(maxsize=1)
def get_vision_chain() -> ProviderChain:
    return ProviderChain(
        _providers(settings.GEMINI_MODEL, settings.OPENAI_VISION_MODEL, "vision"),
        get_retry_policy(),
        label="vision",
    )


@lru_cache(maxsize=1)
def get_cache_resolver() -> CacheResolver:
    return CacheResolver(get_recipe_repository())


@lru_cache(maxsize=1)
def get_recipe_store() -> RecipeStore:
    return RecipeStore(
        get_recipe_repository(),
        get_saved_repository(),
        schedule_embedding=embedding_queue.submit,
    )


@lru_cache(maxsize=1)
def get_pipeline() -> IngestionPipeline:
    return IngestionPipeline(
        get_cache_resolver(),
        get_recipe_store(),
        get_structurer(),
        get_vision_chain(),
    )


@lru_cache(maxsize=1)
def get_variation_service() -> VariationService:
    return VariationService(get_recipe_store(), get_structurer())


auth_scheme = HTTPBearer(auto_error=False)


class CurrentUser(BaseModel):
    id: str
    email: str | None = None
    name: str | None = None


async def get_current_user(
    cred: HTTPAuthorizationCredentials | None = Depends(auth_scheme),
    supa: Client = Depends(get_supabase),
) -> CurrentUser:
    """
    Accepts a Supabase access token (Authorization: Bearer <token>),
    validates it against GoTrue and returns the minimal user data.
    """
    if cred is None or cred.scheme.lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")

    token = cred.credentials
    try:
        res = supa.auth.get_user(token)
        user = res.user
        if not user:
            raise HTTPException(status_code=401, detail="Invalid token")

        name = None
        meta = getattr(user, "user_metadata", None) or {}
        if isinstance(meta, dict):
            name = meta.get("name")

        return CurrentUser(id=str(user.id), email=user.email, name=name)
    except HTTPException:
        raise
    except Exception as error:
        raise HTTPException(status_code=401, detail="Invalid/expired token") from error
