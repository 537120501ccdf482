from __future__ import annotations

from functools import lru_cache

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from src.app.config import settings
from src.app.schemas.recipes import CanonicalRecipe
from src.services.errors import ProviderConfigurationError, RateLimitedError, ServiceError

TASK_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_QUERY = "RETRIEVAL_QUERY"
MAX_EMBEDDING_CHARS = 2000


def _is_rate_limited_error(exc: Exception) -> bool:
    status_code = getattr(exc, "code", None) or getattr(exc, "status_code", None)
    if status_code == 429:
        return True
    if "RESOURCE_EXHAUSTED" in str(exc):
        return True
    return False


@lru_cache(maxsize=1)
def _client() -> genai.Client:
    if not settings.GEMINI_API_KEY:
        raise ProviderConfigurationError("Missing Gemini API key.")
    return genai.Client(api_key=settings.GEMINI_API_KEY)


def _embed(text: str, task_type: str) -> list[float]:
    try:
        result = _client().models.embed_content(
            model=settings.GEMINI_EMBEDDING_MODEL,
            contents=text[:MAX_EMBEDDING_CHARS],
            config=types.EmbedContentConfig(task_type=task_type),
        )
    except genai_errors.APIError as err:
        if _is_rate_limited_error(err):
            raise RateLimitedError(
                "Gemini API limit reached. Try again in a few moments."
            ) from err
        raise ServiceError(f"Embedding request failed: {err}") from err

    if not result.embeddings or not result.embeddings[0].values:
        raise ServiceError("Embedding response was empty")
    return list(result.embeddings[0].values)


def embedding_document(text: str) -> list[float]:
    return _embed(text, TASK_DOCUMENT)


def embedding_query(text: str) -> list[float]:
    return _embed(text, TASK_QUERY)


def build_embedding_text(recipe: CanonicalRecipe) -> str:
    """Text that represents a recipe in the fuzzy-match index."""
    lines = [recipe.title]
    if recipe.shortDescription:
        lines.append(recipe.shortDescription)
    names = [ingredient.name for ingredient in recipe.iter_ingredients()]
    if names:
        lines.append(f"Ingredients: {', '.join(names)}")
    return "\n".join(line for line in lines if line)
