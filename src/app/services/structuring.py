from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError

from src.app.domain.errors import FinalValidationError, GenerationEmptyError, GenerationFailedError
from src.app.domain.models import ChainOutcome
from src.app.schemas.recipes import CanonicalRecipe
from src.app.services.provider_chain import ProviderChain
from src.services.json_utils import recover_json_object
from src.services.normalize import is_empty_recipe, sanitize_recipe_payload
from src.services.prompts import PromptPayload
from src.services.validator import validate_recipe

logger = logging.getLogger(__name__)


@dataclass
class StructuredRecipe:
    recipe: CanonicalRecipe
    outcome: ChainOutcome


class RecipeStructurer:
    """Turns raw recipe text into a validated CanonicalRecipe."""

    def __init__(self, chain: ProviderChain):
        self._chain = chain

    def structure(self, prompt: PromptPayload, *, source_url: Optional[str] = None) -> StructuredRecipe:
        outcome = self._chain.run(prompt, check=recover_json_object)
        payload = recover_json_object(outcome.output)

        try:
            recipe = sanitize_recipe_payload(payload, source_url=source_url)
        except ValidationError as error:
            logger.error("structuring.sanitize_failed provider=%s errors=%d", outcome.provider, error.error_count())
            raise GenerationFailedError(provider=outcome.provider) from error

        if is_empty_recipe(recipe):
            logger.warning("structuring.empty_recipe provider=%s", outcome.provider)
            raise GenerationEmptyError()

        result = validate_recipe(recipe)
        if not result.ok:
            raise FinalValidationError(result.reasons)

        logger.info(
            "structuring.done title=%r ingredients=%d steps=%d provider=%s",
            recipe.title,
            recipe.ingredient_count(),
            len(recipe.instructions),
            outcome.provider,
        )
        return StructuredRecipe(recipe=recipe, outcome=outcome)
