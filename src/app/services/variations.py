# src/app/services/variations.py
"""
Dietary and difficulty variations of a stored recipe.

A variation is generated from the parent document, merged with the parent's
substitution hints, and stored as a fork of the parent.
"""
from __future__ import annotations

import logging
import re
from difflib import SequenceMatcher
from typing import Optional

from src.app.domain.errors import FinalValidationError, InvalidInputError
from src.app.domain.models import VARIATION_TYPES, ForkResult, RecordId
from src.app.schemas.recipes import CanonicalRecipe, Ingredient
from src.app.services.recipe_store import RecipeStore
from src.app.services.structuring import RecipeStructurer
from src.services.prompts import build_variation_prompt

logger = logging.getLogger(__name__)

NAME_MATCH_RATIO = 0.85

MEAT_KEYWORDS = (
    "anchovy", "anchovies", "bacon", "beef", "bone broth", "brisket", "chicken", "chorizo",
    "clam", "cod", "crab", "duck", "fish", "gelatin", "gelatine", "ham", "lamb", "lard",
    "lobster", "meat", "meatball", "mince", "mussel", "oyster", "pancetta", "pepperoni", "pork",
    "prawn", "prosciutto", "salami", "salmon", "sausage", "scallop", "shrimp", "steak",
    "tuna", "turkey", "veal", "venison", "worcestershire",
)
_MEAT_RE = re.compile(r"\b(?:" + "|".join(re.escape(word) for word in MEAT_KEYWORDS) + r")(?:e?s)?\b", re.IGNORECASE)
_QUALIFIER_BEFORE_RE = re.compile(
    r"\b(?:vegan|vegetarian|veggie|plant[- ]based|meatless|meat[- ]free|imitation|mock|faux)[\s-]+$", re.IGNORECASE
)
_FREE_AFTER_RE = re.compile(r"[\s-]free\b", re.IGNORECASE)


def contains_meat(text: str) -> bool:
    """
    True when any meat or fish word in text is not directly qualified as a
    substitute ("vegan chicken", "meat-free mince", "meatless"). A qualifier
    elsewhere in the text does not excuse an unqualified match.
    """
    for match in _MEAT_RE.finditer(text):
        if _QUALIFIER_BEFORE_RE.search(text[: match.start()]):
            continue
        if _FREE_AFTER_RE.match(text, match.end()):
            continue
        return True
    return False


def ingredient_contains_meat(ingredient: Ingredient) -> bool:
    return any(contains_meat(part) for part in (ingredient.name, ingredient.preparation) if part)


def find_meat_ingredients(recipe: CanonicalRecipe) -> list[str]:
    return [ingredient.name for ingredient in recipe.iter_ingredients() if ingredient_contains_meat(ingredient)]


def _name_ratio(left: str, right: str) -> float:
    return SequenceMatcher(None, left.lower().strip(), right.lower().strip()).ratio()


def _closest_parent(ingredient: Ingredient, parent: CanonicalRecipe) -> Optional[Ingredient]:
    best: Optional[Ingredient] = None
    best_ratio = 0.0
    for candidate in parent.iter_ingredients():
        ratio = _name_ratio(ingredient.name, candidate.name)
        if ratio > best_ratio:
            best, best_ratio = candidate, ratio
    return best if best_ratio >= NAME_MATCH_RATIO else None


def _is_unchanged(original: Ingredient, new: Ingredient, variation_type: str) -> bool:
    if variation_type == "vegetarian" and ingredient_contains_meat(original):
        return False
    return original.amount == new.amount and (original.unit or "") == (new.unit or "")


def merge_substitutions(parent: CanonicalRecipe, variation: CanonicalRecipe, variation_type: str) -> CanonicalRecipe:
    """
    Carry the parent's substitution hints onto ingredients the variation left
    untouched. Changed ingredients keep whatever the provider suggested.
    """
    groups = []
    kept = 0
    for group in variation.ingredientGroups:
        ingredients = []
        for ingredient in group.ingredients:
            original = _closest_parent(ingredient, parent)
            if original is not None and _is_unchanged(original, ingredient, variation_type):
                ingredient = ingredient.model_copy(update={"suggested_substitutions": original.suggested_substitutions})
                kept += 1
            ingredients.append(ingredient)
        groups.append(group.model_copy(update={"ingredients": ingredients}))

    logger.info("variation.merge type=%s unchanged=%d total=%d", variation_type, kept, variation.ingredient_count())
    return variation.model_copy(update={"ingredientGroups": groups})


class VariationService:
    def __init__(self, store: RecipeStore, structurer: RecipeStructurer):
        self._store = store
        self._structurer = structurer

    def create(
        self,
        record_id: RecordId,
        variation_type: str,
        *,
        user_id: Optional[str] = None,
        saved_id: Optional[RecordId] = None,
        folder_id: Optional[RecordId] = None,
    ) -> ForkResult:
        if variation_type not in VARIATION_TYPES:
            raise InvalidInputError(f"Unknown variation type: {variation_type}")

        parent = self._store.get(record_id)
        prompt = build_variation_prompt(parent.data.model_dump(mode="json", exclude={"id"}), variation_type)
        structured = self._structurer.structure(prompt, source_url=parent.data.sourceUrl)
        variation = merge_substitutions(parent.data, structured.recipe, variation_type)

        if variation_type == "vegetarian":
            offending = find_meat_ingredients(variation)
            if offending:
                logger.warning("variation.rejected type=vegetarian parent=%s offending=%s", parent.id, offending)
                raise FinalValidationError(
                    [f"Contains meat or fish: {name}" for name in offending],
                    message="The vegetarian version still contains meat or fish. Please try again.",
                )

        variation = variation.model_copy(
            update={"image": variation.image or parent.data.image, "thumbnailUrl": variation.thumbnailUrl or parent.data.thumbnailUrl}
        )
        result = self._store.fork(
            parent.id,
            variation,
            {"variation": variation_type},
            user_id=user_id,
            saved_id=saved_id,
            folder_id=folder_id,
        )
        logger.info("variation.created type=%s parent=%s fork=%s", variation_type, parent.id, result.record.id)
        return result
