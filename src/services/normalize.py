from __future__ import annotations

from typing import Any, Dict, List, Optional

from src.app.schemas.recipes import (
    MAX_NOTE_LENGTH,
    CanonicalRecipe,
    Ingredient,
    IngredientGroup,
    InstructionStep,
    Substitution,
)
from src.services.quantities import normalize_servings, parse_amount

_TEXT_KEYS = ("text", "step", "description", "instruction")


def _clean_str(value: Any) -> Optional[str]:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return None


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None or len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + "…"


def _sanitize_substitutions(value: Any) -> Optional[List[Substitution]]:
    if not isinstance(value, list):
        return None
    out: List[Substitution] = []
    for entry in value:
        if isinstance(entry, str):
            name = _clean_str(entry)
            if name:
                out.append(Substitution(name=name))
            continue
        if not isinstance(entry, dict):
            continue
        name = _clean_str(entry.get("name"))
        if not name:
            continue
        out.append(
            Substitution(
                name=name,
                amount=parse_amount(entry.get("amount")),
                unit=_clean_str(entry.get("unit")),
                description=_clean_str(entry.get("description")),
            )
        )
    return out or None


def _sanitize_ingredient(entry: Any) -> Optional[Ingredient]:
    if isinstance(entry, str):
        name = _clean_str(entry)
        return Ingredient(name=name) if name else None
    if not isinstance(entry, dict):
        return None
    name = _clean_str(entry.get("name"))
    if not name:
        return None
    substitutions = entry.get("suggested_substitutions", entry.get("substitutions"))
    return Ingredient(
        name=name,
        amount=parse_amount(entry.get("amount", entry.get("quantity"))),
        unit=_clean_str(entry.get("unit")),
        preparation=_clean_str(entry.get("preparation") or entry.get("notes")),
        suggested_substitutions=_sanitize_substitutions(substitutions),
    )


def _sanitize_group(entry: Any) -> Optional[IngredientGroup]:
    if not isinstance(entry, dict):
        return None
    ingredients = [
        ingredient
        for ingredient in (_sanitize_ingredient(item) for item in entry.get("ingredients") or [])
        if ingredient is not None
    ]
    if not ingredients:
        return None
    return IngredientGroup(
        name=_clean_str(entry.get("name") or entry.get("heading")),
        ingredients=ingredients,
    )


def sanitize_ingredient_groups(payload: Dict[str, Any]) -> List[IngredientGroup]:
    groups = payload.get("ingredientGroups")
    if isinstance(groups, list):
        return [group for group in (_sanitize_group(g) for g in groups) if group is not None]

    flat = payload.get("ingredients")
    if isinstance(flat, list):
        group = _sanitize_group({"name": None, "ingredients": flat})
        return [group] if group else []
    return []


def sanitize_step(entry: Any) -> Optional[InstructionStep]:
    """Turn a provider step (bare string or dict) into an InstructionStep."""
    if isinstance(entry, str):
        text = _clean_str(entry)
        return InstructionStep(text=text) if text else None
    if not isinstance(entry, dict):
        return None

    text = next((_clean_str(entry.get(key)) for key in _TEXT_KEYS if _clean_str(entry.get(key))), None)
    if not text:
        return None
    step_id = _clean_str(entry.get("id"))
    note = _truncate(_clean_str(entry.get("note")), MAX_NOTE_LENGTH)
    if step_id:
        return InstructionStep(id=step_id, text=text, note=note)
    return InstructionStep(text=text, note=note)


def sanitize_instructions(value: Any) -> List[InstructionStep]:
    if isinstance(value, str):
        value = [line for line in value.splitlines() if line.strip()]
    if not isinstance(value, list):
        return []
    return [step for step in (sanitize_step(item) for item in value) if step is not None]


def _sanitize_tips(value: Any) -> Optional[str]:
    if isinstance(value, list):
        tips = [tip for tip in (_clean_str(item) for item in value) if tip]
        return "\n".join(tips) or None
    return _clean_str(value) if isinstance(value, str) else None


def sanitize_recipe_payload(payload: Dict[str, Any], *, source_url: Optional[str] = None) -> CanonicalRecipe:
    """
    Build a CanonicalRecipe from loosely-shaped provider output.

    Unknown keys are dropped, bare-string instructions get fresh step ids,
    amounts become floats and the yield is reduced to its first number.
    Any id coming from the provider is discarded.
    """
    nutrition = payload.get("nutrition")
    return CanonicalRecipe(
        title=_clean_str(payload.get("title") or payload.get("name")) or "",
        shortDescription=_clean_str(payload.get("shortDescription")),
        description=_clean_str(payload.get("description")),
        ingredientGroups=sanitize_ingredient_groups(payload),
        instructions=sanitize_instructions(payload.get("instructions")),
        recipeYield=normalize_servings(payload.get("recipeYield") or payload.get("servings")),
        prepTime=_clean_str(payload.get("prepTime")),
        cookTime=_clean_str(payload.get("cookTime")),
        totalTime=_clean_str(payload.get("totalTime")),
        nutrition=nutrition if isinstance(nutrition, dict) and nutrition else None,
        tips=_sanitize_tips(payload.get("tips")),
        image=_clean_str(payload.get("image")),
        thumbnailUrl=_clean_str(payload.get("thumbnailUrl")),
        sourceUrl=source_url or _clean_str(payload.get("sourceUrl")),
    )


def is_empty_recipe(recipe: CanonicalRecipe) -> bool:
    return not recipe.title.strip() and recipe.ingredient_count() == 0 and not recipe.instructions
