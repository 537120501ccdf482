from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Optional

from src.app.domain.models import ImagePage

RECIPE_JSON_SHAPE = """{
  "title": "string",
  "shortDescription": "string, one sentence",
  "ingredientGroups": [
    {
      "name": "string, group heading or null",
      "ingredients": [
        {
          "name": "string",
          "amount": "number as string, e.g. \\"0.5\\", or null",
          "unit": "string or null",
          "preparation": "string or null",
          "suggested_substitutions": [
            {"name": "string", "amount": "string or null", "unit": "string or null", "description": "string"}
          ]
        }
      ]
    }
  ],
  "instructions": ["string, one step per entry"],
  "recipeYield": "string or null",
  "prepTime": "string or null",
  "cookTime": "string or null",
  "totalTime": "string or null",
  "nutrition": {"calories": "string", "protein": "string"},
  "tips": "string or null"
}"""

STRUCTURING_SYSTEM_PROMPT = f"""You turn recipe source material into one JSON object.

Rules:
- Answer with JSON only, no markdown and no commentary.
- Use this exact shape:
{RECIPE_JSON_SHAPE}
- Keep ingredient names short; quantities go in "amount", units in "unit",
  and cutting or cooking notes in "preparation".
- Write fractions as decimals in "amount" ("1/2" becomes "0.5").
- Group ingredients only when the source groups them; otherwise use a
  single group with "name": null.
- Each instruction is one action. Do not number the steps.
- Give one or two common substitutions for ingredients that have them.
- Never invent a recipe: if the material holds no recipe, return
  {{"title": "", "ingredientGroups": [], "instructions": []}}.
"""

IMAGE_EXTRACTION_PROMPT = """Transcribe every piece of recipe text visible in these images.
Keep the original order across pages, keep quantities exactly as written,
and separate the title, ingredient list and method with blank lines.
Return plain text only. If no recipe is visible, return an empty response."""

_VARIATION_GOALS = {
    "low_fat": "Reduce total fat: swap fatty cuts, cream, butter and oil for leaner options and lighter cooking methods.",
    "higher_protein": "Raise the protein content with lean meats, legumes, dairy or eggs without changing the character of the dish.",
    "dairy_free": "Remove every dairy ingredient (milk, butter, cream, cheese, yogurt) and use non-dairy replacements.",
    "vegetarian": "Remove all meat, poultry, fish, seafood and any stock, broth, sauce or fat made from them. Use vegetarian replacements.",
    "easier_recipe": "Simplify the method: fewer steps, fewer pans, common supermarket ingredients, same end result.",
}


@dataclass
class PromptPayload:
    """Everything a provider needs for one call."""
    user: str
    system: Optional[str] = None
    images: list[ImagePage] = field(default_factory=list)
    expect_json: bool = False


def build_text_prompt(raw_text: str) -> PromptPayload:
    user = (
        "Create a complete recipe for the dish described below. If it is only a dish name, "
        "write a well-known, reliable version of it.\n\n"
        f"## INPUT\n{raw_text.strip()}"
    )
    return PromptPayload(user=user, system=STRUCTURING_SYSTEM_PROMPT, expect_json=True)


def build_url_prompt(page_text: str, source_url: str) -> PromptPayload:
    user = (
        "Extract the recipe from this web page content. Ignore comments, ads and "
        "unrelated stories.\n\n"
        f"## SOURCE URL\n{source_url}\n\n## PAGE CONTENT\n{page_text.strip()}"
    )
    return PromptPayload(user=user, system=STRUCTURING_SYSTEM_PROMPT, expect_json=True)


def build_video_prompt(video_text: str, source_url: str) -> PromptPayload:
    user = (
        "Extract the recipe shown in this video. The transcript has priority for "
        "quantities; the description usually lists the ingredients.\n\n"
        f"## SOURCE URL\n{source_url}\n\n{video_text.strip()}"
    )
    return PromptPayload(user=user, system=STRUCTURING_SYSTEM_PROMPT, expect_json=True)


def build_image_text_prompt(extracted_text: str) -> PromptPayload:
    user = (
        "The text below was transcribed from photos of a recipe. Structure it "
        "without adding ingredients that are not there.\n\n"
        f"## TRANSCRIBED TEXT\n{extracted_text.strip()}"
    )
    return PromptPayload(user=user, system=STRUCTURING_SYSTEM_PROMPT, expect_json=True)


def build_image_extraction_prompt(pages: list[ImagePage]) -> PromptPayload:
    return PromptPayload(user=IMAGE_EXTRACTION_PROMPT, images=list(pages))


def build_variation_prompt(recipe: dict[str, Any], variation_type: str) -> PromptPayload:
    goal = _VARIATION_GOALS[variation_type]
    user = (
        f"Rewrite this recipe as a {variation_type.replace('_', ' ')} variation.\n"
        f"Goal: {goal}\n"
        "Keep the title recognisable, keep unchanged ingredients exactly as they are, "
        "and update the instructions to match the new ingredients.\n\n"
        f"## RECIPE\n{json.dumps(recipe, ensure_ascii=False, indent=2)}"
    )
    return PromptPayload(user=user, system=STRUCTURING_SYSTEM_PROMPT, expect_json=True)


INSTRUCTION_EDIT_SYSTEM_PROMPT = """You are an expert recipe editor. You rewrite cooking instructions so they
match a changed ingredient list. Answer with one JSON object and nothing else."""

_SUBSTITUTION_RULES = """SUBSTITUTION RULES:
- REMOVE: drop every mention of the ingredient as if it was never there, and fix the wording, prep and timing around it.
- REPLACE: use the substitute instead, adjusting prep, timing or temperature where it cooks differently.
- Write natural steps. Never say "omit" or "instead"."""

_SCALING_RULES = """SCALING RULES:
- Only change quantities that are written out in a step (e.g. "2 cups flour"). Leave "the onion" or "some salt" alone.
- Use the scaled quantity exactly when it is numeric.
- Round whole items (eggs, bay leaves, cinnamon sticks) up to a sensible count."""

_TITLE_RULE = """TITLE:
Set "newTitle" only when a defining ingredient (the main protein, the featured fruit, an ingredient named in
the title) is replaced or removed, e.g. chicken -> tofu quesadillas becomes "Tofu Quesadillas". Otherwise null.
Scaling alone never changes the title."""


def _format_amount(value: Optional[float]) -> str:
    if value is None:
        return ""
    return str(int(value)) if float(value).is_integer() else f"{value:g}"


def describe_ingredient(ingredient: Any) -> str:
    """'1.5 cups flour (sifted)' from an Ingredient-like object."""
    parts = [_format_amount(getattr(ingredient, "amount", None)), getattr(ingredient, "unit", None) or "", ingredient.name]
    text = " ".join(part for part in parts if part)
    preparation = getattr(ingredient, "preparation", None)
    return f"{text} ({preparation})" if preparation else text


def _steps_block(instructions: list[str]) -> str:
    return "\n".join(f"- {step}" for step in instructions)


def _scaling_block(original: list[Any], scaled: list[Any], factor: Optional[float] = None) -> str:
    label = f"Scaled ingredients ({factor:g}x)" if factor else "Scaled ingredients"
    return (
        f"Original ingredients: [{', '.join(describe_ingredient(i) for i in original)}]\n"
        f"{label}: [{', '.join(describe_ingredient(i) for i in scaled)}]"
    )


def build_modification_prompt(
    instructions: list[str],
    changes: list[tuple[str, Any]],
    original_ingredients: list[Any],
    scaled_ingredients: list[Any],
    scaling_factor: float,
    *,
    keep_title: bool = False,
) -> PromptPayload:
    """
    changes holds (ingredient name, replacement) pairs; a replacement of
    None removes the ingredient.
    """
    sections: list[str] = []
    if changes:
        lines = []
        for name, replacement in changes:
            if replacement is None:
                base = name.split()[-1]
                aliases = [f'"{alias}"' for alias in dict.fromkeys([base, f"grated {base}"]) if alias.lower() != name.lower()]
                lines.append(f'REMOVE: "{name}"' + (f"\nALSO REMOVE if referred to as: {', '.join(aliases)}" if aliases else ""))
            else:
                lines.append(f'REPLACE: "{name}" -> "{describe_ingredient(replacement)}"')
        sections.append("INGREDIENT SUBSTITUTIONS:\n" + "\n".join(lines))
        sections.append(_SUBSTITUTION_RULES)
    if scaling_factor != 1:
        sections.append("QUANTITY SCALING:\n" + _scaling_block(original_ingredients, scaled_ingredients, scaling_factor))
        sections.append(_SCALING_RULES)
    if changes and scaling_factor != 1:
        sections.append("Consider both changes together: cooking times and pan sizes may need adjusting for the new ingredient and the new quantity.")
    sections.append('TITLE:\nKeep "newTitle" null; the user already chose a title.' if keep_title else _TITLE_RULE)

    user = (
        "\n\n".join(sections)
        + "\n\nKeep the step order and do not number the steps.\n"
        + 'Return: {"modifiedInstructions": ["string"], "newTitle": "string or null"}\n\n'
        + f"## INSTRUCTIONS\n{_steps_block(instructions)}"
    )
    return PromptPayload(user=user, system=INSTRUCTION_EDIT_SYSTEM_PROMPT, expect_json=True)


def build_scaling_prompt(instructions: list[str], original_ingredients: list[Any], scaled_ingredients: list[Any]) -> PromptPayload:
    user = (
        "Rewrite the instructions for the new ingredient quantities.\n\n"
        f"{_scaling_block(original_ingredients, scaled_ingredients)}\n\n"
        f"{_SCALING_RULES}\n\n"
        'Return: {"scaledInstructions": ["string"]} with the same number of steps.\n\n'
        f"## INSTRUCTIONS\n{_steps_block(instructions)}"
    )
    return PromptPayload(user=user, system=INSTRUCTION_EDIT_SYSTEM_PROMPT, expect_json=True)
