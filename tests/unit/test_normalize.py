from __future__ import annotations

from src.app.schemas.recipes import CanonicalRecipe
from src.services.normalize import (
    is_empty_recipe,
    sanitize_instructions,
    sanitize_recipe_payload,
    sanitize_step,
)


class TestSanitizeRecipePayload:
    def test_loose_payload(self) -> None:
        payload = {
            "id": 99,
            "name": "  Tomato Soup ",
            "ingredients": [
                "salt",
                {"name": "water", "amount": "1 1/2", "unit": "cups"},
                {"name": "", "amount": 3},
                {"name": "basil", "substitutions": ["parsley", {"name": "oregano", "amount": "1/2"}]},
            ],
            "instructions": "Boil the water.\n\nServe hot.",
            "servings": "4-6",
            "tips": "Salt well",
            "unknown": "dropped",
        }
        recipe = sanitize_recipe_payload(payload, source_url="https://example.com/soup")

        assert recipe.id is None
        assert recipe.title == "Tomato Soup"
        assert recipe.sourceUrl == "https://example.com/soup"
        assert recipe.recipeYield == "4"
        assert recipe.tips == "Salt well"
        names = [ingredient.name for ingredient in recipe.iter_ingredients()]
        assert names == ["salt", "water", "basil"]
        water = recipe.ingredientGroups[0].ingredients[1]
        assert water.amount == 1.5
        basil = recipe.ingredientGroups[0].ingredients[2]
        assert [sub.name for sub in basil.suggested_substitutions] == ["parsley", "oregano"]
        assert basil.suggested_substitutions[1].amount == 0.5
        assert [step.text for step in recipe.instructions] == ["Boil the water.", "Serve hot."]
        assert all(step.id.startswith("step-") for step in recipe.instructions)

    def test_grouped_payload_drops_empty_groups(self) -> None:
        recipe = sanitize_recipe_payload(
            {
                "title": "Cake",
                "ingredientGroups": [
                    {"heading": "Batter", "ingredients": [{"name": "flour", "amount": 200, "unit": "g"}]},
                    {"name": "Empty", "ingredients": []},
                ],
            }
        )
        assert len(recipe.ingredientGroups) == 1
        assert recipe.ingredientGroups[0].name == "Batter"

    def test_tip_list_is_joined(self) -> None:
        recipe = sanitize_recipe_payload({"title": "Cake", "tips": ["Use room temperature eggs", " ", "Cool fully"]})
        assert recipe.tips == "Use room temperature eggs\nCool fully"


class TestSanitizeStep:
    def test_keeps_given_id(self) -> None:
        step = sanitize_step({"id": "step-1", "text": "Mix."})
        assert step.id == "step-1"

    def test_alternate_text_key(self) -> None:
        assert sanitize_step({"instruction": "Bake."}).text == "Bake."

    def test_long_note_is_truncated(self) -> None:
        step = sanitize_step({"text": "Mix.", "note": "x" * 250})
        assert len(step.note) <= 100

    def test_blank_is_dropped(self) -> None:
        assert sanitize_step("   ") is None
        assert sanitize_step({"note": "only a note"}) is None
        assert sanitize_instructions([None, 3, "Stir."])[0].text == "Stir."


class TestIsEmptyRecipe:
    def test_empty(self) -> None:
        assert is_empty_recipe(CanonicalRecipe())

    def test_title_only_is_not_empty(self) -> None:
        assert not is_empty_recipe(CanonicalRecipe(title="Soup"))
