from __future__ import annotations

import json

import pytest

from src.services.errors import ContentExtractionError
from src.services.html_extract import extract_recipe_content, json_ld_to_text

JSON_LD_RECIPE = {
    "@type": "Recipe",
    "name": "Lemon Garlic Chicken",
    "description": "A weeknight  roast.",
    "image": [{"url": "https://example.com/ld.jpg"}],
    "recipeYield": ["4", "4 servings"],
    "recipeIngredient": ["4 chicken thighs", "6 cloves garlic", "1 lemon"],
    "recipeInstructions": [
        {
            "@type": "HowToSection",
            "name": "Prep",
            "itemListElement": [{"@type": "HowToStep", "text": "Heat the oven to 200C."}],
        },
        {"@type": "HowToStep", "text": "Roast the chicken for 40 minutes."},
    ],
}


def page(head: str = "", body: str = "") -> str:
    return f"<html><head><title>Page Title</title>{head}</head><body>{body}</body></html>"


class TestJsonLd:
    def test_graph_recipe(self) -> None:
        graph = {"@context": "https://schema.org", "@graph": [{"@type": "WebPage"}, JSON_LD_RECIPE]}
        html = page(
            head=(
                '<meta property="og:image" content="https://example.com/og.jpg">'
                f'<script type="application/ld+json">{json.dumps(graph)}</script>'
            )
        )

        content = extract_recipe_content(html, "https://example.com/r")

        assert content.method == "json_ld"
        assert content.title == "Lemon Garlic Chicken"
        assert content.image == "https://example.com/ld.jpg"
        assert "- 6 cloves garlic" in content.text
        assert "Prep:" in content.text
        assert "2. Heat the oven to 200C." in content.text
        assert "Yield: 4" in content.text

    def test_invalid_json_ld_is_skipped(self) -> None:
        items = "".join(f'<li class="wprm-recipe-ingredient">{i} cups flour for the dough</li>' for i in range(4))
        steps = "".join(f'<div class="wprm-recipe-instruction-text">Step number {i} of the bake.</div>' for i in range(3))
        html = page(head='<script type="application/ld+json">{not json</script>', body=items + steps)

        assert extract_recipe_content(html).method == "selectors"

    def test_to_text_squashes_whitespace(self) -> None:
        assert "Description: A weeknight roast." in json_ld_to_text(JSON_LD_RECIPE)


class TestFallbacks:
    def test_selectors(self) -> None:
        ingredients = "".join(f"<li>{name}</li>" for name in ("2 eggs", "100 g sugar", "200 g flour"))
        steps = "".join(f"<li>{step}</li>" for step in ("Whisk eggs and sugar.", "Fold in the flour.", "Bake for 25 minutes."))
        html = page(
            head='<meta name="description" content="Simple sponge">',
            body=f'<ul class="recipe-ingredients">{ingredients}</ul><ol class="recipe-instructions">{steps}</ol>',
        )

        content = extract_recipe_content(html)

        assert content.method == "selectors"
        assert content.description == "Simple sponge"
        assert content.text.startswith("Title: Page Title")
        assert "3. Bake for 25 minutes." in content.text

    def test_body_text_drops_noise(self) -> None:
        article = "<article>" + "<p>Mix the flour, the eggs and the milk into a smooth batter.</p>" * 3 + "</article>"
        html = page(body='<nav>Home | About</nav><script>var x = 1;</script>' + article)

        content = extract_recipe_content(html)

        assert content.method == "body_text"
        assert "Home" not in content.text
        assert "var x" not in content.text

    def test_nothing_usable(self) -> None:
        with pytest.raises(ContentExtractionError):
            extract_recipe_content(page(body="<p>Cookies?</p>"), "https://example.com/empty")
