"""Recipe content extraction from fetched HTML using BeautifulSoup."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Literal, Optional

from bs4 import BeautifulSoup

from .errors import ContentExtractionError

logger = logging.getLogger(__name__)

MIN_CONTENT_CHARS = 100
MAX_BODY_CHARS = 15000

INGREDIENT_SELECTORS = (
    ".wprm-recipe-ingredient",
    ".tasty-recipes-ingredients li",
    ".mv-create-ingredients li",
    ".recipe-ingredients li",
    ".ingredients li",
    "[itemprop='recipeIngredient']",
    "[itemprop='ingredients']",
)
INSTRUCTION_SELECTORS = (
    ".wprm-recipe-instruction-text",
    ".tasty-recipes-instructions li",
    ".mv-create-instructions li",
    ".recipe-instructions li",
    ".instructions li",
    "[itemprop='recipeInstructions'] li",
    "[itemprop='recipeInstructions']",
)
NOISE_TAGS = ("script", "style", "noscript", "nav", "footer", "header", "aside", "form", "iframe", "svg")

_WHITESPACE_RE = re.compile(r"\s+")

ExtractionMethod = Literal["json_ld", "selectors", "body_text"]


@dataclass
class PageContent:
    text: str
    method: ExtractionMethod
    title: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None


def _squash(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def _has_type(node: dict, wanted: str) -> bool:
    kind = node.get("@type")
    if isinstance(kind, list):
        return wanted in kind
    return kind == wanted


def _walk_json_ld(node: Any) -> Iterator[dict]:
    if isinstance(node, list):
        for item in node:
            yield from _walk_json_ld(item)
    elif isinstance(node, dict):
        yield node
        if "@graph" in node:
            yield from _walk_json_ld(node["@graph"])


def find_json_ld_recipe(soup: BeautifulSoup) -> Optional[dict]:
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text()
        if not raw or not raw.strip():
            continue
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.debug("html.json_ld_invalid length=%d", len(raw))
            continue
        for node in _walk_json_ld(data):
            if _has_type(node, "Recipe"):
                return node
    return None


def _instruction_lines(value: Any) -> list[str]:
    if isinstance(value, str):
        return [_squash(value)] if value.strip() else []
    if isinstance(value, list):
        lines: list[str] = []
        for item in value:
            lines.extend(_instruction_lines(item))
        return lines
    if isinstance(value, dict):
        if _has_type(value, "HowToSection"):
            lines = [f"{value['name']}:"] if value.get("name") else []
            lines.extend(_instruction_lines(value.get("itemListElement")))
            return lines
        text = value.get("text") or value.get("name")
        return [_squash(text)] if isinstance(text, str) and text.strip() else []
    return []


def _image_url(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return value or None
    if isinstance(value, list) and value:
        return _image_url(value[0])
    if isinstance(value, dict):
        return _image_url(value.get("url"))
    return None


def json_ld_to_text(recipe: dict) -> str:
    sections: list[str] = []
    if recipe.get("name"):
        sections.append(f"Title: {recipe['name']}")
    if recipe.get("description"):
        sections.append(f"Description: {_squash(str(recipe['description']))}")
    for key, label in (
        ("recipeYield", "Yield"),
        ("prepTime", "Prep time"),
        ("cookTime", "Cook time"),
        ("totalTime", "Total time"),
    ):
        value = recipe.get(key)
        if isinstance(value, list):
            value = value[0] if value else None
        if value:
            sections.append(f"{label}: {value}")

    ingredients = recipe.get("recipeIngredient") or recipe.get("ingredients") or []
    if isinstance(ingredients, list) and ingredients:
        lines = "\n".join(f"- {_squash(str(item))}" for item in ingredients if str(item).strip())
        sections.append(f"Ingredients:\n{lines}")

    steps = _instruction_lines(recipe.get("recipeInstructions"))
    if steps:
        sections.append("Instructions:\n" + "\n".join(f"{i}. {step}" for i, step in enumerate(steps, 1)))
    return "\n\n".join(sections)


def _select_texts(soup: BeautifulSoup, selectors: tuple[str, ...]) -> list[str]:
    for selector in selectors:
        texts = [_squash(node.get_text(" ")) for node in soup.select(selector)]
        texts = [text for text in texts if text]
        if texts:
            return texts
    return []


def _selector_text(soup: BeautifulSoup, title: Optional[str]) -> Optional[str]:
    ingredients = _select_texts(soup, INGREDIENT_SELECTORS)
    instructions = _select_texts(soup, INSTRUCTION_SELECTORS)
    if not ingredients or not instructions:
        return None
    parts = [f"Title: {title}"] if title else []
    parts.append("Ingredients:\n" + "\n".join(f"- {item}" for item in ingredients))
    parts.append("Instructions:\n" + "\n".join(f"{i}. {step}" for i, step in enumerate(instructions, 1)))
    return "\n\n".join(parts)


def _body_text(soup: BeautifulSoup) -> str:
    for tag in soup(list(NOISE_TAGS)):
        tag.decompose()
    root = soup.find("article") or soup.find("main") or soup.body or soup
    lines = [_squash(line) for line in root.get_text("\n").splitlines()]
    text = "\n".join(line for line in lines if line)
    return text[:MAX_BODY_CHARS]


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return str(tag["content"]).strip() or None
    return None


def extract_recipe_content(html: str, url: str = "") -> PageContent:
    """
    Pull the recipe-bearing text out of a page.

    Order: schema.org JSON-LD Recipe, common recipe-plugin selectors, then
    the visible article/body text. Raises ContentExtractionError when
    nothing usable is left.
    """
    soup = BeautifulSoup(html, "html.parser")
    page_title = _meta(soup, "og:title") or (soup.title.get_text(strip=True) if soup.title else None)
    description = _meta(soup, "og:description", "description")
    image = _meta(soup, "og:image", "twitter:image")

    recipe = find_json_ld_recipe(soup)
    if recipe is not None:
        text = json_ld_to_text(recipe)
        if len(text) >= MIN_CONTENT_CHARS:
            logger.info("html.extracted method=json_ld url=%s chars=%d", url, len(text))
            return PageContent(
                text=text,
                method="json_ld",
                title=recipe.get("name") or page_title,
                description=description,
                image=_image_url(recipe.get("image")) or image,
            )

    text = _selector_text(soup, page_title)
    if text and len(text) >= MIN_CONTENT_CHARS:
        logger.info("html.extracted method=selectors url=%s chars=%d", url, len(text))
        return PageContent(text=text, method="selectors", title=page_title, description=description, image=image)

    text = _body_text(soup)
    if len(text) < MIN_CONTENT_CHARS:
        raise ContentExtractionError(f"No recipe content found on page: {url}")
    logger.info("html.extracted method=body_text url=%s chars=%d", url, len(text))
    return PageContent(text=text, method="body_text", title=page_title, description=description, image=image)
