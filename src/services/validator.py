from __future__ import annotations

import logging
from typing import Optional

from src.app.domain.models import ValidationResult
from src.app.schemas.recipes import CanonicalRecipe

logger = logging.getLogger(__name__)

SOFT_FIELDS = ("recipeYield", "prepTime", "cookTime", "totalTime")


def validate_recipe(candidate: Optional[CanonicalRecipe]) -> ValidationResult:
    """
    Gate a structured recipe before it is persisted.

    Hard failures: null candidate, empty title, no ingredients across all
    groups, no instruction steps. Missing yield or timings are only logged.
    """
    if candidate is None:
        logger.warning("validator.rejected reasons=%s", ["Recipe object is null"])
        return ValidationResult(ok=False, reasons=["Recipe object is null"])

    reasons: list[str] = []
    if not (candidate.title or "").strip():
        reasons.append("Missing title")
    if candidate.ingredient_count() < 1:
        reasons.append("Missing ingredients")
    if not any((step.text or "").strip() for step in candidate.instructions):
        reasons.append("Missing instructions")

    if reasons:
        logger.warning("validator.rejected title=%r reasons=%s", candidate.title, reasons)
        return ValidationResult(ok=False, reasons=reasons)

    missing_soft = [name for name in SOFT_FIELDS if not getattr(candidate, name)]
    if missing_soft:
        logger.info("validator.missing_optional title=%r fields=%s", candidate.title, missing_soft)
    return ValidationResult(ok=True)
