from __future__ import annotations

from typing import Any, Literal, Optional, Union
from uuid import uuid4

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from src.app.domain.models import InputMode
from src.services.quantities import parse_amount

MAX_NOTE_LENGTH = 100


def new_step_id() -> str:
    return f"step-{uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Canonical recipe document
# ---------------------------------------------------------------------------

class Substitution(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    amount: Optional[float] = None
    unit: Optional[str] = None
    description: Optional[str] = None

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Optional[float]:
        return parse_amount(value)


class Ingredient(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    amount: Optional[float] = None
    unit: Optional[str] = None
    preparation: Optional[str] = None
    suggested_substitutions: Optional[list[Substitution]] = Field(
        default=None,
        validation_alias=AliasChoices("suggested_substitutions", "substitutions"),
    )

    @field_validator("amount", mode="before")
    @classmethod
    def _coerce_amount(cls, value: Any) -> Optional[float]:
        return parse_amount(value)


class IngredientGroup(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: Optional[str] = Field(default=None, validation_alias=AliasChoices("name", "heading"))
    ingredients: list[Ingredient] = Field(default_factory=list)


class InstructionStep(BaseModel):
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    id: str = Field(default_factory=new_step_id, min_length=1)
    text: str = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=MAX_NOTE_LENGTH)


class CanonicalRecipe(BaseModel):
    """Structured recipe document stored as recipe_data."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[int, str]] = None
    title: str = ""
    shortDescription: Optional[str] = None
    description: Optional[str] = None
    ingredientGroups: list[IngredientGroup] = Field(default_factory=list)
    instructions: list[InstructionStep] = Field(default_factory=list)
    recipeYield: Optional[str] = None
    prepTime: Optional[str] = None
    cookTime: Optional[str] = None
    totalTime: Optional[str] = None
    nutrition: Optional[dict[str, Any]] = None
    tips: Optional[str] = None
    image: Optional[str] = None
    thumbnailUrl: Optional[str] = None
    sourceUrl: Optional[str] = None

    def ingredient_count(self) -> int:
        return sum(len(group.ingredients) for group in self.ingredientGroups)

    def iter_ingredients(self):
        for group in self.ingredientGroups:
            yield from group.ingredients


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------

class ParseRequest(BaseModel):
    input: str = Field(..., description="Recipe URL or free-form dish text")
    mode: Optional[InputMode] = Field(default=None, description="Client field the input came from")
    forceNewParse: bool = False


class ImagePayload(BaseModel):
    mimeType: str = Field(..., description="image/jpeg, image/png, image/webp, image/gif or application/pdf")
    data: str = Field(..., description="Base64 encoded bytes")


class ParseImageRequest(BaseModel):
    image: ImagePayload


class ParseImagesRequest(BaseModel):
    pages: list[ImagePayload] = Field(..., min_length=1, description="Pages in reading order")


class SaveModifiedRequest(BaseModel):
    originalRecipeId: Union[int, str]
    modifiedRecipeData: dict[str, Any]
    appliedChanges: Optional[Union[dict[str, Any], str]] = None
    folderId: Optional[Union[int, str]] = None
    savedId: Optional[Union[int, str]] = None


class PatchRecipeRequest(BaseModel):
    patch: dict[str, Any] = Field(..., description="Fields to shallow-merge into the recipe")


class VariationRequest(BaseModel):
    variationType: Literal["low_fat", "higher_protein", "dairy_free", "vegetarian", "easier_recipe"]
    savedId: Optional[Union[int, str]] = None
    folderId: Optional[Union[int, str]] = None


class IngredientChangeIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(..., alias="from", min_length=1)
    to: Optional[Union[str, Ingredient]] = Field(default=None, description="Replacement; empty removes the ingredient")

    def replacement(self) -> Optional[Ingredient]:
        if isinstance(self.to, Ingredient):
            return self.to
        if isinstance(self.to, str) and self.to.strip():
            return Ingredient(name=self.to.strip())
        return None


class RewriteInstructionsRequest(BaseModel):
    originalInstructions: list[str]
    substitutions: list[IngredientChangeIn] = Field(default_factory=list)
    originalIngredients: list[Ingredient] = Field(default_factory=list)
    scaledIngredients: list[Ingredient] = Field(default_factory=list)
    scalingFactor: float = 1.0
    keepTitle: bool = False


class ScaleInstructionsRequest(BaseModel):
    instructionsToScale: list[str]
    originalIngredients: list[Ingredient] = Field(default_factory=list)
    scaledIngredients: list[Ingredient] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

class MatchView(BaseModel):
    recipe: CanonicalRecipe
    similarity: float


class DiagnosticsView(BaseModel):
    fromCache: bool
    cacheMatch: str
    stage: str
    fetchMethod: Optional[str] = None
    provider: Optional[str] = None
    usedFallback: bool = False
    timingsMs: dict[str, int] = Field(default_factory=dict)
    inputTokens: int = 0
    outputTokens: int = 0


class ParseResponse(BaseModel):
    inputType: str
    recipe: Optional[CanonicalRecipe] = None
    matches: list[MatchView] = Field(default_factory=list)
    cacheKey: Optional[str] = None
    diagnostics: DiagnosticsView


class RecordView(BaseModel):
    id: Union[int, str]
    parentId: Optional[Union[int, str]] = None
    sourceType: str
    isUserModified: bool
    sourceKey: Optional[str] = None
    recipe: CanonicalRecipe
    createdAt: Optional[str] = None
    lastProcessedAt: Optional[str] = None


class SaveModifiedResponse(BaseModel):
    record: RecordView
    savedId: Optional[Union[int, str]] = None


class RewriteInstructionsResponse(BaseModel):
    rewrittenInstructions: list[str]
    newTitle: Optional[str] = None
    provider: Optional[str] = None
    inputTokens: int = 0
    outputTokens: int = 0


class ScaleInstructionsResponse(BaseModel):
    scaledInstructions: list[str]
    provider: Optional[str] = None
    inputTokens: int = 0
    outputTokens: int = 0
