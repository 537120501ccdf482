# src/app/domain/models.py
"""
Domain models for the recipe ingestion pipeline.
These are plain data structures; the recipe document itself is the
pydantic CanonicalRecipe from src.app.schemas.recipes.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Literal, Optional, Union

if TYPE_CHECKING:
    from src.app.schemas.recipes import CanonicalRecipe


RecordId = Union[int, str]


class InputType(str, Enum):
    """Classification of one raw submission."""
    URL = "url"
    RAW_TEXT = "raw_text"
    VIDEO = "video"
    IMAGE = "image"
    INVALID = "invalid"


class InputMode(str, Enum):
    """Which client field the input was typed into."""
    URL = "url"
    NAME = "name"


class SourceType(str, Enum):
    ORIGINAL = "original"
    USER_MODIFIED = "user_modified"


class PipelineStage(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_CACHE = "checking_cache"
    EXTRACTING = "extracting"
    STRUCTURING = "structuring"
    FAILED = "failed"


class SubmissionState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    CHECKING_CACHE = "checking_cache"
    PARSING = "parsing"
    NAVIGATING = "navigating"


class ProviderFailure(str, Enum):
    """Why a single provider attempt did not produce usable output."""
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    MALFORMED = "malformed"
    EMPTY = "empty"
    TOO_SHORT = "too_short"
    UNAVAILABLE = "unavailable"


class CacheMatch(str, Enum):
    EXACT = "exact"
    FUZZY = "fuzzy"
    NONE = "none"


VARIATION_TYPES = ("low_fat", "higher_protein", "dairy_free", "vegetarian", "easier_recipe")


# ---------------------------------------------------------------------------
# Cache records
# ---------------------------------------------------------------------------

@dataclass
class OriginalRecord:
    """
    Canonical record produced by a successful extraction.
    Immutable apart from bookkeeping (last_processed_at, embedding).
    """
    id: RecordId
    data: "CanonicalRecipe"
    source_key: Optional[str] = None
    has_embedding: bool = False
    created_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None

    source_type: SourceType = field(default=SourceType.ORIGINAL, init=False)

    @property
    def is_user_modified(self) -> bool:
        return False

    @property
    def parent_id(self) -> None:
        return None


@dataclass
class ForkRecord:
    """User-edited derivative of another record. Never embedded."""
    id: RecordId
    data: "CanonicalRecipe"
    parent_id: RecordId
    created_at: Optional[datetime] = None
    last_processed_at: Optional[datetime] = None

    source_type: SourceType = field(default=SourceType.USER_MODIFIED, init=False)

    @property
    def is_user_modified(self) -> bool:
        return True

    @property
    def source_key(self) -> None:
        return None


CacheRecord = Union[OriginalRecord, ForkRecord]


@dataclass
class SavedPointer:
    """Row of the user_saved_recipes table pointing a user at a record."""
    id: RecordId
    user_id: str
    base_recipe_id: RecordId
    title_override: Optional[str] = None
    applied_changes: Optional[dict] = None
    folder_id: Optional[RecordId] = None


@dataclass
class SimilarMatch:
    record: OriginalRecord
    similarity: float


@dataclass
class ForkResult:
    record: ForkRecord
    pointer: Optional[SavedPointer] = None


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
        )

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens


@dataclass(frozen=True)
class ImagePage:
    data: bytes
    mime_type: str


@dataclass
class ProviderResponse:
    provider: str
    output: Optional[str] = None
    error: Optional[str] = None
    failure: Optional[ProviderFailure] = None
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def ok(self) -> bool:
        return self.failure is None and bool(self.output)


@dataclass
class RetryPolicy:
    """
    How a provider chain is walked.

    max_attempts counts provider calls across the whole chain, so the
    default of 2 means "primary once, fallback once". Attempt n uses
    providers[n % len(providers)].
    """
    max_attempts: int = 2
    backoff_seconds: float = 0.0
    backoff_multiplier: float = 2.0
    retryable: frozenset[ProviderFailure] = field(
        default_factory=lambda: frozenset(ProviderFailure)
    )

    def delay_for(self, attempt: int) -> float:
        """Delay before the given (1-based) retry attempt."""
        if attempt <= 0 or self.backoff_seconds <= 0:
            return 0.0
        return self.backoff_seconds * (self.backoff_multiplier ** (attempt - 1))

    def should_retry(self, failure: Optional[ProviderFailure], attempts_made: int) -> bool:
        if attempts_made >= self.max_attempts:
            return False
        return failure is not None and failure in self.retryable


@dataclass
class ChainOutcome:
    output: str
    provider: str
    attempts: int
    used_fallback: bool
    usage: TokenUsage


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------

@dataclass
class ValidationResult:
    ok: bool
    reasons: list[str] = field(default_factory=list)


@dataclass
class ParseDiagnostics:
    from_cache: bool = False
    cache_match: CacheMatch = CacheMatch.NONE
    stage: PipelineStage = PipelineStage.IDLE
    fetch_method: Optional[str] = None
    provider: Optional[str] = None
    used_fallback: bool = False
    timings_ms: dict[str, int] = field(default_factory=dict)
    usage: TokenUsage = field(default_factory=TokenUsage)


@dataclass
class ParseResult:
    input_type: InputType
    recipe: Optional["CanonicalRecipe"] = None
    record_id: Optional[RecordId] = None
    matches: list[SimilarMatch] = field(default_factory=list)
    cache_key: Optional[str] = None
    diagnostics: ParseDiagnostics = field(default_factory=ParseDiagnostics)


# ---------------------------------------------------------------------------
# Submission results
# ---------------------------------------------------------------------------

@dataclass
class NavigateToSummary:
    recipe: "CanonicalRecipe"
    kind: Literal["navigate_to_summary"] = "navigate_to_summary"


@dataclass
class NavigateToLoading:
    normalized_key: str
    kind: Literal["navigate_to_loading"] = "navigate_to_loading"


@dataclass
class ShowMatchModal:
    candidates: list[SimilarMatch]
    kind: Literal["show_match_modal"] = "show_match_modal"


@dataclass
class ValidationErrorResult:
    message: str
    kind: Literal["validation_error"] = "validation_error"


SubmissionResult = Union[NavigateToSummary, NavigateToLoading, ShowMatchModal, ValidationErrorResult]
