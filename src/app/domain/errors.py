from __future__ import annotations

from enum import Enum


class ParseErrorCode(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    GENERATION_FAILED = "GENERATION_FAILED"
    GENERATION_EMPTY = "GENERATION_EMPTY"
    FINAL_VALIDATION_FAILED = "FINAL_VALIDATION_FAILED"
    NEEDS_FORK = "NEEDS_FORK"
    NOT_FOUND = "NOT_FOUND"
    PERSISTENCE_FAILED = "PERSISTENCE_FAILED"


class IngestionError(Exception):
    """Terminal failure of one submission, carrying a caller-safe message."""

    code: ParseErrorCode = ParseErrorCode.GENERATION_FAILED
    http_status: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class InvalidInputError(IngestionError):
    code = ParseErrorCode.INVALID_INPUT
    http_status = 400


class GenerationFailedError(IngestionError):
    code = ParseErrorCode.GENERATION_FAILED
    http_status = 500

    def __init__(self, message: str = "Could not process the recipe. Please try again.", provider: str | None = None):
        super().__init__(message)
        self.provider = provider


class GenerationEmptyError(IngestionError):
    code = ParseErrorCode.GENERATION_EMPTY
    http_status = 422

    def __init__(self, message: str = "No recipe content could be found in this input."):
        super().__init__(message)


class FinalValidationError(IngestionError):
    code = ParseErrorCode.FINAL_VALIDATION_FAILED
    http_status = 422

    def __init__(self, reasons: list[str], message: str | None = None):
        super().__init__(message or f"Recipe failed validation: {'; '.join(reasons)}")
        self.reasons = reasons


class NeedsForkError(IngestionError):
    code = ParseErrorCode.NEEDS_FORK
    http_status = 409

    def __init__(self, record_id: int | str):
        super().__init__(f"Recipe {record_id} is an original and must be forked before editing")
        self.record_id = record_id


class RecordNotFoundError(IngestionError):
    code = ParseErrorCode.NOT_FOUND
    http_status = 404

    def __init__(self, record_id: int | str):
        super().__init__(f"Recipe not found: {record_id}")
        self.record_id = record_id


class PersistenceError(IngestionError):
    code = ParseErrorCode.PERSISTENCE_FAILED
    http_status = 500

    def __init__(self, operation: str, reason: str):
        super().__init__(f"Could not save the recipe ({operation}). Please try again.")
        self.operation = operation
        self.reason = reason


class RecipeRepositoryError(Exception):
    def __init__(self, operation: str, reason: str):
        super().__init__(f"Recipe repository error during {operation}: {reason}")
        self.operation = operation
        self.reason = reason


class DuplicateSourceKeyError(RecipeRepositoryError):
    def __init__(self, source_key: str):
        super().__init__("insert", f"source key already stored: {source_key}")
        self.source_key = source_key
