from __future__ import annotations

import threading
from typing import Optional

from src.app.domain.errors import GenerationFailedError
from src.app.domain.models import (
    InputMode,
    InputType,
    NavigateToLoading,
    NavigateToSummary,
    ParseResult,
    ShowMatchModal,
    SimilarMatch,
    SubmissionState,
    ValidationErrorResult,
)
from src.app.schemas.recipes import CanonicalRecipe
from src.app.services.submission import RecipeSubmission
from tests.unit.stubs import RecipeRepositoryStub, create_test_recipe


class GatewayStub:
    def __init__(self) -> None:
        self.cached: dict[str, CanonicalRecipe] = {}
        self.parse_result: Optional[ParseResult] = None
        self.parse_error: Optional[Exception] = None
        self.lookup_error: Optional[Exception] = None
        self.looked_up: list[str] = []
        self.parsed: list[str] = []
        self.block: Optional[threading.Event] = None
        self.entered = threading.Event()

    def lookup_url(self, normalized_key: str) -> Optional[CanonicalRecipe]:
        self.looked_up.append(normalized_key)
        if self.lookup_error:
            raise self.lookup_error
        return self.cached.get(normalized_key)

    def parse_text(self, text: str) -> ParseResult:
        self.parsed.append(text)
        self.entered.set()
        if self.block is not None:
            self.block.wait(timeout=5)
        if self.parse_error:
            raise self.parse_error
        return self.parse_result or ParseResult(input_type=InputType.RAW_TEXT)


def create_submission(gateway: GatewayStub):
    states: list[SubmissionState] = []
    return RecipeSubmission(gateway, on_state_change=states.append), states


class TestLinkSubmission:
    def test_cached_link_navigates_to_summary(self) -> None:
        gateway = GatewayStub()
        gateway.cached["https://example.com/recipe"] = create_test_recipe()
        submission, states = create_submission(gateway)

        result = submission.submit("HTTP://Example.com/Recipe/", InputMode.URL)

        assert isinstance(result, NavigateToSummary)
        assert states == [
            SubmissionState.VALIDATING,
            SubmissionState.CHECKING_CACHE,
            SubmissionState.NAVIGATING,
            SubmissionState.IDLE,
        ]

    def test_uncached_link_navigates_to_loading(self) -> None:
        submission, _ = create_submission(GatewayStub())

        result = submission.submit("https://example.com/new?utm_source=x")

        assert result == NavigateToLoading(normalized_key="https://example.com/new")


class TestTextSubmission:
    def test_several_matches_show_modal(self) -> None:
        repo = RecipeRepositoryStub()
        matches = [
            SimilarMatch(record=repo.insert_original(create_test_recipe(title=f"Garlic Chicken {i}"), None), similarity=s)
            for i, s in enumerate((0.9, 0.8, 0.7))
        ]
        gateway = GatewayStub()
        gateway.parse_result = ParseResult(input_type=InputType.RAW_TEXT, matches=matches)
        submission, states = create_submission(gateway)

        result = submission.submit("garlic chicken", InputMode.NAME)

        assert isinstance(result, ShowMatchModal)
        assert result.candidates == matches
        assert SubmissionState.PARSING in states

    def test_single_recipe_navigates_to_summary(self) -> None:
        gateway = GatewayStub()
        gateway.parse_result = ParseResult(input_type=InputType.RAW_TEXT, recipe=create_test_recipe())
        submission, _ = create_submission(gateway)

        assert isinstance(submission.submit("garlic chicken"), NavigateToSummary)


class TestFailures:
    def test_validation_failure_goes_straight_back_to_idle(self) -> None:
        gateway = GatewayStub()
        submission, states = create_submission(gateway)

        result = submission.submit("https://example.com/recipe", InputMode.NAME)

        assert isinstance(result, ValidationErrorResult)
        assert states == [SubmissionState.VALIDATING, SubmissionState.IDLE]
        assert gateway.looked_up == []

    def test_pipeline_error_message_is_surfaced(self) -> None:
        gateway = GatewayStub()
        gateway.parse_error = GenerationFailedError("Provider down, try later.")
        submission, _ = create_submission(gateway)

        result = submission.submit("garlic chicken")

        assert result == ValidationErrorResult(message="Provider down, try later.")
        assert submission.state is SubmissionState.IDLE

    def test_unexpected_exception_returns_stage_message(self) -> None:
        gateway = GatewayStub()
        gateway.lookup_error = RuntimeError("boom")
        submission, _ = create_submission(gateway)

        result = submission.submit("https://example.com/recipe")

        assert isinstance(result, ValidationErrorResult)
        assert "check that link" in result.message
        assert submission.state is SubmissionState.IDLE


class TestSingleFlight:
    def test_second_submit_while_busy_is_ignored(self) -> None:
        gateway = GatewayStub()
        gateway.block = threading.Event()
        submission, _ = create_submission(gateway)
        results: list = []

        worker = threading.Thread(target=lambda: results.append(submission.submit("garlic chicken")))
        worker.start()
        assert gateway.entered.wait(timeout=5)

        assert submission.submit("tomato soup") is None

        gateway.block.set()
        worker.join(timeout=5)
        assert gateway.parsed == ["garlic chicken"]
        assert isinstance(results[0], NavigateToLoading)
        assert submission.state is SubmissionState.IDLE
