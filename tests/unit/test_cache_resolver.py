from __future__ import annotations

from src.app.domain.models import ImagePage, InputType, OriginalRecord, SimilarMatch
from src.app.services.cache_resolver import CacheResolver
from src.services.errors import RateLimitedError
from src.services.url_normalize import content_hash
from tests.unit.stubs import RecipeRepositoryStub, create_test_recipe


def fake_embed(text: str) -> list[float]:
    return [0.1, 0.2, 0.3]


def create_resolver(repo: RecipeRepositoryStub, **kwargs) -> CacheResolver:
    kwargs.setdefault("embed_query", fake_embed)
    kwargs.setdefault("threshold", 0.5)
    kwargs.setdefault("fallback_threshold", 0.35)
    kwargs.setdefault("match_count", 5)
    return CacheResolver(repo, **kwargs)


def create_match(repo: RecipeRepositoryStub, title: str, similarity: float) -> SimilarMatch:
    record = repo.insert_original(create_test_recipe(title=title), None)
    return SimilarMatch(record=record, similarity=similarity)


class TestLookupKey:
    def test_hit_touches_record(self) -> None:
        repo = RecipeRepositoryStub()
        stored = repo.insert_original(create_test_recipe(), "https://example.com/recipe")

        record = create_resolver(repo).lookup_key("https://example.com/recipe")

        assert record is stored
        assert repo.touched == [stored.id]

    def test_miss(self) -> None:
        assert create_resolver(RecipeRepositoryStub()).lookup_key("https://example.com/none") is None

    def test_store_failure_is_a_miss(self) -> None:
        repo = RecipeRepositoryStub()
        repo.should_fail = True
        assert create_resolver(repo).lookup_key("https://example.com/recipe") is None


class TestLookupText:
    def test_ranked_by_similarity(self) -> None:
        repo = RecipeRepositoryStub()
        low = create_match(repo, "Chicken with Garlic", 0.61)
        high = create_match(repo, "Garlic Chicken", 0.93)
        mid = create_match(repo, "Garlic Butter Chicken", 0.77)
        repo.matches = [low, high, mid]

        matches = create_resolver(repo).lookup_text("garlic chicken")

        assert [m.similarity for m in matches] == [0.93, 0.77, 0.61]

    def test_retries_at_fallback_threshold(self) -> None:
        repo = RecipeRepositoryStub()
        repo.matches = [create_match(repo, "Garlic Chicken", 0.4)]

        matches = create_resolver(repo).lookup_text("garlic chicken")

        assert len(matches) == 1
        assert [threshold for threshold, _ in repo.match_calls] == [0.5, 0.35]

    def test_forks_are_never_returned(self) -> None:
        repo = RecipeRepositoryStub()
        original = create_match(repo, "Garlic Chicken", 0.9)
        fork = repo.insert_fork(original.record.id, create_test_recipe())
        repo.matches = [original, SimilarMatch(record=fork, similarity=0.95)]  # type: ignore[arg-type]

        matches = create_resolver(repo).lookup_text("garlic chicken")

        assert [m.record.id for m in matches] == [original.record.id]

    def test_limit(self) -> None:
        repo = RecipeRepositoryStub()
        repo.matches = [create_match(repo, f"Soup {i}", 0.9 - i * 0.01) for i in range(8)]

        assert len(create_resolver(repo, match_count=3).lookup_text("soup")) == 3

    def test_embedding_failure_is_a_miss(self) -> None:
        def failing_embed(text: str) -> list[float]:
            raise RateLimitedError("quota")

        repo = RecipeRepositoryStub()
        assert create_resolver(repo, embed_query=failing_embed).lookup_text("soup") == []

    def test_match_failure_is_a_miss(self) -> None:
        repo = RecipeRepositoryStub()
        repo.fail_match = True
        assert create_resolver(repo).lookup_text("soup") == []


class TestResolve:
    def test_url_is_normalized_first(self) -> None:
        repo = RecipeRepositoryStub()
        stored = repo.insert_original(create_test_recipe(), "https://example.com/recipe")

        result = create_resolver(repo).resolve(InputType.URL, "HTTP://Example.com/Recipe/")

        assert isinstance(result, OriginalRecord)
        assert result.id == stored.id

    def test_image_uses_content_hash(self) -> None:
        pages = [ImagePage(data=b"page", mime_type="image/png")]
        repo = RecipeRepositoryStub()
        stored = repo.insert_original(create_test_recipe(), content_hash(pages))

        assert create_resolver(repo).resolve(InputType.IMAGE, pages) is stored

    def test_invalid_resolves_to_none(self) -> None:
        assert create_resolver(RecipeRepositoryStub()).resolve(InputType.INVALID, "") is None
