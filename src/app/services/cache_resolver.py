from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence, Union

import httpx

from src.app.config import settings
from src.app.domain.errors import RecipeRepositoryError
from src.app.domain.models import ImagePage, InputType, OriginalRecord, SimilarMatch
from src.app.infra.db.base import RecipeCacheRepository
from src.services.embedding import embedding_query
from src.services.errors import ServiceError
from src.services.url_normalize import content_hash, normalize_url

logger = logging.getLogger(__name__)

Resolution = Union[OriginalRecord, list[SimilarMatch], None]


class CacheResolver:
    """
    Finds an existing canonical record before any extraction work is paid for.

    Links and image sets resolve by exact key, free text by embedding
    similarity. Store or embedding failures are treated as a miss.
    """

    def __init__(
        self,
        repository: RecipeCacheRepository,
        embed_query: Callable[[str], list[float]] = embedding_query,
        threshold: float = settings.SIMILARITY_THRESHOLD,
        fallback_threshold: Optional[float] = settings.SIMILARITY_FALLBACK_THRESHOLD,
        match_count: int = settings.MATCH_COUNT,
    ):
        self._repo = repository
        self._embed_query = embed_query
        self.threshold = threshold
        self.fallback_threshold = fallback_threshold
        self.match_count = match_count

    def lookup_key(self, source_key: str) -> Optional[OriginalRecord]:
        try:
            record = self._repo.find_by_source_key(source_key)
        except RecipeRepositoryError as error:
            logger.warning("cache.lookup_failed key=%s error=%s treating_as=miss", source_key, error)
            return None

        if record is None:
            logger.info("cache.miss key=%s", source_key)
            return None

        logger.info("cache.hit key=%s id=%s", source_key, record.id)
        try:
            self._repo.touch(record.id)
        except RecipeRepositoryError as error:
            logger.warning("cache.touch_failed id=%s error=%s", record.id, error)
        return record

    def _match(self, embedding: list[float], threshold: float) -> list[SimilarMatch]:
        matches = self._repo.match_by_embedding(embedding, threshold, self.match_count)
        originals = [match for match in matches if isinstance(match.record, OriginalRecord)]
        originals.sort(key=lambda match: match.similarity, reverse=True)
        return originals[: self.match_count]

    def lookup_text(self, text: str) -> list[SimilarMatch]:
        try:
            embedding = self._embed_query(text)
        except (ServiceError, httpx.HTTPError) as error:
            logger.warning("cache.embed_failed error=%s treating_as=miss", error)
            return []

        try:
            matches = self._match(embedding, self.threshold)
            if not matches and self.fallback_threshold is not None and self.fallback_threshold < self.threshold:
                logger.info("cache.fuzzy_retry threshold=%.2f", self.fallback_threshold)
                matches = self._match(embedding, self.fallback_threshold)
        except RecipeRepositoryError as error:
            logger.warning("cache.match_failed error=%s treating_as=miss", error)
            return []

        logger.info(
            "cache.fuzzy_result count=%d top=%.3f",
            len(matches),
            matches[0].similarity if matches else 0.0,
        )
        return matches

    def resolve(self, input_type: InputType, value: Union[str, Sequence[ImagePage]]) -> Resolution:
        """
        Look up a classified input.

        Returns:
            OriginalRecord for an exact hit, a ranked list for free text
            (possibly empty), or None for an exact-key miss
        """
        if input_type in (InputType.URL, InputType.VIDEO):
            return self.lookup_key(normalize_url(str(value)))
        if input_type is InputType.IMAGE:
            return self.lookup_key(content_hash(value))  # type: ignore[arg-type]
        if input_type is InputType.RAW_TEXT:
            return self.lookup_text(str(value))
        return None
