from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from starlette.concurrency import run_in_threadpool

from src.app.domain.models import RecordId
from src.services.embedding import embedding_document
from src.services.errors import RateLimitedError

log = logging.getLogger("embedding_queue")

EmbedFn = Callable[[str], list[float]]
SaveFn = Callable[[RecordId, list[float]], None]


def _rate_limit_delay(attempts: int) -> float:
    return min(60 * (attempts + 1), 300)


@dataclass(slots=True)
class EmbeddingJob:
    record_id: RecordId
    text: str
    attempts: int = 0

    def next_attempt(self) -> "EmbeddingJob":
        return EmbeddingJob(
            record_id=self.record_id,
            text=self.text,
            attempts=self.attempts + 1,
        )


class EmbeddingQueue:
    """
    In-process worker that embeds original records after they are committed.

    Commit and embedding are independent: a record is readable by id as soon
    as it is inserted and becomes fuzzy-searchable once its job finishes.
    """

    def __init__(
        self,
        embed: EmbedFn = embedding_document,
        save: Optional[SaveFn] = None,
        max_attempts: int = 5,
        retry_delay: Callable[[int], float] = _rate_limit_delay,
    ) -> None:
        self._queue: "asyncio.Queue[Optional[EmbeddingJob]]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task[None]] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = asyncio.Lock()
        self._embed = embed
        self._save = save
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay

    def bind(self, save: SaveFn) -> None:
        self._save = save

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        async with self._lock:
            if self.running:
                return
            self._loop = asyncio.get_running_loop()
            self._worker = asyncio.create_task(self._run(), name="embedding-worker")

    async def stop(self) -> None:
        async with self._lock:
            if not self._worker:
                return
            await self._queue.put(None)
            try:
                await self._worker
            finally:
                self._worker = None
                self._loop = None

    async def join(self) -> None:
        await self._queue.join()

    async def enqueue(self, record_id: RecordId, text: str) -> None:
        await self._queue.put(EmbeddingJob(record_id=record_id, text=text))

    def submit(self, record_id: RecordId, text: str) -> bool:
        """
        Schedule a job from any thread. Returns False when no worker is
        running, in which case the record simply stays unembedded.
        """
        loop = self._loop
        if loop is None or not self.running or loop.is_closed():
            log.warning("embedding.not_running record=%s", record_id)
            return False
        job = EmbeddingJob(record_id=record_id, text=text)
        loop.call_soon_threadsafe(self._queue.put_nowait, job)
        log.info("embedding.scheduled record=%s", record_id)
        return True

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            if job is None:
                self._queue.task_done()
                break
            try:
                await self._process_job(job)
            except Exception:
                log.exception("embedding.worker_unexpected_error record=%s", job.record_id)
            finally:
                self._queue.task_done()

    async def _process_job(self, job: EmbeddingJob) -> None:
        if self._save is None:
            log.error("embedding.worker_unbound record=%s", job.record_id)
            return
        try:
            vector = await run_in_threadpool(self._embed, job.text)
            await run_in_threadpool(self._save, job.record_id, vector)
        except RateLimitedError:
            await self._handle_rate_limit(job)
            return
        except Exception as exc:
            log.error("embedding.worker_failed record=%s error=%s", job.record_id, exc)
            return

        log.info("embedding.worker_done record=%s dims=%d", job.record_id, len(vector))

    async def _handle_rate_limit(self, job: EmbeddingJob) -> None:
        log.warning("embedding.worker_rate_limited record=%s attempt=%s", job.record_id, job.attempts)
        if job.attempts + 1 >= self._max_attempts:
            log.error("embedding.worker_gave_up record=%s attempts=%s", job.record_id, job.attempts + 1)
            return

        delay = self._retry_delay(job.attempts)
        asyncio.create_task(self._schedule_retry(job.next_attempt(), delay))

    async def _schedule_retry(self, job: EmbeddingJob, delay: float) -> None:
        await asyncio.sleep(delay)
        await self._queue.put(job)


_EMBEDDING_QUEUE: Optional[EmbeddingQueue] = None


def get_queue() -> EmbeddingQueue:
    global _EMBEDDING_QUEUE
    if _EMBEDDING_QUEUE is None:
        _EMBEDDING_QUEUE = EmbeddingQueue()
    return _EMBEDDING_QUEUE


async def start_worker(save: Optional[SaveFn] = None) -> None:
    queue = get_queue()
    if save is not None:
        queue.bind(save)
    await queue.start()


async def stop_worker() -> None:
    await get_queue().stop()


def submit(record_id: RecordId, text: str) -> bool:
    return get_queue().submit(record_id, text)
