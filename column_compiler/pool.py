"""Bounded fan-out over a collection's items.

Each worker owns one rendering session for its whole life and loops
claim -> fetch -> sanitize -> render -> record until the shared cursor runs
dry. Results land in a list preallocated to ``len(items)`` and indexed by the
item's original position, so completion order never matters downstream.
"""
import asyncio
import logging

from column_compiler.errors import PipelineError, SessionStartupError
from column_compiler.models import ErrorKind, ItemResult, ProgressEvent

logger = logging.getLogger(__name__)


class IndexCursor:
    """Hands out each index exactly once.

    ``claim`` never awaits, so under a single event loop it is atomic.
    """

    def __init__(self, total):
        self.total = total
        self._next = 0
        self._closed = False

    def claim(self):
        if self._closed or self._next >= self.total:
            return None
        index = self._next
        self._next += 1
        return index

    def close(self):
        self._closed = True

    @property
    def remaining(self):
        return 0 if self._closed else self.total - self._next


class WorkerPool:

    def __init__(self, config, session_factory, fetcher, sanitizer, renderer, progress=None):
        self.config = config
        self.session_factory = session_factory
        self.fetcher = fetcher
        self.sanitizer = sanitizer
        self.renderer = renderer
        self.progress = progress
        self.results = []
        self._aborted = None
        self._cursor = None
        self._tasks = []
        self._completed = 0

    async def run(self, items):
        total = len(items)
        for position, item in enumerate(items):
            if item.original_index != position:
                raise ValueError(f"item {item.title!r} has original_index {item.original_index}, expected {position}")
        self.results = [None] * total
        self._completed = 0
        self._aborted = asyncio.Event()
        self._cursor = IndexCursor(total)
        if not total:
            return self.results

        sessions = await self._open_sessions(min(self.config.concurrency, total))
        logger.info("Processing %d items with %d workers", total, len(sessions))
        try:
            self._tasks = [
                asyncio.create_task(self._worker(worker_id, session, items))
                for worker_id, session in enumerate(sessions, 1)
            ]
            outcomes = await asyncio.gather(*self._tasks, return_exceptions=True)
            for outcome in outcomes:
                if isinstance(outcome, Exception):
                    logger.error("Worker stopped unexpectedly: %s", outcome)
        finally:
            self._tasks = []
            self._fill_unfinished(items)
            await self._close_sessions(sessions)
        return self.results

    def abort(self):
        """Stop claiming new items and cancel the ones in flight."""
        if self._aborted is None or self._aborted.is_set():
            return
        logger.warning("Abort requested, releasing sessions")
        self._aborted.set()
        self._cursor.close()
        for task in self._tasks:
            task.cancel()

    async def _open_sessions(self, count):
        sessions = []
        try:
            for _ in range(count):
                sessions.append(await self.session_factory())
        except Exception as e:
            await self._close_sessions(sessions)
            raise SessionStartupError(f"could not open rendering session: {e}") from e
        return sessions

    async def _close_sessions(self, sessions):
        for session in sessions:
            try:
                if not session.is_closed():
                    await session.close()
            except Exception as e:
                logger.debug("Session close failed: %s", e)

    async def _worker(self, worker_id, session, items):
        while not self._aborted.is_set():
            index = self._cursor.claim()
            if index is None:
                break
            item = items[index]
            try:
                result = await self._process(session, item, len(items))
            except asyncio.CancelledError:
                self.results[index] = ItemResult.failed(item, ErrorKind.CANCELLED, "aborted while in flight")
                raise
            self.results[index] = result
            self._report(result, len(items))

            if self._cursor.remaining and self.config.delay > 0:
                await self._pause()
        logger.debug("Worker %d drained", worker_id)

    async def _process(self, session, item, total):
        attempts = 0
        try:
            raw = await self.fetcher.fetch(session, item)
            attempts = raw.attempts
            document = self.sanitizer.sanitize(raw)
            handle = await self.renderer.render(session, document, self.config.output_dir, item, total)
        except PipelineError as e:
            attempts = getattr(e, "attempts", attempts)
            logger.warning("[%d/%d] %s failed: %s", item.original_index + 1, total, item.title, e)
            return ItemResult.failed(item, e.kind, e.message, attempts=attempts)
        except Exception as e:
            logger.warning("[%d/%d] %s failed unexpectedly: %s", item.original_index + 1, total, item.title, e,
                           exc_info=logger.isEnabledFor(logging.DEBUG))
            return ItemResult.failed(item, ErrorKind.UNKNOWN, str(e), attempts=attempts)

        return ItemResult(
            original_index=item.original_index,
            success=True,
            title=item.title,
            artifact_path=handle.path,
            source_url=document.source_url,
            content=document.html,
            page_count=handle.page_count,
            attempts=attempts,
        )

    async def _pause(self):
        try:
            await asyncio.wait_for(self._aborted.wait(), timeout=self.config.delay)
        except asyncio.TimeoutError:
            pass

    def _report(self, result, total):
        self._completed += 1
        if self.progress is None:
            return
        event = ProgressEvent(
            completed=self._completed,
            total=total,
            last_title=result.title,
            last_success=result.success,
            last_index=result.original_index,
            error_kind=result.error_kind,
            error_message=result.error_message,
        )
        try:
            self.progress(event)
        except Exception:
            logger.debug("progress callback failed", exc_info=True)

    def _fill_unfinished(self, items):
        for index, result in enumerate(self.results):
            if result is None:
                self.results[index] = ItemResult.failed(items[index], ErrorKind.CANCELLED, "not started before abort")
