import logging

from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from column_compiler.classifier import ErrorClassifier
from column_compiler.config import SiteProfile
from column_compiler.errors import FetchError
from column_compiler.models import RawContent

logger = logging.getLogger(__name__)


def _is_retryable(exc):
    return isinstance(exc, FetchError) and exc.kind.retryable


class ItemFetcher:
    """Loads one item into a session and returns its raw markup.

    Transient failures (timeouts, missing pages, anything unclassified) are
    retried with a linear backoff of ``attempt * retry_base_delay``. Auth and
    permission walls are terminal and fail on the first attempt.
    """

    def __init__(self, config, profile=None, classifier=None):
        self.config = config
        self.profile = profile or SiteProfile()
        self.classifier = classifier or ErrorClassifier()

    def _retrying(self):
        base = self.config.retry_base_delay
        return AsyncRetrying(
            stop=stop_after_attempt(self.config.max_attempts),
            wait=wait_incrementing(start=base, increment=base),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def fetch(self, session, item, timeout=None):
        """Fetch ``item`` through ``session``; ``timeout`` (seconds) overrides the configured navigation timeout."""
        timeout = self.config.timeout if timeout is None else timeout
        attempts = 0
        raw = None
        try:
            async for attempt in self._retrying():
                with attempt:
                    attempts += 1
                    raw = await self._fetch_once(session, item, timeout)
        except FetchError as e:
            e.attempts = attempts
            raise
        raw.attempts = attempts
        return raw

    async def _fetch_once(self, session, item, timeout):
        timeout_ms = timeout * 1000
        try:
            response = await session.goto(item.address, wait_until="networkidle", timeout=timeout_ms)
        except Exception as e:
            kind = self.classifier.classify_exception(e)
            raise FetchError(kind, f"navigation to {item.address} failed: {e}") from e

        status = response.status if response is not None else None
        kind = self.classifier.classify_status(status)
        if kind is not None:
            raise FetchError(kind, f"{item.address} answered HTTP {status}")

        content_ready = await self._wait_for_content(session)
        try:
            if not content_ready:
                kind = self.classifier.classify_page_text(await session.inner_text("body"))
                if kind is not None:
                    raise FetchError(kind, f"{item.address} is behind a login or purchase wall")
            html = await session.content()
        except FetchError:
            raise
        except Exception as e:
            raise FetchError(self.classifier.classify_exception(e), f"reading {item.address} failed: {e}") from e

        return RawContent(html=html, source_url=item.address, status=status)

    async def _wait_for_content(self, session):
        """Wait for the content selector; running out of time is not an error."""
        try:
            await session.wait_for_selector(
                self.profile.content_ready_selector,
                timeout=self.config.content_timeout * 1000,
            )
            return True
        except PlaywrightTimeoutError:
            logger.debug("Content selector did not appear within %ss", self.config.content_timeout)
            return False
