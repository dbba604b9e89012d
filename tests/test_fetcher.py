import asyncio
import time

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from tenacity import RetryCallState

from column_compiler.classifier import ErrorClassifier
from column_compiler.config import ClassificationRules
from column_compiler.errors import FetchError
from column_compiler.fetcher import ItemFetcher
from column_compiler.models import ErrorKind, ItemDescriptor

from fakes import FakePage, article_html

ADDRESS = "https://time.geekbang.org/column/article/7"
ITEM = ItemDescriptor(id="7", title="Seven", address=ADDRESS, original_index=0)


def fetch(config, site):
    return asyncio.run(ItemFetcher(config).fetch(FakePage(site), ITEM))


def test_fetch_returns_markup(config, site):
    site.add(ADDRESS, html=article_html("Seven"))
    raw = fetch(config, site)
    assert "Body of Seven" in raw.html
    assert raw.source_url == ADDRESS
    assert raw.status == 200
    assert raw.attempts == 1


def test_auth_wall_fails_after_one_attempt(config, site):
    site.add(ADDRESS, html="<html></html>", ready=False, body_text="Please log in to continue reading")
    with pytest.raises(FetchError) as info:
        fetch(config, site)
    assert info.value.kind == ErrorKind.AUTH_OR_PERMISSION
    assert info.value.attempts == 1
    assert site.visits[ADDRESS] == 1


def test_auth_markers_ignored_when_content_is_present(config, site):
    site.add(ADDRESS, html=article_html("Seven"), body_text="please log in to comment")
    assert fetch(config, site).attempts == 1


def test_timeouts_exhaust_all_attempts(config, site):
    site.add(ADDRESS, failures=[PlaywrightTimeoutError("Timeout 1000ms exceeded.")] * 5)
    with pytest.raises(FetchError) as info:
        fetch(config, site)
    assert info.value.kind == ErrorKind.TIMEOUT
    assert info.value.attempts == config.max_attempts
    assert site.visits[ADDRESS] == config.max_attempts


def test_transient_failure_then_success(config, site):
    site.add(ADDRESS, html=article_html("Seven"), failures=[PlaywrightTimeoutError("Timeout 1000ms exceeded.")])
    raw = fetch(config, site)
    assert raw.attempts == 2
    assert "Body of Seven" in raw.html


def test_backoff_grows_linearly_with_attempts(config):
    config.retry_base_delay = 0.5
    retrying = ItemFetcher(config)._retrying()
    state = RetryCallState(retry_object=retrying, fn=None, args=(), kwargs={})

    waits = []
    for attempt_number in (1, 2, 3):
        state.attempt_number = attempt_number
        waits.append(retrying.wait(state))
    assert waits == [0.5, 1.0, 1.5]


def test_retries_sleep_between_attempts(config, site):
    config.retry_base_delay = 0.05
    site.add(ADDRESS, html=article_html("Seven"), failures=[PlaywrightTimeoutError("Timeout 1000ms exceeded.")] * 2)

    started = time.monotonic()
    raw = fetch(config, site)
    assert raw.attempts == 3
    assert time.monotonic() - started >= 0.15


def test_missing_page_is_retried_as_not_found(config, site):
    site.add(ADDRESS, status=404)
    with pytest.raises(FetchError) as info:
        fetch(config, site)
    assert info.value.kind == ErrorKind.NOT_FOUND
    assert info.value.attempts == config.max_attempts


def test_forbidden_status_is_terminal(config, site):
    site.add(ADDRESS, status=403)
    with pytest.raises(FetchError) as info:
        fetch(config, site)
    assert info.value.kind == ErrorKind.AUTH_OR_PERMISSION
    assert site.visits[ADDRESS] == 1


def test_single_attempt_config(config, site):
    config.max_attempts = 1
    site.add(ADDRESS, failures=[RuntimeError("socket closed")])
    with pytest.raises(FetchError) as info:
        fetch(config, site)
    assert info.value.kind == ErrorKind.UNKNOWN
    assert info.value.attempts == 1


def test_classify_exception():
    classifier = ErrorClassifier()
    assert classifier.classify_exception(PlaywrightTimeoutError("Timeout")) == ErrorKind.TIMEOUT
    assert classifier.classify_exception(
        PlaywrightError("net::ERR_NAME_NOT_RESOLVED at https://x")) == ErrorKind.NOT_FOUND
    assert classifier.classify_exception(
        PlaywrightError("net::ERR_CONNECTION_TIMED_OUT at https://x")) == ErrorKind.TIMEOUT
    assert classifier.classify_exception(ValueError("boom")) == ErrorKind.UNKNOWN


def test_classify_status():
    classifier = ErrorClassifier()
    assert classifier.classify_status(None) is None
    assert classifier.classify_status(200) is None
    assert classifier.classify_status(302) is None
    assert classifier.classify_status(401) == ErrorKind.AUTH_OR_PERMISSION
    assert classifier.classify_status(410) == ErrorKind.NOT_FOUND
    assert classifier.classify_status(504) == ErrorKind.TIMEOUT
    assert classifier.classify_status(500) == ErrorKind.UNKNOWN


def test_classify_page_text_uses_configured_markers():
    classifier = ErrorClassifier(ClassificationRules(auth_markers=["members only"]))
    assert classifier.classify_page_text("This is MEMBERS ONLY content") == ErrorKind.AUTH_OR_PERMISSION
    assert classifier.classify_page_text("Please log in") is None
    assert ErrorClassifier().classify_page_text("请先登录后阅读") == ErrorKind.AUTH_OR_PERMISSION
