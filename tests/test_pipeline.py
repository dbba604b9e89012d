import asyncio
import os
import threading
import zipfile
from contextlib import asynccontextmanager

import pytest

from column_compiler import pipeline
from column_compiler.errors import SessionStartupError
from column_compiler.models import Collection, ErrorKind
from column_compiler.session import Credential


@pytest.fixture
def fake_browser(site, make_items, monkeypatch):
    """Route the pipeline's browser and article list through the fake site."""
    items = make_items(6)
    collection = Collection(title="Fake_Column", items=items)
    calls = {}

    @asynccontextmanager
    async def open_browser(config, profile, credential):
        calls["cookies"] = credential.cookies
        yield site

    async def fetch_article_list(page, column_url, profile=None, timeout=10.0, navigation_timeout=30.0):
        calls["column_url"] = column_url
        calls["timeouts"] = (timeout, navigation_timeout)
        return collection

    monkeypatch.setattr(pipeline, "open_browser", open_browser)
    monkeypatch.setattr(pipeline, "fetch_article_list", fetch_article_list)
    return calls


def run_compile(config, **kwargs):
    credential = Credential.from_cookie_string("GCID=abc; SERVERID=1", ".geekbang.org")
    return asyncio.run(pipeline.compile_collection(config, "https://time.geekbang.org/column/intro/1", credential,
                                                   **kwargs))


def test_full_run_produces_pdf_and_ebook(config, site, fake_browser):
    config.epub = True
    report = run_compile(config)

    assert report.summary.succeeded == 6
    assert report.merged.item_count == 6
    assert os.path.exists(report.merged.path)
    assert report.ebook.item_count == 6
    assert zipfile.is_zipfile(report.ebook.path)
    assert fake_browser["cookies"][0] == {"name": "GCID", "value": "abc", "domain": ".geekbang.org", "path": "/"}
    assert all(page.closed for page in site.opened)


def test_dry_run_only_lists(config, site, fake_browser):
    config.dry_run = True
    report = run_compile(config)

    assert len(report.collection.items) == 6
    assert report.results == []
    assert report.summary is None
    assert sum(site.visits.values()) == 0


def test_limit_takes_the_first_items(config, site, fake_browser):
    config.limit = 2
    report = run_compile(config)

    assert [r.title for r in report.results] == ["Article 1", "Article 2"]
    assert report.merged.item_count == 2


def test_no_merge_keeps_only_per_item_files(config, fake_browser):
    config.merge = False
    report = run_compile(config)

    assert report.merged is None
    assert all(os.path.exists(r.artifact_path) for r in report.results)


def test_all_failed_run_skips_assembly(config, site, fake_browser):
    for address in list(site.scripts):
        site.add(address, status=403)
    report = run_compile(config)

    assert report.summary.failed == 6
    assert report.summary.by_kind == {ErrorKind.AUTH_OR_PERMISSION: 6}
    assert report.merged is None
    assert report.summary.hint.startswith("mostly AuthOrPermission")


def test_article_list_gets_navigation_and_response_timeouts(config, fake_browser):
    config.dry_run = True
    run_compile(config)
    assert fake_browser["timeouts"] == (config.content_timeout, config.timeout)


def test_pool_hook_is_released_before_assembly(config, fake_browser, monkeypatch):
    events = []
    real_assemble = pipeline.assemble

    def assemble(results, config, collection_title):
        events.append(("assemble", threading.current_thread() is threading.main_thread()))
        return real_assemble(results, config, collection_title)

    def on_pool_start(pool):
        events.append("start")
        return lambda: events.append("release")

    monkeypatch.setattr(pipeline, "assemble", assemble)
    report = run_compile(config, on_pool_start=on_pool_start)

    assert events == ["start", "release", ("assemble", False)]
    assert report.merged.item_count == 6


def test_pool_hook_is_released_when_the_pool_fails(config, site, fake_browser):
    site.fail_open_after = 1
    released = []

    with pytest.raises(SessionStartupError):
        run_compile(config, on_pool_start=lambda pool: lambda: released.append(True))
    assert released == [True]
