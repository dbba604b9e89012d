import asyncio
import json
import signal
import sys

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

import main
from column_compiler.errors import FetchError, SessionStartupError
from column_compiler.models import Collection, ErrorKind, ItemDescriptor
from column_compiler.pipeline import CompileReport


def test_missing_cookie_is_reported(tmp_path, capsys):
    code = main.main(["--config", str(tmp_path / "none.json"), "--url", "https://x/column/1"])
    assert code == 2
    assert "Missing cookie" in capsys.readouterr().err


def test_malformed_config_is_reported(tmp_path, capsys):
    path = tmp_path / "config.json"
    path.write_text("{", encoding="utf-8")
    assert main.main(["--config", str(path)]) == 2
    assert "Malformed config" in capsys.readouterr().err


def test_dry_run_lists_articles(tmp_path, monkeypatch, capsys):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"cookie": "a=b", "column_url": "https://x/column/1"}), encoding="utf-8")
    seen = {}

    async def fake_compile(config, column_url, credential, **kwargs):
        seen["config"] = config
        seen["column_url"] = column_url
        items = [ItemDescriptor(id="1", title="Intro", address="https://x/a/1", original_index=0)]
        return CompileReport(collection=Collection(title="Col", items=items))

    monkeypatch.setattr(main, "compile_collection", fake_compile)
    code = main.main(["--config", str(path), "--dry-run", "--concurrency", "2", "-o", str(tmp_path / "out")])

    assert code == 0
    assert seen["column_url"] == "https://x/column/1"
    assert seen["config"].concurrency == 2
    assert seen["config"].dry_run is True
    assert "1. Intro" in capsys.readouterr().out


def test_browser_startup_failure_exits_nonzero(tmp_path, monkeypatch, capsys):
    async def fake_compile(config, column_url, credential, **kwargs):
        raise SessionStartupError("Playwright browsers are not installed. Run: playwright install chromium")

    monkeypatch.setattr(main, "compile_collection", fake_compile)
    code = main.main(["--config", str(tmp_path / "none.json"), "-c", "a=b", "-u", "https://x/c/1",
                      "-o", str(tmp_path / "out")])
    assert code == 1
    assert "playwright install chromium" in capsys.readouterr().err


def cli_args(tmp_path):
    return ["--config", str(tmp_path / "none.json"), "-c", "a=b", "-u", "https://x/c/1", "-o", str(tmp_path / "out")]


def test_article_list_timeout_exits_nonzero(tmp_path, monkeypatch, capsys):
    async def fake_compile(config, column_url, credential, **kwargs):
        raise PlaywrightTimeoutError("Timeout 40000ms exceeded.")

    monkeypatch.setattr(main, "compile_collection", fake_compile)
    assert main.main(cli_args(tmp_path)) == 1
    assert "❌ Timeout 40000ms exceeded." in capsys.readouterr().err


def test_pipeline_error_exits_nonzero(tmp_path, monkeypatch, capsys):
    async def fake_compile(config, column_url, credential, **kwargs):
        raise FetchError(ErrorKind.UNKNOWN, "article list response is not valid JSON")

    monkeypatch.setattr(main, "compile_collection", fake_compile)
    assert main.main(cli_args(tmp_path)) == 1
    assert "❌ article list response is not valid JSON" in capsys.readouterr().err


def test_string_config_value_of_wrong_type_is_reported(tmp_path, capsys):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"cookie": "a=b", "concurrency": "lots"}), encoding="utf-8")
    assert main.main(["--config", str(path)]) == 2
    assert "Invalid value for concurrency" in capsys.readouterr().err


@pytest.mark.skipif(sys.platform == "win32", reason="needs unix signal handlers")
def test_abort_handlers_are_released():
    aborted = []

    class Pool:
        def abort(self):
            aborted.append(True)

    async def scenario():
        loop = asyncio.get_running_loop()
        release = main.install_abort_handlers(Pool())
        signal.raise_signal(signal.SIGTERM)
        await asyncio.sleep(0.05)
        release()
        return [loop.remove_signal_handler(sig) for sig in (signal.SIGINT, signal.SIGTERM)]

    assert asyncio.run(scenario()) == [False, False]
    assert aborted == [True]
