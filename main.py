import argparse
import asyncio
import contextlib
import logging
import os
import signal
import sys

from playwright.async_api import Error as PlaywrightError
from tqdm import tqdm

from column_compiler.config import SiteProfile, load_config, merge_config, rules_from_config
from column_compiler.errors import ConfigError, PipelineError
from column_compiler.pipeline import compile_collection
from column_compiler.session import Credential

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        prog="column-compiler",
        description="Download every article of a column as PDF and merge them into one book",
    )
    p.add_argument("-u", "--url", help="URL of any article in the column")
    p.add_argument("-c", "--cookie", help="Cookie header string used for authentication")
    p.add_argument("-o", "--output", dest="output_dir", help="Output directory (default ./downloads)")
    p.add_argument("--config", help="Path to a JSON config file (default ./config.json)")
    p.add_argument("--headful", dest="headless", action="store_false", default=None,
                   help="Show the browser window")
    p.add_argument("--delay", type=float, help="Seconds each worker waits between articles")
    p.add_argument("--concurrency", type=int, help="Number of parallel browser pages")
    p.add_argument("--timeout", type=float, help="Navigation timeout in seconds")
    p.add_argument("--retries", dest="max_attempts", type=int, help="Attempts per article")
    p.add_argument("--dry-run", action="store_true", default=None, help="Only list the articles")
    p.add_argument("--limit", type=int, help="Only download the first N articles")
    p.add_argument("--no-merge", dest="merge", action="store_false", default=None,
                   help="Keep the per-article PDFs without merging them")
    p.add_argument("--delete-after-merge", action="store_true", default=None,
                   help="Delete per-article PDFs once the merged PDF is written")
    p.add_argument("--epub", action="store_true", default=None, help="Also write an EPUB ebook")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


class ProgressBar:
    """Feeds pool progress events into a tqdm bar, one line per finished article."""

    def __init__(self):
        self.bar = None

    def __call__(self, event):
        if self.bar is None:
            self.bar = tqdm(total=event.total, desc="Downloading", unit="article")
        mark = "✓" if event.last_success else "✗"
        line = f"{mark} [{event.last_index + 1}/{event.total}] {event.last_title}"
        if not event.last_success:
            line += f" - {event.error_kind.value}: {event.error_message}"
        tqdm.write(line)
        self.bar.update(event.completed - self.bar.n)

    def close(self):
        if self.bar is not None:
            self.bar.close()


def install_abort_handlers(pool):
    """Route SIGINT/SIGTERM to ``pool.abort`` and return a function that undoes it."""
    loop = asyncio.get_running_loop()
    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        # Not available on Windows event loops
        with contextlib.suppress(NotImplementedError, RuntimeError):
            loop.add_signal_handler(sig, pool.abort)
            installed.append(sig)

    def release():
        for sig in installed:
            loop.remove_signal_handler(sig)

    return release


def print_report(report, output_dir):
    collection = report.collection
    if report.summary is None:
        print(f"\n📋 {collection.title}: {len(collection.items)} articles\n")
        for item in collection.items:
            print(f"  {item.original_index + 1}. {item.title}")
        return

    summary = report.summary
    print("\n📊 Summary\n")
    print(f"  ✓ Succeeded: {summary.succeeded}")
    print(f"  ✗ Failed: {summary.failed}")
    for kind, count in sorted(summary.by_kind.items(), key=lambda kv: kv[0].value):
        print(f"      {kind.value}: {count}")
    print(f"  📁 Saved to: {output_dir}\n")
    if summary.hint:
        print(f"💡 {summary.hint}\n")
    for deliverable in (report.merged, report.ebook):
        if deliverable is None:
            continue
        for warning in deliverable.warnings:
            print(f"⚠️  {warning}")
        print(f"✅ {deliverable.path} ({deliverable.item_count} chapters)")


def main(argv=None):
    args = parse_args(argv)
    debug = args.verbose or bool(os.environ.get("DEBUG"))
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        file_values = load_config(args.config)
        config = merge_config(file_values, vars(args))
        rules = rules_from_config(file_values)
    except (ConfigError, ValueError) as e:
        print(f"❌ {e}", file=sys.stderr)
        return 2

    cookie = args.cookie or file_values.get("cookie")
    column_url = args.url or file_values.get("column_url") or file_values.get("columnUrl")
    if not cookie:
        print('❌ Missing cookie: pass --cookie or add "cookie" to config.json', file=sys.stderr)
        return 2
    if not column_url:
        print('❌ Missing column URL: pass --url or add "column_url" to config.json', file=sys.stderr)
        return 2

    profile = SiteProfile()
    credential = Credential.from_cookie_string(cookie, profile.cookie_domain)
    os.makedirs(config.output_dir, exist_ok=True)
    progress = ProgressBar()
    try:
        report = asyncio.run(compile_collection(
            config, column_url, credential,
            profile=profile, rules=rules, progress=progress,
            on_pool_start=install_abort_handlers,
        ))
    except (PipelineError, PlaywrightError) as e:
        message = e.message if isinstance(e, PipelineError) else str(e)
        print(f"\n❌ {message}", file=sys.stderr)
        logger.debug("Run failed", exc_info=True)
        return 1
    except KeyboardInterrupt:
        print("\n⚠️  Interrupted", file=sys.stderr)
        return 130
    finally:
        progress.close()

    print_report(report, config.output_dir)
    if report.summary is not None and report.summary.succeeded == 0 and report.summary.total:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
