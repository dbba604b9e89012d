import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from column_compiler.article_list import fetch_article_list
from column_compiler.classifier import ErrorClassifier
from column_compiler.config import ClassificationRules, SiteProfile
from column_compiler.epub import build_epub
from column_compiler.errors import MergeError
from column_compiler.fetcher import ItemFetcher
from column_compiler.merger import merge_pdfs
from column_compiler.models import Collection, ItemResult, MergedDeliverable
from column_compiler.pool import WorkerPool
from column_compiler.renderer import ArtifactRenderer
from column_compiler.sanitizer import ContentSanitizer
from column_compiler.session import open_browser
from column_compiler.summary import RunSummary, summarize

logger = logging.getLogger(__name__)


@dataclass
class CompileReport:
    collection: Collection
    results: List[ItemResult] = field(default_factory=list)
    summary: Optional[RunSummary] = None
    merged: Optional[MergedDeliverable] = None
    ebook: Optional[MergedDeliverable] = None


def build_pool(config, session_factory, profile=None, rules=None, progress=None):
    profile = profile or SiteProfile()
    rules = rules or ClassificationRules()
    return WorkerPool(
        config,
        session_factory,
        fetcher=ItemFetcher(config, profile, ErrorClassifier(rules)),
        sanitizer=ContentSanitizer(profile, rules),
        renderer=ArtifactRenderer(config),
        progress=progress,
    )


def assemble(results, config, collection_title):
    """Build the merged PDF and/or the ebook from whatever succeeded."""
    merged = ebook = None
    if not any(r.success for r in results):
        logger.warning("Nothing succeeded, skipping merge")
        return merged, ebook
    if config.merge:
        try:
            merged = merge_pdfs(results, config.output_dir, collection_title,
                                delete_after_merge=config.delete_after_merge)
        except MergeError as e:
            logger.error("Merge failed: %s", e)
    if config.epub:
        try:
            ebook = build_epub(results, config.output_dir, collection_title)
        except MergeError as e:
            logger.error("Ebook packaging failed: %s", e)
    return merged, ebook


async def compile_collection(config, column_url, credential,
                             profile=None, rules=None, progress=None, on_pool_start=None):
    """Locate the collection, run the pool over it and assemble the deliverables.

    ``on_pool_start(pool)`` is called before the pool runs; a callable it returns
    is called once the pool has finished, before assembly starts.
    """
    profile = profile or SiteProfile()
    async with open_browser(config, profile, credential) as context:
        page = await context.new_page()
        try:
            collection = await fetch_article_list(page, column_url, profile, timeout=config.content_timeout,
                                                  navigation_timeout=config.timeout)
        finally:
            await page.close()

        report = CompileReport(collection=collection)
        if config.dry_run or not collection.items:
            return report

        items = collection.items[:config.limit] if config.limit else collection.items
        pool = build_pool(config, context.new_page, profile, rules, progress)
        release = on_pool_start(pool) if on_pool_start is not None else None
        try:
            report.results = await pool.run(items)
        finally:
            if release is not None:
                release()

    report.summary = summarize(report.results)
    loop = asyncio.get_running_loop()
    report.merged, report.ebook = await loop.run_in_executor(
        None, assemble, report.results, config, collection.title)
    return report
