import asyncio
import logging
import os

from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from column_compiler.errors import RenderError
from column_compiler.models import ArtifactHandle
from column_compiler.utils import artifact_filename, create_article_html, get_pdf_page_count

logger = logging.getLogger(__name__)

PDF_OPTIONS = {
    'format': 'A4',
    'print_background': True,
    'margin': {'top': '20mm', 'bottom': '20mm', 'left': '15mm', 'right': '15mm'},
    'display_header_footer': False,
}

# Resolves once web fonts are loaded; pages without fonts resolve immediately.
FONTS_READY_SCRIPT = "() => document.fonts ? document.fonts.ready.then(() => true) : true"


class ArtifactRenderer:
    """Prints one sanitized item to ``NNN_<title>.pdf`` in the output directory."""

    def __init__(self, config):
        self.config = config

    def artifact_path(self, destination, item, total):
        return os.path.join(destination, artifact_filename(item.original_index, item.title, total))

    async def render(self, session, document, destination, item, total):
        os.makedirs(destination, exist_ok=True)
        filepath = self.artifact_path(destination, item, total)
        page_html = create_article_html(item.title, document.html)

        try:
            await session.set_content(page_html, wait_until='load', timeout=self.config.timeout * 1000)
            await self._settle(session)
            await session.pdf(path=filepath, **PDF_OPTIONS)
        except Exception as e:
            raise RenderError(f"could not print {item.title!r}: {e}") from e

        page_count = get_pdf_page_count(filepath)
        if page_count < 1:
            raise RenderError(f"printed {os.path.basename(filepath)} has no pages")
        return ArtifactHandle(path=filepath, page_count=page_count)

    async def _settle(self, session):
        """Give images and fonts a moment to arrive; carry on when the time is up."""
        settle = self.config.settle_timeout
        if settle <= 0:
            return
        try:
            await session.wait_for_load_state('networkidle', timeout=settle * 1000)
            await asyncio.wait_for(session.evaluate(FONTS_READY_SCRIPT), timeout=settle)
        except (PlaywrightTimeoutError, asyncio.TimeoutError):
            logger.debug("Layout did not settle within %ss, printing anyway", settle)
