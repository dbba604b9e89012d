import logging
import re

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from column_compiler.config import SiteProfile
from column_compiler.errors import FetchError
from column_compiler.models import Collection, ErrorKind, ItemDescriptor

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION_TITLE = "column"
TITLE_FIELDS = ("column_title", "column_subtitle", "title", "name", "columnTitle")
ARTICLE_TITLE_FIELDS = ("article_title", "article_sharetitle", "title")
SECTION_FIELDS = ("chapter_title", "section_title")


def clean_title(text):
    """Strip characters that cannot appear in file names."""
    text = re.sub(r'[<>:"/\\|?*]', '_', text or '')
    return re.sub(r'\s+', '_', text.strip())[:100]


def _first(mapping, keys):
    for key in keys:
        value = mapping.get(key)
        if value:
            return value
    return None


def parse_article_list(payload, profile=None, page_title=None):
    """Turn the article-list API payload into an ordered Collection."""
    profile = profile or SiteProfile()
    data = (payload or {}).get("data") or {}
    raw_articles = data.get("list")
    if not isinstance(raw_articles, list):
        logger.warning("Article list payload has no data.list")
        return Collection(title=DEFAULT_COLLECTION_TITLE, items=[])

    column_title = _first(data, TITLE_FIELDS)
    if not column_title and raw_articles:
        column_title = _first(raw_articles[0], ("column_title", "product_title"))
    if not column_title and page_title:
        # Page titles read "<article> - <column> - <site>"
        parts = [p.strip() for p in page_title.split("-")]
        if len(parts) >= 2 and parts[1]:
            column_title = parts[1]

    items = []
    for index, article in enumerate(raw_articles):
        title = _first(article, ARTICLE_TITLE_FIELDS) or "Untitled"
        items.append(ItemDescriptor(
            id=str(article.get("id")),
            title=title.strip(),
            address=profile.article_url(article.get("id")),
            original_index=index,
            section_label=_first(article, SECTION_FIELDS),
        ))

    return Collection(title=clean_title(column_title or DEFAULT_COLLECTION_TITLE), items=items)


async def fetch_article_list(page, column_url, profile=None, timeout=10.0, navigation_timeout=30.0):
    """Open ``column_url`` and read the article list from the API call it triggers.

    The page load gets ``navigation_timeout`` seconds and the list response
    ``timeout`` seconds on top of that. The response is awaited as a single
    expectation, so the listener is gone again whether it resolves or times out.
    """
    profile = profile or SiteProfile()
    marker = profile.article_list_marker
    wait_ms = (navigation_timeout + timeout) * 1000
    try:
        async with page.expect_response(lambda r: marker in r.url, timeout=wait_ms) as response_info:
            await page.goto(column_url, wait_until="networkidle", timeout=navigation_timeout * 1000)
        response = await response_info.value
    except PlaywrightTimeoutError as e:
        raise FetchError(ErrorKind.TIMEOUT,
                         f"article list did not load from {column_url}, check that the cookie is still valid") from e
    except PlaywrightError as e:
        raise FetchError(ErrorKind.UNKNOWN, f"could not open {column_url}: {e}") from e

    try:
        payload = await response.json()
    except (PlaywrightError, ValueError) as e:
        raise FetchError(ErrorKind.UNKNOWN, f"article list response is not valid JSON: {e}") from e
    page_title = await page.title()
    collection = parse_article_list(payload, profile, page_title=page_title)
    logger.info("Found %d articles - %s", len(collection.items), collection.title)
    return collection
