import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, List

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from column_compiler.errors import SessionStartupError

logger = logging.getLogger(__name__)

INSTALL_HINT = "Playwright browsers are not installed. Run: playwright install chromium"


@dataclass
class Credential:
    """Opaque login state handed over by whoever obtained it."""

    cookies: List[Dict[str, str]] = field(default_factory=list)

    @classmethod
    def from_cookie_string(cls, cookie_string, domain):
        cookies = []
        for part in (cookie_string or "").split(";"):
            name, sep, value = part.strip().partition("=")
            if not sep or not name.strip():
                continue
            cookies.append({"name": name.strip(), "value": value.strip(), "domain": domain, "path": "/"})
        return cls(cookies=cookies)


@asynccontextmanager
async def open_browser(config, profile, credential):
    """Launch Chromium and yield a browser context carrying the credential.

    Pages created from the context are the sessions the worker pool owns.
    """
    async with async_playwright() as p:
        try:
            browser = await p.chromium.launch(headless=config.headless)
        except PlaywrightError as e:
            if "Executable doesn't exist" in str(e) or "playwright install" in str(e):
                raise SessionStartupError(INSTALL_HINT) from e
            raise SessionStartupError(f"could not launch browser: {e}") from e
        try:
            context = await browser.new_context(
                user_agent=profile.user_agent,
                viewport={'width': 1200, 'height': 800},
            )
            if credential.cookies:
                await context.add_cookies(credential.cookies)
            yield context
        finally:
            try:
                await browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close reported: %s", e)
