"""Browser session used to read client-rendered verification codes.

Some registry deployments draw the verification number with JavaScript, so
it never appears in the static landing page. When ``browser.enabled`` is set
the session manager falls back to rendering the page here.

Rules:
  - Single browser context per read, seeded with the job's cookies
  - Cookies set while rendering are handed back to the job's session
  - patchright, not vanilla playwright
"""

import logging
from types import TracebackType
from typing import Any
from urllib.parse import urlparse

from patchright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright

from certwatch.core.config import BrowserConfig
from certwatch.platforms.registry.selectors import CAPTCHA_SELECTORS

logger = logging.getLogger(__name__)


class BrowserSession:
    """Async context manager that owns one patchright browser + context + page.

    Usage::

        async with BrowserSession(config, cookies, url) as session:
            page = session.page
            await page.goto(url)
    """

    def __init__(
        self,
        config: BrowserConfig,
        cookies: dict[str, str] | None = None,
        cookie_url: str | None = None,
    ) -> None:
        self._config = config
        self._cookies = cookies or {}
        self._cookie_url = cookie_url
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page:
        """The single page for this session. Raises if not entered."""
        if self._page is None:
            msg = "BrowserSession not entered; use 'async with'"
            raise RuntimeError(msg)
        return self._page

    async def __aenter__(self) -> "BrowserSession":
        pw = await async_playwright().start()
        self._playwright = pw
        self._browser = await pw.chromium.launch(headless=self._config.headless)

        self._context = await self._browser.new_context()
        if self._cookies and self._cookie_url:
            await self._context.add_cookies(to_browser_cookies(self._cookies, self._cookie_url))
            logger.debug("Seeded browser with %d cookies", len(self._cookies))

        self._context.set_default_timeout(self._config.timeout_ms)
        self._page = await self._context.new_page()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._context is not None:
            await self._context.close()
        if self._browser is not None:
            await self._browser.close()
        if self._playwright is not None:
            await self._playwright.stop()

    async def cookies(self) -> dict[str, str]:
        """Current cookies of the context as a name -> value mapping."""
        if self._context is None:
            return {}
        return from_browser_cookies(await self._context.cookies())


class RenderedChallengeReader:
    """Renders the landing page and reads the verification code from the DOM."""

    def __init__(
        self,
        config: BrowserConfig,
        selectors: tuple[str, ...] = CAPTCHA_SELECTORS,
    ) -> None:
        self._config = config
        self._selectors = selectors

    async def __call__(
        self, url: str, cookies: dict[str, str],
    ) -> tuple[str | None, dict[str, str]]:
        async with BrowserSession(self._config, cookies, url) as session:
            await session.page.goto(url)
            code = await _first_text(session.page, self._selectors)
            rendered_cookies = await session.cookies()
        if code:
            logger.info("Verification code read from rendered page")
        else:
            logger.warning("Rendered page shows no verification code")
        return code, rendered_cookies


def to_browser_cookies(cookies: dict[str, str], url: str) -> list[Any]:
    """Convert a name -> value mapping into context.add_cookies() entries."""
    parsed = urlparse(url)
    base = f"{parsed.scheme}://{parsed.netloc}"
    return [{"name": name, "value": value, "url": base} for name, value in cookies.items()]


def from_browser_cookies(entries: list[Any]) -> dict[str, str]:
    return {str(c["name"]): str(c["value"]) for c in entries if c.get("name")}


async def _first_text(page: Any, selectors: tuple[str, ...]) -> str | None:
    """Text of the first selector that resolves to a non-empty element."""
    for selector in selectors:
        el = await page.query_selector(selector)
        if el is None:
            continue
        text = await el.text_content()
        if text and text.strip():
            return str(text.strip())
    return None
