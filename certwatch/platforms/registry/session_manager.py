"""Session acquisition for the registry: cookies, CSRF token, verification code.

Token lookup order:
  1. <meta name="csrf-token">
  2. <input name="_token">
  3. any <meta> whose name mentions csrf/token
  4. any hidden <input> whose name mentions csrf/token
  5. XSRF-TOKEN style cookies (URL-decoded)

Verification code: provided code wins; the page is still read. A rendered
browser read is the last resort and only runs when nothing else produced a
code.
"""

import logging
from collections.abc import Awaitable, Callable

from bs4 import BeautifulSoup, Tag

from certwatch.core.config import SourceConfig
from certwatch.core.errors import SessionError, TransportError
from certwatch.core.schemas import SessionState
from certwatch.core.transport import Transport, cookie_value, format_cookies, parse_set_cookies
from certwatch.platforms.base import SessionGrant
from certwatch.platforms.registry.selectors import (
    CAPTCHA_ADDON_SELECTOR,
    CAPTCHA_GROUP_CLASS,
    CAPTCHA_INPUT_SELECTOR,
    CAPTCHA_SELECTORS,
    TOKEN_COOKIE_NAMES,
    TOKEN_INPUT_SELECTOR,
    TOKEN_META_SELECTOR,
    TOKEN_NAME_HINTS,
)

logger = logging.getLogger(__name__)

# (landing url, cookies) -> (code or None, cookies after rendering)
ChallengeReader = Callable[[str, dict[str, str]], Awaitable[tuple[str | None, dict[str, str]]]]


class SessionManager:
    """Acquires and refreshes the session material of one job."""

    def __init__(
        self,
        transport: Transport,
        source: SourceConfig,
        challenge_reader: ChallengeReader | None = None,
    ) -> None:
        self._transport = transport
        self._source = source
        self._challenge_reader = challenge_reader

    async def acquire(
        self, session: SessionState, provided_code: str | None = None,
    ) -> SessionGrant:
        """Load the landing page and refresh ``session`` in place.

        Raises:
            SessionError: landing page unreachable, empty or without a token, or
                the rendered challenge read failed.
        """
        url = self._source.landing_url
        headers = {
            "User-Agent": self._source.user_agent,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "en-US,en;q=0.9",
        }
        if session.cookies:
            headers["Cookie"] = format_cookies(session.cookies)

        try:
            resp = await self._transport.get(url, headers)
        except TransportError as e:
            msg = f"Landing page request failed: {e}"
            raise SessionError(msg) from e

        session.cookies.update(parse_set_cookies(resp.set_cookies))

        if not resp.ok:
            msg = f"Failed to fetch landing page: HTTP {resp.status}"
            raise SessionError(msg)
        if not resp.text.strip():
            msg = "Received empty response from landing page"
            raise SessionError(msg)

        soup = BeautifulSoup(resp.text, "html.parser")
        token = find_token(soup, session.cookies)
        if token is None:
            logger.error("No CSRF token on landing page. First 500 chars: %s", resp.text[:500])
            msg = "Could not extract CSRF token from page"
            raise SessionError(msg)

        extracted = find_verification_code(soup)
        source = "page" if extracted else None

        if extracted is None and provided_code is None and self._challenge_reader is not None:
            try:
                extracted, rendered_cookies = await self._challenge_reader(
                    url, dict(session.cookies),
                )
            except Exception as e:
                reason = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
                msg = f"Rendered challenge read failed: {reason}"
                raise SessionError(msg) from e
            session.cookies.update(rendered_cookies)
            source = "browser" if extracted else None

        code = provided_code or extracted
        if provided_code:
            source = "provided"

        if code is None:
            logger.warning("Could not extract a verification code; one must be provided")
        else:
            logger.debug("Verification code from %s", source)

        session.token = token
        session.verification_code = code
        return SessionGrant(token=token, verification_code=code, code_source=source)


def find_token(soup: BeautifulSoup, cookies: dict[str, str]) -> str | None:
    """Locate the anti-forgery token in the page, then in cookies."""
    token = _attr(soup.select_one(TOKEN_META_SELECTOR), "content")
    if token:
        return token

    token = _attr(soup.select_one(TOKEN_INPUT_SELECTOR), "value")
    if token:
        return token

    for meta in soup.find_all("meta"):
        if _name_hints_token(meta):
            token = _attr(meta, "content")
            if token:
                return token

    for field in soup.select('input[type="hidden"]'):
        if _name_hints_token(field):
            token = _attr(field, "value")
            if token:
                return token

    return cookie_value(cookies, *TOKEN_COOKIE_NAMES)


def find_verification_code(soup: BeautifulSoup) -> str | None:
    """Read the displayed challenge number, primary selector first."""
    for selector in CAPTCHA_SELECTORS:
        el = soup.select_one(selector)
        if el is not None:
            text = el.get_text().strip()
            if text:
                return text

    captcha_input = soup.select_one(CAPTCHA_INPUT_SELECTOR)
    if captcha_input is None:
        return None
    group = captcha_input.find_parent(class_=CAPTCHA_GROUP_CLASS)
    if group is None:
        return None
    for addon in group.select(CAPTCHA_ADDON_SELECTOR):
        text = addon.get_text().strip()
        if text.isdigit():
            return text
    return None


def _attr(el: Tag | None, name: str) -> str | None:
    if el is None:
        return None
    value = el.get(name)
    if isinstance(value, list):
        value = " ".join(value)
    return value.strip() if value and value.strip() else None


def _name_hints_token(el: Tag) -> bool:
    name = _attr(el, "name")
    if name is None:
        return False
    lowered = name.lower()
    return any(hint in lowered for hint in TOKEN_NAME_HINTS)
