"""HTTP transport used by the registry adapter.

Cookies are owned by the caller's ``SessionState``: the transport sends what
it is given in the ``Cookie`` header and hands back raw ``Set-Cookie`` values
from every hop of a redirect chain, in order.
The underlying client never keeps a jar of its own, so one transport cannot
leak session material into another request sequence.
"""

import logging
from types import TracebackType
from typing import Protocol
from urllib.parse import unquote

import httpx
from pydantic import BaseModel, ConfigDict, Field

from certwatch.core.errors import TransportError

logger = logging.getLogger(__name__)


class TransportResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: int
    set_cookies: list[str] = Field(default_factory=list)
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    async def get(self, url: str, headers: dict[str, str]) -> TransportResponse: ...

    async def post(
        self, url: str, headers: dict[str, str], data: dict[str, str],
    ) -> TransportResponse: ...

    async def aclose(self) -> None: ...


class HttpxTransport:
    """``Transport`` over ``httpx.AsyncClient``.

    Usage::

        async with HttpxTransport(timeout_s=30) as transport:
            resp = await transport.get(url, headers)
    """

    def __init__(self, timeout_s: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self._client = client or httpx.AsyncClient(timeout=timeout_s, follow_redirects=True)

    async def get(self, url: str, headers: dict[str, str]) -> TransportResponse:
        return await self._send("GET", url, headers=headers)

    async def post(
        self, url: str, headers: dict[str, str], data: dict[str, str],
    ) -> TransportResponse:
        return await self._send("POST", url, headers=headers, data=data)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpxTransport":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str],
        data: dict[str, str] | None = None,
    ) -> TransportResponse:
        try:
            resp = await self._client.request(method, url, headers=headers, data=data)
        except httpx.HTTPError as e:
            logger.debug("%s %s failed: %r", method, url, e)
            msg = f"{type(e).__name__}: {e}" if str(e) else type(e).__name__
            raise TransportError(msg) from e
        finally:
            self._client.cookies.clear()

        set_cookies = [
            value for hop in (*resp.history, resp) for value in hop.headers.get_list("set-cookie")
        ]
        return TransportResponse(
            status=resp.status_code,
            set_cookies=set_cookies,
            text=resp.text,
        )


def parse_set_cookies(values: list[str]) -> dict[str, str]:
    """Reduce ``Set-Cookie`` header values to a name -> value mapping.

    Attributes (path, expiry, flags) are dropped; later values win.
    """
    cookies: dict[str, str] = {}
    for value in values:
        pair = value.split(";", 1)[0]
        name, sep, cookie_value = pair.partition("=")
        if not sep or not name.strip():
            continue
        cookies[name.strip()] = cookie_value.strip()
    return cookies


def format_cookies(cookies: dict[str, str]) -> str:
    """Render a ``Cookie`` request header value."""
    return "; ".join(f"{name}={value}" for name, value in cookies.items())


def cookie_value(cookies: dict[str, str], *names: str) -> str | None:
    """Return the URL-decoded value of the first present cookie among ``names``."""
    for name in names:
        value = cookies.get(name)
        if value:
            return unquote(value)
    return None
