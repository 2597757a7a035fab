"""Fetch one date's records from the registry and classify the outcome."""

import json
import logging

from certwatch.core.config import SourceConfig
from certwatch.core.errors import TransportError
from certwatch.core.schemas import SessionState
from certwatch.core.transport import Transport, format_cookies, parse_set_cookies
from certwatch.platforms.base import FetchFailure, FetchOutcome, FetchSuccess

logger = logging.getLogger(__name__)

# Laravel answers an expired CSRF token with this non-standard status.
SESSION_EXPIRED_STATUS = 419
DIAGNOSTIC_LIMIT = 200


class UnitFetcher:
    """Issues the per-date POST using the job's current session."""

    def __init__(self, transport: Transport, source: SourceConfig) -> None:
        self._transport = transport
        self._source = source

    async def fetch(self, session: SessionState, unit_key: str, gender: str) -> FetchOutcome:
        """Fetch records for ``unit_key``.

        Never raises for request faults: every outcome is a FetchSuccess or a
        FetchFailure. Only HTTP 419 sets ``session_expired``.
        """
        if session.token is None:
            return FetchFailure(reason="Session not initialized. No CSRF token.")

        form = {
            "dod": unit_key,
            "gender": gender,
            "verification_number": session.verification_code or "",
            "_token": session.token,
        }
        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "User-Agent": self._source.user_agent,
            "Accept": "application/json, text/javascript, */*; q=0.01",
            "Accept-Language": "en-US,en;q=0.9",
            "X-Requested-With": "XMLHttpRequest",
            "Referer": self._source.landing_url,
        }
        if session.cookies:
            headers["Cookie"] = format_cookies(session.cookies)

        try:
            resp = await self._transport.post(self._source.fetch_url, headers, form)
        except TransportError as e:
            logger.warning("Request for %s failed: %s", unit_key, e)
            return FetchFailure(reason=str(e) or "Request failed")

        session.cookies.update(parse_set_cookies(resp.set_cookies))

        if resp.status == SESSION_EXPIRED_STATUS:
            return FetchFailure(
                reason="CSRF token expired. Session needs to be reinitialized.",
                session_expired=True,
            )

        if not resp.ok:
            return FetchFailure(reason=f"HTTP {resp.status}: {truncate(resp.text)}")

        return parse_payload(resp.text)


def parse_payload(body: str) -> FetchOutcome:
    """Unwrap the ``{"status": true, "data": "<html>"}`` envelope."""
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        return FetchFailure(reason=f"Invalid response format: {truncate(body)}")

    if not isinstance(data, dict) or not data.get("status") or not data.get("data"):
        return FetchFailure(reason=f"Invalid response format: {truncate(body)}")

    payload = data["data"]
    if not isinstance(payload, str):
        payload = json.dumps(payload)
    return FetchSuccess(payload=payload)


def truncate(text: str, limit: int = DIAGNOSTIC_LIMIT) -> str:
    """Collapse whitespace and cut diagnostics down to ``limit`` characters."""
    flat = " ".join(text.split())
    if len(flat) <= limit:
        return flat
    return flat[:limit] + "..."
