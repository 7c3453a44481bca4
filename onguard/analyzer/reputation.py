"""
Phone/account reputation source.

Queries the Counter Scam 112 service (Korean telecom-fraud response centre)
for voice-phishing and SMS-phishing reports against a phone number.

The service is session based: one page load hands out a JSESSIONID cookie,
after which the JSON search endpoint can be called repeatedly.
"""

import asyncio
import logging
from typing import Any, Optional, Protocol

import aiohttp

from .models import ReputationRecord

logger = logging.getLogger(__name__)


class ReputationLookupError(Exception):
    """The reputation source could not produce an answer."""


class ReputationSource(Protocol):
    """Anything able to report fraud history for an identifier."""

    async def lookup(self, identifier: str, max_results: int = 10) -> ReputationRecord:  # pragma: no cover - interface
        ...

    async def close(self) -> None:  # pragma: no cover - interface
        ...


def _as_int(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


def parse_reputation_response(data: Any) -> ReputationRecord:
    """
    Parse a voiceNumSearchAjax.do payload.

    Example:
        {"totCnt": 6, "voiceCnt": 0, "smsCnt": 6,
         "smsList": [{"dclrCn": "..."}],
         "searchData": "최근 3개월 2025.11.06 ~ 2026.02.06"}
    """
    if not isinstance(data, dict):
        raise ReputationLookupError(f"Unexpected response type: {type(data).__name__}")

    details: list[str] = []
    for item in data.get("smsList") or []:
        if isinstance(item, dict) and item.get("dclrCn"):
            details.append(str(item["dclrCn"]))

    search_period = data.get("searchData")
    return ReputationRecord(
        total_count=_as_int(data.get("totCnt")),
        voice_count=_as_int(data.get("voiceCnt")),
        sms_count=_as_int(data.get("smsCnt")),
        details=tuple(details),
        search_period=str(search_period) if search_period else None,
    )


class CounterScam112Client:
    """
    Async client for the Counter Scam 112 phone lookup.

    Flow:
    1. GET phishing/searchPhone.do once per session (cookie jar keeps JSESSIONID)
    2. POST main/voiceNumSearchAjax.do with {"telNum": ..., "rowCnt": ...}
    """

    SESSION_PATH = "phishing/searchPhone.do"
    SEARCH_PATH = "main/voiceNumSearchAjax.do"

    def __init__(
        self,
        base_url: str = "https://www.counterscam112.go.kr/",
        timeout: float = 5.0,
    ):
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._session_ready = False
        self._session_lock = asyncio.Lock()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        async with self._session_lock:
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession(
                    timeout=aiohttp.ClientTimeout(total=self.timeout),
                    cookie_jar=aiohttp.CookieJar(),
                )
                self._session_ready = False

            if not self._session_ready:
                url = f"{self.base_url}{self.SESSION_PATH}"
                async with self._session.get(url) as resp:
                    if resp.status != 200:
                        raise ReputationLookupError(f"Session init failed: HTTP {resp.status}")
                self._session_ready = True
                logger.debug("Counter Scam 112 session initialized")

            return self._session

    async def lookup(self, identifier: str, max_results: int = 10) -> ReputationRecord:
        """Fetch report counts for a normalized (digits only) identifier."""
        session = await self._ensure_session()
        url = f"{self.base_url}{self.SEARCH_PATH}"
        payload = {"telNum": identifier, "rowCnt": max_results}

        async with session.post(url, json=payload) as resp:
            if resp.status in (401, 403):
                # Session expired; next call re-initializes it
                self._session_ready = False
                raise ReputationLookupError(f"Session rejected: HTTP {resp.status}")
            if resp.status != 200:
                raise ReputationLookupError(f"HTTP {resp.status}")
            data = await resp.json(content_type=None)

        record = parse_reputation_response(data)
        logger.debug(
            "Counter Scam 112: %s total=%s voice=%s sms=%s",
            identifier,
            record.total_count,
            record.voice_count,
            record.sms_count,
        )
        return record

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
        self._session_ready = False
