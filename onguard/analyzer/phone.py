"""Phone number and bank account reputation analysis."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Optional

from ..cache import ReputationCache
from .models import PhoneAnalysisResult, ReputationRecord
from .reputation import ReputationSource

logger = logging.getLogger(__name__)

# Korean mobile, landline, internet (070), relay (050x) and premium (060) numbers
PHONE_PATTERN = re.compile(
    r"(?<![\d-])(?:\+82[-.\s]?|0)(?:1[016789]|2|[3-6][1-5]|70|50[2-8]|60|80)"
    r"[-.\s)]?\d{3,4}[-.\s]?\d{4}(?![\d-])"
)
# International dialing prefixes (001, 002, 00700 ...) followed by a foreign number
INTERNATIONAL_PATTERN = re.compile(r"(?<![\d-])00[1-9](?:[-.\s]?\d){8,14}(?![\d-])")
# Nationwide representative numbers (15xx, 16xx, 18xx), not year ranges like 1999-2000
REPRESENTATIVE_PATTERN = re.compile(r"(?<![\d-])1[568]\d{2}-?\d{4}(?![\d-])")
# Dashed bank account numbers, e.g. 123-456789-01-234
ACCOUNT_PATTERN = re.compile(r"(?<![\d-])\d{2,6}-\d{2,6}-\d{2,7}(?:-\d{1,3})?(?![\d-])")
ACCOUNT_DIGITS = (10, 14)

SUSPICIOUS_PREFIXES = (
    "070",
    "0502",
    "0503",
    "0504",
    "0505",
    "0506",
    "0507",
    "0508",
    "060",
)


def normalize_identifier(value: str) -> str:
    """Strip separators; +82 country code becomes a leading 0."""
    digits = re.sub(r"\D", "", value or "")
    if value.strip().startswith("+82") and digits.startswith("82"):
        digits = "0" + digits[2:]
    return digits


def suspicious_prefix(identifier: str) -> Optional[str]:
    if identifier.startswith("00") and len(identifier) > 3:
        return identifier[:3]
    for prefix in SUSPICIOUS_PREFIXES:
        if identifier.startswith(prefix):
            return prefix
    return None


class PhoneAnalyzer:
    """Looks up phone/account identifiers found in a message.

    Each distinct identifier goes through the shared reputation cache; a
    failed or timed-out lookup contributes nothing instead of failing the
    message.
    """

    def __init__(
        self,
        source: Optional[ReputationSource],
        cache: Optional[ReputationCache] = None,
        timeout: float = 5.0,
        max_results: int = 10,
    ):
        self.source = source
        self.cache = cache if cache is not None else ReputationCache()
        self.timeout = timeout
        self.max_results = max_results

    def extract(self, text: str) -> tuple[list[tuple[str, str]], list[tuple[str, str]]]:
        """Return ([(raw, normalized) phones], [(raw, normalized) accounts])."""
        phones: list[tuple[str, str]] = []
        accounts: list[tuple[str, str]] = []
        seen: set[str] = set()
        phone_spans: list[tuple[int, int]] = []

        for pattern in (INTERNATIONAL_PATTERN, PHONE_PATTERN, REPRESENTATIVE_PATTERN):
            for match in pattern.finditer(text or ""):
                start, end = match.span()
                if any(start < p_end and p_start < end for p_start, p_end in phone_spans):
                    continue
                raw = match.group(0).strip()
                normalized = normalize_identifier(raw)
                phone_spans.append((start, end))
                if normalized and normalized not in seen:
                    seen.add(normalized)
                    phones.append((raw, normalized))

        for match in ACCOUNT_PATTERN.finditer(text or ""):
            start, end = match.span()
            if any(start < p_end and p_start < end for p_start, p_end in phone_spans):
                continue
            normalized = normalize_identifier(match.group(0))
            if not ACCOUNT_DIGITS[0] <= len(normalized) <= ACCOUNT_DIGITS[1]:
                continue
            if normalized not in seen:
                seen.add(normalized)
                accounts.append((match.group(0), normalized))

        return phones, accounts

    async def analyze(self, text: str) -> PhoneAnalysisResult:
        """Extract identifiers and aggregate their reputation."""
        phones, accounts = self.extract(text)
        if not phones and not accounts:
            return PhoneAnalysisResult()

        result = PhoneAnalysisResult(
            extracted_phones=[n for _, n in phones],
            extracted_accounts=[n for _, n in accounts],
        )

        identifiers = [(raw, n, "전화번호") for raw, n in phones] + [(raw, n, "계좌번호") for raw, n in accounts]
        records = await asyncio.gather(*(self._lookup(n) for _, n, _ in identifiers))

        failures = 0
        for (raw, normalized, kind), record in zip(identifiers, records):
            if record is None:
                failures += 1
            elif record.is_reported:
                result.scam_phones.append(normalized)
                result.voice_phishing_count += record.voice_count
                result.sms_phishing_count += record.sms_count
                result.risk_score = max(result.risk_score, self._record_risk(record))
                reason = (
                    f"{kind} {raw}: Counter Scam 112 신고 이력 {record.total_count}건 "
                    f"(보이스피싱 {record.voice_count}건, 스미싱 {record.sms_count}건)"
                )
                if record.search_period:
                    reason += f" [{record.search_period}]"
                result.reasons.append(reason)

            if kind == "전화번호":
                prefix = suspicious_prefix(normalized)
                if prefix:
                    result.is_suspicious_prefix = True
                    result.risk_score = max(result.risk_score, 0.3)
                    result.reasons.append(f"의심 전화번호 대역({prefix}) 사용: {raw}")

        if failures and failures == len(identifiers) and not result.reasons:
            return PhoneAnalysisResult.api_error(result.extracted_phones, result.extracted_accounts)

        result.risk_score = max(0.0, min(1.0, result.risk_score))
        return result

    async def _lookup(self, identifier: str) -> Optional[ReputationRecord]:
        """Cached reputation lookup; None on any failure (fail-safe)."""
        if self.source is None:
            return None

        async def fetch() -> ReputationRecord:
            return await asyncio.wait_for(
                self.source.lookup(identifier, self.max_results),
                timeout=self.timeout,
            )

        try:
            return await self.cache.get_or_fetch(identifier, fetch)
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # Shared fetch cancelled by cache shutdown
            logger.warning("Reputation lookup cancelled for %s", identifier)
        except asyncio.TimeoutError:
            logger.warning("Reputation lookup timed out for %s", identifier)
        except Exception as exc:
            logger.warning("Reputation lookup failed for %s: %s", identifier, exc)
        return None

    @staticmethod
    def _record_risk(record: ReputationRecord) -> float:
        risk = 0.85 + 0.03 * record.voice_count + 0.02 * record.sms_count + 0.005 * record.total_count
        return min(1.0, risk)

    async def close(self) -> None:
        if self.source is not None:
            await self.source.close()
        await self.cache.close()
