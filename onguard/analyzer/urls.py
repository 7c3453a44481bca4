"""URL extraction and risk scoring for chat messages."""

from __future__ import annotations

import ipaddress
import logging
import re
import unicodedata
from dataclasses import dataclass, field
from typing import Optional, Set
from urllib.parse import urlparse

import idna
from rapidfuzz import fuzz

from ..config import (
    DEFAULT_FREE_HOSTING_DOMAINS,
    DEFAULT_PROTECTED_DOMAINS,
    DEFAULT_SHORTENER_DOMAINS,
    DEFAULT_SUBSTITUTIONS,
    DEFAULT_SUSPICIOUS_TLDS,
)
from ..utils.domains import domain_matches, registered_domain, split_domain
from .models import UrlAnalysisResult
from .threat_intel import ThreatIntel

logger = logging.getLogger(__name__)

URL_PATTERN = re.compile(
    r"(?:https?://|www\.)[^\s<>\"'`]+"
    r"|(?<![@\w.-])(?:[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?\.)+[a-z]{2,24}(?::\d{1,5})?(?:/[^\s<>\"'`]*)?",
    re.I,
)
TRAILING_PUNCTUATION = ".,!?;:)]}>\"'"


@dataclass
class UrlScore:
    """Risk assessment of a single URL."""

    url: str
    risk: float = 0.0
    reasons: list[str] = field(default_factory=list)
    db_match: bool = False


class UrlAnalyzer:
    """Extracts URLs from text and scores each one.

    A database hit is conclusive (risk 1.0). Otherwise the strongest
    structural heuristic sets the risk and every additional one adds 0.1.
    The message-level risk is the maximum over suspicious URLs, never a sum.
    """

    DB_MATCH_RISK = 1.0
    IP_HOST_RISK = 0.6
    LOOKALIKE_RISK = 0.7
    PUNYCODE_RISK = 0.6
    SHORTENER_RISK = 0.5
    FREE_HOSTING_RISK = 0.5
    SUSPICIOUS_TLD_RISK = 0.4
    EXTRA_HEURISTIC_BONUS = 0.1
    LOOKALIKE_RATIO = 80

    # Cyrillic/Armenian characters that look like Latin
    HOMOGLYPHS = {
        "а": "a",
        "е": "e",
        "о": "o",
        "р": "p",
        "с": "c",
        "у": "y",
        "х": "x",
        "ѕ": "s",
        "і": "i",
        "ј": "j",
        "ԁ": "d",
        "ɡ": "g",
        "ո": "n",
        "ս": "u",
    }

    def __init__(
        self,
        threat_intel: Optional[ThreatIntel] = None,
        suspicious_tlds: Set[str] | None = None,
        shortener_domains: Set[str] | None = None,
        free_hosting_domains: Set[str] | None = None,
        protected_domains: Set[str] | None = None,
        allowlist: Set[str] | None = None,
        substitutions: dict[str, str] | None = None,
        risk_floor: float = 0.3,
    ):
        self.threat_intel = threat_intel if threat_intel is not None else ThreatIntel()
        self.suspicious_tlds = {t.lower().lstrip(".") for t in (suspicious_tlds or DEFAULT_SUSPICIOUS_TLDS)}
        self.shortener_domains = frozenset(d.lower() for d in (shortener_domains or DEFAULT_SHORTENER_DOMAINS))
        self.free_hosting_domains = frozenset(d.lower() for d in (free_hosting_domains or DEFAULT_FREE_HOSTING_DOMAINS))
        self.protected_domains = frozenset(d.lower() for d in (protected_domains or DEFAULT_PROTECTED_DOMAINS))
        self.allowlist = frozenset(d.lower() for d in (allowlist or set())) | self.protected_domains
        self.substitutions = substitutions or dict(DEFAULT_SUBSTITUTIONS)
        self.risk_floor = risk_floor

        # Brand labels used for lookalike checks ("naver" from naver.com)
        self._protected_labels: dict[str, str] = {}
        for domain in self.protected_domains:
            label = domain.split(".")[0]
            if len(label) >= 4:
                self._protected_labels[label] = domain

    def extract_urls(self, text: str) -> list[str]:
        """Return URL-like substrings in order of appearance (deduplicated)."""
        urls: list[str] = []
        for match in URL_PATTERN.finditer(text or ""):
            candidate = match.group(0).rstrip(TRAILING_PUNCTUATION)
            if candidate and candidate not in urls:
                urls.append(candidate)
        return urls

    def analyze(self, text: str) -> UrlAnalysisResult:
        """Extract and score every URL in text."""
        result = UrlAnalysisResult()

        for candidate in self.extract_urls(text):
            try:
                scored = self.score_url(candidate)
            except (ValueError, UnicodeError) as exc:
                logger.debug("Ignoring malformed URL candidate %r: %s", candidate, exc)
                continue
            if scored is None:
                continue

            result.urls.append(scored.url)
            if scored.db_match:
                result.db_matches.append(scored.url)
            if scored.risk >= self.risk_floor:
                result.suspicious_urls.append(scored.url)
                result.risk_score = max(result.risk_score, scored.risk)
                for reason in scored.reasons:
                    if reason not in result.reasons:
                        result.reasons.append(reason)

        return result

    def score_url(self, url: str) -> Optional[UrlScore]:
        """Score one URL; None when the candidate is not a usable URL."""
        candidate = url if "://" in url else f"http://{url}"
        parsed = urlparse(candidate)
        if parsed.port == 0:
            return None
        host = (parsed.hostname or "").strip(".").lower()
        if not host or "." not in host and not _is_ip(host):
            return None

        is_ip = _is_ip(host)
        subdomain, label, suffix = ("", host, "") if is_ip else split_domain(host)
        if not is_ip and not suffix:
            # Bare "word.word" without a public suffix (file names etc.)
            if "://" not in url:
                return None

        score = UrlScore(url=url)

        known, indicator = self.threat_intel.is_known_malicious(host)
        pattern_hits = self.threat_intel.check_malicious_patterns(url)
        if known or pattern_hits:
            hit = indicator or pattern_hits[0]
            source = hit.source
            score.db_match = True
            score.risk = self.DB_MATCH_RISK
            label_text = f"피싱 DB 등록 URL ({source})" if source else "피싱 DB 등록 URL"
            score.reasons.append(f"{label_text}: {url}")
            return score

        if not is_ip and domain_matches(host, self.allowlist):
            return score

        findings: list[tuple[float, str]] = []

        if is_ip:
            findings.append((self.IP_HOST_RISK, f"IP 주소로 직접 연결되는 URL: {url}"))
        else:
            if not host.isascii() or "xn--" in host:
                findings.append((self.PUNYCODE_RISK, f"국제화 도메인(퓨니코드) URL: {url}"))

            target = self._lookalike_target(host, subdomain, label)
            if target:
                findings.append((self.LOOKALIKE_RISK, f"'{target}' 사칭 의심 URL: {url}"))

            if domain_matches(host, self.shortener_domains):
                findings.append((self.SHORTENER_RISK, f"단축 URL: {url}"))

            if domain_matches(host, self.free_hosting_domains):
                findings.append((self.FREE_HOSTING_RISK, f"무료 호스팅 도메인 URL: {url}"))

            tld = suffix.rsplit(".", 1)[-1]
            if tld in self.suspicious_tlds:
                findings.append((self.SUSPICIOUS_TLD_RISK, f"의심 TLD(.{tld}) URL: {url}"))

        if findings:
            findings.sort(key=lambda f: f[0], reverse=True)
            risk = findings[0][0] + self.EXTRA_HEURISTIC_BONUS * (len(findings) - 1)
            score.risk = max(0.0, min(1.0, risk))
            score.reasons = [reason for _, reason in findings]

        return score

    def _lookalike_target(self, host: str, subdomain: str, label: str) -> Optional[str]:
        """Return the protected domain this host imitates, if any."""
        if not self._protected_labels:
            return None
        if registered_domain(host) in self.protected_domains:
            return None

        normalized = self._normalize(label)
        parts = [p for p in re.split(r"[-.]", f"{subdomain}.{label}") if p]
        for brand, domain in self._protected_labels.items():
            if normalized == brand or brand in normalized:
                return domain
            if any(self._normalize(part) == brand for part in parts):
                return domain
            if fuzz.ratio(brand, normalized) >= self.LOOKALIKE_RATIO:
                return domain
        return None

    def _normalize(self, value: str) -> str:
        """Undo punycode, homoglyphs and l33t substitutions."""
        candidate = value.lower()
        if candidate.startswith("xn--"):
            try:
                candidate = idna.decode(candidate)
            except (idna.IDNAError, UnicodeError):
                pass
        chars = []
        for char in candidate:
            if char in self.HOMOGLYPHS:
                chars.append(self.HOMOGLYPHS[char])
            else:
                chars.append(unicodedata.normalize("NFKC", char))
        candidate = "".join(chars)
        for sub, char in self.substitutions.items():
            candidate = candidate.replace(sub, char)
        return candidate


def _is_ip(host: str) -> bool:
    try:
        ipaddress.ip_address(host)
    except ValueError:
        return False
    return True
