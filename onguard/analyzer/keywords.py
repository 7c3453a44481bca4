"""Tiered keyword matching for chat messages."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from ..config import DEFAULT_KEYWORD_TIERS
from .models import RuleEvidence

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeywordRule:
    """A compiled dictionary entry."""

    pattern: re.Pattern
    tier: str
    label: str


class KeywordMatcher:
    """Scores text against a severity-tiered keyword dictionary.

    Correlated strong signals saturate quickly while isolated weak ones stay
    low:

    - two or more CRITICAL hits: 0.8
    - one CRITICAL plus a HIGH hit: 0.65
    - (each further hit on top of those pairs adds 0.05)
    - otherwise additive: CRITICAL 0.4, HIGH 0.3, MEDIUM 0.1 (MEDIUM capped at 0.3)
    """

    TIER_POINTS = {
        "CRITICAL": 0.4,
        "HIGH": 0.3,
        "MEDIUM": 0.1,
    }
    MEDIUM_CAP = 0.3
    DOUBLE_CRITICAL = 0.8
    CRITICAL_WITH_HIGH = 0.65
    EXTRA_HIT_BONUS = 0.05

    def __init__(self, keyword_tiers: list[tuple[str, str, str]] | None = None):
        self.rules: list[KeywordRule] = []
        for pattern, tier, label in keyword_tiers or DEFAULT_KEYWORD_TIERS:
            tier = tier.upper()
            if tier not in self.TIER_POINTS:
                logger.warning("Unknown keyword tier %s for %r; skipping", tier, pattern)
                continue
            try:
                compiled = re.compile(pattern, re.I)
            except re.error as exc:
                logger.warning("Invalid keyword pattern %r: %s", pattern, exc)
                continue
            self.rules.append(KeywordRule(compiled, tier, label))

    def analyze(self, text: str) -> RuleEvidence:
        """Match text against the dictionary (one hit per entry)."""
        if not text:
            return RuleEvidence()

        hits: list[tuple[int, KeywordRule, str]] = []
        for rule in self.rules:
            match = rule.pattern.search(text)
            if match:
                hits.append((match.start(), rule, match.group(0)))

        if not hits:
            return RuleEvidence()

        counts = {tier: 0 for tier in self.TIER_POINTS}
        for _, rule, _ in hits:
            counts[rule.tier] += 1

        confidence = self._combine(counts)

        # Report in reading order
        hits.sort(key=lambda h: h[0])
        reasons: list[str] = []
        matched: list[str] = []
        for _, rule, phrase in hits:
            reason = f"[{rule.tier}] {rule.label}: '{phrase}'"
            if reason not in reasons:
                reasons.append(reason)
            if phrase not in matched:
                matched.append(phrase)

        return RuleEvidence(confidence=confidence, reasons=reasons, matched_items=matched)

    def _combine(self, counts: dict[str, int]) -> float:
        critical = counts["CRITICAL"]
        high = counts["HIGH"]
        medium = counts["MEDIUM"]
        total = critical + high + medium

        if critical >= 2:
            confidence = self.DOUBLE_CRITICAL + self.EXTRA_HIT_BONUS * (total - 2)
        elif critical == 1 and high >= 1:
            confidence = self.CRITICAL_WITH_HIGH + self.EXTRA_HIT_BONUS * (total - 2)
        else:
            confidence = (
                self.TIER_POINTS["CRITICAL"] * critical
                + self.TIER_POINTS["HIGH"] * high
                + min(self.MEDIUM_CAP, self.TIER_POINTS["MEDIUM"] * medium)
            )
        return max(0.0, min(1.0, confidence))
