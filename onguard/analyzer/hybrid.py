"""
Hybrid scam detector.

Fuses keyword, URL and phone/account evidence into one verdict and consults
the generative model only for messages the rules cannot settle:

1. Strong signal (reported identifier, DB-confirmed URL, golden pattern)
   returns immediately with a high-band confidence.
2. Weak evidence (below the low threshold) returns the rule-only verdict.
3. Ambiguous evidence is escalated to the model and the two scores fused.
"""

import asyncio
import logging
from typing import Iterable, Optional

from ..config import DEFAULT_MONEY_TERMS, DEFAULT_URGENCY_TERMS, FusionConfig
from .keywords import KeywordMatcher
from .llm import GenerativeAnalyzer
from .metrics import metrics
from .models import (
    MAX_SUSPICIOUS_PARTS,
    DetectionMethod,
    GenerativeContext,
    PhoneAnalysisResult,
    RuleEvidence,
    ScamType,
    ScamVerdict,
    UrlAnalysisResult,
)
from .phone import PhoneAnalyzer
from .scam_types import generate_warning, infer_scam_type
from .urls import UrlAnalyzer

logger = logging.getLogger(__name__)

URL_BONUS_FACTOR = 0.3
GOLDEN_PATTERN_BONUS = 0.15
GOLDEN_PATTERN_REASON = "의심스러운 조합: 긴급 + 금전 + URL"


def _dedupe(items: Iterable[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for item in items:
        if item and item not in seen:
            seen[item] = None
    return tuple(seen)


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


class HybridScamDetector:
    """Signal-fusion engine producing one ScamVerdict per message."""

    def __init__(
        self,
        keyword_matcher: Optional[KeywordMatcher] = None,
        url_analyzer: Optional[UrlAnalyzer] = None,
        phone_analyzer: Optional[PhoneAnalyzer] = None,
        llm_analyzer: Optional[GenerativeAnalyzer] = None,
        config: Optional[FusionConfig] = None,
        urgency_terms: Optional[list[str]] = None,
        money_terms: Optional[list[str]] = None,
    ):
        self.keyword_matcher = keyword_matcher if keyword_matcher is not None else KeywordMatcher()
        self.url_analyzer = url_analyzer if url_analyzer is not None else UrlAnalyzer()
        self.phone_analyzer = phone_analyzer
        self.llm_analyzer = llm_analyzer
        self.config = config if config is not None else FusionConfig()
        self.urgency_terms = [t.lower() for t in (urgency_terms or DEFAULT_URGENCY_TERMS)]
        self.money_terms = [t.lower() for t in (money_terms or DEFAULT_MONEY_TERMS)]

    async def initialize_llm(self) -> bool:
        """Eagerly initialize the generative model (otherwise done lazily)."""
        if self.llm_analyzer is None:
            return False
        return await self.llm_analyzer.initialize()

    def is_llm_available(self) -> bool:
        return self.llm_analyzer is not None and self.llm_analyzer.is_available()

    async def _keywords(self, text: str) -> RuleEvidence:
        try:
            return await asyncio.to_thread(self.keyword_matcher.analyze, text)
        except Exception as e:
            logger.warning(f"Keyword analysis failed: {e}")
            return RuleEvidence()

    async def _urls(self, text: str) -> UrlAnalysisResult:
        try:
            return await asyncio.to_thread(self.url_analyzer.analyze, text)
        except Exception as e:
            logger.warning(f"URL analysis failed: {e}")
            return UrlAnalysisResult()

    async def _phones(self, text: str) -> PhoneAnalysisResult:
        if self.phone_analyzer is None:
            return PhoneAnalysisResult()
        try:
            return await self.phone_analyzer.analyze(text)
        except Exception as e:
            logger.warning(f"Phone/account analysis failed: {e}")
            return PhoneAnalysisResult()

    def _has_golden_pattern(self, text: str, url_result: UrlAnalysisResult) -> bool:
        if not url_result.urls:
            return False
        lowered = text.lower()
        has_urgency = any(term in lowered for term in self.urgency_terms)
        has_money = any(term in lowered for term in self.money_terms)
        return has_urgency and has_money

    async def analyze(self, text: str, allow_escalation: bool = True) -> ScamVerdict:
        """
        Analyze one chat message.

        Args:
            text: Message text
            allow_escalation: False keeps the verdict rule-only

        Returns:
            ScamVerdict (never raises for malformed input)
        """
        if not isinstance(text, str) or not text.strip():
            return ScamVerdict(is_scam=False, confidence=0.0)

        keyword_result, url_result, phone_result = await asyncio.gather(
            self._keywords(text),
            self._urls(text),
            self._phones(text),
        )

        reasons: list[str] = []
        reasons.extend(keyword_result.reasons)
        reasons.extend(url_result.reasons)
        reasons.extend(phone_result.reasons)
        keywords = list(keyword_result.matched_items)

        rule_confidence = keyword_result.confidence
        if url_result.suspicious_urls:
            rule_confidence = max(rule_confidence, url_result.risk_score)
            rule_confidence += url_result.risk_score * URL_BONUS_FACTOR
        rule_confidence = max(rule_confidence, phone_result.risk_score)
        rule_confidence = _clamp(rule_confidence)

        external_hit = phone_result.has_scam_phones or url_result.has_db_match
        url_evidence = bool(url_result.suspicious_urls) or external_hit

        golden = self._has_golden_pattern(text, url_result)
        if golden:
            reasons.append(GOLDEN_PATTERN_REASON)

        # 1. Strong signal
        if external_hit or golden:
            boosted = rule_confidence + (GOLDEN_PATTERN_BONUS if golden else 0.0)
            confidence = _clamp(max(boosted, self.config.high_confidence_threshold))
            logger.debug(
                "Strong signal (phone=%s, db_url=%s, golden=%s): %.2f",
                phone_result.has_scam_phones,
                url_result.has_db_match,
                golden,
                confidence,
            )
            metrics.record_path("strong_signal")
            return self._rule_verdict(confidence, reasons, keywords, url_evidence)

        # 2. Weak evidence
        if rule_confidence < self.config.low_confidence_threshold:
            metrics.record_path("low_confidence")
            return self._rule_verdict(rule_confidence, reasons, keywords, url_evidence)

        # 3. Escalation
        if (
            allow_escalation
            and self.llm_analyzer is not None
            and self.config.llm_trigger_low <= rule_confidence <= self.config.llm_trigger_high
        ):
            fused = await self._escalate(text, rule_confidence, reasons, keywords, url_result)
            if fused is not None:
                return fused

        metrics.record_path("rule_only")
        return self._rule_verdict(rule_confidence, reasons, keywords, url_evidence)

    async def _escalate(
        self,
        text: str,
        rule_confidence: float,
        reasons: list[str],
        keywords: list[str],
        url_result: UrlAnalysisResult,
    ) -> Optional[ScamVerdict]:
        """Consult the generative model; None means fall back to rules."""
        if not self.llm_analyzer.is_available():
            logger.debug("LLM not initialized yet, trying lazy initialization")
            try:
                await self.llm_analyzer.initialize()
            except Exception as e:
                logger.warning(f"Lazy LLM initialization failed: {e}")

        if not self.llm_analyzer.is_available():
            logger.info("LLM unavailable; using rule-based verdict (confidence=%.2f)", rule_confidence)
            metrics.record_path("llm_unavailable")
            return None

        context = GenerativeContext(
            rule_confidence=rule_confidence,
            rule_reasons=_dedupe(reasons),
            detected_keywords=tuple(keywords),
            urls=tuple(url_result.urls),
            suspicious_urls=tuple(url_result.suspicious_urls),
            url_reasons=tuple(url_result.reasons),
        )
        try:
            llm_result = await self.llm_analyzer.analyze(text, context)
        except Exception as e:
            logger.warning(f"LLM analysis failed: {e}")
            llm_result = None

        if llm_result is None:
            metrics.record_path("llm_no_result")
            return None

        return self._fuse(rule_confidence, reasons, keywords, llm_result)

    def _fuse(
        self,
        rule_confidence: float,
        reasons: list[str],
        keywords: list[str],
        llm_result: ScamVerdict,
    ) -> ScamVerdict:
        confidence = _clamp(
            rule_confidence * self.config.rule_weight + llm_result.confidence * self.config.llm_weight
        )
        above_threshold = confidence > self.config.final_scam_threshold
        if llm_result.is_scam and not above_threshold:
            logger.info(
                "LLM verdict overrides fused score (rule=%.2f, llm=%.2f, fused=%.2f)",
                rule_confidence,
                llm_result.confidence,
                confidence,
            )
            metrics.record_override()

        logger.debug(
            "Fused result - rule: %.2f, llm: %.2f, final: %.2f",
            rule_confidence,
            llm_result.confidence,
            confidence,
        )
        metrics.record_path("fused")
        metrics.record_scam_type(llm_result.scam_type.value)

        return ScamVerdict(
            is_scam=above_threshold or llm_result.is_scam,
            confidence=confidence,
            reasons=_dedupe([*reasons, *llm_result.reasons]),
            detected_keywords=tuple(keywords),
            detection_method=DetectionMethod.HYBRID,
            scam_type=llm_result.scam_type,
            warning_message=llm_result.warning_message,
            suspicious_parts=llm_result.suspicious_parts[:MAX_SUSPICIOUS_PARTS],
        )

    def _rule_verdict(
        self,
        confidence: float,
        reasons: list[str],
        keywords: list[str],
        url_evidence: bool,
    ) -> ScamVerdict:
        confidence = _clamp(confidence)
        unique_reasons = _dedupe(reasons)
        scam_type = infer_scam_type(unique_reasons) if unique_reasons else ScamType.UNKNOWN
        warning = None
        if unique_reasons:
            warning = generate_warning(
                scam_type,
                confidence,
                high=self.config.high_confidence_threshold,
                medium=self.config.medium_confidence_threshold,
            )
        metrics.record_scam_type(scam_type.value)

        return ScamVerdict(
            is_scam=confidence > self.config.final_scam_threshold,
            confidence=confidence,
            reasons=unique_reasons,
            detected_keywords=tuple(keywords),
            detection_method=DetectionMethod.HYBRID if url_evidence else DetectionMethod.RULE_BASED,
            scam_type=scam_type,
            warning_message=warning,
            suspicious_parts=tuple(keywords[:MAX_SUSPICIOUS_PARTS]),
        )

    async def close(self) -> None:
        """Release the model backend, reputation client and cache."""
        if self.llm_analyzer is not None:
            await self.llm_analyzer.close()
        if self.phone_analyzer is not None:
            await self.phone_analyzer.close()
