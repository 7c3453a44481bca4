"""Detector data models."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

# Quoted phrases shown to the user alongside any verdict
MAX_SUSPICIOUS_PARTS = 3


class DetectionMethod(str, Enum):
    """Which evidence produced a verdict."""

    RULE_BASED = "RULE_BASED"
    LLM = "LLM"
    HYBRID = "HYBRID"
    EXTERNAL_DB = "EXTERNAL_DB"


class ScamType(str, Enum):
    """Categorical scam type attached to a verdict."""

    UNKNOWN = "UNKNOWN"
    INVESTMENT = "INVESTMENT"
    USED_TRADE = "USED_TRADE"
    PHISHING = "PHISHING"
    VOICE_PHISHING = "VOICE_PHISHING"
    IMPERSONATION = "IMPERSONATION"
    ROMANCE = "ROMANCE"
    LOAN = "LOAN"
    SAFE = "SAFE"


@dataclass(frozen=True)
class ScamVerdict:
    """Final result of analysing one chat message."""

    is_scam: bool
    confidence: float
    reasons: tuple[str, ...] = ()
    detected_keywords: tuple[str, ...] = ()
    detection_method: DetectionMethod = DetectionMethod.RULE_BASED
    scam_type: ScamType = ScamType.UNKNOWN
    warning_message: Optional[str] = None
    suspicious_parts: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {
            "is_scam": self.is_scam,
            "confidence": round(self.confidence, 4),
            "reasons": list(self.reasons),
            "detected_keywords": list(self.detected_keywords),
            "detection_method": self.detection_method.value,
            "scam_type": self.scam_type.value,
            "warning_message": self.warning_message,
            "suspicious_parts": list(self.suspicious_parts),
        }


@dataclass
class RuleEvidence:
    """Output of a single rule-based extractor."""

    confidence: float = 0.0
    reasons: list[str] = field(default_factory=list)
    matched_items: list[str] = field(default_factory=list)


@dataclass
class UrlAnalysisResult:
    """URL analyzer output."""

    urls: list[str] = field(default_factory=list)
    suspicious_urls: list[str] = field(default_factory=list)
    risk_score: float = 0.0
    reasons: list[str] = field(default_factory=list)
    # URLs confirmed by the threat intel database
    db_matches: list[str] = field(default_factory=list)

    @property
    def has_db_match(self) -> bool:
        return bool(self.db_matches)


@dataclass(frozen=True)
class ReputationRecord:
    """Parsed reputation source answer for one phone/account identifier."""

    total_count: int = 0
    voice_count: int = 0
    sms_count: int = 0
    details: tuple[str, ...] = ()
    search_period: Optional[str] = None

    @property
    def is_reported(self) -> bool:
        return self.total_count > 0 or self.voice_count > 0 or self.sms_count > 0


@dataclass
class PhoneAnalysisResult:
    """Phone/account analysis combining reputation lookups and prefix checks."""

    extracted_phones: list[str] = field(default_factory=list)
    extracted_accounts: list[str] = field(default_factory=list)
    # Identifiers with at least one report in the reputation source
    scam_phones: list[str] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)
    risk_score: float = 0.0
    voice_phishing_count: int = 0
    sms_phishing_count: int = 0
    is_suspicious_prefix: bool = False

    @classmethod
    def api_error(cls, extracted_phones: list[str], extracted_accounts: list[str] | None = None) -> "PhoneAnalysisResult":
        """Result used when every reputation lookup failed."""
        return cls(
            extracted_phones=list(extracted_phones),
            extracted_accounts=list(extracted_accounts or []),
        )

    @property
    def has_scam_phones(self) -> bool:
        return bool(self.scam_phones)

    @property
    def has_report_history(self) -> bool:
        return self.voice_phishing_count > 0 or self.sms_phishing_count > 0


@dataclass(frozen=True)
class GenerativeContext:
    """Rule evidence snapshot handed to the generative analyzer."""

    rule_confidence: Optional[float] = None
    rule_reasons: tuple[str, ...] = ()
    detected_keywords: tuple[str, ...] = ()
    urls: tuple[str, ...] = ()
    suspicious_urls: tuple[str, ...] = ()
    url_reasons: tuple[str, ...] = ()
