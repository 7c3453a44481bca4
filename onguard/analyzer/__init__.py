"""Analyzer modules for OnGuard."""

from .hybrid import HybridScamDetector
from .keywords import KeywordMatcher
from .llm import GenerativeAnalyzer, OpenAICompatibleGenerator
from .models import DetectionMethod, ScamType, ScamVerdict
from .phone import PhoneAnalyzer
from .reputation import CounterScam112Client
from .threat_intel import ThreatIntel, ThreatIntelLoader
from .urls import UrlAnalyzer

__all__ = [
    "HybridScamDetector",
    "KeywordMatcher",
    "UrlAnalyzer",
    "PhoneAnalyzer",
    "CounterScam112Client",
    "GenerativeAnalyzer",
    "OpenAICompatibleGenerator",
    "ThreatIntelLoader",
    "ThreatIntel",
    "ScamVerdict",
    "ScamType",
    "DetectionMethod",
]
