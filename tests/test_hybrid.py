"""Tests for the hybrid fusion engine."""

import asyncio
import json

import pytest

from onguard.analyzer.hybrid import GOLDEN_PATTERN_REASON, HybridScamDetector
from onguard.analyzer.keywords import KeywordMatcher
from onguard.analyzer.llm import GenerativeAnalyzer, InitState
from onguard.analyzer.metrics import metrics
from onguard.analyzer.models import DetectionMethod, ReputationRecord, ScamType
from onguard.analyzer.phone import PhoneAnalyzer
from onguard.analyzer.threat_intel import ThreatIndicator, ThreatIntel
from onguard.analyzer.urls import UrlAnalyzer
from onguard.cache import ReputationCache
from onguard.config import FusionConfig


class FakeReputationSource:
    def __init__(self, records=None, error: Exception | None = None):
        self.records = records or {}
        self.error = error
        self.calls: list[str] = []

    async def lookup(self, identifier: str, max_results: int = 10) -> ReputationRecord:
        self.calls.append(identifier)
        if self.error:
            raise self.error
        return self.records.get(identifier, ReputationRecord())

    async def close(self) -> None:
        pass


class FakeGenerator:
    def __init__(self, answer: dict | None = None, available: bool = True):
        self.answer = answer
        self.available = available
        self.load_calls = 0
        self.prompts: list[str] = []
        self.closed = False

    async def load(self) -> bool:
        self.load_calls += 1
        return self.available

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.answer is None:
            return "분석 실패"
        return json.dumps(self.answer, ensure_ascii=False)

    async def close(self) -> None:
        self.closed = True


class ExplodingMatcher:
    def analyze(self, text):
        raise RuntimeError("dictionary corrupted")


def _answer(confidence: float, is_scam: bool = False, scam_type: str = "정상", reasons=None) -> dict:
    return {
        "isScam": is_scam,
        "confidence": confidence,
        "scamType": scam_type,
        "warningMessage": "모델 경고",
        "reasons": reasons or ["모델 판단"],
        "suspiciousParts": ["모델 인용"],
    }


def _detector(generator=None, source=None, keyword_matcher=None) -> HybridScamDetector:
    intel = ThreatIntel(
        malicious_domains=[ThreatIndicator(value="kbstar-safe.top", type="phishing", source="KISA")]
    )
    phone_analyzer = PhoneAnalyzer(source or FakeReputationSource(), ReputationCache())
    return HybridScamDetector(
        keyword_matcher=keyword_matcher or KeywordMatcher(),
        url_analyzer=UrlAnalyzer(threat_intel=intel),
        phone_analyzer=phone_analyzer,
        llm_analyzer=GenerativeAnalyzer(generator) if generator is not None else None,
        config=FusionConfig(),
    )


class TestFusion:
    @pytest.mark.asyncio
    async def test_low_band_fusion(self):
        generator = FakeGenerator(_answer(0.2))
        verdict = await _detector(generator).analyze("돈이 필요해")

        assert verdict.confidence == pytest.approx(0.3 * 0.3 + 0.2 * 0.7)
        assert verdict.is_scam is False
        assert verdict.detection_method is DetectionMethod.HYBRID
        assert len(generator.prompts) == 1

    @pytest.mark.asyncio
    async def test_high_band_fusion(self):
        generator = FakeGenerator(_answer(0.75, is_scam=True, scam_type="지인 사칭"))
        verdict = await _detector(generator).analyze("급하게 돈 좀 빌려줄 수 있어?")

        assert verdict.confidence == pytest.approx(0.4 * 0.3 + 0.75 * 0.7)
        assert verdict.is_scam is True
        assert verdict.scam_type is ScamType.IMPERSONATION
        assert verdict.warning_message == "모델 경고"
        assert verdict.suspicious_parts == ("모델 인용",)
        assert metrics.count("fused") == 1

    @pytest.mark.asyncio
    async def test_reasons_are_deduplicated_union(self):
        generator = FakeGenerator(_answer(0.6, reasons=["[HIGH] 금전 요구: '돈이 필요'", "새 사유"]))
        verdict = await _detector(generator).analyze("돈이 필요해")

        assert verdict.reasons == ("[HIGH] 금전 요구: '돈이 필요'", "새 사유")

    @pytest.mark.asyncio
    async def test_oracle_scam_verdict_overrides_low_average(self):
        generator = FakeGenerator(_answer(0.3, is_scam=True, scam_type="투자사기"))
        verdict = await _detector(generator).analyze("돈이 필요해")

        assert verdict.confidence == pytest.approx(0.3 * 0.3 + 0.3 * 0.7)
        assert verdict.is_scam is True
        assert metrics.overrides == 1

    @pytest.mark.asyncio
    async def test_prompt_carries_rule_evidence(self):
        generator = FakeGenerator(_answer(0.5))
        await _detector(generator).analyze("급하게 돈 좀 빌려줄 수 있어?")

        assert "- rule_confidence: 0.40" in generator.prompts[0]
        assert "빌려줄" in generator.prompts[0]

    @pytest.mark.asyncio
    async def test_fused_suspicious_parts_are_capped(self):
        answer = _answer(0.6, is_scam=True)
        answer["suspiciousParts"] = ["a", "b", "c", "d", "e"]
        verdict = await _detector(FakeGenerator(answer)).analyze("돈이 필요해")

        assert verdict.detection_method is DetectionMethod.HYBRID
        assert verdict.suspicious_parts == ("a", "b", "c")


class TestRepeatability:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "text",
        [
            "안전계좌로 옮기고 OTP 알려주세요",
            "오늘 점심 뭐 먹을래?",
            "급한 일이야 010-1234-5678 로 전화줘",
        ],
    )
    async def test_rule_verdict_is_stable(self, text):
        source = FakeReputationSource({"01012345678": ReputationRecord(total_count=3, voice_count=2)})
        detector = _detector(source=source)

        first = await detector.analyze(text)
        second = await detector.analyze(text)

        assert first == second

    @pytest.mark.asyncio
    async def test_fused_verdict_is_stable(self):
        generator = FakeGenerator(_answer(0.75, is_scam=True, scam_type="지인 사칭"))
        detector = _detector(generator)

        first = await detector.analyze("급하게 돈 좀 빌려줄 수 있어?")
        second = await detector.analyze("급하게 돈 좀 빌려줄 수 있어?")

        assert first.detection_method is DetectionMethod.HYBRID
        assert first == second
        assert len(generator.prompts) == 2


class TestShortCircuits:
    @pytest.mark.asyncio
    async def test_reported_phone_skips_oracle(self):
        generator = FakeGenerator(_answer(0.1))
        source = FakeReputationSource({"01012345678": ReputationRecord(total_count=3, voice_count=2)})
        verdict = await _detector(generator, source).analyze("급한 일이야 010-1234-5678 로 전화줘")

        assert verdict.confidence >= 0.85
        assert verdict.is_scam is True
        assert verdict.scam_type is ScamType.VOICE_PHISHING
        assert verdict.detection_method is DetectionMethod.HYBRID
        assert generator.load_calls == 0
        assert generator.prompts == []
        assert metrics.count("strong_signal") == 1

    @pytest.mark.asyncio
    async def test_database_url_skips_oracle(self):
        generator = FakeGenerator(_answer(0.1))
        verdict = await _detector(generator).analyze("계정 확인 부탁드립니다 https://kbstar-safe.top/login")

        assert verdict.confidence == 1.0
        assert verdict.is_scam is True
        assert generator.prompts == []

    @pytest.mark.asyncio
    async def test_golden_pattern(self):
        generator = FakeGenerator(_answer(0.1))
        verdict = await _detector(generator).analyze("급하게 입금 부탁해 https://example.com/pay")

        assert GOLDEN_PATTERN_REASON in verdict.reasons
        assert verdict.confidence == pytest.approx(0.85)
        assert verdict.is_scam is True
        assert generator.prompts == []

    @pytest.mark.asyncio
    async def test_golden_pattern_adds_bonus_above_floor(self):
        verdict = await _detector().analyze("긴급! 안전계좌로 OTP 입력 후 송금 https://bit.ly/x")
        # keywords 0.9, url bump past 1.0, golden bonus; clamped
        assert verdict.confidence == 1.0

    @pytest.mark.asyncio
    async def test_low_confidence_skips_oracle(self):
        generator = FakeGenerator(_answer(0.9, is_scam=True))
        verdict = await _detector(generator).analyze("오늘 점심 뭐 먹을래?")

        assert verdict.confidence == 0
        assert verdict.is_scam is False
        assert verdict.detection_method is DetectionMethod.RULE_BASED
        assert verdict.scam_type is ScamType.UNKNOWN
        assert verdict.warning_message is None
        assert generator.load_calls == 0
        assert metrics.count("low_confidence") == 1

    @pytest.mark.asyncio
    async def test_above_band_stays_rule_only(self):
        generator = FakeGenerator(_answer(0.1))
        verdict = await _detector(generator).analyze("안전계좌로 옮기고 OTP 알려주세요")

        assert verdict.confidence == pytest.approx(0.8)
        assert verdict.is_scam is True
        assert verdict.detection_method is DetectionMethod.RULE_BASED
        assert generator.prompts == []
        assert metrics.count("rule_only") == 1


class TestDegradation:
    @pytest.mark.asyncio
    async def test_failed_oracle_falls_back_to_rules(self):
        generator = FakeGenerator(_answer(0.9, is_scam=True), available=False)
        detector = _detector(generator)

        verdict = await detector.analyze("급하게 돈 좀 빌려줄 수 있어?")

        assert detector.llm_analyzer.state is InitState.FAILED
        assert verdict.confidence == pytest.approx(0.4)
        assert verdict.is_scam is False
        assert verdict.detection_method is DetectionMethod.RULE_BASED
        assert verdict.warning_message
        assert verdict.suspicious_parts == ("급하", "빌려줄")
        assert metrics.count("llm_unavailable") == 1

    @pytest.mark.asyncio
    async def test_oracle_without_result_falls_back(self):
        generator = FakeGenerator(answer=None)
        verdict = await _detector(generator).analyze("돈이 필요해")

        assert verdict.confidence == pytest.approx(0.3)
        assert verdict.detection_method is DetectionMethod.RULE_BASED
        assert metrics.count("llm_no_result") == 1

    @pytest.mark.asyncio
    async def test_escalation_disabled_by_caller(self):
        generator = FakeGenerator(_answer(0.9, is_scam=True))
        verdict = await _detector(generator).analyze("돈이 필요해", allow_escalation=False)

        assert verdict.confidence == pytest.approx(0.3)
        assert generator.load_calls == 0

    @pytest.mark.asyncio
    async def test_no_oracle_configured(self):
        verdict = await _detector().analyze("급하게 돈 좀 빌려줄 수 있어?")
        assert verdict.confidence == pytest.approx(0.4)
        assert verdict.is_scam is False

    @pytest.mark.asyncio
    async def test_extractor_failure_is_neutral(self):
        detector = _detector(keyword_matcher=ExplodingMatcher())
        verdict = await detector.analyze("https://bit.ly/abc")

        assert verdict.confidence == pytest.approx(0.65)
        assert verdict.detection_method is DetectionMethod.HYBRID
        assert verdict.scam_type is ScamType.PHISHING

    @pytest.mark.asyncio
    async def test_reputation_failure_is_neutral(self):
        source = FakeReputationSource(error=RuntimeError("HTTP 500"))
        verdict = await _detector(source=source).analyze("010-1234-5678 로 연락줘")

        assert verdict.confidence == 0
        assert verdict.is_scam is False

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", None, 42])
    async def test_malformed_input(self, text):
        verdict = await _detector(FakeGenerator(_answer(0.9))).analyze(text)

        assert verdict.is_scam is False
        assert verdict.confidence == 0
        assert verdict.scam_type is ScamType.UNKNOWN

    @pytest.mark.asyncio
    async def test_concurrent_messages(self):
        detector = _detector(FakeGenerator(_answer(0.2)))
        texts = ["돈이 필요해", "오늘 점심 뭐 먹을래?", "안전계좌로 옮기고 OTP 알려주세요"] * 3

        verdicts = await asyncio.gather(*(detector.analyze(t) for t in texts))

        assert [v.is_scam for v in verdicts[:3]] == [False, False, True]
        assert verdicts[0].confidence == pytest.approx(0.23)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_initialize_and_close(self):
        generator = FakeGenerator(_answer(0.2))
        detector = _detector(generator)

        assert detector.is_llm_available() is False
        assert await detector.initialize_llm() is True
        assert detector.is_llm_available() is True

        await detector.close()

        assert generator.closed
        assert detector.is_llm_available() is False

    @pytest.mark.asyncio
    async def test_initialize_without_oracle(self):
        assert await _detector().initialize_llm() is False


def test_verdict_serializes():
    detector = _detector()
    verdict = asyncio.run(detector.analyze("안전계좌로 옮기고 OTP 알려주세요"))
    data = verdict.to_dict()

    assert data["is_scam"] is True
    assert data["detection_method"] == "RULE_BASED"
    assert data["scam_type"] == "IMPERSONATION"
    assert json.dumps(data, ensure_ascii=False)
