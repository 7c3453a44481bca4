"""Tests for URL extraction and risk scoring."""

import pytest

from onguard.analyzer.threat_intel import ThreatIndicator, ThreatIntel
from onguard.analyzer.urls import UrlAnalyzer


@pytest.fixture
def analyzer():
    intel = ThreatIntel(
        malicious_domains=[ThreatIndicator(value="kbstar-safe.top", type="phishing", source="KISA")],
        malicious_patterns=[ThreatIndicator(value=r"/kakao[-_]?login\.php", type="pattern", source="manual")],
    )
    return UrlAnalyzer(threat_intel=intel, allowlist={"google.com"})


class TestExtraction:
    def test_scheme_www_and_bare_hosts(self, analyzer):
        text = "확인: https://bit.ly/abc, www.example.com 그리고 naver-login.xyz/auth."
        assert analyzer.extract_urls(text) == [
            "https://bit.ly/abc",
            "www.example.com",
            "naver-login.xyz/auth",
        ]

    def test_duplicates_collapsed(self, analyzer):
        assert analyzer.extract_urls("bit.ly/x bit.ly/x") == ["bit.ly/x"]

    def test_filenames_are_not_urls(self, analyzer):
        result = analyzer.analyze("첨부파일 report.txt 확인해줘")
        assert result.urls == []
        assert result.risk_score == 0


class TestScoring:
    def test_database_match_is_conclusive(self, analyzer):
        result = analyzer.analyze("여기로 접속 http://login.kbstar-safe.top/verify")
        assert result.risk_score == 1.0
        assert result.has_db_match
        assert "피싱 DB 등록 URL (KISA)" in result.reasons[0]

    def test_database_pattern_match(self, analyzer):
        result = analyzer.analyze("https://example.org/kakao_login.php?id=1")
        assert result.has_db_match
        assert result.risk_score == 1.0

    def test_shortener(self, analyzer):
        result = analyzer.analyze("https://bit.ly/abc")
        assert result.suspicious_urls == ["https://bit.ly/abc"]
        assert result.risk_score == pytest.approx(0.5)
        assert result.reasons == ["단축 URL: https://bit.ly/abc"]

    def test_lookalike_with_suspicious_tld(self, analyzer):
        result = analyzer.analyze("naver-login.xyz 에서 로그인하세요")
        # lookalike 0.7 + one extra heuristic
        assert result.risk_score == pytest.approx(0.8)
        assert any("'naver.com' 사칭 의심 URL" in r for r in result.reasons)
        assert any("의심 TLD(.xyz)" in r for r in result.reasons)

    def test_leet_substitution_lookalike(self, analyzer):
        score = analyzer.score_url("http://nav3r.com/event")
        assert score is not None
        assert score.risk == pytest.approx(0.7)

    def test_ip_host(self, analyzer):
        score = analyzer.score_url("http://192.168.0.10/login")
        assert score.risk == pytest.approx(0.6)

    def test_free_hosting(self, analyzer):
        score = analyzer.score_url("https://toss-event.web.app")
        assert score.risk >= 0.5

    def test_protected_and_allowlisted_domains_score_zero(self, analyzer):
        result = analyzer.analyze("https://www.naver.com 그리고 https://mail.google.com")
        assert len(result.urls) == 2
        assert result.suspicious_urls == []
        assert result.risk_score == 0

    def test_unremarkable_domain_not_suspicious(self, analyzer):
        result = analyzer.analyze("https://example.com/docs")
        assert result.urls == ["https://example.com/docs"]
        assert result.suspicious_urls == []

    def test_risk_is_max_not_sum(self, analyzer):
        result = analyzer.analyze("https://bit.ly/a https://tinyurl.com/b")
        assert result.risk_score == pytest.approx(0.5)
        assert len(result.suspicious_urls) == 2

    def test_malformed_candidates_ignored(self, analyzer):
        result = analyzer.analyze("http://[::1 broken and http://example.com:99999/x")
        assert result.risk_score == 0
