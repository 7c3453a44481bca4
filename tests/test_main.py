"""Tests for the command-line entry point."""

import io
import json

import pytest

from onguard.analyzer.models import ScamVerdict
from onguard.config import Config
from onguard.main import analyze_messages, build_detector, parse_args


class StubDetector:
    def __init__(self):
        self.seen: list[str] = []
        self.closed = False

    async def analyze(self, text: str) -> ScamVerdict:
        self.seen.append(text)
        return ScamVerdict(is_scam="송금" in text, confidence=0.9 if "송금" in text else 0.0)

    async def close(self) -> None:
        self.closed = True


def test_parse_args():
    args = parse_args(["--no-llm", "-v", "안녕", "송금해"])
    assert args.no_llm is True
    assert args.verbose is True
    assert args.messages == ["안녕", "송금해"]


@pytest.mark.asyncio
async def test_analyze_messages_writes_json_lines():
    detector = StubDetector()
    out = io.StringIO()

    scams = await analyze_messages(detector, ["안녕\n", "\n", "지금 송금해\n"], out=out)

    lines = [json.loads(line) for line in out.getvalue().splitlines()]
    assert scams == 1
    assert [line["message"] for line in lines] == ["안녕", "지금 송금해"]
    assert lines[1]["is_scam"] is True
    assert detector.closed


def test_build_detector_respects_switches(tmp_path):
    config = Config(config_dir=tmp_path, reputation_enabled=False)

    detector = build_detector(config, use_llm=False)

    assert detector.llm_analyzer is None
    assert detector.phone_analyzer is None
    assert detector.config == config.fusion


def test_build_detector_wires_everything(tmp_path):
    (tmp_path / "threat_intel.yaml").write_text(
        "malicious_domains:\n  - domain: evil.xyz\n", encoding="utf-8"
    )
    detector = build_detector(Config(config_dir=tmp_path))

    assert detector.llm_analyzer is not None
    assert detector.phone_analyzer is not None
    assert detector.url_analyzer.threat_intel.is_known_malicious("evil.xyz")[0]


def test_build_detector_uses_configured_cache(tmp_path):
    config = Config(config_dir=tmp_path, cache_max_size=7, cache_ttl_seconds=30)

    detector = build_detector(config, use_llm=False)

    assert detector.phone_analyzer.cache.max_size == 7
    assert detector.phone_analyzer.cache.ttl_seconds == 30
