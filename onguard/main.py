"""Command-line entry point for OnGuard.

Usage:
    python -m onguard.main "급하게 돈 좀 빌려줄 수 있어?"
    cat messages.txt | python -m onguard.main --no-llm
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Iterable, Optional

from .analyzer import (
    CounterScam112Client,
    GenerativeAnalyzer,
    HybridScamDetector,
    KeywordMatcher,
    OpenAICompatibleGenerator,
    PhoneAnalyzer,
    ThreatIntelLoader,
    UrlAnalyzer,
)
from .analyzer.metrics import metrics
from .cache import create_reputation_cache
from .config import Config, ConfigError, load_config, validate_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stderr),
    ],
)
logger = logging.getLogger(__name__)


def build_detector(config: Config, use_llm: bool = True) -> HybridScamDetector:
    """Wire every analyzer from configuration."""
    threat_intel = ThreatIntelLoader(config.config_dir).load()

    url_analyzer = UrlAnalyzer(
        threat_intel=threat_intel,
        suspicious_tlds=config.suspicious_tlds,
        shortener_domains=config.shortener_domains,
        free_hosting_domains=config.free_hosting_domains,
        protected_domains=config.protected_domains,
        allowlist=config.allowlist,
        substitutions=config.substitutions,
        risk_floor=config.url_risk_floor,
    )

    phone_analyzer: Optional[PhoneAnalyzer] = None
    if config.reputation_enabled:
        phone_analyzer = PhoneAnalyzer(
            source=CounterScam112Client(
                base_url=config.reputation_base_url,
                timeout=config.reputation_timeout,
            ),
            cache=create_reputation_cache(config.cache_max_size, config.cache_ttl_seconds),
            timeout=config.reputation_timeout,
            max_results=config.reputation_max_results,
        )

    llm_analyzer: Optional[GenerativeAnalyzer] = None
    if use_llm and config.llm_enabled:
        llm_analyzer = GenerativeAnalyzer(
            OpenAICompatibleGenerator(
                base_url=config.llm_base_url,
                model=config.llm_model,
                api_key=config.llm_api_key or None,
                timeout=config.llm_timeout,
            ),
            timeout=config.llm_timeout,
            init_timeout=config.llm_init_timeout,
            max_input_chars=config.llm_max_input_chars,
        )

    return HybridScamDetector(
        keyword_matcher=KeywordMatcher(config.keyword_tiers),
        url_analyzer=url_analyzer,
        phone_analyzer=phone_analyzer,
        llm_analyzer=llm_analyzer,
        config=config.fusion,
        urgency_terms=config.urgency_terms,
        money_terms=config.money_terms,
    )


async def analyze_messages(detector: HybridScamDetector, messages: Iterable[str], out=None) -> int:
    """Analyze each message and print one JSON verdict per line."""
    out = out or sys.stdout
    scams = 0
    try:
        for message in messages:
            message = message.strip()
            if not message:
                continue
            verdict = await detector.analyze(message)
            if verdict.is_scam:
                scams += 1
            record = {"message": message, **verdict.to_dict()}
            out.write(json.dumps(record, ensure_ascii=False) + "\n")
            out.flush()
    finally:
        await detector.close()
    logger.debug(f"Fusion metrics: {metrics.summary()}")
    return scams


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Classify chat messages as scam or benign.")
    parser.add_argument("messages", nargs="*", help="Messages to analyze (default: read lines from stdin).")
    parser.add_argument("--no-llm", action="store_true", help="Never consult the generative model.")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point."""
    args = parse_args(argv)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config()
    except ConfigError as e:
        logger.error(f"Invalid fusion configuration: {e}")
        return 1
    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        return 1

    detector = build_detector(config, use_llm=not args.no_llm)
    messages = args.messages or sys.stdin
    try:
        asyncio.run(analyze_messages(detector, messages))
    except KeyboardInterrupt:
        pass
    return 0


if __name__ == "__main__":
    sys.exit(main())
