"""Known-malicious URL database for OnGuard."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import yaml

from ..utils.domains import extract_hostname

logger = logging.getLogger(__name__)


@dataclass
class ThreatIndicator:
    """One database entry: a malicious domain or a URL regex."""
    value: str
    type: str
    source: Optional[str] = None
    first_seen: Optional[str] = None
    notes: Optional[str] = None


@dataclass
class ThreatIntel:
    """Malicious URL database indexed for per-message lookups."""

    version: str = "1.0"
    last_updated: Optional[str] = None

    malicious_domains: list[ThreatIndicator] = field(default_factory=list)
    malicious_patterns: list[ThreatIndicator] = field(default_factory=list)

    def __post_init__(self):
        self._domain_index: dict[str, ThreatIndicator] = {}
        self._compiled: list[tuple[re.Pattern, ThreatIndicator]] = []
        self.reindex()

    def reindex(self) -> None:
        """Rebuild lookup structures after indicators change."""
        self._domain_index = {i.value.lower(): i for i in self.malicious_domains}
        self._compiled = []
        for indicator in self.malicious_patterns:
            try:
                self._compiled.append((re.compile(indicator.value, re.I), indicator))
            except re.error as exc:
                logger.warning("Skipping invalid threat pattern %r: %s", indicator.value, exc)

    def is_known_malicious(self, url_or_host: str) -> tuple[bool, Optional[ThreatIndicator]]:
        """Check if a host (or any parent domain) is listed as malicious."""
        host = extract_hostname(url_or_host)
        if not host or not self._domain_index:
            return False, None
        labels = host.split(".")
        for i in range(len(labels) - 1):
            indicator = self._domain_index.get(".".join(labels[i:]))
            if indicator:
                return True, indicator
        return False, None

    def check_malicious_patterns(self, url: str) -> list[ThreatIndicator]:
        """Return every URL pattern that matches `url`."""
        return [indicator for pattern, indicator in self._compiled if pattern.search(url)]


def _read_indicators(items, key: str, normalize, default_type: str) -> list[ThreatIndicator]:
    """Turn raw YAML entries into indicators, dropping blanks and duplicates."""
    indicators: dict[str, ThreatIndicator] = {}
    for item in items or []:
        if not isinstance(item, dict):
            continue
        value = normalize(str(item.get(key) or ""))
        if not value or value in indicators:
            continue
        indicators[value] = ThreatIndicator(
            value=value,
            type=str(item.get("type") or default_type),
            source=item.get("source"),
            first_seen=item.get("first_seen"),
            notes=item.get("notes"),
        )
    return list(indicators.values())


class ThreatIntelLoader:
    """Reads config/threat_intel.yaml and keeps the last good copy."""

    FILENAME = "threat_intel.yaml"

    def __init__(self, config_dir: Path):
        self.path = Path(config_dir) / self.FILENAME
        self._intel: Optional[ThreatIntel] = None

    def load(self) -> ThreatIntel:
        """Parse the database; a missing or broken file yields an empty one."""
        if not self.path.exists():
            logger.warning(f"Malicious URL database not found: {self.path}")
            return ThreatIntel()

        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
            intel = ThreatIntel(
                version=str(data.get("version", "1.0")),
                last_updated=data.get("last_updated"),
                malicious_domains=_read_indicators(
                    data.get("malicious_domains"), "domain", extract_hostname, "phishing"
                ),
                malicious_patterns=_read_indicators(
                    data.get("malicious_patterns"), "pattern", str.strip, "pattern"
                ),
            )
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.error(f"Failed to read malicious URL database {self.path}: {e}")
            return ThreatIntel()

        self._intel = intel
        logger.info(
            f"Malicious URL database v{intel.version}: {len(intel.malicious_domains)} domains, "
            f"{len(intel.malicious_patterns)} patterns"
        )
        return intel

    def get(self) -> ThreatIntel:
        if self._intel is None:
            return self.load()
        return self._intel

    def reload(self) -> ThreatIntel:
        self._intel = None
        return self.load()
