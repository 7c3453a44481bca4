"""Configuration management for OnGuard."""

import logging
import math
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Set

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when thresholds or weights are inconsistent."""


KEYWORD_TIERS = ("CRITICAL", "HIGH", "MEDIUM")

# (regex, tier, label). Labels feed scam type inference, so keep their wording
# aligned with onguard.analyzer.scam_types.
DEFAULT_KEYWORD_TIERS: list[tuple[str, str, str]] = [
    # Institution impersonation / credential theft
    (r"안전\s*계좌", "CRITICAL", "기관 사칭"),
    (r"검찰청?|금융\s*감독원|금감원|경찰청", "CRITICAL", "기관 사칭"),
    (r"OTP|인증\s*번호", "CRITICAL", "개인정보 요구"),
    (r"(?:계좌|카드)\s*비밀\s*번호", "CRITICAL", "개인정보 요구"),
    (r"원격\s*(?:제어|지원\s*앱)|팀\s*뷰어|애니\s*데스크", "CRITICAL", "원격제어 앱 설치 요구"),
    # Investment / trade fraud
    (r"(?:원금|수익)\s*보장", "CRITICAL", "투자 유도"),
    (r"선\s*입금|선결제|예약금", "CRITICAL", "선결제 요구"),
    # Money requests
    (r"돈이?\s*필요", "HIGH", "금전 요구"),
    (r"빌려\s*(?:줄|주|달)", "HIGH", "금전 요구"),
    (r"송금|입금|이체", "HIGH", "금전 요구"),
    (r"계좌\s*번호", "HIGH", "금전 요구"),
    (r"(?:문화\s*)?상품권|기프트\s*카드", "HIGH", "금전 요구"),
    (r"(?:비트)?코인|가상\s*화폐|리딩방", "HIGH", "투자 유도"),
    (r"고수익|수익률", "HIGH", "투자 유도"),
    (r"저금리|대환\s*대출|대출\s*(?:승인|가능)", "HIGH", "대출 유도"),
    (r"(?:휴대폰|핸드폰|폰)\s*(?:이\s*)?(?:고장|깨졌|액정)", "HIGH", "지인 사칭"),
    (r"택배\s*(?:주소|조회|반송)", "HIGH", "배송 조회 사칭"),
    # Pressure / lures
    (r"급하|긴급|빨리|지금\s*당장|서둘러", "MEDIUM", "긴급성 강조"),
    (r"당첨|경품", "MEDIUM", "경품 유도"),
    (r"수수료", "MEDIUM", "수수료 요구"),
    (r"비밀로|아무(?:한테|에게)도", "MEDIUM", "비밀 유지 요구"),
]

# Golden pattern: urgency + money transfer + URL
DEFAULT_URGENCY_TERMS: list[str] = ["긴급", "급하", "빨리"]
DEFAULT_MONEY_TERMS: list[str] = ["입금", "송금", "계좌"]

DEFAULT_SUSPICIOUS_TLDS: set[str] = {
    "xyz",
    "top",
    "click",
    "online",
    "site",
    "website",
    "link",
    "club",
    "fun",
    "icu",
    "buzz",
    "quest",
    "shop",
    "live",
    "cc",
    "tk",
}

DEFAULT_SHORTENER_DOMAINS: set[str] = {
    "bit.ly",
    "tinyurl.com",
    "goo.gl",
    "t.co",
    "is.gd",
    "ow.ly",
    "cutt.ly",
    "rebrand.ly",
    "han.gl",
    "me2.do",
    "vo.la",
    "url.kr",
    "buly.kr",
    "naver.me",
}

DEFAULT_FREE_HOSTING_DOMAINS: set[str] = {
    "000webhostapp.com",
    "weebly.com",
    "wixsite.com",
    "firebaseapp.com",
    "web.app",
    "netlify.app",
    "vercel.app",
    "pages.dev",
    "github.io",
    "herokuapp.com",
    "glitch.me",
    "ngrok.io",
    "ngrok-free.app",
    "duckdns.org",
    "blogspot.com",
}

# Brands commonly impersonated in Korean chat scams. Exact registrable
# domains are trusted; near-misses are flagged as lookalikes.
DEFAULT_PROTECTED_DOMAINS: set[str] = {
    "naver.com",
    "kakao.com",
    "kakaobank.com",
    "daum.net",
    "coupang.com",
    "daangn.com",
    "toss.im",
    "kbstar.com",
    "shinhan.com",
    "wooribank.com",
    "hanabank.com",
    "ibk.co.kr",
    "epost.go.kr",
    "gov.kr",
    "police.go.kr",
    "fss.or.kr",
    "cjlogistics.com",
}

DEFAULT_SUBSTITUTIONS: dict[str, str] = {
    "4": "a",
    "3": "e",
    "1": "l",
    "0": "o",
    "5": "s",
    "@": "a",
    "$": "s",
}


@dataclass(frozen=True)
class FusionConfig:
    """Thresholds and weights of the fusion policy.

    Validated on construction; an inconsistent combination is a deployment
    defect and raises ConfigError instead of surfacing at analysis time.
    """

    high_confidence_threshold: float = 0.85
    medium_confidence_threshold: float = 0.5
    low_confidence_threshold: float = 0.3
    llm_trigger_low: float = 0.3
    llm_trigger_high: float = 0.7
    rule_weight: float = 0.3
    llm_weight: float = 0.7
    final_scam_threshold: float = 0.5

    def __post_init__(self):
        errors = self.validate()
        if errors:
            raise ConfigError("; ".join(errors))

    def validate(self) -> list[str]:
        errors: list[str] = []
        for f in fields(self):
            value = getattr(self, f.name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or not math.isfinite(value):
                errors.append(f"{f.name} must be a finite number")
            elif not 0.0 <= value <= 1.0:
                errors.append(f"{f.name} must be within [0, 1] (got {value})")
        if errors:
            return errors

        if abs(self.rule_weight + self.llm_weight - 1.0) > 1e-6:
            errors.append(
                f"rule_weight + llm_weight must equal 1.0 (got {self.rule_weight + self.llm_weight:.4f})"
            )
        if not (
            self.low_confidence_threshold
            <= self.medium_confidence_threshold
            <= self.high_confidence_threshold
        ):
            errors.append("confidence thresholds must satisfy low <= medium <= high")
        if self.llm_trigger_low > self.llm_trigger_high:
            errors.append("llm_trigger_low must not exceed llm_trigger_high")
        return errors


@dataclass
class Config:
    """Application configuration loaded from environment."""

    config_dir: Path = field(default_factory=lambda: Path("./config"))

    fusion: FusionConfig = field(default_factory=FusionConfig)

    # Generative model (OpenAI-compatible endpoint, e.g. llama.cpp server)
    llm_enabled: bool = True
    llm_base_url: str = "http://127.0.0.1:8080"
    llm_model: str = "qwen2.5-1.5b-instruct"
    llm_api_key: str = ""
    llm_timeout: float = 20.0
    llm_init_timeout: float = 30.0
    llm_max_input_chars: int = 1500

    # Reputation source (Counter Scam 112)
    reputation_enabled: bool = True
    reputation_base_url: str = "https://www.counterscam112.go.kr/"
    reputation_timeout: float = 5.0
    reputation_max_results: int = 10

    # Reputation cache
    cache_max_size: int = 100
    cache_ttl_seconds: int = 15 * 60

    # Heuristics (override via config/heuristics.yaml)
    keyword_tiers: list[tuple[str, str, str]] = field(
        default_factory=lambda: list(DEFAULT_KEYWORD_TIERS)
    )
    urgency_terms: list[str] = field(default_factory=lambda: list(DEFAULT_URGENCY_TERMS))
    money_terms: list[str] = field(default_factory=lambda: list(DEFAULT_MONEY_TERMS))
    suspicious_tlds: Set[str] = field(default_factory=lambda: set(DEFAULT_SUSPICIOUS_TLDS))
    shortener_domains: Set[str] = field(default_factory=lambda: set(DEFAULT_SHORTENER_DOMAINS))
    free_hosting_domains: Set[str] = field(default_factory=lambda: set(DEFAULT_FREE_HOSTING_DOMAINS))
    protected_domains: Set[str] = field(default_factory=lambda: set(DEFAULT_PROTECTED_DOMAINS))
    substitutions: dict[str, str] = field(default_factory=lambda: dict(DEFAULT_SUBSTITUTIONS))
    url_risk_floor: float = 0.3

    # Loaded lists
    allowlist: Set[str] = field(default_factory=set)

    def __post_init__(self):
        """Normalize paths and load lists."""
        self.config_dir = Path(self.config_dir)
        self._load_lists()

    def _load_lists(self):
        """Load the domain allowlist from the config directory."""
        allowlist_path = self.config_dir / "allowlist.txt"
        if allowlist_path.exists():
            self.allowlist = self._load_list_file(allowlist_path)

    @staticmethod
    def _load_list_file(path: Path) -> Set[str]:
        """Load a list file, ignoring comments and empty lines."""
        items = set()
        with open(path) as f:
            for line in f:
                line = line.strip()
                if line and not line.startswith("#"):
                    items.add(line.lower())
        return items


def _load_heuristics(config_dir: Path) -> dict:
    """Load heuristic overrides from config/heuristics.yaml (optional)."""
    path = Path(config_dir or ".") / "heuristics.yaml"
    if not path.exists():
        return {}

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except Exception as exc:
        logger.warning("Failed to parse heuristics.yaml: %s", exc)
        return {}
    if not isinstance(data, dict):
        return {}

    def _coerce_keyword_tiers(raw):
        items: list[tuple[str, str, str]] = []
        for entry in raw or []:
            if not isinstance(entry, dict):
                continue
            pattern = str(entry.get("pattern") or "").strip()
            tier = str(entry.get("tier") or "").strip().upper()
            if not pattern or tier not in KEYWORD_TIERS:
                continue
            label = str(entry.get("label") or "").strip() or "의심 표현"
            items.append((pattern, tier, label))
        return items or None

    def _coerce_str_list(raw):
        if not isinstance(raw, (list, tuple, set)):
            return None
        values = [str(v).strip().lower() for v in raw if str(v).strip()]
        return values or None

    keyword_cfg = data.get("keywords", {}) or {}
    url_cfg = data.get("urls", {}) or {}
    fusion_cfg = data.get("fusion", {}) or {}

    return {
        "keyword_tiers": _coerce_keyword_tiers(keyword_cfg.get("tiers")),
        "urgency_terms": _coerce_str_list(keyword_cfg.get("urgency_terms")),
        "money_terms": _coerce_str_list(keyword_cfg.get("money_terms")),
        "suspicious_tlds": _coerce_str_list(url_cfg.get("suspicious_tlds")),
        "shortener_domains": _coerce_str_list(url_cfg.get("shorteners")),
        "free_hosting_domains": _coerce_str_list(url_cfg.get("free_hosting")),
        "protected_domains": _coerce_str_list(url_cfg.get("protected_domains")),
        "url_risk_floor": url_cfg.get("risk_floor"),
        "fusion": fusion_cfg if isinstance(fusion_cfg, dict) else {},
    }


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return float(default)
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return float(default)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _load_fusion(overrides: dict) -> FusionConfig:
    """Build FusionConfig: env vars beat heuristics.yaml beat defaults."""
    defaults = FusionConfig()
    values: dict[str, float] = {}
    for f in fields(FusionConfig):
        base = overrides.get(f.name, getattr(defaults, f.name))
        try:
            base = float(base)
        except (TypeError, ValueError):
            base = getattr(defaults, f.name)
        values[f.name] = _env_float(f"ONGUARD_{f.name.upper()}", base)
    return FusionConfig(**values)


def load_config() -> Config:
    """Load configuration from environment variables."""
    load_dotenv()

    config_dir = Path(os.getenv("ONGUARD_CONFIG_DIR", "./config"))
    heuristics = _load_heuristics(config_dir)

    optional: dict[str, object] = {}
    for key in (
        "keyword_tiers",
        "urgency_terms",
        "money_terms",
    ):
        if heuristics.get(key):
            optional[key] = heuristics[key]
    for key in (
        "suspicious_tlds",
        "shortener_domains",
        "free_hosting_domains",
        "protected_domains",
    ):
        if heuristics.get(key):
            optional[key] = set(heuristics[key])
    if heuristics.get("url_risk_floor") is not None:
        try:
            optional["url_risk_floor"] = float(heuristics["url_risk_floor"])
        except (TypeError, ValueError):
            logger.warning("Ignoring invalid urls.risk_floor in heuristics.yaml")

    return Config(
        config_dir=config_dir,
        fusion=_load_fusion(heuristics.get("fusion", {})),
        llm_enabled=os.getenv("ONGUARD_LLM_ENABLED", "true").lower() == "true",
        llm_base_url=os.getenv("ONGUARD_LLM_BASE_URL", "http://127.0.0.1:8080"),
        llm_model=os.getenv("ONGUARD_LLM_MODEL", "qwen2.5-1.5b-instruct"),
        llm_api_key=os.getenv("ONGUARD_LLM_API_KEY", ""),
        llm_timeout=_env_float("ONGUARD_LLM_TIMEOUT", 20.0),
        llm_init_timeout=_env_float("ONGUARD_LLM_INIT_TIMEOUT", 30.0),
        llm_max_input_chars=_env_int("ONGUARD_LLM_MAX_INPUT_CHARS", 1500),
        reputation_enabled=os.getenv("ONGUARD_REPUTATION_ENABLED", "true").lower() == "true",
        reputation_base_url=os.getenv(
            "ONGUARD_REPUTATION_BASE_URL", "https://www.counterscam112.go.kr/"
        ),
        reputation_timeout=_env_float("ONGUARD_REPUTATION_TIMEOUT", 5.0),
        reputation_max_results=_env_int("ONGUARD_REPUTATION_MAX_RESULTS", 10),
        cache_max_size=_env_int("ONGUARD_CACHE_SIZE", 100),
        cache_ttl_seconds=_env_int("ONGUARD_CACHE_TTL_SECONDS", 15 * 60),
        **optional,
    )


def validate_config(config: Config) -> list[str]:
    """Validate configuration and return list of error messages."""
    errors: list[str] = list(config.fusion.validate())

    if config.cache_max_size < 1:
        errors.append("ONGUARD_CACHE_SIZE must be at least 1")
    if config.cache_ttl_seconds <= 0:
        errors.append("ONGUARD_CACHE_TTL_SECONDS must be positive")
    if config.llm_max_input_chars < 1:
        errors.append("ONGUARD_LLM_MAX_INPUT_CHARS must be at least 1")
    if config.llm_timeout <= 0 or config.reputation_timeout <= 0:
        errors.append("Timeouts must be positive")
    if not 0.0 <= config.url_risk_floor <= 1.0:
        errors.append("urls.risk_floor must be within [0, 1]")

    if config.llm_enabled and not config.llm_base_url.strip():
        errors.append("LLM enabled but ONGUARD_LLM_BASE_URL is empty")
    if not config.llm_enabled:
        logger.info("Generative analysis disabled; ambiguous messages use rule-based verdicts")

    return errors
