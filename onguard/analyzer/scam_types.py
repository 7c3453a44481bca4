"""Scam type inference and user-facing warning text."""

from typing import Optional

from .models import ScamType

# Evaluated top-down; the first table whose cue appears in the reasons wins.
# Phone reputation cues come first since a reported number is the strongest evidence.
REASON_TYPE_RULES: list[tuple[tuple[str, ...], ScamType]] = [
    (("보이스피싱", "스미싱", "Counter Scam", "신고 이력"), ScamType.VOICE_PHISHING),
    (("투자", "수익", "코인", "주식"), ScamType.INVESTMENT),
    (("입금", "선결제", "거래", "택배"), ScamType.USED_TRADE),
    (("URL", "링크", "피싱"), ScamType.PHISHING),
    (("사칭", "기관"), ScamType.IMPERSONATION),
    (("대출",), ScamType.LOAN),
]

# Labels returned by the generative model ("투자사기", "중고거래사기", "정상" ...)
LABEL_TYPE_RULES: list[tuple[tuple[str, ...], ScamType]] = [
    (("투자",), ScamType.INVESTMENT),
    (("중고", "거래"), ScamType.USED_TRADE),
    (("피싱",), ScamType.PHISHING),
    (("사칭",), ScamType.IMPERSONATION),
    (("로맨스",), ScamType.ROMANCE),
    (("대출",), ScamType.LOAN),
    (("정상",), ScamType.SAFE),
]

WARNING_TEMPLATES = {
    ScamType.INVESTMENT: "이 메시지는 투자 사기로 의심됩니다. 고수익을 보장하는 투자는 대부분 사기입니다.",
    ScamType.USED_TRADE: "중고거래 사기가 의심됩니다. 선입금을 요구하면 직거래로 진행하세요.",
    ScamType.PHISHING: "피싱 링크가 포함되어 있습니다. 의심스러운 링크를 클릭하지 마세요.",
    ScamType.VOICE_PHISHING: "이 전화번호는 보이스피싱/스미싱 신고 이력이 있습니다. 절대 금전 요구에 응하지 마세요.",
    ScamType.IMPERSONATION: "사칭 사기가 의심됩니다. 공식 채널을 통해 확인하세요.",
    ScamType.ROMANCE: "로맨스 스캠이 의심됩니다. 만난 적 없는 상대의 금전 요구에 응하지 마세요.",
    ScamType.LOAN: "대출 사기가 의심됩니다. 선수수료 요구는 불법입니다.",
}
DEFAULT_WARNING = "사기 의심 메시지입니다. 주의하세요."


def _first_match(text: str, rules: list[tuple[tuple[str, ...], ScamType]]) -> ScamType:
    for cues, scam_type in rules:
        if any(cue in text for cue in cues):
            return scam_type
    return ScamType.UNKNOWN


def infer_scam_type(reasons) -> ScamType:
    """Infer a scam type from rule-based reason strings."""
    return _first_match(" ".join(reasons or ()), REASON_TYPE_RULES)


def parse_scam_type(label: Optional[str]) -> ScamType:
    """Map a free-form model label onto ScamType."""
    if not label:
        return ScamType.UNKNOWN
    return _first_match(str(label), LABEL_TYPE_RULES)


def risk_level(confidence: float, high: float = 0.85, medium: float = 0.5) -> str:
    """Korean risk band for a confidence value."""
    if confidence >= high:
        return "높음"
    if confidence >= medium:
        return "중간"
    return "낮음"


def generate_warning(
    scam_type: ScamType,
    confidence: float,
    high: float = 0.85,
    medium: float = 0.5,
) -> str:
    """Templated warning for rule-only verdicts."""
    message = WARNING_TEMPLATES.get(scam_type, DEFAULT_WARNING)
    percent = int(max(0.0, min(1.0, confidence)) * 100)
    return f"{message} (위험도: {risk_level(confidence, high, medium)}, {percent}%)"
