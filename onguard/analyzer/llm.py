"""
Generative (LLM) scam analysis.

The rule-based extractors handle clear-cut messages on their own; the
generative model is only consulted for ambiguous ones. The model runs behind
a small text-generator interface so any OpenAI-compatible server
(llama.cpp, vLLM, hosted APIs) or a test double can be plugged in.
"""

import asyncio
import json
import logging
import math
from enum import Enum
from typing import Any, Optional, Protocol

import aiohttp

from .models import MAX_SUSPICIOUS_PARTS, DetectionMethod, GenerativeContext, ScamVerdict
from .scam_types import parse_scam_type

logger = logging.getLogger(__name__)

MAX_CONTEXT_ITEMS = 8
FALLBACK_RESPONSE = "분석 실패"

SYSTEM_PROMPT = """당신은 채팅 메시지의 사기(스캠) 여부를 판별하는 보안 분석가입니다.
메시지와 1차 분석 요약을 참고하여 아래 JSON 형식으로만 답하세요.

{"isScam": true/false,
 "confidence": 0.0~1.0,
 "scamType": "투자사기|중고거래사기|피싱|사칭|로맨스스캠|대출사기|정상",
 "warningMessage": "사용자에게 보여줄 한 문장 경고",
 "reasons": ["위험 요소", ...],
 "suspiciousParts": ["메시지에서 의심되는 문구", ...]}"""


class LLMBackendError(Exception):
    """The text-generation backend returned an unusable answer."""


class TextGenerator(Protocol):
    """Minimal interface of a text-generation backend."""

    async def load(self) -> bool:  # pragma: no cover - interface
        ...

    async def generate(self, prompt: str) -> str:  # pragma: no cover - interface
        ...

    async def close(self) -> None:  # pragma: no cover - interface
        ...


class OpenAICompatibleGenerator:
    """
    Client for an OpenAI-compatible chat completions endpoint.

    load() probes /v1/models so a dead server is detected once at startup
    instead of on every message.
    """

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        timeout: float = 20.0,
        max_tokens: int = 512,
        temperature: float = 0.1,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def load(self) -> bool:
        url = f"{self.base_url}/v1/models"
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, headers=self._headers(), timeout=self.timeout) as resp:
                    if resp.status != 200:
                        logger.warning(f"LLM server probe failed: HTTP {resp.status}")
                        return False
                    data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            logger.warning(f"LLM server unreachable at {self.base_url}: {e}")
            return False

        served = [m.get("id") for m in (data or {}).get("data", []) if isinstance(m, dict)]
        if served and self.model not in served:
            # llama.cpp serves a single model under any name
            logger.info(f"Model {self.model} not listed by server (serving: {', '.join(map(str, served))})")
        logger.info(f"LLM backend ready: {self.base_url} ({self.model})")
        return True

    async def generate(self, prompt: str) -> str:
        url = f"{self.base_url}/v1/chat/completions"
        payload = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }
        async with aiohttp.ClientSession() as session:
            async with session.post(url, json=payload, headers=self._headers(), timeout=self.timeout) as resp:
                if resp.status != 200:
                    raise LLMBackendError(f"HTTP {resp.status}")
                data = await resp.json(content_type=None)

        choices = (data or {}).get("choices") or []
        if not choices:
            raise LLMBackendError("No choices in completion response")
        message = choices[0].get("message") or {}
        return str(message.get("content") or "")

    async def close(self) -> None:
        """Sessions are per request; nothing to release."""


class InitState(str, Enum):
    UNINITIALIZED = "UNINITIALIZED"
    INITIALIZING = "INITIALIZING"
    READY = "READY"
    FAILED = "FAILED"


class GenerativeAnalyzer:
    """Wraps a TextGenerator with lazy initialization and response parsing.

    initialize() is single-flight: concurrent callers share one attempt, and
    the attempt survives the cancellation of any individual caller. A FAILED
    attempt may be retried by calling initialize() again.
    """

    def __init__(
        self,
        backend: TextGenerator,
        timeout: float = 20.0,
        init_timeout: float = 30.0,
        max_input_chars: int = 1500,
    ):
        self.backend = backend
        self.timeout = timeout
        self.init_timeout = init_timeout
        self.max_input_chars = max_input_chars
        self._state = InitState.UNINITIALIZED
        self._init_task: Optional[asyncio.Task] = None

    @property
    def state(self) -> InitState:
        return self._state

    def is_available(self) -> bool:
        return self._state is InitState.READY

    async def initialize(self) -> bool:
        """Load the backend once; returns True when ready."""
        if self._state is InitState.READY:
            return True

        if self._init_task is None or self._init_task.done():
            self._state = InitState.INITIALIZING
            self._init_task = asyncio.ensure_future(self._load())

        task = self._init_task
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # Attempt cancelled by close(); the caller itself was not
            if task.cancelled() and not _current_task_cancelling():
                return False
            raise

    async def _load(self) -> bool:
        try:
            ok = bool(await asyncio.wait_for(self.backend.load(), timeout=self.init_timeout))
        except asyncio.TimeoutError:
            logger.warning("LLM initialization timed out after %.1fs", self.init_timeout)
            ok = False
        except Exception as e:
            logger.warning(f"LLM initialization failed: {e}")
            ok = False

        self._state = InitState.READY if ok else InitState.FAILED
        if ok:
            logger.info("LLM analyzer ready")
        return ok

    def build_prompt(self, text: str, context: Optional[GenerativeContext] = None) -> str:
        """System instruction, evidence summary, then the message itself."""
        block = self._context_block(context)
        parts = [SYSTEM_PROMPT]
        if block:
            parts.append(block)
        parts.append(f"[메시지]\n{text}")
        return "\n\n".join(parts)

    @staticmethod
    def _context_block(context: Optional[GenerativeContext]) -> str:
        if context is None:
            return ""

        lines: list[str] = []
        if context.rule_confidence is not None or context.rule_reasons or context.detected_keywords:
            lines.append("[Rule-based 1차 분석 요약]")
            if context.rule_confidence is not None:
                lines.append(f"- rule_confidence: {context.rule_confidence:.2f}")
            if context.detected_keywords:
                lines.append(f"- detected_keywords: {', '.join(context.detected_keywords[:MAX_CONTEXT_ITEMS])}")
            if context.rule_reasons:
                lines.append("- rule_reasons:")
                lines.extend(f"  - {r}" for r in context.rule_reasons[:MAX_CONTEXT_ITEMS])
            lines.append("")

        if context.urls or context.suspicious_urls or context.url_reasons:
            lines.append("[URL/DB 기반 분석 요약]")
            if context.urls:
                lines.append(f"- urls: {', '.join(context.urls[:MAX_CONTEXT_ITEMS])}")
            if context.suspicious_urls:
                lines.append(f"- suspicious_urls: {', '.join(context.suspicious_urls[:MAX_CONTEXT_ITEMS])}")
            if context.url_reasons:
                lines.append("- url_reasons:")
                lines.extend(f"  - {r}" for r in context.url_reasons[:MAX_CONTEXT_ITEMS])

        return "\n".join(lines).rstrip()

    async def analyze(self, text: str, context: Optional[GenerativeContext] = None) -> Optional[ScamVerdict]:
        """Ask the model about text; None on any failure."""
        if not self.is_available():
            logger.debug("LLM not available (state=%s), skipping", self._state.value)
            return None

        if len(text) > self.max_input_chars:
            logger.debug("Input truncated for LLM: %d -> %d chars", len(text), self.max_input_chars)
            text = text[: self.max_input_chars]

        prompt = self.build_prompt(text, context)
        try:
            response = await asyncio.wait_for(self.backend.generate(prompt), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("LLM analysis timed out after %.1fs", self.timeout)
            return None
        except Exception as e:
            logger.warning(f"LLM analysis failed: {e}")
            return None

        if not response or not response.strip() or response.strip() == FALLBACK_RESPONSE:
            logger.warning("LLM returned empty or fallback response")
            return None

        return self.parse_response(response)

    @staticmethod
    def parse_response(response: str) -> Optional[ScamVerdict]:
        """Extract the JSON object embedded in a model answer."""
        start = response.find("{")
        end = response.rfind("}")
        if start == -1 or end <= start:
            logger.warning("No JSON object in LLM response (%d chars)", len(response))
            return None

        try:
            data = json.loads(response[start : end + 1])
        except ValueError as e:
            logger.warning(f"Unparsable LLM response: {e}")
            return None
        if not isinstance(data, dict):
            return None

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            return None
        if not math.isfinite(confidence):
            return None

        warning = data.get("warningMessage")
        return ScamVerdict(
            is_scam=_as_bool(data.get("isScam", False)),
            confidence=max(0.0, min(1.0, confidence)),
            reasons=_as_strings(data.get("reasons")),
            detected_keywords=(),
            detection_method=DetectionMethod.LLM,
            scam_type=parse_scam_type(data.get("scamType")),
            warning_message=str(warning) if warning else None,
            suspicious_parts=_as_strings(data.get("suspiciousParts"))[:MAX_SUSPICIOUS_PARTS],
        )

    async def close(self) -> None:
        """Release the backend and return to UNINITIALIZED."""
        task = self._init_task
        if task is not None and not task.done():
            task.cancel()
        self._init_task = None
        try:
            await self.backend.close()
        except Exception as e:
            logger.warning(f"Error while closing LLM backend: {e}")
        self._state = InitState.UNINITIALIZED


def _current_task_cancelling() -> bool:
    task = asyncio.current_task()
    return bool(task is not None and task.cancelling())


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return bool(value)


def _as_strings(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v is not None and str(v).strip())
