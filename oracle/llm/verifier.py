import json
import logging
import time
from datetime import date
from typing import Any, Sequence

import httpx
from pydantic import BaseModel, ValidationError, field_validator

from ..core.outcomes import (
    Outcome,
    VerificationResult,
    ambiguous_result,
    normalize_binary_outcome,
    normalize_confidence,
    normalize_option_outcome,
    option_id,
    unknown_result,
)
from ..external import LLM_BREAKER, llm_slot
from ..http_logging import log_llm_response
from ..settings import settings

logger = logging.getLogger(__name__)


class VerifierNotConfigured(RuntimeError):
    pass


class LlmVerdict(BaseModel):
    outcome: str = ""
    confidence: str = "LOW"
    reasoning: str = ""

    @field_validator("outcome", "confidence", "reasoning", mode="before")
    @classmethod
    def _null_to_text(cls, value):
        if value is None:
            return ""
        return value if isinstance(value, str) else str(value)


class MarketOptionPrompt(BaseModel):
    id: str
    label: str


def ensure_verifier_configured() -> None:
    if not (settings.OPENAI_API_KEY or "").strip():
        raise VerifierNotConfigured("OPENAI_API_KEY is not set")
    if not (settings.LLM_API_BASE or "").strip():
        raise VerifierNotConfigured("LLM_API_BASE is not set")


def verify_binary_outcome(question: str, today: date | None = None) -> VerificationResult:
    today = today or date.today()
    system_prompt = (
        "You are a fact-checking oracle. Your job is to determine if a YES/NO prediction question "
        f"has resolved as YES or NO based on current factual information. Today is {today:%B %d, %Y}."
        f"{_search_hint()} Respond with strict JSON only."
    )
    user_prompt = (
        f"Question: \"{question}\"\n\n"
        "Has this resolved as YES or NO? If you cannot determine with confidence, respond with UNKNOWN.\n"
        "Return JSON with keys: outcome (YES/NO/UNKNOWN), confidence (HIGH/MEDIUM/LOW), "
        "reasoning (one or two sentences citing what you found)."
    )
    logger.info("verify_binary_started question=%s", question[:120])
    verdict = _request_verdict(system_prompt, user_prompt)
    if verdict is None:
        return unknown_result("AI verification error")

    result = VerificationResult(
        outcome=normalize_binary_outcome(verdict.outcome),
        confidence=normalize_confidence(verdict.confidence),
        rationale=verdict.reasoning.strip(),
    )
    logger.info("verify_binary_result outcome=%s confidence=%s", result.outcome, result.confidence)
    return result


def verify_multi_option_outcome(
    question: str,
    options: Sequence[dict[str, Any]],
    today: date | None = None,
) -> VerificationResult:
    parsed_options = [
        MarketOptionPrompt.model_validate(_option_prompt(opt))
        for opt in options
        if isinstance(opt, dict) and option_id(opt)
    ]
    if not parsed_options:
        logger.warning("verify_multi_option_no_options question=%s", question[:120])
        return ambiguous_result("Market has no usable options")

    today = today or date.today()
    options_text = ", ".join(f"\"{opt.id}\": {opt.label}" for opt in parsed_options)
    system_prompt = (
        f"As of {today.isoformat()}, determine which ONE option is the correct outcome for this "
        f"prediction market.{_search_hint()} Respond with strict JSON only."
    )
    user_prompt = (
        f"Market: \"{question}\"\n\nOptions: {options_text}\n\n"
        "Return JSON with keys: outcome (the winning option id exactly as listed, or AMBIGUOUS if unclear), "
        "confidence (HIGH/MEDIUM/LOW), reasoning (one or two sentences)."
    )
    logger.info("verify_multi_option_started question=%s options=%s", question[:120], len(parsed_options))
    verdict = _request_verdict(system_prompt, user_prompt)
    if verdict is None:
        return ambiguous_result("AI verification error")

    option_ids = [opt.id for opt in parsed_options]
    outcome = normalize_option_outcome(verdict.outcome, option_ids)
    if outcome == Outcome.AMBIGUOUS.value and verdict.outcome.strip().upper() != Outcome.AMBIGUOUS.value:
        logger.warning("verify_multi_option_unknown_id outcome=%s", verdict.outcome[:64])
    result = VerificationResult(
        outcome=outcome,
        confidence=normalize_confidence(verdict.confidence),
        rationale=verdict.reasoning.strip(),
    )
    logger.info("verify_multi_option_result outcome=%s confidence=%s", result.outcome, result.confidence)
    return result


def _option_prompt(option: dict[str, Any]) -> dict[str, Any]:
    return {"id": option_id(option), "label": str(option.get("label", "")).strip()}


def _search_hint() -> str:
    if settings.LLM_WEB_SEARCH:
        return " Use web search to verify current facts and news."
    return ""


def _request_verdict(system_prompt: str, user_prompt: str) -> LlmVerdict | None:
    api_key = settings.OPENAI_API_KEY
    if not api_key:
        logger.warning("llm_missing_api_key")
        return None
    if not LLM_BREAKER.allow():
        logger.warning("llm_circuit_open")
        return None

    payload = _build_payload(system_prompt, user_prompt)
    headers = {"Authorization": f"Bearer {api_key}"}
    response_data = None
    for attempt in range(1, max(settings.LLM_MAX_RETRIES, 0) + 2):
        try:
            with llm_slot():
                with httpx.Client(timeout=settings.LLM_TIMEOUT_SECONDS) as client:
                    started_at = time.monotonic()
                    response = client.post(settings.LLM_API_BASE, headers=headers, json=payload)
            log_llm_response(response, started_at, attempt)
            if response.is_success:
                response_data = response.json()
                break
        except Exception:
            logger.exception("llm_request_exception attempt=%s", attempt)

    verdict = _parse_verdict(response_data) if response_data is not None else None
    LLM_BREAKER.record(verdict is not None)
    return verdict


def _build_payload(system_prompt: str, user_prompt: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "model": settings.LLM_MODEL,
        "response_format": {"type": "json_object"},
        "messages": [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
    }
    if settings.LLM_WEB_SEARCH:
        payload["web_search_options"] = {}
    else:
        payload["temperature"] = 0
    return payload


def _parse_verdict(payload: Any) -> LlmVerdict | None:
    try:
        content = payload["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        logger.exception("llm_response_shape_invalid")
        return None
    if not isinstance(content, str):
        # refusals and tool-call turns carry no text content
        logger.warning("llm_response_without_text content_type=%s", type(content).__name__)
        return None
    try:
        return LlmVerdict.model_validate(json.loads(_strip_code_fence(content)))
    except (json.JSONDecodeError, ValidationError):
        logger.exception("llm_response_parse_failed")
        return None


def _strip_code_fence(content: str) -> str:
    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return text.strip()
