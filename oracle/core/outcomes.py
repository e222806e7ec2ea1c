from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable


class Outcome(str, Enum):
    YES = "YES"
    NO = "NO"
    UNKNOWN = "UNKNOWN"
    AMBIGUOUS = "AMBIGUOUS"
    TIE = "TIE"
    NO_VOTES = "NO_VOTES"
    UNRESOLVABLE = "UNRESOLVABLE"


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class MarketStructure(str, Enum):
    BINARY = "binary"
    MULTI_OPTION = "multi-option"


BINARY_OUTCOMES = frozenset({Outcome.YES.value, Outcome.NO.value})
INDECISIVE_OUTCOMES = frozenset({Outcome.UNKNOWN.value, Outcome.AMBIGUOUS.value})
# Outcomes that settle as "return every stake, no winner".
REFUND_OUTCOMES = frozenset({Outcome.TIE.value, Outcome.NO_VOTES.value, Outcome.AMBIGUOUS.value})


@dataclass(frozen=True)
class VerificationResult:
    outcome: str
    confidence: str
    rationale: str

    def to_dict(self) -> dict[str, str]:
        return {
            "outcome": self.outcome,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


def unknown_result(rationale: str) -> VerificationResult:
    return VerificationResult(Outcome.UNKNOWN.value, Confidence.LOW.value, rationale)


def ambiguous_result(rationale: str) -> VerificationResult:
    return VerificationResult(Outcome.AMBIGUOUS.value, Confidence.LOW.value, rationale)


def _clean_token(value: object) -> str:
    if value is None:
        return ""
    return str(value).strip().strip("\"'`").strip()


def normalize_confidence(value: object) -> str:
    token = _clean_token(value).upper()
    if token in {c.value for c in Confidence}:
        return token
    return Confidence.LOW.value


def normalize_binary_outcome(value: object) -> str:
    """Map a free-form verdict onto YES/NO/UNKNOWN."""
    token = _clean_token(value).upper()
    if token in BINARY_OUTCOMES:
        return token
    return Outcome.UNKNOWN.value


def normalize_option_outcome(value: object, option_ids: Iterable[str]) -> str:
    """Map a free-form verdict onto a known option id or AMBIGUOUS.

    Option ids are matched exactly first and then case-insensitively, so a
    model answering "OPT_2" for "opt_2" still counts. Anything else,
    including an empty answer, is AMBIGUOUS.
    """
    token = _clean_token(value)
    known = [str(option_id) for option_id in option_ids]
    if token in known:
        return token
    lowered = {option_id.lower(): option_id for option_id in known}
    match = lowered.get(token.lower())
    if match is not None:
        return match
    return Outcome.AMBIGUOUS.value


def is_decisive(outcome: str, allowed_outcomes: Iterable[str]) -> bool:
    if outcome in INDECISIVE_OUTCOMES:
        return False
    return outcome in set(allowed_outcomes)


def option_id(option: dict) -> str:
    """Canonical id of a market option; ``""`` means the option has no usable id."""
    value = option.get("id")
    if value is None:
        return ""
    return str(value).strip()
