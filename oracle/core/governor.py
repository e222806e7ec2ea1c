from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable

from ..settings import settings
from .outcomes import Confidence, VerificationResult, is_decisive, option_id


class DecisionAction(str, Enum):
    ACCEPTED = "ACCEPTED"
    DEFERRED = "DEFERRED"
    FALLBACK = "FALLBACK"


@dataclass(frozen=True)
class Decision:
    action: DecisionAction
    outcome: str | None
    confidence: str
    rationale: str
    retry_attempts: int

    @property
    def settles(self) -> bool:
        return self.action != DecisionAction.DEFERRED


def decide_outcome(
    result: VerificationResult,
    retry_attempts: int | None,
    allowed_outcomes: Iterable[str],
    fallback: Callable[[], str],
    max_attempts: int | None = None,
) -> Decision:
    """Gate a verifier result before anything is settled.

    A decisive outcome with MEDIUM or HIGH confidence is accepted. Anything
    else defers until ``retry_attempts`` reaches ``max_attempts``; from then
    on the deterministic ``fallback`` decides. With the default of 5 an item
    that never gets a usable verdict resolves on its 6th evaluation.
    """
    attempts = max(int(retry_attempts or 0), 0)
    limit = settings.RESOLUTION_MAX_RETRIES if max_attempts is None else max_attempts

    if is_decisive(result.outcome, allowed_outcomes) and result.confidence != Confidence.LOW.value:
        return Decision(
            action=DecisionAction.ACCEPTED,
            outcome=result.outcome,
            confidence=result.confidence,
            rationale=result.rationale,
            retry_attempts=attempts,
        )

    if attempts < limit:
        return Decision(
            action=DecisionAction.DEFERRED,
            outcome=None,
            confidence=result.confidence,
            rationale=result.rationale,
            retry_attempts=attempts + 1,
        )

    outcome = fallback()
    return Decision(
        action=DecisionAction.FALLBACK,
        outcome=outcome,
        confidence=Confidence.LOW.value,
        rationale=f"AI uncertain after {attempts} attempts. Fallback outcome: {outcome}",
        retry_attempts=attempts,
    )


def poll_majority_outcome(yes_votes: int | None, no_votes: int | None) -> str:
    yes_count = yes_votes or 0
    no_count = no_votes or 0
    if yes_count > no_count:
        return "YES"
    if no_count > yes_count:
        return "NO"
    return "TIE"


def binary_pool_outcome(yes_pool: float | None, no_pool: float | None) -> str:
    yes_total = yes_pool or 0.0
    no_total = no_pool or 0.0
    if yes_total > no_total:
        return "YES"
    if no_total > yes_total:
        return "NO"
    return "AMBIGUOUS"


def option_pool_outcome(options: Iterable[dict]) -> str:
    pools: dict[str, float] = {}
    for option in options:
        key = option_id(option)
        if not key:
            continue
        pools[key] = float(option.get("pool") or 0.0)
    if not pools:
        return "AMBIGUOUS"
    best = max(pools.values())
    leaders = [key for key, pool in pools.items() if pool == best]
    if len(leaders) != 1 or best <= 0:
        return "AMBIGUOUS"
    return leaders[0]
