import pytest

from oracle.core.governor import (
    DecisionAction,
    binary_pool_outcome,
    decide_outcome,
    option_pool_outcome,
    poll_majority_outcome,
)
from oracle.core.outcomes import BINARY_OUTCOMES, VerificationResult


def _fallback_must_not_run():
    raise AssertionError("fallback should not be used")


def test_decisive_confident_result_is_accepted():
    result = VerificationResult("YES", "HIGH", "Announced officially.")
    decision = decide_outcome(result, 0, BINARY_OUTCOMES, _fallback_must_not_run)
    assert decision.action == DecisionAction.ACCEPTED
    assert decision.outcome == "YES"
    assert decision.settles is True


def test_medium_confidence_is_enough():
    result = VerificationResult("NO", "MEDIUM", "Reported by two outlets.")
    decision = decide_outcome(result, 3, BINARY_OUTCOMES, _fallback_must_not_run)
    assert decision.action == DecisionAction.ACCEPTED
    assert decision.retry_attempts == 3


@pytest.mark.parametrize(
    "result",
    [
        VerificationResult("YES", "LOW", "Rumours only."),
        VerificationResult("UNKNOWN", "HIGH", "No information."),
        VerificationResult("AMBIGUOUS", "MEDIUM", "Conflicting reports."),
    ],
)
def test_indecisive_or_low_confidence_defers(result):
    decision = decide_outcome(result, 2, BINARY_OUTCOMES, _fallback_must_not_run)
    assert decision.action == DecisionAction.DEFERRED
    assert decision.outcome is None
    assert decision.retry_attempts == 3
    assert decision.settles is False


def test_outcome_outside_allowed_set_is_not_decisive():
    result = VerificationResult("opt_9", "HIGH", "Picked an unknown option.")
    decision = decide_outcome(result, 0, {"opt_0", "opt_1"}, _fallback_must_not_run)
    assert decision.action == DecisionAction.DEFERRED


def test_fallback_happens_on_sixth_evaluation():
    result = VerificationResult("UNKNOWN", "LOW", "AI verification error")
    attempts = 0
    actions = []
    for _ in range(6):
        decision = decide_outcome(result, attempts, BINARY_OUTCOMES, lambda: "TIE")
        actions.append(decision.action)
        if decision.action == DecisionAction.DEFERRED:
            attempts = decision.retry_attempts
    assert actions[:5] == [DecisionAction.DEFERRED] * 5
    assert actions[5] == DecisionAction.FALLBACK
    assert decision.outcome == "TIE"
    assert decision.confidence == "LOW"
    assert "after 5 attempts" in decision.rationale


def test_custom_retry_limit():
    result = VerificationResult("UNKNOWN", "LOW", "")
    decision = decide_outcome(result, 1, BINARY_OUTCOMES, lambda: "NO", max_attempts=1)
    assert decision.action == DecisionAction.FALLBACK
    assert decision.outcome == "NO"


def test_poll_majority_outcome():
    assert poll_majority_outcome(5, 2) == "YES"
    assert poll_majority_outcome(1, 4) == "NO"
    assert poll_majority_outcome(3, 3) == "TIE"
    assert poll_majority_outcome(None, None) == "TIE"


def test_binary_pool_outcome():
    assert binary_pool_outcome(600.0, 400.0) == "YES"
    assert binary_pool_outcome(100.0, 400.0) == "NO"
    assert binary_pool_outcome(250.0, 250.0) == "AMBIGUOUS"


def test_option_pool_outcome_requires_unique_leader():
    assert option_pool_outcome([{"id": "a", "pool": 10}, {"id": "b", "pool": 30}]) == "b"
    assert option_pool_outcome([{"id": "a", "pool": 30}, {"id": "b", "pool": 30}]) == "AMBIGUOUS"
    assert option_pool_outcome([{"id": "a"}, {"id": "b"}]) == "AMBIGUOUS"
    assert option_pool_outcome([]) == "AMBIGUOUS"


def test_option_pool_outcome_keeps_numeric_ids():
    assert option_pool_outcome([{"id": 0, "pool": 50}, {"id": 1, "pool": 20}]) == "0"
    assert option_pool_outcome([{"id": None, "pool": 50}, {"id": 1, "pool": 20}]) == "1"
