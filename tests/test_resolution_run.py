import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from oracle.core.outcomes import VerificationResult
from oracle.db import Base
from oracle.external import CircuitBreaker
from oracle.jobs import tasks
from oracle.llm import verifier as llm_verifier
from oracle.llm.verifier import VerifierNotConfigured
from oracle.models import LeaderboardEntry, Market, Pledge, PollVote, Profile, QuickPlayMarket, QuickPoll
from oracle.settings import settings


NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=timezone.utc)
NAIVE_NOW = NOW.replace(tzinfo=None)


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


class FakeRedis:
    def __init__(self):
        self.store = {}

    def get(self, key):
        return self.store.get(key)

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def delete(self, key):
        self.store.pop(key, None)


class ScriptedVerifier:
    def __init__(self, default: VerificationResult, by_question: dict | None = None):
        self.default = default
        self.by_question = by_question or {}
        self.questions = []

    def __call__(self, question, *args, **kwargs):
        self.questions.append(question)
        answer = self.by_question.get(question, self.default)
        if isinstance(answer, Exception):
            raise answer
        return answer


@pytest.fixture()
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr(tasks, "redis_conn", redis)
    monkeypatch.setattr(settings, "OPENAI_API_KEY", "test-key")
    return redis


def _binary_verifier(monkeypatch, default, by_question=None) -> ScriptedVerifier:
    verifier = ScriptedVerifier(default, by_question)
    monkeypatch.setattr(tasks, "verify_binary_outcome", verifier)
    return verifier


def _option_verifier(monkeypatch, default) -> ScriptedVerifier:
    verifier = ScriptedVerifier(default)
    monkeypatch.setattr(tasks, "verify_multi_option_outcome", verifier)
    return verifier


def _add_market(db, market_id="m1", title="Will the upgrade ship?", **kwargs) -> None:
    values = {
        "resolution_date": date(2026, 10, 17),
        "yes_percent": 40.0,
        "no_percent": 60.0,
    }
    values.update(kwargs)
    db.add(Market(id=market_id, title=title, **values))


def _add_poll(db, poll_id="q1", votes=(), **kwargs) -> None:
    values = {"created_at": NAIVE_NOW - timedelta(hours=30)}
    values.update(kwargs)
    db.add(QuickPoll(id=poll_id, question=f"Poll {poll_id}?", **values))
    for user_id, vote, xp in votes:
        db.add(PollVote(poll_id=poll_id, user_id=user_id, vote=vote, xp_staked=xp))


def test_binary_market_resolves_and_pays_once(db_session, fake_redis, monkeypatch):
    _add_market(db_session)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick="YES", amount_usd=100.0))
    db_session.add(Pledge(id="p2", market_id="m1", user_id="bob", pick="NO", amount_usd=100.0))
    db_session.commit()
    verifier = _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", "Shipped on schedule."))

    first = tasks.run_resolution(db_session, now_ts=NOW)
    second = tasks.run_resolution(db_session, now_ts=NOW)

    assert first["ok"] is True
    assert first["standard_markets"]["resolved"] == 1
    assert second["standard_markets"]["due"] == 0
    assert verifier.questions == ["Will the upgrade ship?"]

    market = db_session.get(Market, "m1")
    assert market.is_resolved is True
    assert market.winning_outcome == "YES"
    assert market.ai_confidence == "HIGH"
    assert market.ai_reasoning == "Shipped on schedule."

    alice = db_session.get(Profile, "alice")
    assert alice.balance == 250.0
    assert alice.xp == 30
    assert alice.streak == 1
    bob = db_session.get(Profile, "bob")
    assert bob.balance == 0.0
    assert bob.xp == -10
    board = db_session.get(LeaderboardEntry, "alice")
    assert (board.xp, board.streak) == (alice.xp, alice.streak)

    status = json.loads(fake_redis.store[tasks.RESOLUTION_LAST_RESULT_KEY])
    assert status["ok"] is True
    assert tasks.RESOLUTION_LOCK_KEY not in fake_redis.store


def test_market_not_yet_due_is_left_alone(db_session, fake_redis, monkeypatch):
    _add_market(db_session, resolution_date=date(2026, 10, 19))
    db_session.commit()
    verifier = _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", ""))

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["standard_markets"]["due"] == 0
    assert verifier.questions == []
    assert db_session.get(Market, "m1").is_resolved is False


def test_poll_falls_back_to_tie_on_sixth_run(db_session, fake_redis, monkeypatch):
    _add_poll(
        db_session,
        votes=[("alice", "YES", 20), ("bob", "NO", 20)],
        yes_votes=1,
        no_votes=1,
        xp_staked_yes=20,
        xp_staked_no=20,
    )
    db_session.commit()
    verifier = _binary_verifier(monkeypatch, VerificationResult("UNKNOWN", "LOW", "AI verification error"))

    for expected_attempts in range(1, 6):
        result = tasks.run_resolution(db_session, now_ts=NOW)
        assert result["quick_polls"]["deferred"] == 1
        db_session.expire_all()
        poll = db_session.get(QuickPoll, "q1")
        assert poll.is_resolved is False
        assert poll.retry_attempts == expected_attempts

    result = tasks.run_resolution(db_session, now_ts=NOW)
    assert result["quick_polls"]["resolved"] == 1
    assert len(verifier.questions) == 6

    db_session.expire_all()
    poll = db_session.get(QuickPoll, "q1")
    assert poll.winning_outcome == "TIE"
    assert poll.ai_confidence == "LOW"
    votes = {v.user_id: v for v in db_session.query(PollVote).all()}
    assert votes["alice"].payout == 20 and votes["bob"].payout == 20
    assert votes["alice"].is_winner is False
    assert db_session.get(Profile, "alice").xp == 20
    assert db_session.get(Profile, "bob").xp == 20


def test_poll_winner_shares_losing_pot(db_session, fake_redis, monkeypatch):
    _add_poll(
        db_session,
        votes=[("alice", "YES", 30), ("bob", "NO", None)],
        yes_votes=1,
        no_votes=1,
        xp_staked_yes=30,
        xp_staked_no=10,
    )
    db_session.commit()
    _binary_verifier(monkeypatch, VerificationResult("YES", "MEDIUM", "Confirmed."))

    tasks.run_resolution(db_session, now_ts=NOW)

    votes = {v.user_id: v for v in db_session.query(PollVote).all()}
    assert votes["alice"].is_winner is True
    assert votes["alice"].payout == 40
    assert votes["bob"].is_winner is False
    assert votes["bob"].payout == 0
    assert db_session.get(Profile, "alice").streak == 1
    assert db_session.get(Profile, "bob").streak == 0


def test_poll_without_votes_resolves_without_verifier(db_session, fake_redis, monkeypatch):
    _add_poll(db_session)
    db_session.commit()
    verifier = _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", ""))

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["quick_polls"]["resolved"] == 1
    assert verifier.questions == []
    poll = db_session.get(QuickPoll, "q1")
    assert poll.winning_outcome == "NO_VOTES"
    assert db_session.query(Profile).count() == 0


def test_young_poll_is_not_due(db_session, fake_redis, monkeypatch):
    _add_poll(db_session, created_at=NAIVE_NOW - timedelta(hours=2), resolution_hours=6)
    db_session.commit()
    _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", ""))

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["quick_polls"]["due"] == 0


def test_one_failing_item_does_not_stop_the_others(db_session, fake_redis, monkeypatch):
    _add_market(db_session, market_id="m1", title="Broken question")
    _add_market(db_session, market_id="m2", title="Fine question")
    db_session.add(Pledge(id="p2", market_id="m2", user_id="carol", pick="NO", amount_usd=60.0))
    db_session.commit()
    _binary_verifier(
        monkeypatch,
        VerificationResult("NO", "HIGH", "Cancelled."),
        by_question={"Broken question": RuntimeError("boom")},
    )

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["standard_markets"]["failed"] == 1
    assert result["standard_markets"]["resolved"] == 1
    assert db_session.get(Market, "m1").is_resolved is False
    assert db_session.get(Market, "m2").is_resolved is True
    assert db_session.get(Profile, "carol").balance == pytest.approx(100.0)


def test_binary_pool_tie_fallback_refunds_principal(db_session, fake_redis, monkeypatch):
    _add_market(db_session, yes_pool=100.0, no_pool=100.0, retry_attempts=5)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick="YES", amount_usd=100.0))
    db_session.add(Pledge(id="p2", market_id="m1", user_id="bob", pick="NO", amount_usd=100.0, asset="BNB"))
    db_session.commit()
    _binary_verifier(monkeypatch, VerificationResult("UNKNOWN", "LOW", ""))

    tasks.run_resolution(db_session, now_ts=NOW)

    market = db_session.get(Market, "m1")
    assert market.winning_outcome == "AMBIGUOUS"
    assert "Fallback outcome: AMBIGUOUS" in market.ai_reasoning
    pledges = {p.id: p for p in db_session.query(Pledge).all()}
    assert pledges["p1"].is_resolved is True and pledges["p1"].payout == 100.0
    assert db_session.get(Profile, "alice").balance == 100.0
    assert db_session.get(Profile, "bob").bnb_balance == pytest.approx(0.2)
    assert db_session.get(Profile, "alice").streak == 0


def test_multi_option_ambiguous_leaves_pledges_open(db_session, fake_redis, monkeypatch):
    options = [
        {"id": "opt_0", "label": "Red", "odds": 50.0, "pool": 80.0},
        {"id": "opt_1", "label": "Blue", "odds": 50.0, "pool": 80.0},
    ]
    _add_market(db_session, market_structure="multi-option", options_json=options, retry_attempts=5)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick="opt_0", amount_usd=80.0))
    db_session.commit()
    verifier = _option_verifier(monkeypatch, VerificationResult("AMBIGUOUS", "LOW", ""))
    _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", ""))

    tasks.run_resolution(db_session, now_ts=NOW)

    assert len(verifier.questions) == 1
    market = db_session.get(Market, "m1")
    assert market.is_resolved is True
    assert market.winning_outcome == "AMBIGUOUS"
    assert db_session.get(Pledge, "p1").is_resolved is False
    assert db_session.get(Profile, "alice") is None


def test_multi_option_winner_paid(db_session, fake_redis, monkeypatch):
    options = [
        {"id": "opt_0", "label": "Red", "odds": 25.0},
        {"id": "opt_1", "label": "Blue", "odds": 75.0},
    ]
    _add_market(db_session, market_structure="multi-option", options_json=options)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick="opt_0", amount_usd=50.0))
    db_session.add(Pledge(id="p2", market_id="m1", user_id="bob", pick="opt_1", amount_usd=50.0))
    db_session.commit()
    _option_verifier(monkeypatch, VerificationResult("opt_0", "HIGH", "Red won."))

    tasks.run_resolution(db_session, now_ts=NOW)

    assert db_session.get(Market, "m1").winning_outcome == "opt_0"
    assert db_session.get(Profile, "alice").balance == 200.0
    assert db_session.get(Pledge, "p2").payout == 0.0


def test_quick_play_unresolvable_after_retries(db_session, fake_redis, monkeypatch):
    db_session.add(
        QuickPlayMarket(id="qp1", title="BTC above 100k at noon?", expires_at=NAIVE_NOW - timedelta(minutes=5))
    )
    db_session.add(
        QuickPlayMarket(id="qp2", title="Still running?", expires_at=NAIVE_NOW + timedelta(minutes=5))
    )
    db_session.commit()
    _binary_verifier(monkeypatch, VerificationResult("UNKNOWN", "LOW", ""))

    for _ in range(5):
        assert tasks.run_resolution(db_session, now_ts=NOW)["quick_plays"]["deferred"] == 1
    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["quick_plays"]["resolved"] == 1
    db_session.expire_all()
    assert db_session.get(QuickPlayMarket, "qp1").winning_outcome == "UNRESOLVABLE"
    assert db_session.get(QuickPlayMarket, "qp2").is_resolved is False


def test_run_skips_when_lock_held(db_session, fake_redis, monkeypatch):
    fake_redis.store[tasks.RESOLUTION_LOCK_KEY] = "other-run"
    _add_market(db_session)
    db_session.commit()
    verifier = _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", ""))

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result == {"ok": False, "reason": "resolution_locked"}
    assert verifier.questions == []
    assert fake_redis.store[tasks.RESOLUTION_LOCK_KEY] == "other-run"


def test_missing_verifier_configuration_is_fatal(db_session, fake_redis, monkeypatch):
    monkeypatch.setattr(settings, "OPENAI_API_KEY", None)

    with pytest.raises(VerifierNotConfigured):
        tasks.run_resolution(db_session, now_ts=NOW)
    assert fake_redis.store == {}


def test_poll_reaches_fallback_when_verifier_returns_no_text(db_session, fake_redis, monkeypatch):
    monkeypatch.setattr(settings, "LLM_MAX_RETRIES", 0)
    monkeypatch.setattr(llm_verifier, "LLM_BREAKER", CircuitBreaker("llm-test", 100, 60))

    class _RefusingClient:
        def __init__(self, *args, **kwargs):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def post(self, url, headers=None, json=None):
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": None, "refusal": "Cannot answer."}}]},
                request=httpx.Request("POST", url),
            )

    monkeypatch.setattr(llm_verifier.httpx, "Client", _RefusingClient)
    _add_poll(
        db_session,
        votes=[("alice", "YES", 10), ("bob", "YES", 10), ("carol", "NO", 10)],
        yes_votes=2,
        no_votes=1,
        xp_staked_yes=20,
        xp_staked_no=10,
    )
    db_session.commit()

    for expected_attempts in range(1, 6):
        result = tasks.run_resolution(db_session, now_ts=NOW)
        assert result["quick_polls"]["failed"] == 0
        assert result["quick_polls"]["deferred"] == 1
        db_session.expire_all()
        assert db_session.get(QuickPoll, "q1").retry_attempts == expected_attempts

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["quick_polls"]["resolved"] == 1
    db_session.expire_all()
    poll = db_session.get(QuickPoll, "q1")
    assert poll.winning_outcome == "YES"
    assert poll.ai_confidence == "LOW"
    votes = {v.user_id: v for v in db_session.query(PollVote).all()}
    assert votes["alice"].payout == 15
    assert votes["carol"].payout == 0


def test_numeric_option_id_can_win(db_session, fake_redis, monkeypatch):
    options = [
        {"id": 0, "label": "Zero", "odds": 50.0},
        {"id": 1, "label": "One", "odds": 50.0},
    ]
    _add_market(db_session, market_structure="multi-option", options_json=options)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick="0", amount_usd=40.0))
    db_session.commit()
    _option_verifier(monkeypatch, VerificationResult("0", "HIGH", "Zero won."))

    result = tasks.run_resolution(db_session, now_ts=NOW)

    assert result["standard_markets"]["resolved"] == 1
    assert db_session.get(Market, "m1").winning_outcome == "0"
    assert db_session.get(Pledge, "p1").is_winner is True
    assert db_session.get(Profile, "alice").balance == 80.0


def test_lowercase_binary_pick_is_paid(db_session, fake_redis, monkeypatch):
    _add_market(db_session)
    db_session.add(Pledge(id="p1", market_id="m1", user_id="alice", pick=" yes", amount_usd=100.0))
    db_session.commit()
    _binary_verifier(monkeypatch, VerificationResult("YES", "HIGH", "Shipped."))

    tasks.run_resolution(db_session, now_ts=NOW)

    assert db_session.get(Pledge, "p1").is_winner is True
    assert db_session.get(Profile, "alice").balance == 250.0
