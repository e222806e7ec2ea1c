import json
import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Callable

import redis
from sqlalchemy.orm import Session

from ..core.governor import (
    Decision,
    binary_pool_outcome,
    decide_outcome,
    option_pool_outcome,
    poll_majority_outcome,
)
from ..core.outcomes import BINARY_OUTCOMES, Outcome, option_id
from ..core.payouts import (
    MarketTerms,
    PollTerms,
    StakeInput,
    VoteInput,
    compute_market_payouts,
    compute_poll_payouts,
    market_participant_deltas,
    poll_participant_deltas,
)
from ..core.settlement import (
    SettlementConflict,
    SettlementPlan,
    StakeUpdate,
    apply_settlement,
    record_deferral,
)
from ..llm.verifier import ensure_verifier_configured, verify_binary_outcome, verify_multi_option_outcome
from ..models import Market, Pledge, PollVote, QuickPlayMarket, QuickPoll
from ..settings import settings

redis_conn = redis.from_url(settings.REDIS_URL)
logger = logging.getLogger(__name__)
RESOLUTION_LOCK_KEY = "lock:resolution"
RESOLUTION_LAST_TS_KEY = "resolution:last_ts"
RESOLUTION_LAST_RESULT_KEY = "resolution:last_result"

RESOLVED = "resolved"
DEFERRED = "deferred"
SKIPPED = "skipped"
CONFLICTS = "conflicts"
FAILED = "failed"


def run_resolution(db: Session, now_ts: datetime | None = None) -> dict:
    now_ts = _as_utc(now_ts or datetime.now(timezone.utc))
    result: dict = {"ok": False}
    ensure_verifier_configured()

    lock_value = f"{os.getpid()}:{now_ts.isoformat()}"
    try:
        locked = redis_conn.set(
            RESOLUTION_LOCK_KEY,
            lock_value,
            nx=True,
            ex=max(settings.RESOLUTION_LOCK_TTL_SECONDS, 60),
        )
    except Exception:
        logger.exception("resolution_lock_failed")
        locked = True
    if not locked:
        logger.info("resolution_skipped reason=lock_held")
        result["reason"] = "resolution_locked"
        return result

    try:
        markets = resolve_standard_markets(db, now_ts)
        polls = resolve_quick_polls(db, now_ts)
        quick_plays = resolve_quick_plays(db, now_ts)
        result = {
            "ok": True,
            "standard_markets": markets,
            "quick_polls": polls,
            "quick_plays": quick_plays,
        }
        logger.info(
            "resolution_finished markets=%s polls=%s quick_plays=%s",
            markets[RESOLVED],
            polls[RESOLVED],
            quick_plays[RESOLVED],
        )
        return result
    except Exception:
        logger.exception("resolution_failed")
        result["error"] = "resolution_failed"
        raise
    finally:
        result["ts"] = datetime.now(timezone.utc).isoformat()
        try:
            current = redis_conn.get(RESOLUTION_LOCK_KEY)
            if current and _decode(current) == lock_value:
                redis_conn.delete(RESOLUTION_LOCK_KEY)
        except Exception:
            logger.exception("resolution_lock_release_failed")
        try:
            redis_conn.set(RESOLUTION_LAST_TS_KEY, result["ts"])
            redis_conn.set(RESOLUTION_LAST_RESULT_KEY, json.dumps(result, ensure_ascii=True))
        except Exception:
            logger.exception("resolution_status_update_failed")


def resolve_standard_markets(db: Session, now_ts: datetime) -> dict:
    today = now_ts.date()
    rows = db.query(Market.id, Market.resolution_date).filter(Market.is_resolved.is_(False)).all()
    due_ids = [row.id for row in rows if row.resolution_date is not None and row.resolution_date <= today]
    counts = _new_counts(len(due_ids))
    if not due_ids:
        logger.info("markets_none_due")
        return counts

    logger.info("markets_due count=%s", len(due_ids))
    for market_id in due_ids:
        _run_item(db, counts, "market", market_id, lambda: _resolve_market(db, market_id, now_ts))
    return counts


def resolve_quick_polls(db: Session, now_ts: datetime) -> dict:
    rows = (
        db.query(QuickPoll.id, QuickPoll.created_at, QuickPoll.resolution_hours)
        .filter(QuickPoll.is_resolved.is_(False))
        .all()
    )
    due_ids = [row.id for row in rows if _poll_is_due(row.created_at, row.resolution_hours, now_ts)]
    counts = _new_counts(len(due_ids))
    if not due_ids:
        logger.info("polls_none_due")
        return counts

    logger.info("polls_due count=%s", len(due_ids))
    for poll_id in due_ids:
        _run_item(db, counts, "poll", poll_id, lambda: _resolve_poll(db, poll_id, now_ts))
    return counts


def resolve_quick_plays(db: Session, now_ts: datetime) -> dict:
    rows = (
        db.query(QuickPlayMarket.id, QuickPlayMarket.expires_at)
        .filter(QuickPlayMarket.is_resolved.is_(False))
        .all()
    )
    due_ids = [row.id for row in rows if row.expires_at is not None and now_ts > _as_utc(row.expires_at)]
    counts = _new_counts(len(due_ids))
    if not due_ids:
        logger.info("quick_plays_none_due")
        return counts

    logger.info("quick_plays_due count=%s", len(due_ids))
    for quick_play_id in due_ids:
        _run_item(db, counts, "quick_play", quick_play_id, lambda: _resolve_quick_play(db, quick_play_id, now_ts))
    return counts


def _resolve_market(db: Session, market_id: str, now_ts: datetime) -> str:
    market = db.get(Market, market_id)
    if market is None or market.is_resolved:
        return SKIPPED

    options = [dict(option) for option in (market.options_json or []) if isinstance(option, dict)]
    terms = MarketTerms(
        structure=market.market_structure,
        yes_percent=market.yes_percent,
        no_percent=market.no_percent,
        options=tuple(options),
        is_no_loss=bool(market.is_no_loss),
    )
    if terms.is_multi_option:
        verification = verify_multi_option_outcome(market.title, options, today=now_ts.date())
        allowed = {option_id(option) for option in options} - {""}
        fallback = lambda: option_pool_outcome(options)
    else:
        verification = verify_binary_outcome(market.title, today=now_ts.date())
        allowed = BINARY_OUTCOMES
        yes_pool, no_pool = market.yes_pool, market.no_pool
        fallback = lambda: binary_pool_outcome(yes_pool, no_pool)

    attempts = market.retry_attempts or 0
    decision = decide_outcome(verification, attempts, allowed, fallback)
    if not decision.settles:
        return _defer(db, Market, market_id, attempts, "market")

    pledges = (
        db.query(Pledge)
        .filter(Pledge.market_id == market_id, Pledge.is_resolved.is_(False))
        .order_by(Pledge.id)
        .all()
    )
    stakes = [
        StakeInput(
            stake_id=pledge.id,
            user_id=pledge.user_id,
            pick=pledge.pick,
            amount_usd=pledge.amount_usd or 0.0,
            asset=pledge.asset or "USD",
        )
        for pledge in pledges
    ]
    payouts = compute_market_payouts(terms, stakes, decision.outcome)
    plan = SettlementPlan(
        item_model=Market,
        item_id=market_id,
        item_fields=_resolved_fields(decision, now_ts),
        stake_model=Pledge,
        stake_updates=[StakeUpdate(p.stake_id, p.is_winner, p.payout_usd) for p in payouts],
        participant_deltas=market_participant_deltas(payouts),
    )
    apply_settlement(db, plan, _db_ts(now_ts))
    logger.info(
        "market_resolved id=%s outcome=%s action=%s pledges=%s",
        market_id,
        decision.outcome,
        decision.action.value,
        len(payouts),
    )
    return RESOLVED


def _resolve_poll(db: Session, poll_id: str, now_ts: datetime) -> str:
    poll = db.get(QuickPoll, poll_id)
    if poll is None or poll.is_resolved:
        return SKIPPED

    yes_votes = poll.yes_votes or 0
    no_votes = poll.no_votes or 0
    if yes_votes + no_votes == 0:
        plan = SettlementPlan(
            item_model=QuickPoll,
            item_id=poll_id,
            item_fields={
                "winning_outcome": Outcome.NO_VOTES.value,
                "ai_reasoning": "No votes cast",
                "resolved_at": _db_ts(now_ts),
            },
        )
        apply_settlement(db, plan, _db_ts(now_ts))
        logger.info("poll_resolved id=%s outcome=%s", poll_id, Outcome.NO_VOTES.value)
        return RESOLVED

    verification = verify_binary_outcome(poll.question, today=now_ts.date())
    attempts = poll.retry_attempts or 0
    decision = decide_outcome(
        verification,
        attempts,
        BINARY_OUTCOMES,
        lambda: poll_majority_outcome(yes_votes, no_votes),
    )
    if not decision.settles:
        return _defer(db, QuickPoll, poll_id, attempts, "poll")

    votes = (
        db.query(PollVote)
        .filter(PollVote.poll_id == poll_id, PollVote.is_resolved.is_(False))
        .order_by(PollVote.id)
        .all()
    )
    vote_inputs = [
        VoteInput(
            user_id=vote.user_id,
            vote=(vote.vote or "").strip().upper(),
            xp_staked=vote.xp_staked if vote.xp_staked is not None else settings.POLL_DEFAULT_XP_STAKE,
        )
        for vote in votes
    ]
    terms = PollTerms(yes_staked=poll.xp_staked_yes or 0, no_staked=poll.xp_staked_no or 0)
    payouts = compute_poll_payouts(decision.outcome, terms, vote_inputs)
    plan = SettlementPlan(
        item_model=QuickPoll,
        item_id=poll_id,
        item_fields=_resolved_fields(decision, now_ts),
        stake_model=PollVote,
        stake_updates=[StakeUpdate(vote.id, p.is_winner, p.payout) for vote, p in zip(votes, payouts)],
        participant_deltas=poll_participant_deltas(payouts),
    )
    apply_settlement(db, plan, _db_ts(now_ts))
    logger.info(
        "poll_resolved id=%s outcome=%s action=%s voters=%s",
        poll_id,
        decision.outcome,
        decision.action.value,
        len(payouts),
    )
    return RESOLVED


def _resolve_quick_play(db: Session, quick_play_id: str, now_ts: datetime) -> str:
    quick_play = db.get(QuickPlayMarket, quick_play_id)
    if quick_play is None or quick_play.is_resolved:
        return SKIPPED

    verification = verify_binary_outcome(quick_play.title, today=now_ts.date())
    attempts = quick_play.retry_attempts or 0
    decision = decide_outcome(
        verification,
        attempts,
        BINARY_OUTCOMES,
        lambda: Outcome.UNRESOLVABLE.value,
    )
    if not decision.settles:
        return _defer(db, QuickPlayMarket, quick_play_id, attempts, "quick_play")

    plan = SettlementPlan(
        item_model=QuickPlayMarket,
        item_id=quick_play_id,
        item_fields=_resolved_fields(decision, now_ts),
    )
    apply_settlement(db, plan, _db_ts(now_ts))
    logger.info("quick_play_resolved id=%s outcome=%s action=%s", quick_play_id, decision.outcome, decision.action.value)
    return RESOLVED


def _defer(db: Session, model: type, item_id: str, attempts: int, kind: str) -> str:
    if not record_deferral(db, model, item_id, attempts):
        logger.warning("%s_deferral_conflict id=%s attempts=%s", kind, item_id, attempts)
        return CONFLICTS
    logger.info("%s_deferred id=%s attempts=%s", kind, item_id, attempts + 1)
    return DEFERRED


def _run_item(db: Session, counts: dict, kind: str, item_id: str, resolve: Callable[[], str]) -> None:
    try:
        status = resolve()
    except SettlementConflict:
        counts[CONFLICTS] += 1
        logger.warning("%s_settlement_conflict id=%s", kind, item_id)
    except Exception:
        counts[FAILED] += 1
        logger.exception("%s_resolution_failed id=%s", kind, item_id)
        try:
            db.rollback()
        except Exception:
            logger.exception("%s_rollback_failed id=%s", kind, item_id)
    else:
        counts[status] += 1


def _resolved_fields(decision: Decision, now_ts: datetime) -> dict:
    return {
        "winning_outcome": decision.outcome,
        "ai_reasoning": (decision.rationale or "")[:2048],
        "ai_confidence": decision.confidence,
        "retry_attempts": decision.retry_attempts,
        "resolved_at": _db_ts(now_ts),
    }


def _poll_is_due(created_at: datetime | None, resolution_hours: int | None, now_ts: datetime) -> bool:
    created = _as_utc(created_at) if created_at else datetime.fromtimestamp(0, tz=timezone.utc)
    hours = resolution_hours or settings.POLL_DEFAULT_RESOLUTION_HOURS
    return created < now_ts - timedelta(hours=hours)


def _new_counts(due: int) -> dict:
    return {"due": due, RESOLVED: 0, DEFERRED: 0, SKIPPED: 0, CONFLICTS: 0, FAILED: 0}


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _db_ts(value: datetime) -> datetime:
    return _as_utc(value).replace(tzinfo=None)


def _decode(value) -> str:
    return value.decode() if isinstance(value, (bytes, bytearray)) else str(value)
