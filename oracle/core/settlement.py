from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..models import LeaderboardEntry, Profile
from .payouts import ParticipantDelta, StreakChange

logger = logging.getLogger(__name__)


class SettlementError(RuntimeError):
    pass


class SettlementConflict(SettlementError):
    """The item or one of its stakes was already settled by another run."""


@dataclass(frozen=True)
class StakeUpdate:
    stake_id: Any
    is_winner: bool
    payout: float | int


@dataclass
class SettlementPlan:
    item_model: type
    item_id: str
    item_fields: dict[str, Any]
    stake_model: type | None = None
    stake_updates: list[StakeUpdate] = field(default_factory=list)
    participant_deltas: list[ParticipantDelta] = field(default_factory=list)


def apply_settlement(db: Session, plan: SettlementPlan, now_ts: datetime | None = None) -> None:
    """Write one resolved item and everything it touches as a single transaction.

    The item and each stake are updated only while ``is_resolved`` is still
    false; a zero-row match means another run got there first and the whole
    transaction is rolled back. Profiles get their increments and the public
    leaderboard row is then copied from the profile, so both always agree.
    """
    now_ts = now_ts or _utcnow()
    item_model = plan.item_model
    try:
        result = db.execute(
            update(item_model)
            .where(item_model.id == plan.item_id, item_model.is_resolved.is_(False))
            .values(is_resolved=True, **plan.item_fields)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise SettlementConflict(f"{item_model.__tablename__}:{plan.item_id} already resolved")

        if plan.stake_updates:
            if plan.stake_model is None:
                raise SettlementError("stake updates given without a stake model")
            stake_model = plan.stake_model
            for stake in plan.stake_updates:
                stake_result = db.execute(
                    update(stake_model)
                    .where(stake_model.id == stake.stake_id, stake_model.is_resolved.is_(False))
                    .values(is_resolved=True, is_winner=stake.is_winner, payout=stake.payout)
                    .execution_options(synchronize_session=False)
                )
                if stake_result.rowcount != 1:
                    raise SettlementConflict(f"{stake_model.__tablename__}:{stake.stake_id} already resolved")

        for delta in plan.participant_deltas:
            _apply_participant_delta(db, delta, now_ts)

        db.commit()
    except SettlementConflict:
        db.rollback()
        raise
    except Exception as exc:
        db.rollback()
        logger.exception(
            "settlement_commit_failed table=%s id=%s",
            item_model.__tablename__,
            plan.item_id,
        )
        raise SettlementError(f"settlement failed for {item_model.__tablename__}:{plan.item_id}") from exc

    logger.info(
        "settlement_committed table=%s id=%s stakes=%s participants=%s",
        item_model.__tablename__,
        plan.item_id,
        len(plan.stake_updates),
        len(plan.participant_deltas),
    )


def record_deferral(db: Session, item_model: type, item_id: str, expected_attempts: int) -> bool:
    """Bump ``retry_attempts`` by one if nobody resolved or retried the item meanwhile."""
    try:
        result = db.execute(
            update(item_model)
            .where(
                item_model.id == item_id,
                item_model.is_resolved.is_(False),
                item_model.retry_attempts == expected_attempts,
            )
            .values(retry_attempts=expected_attempts + 1)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception as exc:
        db.rollback()
        logger.exception("deferral_commit_failed table=%s id=%s", item_model.__tablename__, item_id)
        raise SettlementError(f"deferral failed for {item_model.__tablename__}:{item_id}") from exc
    return result.rowcount == 1


def _apply_participant_delta(db: Session, delta: ParticipantDelta, now_ts: datetime) -> None:
    values: dict[str, Any] = {}
    for field_name, amount in delta.balances.items():
        if amount:
            values[field_name] = getattr(Profile, field_name) + amount
    if delta.xp:
        values["xp"] = Profile.xp + delta.xp
    if delta.streak == StreakChange.INCREMENT:
        values["streak"] = Profile.streak + 1
    elif delta.streak == StreakChange.RESET:
        values["streak"] = 0
    if not values:
        return

    result = db.execute(
        update(Profile)
        .where(Profile.user_id == delta.user_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.add(
            Profile(
                user_id=delta.user_id,
                xp=delta.xp,
                streak=1 if delta.streak == StreakChange.INCREMENT else 0,
                **{name: amount for name, amount in delta.balances.items() if amount},
            )
        )
        db.flush()

    row = db.execute(select(Profile.xp, Profile.streak).where(Profile.user_id == delta.user_id)).one()
    entry = db.get(LeaderboardEntry, delta.user_id, populate_existing=True)
    if entry is None:
        db.add(LeaderboardEntry(user_id=delta.user_id, xp=row.xp, streak=row.streak, updated_at=now_ts))
    else:
        entry.xp = row.xp
        entry.streak = row.streak
        entry.updated_at = now_ts
    db.flush()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)
