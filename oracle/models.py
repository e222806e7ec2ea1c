import uuid

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
from .db import Base


def _new_id() -> str:
    return uuid.uuid4().hex


class Market(Base):
    __tablename__ = "standard_markets"
    __table_args__ = (
        Index("ix_standard_markets_unresolved_date", "is_resolved", "resolution_date"),
        CheckConstraint("retry_attempts >= 0", name="ck_standard_markets_retry_attempts"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    insight: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    resolution_date: Mapped[Date] = mapped_column(Date, nullable=False)
    market_structure: Mapped[str] = mapped_column(String(16), default="binary", nullable=False)
    # [{"id": "opt_0", "label": "...", "odds": 30.0, "pool": 120.0}, ...]
    options_json: Mapped[list | None] = mapped_column(JSON, nullable=True)

    yes_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    no_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    yes_pool: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    no_pool: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total_stake_volume: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    is_no_loss: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    yield_protocol: Mapped[str | None] = mapped_column(String(32), nullable=True)
    creator_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    winning_outcome: Mapped[str | None] = mapped_column(String(64), nullable=True)
    retry_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_reasoning: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    ai_confidence: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime, default=func.now(), nullable=False)


class Pledge(Base):
    __tablename__ = "pledges"
    __table_args__ = (
        Index("ix_pledges_market_unresolved", "market_id", "is_resolved"),
        CheckConstraint("amount_usd >= 0", name="ck_pledges_amount_non_negative"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    market_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("standard_markets.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    pick: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_usd: Mapped[float] = mapped_column(Float, nullable=False)
    asset: Mapped[str] = mapped_column(String(16), default="USD", nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_winner: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    payout: Mapped[float | None] = mapped_column(Float, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime, default=func.now(), nullable=False)


class QuickPoll(Base):
    __tablename__ = "quick_polls"
    __table_args__ = (
        CheckConstraint("retry_attempts >= 0", name="ck_quick_polls_retry_attempts"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    question: Mapped[str] = mapped_column(String(512), nullable=False)
    resolution_hours: Mapped[int | None] = mapped_column(Integer, nullable=True)
    yes_votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    no_votes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    xp_staked_yes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    xp_staked_no: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    winning_outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    retry_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_reasoning: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    ai_confidence: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[DateTime | None] = mapped_column(DateTime, default=func.now(), nullable=True)


class PollVote(Base):
    __tablename__ = "poll_votes"
    __table_args__ = (
        UniqueConstraint("poll_id", "user_id", name="uq_poll_votes_poll_user"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    poll_id: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("quick_polls.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    vote: Mapped[str] = mapped_column(String(8), nullable=False)
    xp_staked: Mapped[int | None] = mapped_column(Integer, nullable=True)
    voted_at: Mapped[DateTime] = mapped_column(DateTime, default=func.now(), nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_winner: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    payout: Mapped[int | None] = mapped_column(Integer, nullable=True)


class QuickPlayMarket(Base):
    __tablename__ = "quick_play_markets"
    __table_args__ = (
        CheckConstraint("retry_attempts >= 0", name="ck_quick_play_markets_retry_attempts"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    yes_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    no_percent: Mapped[float | None] = mapped_column(Float, nullable=True)
    expires_at: Mapped[DateTime | None] = mapped_column(DateTime, nullable=True)
    auto_generated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    winning_outcome: Mapped[str | None] = mapped_column(String(16), nullable=True)
    retry_attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    ai_reasoning: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    ai_confidence: Mapped[str | None] = mapped_column(String(16), nullable=True)
    resolved_at: Mapped[DateTime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[DateTime] = mapped_column(DateTime, default=func.now(), nullable=False)


class Profile(Base):
    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    bnb_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    cake_balance: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[DateTime] = mapped_column(DateTime, default=func.now(), nullable=False)


class LeaderboardEntry(Base):
    __tablename__ = "leaderboard"

    user_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    xp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    updated_at: Mapped[DateTime | None] = mapped_column(DateTime, nullable=True)
