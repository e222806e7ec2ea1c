"""Payout math for resolved markets and quick polls.

Everything here is pure: callers pass plain snapshots of the records and get
back per-stake results plus per-participant deltas. The settlement writer
applies them to the database.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Sequence

from . import defaults
from .outcomes import MarketStructure, Outcome, option_id


class StreakChange(str, Enum):
    INCREMENT = "INCREMENT"
    RESET = "RESET"
    KEEP = "KEEP"


@dataclass(frozen=True)
class MarketTerms:
    structure: str
    yes_percent: float | None = None
    no_percent: float | None = None
    options: tuple[dict, ...] = ()
    is_no_loss: bool = False

    @property
    def is_multi_option(self) -> bool:
        return self.structure == MarketStructure.MULTI_OPTION.value and bool(self.options)


@dataclass(frozen=True)
class StakeInput:
    stake_id: str
    user_id: str
    pick: str
    amount_usd: float
    asset: str = defaults.DEFAULT_ASSET


@dataclass(frozen=True)
class StakePayout:
    stake_id: str
    user_id: str
    is_winner: bool
    payout_usd: float
    balance_field: str
    balance_delta: float
    xp_delta: int
    streak: StreakChange


@dataclass(frozen=True)
class PollTerms:
    yes_staked: int
    no_staked: int


@dataclass(frozen=True)
class VoteInput:
    user_id: str
    vote: str
    xp_staked: int


@dataclass(frozen=True)
class VotePayout:
    user_id: str
    is_winner: bool
    payout: int
    streak: StreakChange


@dataclass
class ParticipantDelta:
    user_id: str
    balances: dict[str, float] = field(default_factory=dict)
    xp: int = 0
    streak: StreakChange = StreakChange.KEEP


def asset_price(asset: str | None) -> float:
    return defaults.ASSET_PRICES_USD.get((asset or "").upper(), 1.0)


def balance_field_for(asset: str | None) -> str:
    return defaults.ASSET_BALANCE_FIELDS.get((asset or "").upper(), "balance")


def winning_odds_percent(terms: MarketTerms, outcome: str) -> float:
    """Recorded odds for the winning side, as a percentage.

    The snapshot stored on the market is used as-is; odds are never
    recomputed from pools at settlement time.
    """
    if terms.is_multi_option:
        for option in terms.options:
            if option_id(option) == outcome:
                return _positive_or(option.get("odds"), defaults.DEFAULT_OPTION_ODDS_PERCENT)
        return defaults.DEFAULT_OPTION_ODDS_PERCENT
    if outcome == Outcome.YES.value:
        return _positive_or(terms.yes_percent, defaults.DEFAULT_YES_ODDS_PERCENT)
    return _positive_or(terms.no_percent, defaults.DEFAULT_NO_ODDS_PERCENT)


def win_xp(amount_usd: float) -> int:
    xp = defaults.WIN_BASE_XP + math.floor(amount_usd / defaults.WIN_XP_PER_USD_DIVISOR)
    if amount_usd <= defaults.SMALL_STAKE_MAX_USD:
        xp *= defaults.SMALL_STAKE_XP_MULTIPLIER
    elif amount_usd >= defaults.LARGE_STAKE_MIN_USD:
        xp = xp // 2
    return xp


def compute_market_payouts(
    terms: MarketTerms,
    stakes: Sequence[StakeInput],
    outcome: str,
) -> list[StakePayout]:
    if outcome == Outcome.AMBIGUOUS.value:
        if terms.is_multi_option:
            # Ambiguous multi-option markets are closed without touching stakes.
            return []
        return [_refund(stake) for stake in stakes]

    odds = winning_odds_percent(terms, outcome)
    payouts: list[StakePayout] = []
    for stake in stakes:
        amount = max(float(stake.amount_usd or 0.0), 0.0)
        if _picked(terms, stake.pick, outcome):
            payout_usd = amount * 100.0 / odds
            payouts.append(
                StakePayout(
                    stake_id=stake.stake_id,
                    user_id=stake.user_id,
                    is_winner=True,
                    payout_usd=payout_usd,
                    balance_field=balance_field_for(stake.asset),
                    balance_delta=payout_usd / asset_price(stake.asset),
                    xp_delta=win_xp(amount),
                    streak=StreakChange.INCREMENT,
                )
            )
            continue
        principal = amount if terms.is_no_loss else 0.0
        payouts.append(
            StakePayout(
                stake_id=stake.stake_id,
                user_id=stake.user_id,
                is_winner=False,
                payout_usd=principal,
                balance_field=balance_field_for(stake.asset),
                balance_delta=principal / asset_price(stake.asset),
                xp_delta=defaults.LOSS_XP,
                streak=StreakChange.RESET,
            )
        )
    return payouts


def compute_poll_payouts(
    outcome: str,
    terms: PollTerms,
    votes: Iterable[VoteInput],
) -> list[VotePayout]:
    """Split the losing side's staked points among the winners.

    A winner receives ``floor(staked + staked / winner_total * loser_total)``
    from the poll's recorded totals. Losers get nothing back, their points
    were taken when they voted. TIE and NO_VOTES hand every stake back.
    """
    if outcome in (Outcome.TIE.value, Outcome.NO_VOTES.value):
        return [
            VotePayout(user_id=v.user_id, is_winner=False, payout=max(v.xp_staked, 0), streak=StreakChange.KEEP)
            for v in votes
        ]
    if outcome not in (Outcome.YES.value, Outcome.NO.value):
        raise ValueError(f"unsupported poll outcome: {outcome}")

    if outcome == Outcome.YES.value:
        winner_total, loser_total = terms.yes_staked, terms.no_staked
    else:
        winner_total, loser_total = terms.no_staked, terms.yes_staked
    winner_total = max(int(winner_total or 0), 0)
    loser_total = max(int(loser_total or 0), 0)

    payouts: list[VotePayout] = []
    for vote in votes:
        staked = max(int(vote.xp_staked), 0)
        if vote.vote != outcome:
            payouts.append(VotePayout(user_id=vote.user_id, is_winner=False, payout=0, streak=StreakChange.RESET))
            continue
        share = (loser_total * staked) // winner_total if winner_total > 0 else 0
        payouts.append(
            VotePayout(user_id=vote.user_id, is_winner=True, payout=staked + share, streak=StreakChange.INCREMENT)
        )
    return payouts


def market_participant_deltas(payouts: Iterable[StakePayout]) -> list[ParticipantDelta]:
    deltas: dict[str, ParticipantDelta] = {}
    for payout in payouts:
        delta = deltas.setdefault(payout.user_id, ParticipantDelta(user_id=payout.user_id))
        if payout.balance_delta:
            delta.balances[payout.balance_field] = delta.balances.get(payout.balance_field, 0.0) + payout.balance_delta
        delta.xp += payout.xp_delta
        delta.streak = _merge_streak(delta.streak, payout.streak)
    return [deltas[user_id] for user_id in sorted(deltas)]


def poll_participant_deltas(payouts: Iterable[VotePayout]) -> list[ParticipantDelta]:
    deltas: dict[str, ParticipantDelta] = {}
    for payout in payouts:
        delta = deltas.setdefault(payout.user_id, ParticipantDelta(user_id=payout.user_id))
        delta.xp += payout.payout
        delta.streak = _merge_streak(delta.streak, payout.streak)
    return [deltas[user_id] for user_id in sorted(deltas)]


def _picked(terms: MarketTerms, pick: str | None, outcome: str) -> bool:
    token = (pick or "").strip()
    if terms.is_multi_option:
        return token == outcome
    return token.upper() == outcome


def _refund(stake: StakeInput) -> StakePayout:
    amount = max(float(stake.amount_usd or 0.0), 0.0)
    return StakePayout(
        stake_id=stake.stake_id,
        user_id=stake.user_id,
        is_winner=False,
        payout_usd=amount,
        balance_field=balance_field_for(stake.asset),
        balance_delta=amount / asset_price(stake.asset),
        xp_delta=0,
        streak=StreakChange.KEEP,
    )


def _merge_streak(current: StreakChange, incoming: StreakChange) -> StreakChange:
    if StreakChange.INCREMENT in (current, incoming):
        return StreakChange.INCREMENT
    if StreakChange.RESET in (current, incoming):
        return StreakChange.RESET
    return StreakChange.KEEP


def _positive_or(value: object, default: float) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if math.isnan(number) or number <= 0:
        return default
    return number
