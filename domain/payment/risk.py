"""
Deterministic risk scoring.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional
from zoneinfo import ZoneInfo

if TYPE_CHECKING:
    from core.settings import RiskPolicy


@dataclass(frozen=True)
class RiskContext:
    amount: Decimal
    country: Optional[str]
    prior_transactions: int
    occurred_at: datetime


@dataclass(frozen=True)
class RiskAssessment:
    score: int
    reasons: tuple[str, ...]
    flagged: bool


def assess_risk(ctx: RiskContext, policy: RiskPolicy) -> RiskAssessment:
    """Score 0..max_score from additive weights; same input, same score."""
    score = 0
    reasons: list[str] = []

    if ctx.amount > policy.high_amount:
        score += policy.high_amount_weight
        reasons.append("high_amount")
    if ctx.amount > policy.very_high_amount:
        score += policy.very_high_amount_weight
        reasons.append("very_high_amount")
    if ctx.country and ctx.country.upper() in policy.denied_countries:
        score += policy.denied_country_weight
        reasons.append("high_risk_country")
    if ctx.prior_transactions == 0:
        score += policy.new_user_weight
        reasons.append("new_user")

    occurred = ctx.occurred_at
    if occurred.tzinfo is None:
        occurred = occurred.replace(tzinfo=timezone.utc)
    hour = occurred.astimezone(ZoneInfo(policy.timezone)).hour
    if hour < policy.off_hours_start or hour > policy.off_hours_end:
        score += policy.off_hours_weight
        reasons.append("off_hours")

    score = min(score, policy.max_score)
    return RiskAssessment(score=score, reasons=tuple(reasons), flagged=score >= policy.review_threshold)
