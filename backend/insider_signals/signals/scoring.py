"""
Pure scoring heuristics shared by the signal processors.

Two separate value scales: ``ScoringPolicy.value_tiers`` ranks a single trade
(0..100 points) while ``ClusterStrengthPolicy.value_tiers`` ranks a cluster's aggregate
value inside a 0..100 strength budget shared with four other factors.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from insider_signals.ledger import LedgerTrade

Tiers = tuple[tuple[float, int], ...]


@dataclass(frozen=True)
class ScoringPolicy:
    # (minimum, points), highest threshold first
    value_tiers: Tiers = ((10_000_000, 100), (2_500_000, 60), (1_000_000, 40), (250_000, 20))
    value_floor: int = 10

    purchase_points: int = 30
    sale_points: int = -10

    chief_officer_points: int = 30  # CEO or CFO
    officer_points: int = 15
    director_points: int = 10

    holdings_tiers: Tiers = ((0.50, 30), (0.25, 20), (0.10, 10))
    ten_percent_owner_points: int = 20

    cluster_tiers: Tiers = ((3, 25), (2, 15))

    indirect_penalty: int = -10
    plan_penalty: int = -25

    first_buy_bonus: int = 40


@dataclass(frozen=True)
class ClusterStrengthPolicy:
    insider_tiers: Tiers = ((5, 30), (4, 25), (3, 20), (2, 15))
    value_tiers: Tiers = ((10_000_000, 25), (5_000_000, 20), (2_500_000, 15), (1_000_000, 10), (250_000, 5))
    ceo_points: int = 15
    cfo_points: int = 10
    role_priority_tiers: Tiers = ((2, 10), (1, 5))
    ten_percent_owner_points: int = 10
    concentration_tiers: Tiers = ((4, 10), (3, 5))
    max_strength: int = 100


DEFAULT_POLICY = ScoringPolicy()
DEFAULT_CLUSTER_POLICY = ClusterStrengthPolicy()

ROLE_PRIORITY_CEO = 3
ROLE_PRIORITY_CFO = 2
ROLE_PRIORITY_OFFICER = 1
ROLE_PRIORITY_NONE = 0


def _tier(value: Optional[float], tiers: Tiers, default: int = 0) -> int:
    if value is None:
        return default
    for minimum, points in tiers:
        if value >= minimum:
            return points
    return default


def is_ceo_title(title: Optional[str]) -> bool:
    t = (title or "").lower()
    return "chief executive" in t or "ceo" in t


def is_cfo_title(title: Optional[str]) -> bool:
    t = (title or "").lower()
    return "chief financial" in t or "cfo" in t


def role_priority(*, is_officer: bool, officer_title: Optional[str]) -> int:
    if not is_officer:
        return ROLE_PRIORITY_NONE
    if is_ceo_title(officer_title):
        return ROLE_PRIORITY_CEO
    if is_cfo_title(officer_title):
        return ROLE_PRIORITY_CFO
    return ROLE_PRIORITY_OFFICER


@dataclass(frozen=True)
class TradeFacts:
    transaction_value: float
    is_purchase: bool = False
    is_sale: bool = False
    is_officer: bool = False
    is_director: bool = False
    officer_title: Optional[str] = None
    is_ten_percent_owner: bool = False
    pct_of_holdings: Optional[float] = None
    cluster_size: int = 0
    direct_or_indirect: str = "D"
    is_10b5_1_plan: bool = False

    @classmethod
    def from_trade(cls, trade: LedgerTrade, *, cluster_size: int) -> "TradeFacts":
        return cls(
            transaction_value=trade.transaction_value,
            is_purchase=trade.is_purchase,
            is_sale=trade.is_sale,
            is_officer=trade.is_officer,
            is_director=trade.is_director,
            officer_title=trade.officer_title,
            is_ten_percent_owner=trade.is_ten_percent_owner,
            pct_of_holdings=trade.pct_of_holdings,
            cluster_size=cluster_size,
            direct_or_indirect=trade.direct_or_indirect,
            is_10b5_1_plan=trade.is_10b5_1_plan,
        )


@dataclass(frozen=True)
class TradeScore:
    value: int
    direction: int
    role: int
    ownership: int
    cluster: int
    timing: int

    @property
    def total(self) -> int:
        return int(round(self.value + self.direction + self.role + self.ownership + self.cluster + self.timing))

    def by_factor(self) -> dict[str, int]:
        return {
            "value": self.value,
            "direction": self.direction,
            "role": self.role,
            "ownership": self.ownership,
            "cluster": self.cluster,
            "timing": self.timing,
        }


def value_score(transaction_value: Optional[float], policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    return _tier(transaction_value, policy.value_tiers, default=policy.value_floor)


def score_trade(facts: TradeFacts, policy: ScoringPolicy = DEFAULT_POLICY) -> TradeScore:
    direction = 0
    if facts.is_purchase:
        direction = policy.purchase_points
    elif facts.is_sale:
        direction = policy.sale_points

    role = 0
    priority = role_priority(is_officer=facts.is_officer, officer_title=facts.officer_title)
    if priority >= ROLE_PRIORITY_CFO:
        role = policy.chief_officer_points
    elif priority == ROLE_PRIORITY_OFFICER:
        role = policy.officer_points
    elif facts.is_director:
        role = policy.director_points

    ownership = _tier(facts.pct_of_holdings, policy.holdings_tiers)
    if facts.is_ten_percent_owner:
        ownership += policy.ten_percent_owner_points

    timing = 0
    if (facts.direct_or_indirect or "").upper() == "I":
        timing += policy.indirect_penalty
    if facts.is_10b5_1_plan:
        timing += policy.plan_penalty

    return TradeScore(
        value=value_score(facts.transaction_value, policy),
        direction=direction,
        role=role,
        ownership=ownership,
        cluster=_tier(facts.cluster_size, policy.cluster_tiers),
        timing=timing,
    )


def first_buy_score(facts: TradeFacts, policy: ScoringPolicy = DEFAULT_POLICY) -> int:
    return score_trade(facts, policy).total + policy.first_buy_bonus


def cluster_signal_strength(
    *,
    total_insiders: int,
    total_value: float,
    has_ceo_buy: bool,
    has_cfo_buy: bool,
    avg_role_priority: float,
    has_ten_percent_owner: bool,
    policy: ClusterStrengthPolicy = DEFAULT_CLUSTER_POLICY,
) -> int:
    """
    Cluster strength (0..100):
    - breadth: number of distinct insiders
    - aggregate dollar value
    - seniority: CEO/CFO presence and average role priority
    - 10% owner participation
    - concentration bonus for many insiders on one date
    """
    score = _tier(total_insiders, policy.insider_tiers)
    score += _tier(total_value, policy.value_tiers)
    if has_ceo_buy:
        score += policy.ceo_points
    if has_cfo_buy:
        score += policy.cfo_points
    score += _tier(avg_role_priority, policy.role_priority_tiers)
    if has_ten_percent_owner:
        score += policy.ten_percent_owner_points
    score += _tier(total_insiders, policy.concentration_tiers)
    return min(int(round(score)), policy.max_strength)
