from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import delete
from sqlmodel import Session, select
from sqlmodel import col

from insider_signals.ledger import LedgerReader, LedgerTrade
from insider_signals.models import ClusterBuySignal, ClusterBuyTrade, utcnow
from insider_signals.notifications.queue import ClusterNotifier
from insider_signals.settings import settings
from insider_signals.signals.lifecycle import ProcessorSummary, chunked, deactivate_all, delete_inactive_before
from insider_signals.signals.scoring import cluster_signal_strength, is_ceo_title, is_cfo_title, role_priority

PROCESSOR = "cluster-buys"


@dataclass(frozen=True)
class ClusterBuyParams:
    as_of: datetime
    lookback_days: int = 7
    window_days: int = 3
    batch_size: int = 50
    max_statements: int = 100
    rescore_tolerance: float = 0.0
    notify_min_strength: int = 75
    retention_days: int = 30

    @classmethod
    def from_settings(cls, as_of: Optional[datetime] = None) -> "ClusterBuyParams":
        return cls(
            as_of=as_of or utcnow(),
            lookback_days=settings.cluster_lookback_days,
            window_days=settings.cluster_window_days,
            batch_size=settings.batch_size,
            max_statements=settings.max_statements_per_batch,
            rescore_tolerance=settings.cluster_rescore_tolerance,
            notify_min_strength=settings.cluster_notify_min_strength,
            retention_days=settings.cluster_retention_days,
        )


@dataclass
class ClusterCandidate:
    """Open-market purchases of one issuer on one transaction date."""

    issuer_id: int
    transaction_date: date
    trades: list[LedgerTrade] = field(default_factory=list)

    @property
    def total_insiders(self) -> int:
        return len({t.person_id for t in self.trades})

    @property
    def total_shares(self) -> float:
        return sum(t.shares_transacted for t in self.trades)

    @property
    def total_value(self) -> float:
        return sum(t.transaction_value for t in self.trades)

    @property
    def avg_role_priority(self) -> float:
        if not self.trades:
            return 0.0
        prios = [role_priority(is_officer=t.is_officer, officer_title=t.officer_title) for t in self.trades]
        return sum(prios) / len(prios)

    @property
    def max_role_priority(self) -> int:
        return max(
            (role_priority(is_officer=t.is_officer, officer_title=t.officer_title) for t in self.trades),
            default=0,
        )

    @property
    def has_ceo_buy(self) -> bool:
        return any(t.is_officer and is_ceo_title(t.officer_title) for t in self.trades)

    @property
    def has_cfo_buy(self) -> bool:
        return any(t.is_officer and is_cfo_title(t.officer_title) for t in self.trades)

    @property
    def has_ten_percent_owner(self) -> bool:
        return any(t.is_ten_percent_owner for t in self.trades)

    def strength(self) -> int:
        return cluster_signal_strength(
            total_insiders=self.total_insiders,
            total_value=self.total_value,
            has_ceo_buy=self.has_ceo_buy,
            has_cfo_buy=self.has_cfo_buy,
            avg_role_priority=self.avg_role_priority,
            has_ten_percent_owner=self.has_ten_percent_owner,
        )


def group_cluster_candidates(trades: list[LedgerTrade], *, min_insiders: int = 2) -> list[ClusterCandidate]:
    """
    Group purchases by (issuer, transaction_date), keep groups with at least ``min_insiders``
    distinct persons, largest total value first.
    """
    groups: dict[tuple[int, date], ClusterCandidate] = {}
    for t in trades:
        key = (t.issuer_id, t.transaction_date)
        cand = groups.get(key)
        if cand is None:
            cand = ClusterCandidate(issuer_id=t.issuer_id, transaction_date=t.transaction_date)
            groups[key] = cand
        cand.trades.append(t)

    out = [c for c in groups.values() if c.total_insiders >= min_insiders]
    out.sort(key=lambda c: (-c.total_value, c.issuer_id, c.transaction_date))
    return out


def nearest_cluster_date(candidate_dates: list[date], on: date) -> Optional[date]:
    """Closest candidate date to ``on``; ties go to the earlier date."""
    if not candidate_dates:
        return None
    return min(candidate_dates, key=lambda d: (abs((d - on).days), d))


def _upsert_cluster(
    session: Session,
    cand: ClusterCandidate,
    *,
    strength: int,
    params: ClusterBuyParams,
) -> tuple[ClusterBuySignal, str]:
    now = params.as_of
    window = timedelta(days=params.window_days)
    existing = session.exec(
        select(ClusterBuySignal).where(
            ClusterBuySignal.issuer_id == cand.issuer_id,
            ClusterBuySignal.transaction_date == cand.transaction_date,
        )
    ).first()

    if existing is None:
        sig = ClusterBuySignal(
            issuer_id=cand.issuer_id,
            transaction_date=cand.transaction_date,
            total_insiders=cand.total_insiders,
            total_shares=cand.total_shares,
            total_value=cand.total_value,
            signal_strength=strength,
            avg_role_priority=cand.avg_role_priority,
            max_role_priority=cand.max_role_priority,
            has_ceo_buy=cand.has_ceo_buy,
            has_cfo_buy=cand.has_cfo_buy,
            has_ten_percent_owner=cand.has_ten_percent_owner,
            buy_window_start=cand.transaction_date - window,
            buy_window_end=cand.transaction_date + window,
            detected_at=now,
            last_updated=now,
            is_active=True,
        )
        session.add(sig)
        return sig, "new"

    existing.is_active = True
    existing.last_updated = now
    if abs(strength - existing.signal_strength) <= params.rescore_tolerance:
        session.add(existing)
        return existing, "reactivated"

    existing.total_insiders = cand.total_insiders
    existing.total_shares = cand.total_shares
    existing.total_value = cand.total_value
    existing.signal_strength = strength
    existing.avg_role_priority = cand.avg_role_priority
    existing.max_role_priority = cand.max_role_priority
    existing.has_ceo_buy = cand.has_ceo_buy
    existing.has_cfo_buy = cand.has_cfo_buy
    existing.has_ten_percent_owner = cand.has_ten_percent_owner
    existing.buy_window_start = cand.transaction_date - window
    existing.buy_window_end = cand.transaction_date + window
    session.add(existing)
    return existing, "updated"


def _replace_cluster_trades(
    session: Session,
    reader: LedgerReader,
    sig: ClusterBuySignal,
    *,
    candidate_dates: list[date],
    max_statements: int,
) -> int:
    session.exec(delete(ClusterBuyTrade).where(col(ClusterBuyTrade.cluster_id) == sig.id))  # type: ignore[call-overload]

    window_trades = reader.list_completed_purchases(
        since=sig.buy_window_start,
        until=sig.buy_window_end,
        issuer_ids=[sig.issuer_id],
        require_shares=True,
    )

    seen: set[int] = set()
    pending = 0
    inserted = 0
    for t in window_trades:
        if t.transaction_id in seen:
            continue
        if nearest_cluster_date(candidate_dates, t.transaction_date) != sig.transaction_date:
            continue
        seen.add(t.transaction_id)
        session.add(
            ClusterBuyTrade(
                cluster_id=sig.id,
                transaction_id=t.transaction_id,
                person_id=t.person_id,
                person_name=t.person_name,
                shares_transacted=t.shares_transacted,
                price_per_share=t.price_per_share,
                transaction_value=t.transaction_value,
                is_officer=t.is_officer,
                is_director=t.is_director,
                officer_title=t.officer_title,
            )
        )
        inserted += 1
        pending += 1
        if pending >= max_statements:
            session.flush()
            pending = 0
    return inserted


def cleanup_stale_clusters(session: Session, *, cutoff: date) -> int:
    """Delete inactive clusters (and their trade links) with transaction_date <= cutoff."""
    stale = select(ClusterBuySignal.id).where(
        col(ClusterBuySignal.is_active).is_(False),
        col(ClusterBuySignal.transaction_date) <= cutoff,
    )
    session.exec(delete(ClusterBuyTrade).where(col(ClusterBuyTrade.cluster_id).in_(stale)))  # type: ignore[call-overload]
    return delete_inactive_before(session, ClusterBuySignal, column=col(ClusterBuySignal.transaction_date), cutoff=cutoff)


def _notify(notifier: ClusterNotifier, cluster_ids: list[str]) -> None:
    log = logger.bind(processor=PROCESSOR)
    for cluster_id in cluster_ids:
        try:
            notifier.enqueue_cluster_notification(cluster_id)
        except Exception as e:
            log.warning("notification enqueue failed cluster_id={}: {}", cluster_id, e)


def detect_cluster_buys(
    *,
    session: Session,
    params: ClusterBuyParams,
    notifier: Optional[ClusterNotifier] = None,
) -> ProcessorSummary:
    """
    Rebuild cluster-buy signals from the last ``lookback_days`` of open-market purchases.

    Each outer batch of candidates is committed on its own. A failing batch is rolled back,
    counted in ``failed`` and its clusters stay inactive until the next run.
    """
    log = logger.bind(processor=PROCESSOR)
    summary = ProcessorSummary()

    deactivated = deactivate_all(session, ClusterBuySignal)
    log.debug("deactivated {} clusters", deactivated)

    reader = LedgerReader(session)
    as_of_day = params.as_of.date()
    purchases = reader.list_completed_purchases(
        since=as_of_day - timedelta(days=params.lookback_days),
        until=as_of_day,
        require_shares=True,
    )
    candidates = group_cluster_candidates(purchases)
    summary.processed = len(candidates)

    dates_by_issuer: dict[int, list[date]] = {}
    for c in candidates:
        dates_by_issuer.setdefault(c.issuer_id, []).append(c.transaction_date)

    for start, batch in chunked(candidates, params.batch_size):
        counts = {"new": 0, "updated": 0, "reactivated": 0}
        to_notify: list[str] = []
        try:
            touched: list[ClusterBuySignal] = []
            pending = 0
            for cand in batch:
                strength = cand.strength()
                sig, outcome = _upsert_cluster(session, cand, strength=strength, params=params)
                counts[outcome] += 1
                touched.append(sig)
                if outcome == "new" or strength >= params.notify_min_strength:
                    to_notify.append(sig.id)
                pending += 1
                if pending >= params.max_statements:
                    session.flush()
                    pending = 0
            session.flush()

            for sig in touched:
                _replace_cluster_trades(
                    session,
                    reader,
                    sig,
                    candidate_dates=dates_by_issuer.get(sig.issuer_id, []),
                    max_statements=params.max_statements,
                )
            session.commit()
        except Exception:
            session.rollback()
            summary.failed += len(batch)
            log.exception("cluster batch failed start={} size={}", start, len(batch))
            continue

        summary.new += counts["new"]
        summary.updated += counts["updated"]
        summary.reactivated += counts["reactivated"]
        if notifier is not None:
            _notify(notifier, to_notify)

    cutoff = as_of_day - timedelta(days=params.retention_days)
    summary.cleaned_up = cleanup_stale_clusters(session, cutoff=cutoff)

    summary.finish()
    log.info(
        "clusters processed={} new={} updated={} reactivated={} failed={} cleaned_up={}",
        summary.processed,
        summary.new,
        summary.updated,
        summary.reactivated,
        summary.failed,
        summary.cleaned_up,
    )
    return summary
