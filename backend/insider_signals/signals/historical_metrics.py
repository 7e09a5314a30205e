from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import func
from sqlmodel import Session, select
from sqlmodel import col

from insider_signals.ledger import DailyActivity, LedgerReader
from insider_signals.models import (
    ClusterBuySignal,
    FirstBuySignal,
    ImportantTradeSignal,
    InsiderTransaction,
    SignalHistory,
    utcnow,
)
from insider_signals.settings import settings
from insider_signals.signals.lifecycle import ProcessorSummary, chunked

PROCESSOR = "historical-metrics"


@dataclass(frozen=True)
class HistoricalMetricsParams:
    as_of: datetime
    lookback_days: int = 90
    batch_size: int = 50
    no_sell_ratio: float = 999.0

    @classmethod
    def from_settings(cls, as_of: Optional[datetime] = None) -> "HistoricalMetricsParams":
        return cls(
            as_of=as_of or utcnow(),
            lookback_days=settings.metrics_lookback_days,
            batch_size=settings.batch_size,
            no_sell_ratio=settings.metrics_no_sell_ratio,
        )


@dataclass(frozen=True)
class ClusterDay:
    count: int
    avg_size: float
    max_size: int
    total_value: float


@dataclass(frozen=True)
class ImportanceDay:
    count: int
    avg_score: float


def buy_sell_ratio(buy_value: float, sell_value: float, *, no_sell_ratio: float = 999.0) -> float:
    """Dollar-value ratio of open-market buys to sells."""
    if sell_value > 0:
        return buy_value / sell_value
    if buy_value > 0:
        return no_sell_ratio
    return 0.0


def metric_dates(as_of: date, lookback_days: int) -> list[date]:
    """as_of, as_of - 1, ... (lookback_days dates, newest first)."""
    return [as_of - timedelta(days=i) for i in range(max(0, lookback_days))]


def _cluster_days(session: Session, *, start: date, end: date) -> dict[date, ClusterDay]:
    stmt = (
        select(
            ClusterBuySignal.transaction_date,
            func.count(),
            func.avg(ClusterBuySignal.total_insiders),
            func.max(ClusterBuySignal.total_insiders),
            func.sum(ClusterBuySignal.total_value),
        )
        .where(
            col(ClusterBuySignal.is_active).is_(True),
            col(ClusterBuySignal.transaction_date) >= start,
            col(ClusterBuySignal.transaction_date) <= end,
        )
        .group_by(col(ClusterBuySignal.transaction_date))
    )
    return {
        day: ClusterDay(
            count=int(n or 0),
            avg_size=float(avg or 0.0),
            max_size=int(mx or 0),
            total_value=float(total or 0.0),
        )
        for day, n, avg, mx, total in session.exec(stmt).all()
    }


def _first_buy_days(session: Session, *, start: date, end: date) -> dict[date, int]:
    stmt = (
        select(InsiderTransaction.transaction_date, func.count())
        .select_from(FirstBuySignal)
        .join(InsiderTransaction, col(InsiderTransaction.id) == col(FirstBuySignal.transaction_id))
        .where(
            col(FirstBuySignal.is_active).is_(True),
            col(InsiderTransaction.transaction_date) >= start,
            col(InsiderTransaction.transaction_date) <= end,
        )
        .group_by(col(InsiderTransaction.transaction_date))
    )
    return {day: int(n or 0) for day, n in session.exec(stmt).all()}


def _importance_days(session: Session, *, start: date, end: date) -> dict[date, ImportanceDay]:
    stmt = (
        select(
            InsiderTransaction.transaction_date,
            func.count(),
            func.avg(ImportantTradeSignal.importance_score),
        )
        .select_from(ImportantTradeSignal)
        .join(InsiderTransaction, col(InsiderTransaction.id) == col(ImportantTradeSignal.transaction_id))
        .where(
            col(ImportantTradeSignal.is_active).is_(True),
            col(InsiderTransaction.transaction_date) >= start,
            col(InsiderTransaction.transaction_date) <= end,
        )
        .group_by(col(InsiderTransaction.transaction_date))
    )
    return {
        day: ImportanceDay(count=int(n or 0), avg_score=float(avg or 0.0))
        for day, n, avg in session.exec(stmt).all()
    }


def _upsert_history(session: Session, row: SignalHistory) -> str:
    existing = session.exec(select(SignalHistory).where(SignalHistory.date == row.date)).first()
    if existing is None:
        session.add(row)
        return "new"
    for name in (
        "cluster_buys_count",
        "avg_cluster_size",
        "max_cluster_size",
        "total_cluster_value",
        "total_insider_buys",
        "total_insider_sells",
        "total_buy_value",
        "total_sell_value",
        "buy_sell_ratio",
        "first_buys_count",
        "important_trades_count",
        "avg_importance_score",
        "calculated_at",
    ):
        setattr(existing, name, getattr(row, name))
    session.add(existing)
    return "updated"


def aggregate_daily_metrics(*, session: Session, params: HistoricalMetricsParams) -> ProcessorSummary:
    """
    One ``signal_history`` row per date over the lookback window.

    Each source is read once for the whole range (grouped by date) and the per-day rows are
    assembled in memory.
    """
    log = logger.bind(processor=PROCESSOR)
    summary = ProcessorSummary()

    dates = metric_dates(params.as_of.date(), params.lookback_days)
    summary.processed = len(dates)
    if not dates:
        return summary.finish()

    start, end = dates[-1], dates[0]
    clusters = _cluster_days(session, start=start, end=end)
    activity = LedgerReader(session).daily_activity(start=start, end=end)
    first_buys = _first_buy_days(session, start=start, end=end)
    importance = _importance_days(session, start=start, end=end)

    empty_cluster = ClusterDay(count=0, avg_size=0.0, max_size=0, total_value=0.0)
    empty_activity = DailyActivity(buys=0, sells=0, buy_value=0.0, sell_value=0.0)
    empty_importance = ImportanceDay(count=0, avg_score=0.0)

    for batch_start, batch in chunked(dates, params.batch_size):
        counts = {"new": 0, "updated": 0}
        try:
            for day in batch:
                c = clusters.get(day, empty_cluster)
                a = activity.get(day, empty_activity)
                i = importance.get(day, empty_importance)
                outcome = _upsert_history(
                    session,
                    SignalHistory(
                        date=day,
                        cluster_buys_count=c.count,
                        avg_cluster_size=c.avg_size,
                        max_cluster_size=c.max_size,
                        total_cluster_value=c.total_value,
                        total_insider_buys=a.buys,
                        total_insider_sells=a.sells,
                        total_buy_value=a.buy_value,
                        total_sell_value=a.sell_value,
                        buy_sell_ratio=buy_sell_ratio(a.buy_value, a.sell_value, no_sell_ratio=params.no_sell_ratio),
                        first_buys_count=first_buys.get(day, 0),
                        important_trades_count=i.count,
                        avg_importance_score=i.avg_score,
                        calculated_at=params.as_of,
                    ),
                )
                counts[outcome] += 1
            session.commit()
        except Exception:
            session.rollback()
            summary.failed += len(batch)
            log.exception("metrics batch failed start={} size={}", batch_start, len(batch))
            continue

        summary.new += counts["new"]
        summary.updated += counts["updated"]

    summary.finish()
    log.info(
        "daily metrics days={} new={} updated={} failed={}",
        summary.processed,
        summary.new,
        summary.updated,
        summary.failed,
    )
    return summary
