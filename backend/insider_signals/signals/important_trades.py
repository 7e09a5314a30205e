from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from loguru import logger
from sqlmodel import Session, select
from sqlmodel import col

from insider_signals.ledger import LedgerReader, LedgerTrade
from insider_signals.models import ImportantTradeSignal, utcnow
from insider_signals.settings import settings
from insider_signals.signals.lifecycle import ProcessorSummary, chunked, deactivate_all, delete_inactive_before
from insider_signals.signals.scoring import DEFAULT_POLICY, ScoringPolicy, TradeFacts, TradeScore, score_trade

PROCESSOR = "important-trades"


@dataclass(frozen=True)
class ImportantTradeParams:
    as_of: datetime
    lookback_days: int = 7
    min_score: int = 30
    cluster_window_days: int = 3
    batch_size: int = 50
    retention_days: int = 30

    @classmethod
    def from_settings(cls, as_of: Optional[datetime] = None) -> "ImportantTradeParams":
        return cls(
            as_of=as_of or utcnow(),
            lookback_days=settings.important_lookback_days,
            min_score=settings.important_min_score,
            cluster_window_days=settings.trade_cluster_window_days,
            batch_size=settings.batch_size,
            retention_days=settings.important_retention_days,
        )


@dataclass(frozen=True)
class ScoredTrade:
    trade: LedgerTrade
    score: TradeScore
    cluster_size: int


def score_recent_trades(
    trades: list[LedgerTrade],
    *,
    cluster_size_for,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> list[ScoredTrade]:
    """
    Score every trade; a transaction reported by several persons keeps its highest score.
    Returned in transaction id order.
    """
    best: dict[int, ScoredTrade] = {}
    for t in trades:
        size = cluster_size_for(t)
        score = score_trade(TradeFacts.from_trade(t, cluster_size=size), policy)
        prev = best.get(t.transaction_id)
        if prev is None or score.total > prev.score.total:
            best[t.transaction_id] = ScoredTrade(trade=t, score=score, cluster_size=size)
    return [best[k] for k in sorted(best)]


def _upsert_importance(session: Session, st: ScoredTrade, *, now: datetime) -> str:
    t, s = st.trade, st.score
    existing = session.exec(
        select(ImportantTradeSignal).where(ImportantTradeSignal.transaction_id == t.transaction_id)
    ).first()
    outcome = "updated"
    if existing is None:
        existing = ImportantTradeSignal(
            transaction_id=t.transaction_id,
            filing_id=t.filing_id,
            importance_score=s.total,
            detected_at=now,
        )
        outcome = "new"

    existing.importance_score = s.total
    existing.value_score = s.value
    existing.direction_score = s.direction
    existing.role_score = s.role
    existing.ownership_score = s.ownership
    existing.cluster_score = s.cluster
    existing.timing_score = s.timing
    existing.cluster_size = st.cluster_size
    existing.is_purchase = t.is_purchase
    existing.is_sale = t.is_sale
    existing.is_10b5_1_plan = t.is_10b5_1_plan
    existing.is_active = True
    session.add(existing)
    return outcome


def cleanup_stale_important_trades(session: Session, *, cutoff: datetime) -> int:
    return delete_inactive_before(
        session, ImportantTradeSignal, column=col(ImportantTradeSignal.detected_at), cutoff=cutoff
    )


def detect_important_trades(
    *,
    session: Session,
    params: ImportantTradeParams,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ProcessorSummary:
    log = logger.bind(processor=PROCESSOR)
    summary = ProcessorSummary()

    deactivate_all(session, ImportantTradeSignal)

    reader = LedgerReader(session)
    as_of_day: date = params.as_of.date()
    since = as_of_day - timedelta(days=params.lookback_days)
    window = params.cluster_window_days
    trades = [t for t in reader.list_priced_trades(since=since) if t.transaction_date <= as_of_day]
    index = reader.purchase_index(start=since - timedelta(days=window), end=as_of_day + timedelta(days=window))

    scored = score_recent_trades(
        trades,
        cluster_size_for=lambda t: index.cluster_size(t.issuer_id, t.transaction_date, window),
        policy=policy,
    )
    summary.processed = len(scored)
    qualifying = [st for st in scored if st.score.total >= params.min_score]

    for start, batch in chunked(qualifying, params.batch_size):
        counts = {"new": 0, "updated": 0}
        row_failures = 0
        try:
            for st in batch:
                try:
                    with session.begin_nested():
                        outcome = _upsert_importance(session, st, now=params.as_of)
                    counts[outcome] += 1
                except Exception:
                    row_failures += 1
                    log.exception("importance upsert failed transaction_id={}", st.trade.transaction_id)
            session.commit()
        except Exception:
            session.rollback()
            summary.failed += len(batch)
            log.exception("importance batch failed start={} size={}", start, len(batch))
            continue

        summary.new += counts["new"]
        summary.updated += counts["updated"]
        summary.failed += row_failures

    cutoff = params.as_of - timedelta(days=params.retention_days)
    summary.cleaned_up = cleanup_stale_important_trades(session, cutoff=cutoff)

    summary.finish()
    log.info(
        "important trades scored={} stored_new={} stored_updated={} failed={} cleaned_up={}",
        summary.processed,
        summary.new,
        summary.updated,
        summary.failed,
        summary.cleaned_up,
    )
    return summary
