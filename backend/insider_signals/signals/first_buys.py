from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlmodel import Session, select
from sqlmodel import col

from insider_signals.ledger import LedgerReader, LedgerTrade
from insider_signals.models import FirstBuySignal, utcnow
from insider_signals.settings import settings
from insider_signals.signals.lifecycle import (
    ProcessorSummary,
    chunked,
    day_start,
    deactivate_all,
    delete_inactive_before,
)
from insider_signals.signals.scoring import DEFAULT_POLICY, ScoringPolicy, TradeFacts, first_buy_score

PROCESSOR = "first-buys"


@dataclass(frozen=True)
class FirstBuyParams:
    as_of: datetime
    recent_days: int = 30
    lookback_days: int = 365
    cluster_window_days: int = 3
    batch_size: int = 50
    retention_days: int = 90

    @classmethod
    def from_settings(cls, as_of: Optional[datetime] = None) -> "FirstBuyParams":
        return cls(
            as_of=as_of or utcnow(),
            recent_days=settings.first_buy_recent_days,
            lookback_days=settings.first_buy_lookback_days,
            cluster_window_days=settings.trade_cluster_window_days,
            batch_size=settings.batch_size,
            retention_days=settings.first_buy_retention_days,
        )


def is_first_buy(reader: LedgerReader, trade: LedgerTrade, *, lookback_days: int) -> bool:
    """
    True when the person made no open-market purchase of the issuer in
    [trade date - lookback_days, trade date - 1 day].
    """
    prior = reader.count_prior_purchases(
        person_id=trade.person_id,
        issuer_id=trade.issuer_id,
        window_start=trade.transaction_date - timedelta(days=lookback_days),
        window_end=trade.transaction_date - timedelta(days=1),
    )
    return prior == 0


def _upsert_first_buy(
    session: Session,
    trade: LedgerTrade,
    *,
    score: int,
    cluster_size: int,
    params: FirstBuyParams,
) -> str:
    existing = session.exec(
        select(FirstBuySignal).where(FirstBuySignal.transaction_id == trade.transaction_id)
    ).first()
    outcome = "updated"
    if existing is None:
        existing = FirstBuySignal(
            transaction_id=trade.transaction_id,
            person_id=trade.person_id,
            issuer_id=trade.issuer_id,
            lookback_days=params.lookback_days,
            importance_score=score,
            detected_at=params.as_of,
        )
        outcome = "new"

    existing.lookback_days = params.lookback_days
    existing.importance_score = score
    existing.is_part_of_cluster = cluster_size >= 2
    existing.cluster_size = cluster_size
    existing.is_active = True
    session.add(existing)
    return outcome


def cleanup_stale_first_buys(session: Session, *, cutoff: datetime) -> int:
    return delete_inactive_before(session, FirstBuySignal, column=col(FirstBuySignal.detected_at), cutoff=cutoff)


def detect_first_buys(
    *,
    session: Session,
    params: FirstBuyParams,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> ProcessorSummary:
    """
    Flag open-market purchases (filed in the last ``recent_days``) that are the person's first
    purchase of the issuer within ``lookback_days``.
    """
    log = logger.bind(processor=PROCESSOR)
    summary = ProcessorSummary()

    deactivate_all(session, FirstBuySignal)

    reader = LedgerReader(session)
    filed_since = day_start(params.as_of.date() - timedelta(days=params.recent_days))
    purchases = reader.list_completed_purchases(filed_since=filed_since)
    summary.processed = len(purchases)

    window = params.cluster_window_days
    index = None
    if purchases:
        first_day = min(p.transaction_date for p in purchases)
        last_day = max(p.transaction_date for p in purchases)
        index = reader.purchase_index(
            start=first_day - timedelta(days=window),
            end=last_day + timedelta(days=window),
        )

    seen: set[int] = set()
    for start, batch in chunked(purchases, params.batch_size):
        counts = {"new": 0, "updated": 0}
        row_failures = 0
        try:
            for trade in batch:
                if trade.transaction_id in seen:
                    continue
                try:
                    with session.begin_nested():
                        if not is_first_buy(reader, trade, lookback_days=params.lookback_days):
                            continue
                        size = index.cluster_size(trade.issuer_id, trade.transaction_date, window) if index else 0
                        score = first_buy_score(TradeFacts.from_trade(trade, cluster_size=size), policy)
                        outcome = _upsert_first_buy(session, trade, score=score, cluster_size=size, params=params)
                    seen.add(trade.transaction_id)
                    counts[outcome] += 1
                except Exception:
                    row_failures += 1
                    log.exception("first-buy check failed transaction_id={}", trade.transaction_id)
            session.commit()
        except Exception:
            session.rollback()
            summary.failed += len(batch)
            log.exception("first-buy batch failed start={} size={}", start, len(batch))
            continue

        summary.new += counts["new"]
        summary.updated += counts["updated"]
        summary.failed += row_failures

    cutoff = params.as_of - timedelta(days=params.retention_days)
    summary.cleaned_up = cleanup_stale_first_buys(session, cutoff=cutoff)

    summary.finish()
    log.info(
        "first buys checked={} new={} updated={} failed={} cleaned_up={}",
        summary.processed,
        summary.new,
        summary.updated,
        summary.failed,
        summary.cleaned_up,
    )
    return summary
