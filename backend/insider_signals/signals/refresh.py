"""
Refresh orchestrator: runs the detectors, then the daily aggregator.

Every processor gets its own session. An exception in one processor is recorded as a hard
failure for that processor only; the remaining processors still run.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Any, Callable, Iterable, Optional, Union

from loguru import logger
from sqlmodel import Session

from insider_signals.models import utcnow
from insider_signals.notifications.queue import DatabaseNotificationQueue
from insider_signals.signals.cluster_buys import ClusterBuyParams, detect_cluster_buys
from insider_signals.signals.first_buys import FirstBuyParams, detect_first_buys
from insider_signals.signals.historical_metrics import HistoricalMetricsParams, aggregate_daily_metrics
from insider_signals.signals.important_trades import ImportantTradeParams, detect_important_trades
from insider_signals.signals.lifecycle import ProcessorSummary

CLUSTER_BUYS = "cluster-buys"
IMPORTANT_TRADES = "important-trades"
FIRST_BUYS = "first-buys"
HISTORICAL_METRICS = "historical-metrics"

# Aggregator last: it reads the tables the detectors write.
PROCESSOR_ORDER = (CLUSTER_BUYS, IMPORTANT_TRADES, FIRST_BUYS, HISTORICAL_METRICS)

SessionFactory = Callable[[], Session]


@dataclass
class RefreshRunSummary:
    started_at: datetime
    duration_ms: int = 0
    results: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def all_failed(self) -> bool:
        return bool(self.errors) and not self.results

    def as_dict(self) -> dict[str, Any]:
        return {
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.duration_ms,
            "ok": self.ok,
            "all_failed": self.all_failed,
            "results": self.results,
            "errors": self.errors,
        }


def select_processors(selection: Union[str, Iterable[str]] = "all") -> list[str]:
    if isinstance(selection, str):
        names = [s.strip().lower() for s in selection.split(",") if s.strip()]
    else:
        names = [s.strip().lower() for s in selection if s and s.strip()]
    if not names or "all" in names:
        return list(PROCESSOR_ORDER)
    unknown = sorted(set(names) - set(PROCESSOR_ORDER))
    if unknown:
        raise ValueError(f"unknown processor(s): {', '.join(unknown)} (expected all|{'|'.join(PROCESSOR_ORDER)})")
    return [p for p in PROCESSOR_ORDER if p in names]


def run_processor(name: str, session: Session, *, as_of: datetime, notify: bool = True) -> ProcessorSummary:
    if name == CLUSTER_BUYS:
        notifier = DatabaseNotificationQueue(session) if notify else None
        return detect_cluster_buys(session=session, params=ClusterBuyParams.from_settings(as_of), notifier=notifier)
    if name == IMPORTANT_TRADES:
        return detect_important_trades(session=session, params=ImportantTradeParams.from_settings(as_of))
    if name == FIRST_BUYS:
        return detect_first_buys(session=session, params=FirstBuyParams.from_settings(as_of))
    if name == HISTORICAL_METRICS:
        return aggregate_daily_metrics(session=session, params=HistoricalMetricsParams.from_settings(as_of))
    raise ValueError(f"unknown processor: {name}")


def run_signal_refresh(
    session_factory: SessionFactory,
    *,
    processors: Union[str, Iterable[str]] = "all",
    as_of: Optional[datetime] = None,
    notify: bool = True,
) -> RefreshRunSummary:
    names = select_processors(processors)
    as_of = as_of or utcnow()
    run = RefreshRunSummary(started_at=utcnow())
    t0 = perf_counter()
    log = logger.bind(processor="refresh")
    log.info("signal refresh started processors={} as_of={}", ",".join(names), as_of.isoformat())

    for name in names:
        try:
            with session_factory() as session:
                summary = run_processor(name, session, as_of=as_of, notify=notify)
            run.results[name] = summary.as_dict()
        except Exception as e:
            run.errors[name] = str(e) or e.__class__.__name__
            log.exception("processor {} failed", name)

    run.duration_ms = int((perf_counter() - t0) * 1000)
    if run.all_failed:
        log.error("signal refresh: all processors failed in {}ms", run.duration_ms)
    elif run.errors:
        log.warning("signal refresh finished with errors={} in {}ms", sorted(run.errors), run.duration_ms)
    else:
        log.info("signal refresh finished in {}ms", run.duration_ms)
    return run
