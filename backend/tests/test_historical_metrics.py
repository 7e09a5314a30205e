from datetime import date, datetime, timedelta

from sqlmodel import select

from insider_signals.models import ClusterBuySignal, FirstBuySignal, ImportantTradeSignal, SignalHistory
from insider_signals.signals.historical_metrics import (
    HistoricalMetricsParams,
    aggregate_daily_metrics,
    buy_sell_ratio,
    metric_dates,
)

AS_OF = datetime(2026, 3, 10, 12, 0)
D0 = date(2026, 3, 9)


def _params(**kw) -> HistoricalMetricsParams:
    return HistoricalMetricsParams(as_of=AS_OF, **kw)


def _cluster(issuer_id: int, day: date, insiders: int, value: float, active: bool = True) -> ClusterBuySignal:
    return ClusterBuySignal(
        issuer_id=issuer_id,
        transaction_date=day,
        total_insiders=insiders,
        total_shares=1.0,
        total_value=value,
        signal_strength=50,
        buy_window_start=day,
        buy_window_end=day,
        is_active=active,
    )


def test_buy_sell_ratio() -> None:
    assert buy_sell_ratio(30_000.0, 20_000.0) == 1.5
    assert buy_sell_ratio(1_000_000.0, 10_000.0) == 100.0
    assert buy_sell_ratio(40_000.0, 0.0) == 999.0
    assert buy_sell_ratio(40_000.0, 0.0, no_sell_ratio=-1.0) == -1.0
    assert buy_sell_ratio(0.0, 0.0) == 0.0
    assert buy_sell_ratio(0.0, 5_000.0) == 0.0


def test_metric_dates_newest_first() -> None:
    out = metric_dates(D0, 3)
    assert out == [D0, D0 - timedelta(days=1), D0 - timedelta(days=2)]
    assert metric_dates(D0, 0) == []


def test_one_row_per_day_and_rerun_updates(session) -> None:
    summary = aggregate_daily_metrics(session=session, params=_params(lookback_days=10))
    assert summary.processed == 10
    assert summary.new == 10

    again = aggregate_daily_metrics(session=session, params=_params(lookback_days=10))
    assert again.new == 0
    assert again.updated == 10
    assert len(session.exec(select(SignalHistory)).all()) == 10


def test_aggregates_ledger_and_signal_tables(session, ledger) -> None:
    acme = ledger.issuer()
    a, b, c = ledger.person("A"), ledger.person("B"), ledger.person("C")
    t1 = ledger.trade(issuer=acme, person=a, day=D0, shares=1_000, price=10.0)
    t2 = ledger.trade(issuer=acme, person=b, day=D0, shares=2_000, price=10.0)
    ledger.trade(issuer=acme, person=c, day=D0, code="S", acquired_disposed="D", shares=500, price=10.0)
    ledger.trade(issuer=acme, person=c, day=D0, code="M", shares=500, price=0.0)
    ledger.trade(issuer=acme, person=a, day=D0 - timedelta(days=1), shares=100, price=10.0)

    session.add(_cluster(acme.id, D0, insiders=2, value=30_000))
    session.add(_cluster(acme.id + 1, D0, insiders=4, value=70_000))
    session.add(_cluster(acme.id + 2, D0, insiders=9, value=1.0, active=False))
    session.add(FirstBuySignal(transaction_id=t1.id, person_id=a.id, issuer_id=acme.id, lookback_days=365, importance_score=90))
    session.add(ImportantTradeSignal(transaction_id=t1.id, filing_id=t1.filing_id, importance_score=40))
    session.add(ImportantTradeSignal(transaction_id=t2.id, filing_id=t2.filing_id, importance_score=60))
    session.commit()

    aggregate_daily_metrics(session=session, params=_params(lookback_days=5))

    day = session.exec(select(SignalHistory).where(SignalHistory.date == D0)).one()
    assert day.cluster_buys_count == 2
    assert day.avg_cluster_size == 3.0
    assert day.max_cluster_size == 4
    assert day.total_cluster_value == 100_000
    assert (day.total_insider_buys, day.total_insider_sells) == (2, 1)
    assert (day.total_buy_value, day.total_sell_value) == (30_000, 5_000)
    assert day.buy_sell_ratio == 6.0
    assert day.first_buys_count == 1
    assert day.important_trades_count == 2
    assert day.avg_importance_score == 50.0

    prev = session.exec(select(SignalHistory).where(SignalHistory.date == D0 - timedelta(days=1))).one()
    assert (prev.total_insider_buys, prev.total_insider_sells) == (1, 0)
    assert prev.buy_sell_ratio == 999.0
    assert prev.cluster_buys_count == 0


def test_ratio_uses_dollar_values_not_trade_counts(session, ledger) -> None:
    acme = ledger.issuer()
    buyer, seller = ledger.person("Buyer"), ledger.person("Seller")
    ledger.trade(issuer=acme, person=buyer, day=D0, shares=100_000, price=10.0)
    ledger.trade(issuer=acme, person=seller, day=D0, code="S", acquired_disposed="D", shares=1_000, price=10.0)

    aggregate_daily_metrics(session=session, params=_params(lookback_days=1))

    day = session.exec(select(SignalHistory).where(SignalHistory.date == D0)).one()
    assert (day.total_insider_buys, day.total_insider_sells) == (1, 1)
    assert (day.total_buy_value, day.total_sell_value) == (1_000_000, 10_000)
    assert day.buy_sell_ratio == 100.0
