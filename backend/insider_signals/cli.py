from __future__ import annotations

import json
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional

import typer
from sqlmodel import Session

from insider_signals.db import engine, init_db
from insider_signals.log_config import configure_logging
from insider_signals.notifications.queue import DatabaseNotificationQueue
from insider_signals.signals.cluster_buys import ClusterBuyParams, detect_cluster_buys
from insider_signals.signals.first_buys import FirstBuyParams, detect_first_buys
from insider_signals.signals.historical_metrics import HistoricalMetricsParams, aggregate_daily_metrics
from insider_signals.signals.important_trades import ImportantTradeParams, detect_important_trades
from insider_signals.signals.refresh import run_signal_refresh


app = typer.Typer(add_completion=False)


@app.callback()
def _bootstrap() -> None:
    configure_logging()
    init_db()


def _parse_as_of(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter("as-of must be YYYY-MM-DD or an ISO datetime")


def _echo(payload: dict[str, Any]) -> None:
    typer.echo(json.dumps(payload, indent=2, sort_keys=True, default=str))


@app.command("init-db")
def init_db_cmd() -> None:
    init_db()
    typer.echo("DB initialized.")


@app.command("refresh")
def refresh(
    processor: str = typer.Option("all", help="all|cluster-buys|important-trades|first-buys|historical-metrics (comma list ok)"),
    as_of: str = typer.Option("", help="Reference time (YYYY-MM-DD or ISO datetime); default now (UTC)"),
    notify: bool = typer.Option(True, help="Enqueue cluster-buy notifications"),
) -> None:
    try:
        run = run_signal_refresh(
            lambda: Session(engine),
            processors=processor,
            as_of=_parse_as_of(as_of),
            notify=notify,
        )
    except ValueError as e:
        raise typer.BadParameter(str(e))
    _echo(run.as_dict())
    if run.all_failed:
        raise typer.Exit(code=1)


@app.command("detect-cluster-buys")
def detect_cluster_buys_cmd(
    as_of: str = typer.Option("", help="Reference time (YYYY-MM-DD or ISO datetime)"),
    lookback_days: Optional[int] = typer.Option(None, help="Override lookback window"),
    window_days: Optional[int] = typer.Option(None, help="Override +/- membership window"),
    notify: bool = typer.Option(True, help="Enqueue cluster-buy notifications"),
) -> None:
    params = ClusterBuyParams.from_settings(_parse_as_of(as_of))
    overrides = {k: v for k, v in {"lookback_days": lookback_days, "window_days": window_days}.items() if v is not None}
    if overrides:
        params = replace(params, **overrides)
    with Session(engine) as session:
        notifier = DatabaseNotificationQueue(session) if notify else None
        summary = detect_cluster_buys(session=session, params=params, notifier=notifier)
    _echo(summary.as_dict())


@app.command("detect-important-trades")
def detect_important_trades_cmd(
    as_of: str = typer.Option("", help="Reference time (YYYY-MM-DD or ISO datetime)"),
    lookback_days: Optional[int] = typer.Option(None, help="Override lookback window"),
    min_score: Optional[int] = typer.Option(None, help="Override minimum importance score"),
) -> None:
    params = ImportantTradeParams.from_settings(_parse_as_of(as_of))
    overrides = {k: v for k, v in {"lookback_days": lookback_days, "min_score": min_score}.items() if v is not None}
    if overrides:
        params = replace(params, **overrides)
    with Session(engine) as session:
        summary = detect_important_trades(session=session, params=params)
    _echo(summary.as_dict())


@app.command("detect-first-buys")
def detect_first_buys_cmd(
    as_of: str = typer.Option("", help="Reference time (YYYY-MM-DD or ISO datetime)"),
    recent_days: Optional[int] = typer.Option(None, help="Override filed-within window"),
    lookback_days: Optional[int] = typer.Option(None, help="Override prior-purchase lookback"),
) -> None:
    params = FirstBuyParams.from_settings(_parse_as_of(as_of))
    overrides = {k: v for k, v in {"recent_days": recent_days, "lookback_days": lookback_days}.items() if v is not None}
    if overrides:
        params = replace(params, **overrides)
    with Session(engine) as session:
        summary = detect_first_buys(session=session, params=params)
    _echo(summary.as_dict())


@app.command("aggregate-metrics")
def aggregate_metrics_cmd(
    as_of: str = typer.Option("", help="Reference time (YYYY-MM-DD or ISO datetime)"),
    lookback_days: Optional[int] = typer.Option(None, help="Override number of days aggregated"),
) -> None:
    params = HistoricalMetricsParams.from_settings(_parse_as_of(as_of))
    if lookback_days is not None:
        params = replace(params, lookback_days=lookback_days)
    with Session(engine) as session:
        summary = aggregate_daily_metrics(session=session, params=params)
    _echo(summary.as_dict())


if __name__ == "__main__":
    app()
