import json
from datetime import datetime

import pytest
from typer.testing import CliRunner

from insider_signals import cli
from insider_signals.signals.refresh import RefreshRunSummary

runner = CliRunner()


@pytest.fixture(autouse=True)
def _no_bootstrap(monkeypatch):
    monkeypatch.setattr(cli, "init_db", lambda: None)
    monkeypatch.setattr(cli, "configure_logging", lambda: None)


def test_refresh_prints_summary(monkeypatch) -> None:
    calls = {}

    def _fake(session_factory, **kw):
        calls.update(kw)
        return RefreshRunSummary(started_at=datetime(2026, 3, 10), results={"cluster-buys": {"new": 1}})

    monkeypatch.setattr(cli, "run_signal_refresh", _fake)
    result = runner.invoke(cli.app, ["refresh", "--processor", "cluster-buys", "--as-of", "2026-03-10"])

    assert result.exit_code == 0
    assert json.loads(result.stdout)["results"] == {"cluster-buys": {"new": 1}}
    assert calls["processors"] == "cluster-buys"
    assert calls["as_of"] == datetime(2026, 3, 10)


def test_refresh_exits_nonzero_when_all_processors_fail(monkeypatch) -> None:
    monkeypatch.setattr(
        cli,
        "run_signal_refresh",
        lambda session_factory, **kw: RefreshRunSummary(started_at=datetime(2026, 3, 10), errors={"cluster-buys": "x"}),
    )
    result = runner.invoke(cli.app, ["refresh"])
    assert result.exit_code == 1
