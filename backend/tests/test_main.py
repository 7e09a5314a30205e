from datetime import date

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, select

from insider_signals.main import app, get_session_factory
from insider_signals.models import ClusterBuySignal


@pytest.fixture()
def client(engine):
    app.dependency_overrides[get_session_factory] = lambda: (lambda: Session(engine))
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_health(client) -> None:
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_process_runs_selected_processor(client, engine, ledger) -> None:
    acme = ledger.issuer()
    for name in ("A", "B"):
        ledger.trade(issuer=acme, person=ledger.person(name), day=date(2026, 3, 9))

    r = client.post("/process", json={"processor": "cluster-buys", "as_of": "2026-03-10T12:00:00"})
    assert r.status_code == 200
    body = r.json()
    assert body["ok"] is True
    assert list(body["results"]) == ["cluster-buys"]
    assert body["results"]["cluster-buys"]["new"] == 1

    with Session(engine) as s:
        assert len(s.exec(select(ClusterBuySignal)).all()) == 1


def test_process_rejects_unknown_processor(client) -> None:
    r = client.post("/process", json={"processor": "everything"})
    assert r.status_code == 400
