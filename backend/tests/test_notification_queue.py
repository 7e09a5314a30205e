from datetime import date

import pytest
from sqlmodel import select

from insider_signals.models import ClusterBuySignal, NotificationRequest
from insider_signals.notifications.queue import DatabaseNotificationQueue, priority_for_strength, signal_fingerprint


def _cluster(session, *, strength: int) -> ClusterBuySignal:
    sig = ClusterBuySignal(
        issuer_id=1,
        transaction_date=date(2026, 3, 9),
        total_insiders=3,
        total_shares=1.0,
        total_value=9_000_000,
        signal_strength=strength,
        buy_window_start=date(2026, 3, 6),
        buy_window_end=date(2026, 3, 12),
    )
    session.add(sig)
    session.commit()
    session.refresh(sig)
    return sig


@pytest.mark.parametrize("strength,priority", [(95, 10), (90, 10), (85, 8), (70, 6), (60, 4), (59, 2), (0, 2)])
def test_priority_for_strength(strength, priority) -> None:
    assert priority_for_strength(strength) == priority


def test_fingerprint_is_stable_and_short() -> None:
    fp = signal_fingerprint("cluster_buy", "abc", "2026-03-09")
    assert fp == signal_fingerprint("cluster_buy", "abc", "2026-03-09")
    assert fp != signal_fingerprint("cluster_buy", "abc", "2026-03-10")
    assert len(fp) == 32


def test_enqueue_is_deduplicated(session) -> None:
    sig = _cluster(session, strength=82)
    queue = DatabaseNotificationQueue(session)

    assert queue.enqueue_cluster_notification(sig.id) is True
    assert queue.enqueue_cluster_notification(sig.id) is False

    row = session.exec(select(NotificationRequest)).one()
    assert row.notification_type == "cluster_buy"
    assert row.cluster_id == sig.id
    assert row.priority == 8
    assert row.status == "pending"
    assert row.signal_fingerprint == signal_fingerprint("cluster_buy", sig.id, "2026-03-09")


def test_enqueue_unknown_cluster_returns_false(session) -> None:
    assert DatabaseNotificationQueue(session).enqueue_cluster_notification("missing") is False
    assert session.exec(select(NotificationRequest)).all() == []
