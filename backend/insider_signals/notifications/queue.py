from __future__ import annotations

import hashlib
from typing import Protocol

from loguru import logger
from sqlmodel import Session, select

from insider_signals.models import ClusterBuySignal, NotificationRequest

NOTIFICATION_TYPE_CLUSTER_BUY = "cluster_buy"


class ClusterNotifier(Protocol):
    def enqueue_cluster_notification(self, cluster_id: str) -> bool: ...


def signal_fingerprint(notification_type: str, signal_id: str, signal_date: str) -> str:
    return hashlib.sha256(f"{notification_type}:{signal_id}:{signal_date}".encode("utf-8")).hexdigest()[:32]


def priority_for_strength(strength: int) -> int:
    if strength >= 90:
        return 10
    if strength >= 80:
        return 8
    if strength >= 70:
        return 6
    if strength >= 60:
        return 4
    return 2


class DatabaseNotificationQueue:
    """
    Enqueue side of the notification queue: one pending ``notification_queue`` row per
    cluster signal, deduplicated by fingerprint. Delivery happens elsewhere.
    """

    def __init__(self, session: Session):
        self.session = session

    def enqueue_cluster_notification(self, cluster_id: str) -> bool:
        log = logger.bind(processor="notifications")
        try:
            cluster = self.session.get(ClusterBuySignal, cluster_id)
            if cluster is None:
                log.warning("cluster not found cluster_id={}", cluster_id)
                return False

            fp = signal_fingerprint(NOTIFICATION_TYPE_CLUSTER_BUY, cluster.id, cluster.transaction_date.isoformat())
            existing = self.session.exec(
                select(NotificationRequest).where(NotificationRequest.signal_fingerprint == fp)
            ).first()
            if existing is not None:
                return False

            self.session.add(
                NotificationRequest(
                    notification_type=NOTIFICATION_TYPE_CLUSTER_BUY,
                    cluster_id=cluster.id,
                    issuer_id=cluster.issuer_id,
                    priority=priority_for_strength(cluster.signal_strength),
                    signal_fingerprint=fp,
                    status="pending",
                )
            )
            self.session.commit()
            return True
        except Exception as e:
            self.session.rollback()
            log.warning("enqueue failed cluster_id={}: {}", cluster_id, e)
            return False
