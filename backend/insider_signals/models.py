from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.utcnow()


# ---------------------------------------------------------------------------
# Ledger (written by the Form 4 ingestion side; read-only here)
# ---------------------------------------------------------------------------


class Issuer(SQLModel, table=True):
    __tablename__ = "issuers"

    id: Optional[int] = Field(default=None, primary_key=True)
    cik: str = Field(index=True)
    name: str
    trading_symbol: Optional[str] = Field(default=None, index=True)
    sector: Optional[str] = None
    industry: Optional[str] = None

    __table_args__ = (UniqueConstraint("cik", name="uq_issuer_cik"),)


class Person(SQLModel, table=True):
    __tablename__ = "persons"

    id: Optional[int] = Field(default=None, primary_key=True)
    cik: str = Field(index=True)
    name: str

    __table_args__ = (UniqueConstraint("cik", name="uq_person_cik"),)


class Filing(SQLModel, table=True):
    __tablename__ = "filings"

    id: Optional[int] = Field(default=None, primary_key=True)
    accession_number: str = Field(index=True)
    issuer_id: int = Field(foreign_key="issuers.id", index=True)
    filed_at: datetime = Field(index=True)
    status: str = Field(default="pending", index=True)  # pending|processing|completed|failed

    __table_args__ = (UniqueConstraint("accession_number", name="uq_filing_accession"),)


class PersonRelationship(SQLModel, table=True):
    """
    Role of a reporting person on one filing (officer/director/10% owner).
    """

    __tablename__ = "person_relationships"

    id: Optional[int] = Field(default=None, primary_key=True)
    filing_id: int = Field(foreign_key="filings.id", index=True)
    person_id: int = Field(foreign_key="persons.id", index=True)

    is_director: bool = False
    is_officer: bool = False
    is_ten_percent_owner: bool = False
    officer_title: Optional[str] = None

    __table_args__ = (UniqueConstraint("filing_id", "person_id", name="uq_person_relationship_filing_person"),)


class InsiderTransaction(SQLModel, table=True):
    """
    One Form 4 transaction row. Immutable from the signal pipeline's point of view.
    """

    __tablename__ = "insider_transactions"

    id: Optional[int] = Field(default=None, primary_key=True)
    filing_id: int = Field(foreign_key="filings.id", index=True)
    transaction_date: date = Field(index=True)

    security_title: str = "Common Stock"
    transaction_code: str = Field(index=True)  # P purchase, S sale, A award, M exercise, G gift, ...
    acquired_disposed_code: str = Field(index=True)  # A|D
    shares_transacted: Optional[float] = None
    price_per_share: Optional[float] = None
    transaction_value: Optional[float] = None
    shares_owned_following: float = 0.0
    direct_or_indirect: str = "D"  # D|I
    is_10b5_1_plan: bool = Field(default=False, index=True)

    __table_args__ = (Index("ix_insider_tx_date_code", "transaction_date", "transaction_code"),)


# ---------------------------------------------------------------------------
# Signal tables (owned by the refresh pipeline)
# ---------------------------------------------------------------------------


class ClusterBuySignal(SQLModel, table=True):
    __tablename__ = "cluster_buy_signals"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    issuer_id: int = Field(foreign_key="issuers.id", index=True)
    transaction_date: date = Field(index=True)

    total_insiders: int
    total_shares: float
    total_value: float

    signal_strength: int = Field(index=True)  # 0..100
    avg_role_priority: float = 0.0
    max_role_priority: int = 0  # 3 CEO, 2 CFO, 1 other officer, 0 none
    has_ceo_buy: bool = False
    has_cfo_buy: bool = False
    has_ten_percent_owner: bool = False

    buy_window_start: date
    buy_window_end: date

    detected_at: datetime = Field(default_factory=utcnow, index=True)
    last_updated: datetime = Field(default_factory=utcnow)
    is_active: bool = Field(default=True, index=True)

    __table_args__ = (
        UniqueConstraint("issuer_id", "transaction_date", name="uq_cluster_signal_issuer_date"),
        Index("ix_cluster_signal_active_strength", "is_active", "signal_strength"),
    )


class ClusterBuyTrade(SQLModel, table=True):
    __tablename__ = "cluster_buy_trades"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    cluster_id: str = Field(foreign_key="cluster_buy_signals.id", index=True)
    transaction_id: int = Field(foreign_key="insider_transactions.id", index=True)
    person_id: int = Field(foreign_key="persons.id", index=True)

    person_name: str
    shares_transacted: float
    price_per_share: Optional[float] = None
    transaction_value: float
    is_officer: bool = False
    is_director: bool = False
    officer_title: Optional[str] = None

    __table_args__ = (UniqueConstraint("cluster_id", "transaction_id", name="uq_cluster_trade_cluster_tx"),)


class ImportantTradeSignal(SQLModel, table=True):
    __tablename__ = "important_trade_signals"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    transaction_id: int = Field(foreign_key="insider_transactions.id", index=True)
    filing_id: int = Field(foreign_key="filings.id", index=True)

    importance_score: int = Field(index=True)  # may be negative for sells
    value_score: int = 0
    direction_score: int = 0
    role_score: int = 0
    ownership_score: int = 0
    cluster_score: int = 0
    timing_score: int = 0

    cluster_size: int = 0
    is_purchase: bool = False
    is_sale: bool = False
    is_10b5_1_plan: bool = False

    detected_at: datetime = Field(default_factory=utcnow, index=True)
    is_active: bool = Field(default=True, index=True)

    __table_args__ = (
        UniqueConstraint("transaction_id", name="uq_important_signal_transaction"),
        Index("ix_important_signal_active_score", "is_active", "importance_score"),
    )


class FirstBuySignal(SQLModel, table=True):
    __tablename__ = "first_buy_signals"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    transaction_id: int = Field(foreign_key="insider_transactions.id", index=True)
    person_id: int = Field(foreign_key="persons.id", index=True)
    issuer_id: int = Field(foreign_key="issuers.id", index=True)

    lookback_days: int
    importance_score: int = Field(index=True)
    is_part_of_cluster: bool = False
    cluster_size: int = 0

    detected_at: datetime = Field(default_factory=utcnow, index=True)
    is_active: bool = Field(default=True, index=True)

    __table_args__ = (UniqueConstraint("transaction_id", name="uq_first_buy_transaction"),)


class SignalHistory(SQLModel, table=True):
    """
    Daily aggregate of signal and raw ledger activity, for trend charts.
    """

    __tablename__ = "signal_history"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    date: dt.date = Field(index=True)

    cluster_buys_count: int = 0
    avg_cluster_size: float = 0.0
    max_cluster_size: int = 0
    total_cluster_value: float = 0.0

    total_insider_buys: int = 0
    total_insider_sells: int = 0
    total_buy_value: float = 0.0
    total_sell_value: float = 0.0
    buy_sell_ratio: float = 0.0

    first_buys_count: int = 0
    important_trades_count: int = 0
    avg_importance_score: float = 0.0

    calculated_at: datetime = Field(default_factory=utcnow)

    __table_args__ = (UniqueConstraint("date", name="uq_signal_history_date"),)


class NotificationRequest(SQLModel, table=True):
    """
    Enqueue side of the notification queue. Delivery workers consume pending rows.
    """

    __tablename__ = "notification_queue"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    notification_type: str = Field(index=True)  # cluster_buy
    cluster_id: Optional[str] = Field(default=None, index=True)
    issuer_id: int = Field(foreign_key="issuers.id", index=True)

    priority: int = Field(default=0, index=True)
    signal_fingerprint: str = Field(index=True)
    status: str = Field(default="pending", index=True)  # pending|sent|failed|cancelled

    created_at: datetime = Field(default_factory=utcnow, index=True)

    __table_args__ = (UniqueConstraint("signal_fingerprint", name="uq_notification_fingerprint"),)
