from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable, Optional

from sqlalchemy import case, func
from sqlmodel import Session, select
from sqlmodel import col

from insider_signals.models import Filing, InsiderTransaction, Issuer, Person, PersonRelationship

COMPLETED = "completed"


@dataclass(frozen=True)
class LedgerTrade:
    """
    A transaction row attributed to one reporting person of its filing.

    A filing with two reporting owners yields the same transaction twice, once per owner.
    """

    transaction_id: int
    filing_id: int
    issuer_id: int
    person_id: int
    person_name: str
    transaction_date: date
    filed_at: Optional[datetime]

    transaction_code: str
    acquired_disposed_code: str
    shares_transacted: float
    price_per_share: Optional[float]
    transaction_value: float
    shares_owned_following: float
    direct_or_indirect: str
    is_10b5_1_plan: bool

    is_officer: bool
    is_director: bool
    is_ten_percent_owner: bool
    officer_title: Optional[str]

    @property
    def is_purchase(self) -> bool:
        return self.acquired_disposed_code == "A" and self.transaction_code == "P"

    @property
    def is_sale(self) -> bool:
        return self.acquired_disposed_code == "D" and self.transaction_code == "S"

    @property
    def pct_of_holdings(self) -> Optional[float]:
        # Holdings before a disposal = holdings after + shares sold.
        held = self.shares_owned_following
        if self.acquired_disposed_code == "D":
            held += self.shares_transacted
        if not held:
            return None
        return self.shares_transacted / held


@dataclass(frozen=True)
class DailyActivity:
    buys: int
    sells: int
    buy_value: float
    sell_value: float


class PurchaseIndex:
    """
    In-memory index of open-market purchases, used to answer "how many distinct insiders bought
    this issuer within +/- N days" without one query per trade.
    """

    def __init__(self, rows: Iterable[tuple[int, date, int]]):
        self._by_issuer: dict[int, list[tuple[date, int]]] = defaultdict(list)
        for issuer_id, day, person_id in rows:
            self._by_issuer[issuer_id].append((day, person_id))

    def cluster_size(self, issuer_id: int, on: date, window_days: int) -> int:
        people = {
            person_id
            for day, person_id in self._by_issuer.get(issuer_id, ())
            if abs((day - on).days) <= window_days
        }
        return len(people)


def _trade_select():
    return (
        select(InsiderTransaction, Filing, PersonRelationship, Person)
        .select_from(InsiderTransaction)
        .join(Filing, col(Filing.id) == col(InsiderTransaction.filing_id))
        .join(PersonRelationship, col(PersonRelationship.filing_id) == col(Filing.id))
        .join(Person, col(Person.id) == col(PersonRelationship.person_id))
        .where(col(Filing.status) == COMPLETED)
    )


def _purchase_filters() -> tuple:
    return (
        col(InsiderTransaction.acquired_disposed_code) == "A",
        col(InsiderTransaction.transaction_code) == "P",
        col(InsiderTransaction.price_per_share) > 0,
    )


def _to_trade(tx: InsiderTransaction, filing: Filing, rel: PersonRelationship, person: Person) -> LedgerTrade:
    shares = float(tx.shares_transacted or 0.0)
    value = tx.transaction_value
    if value is None:
        value = shares * float(tx.price_per_share or 0.0)
    return LedgerTrade(
        transaction_id=int(tx.id),
        filing_id=int(filing.id),
        issuer_id=int(filing.issuer_id),
        person_id=int(person.id),
        person_name=person.name,
        transaction_date=tx.transaction_date,
        filed_at=filing.filed_at,
        transaction_code=(tx.transaction_code or "").upper(),
        acquired_disposed_code=(tx.acquired_disposed_code or "").upper(),
        shares_transacted=shares,
        price_per_share=tx.price_per_share,
        transaction_value=float(value),
        shares_owned_following=float(tx.shares_owned_following or 0.0),
        direct_or_indirect=(tx.direct_or_indirect or "D").upper(),
        is_10b5_1_plan=bool(tx.is_10b5_1_plan),
        is_officer=bool(rel.is_officer),
        is_director=bool(rel.is_director),
        is_ten_percent_owner=bool(rel.is_ten_percent_owner),
        officer_title=rel.officer_title,
    )


class LedgerReader:
    """
    Read-only access to completed filings, their transactions and reporting-person roles.
    """

    def __init__(self, session: Session):
        self.session = session

    def list_completed_purchases(
        self,
        *,
        since: Optional[date] = None,
        until: Optional[date] = None,
        issuer_ids: Optional[Iterable[int]] = None,
        filed_since: Optional[datetime] = None,
        require_shares: bool = False,
    ) -> list[LedgerTrade]:
        stmt = _trade_select().where(*_purchase_filters())
        if since is not None:
            stmt = stmt.where(col(InsiderTransaction.transaction_date) >= since)
        if until is not None:
            stmt = stmt.where(col(InsiderTransaction.transaction_date) <= until)
        if issuer_ids is not None:
            stmt = stmt.where(col(Filing.issuer_id).in_(list(issuer_ids)))
        if filed_since is not None:
            stmt = stmt.where(col(Filing.filed_at) >= filed_since)
        if require_shares:
            stmt = stmt.where(col(InsiderTransaction.shares_transacted) > 0)
        stmt = stmt.order_by(col(InsiderTransaction.transaction_date).desc(), col(InsiderTransaction.id))
        return [_to_trade(*row) for row in self.session.exec(stmt).all()]

    def list_priced_trades(self, *, since: date, exclude_codes: Iterable[str] = ("A",)) -> list[LedgerTrade]:
        stmt = _trade_select().where(
            col(InsiderTransaction.price_per_share) > 0,
            col(InsiderTransaction.transaction_date) >= since,
        )
        excluded = [c.upper() for c in exclude_codes]
        if excluded:
            stmt = stmt.where(col(InsiderTransaction.transaction_code).not_in(excluded))
        stmt = stmt.order_by(col(InsiderTransaction.transaction_date).desc(), col(InsiderTransaction.id))
        return [_to_trade(*row) for row in self.session.exec(stmt).all()]

    def list_person_roles(self, filing_id: int) -> list[PersonRelationship]:
        return list(
            self.session.exec(
                select(PersonRelationship).where(col(PersonRelationship.filing_id) == filing_id)
            ).all()
        )

    def count_prior_purchases(
        self,
        *,
        person_id: int,
        issuer_id: int,
        window_start: date,
        window_end: date,
    ) -> int:
        """Open-market purchases by person in issuer with window_start <= date <= window_end."""
        stmt = (
            select(func.count())
            .select_from(InsiderTransaction)
            .join(Filing, col(Filing.id) == col(InsiderTransaction.filing_id))
            .join(PersonRelationship, col(PersonRelationship.filing_id) == col(Filing.id))
            .where(
                col(Filing.status) == COMPLETED,
                col(Filing.issuer_id) == issuer_id,
                col(PersonRelationship.person_id) == person_id,
                *_purchase_filters(),
                col(InsiderTransaction.transaction_date) >= window_start,
                col(InsiderTransaction.transaction_date) <= window_end,
            )
        )
        return int(self.session.exec(stmt).one() or 0)

    def purchase_index(self, *, start: date, end: date) -> PurchaseIndex:
        stmt = (
            select(Filing.issuer_id, InsiderTransaction.transaction_date, PersonRelationship.person_id)
            .select_from(InsiderTransaction)
            .join(Filing, col(Filing.id) == col(InsiderTransaction.filing_id))
            .join(PersonRelationship, col(PersonRelationship.filing_id) == col(Filing.id))
            .where(
                col(Filing.status) == COMPLETED,
                *_purchase_filters(),
                col(InsiderTransaction.transaction_date) >= start,
                col(InsiderTransaction.transaction_date) <= end,
            )
        )
        return PurchaseIndex(self.session.exec(stmt).all())

    def get_issuer(self, issuer_id: int) -> Optional[Issuer]:
        return self.session.get(Issuer, issuer_id)

    def daily_activity(self, *, start: date, end: date) -> dict[date, DailyActivity]:
        """Raw open-market buy/sell counts and values per transaction date (priced rows only)."""
        is_buy = (col(InsiderTransaction.acquired_disposed_code) == "A") & (
            col(InsiderTransaction.transaction_code) == "P"
        )
        is_sell = (col(InsiderTransaction.acquired_disposed_code) == "D") & (
            col(InsiderTransaction.transaction_code) == "S"
        )
        value = func.coalesce(col(InsiderTransaction.transaction_value), 0.0)
        stmt = (
            select(
                InsiderTransaction.transaction_date,
                func.sum(case((is_buy, 1), else_=0)),
                func.sum(case((is_sell, 1), else_=0)),
                func.sum(case((is_buy, value), else_=0.0)),
                func.sum(case((is_sell, value), else_=0.0)),
            )
            .select_from(InsiderTransaction)
            .join(Filing, col(Filing.id) == col(InsiderTransaction.filing_id))
            .where(
                col(Filing.status) == COMPLETED,
                col(InsiderTransaction.price_per_share) > 0,
                col(InsiderTransaction.transaction_date) >= start,
                col(InsiderTransaction.transaction_date) <= end,
            )
            .group_by(col(InsiderTransaction.transaction_date))
        )
        out: dict[date, DailyActivity] = {}
        for day, buys, sells, buy_value, sell_value in self.session.exec(stmt).all():
            out[day] = DailyActivity(
                buys=int(buys or 0),
                sells=int(sells or 0),
                buy_value=float(buy_value or 0.0),
                sell_value=float(sell_value or 0.0),
            )
        return out
