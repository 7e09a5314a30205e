from datetime import date, datetime, time
from itertools import count
from typing import Optional

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from insider_signals.models import Filing, InsiderTransaction, Issuer, Person, PersonRelationship


class LedgerBuilder:
    """Writes ledger rows (issuer, person, filing, role, transaction) for processor tests."""

    def __init__(self, session: Session):
        self.session = session
        self._seq = count(1)

    def issuer(self, name: str = "Acme Corp", symbol: str = "ACME") -> Issuer:
        n = next(self._seq)
        row = Issuer(cik=f"{n:010d}", name=name, trading_symbol=symbol)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def person(self, name: str) -> Person:
        n = next(self._seq)
        row = Person(cik=f"9{n:09d}", name=name)
        self.session.add(row)
        self.session.commit()
        self.session.refresh(row)
        return row

    def trade(
        self,
        *,
        issuer: Issuer,
        person: Person,
        day: date,
        shares: float = 1_000,
        price: Optional[float] = 10.0,
        code: str = "P",
        acquired_disposed: str = "A",
        owned_following: float = 10_000,
        direct_or_indirect: str = "D",
        is_10b5_1_plan: bool = False,
        is_officer: bool = False,
        officer_title: Optional[str] = None,
        is_director: bool = False,
        is_ten_percent_owner: bool = False,
        filed_at: Optional[datetime] = None,
        status: str = "completed",
    ) -> InsiderTransaction:
        n = next(self._seq)
        filing = Filing(
            accession_number=f"0000000000-26-{n:06d}",
            issuer_id=issuer.id,
            filed_at=filed_at or datetime.combine(day, time(18, 0)),
            status=status,
        )
        self.session.add(filing)
        self.session.commit()
        self.session.refresh(filing)

        self.reporter(
            filing_id=filing.id,
            person=person,
            is_officer=is_officer,
            officer_title=officer_title,
            is_director=is_director,
            is_ten_percent_owner=is_ten_percent_owner,
        )

        tx = InsiderTransaction(
            filing_id=filing.id,
            transaction_date=day,
            transaction_code=code,
            acquired_disposed_code=acquired_disposed,
            shares_transacted=shares,
            price_per_share=price,
            transaction_value=shares * price if price is not None else None,
            shares_owned_following=owned_following,
            direct_or_indirect=direct_or_indirect,
            is_10b5_1_plan=is_10b5_1_plan,
        )
        self.session.add(tx)
        self.session.commit()
        self.session.refresh(tx)
        return tx

    def reporter(self, *, filing_id: int, person: Person, **roles) -> PersonRelationship:
        rel = PersonRelationship(filing_id=filing_id, person_id=person.id, **roles)
        self.session.add(rel)
        self.session.commit()
        return rel


@pytest.fixture()
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    SQLModel.metadata.create_all(eng)
    return eng


@pytest.fixture()
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture()
def ledger(session) -> LedgerBuilder:
    return LedgerBuilder(session)
