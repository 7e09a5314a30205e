"""
Shared run lifecycle for the signal processors.

Every signal table follows the same two-phase protocol:
1) ``deactivate_all``: flip every active row to inactive
2) recompute: the processor upserts rows it still derives from the ledger (is_active=True)
3) ``delete_inactive_before``: drop rows that stayed inactive past the retention window
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from time import perf_counter
from typing import Any, Iterator, Sequence, TypeVar

from sqlalchemy import delete, update
from sqlmodel import Session, SQLModel
from sqlmodel import col

T = TypeVar("T")


@dataclass
class ProcessorSummary:
    processed: int = 0
    new: int = 0
    updated: int = 0
    reactivated: int = 0
    failed: int = 0
    cleaned_up: int = 0
    duration_ms: int = 0
    _t0: float = field(default_factory=perf_counter, repr=False, compare=False)

    def finish(self) -> "ProcessorSummary":
        self.duration_ms = int((perf_counter() - self._t0) * 1000)
        return self

    def as_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out.pop("_t0", None)
        return out


def chunked(items: Sequence[T], size: int) -> Iterator[tuple[int, Sequence[T]]]:
    """Yield (start_index, chunk) pairs."""
    step = max(1, int(size))
    for start in range(0, len(items), step):
        yield start, items[start : start + step]


def deactivate_all(session: Session, model: type[SQLModel]) -> int:
    res = session.exec(  # type: ignore[call-overload]
        update(model).where(col(model.is_active).is_(True)).values(is_active=False)
    )
    session.commit()
    return int(res.rowcount or 0)


def delete_inactive_before(session: Session, model: type[SQLModel], *, column: Any, cutoff: Any) -> int:
    """Permanently delete inactive rows whose ``column`` is at or before ``cutoff``."""
    res = session.exec(  # type: ignore[call-overload]
        delete(model).where(col(model.is_active).is_(False), column <= cutoff)
    )
    session.commit()
    return int(res.rowcount or 0)


def day_start(d) -> datetime:
    return datetime(d.year, d.month, d.day)
