from collections.abc import Iterator

from sqlalchemy import text
from sqlmodel import Session, SQLModel, create_engine

from insider_signals.settings import settings


def create_db_engine(db_url: str | None = None):
    url = db_url or settings.db_url
    connect_args = {}
    if url.startswith("sqlite:"):
        connect_args = {"check_same_thread": False}
    return create_engine(url, echo=False, connect_args=connect_args)


engine = create_db_engine()


def _sqlite_columns(table: str) -> set[str]:
    with engine.connect() as conn:
        rows = conn.execute(text(f"PRAGMA table_info({table})")).fetchall()
    return {r[1] for r in rows}  # name


def _sqlite_add_column_if_missing(table: str, column: str, ddl: str) -> None:
    cols = _sqlite_columns(table)
    if column in cols:
        return
    with engine.connect() as conn:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {ddl}"))
        conn.commit()


def _existing_tables() -> set[str]:
    with engine.connect() as conn:
        rows = conn.execute(
            text("SELECT name FROM sqlite_master WHERE type='table'")
        ).fetchall()
    return {r[0] for r in rows}


def _sqlite_migrate() -> None:
    # Additive migrations only. Ledgers created before the plan flag existed get it defaulted to 0.
    if "insider_transactions" in _existing_tables():
        _sqlite_add_column_if_missing(
            "insider_transactions",
            "is_10b5_1_plan",
            "is_10b5_1_plan INTEGER NOT NULL DEFAULT 0",
        )
    if "cluster_buy_signals" in _existing_tables():
        _sqlite_add_column_if_missing(
            "cluster_buy_signals",
            "max_role_priority",
            "max_role_priority INTEGER NOT NULL DEFAULT 0",
        )


def init_db() -> None:
    SQLModel.metadata.create_all(engine)
    if str(engine.url).startswith("sqlite:"):
        _sqlite_migrate()


def get_session() -> Iterator[Session]:
    with Session(engine) as session:
        yield session
