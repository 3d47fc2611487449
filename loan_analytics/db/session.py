import os

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.engine.url import make_url
from sqlalchemy.orm import sessionmaker


def _require_env(name: str) -> str:
    value = os.environ.get(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def build_loan_engine(db_url: str) -> Engine:
    connect_args = {}
    if make_url(db_url).get_backend_name() == "sqlite":
        # Sync endpoints run in FastAPI's worker pool.
        connect_args["check_same_thread"] = False
    return create_engine(
        db_url,
        pool_pre_ping=True,
        future=True,
        echo=(os.environ.get("LOG_LEVEL") or "").strip().upper() == "DEBUG",
        connect_args=connect_args,
    )


LOAN_ANALYTICS_DB_URL = _require_env("LOAN_ANALYTICS_DB_URL")

engine_loans = build_loan_engine(LOAN_ANALYTICS_DB_URL)

SessionLocalLoans = sessionmaker(
    bind=engine_loans,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)
