# backend/liquorpos/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/liquorpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///liquorpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Seconds a SQLite connection waits on a locked database before failing
    SQLITE_BUSY_TIMEOUT = float(os.environ.get("SQLITE_BUSY_TIMEOUT", "15"))

    # Apply pending schema migrations when the app starts
    AUTO_MIGRATE = _env_flag("AUTO_MIGRATE", True)

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Sales tax in basis points (875 = 8.75%)
    TAX_RATE_BPS = int(os.environ.get("TAX_RATE_BPS", "0"))

    # Ledger policy
    # - negative balances are accepted and flagged unless this is set
    # - only these reasons may create a product on first sight of a UPC
    LEDGER_FORBID_NEGATIVE = _env_flag("LEDGER_FORBID_NEGATIVE", False)
    LEDGER_IMPLICIT_CREATE_REASONS = _env_list(
        "LEDGER_IMPLICIT_CREATE_REASONS", ("purchase", "initial")
    )
