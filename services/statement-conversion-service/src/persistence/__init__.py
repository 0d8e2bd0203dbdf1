"""Persistence for conversion history and per-user usage quotas."""

from persistence.database import (
    DB_URL_ENV_VAR,
    SessionLocal,
    create_engine_for_url,
    get_database_url,
    get_engine,
    init_db,
    session_scope,
)
from persistence.models import Base, ConversionRecord, UserUsage
from persistence.repository import UNLIMITED, ConversionLedger, SqlUsageGate

__all__ = [
    "Base",
    "ConversionLedger",
    "ConversionRecord",
    "DB_URL_ENV_VAR",
    "SessionLocal",
    "SqlUsageGate",
    "UNLIMITED",
    "UserUsage",
    "create_engine_for_url",
    "get_database_url",
    "get_engine",
    "init_db",
    "session_scope",
]
