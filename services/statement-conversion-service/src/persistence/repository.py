"""Conversion history and usage-quota data access helpers."""

from __future__ import annotations

from typing import Callable, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from persistence.database import session_scope
from persistence.models import ConversionRecord, UserUsage

UNLIMITED = -1


class ConversionLedger:
    """Thin repository that encapsulates usage and history persistence."""

    def __init__(self, db: Session, *, default_limit: int | None = None):
        self._db = db
        self._default_limit = default_limit

    def get_usage(self, user_id: str) -> UserUsage | None:
        return self._db.get(UserUsage, user_id)

    def set_limit(self, user_id: str, conversion_limit: int | None) -> UserUsage:
        usage = self._get_or_create_usage(user_id)
        usage.conversion_limit = conversion_limit
        self._db.add(usage)
        self._db.commit()
        self._db.refresh(usage)
        return usage

    def can_convert(self, user_id: str) -> bool:
        remaining = self.remaining_conversions(user_id)
        return remaining == UNLIMITED or remaining > 0

    def remaining_conversions(self, user_id: str) -> int:
        """Conversions left in the quota, or `UNLIMITED` (-1) when there is no cap."""
        usage = self.get_usage(user_id)
        used = usage.conversions_used if usage else 0
        limit = usage.conversion_limit if usage else self._default_limit
        if limit is None:
            return UNLIMITED
        return max(0, limit - used)

    def record_conversion(
        self,
        user_id: str,
        filenames: Sequence[str],
        transaction_count: int,
        *,
        status: str = "success",
    ) -> ConversionRecord:
        record = ConversionRecord(
            user_id=user_id,
            filename=", ".join(filenames),
            transaction_count=transaction_count,
            status=status,
        )
        usage = self._get_or_create_usage(user_id)
        usage.conversions_used += 1
        self._db.add(record)
        self._db.add(usage)
        self._db.commit()
        self._db.refresh(record)
        return record

    def list_history(self, user_id: str, limit: int = 50) -> list[ConversionRecord]:
        statement = (
            select(ConversionRecord)
            .where(ConversionRecord.user_id == user_id)
            .order_by(ConversionRecord.id.desc())
            .limit(limit)
        )
        return list(self._db.scalars(statement))

    def delete_record(self, user_id: str, record_id: int) -> bool:
        """
        Delete one history row owned by `user_id`. Returns False when the id is
        unknown or belongs to someone else. Usage counters are left untouched.
        """
        record = self._db.get(ConversionRecord, record_id)
        if record is None or record.user_id != user_id:
            return False
        self._db.delete(record)
        self._db.commit()
        return True

    def _get_or_create_usage(self, user_id: str) -> UserUsage:
        usage = self.get_usage(user_id)
        if usage is None:
            usage = UserUsage(user_id=user_id, conversions_used=0, conversion_limit=self._default_limit)
            self._db.add(usage)
            self._db.flush()
        return usage


class SqlUsageGate:
    """
    Usage gate for conversion sessions, opening a short-lived DB session per call.
    """

    def __init__(self, session_factory: Callable[[], Session], *, default_limit: int | None = None):
        self._session_factory = session_factory
        self._default_limit = default_limit

    def can_convert(self, user_id: str) -> bool:
        with session_scope(self._session_factory) as db:
            return ConversionLedger(db, default_limit=self._default_limit).can_convert(user_id)

    def record_conversion(self, user_id: str, filenames: Sequence[str], transaction_count: int) -> None:
        with session_scope(self._session_factory) as db:
            ConversionLedger(db, default_limit=self._default_limit).record_conversion(
                user_id, filenames, transaction_count
            )
