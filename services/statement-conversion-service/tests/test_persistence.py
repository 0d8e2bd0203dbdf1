from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from persistence.database import (
    DB_URL_ENV_VAR,
    create_engine_for_url,
    get_database_url,
    init_db,
    session_scope,
)
from persistence.models import Base, ConversionRecord, UserUsage
from persistence.repository import UNLIMITED, ConversionLedger, SqlUsageGate


def _factory(tmp_path: Path, name: str = "converter.db"):
    engine = create_engine(
        f"sqlite:///{tmp_path / name}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    return engine, sessionmaker(bind=engine, expire_on_commit=False, future=True)


def test_history_survives_new_engine(tmp_path: Path) -> None:
    """Conversion history persists after a new engine/session is created."""
    engine_one, SessionOne = _factory(tmp_path)
    with SessionOne() as session:
        ConversionLedger(session).record_conversion("user-1", ["jan.pdf", "feb.pdf"], 12)
    engine_one.dispose()

    engine_two, SessionTwo = _factory(tmp_path)
    with SessionTwo() as session:
        history = ConversionLedger(session).list_history("user-1")

    assert len(history) == 1
    assert history[0].filename == "jan.pdf, feb.pdf"
    assert history[0].transaction_count == 12
    assert history[0].status == "success"
    assert history[0].created_at is not None
    engine_two.dispose()


def test_history_is_newest_first_and_per_user(tmp_path: Path) -> None:
    engine, factory = _factory(tmp_path)
    with factory() as session:
        ledger = ConversionLedger(session)
        ledger.record_conversion("user-1", ["a.pdf"], 1)
        ledger.record_conversion("user-2", ["b.pdf"], 2)
        ledger.record_conversion("user-1", ["c.pdf"], 3)

        history = ledger.list_history("user-1")

    assert [record.filename for record in history] == ["c.pdf", "a.pdf"]
    engine.dispose()


def test_quota_counts_down_to_zero(tmp_path: Path) -> None:
    engine, factory = _factory(tmp_path)
    with factory() as session:
        ledger = ConversionLedger(session, default_limit=2)
        assert ledger.remaining_conversions("user-1") == 2
        assert ledger.can_convert("user-1")

        ledger.record_conversion("user-1", ["a.pdf"], 1)
        ledger.record_conversion("user-1", ["b.pdf"], 1)

        assert ledger.remaining_conversions("user-1") == 0
        assert not ledger.can_convert("user-1")
        assert session.get(UserUsage, "user-1").conversions_used == 2
    engine.dispose()


def test_no_limit_means_unlimited(tmp_path: Path) -> None:
    engine, factory = _factory(tmp_path)
    with factory() as session:
        ledger = ConversionLedger(session)
        ledger.record_conversion("user-1", ["a.pdf"], 1)

        assert ledger.remaining_conversions("user-1") == UNLIMITED
        assert ledger.can_convert("user-1")
    engine.dispose()


def test_per_user_limit_overrides_default(tmp_path: Path) -> None:
    engine, factory = _factory(tmp_path)
    with factory() as session:
        ledger = ConversionLedger(session, default_limit=10)
        ledger.set_limit("user-1", 1)
        ledger.record_conversion("user-1", ["a.pdf"], 1)

        assert not ledger.can_convert("user-1")
        assert ledger.can_convert("user-2")
    engine.dispose()


def test_sql_usage_gate_round_trip() -> None:
    engine = create_engine_for_url("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)
    gate = SqlUsageGate(factory, default_limit=1)

    assert gate.can_convert("user-1")
    gate.record_conversion("user-1", ["a.pdf"], 7)
    assert not gate.can_convert("user-1")

    with factory() as session:
        records = session.query(ConversionRecord).all()
    assert [(r.user_id, r.transaction_count) for r in records] == [("user-1", 7)]
    engine.dispose()


def test_session_scope_rolls_back_when_block_raises() -> None:
    engine = create_engine_for_url("sqlite:///:memory:")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False, future=True)

    with pytest.raises(RuntimeError):
        with session_scope(factory) as session:
            session.add(UserUsage(user_id="user-1", conversions_used=3))
            session.flush()
            raise RuntimeError("boom")

    with session_scope(factory) as session:
        assert session.get(UserUsage, "user-1") is None
    engine.dispose()


def test_parent_directory_is_created_by_init_db_only(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "converter.db"
    engine = create_engine_for_url(f"sqlite:///{db_path}")
    assert not db_path.parent.exists()

    init_db(engine)

    assert db_path.parent.is_dir()
    assert db_path.exists()
    engine.dispose()


def test_default_database_lives_under_working_directory(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv(DB_URL_ENV_VAR, raising=False)

    assert get_database_url() == "sqlite:///data/converter.db"


def test_delete_record_is_scoped_to_owner(tmp_path: Path) -> None:
    engine, factory = _factory(tmp_path)
    with factory() as session:
        ledger = ConversionLedger(session)
        mine = ledger.record_conversion("user-1", ["a.pdf"], 3)
        theirs = ledger.record_conversion("user-2", ["b.pdf"], 5)

        assert ledger.delete_record("user-1", theirs.id) is False
        assert ledger.delete_record("user-1", 9999) is False
        assert ledger.delete_record("user-1", mine.id) is True

        assert ledger.list_history("user-1") == []
        assert [r.id for r in ledger.list_history("user-2")] == [theirs.id]
        # Deleting history does not refund the quota.
        assert ledger.get_usage("user-1").conversions_used == 1
    engine.dispose()
