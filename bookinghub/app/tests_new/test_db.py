from types import SimpleNamespace

import pytest

from bookinghub.app.core import db


def test_get_engine_uses_env_and_sets_factory(monkeypatch):
    db._reset_engine_for_tests()

    stub_engine = SimpleNamespace(sync_engine="sync")

    def fake_make_engine(url: str):
        assert url == "fake-url"
        return stub_engine

    def fake_async_sessionmaker(engine, expire_on_commit=False):
        assert engine is stub_engine
        return "factory"

    monkeypatch.setenv("DATABASE_URL", "fake-url")
    monkeypatch.setattr(db, "_make_engine", fake_make_engine)
    monkeypatch.setattr(db, "async_sessionmaker", fake_async_sessionmaker)

    engine = db.get_engine()
    assert engine is stub_engine
    assert db.get_session_factory() == "factory"

    db._reset_engine_for_tests()


def test_database_url_default(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    assert db.database_url().startswith("postgresql+asyncpg://")


def test_reset_engine_clears_state():
    db._engine = "e"
    db._session_factory = "sf"
    db._SCHEMA_READY = True
    db._SCHEMA_CHECKING = True

    db._reset_engine_for_tests()

    assert db._engine is None
    assert db._session_factory is None
    assert db._SCHEMA_READY is False
    assert db._SCHEMA_CHECKING is False


async def test_dispose_engine_releases_pool():
    disposed = []

    class _Engine:
        async def dispose(self):
            disposed.append(True)

    db._engine = _Engine()
    db._session_factory = "sf"

    await db.dispose_engine()

    assert disposed == [True]
    assert db._engine is None
    assert db._session_factory is None


async def test_schema_check_is_skipped_without_auto_create(monkeypatch):
    db._reset_engine_for_tests()
    monkeypatch.delenv("DB_AUTO_CREATE", raising=False)

    def boom(url):
        raise AssertionError("engine must not be created")

    monkeypatch.setattr(db, "_make_engine", boom)
    await db._ensure_schema()
    assert db._SCHEMA_READY is True
    db._reset_engine_for_tests()


@pytest.mark.parametrize("flag", ["", "0", "no"])
async def test_schema_auto_create_flag_values(monkeypatch, flag):
    db._reset_engine_for_tests()
    monkeypatch.setenv("DB_AUTO_CREATE", flag)
    monkeypatch.setattr(db, "_make_engine", lambda url: pytest.fail("unexpected engine"))
    await db._ensure_schema()
    assert db._SCHEMA_READY is True
    db._reset_engine_for_tests()
