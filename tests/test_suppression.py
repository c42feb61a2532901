from __future__ import annotations

import json
from contextlib import contextmanager

import pytest

from anomaly_monitor.suppression import (
    InMemorySuppressionStore,
    JsonFileSuppressionStore,
    PostgresSuppressionConfig,
    PostgresSuppressionStore,
    SuppressionStoreError,
    build_suppression_store,
)


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestInMemoryStore:
    def test_key_expires_after_ttl(self):
        clock = FakeClock()
        store = InMemorySuppressionStore(clock=clock)

        store.put("BTCUSDT:volume", 3600)
        assert store.exists("BTCUSDT:volume")

        clock.advance(3599)
        assert store.exists("BTCUSDT:volume")

        clock.advance(1)
        assert not store.exists("BTCUSDT:volume")

    def test_unknown_key(self):
        assert not InMemorySuppressionStore().exists("ETHUSDT:volume")

    def test_put_refreshes_expiry(self):
        clock = FakeClock()
        store = InMemorySuppressionStore(clock=clock)
        store.put("BTCUSDT:volume", 10)
        clock.advance(8)
        store.put("BTCUSDT:volume", 10)
        clock.advance(8)
        assert store.exists("BTCUSDT:volume")

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError):
            InMemorySuppressionStore().put("BTCUSDT:volume", 0)


class TestJsonFileStore:
    def test_state_survives_new_instance(self, tmp_path):
        path = tmp_path / "state" / "suppression.json"
        clock = FakeClock()
        JsonFileSuppressionStore(path, clock=clock).put("BTCUSDT:volume", 3600)

        reopened = JsonFileSuppressionStore(path, clock=clock)
        assert reopened.exists("BTCUSDT:volume")
        assert not reopened.exists("BTCUSDT:open_interest")

        clock.advance(3600)
        assert not reopened.exists("BTCUSDT:volume")

    def test_put_prunes_expired_entries(self, tmp_path):
        path = tmp_path / "suppression.json"
        clock = FakeClock()
        store = JsonFileSuppressionStore(path, clock=clock)
        store.put("BTCUSDT:volume", 10)
        clock.advance(20)
        store.put("ETHUSDT:volume", 10)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert list(data) == ["ETHUSDT:volume"]
        assert data["ETHUSDT:volume"] == pytest.approx(clock.now + 10)

    def test_missing_file_is_empty(self, tmp_path):
        assert not JsonFileSuppressionStore(tmp_path / "absent.json").exists("BTCUSDT:volume")

    def test_corrupted_file_is_ignored(self, tmp_path, caplog):
        path = tmp_path / "suppression.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonFileSuppressionStore(path)

        assert not store.exists("BTCUSDT:volume")
        assert "corrupted" in caplog.text

        store.put("BTCUSDT:volume", 60)
        assert store.exists("BTCUSDT:volume")

    def test_unwritable_path_raises_store_error(self, tmp_path):
        blocker = tmp_path / "blocker"
        blocker.write_text("", encoding="utf-8")
        store = JsonFileSuppressionStore(blocker / "suppression.json")

        with pytest.raises(SuppressionStoreError):
            store.put("BTCUSDT:volume", 60)


class FakeCursor:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    def __enter__(self) -> "FakeCursor":
        return self

    def __exit__(self, *exc) -> None:
        return None

    def execute(self, query: str, params: tuple = ()) -> None:
        if self._pool.error is not None:
            raise self._pool.error
        self._pool.statements.append((" ".join(query.split()), params))

    def fetchone(self):
        return self._pool.row


class FakeConnection:
    def __init__(self, pool: "FakePool") -> None:
        self._pool = pool

    def cursor(self) -> FakeCursor:
        return FakeCursor(self._pool)


class FakePool:
    def __init__(self) -> None:
        self.statements: list = []
        self.row = None
        self.error: Exception | None = None
        self.closed = False

    @contextmanager
    def connection(self):
        yield FakeConnection(self)

    def close(self) -> None:
        self.closed = True


class TestPostgresStore:
    def _store(self, pool: FakePool) -> PostgresSuppressionStore:
        return PostgresSuppressionStore(PostgresSuppressionConfig(conninfo="postgresql://monitor@db/monitor"), pool=pool)

    def test_creates_table_on_start(self):
        pool = FakePool()
        self._store(pool)
        assert pool.statements[0][0].startswith("CREATE TABLE IF NOT EXISTS signal_suppression")

    def test_exists_uses_row_presence(self):
        pool = FakePool()
        store = self._store(pool)

        assert not store.exists("BTCUSDT:volume")
        pool.row = (1,)
        assert store.exists("BTCUSDT:volume")

        query, params = pool.statements[-1]
        assert "expires_at > now()" in query
        assert params == ("BTCUSDT:volume",)

    def test_put_upserts_with_ttl(self):
        pool = FakePool()
        store = self._store(pool)

        store.put("BTCUSDT:volume", 3600)

        query, params = pool.statements[-1]
        assert query.startswith("INSERT INTO signal_suppression")
        assert "ON CONFLICT (key) DO UPDATE" in query
        assert params == ("BTCUSDT:volume", 3600)

    def test_driver_errors_are_wrapped(self):
        pool = FakePool()
        store = self._store(pool)
        pool.error = RuntimeError("server closed the connection")

        with pytest.raises(SuppressionStoreError):
            store.exists("BTCUSDT:volume")
        with pytest.raises(SuppressionStoreError):
            store.put("BTCUSDT:volume", 60)

    def test_close_closes_pool(self):
        pool = FakePool()
        self._store(pool).close()
        assert pool.closed

    def test_config_rejects_unsafe_table_name(self):
        with pytest.raises(ValueError):
            PostgresSuppressionConfig(conninfo="postgresql://db", table="x; DROP TABLE y")


class TestFactory:
    def test_memory(self):
        assert isinstance(build_suppression_store("memory"), InMemorySuppressionStore)

    def test_file(self, tmp_path):
        store = build_suppression_store("FILE", state_file=tmp_path / "s.json")
        assert isinstance(store, JsonFileSuppressionStore)

    def test_none_disables_suppression(self):
        assert build_suppression_store("none") is None

    def test_file_requires_path(self):
        with pytest.raises(ValueError):
            build_suppression_store("file")

    def test_postgres_requires_url(self):
        with pytest.raises(ValueError):
            build_suppression_store("postgres")

    def test_unknown_backend(self):
        with pytest.raises(ValueError, match="Unsupported suppression backend"):
            build_suppression_store("redis")
