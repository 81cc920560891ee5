import itertools
import threading
from typing import Any, Iterator, Sequence

import pytest
from starlette.testclient import TestClient

from qualytics.config import ConnectionConfig, Settings
from qualytics.connector import ConnectionPool, DuckDBDriver
from qualytics.server import create_app
from qualytics.server_config import ServerConfigStore


class FakeDriverError(Exception):
    """Stands in for snowflake.connector errors (errno/sqlstate/msg)."""

    def __init__(self, msg: str, *, errno: int | None = None, sqlstate: str | None = None) -> None:
        super().__init__(msg)
        self.msg = msg
        self.errno = errno
        self.sqlstate = sqlstate


class FakeHandle:
    def __init__(self, number: int, config: ConnectionConfig) -> None:
        self.number = number
        self.config = config
        self.closed = False
        self.executed: list[tuple[str, list[Any] | None]] = []


class FakeDriver:
    """In-memory driver with scripted results matched by SQL substring."""

    def __init__(self) -> None:
        self._numbers = itertools.count(1)
        self._lock = threading.Lock()
        self.opened: list[FakeHandle] = []
        self.closed: list[FakeHandle] = []
        self.connect_error: Exception | None = None
        self._script: list[tuple[str, Any]] = []

    def script(self, marker: str, columns: Sequence[str] | None = None, rows: Sequence[Sequence[Any]] = (),
               *, error: Exception | None = None) -> None:
        self._script.append((marker, error if error is not None else (tuple(columns or ()), list(rows))))

    def connect(self, config: ConnectionConfig) -> FakeHandle:
        if self.connect_error is not None:
            raise self.connect_error
        with self._lock:
            handle = FakeHandle(next(self._numbers), config)
            self.opened.append(handle)
        return handle

    def execute(self, handle: FakeHandle, sql: str, params: Sequence[Any] | None):
        assert not handle.closed, "statement sent on a closed handle"
        handle.executed.append((sql, list(params) if params is not None else None))
        for marker, outcome in self._script:
            if marker in sql:
                if isinstance(outcome, Exception):
                    raise outcome
                columns, rows = outcome
                return columns, [tuple(row) for row in rows]
        return ("RESULT",), [(1,)]

    def close(self, handle: FakeHandle) -> None:
        handle.closed = True
        with self._lock:
            self.closed.append(handle)

    @property
    def statements(self) -> list[tuple[str, list[Any] | None]]:
        return [item for handle in self.opened for item in handle.executed]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def driver() -> FakeDriver:
    return FakeDriver()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> ConnectionConfig:
    return ConnectionConfig(
        account="xy12345",
        username="dq_reader",
        password="s3cret",
        warehouse="COMPUTE_WH",
        database="DATA_QUALITY_DB",
        schema="DQ_METRICS",
        role="DQ_ROLE",
    )


@pytest.fixture
def config_store() -> ServerConfigStore:
    return ServerConfigStore()


@pytest.fixture
def pool(driver: FakeDriver, config_store: ServerConfigStore, clock: FakeClock) -> ConnectionPool:
    return ConnectionPool(
        driver,
        config_store,
        max_per_key=2,
        max_total=4,
        acquire_timeout=0.2,
        idle_timeout=60,
        max_lifetime=600,
        clock=clock,
    )


@pytest.fixture
def duckdb_driver() -> Iterator[DuckDBDriver]:
    """DuckDB-backed local warehouse for executor tests."""
    duck = DuckDBDriver(":memory:")
    yield duck
    duck.shutdown()


@pytest.fixture(autouse=True)
def _no_snowflake_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # The app seeds its config from SNOWFLAKE_* variables at start-up
    for name in ("SNOWFLAKE_ACCOUNT", "SNOWFLAKE_USERNAME", "SNOWFLAKE_PASSWORD", "SNOWFLAKE_TOKEN"):
        monkeypatch.delenv(name, raising=False)


CONNECT_BODY = {
    "accountUrl": "https://xy12345.snowflakecomputing.com",
    "username": "dq_reader",
    "password": "s3cret",
    "warehouse": "COMPUTE_WH",
    "database": "DATA_QUALITY_DB",
    "schema": "DQ_METRICS",
    "role": "DQ_ROLE",
}


@pytest.fixture
def client(driver: FakeDriver) -> Iterator[TestClient]:
    """A fresh application (own pool, store and cache) over the fake driver."""
    app = create_app(Settings(acquire_timeout=1.0), driver=driver)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def connected(client: TestClient) -> TestClient:
    response = client.post("/api/snowflake/connect", json=CONNECT_BODY)
    assert response.status_code == 200, response.text
    return client
