"""
Shared fixtures: temp SQLite stores, a controllable clock, and fake
upstream / connection collaborators.
"""
import threading

import pytest

from config.settings import Settings
from rpc_cache.cache.coalescer import RequestCoalescer
from rpc_cache.cache.index import SecondaryIndex
from rpc_cache.cache.manager import CacheOrchestrator
from rpc_cache.cache.store import PrimaryStore, SqlBlobStore, SqlKeyValueStore
from rpc_cache.db import init_db, make_engine, make_session_factory
from rpc_cache.metrics import MetricsAggregator
from rpc_cache.upstream import UpstreamError

# Well-formed base58 public keys
WALLET = "4Nd1mBQtrMJVYVfKf2PJy9NZUZdTAsp7D4xWLs4gDB4T"
OTHER_WALLET = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
TX_SIGNATURE = (
    "5VERv8NMvzbJMEkV8xnrLkEaWRtSz9CosKDYjCJjBRnbJLgp8uirBgmQpjKhoR4tjF3ZpRzrFmBV6UjKdiSZkQUW"
)


# =============================================================================
# Fakes
# =============================================================================

class FakeClock:
    """Manually advanced clock (seconds since epoch)."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUpstream:
    """
    Records calls and answers from a per-method table.

    A table value may be a callable taking the params.
    """

    def __init__(self, results=None):
        self.results = dict(results or {})
        self.calls = []
        self.error = None
        self._lock = threading.Lock()

    def call(self, method, params):
        with self._lock:
            self.calls.append((method, list(params)))
        if self.error is not None:
            raise self.error
        value = self.results.get(method, f"{method}-result")
        return value(params) if callable(value) else value

    def calls_for(self, method):
        return [params for name, params in self.calls if name == method]

    def fail_with(self, message, status_code=None):
        self.error = UpstreamError(message, status_code=status_code)


class FakeConnection:
    """Collects every message sent to it."""

    def __init__(self):
        self.messages = []

    def send(self, message):
        self.messages.append(message)

    def notifications(self):
        return [m for m in self.messages if m.get("method") == "subscription"]


class BrokenKeyValueStore:
    """Key/value store whose every call fails."""

    def put(self, key, value, ttl_seconds=None):
        raise RuntimeError("kv unavailable")

    def get(self, key):
        raise RuntimeError("kv unavailable")

    def delete(self, key):
        raise RuntimeError("kv unavailable")

    def list_keys(self, prefix="", limit=None):
        raise RuntimeError("kv unavailable")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'cache.db'}")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def blobs(session_factory, clock):
    return SqlBlobStore(session_factory, clock=clock)


@pytest.fixture
def kv(session_factory, clock):
    return SqlKeyValueStore(session_factory, clock=clock)


@pytest.fixture
def primary_store(blobs, clock):
    return PrimaryStore(blobs, default_ttl_minutes=10080, clock=clock)


@pytest.fixture
def index(kv):
    return SecondaryIndex(kv)


@pytest.fixture
def metrics(kv):
    return MetricsAggregator(kv)


@pytest.fixture
def upstream():
    return FakeUpstream()


@pytest.fixture
def coalescer():
    return RequestCoalescer(timeout=5.0)


@pytest.fixture
def orchestrator(primary_store, index, upstream, metrics, coalescer, clock):
    return CacheOrchestrator(
        primary_store, index, upstream, metrics, coalescer=coalescer, clock=clock
    )


@pytest.fixture
def test_settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{tmp_path / 'gateway.db'}",
        api_key=None,
        shared_secret="admin-secret",
        max_requests_per_minute=35,
        subscription_poll_seconds=3600,
    )
