"""
Gateway wiring.

Builds every long-lived component once from settings and hands them out
through a single context object, so tests can swap the upstream or clock.
"""
import logging
import time
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.engine import Engine

from config.settings import Settings
from rpc_cache.batch import BatchDispatcher
from rpc_cache.cache.coalescer import RequestCoalescer
from rpc_cache.cache.core import Clock
from rpc_cache.cache.index import SecondaryIndex
from rpc_cache.cache.manager import CacheOrchestrator
from rpc_cache.cache.store import PrimaryStore, SqlBlobStore, SqlKeyValueStore
from rpc_cache.db import init_db, make_engine, make_session_factory
from rpc_cache.metrics import MetricsAggregator
from rpc_cache.rate_limiter import RateLimiter
from rpc_cache.subscriptions import SubscriptionEngine, SubscriptionPoller
from rpc_cache.upstream import JsonRpcUpstream, Upstream

logger = logging.getLogger("gateway.context")


@dataclass
class GatewayContext:
    settings: Settings
    engine: Engine
    store: PrimaryStore
    index: SecondaryIndex
    metrics: MetricsAggregator
    rate_limiter: RateLimiter
    orchestrator: CacheOrchestrator
    batch: BatchDispatcher
    subscriptions: SubscriptionEngine
    poller: SubscriptionPoller

    def close(self) -> None:
        self.poller.stop()
        self.metrics.flush()
        self.engine.dispose()


def build_context(
    settings: Settings,
    upstream: Optional[Upstream] = None,
    clock: Clock = time.time,
) -> GatewayContext:
    """Create the database, stores and services for one gateway process."""
    engine = make_engine(settings.database_url)
    init_db(engine)
    session_factory = make_session_factory(engine)

    kv = SqlKeyValueStore(session_factory, clock=clock)
    store = PrimaryStore(
        SqlBlobStore(session_factory, clock=clock),
        default_ttl_minutes=settings.cache_ttl_minutes,
        ttl_disabled=settings.disable_ttl,
        clock=clock,
    )
    index = SecondaryIndex(kv)
    metrics = MetricsAggregator(kv)

    if upstream is None:
        upstream = JsonRpcUpstream(
            settings.solana_rpc_url,
            timeout=settings.upstream_timeout_seconds,
            max_concurrency=settings.upstream_max_concurrency,
        )

    coalescer = None
    if settings.coalesce_upstream:
        coalescer = RequestCoalescer(timeout=settings.upstream_timeout_seconds)

    orchestrator = CacheOrchestrator(
        store, index, upstream, metrics, coalescer=coalescer, clock=clock
    )
    subscriptions = SubscriptionEngine(orchestrator, clock=clock)

    logger.info(
        f"Gateway ready (db={settings.database_url}, ttl_disabled={settings.disable_ttl}, "
        f"coalesce={settings.coalesce_upstream})"
    )
    return GatewayContext(
        settings=settings,
        engine=engine,
        store=store,
        index=index,
        metrics=metrics,
        rate_limiter=RateLimiter(
            max_requests=settings.max_requests_per_minute,
            window_seconds=settings.rate_limit_window_seconds,
            clock=clock,
        ),
        orchestrator=orchestrator,
        batch=BatchDispatcher(
            orchestrator.process, max_workers=settings.batch_max_workers, clock=clock
        ),
        subscriptions=subscriptions,
        poller=SubscriptionPoller(subscriptions, settings.subscription_poll_seconds),
    )
