"""
Polling-based subscriptions over persistent connections.

Clients register a (method, params) query under a subscription id. Each
poll tick re-runs the query through the cache and pushes a notification to
every bound connection only when the result changed.

Registries are process-local and best-effort: a restart drops every
subscription and clients must re-subscribe.
"""
import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Set, Union

from rpc_cache.cache.core import Clock, now_ms
from rpc_cache.cache.keys import canonical_serialize, primary_key
from rpc_cache.cache.manager import CacheOrchestrator
from rpc_cache.errors import (
    InternalError,
    InvalidParamsError,
    MethodNotFoundError,
    ParseError,
    RpcError,
)
from rpc_cache.methods import METHODS, MethodSpec
from rpc_cache.schemas import RpcResponse, subscription_confirmation, subscription_notification

logger = logging.getLogger("gateway.subscriptions")

SubscriptionId = Union[int, str]


def _valid_id(value: Any) -> bool:
    return isinstance(value, (int, str)) and not isinstance(value, bool)


class Connection(Protocol):
    """A client transport that can receive JSON messages."""

    def send(self, message: Dict[str, Any]) -> None: ...


@dataclass
class Subscription:
    """One logical query shared by every connection bound to its id."""
    id: SubscriptionId
    method: str
    params: List[Any] = field(default_factory=list)
    last_result: Any = None
    last_timestamp: Optional[int] = None
    last_fingerprint: Optional[str] = None  # None until the first result

    @property
    def query_key(self) -> str:
        return primary_key(self.method, self.params)


class SubscriptionEngine:
    """
    Registry of subscriptions and the connections bound to them.

    A subscription is removed only when no connection references its id.
    Subscriptions with different ids but the same query share one cache
    lookup per poll tick.
    """

    def __init__(
        self,
        orchestrator: CacheOrchestrator,
        methods: Mapping[str, MethodSpec] = METHODS,
        clock: Clock = time.time,
    ):
        self._orchestrator = orchestrator
        self._methods = methods
        self._clock = clock
        self._subscriptions: Dict[SubscriptionId, Subscription] = {}
        self._connections: Dict[Connection, Set[SubscriptionId]] = {}
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def connect(self, connection: Connection) -> None:
        with self._lock:
            self._connections.setdefault(connection, set())

    def subscribe(
        self,
        connection: Connection,
        method: str,
        params: Optional[List[Any]] = None,
        subscription_id: Optional[SubscriptionId] = None,
    ) -> SubscriptionId:
        """
        Bind a connection to a subscription, creating it if needed.

        Raises:
            MethodNotFoundError: For an unsupported method
            InvalidParamsError: If the params fail the method's validation, or
                the id is not a string or integer
        """
        if subscription_id is not None and not _valid_id(subscription_id):
            raise InvalidParamsError("Invalid params: subscription id must be a string or integer")
        spec = self._methods.get(method)
        if spec is None:
            raise MethodNotFoundError(method)
        params = list(params or [])
        spec.validate(params)

        if subscription_id is None:
            subscription_id = uuid.uuid4().hex

        with self._lock:
            existing = self._subscriptions.get(subscription_id)
            if existing is None or existing.query_key != primary_key(method, params):
                # A reused id with a different query replaces the old one
                self._subscriptions[subscription_id] = Subscription(
                    id=subscription_id, method=method, params=params
                )
            self._connections.setdefault(connection, set()).add(subscription_id)

        logger.info(f"Subscription {subscription_id} -> {method}")
        return subscription_id

    def unsubscribe(self, connection: Connection, subscription_id: SubscriptionId) -> bool:
        """
        Unbind a connection. Returns True if it was bound to the id.
        """
        with self._lock:
            bound = self._connections.get(connection)
            if bound is None or subscription_id not in bound:
                return False
            bound.discard(subscription_id)
            self._collect([subscription_id])
        return True

    def disconnect(self, connection: Connection) -> None:
        """Forget a connection and any subscriptions only it referenced."""
        with self._lock:
            bound = self._connections.pop(connection, set())
            self._collect(bound)
        logger.debug(f"Connection closed ({len(bound)} subscription(s) released)")

    def _collect(self, subscription_ids) -> None:
        # Caller holds the lock
        for subscription_id in list(subscription_ids):
            in_use = any(subscription_id in ids for ids in self._connections.values())
            if not in_use:
                self._subscriptions.pop(subscription_id, None)
                logger.info(f"Subscription {subscription_id} removed")

    def get(self, subscription_id: SubscriptionId) -> Optional[Subscription]:
        with self._lock:
            return self._subscriptions.get(subscription_id)

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "subscriptions": len(self._subscriptions),
                "connections": len(self._connections),
            }

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def poll(self) -> int:
        """
        Re-run every subscription once.

        Returns:
            Number of notifications sent
        """
        with self._lock:
            subscriptions = list(self._subscriptions.values())

        by_query: Dict[str, List[Subscription]] = {}
        for subscription in subscriptions:
            by_query.setdefault(subscription.query_key, []).append(subscription)

        sent = 0
        for members in by_query.values():
            first = members[0]
            try:
                response = self._orchestrator.call(first.method, first.params)
            except Exception as e:
                logger.exception(f"Error polling {first.method}: {e}")
                continue
            for subscription in members:
                sent += self._apply(subscription, response)
        return sent

    def refresh(
        self,
        subscription_id: SubscriptionId,
        joining: Optional[Connection] = None,
    ) -> int:
        """
        Re-run one subscription now.

        When ``joining`` is given and the result is unchanged, that
        connection still receives the current result.
        """
        subscription = self.get(subscription_id)
        if subscription is None:
            return 0
        response = self._orchestrator.call(subscription.method, subscription.params)
        return self._apply(subscription, response, joining)

    def _apply(
        self,
        subscription: Subscription,
        response: RpcResponse,
        joining: Optional[Connection] = None,
    ) -> int:
        if not response.ok:
            logger.warning(
                f"Error handling subscription {subscription.id}: {response.error['message']}"
            )
            return 0

        fingerprint = canonical_serialize([response.result])
        with self._lock:
            if self._subscriptions.get(subscription.id) is not subscription:
                return 0
            if fingerprint != subscription.last_fingerprint:
                subscription.last_result = response.result
                subscription.last_fingerprint = fingerprint
                subscription.last_timestamp = now_ms(self._clock)
                targets = [
                    conn for conn, ids in self._connections.items()
                    if subscription.id in ids
                ]
            elif joining is not None and subscription.id in self._connections.get(joining, ()):
                targets = [joining]
            else:
                targets = []
            result = subscription.last_result

        if not targets:
            return 0
        message = subscription_notification(
            subscription.id, result, response.response_time, response.cache_hit
        )
        for conn in targets:
            self._send(conn, message)
        return len(targets)

    @staticmethod
    def _send(connection: Connection, message: Dict[str, Any]) -> None:
        try:
            connection.send(message)
        except Exception as e:
            logger.warning(f"Failed to deliver message to connection: {e}")

    # ------------------------------------------------------------------
    # Wire protocol
    # ------------------------------------------------------------------

    def handle_message(self, connection: Connection, raw: Union[str, bytes, Dict[str, Any]]) -> None:
        """
        Handle one inbound message from a connection.

        Replies (confirmations, notifications, errors) go out through
        ``connection.send`` in order.
        """
        message: Any = None
        try:
            message = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
            if not isinstance(message, dict):
                raise ParseError()
            method = message.get("method")
            if method == "subscribe":
                self._handle_subscribe(connection, message)
            elif method == "unsubscribe":
                self._handle_unsubscribe(connection, message)
            else:
                raise MethodNotFoundError(str(method))
        except RpcError as e:
            self._send(connection, self._error(message, e))
        except (ValueError, TypeError) as e:
            logger.error(f"Error handling connection message: {e}")
            self._send(connection, self._error(message, ParseError()))
        except Exception as e:
            logger.exception(f"Unexpected error handling connection message: {e}")
            self._send(connection, self._error(message, InternalError()))

    def _handle_subscribe(self, connection: Connection, message: Dict[str, Any]) -> None:
        query = message.get("params")
        if not isinstance(query, dict) or not isinstance(query.get("method"), str):
            raise InvalidParamsError("Invalid params: expected {method, params}")
        params = query.get("params") or []
        if not isinstance(params, list):
            raise InvalidParamsError("Invalid params: params must be a list")

        request_id = message.get("id")
        subscription_id = self.subscribe(
            connection, query["method"], params, subscription_id=request_id
        )
        self._send(connection, subscription_confirmation(subscription_id, request_id))
        # Initial data
        self.refresh(subscription_id, joining=connection)

    def _handle_unsubscribe(self, connection: Connection, message: Dict[str, Any]) -> None:
        params = message.get("params")
        if not isinstance(params, list) or not params:
            raise InvalidParamsError("Invalid params: expected [subscriptionId]")
        self.unsubscribe(connection, params[0])
        self._send(connection, {"jsonrpc": "2.0", "result": True, "id": message.get("id")})

    @staticmethod
    def _error(message: Any, error: RpcError) -> Dict[str, Any]:
        body: Dict[str, Any] = {"jsonrpc": "2.0", "error": error.to_dict()}
        if isinstance(message, dict) and "id" in message:
            body["id"] = message["id"]
        return body


class SubscriptionPoller:
    """Background thread that polls the engine at a fixed interval."""

    def __init__(self, engine: SubscriptionEngine, interval_seconds: float = 10.0):
        self._engine = engine
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="subscription-poller", daemon=True
        )
        self._thread.start()
        logger.info(f"Subscription poller started (every {self.interval_seconds}s)")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                sent = self._engine.poll()
                if sent:
                    logger.debug(f"Poll tick sent {sent} notification(s)")
            except Exception:
                logger.exception("Subscription poll failed")
