"""
Durable stores and the primary cache store adapter.

The blob store and key/value store are eventually-consistent collaborators;
the SQLAlchemy implementations here are the ones the gateway ships with.
"""
import json
import logging
import time
from typing import Any, List, Optional, Protocol, Sequence

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from rpc_cache.models import Blob, KeyValueEntry

from .core import CacheEntry, CacheMetadata, Clock, now_ms
from .keys import PRIMARY_PREFIX
from .ttl_policies import get_ttl_ms

logger = logging.getLogger("cache.store")


class BlobStore(Protocol):
    """Opaque payloads keyed by string."""

    def put(self, key: str, body: str) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> List[str]: ...


class KeyValueStore(Protocol):
    """Small string values with optional per-entry expiry."""

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None: ...

    def get(self, key: str) -> Optional[str]: ...

    def delete(self, key: str) -> None: ...

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> List[str]: ...


class SqlBlobStore:
    """Blob store on the ``blobs`` table."""

    def __init__(self, session_factory: sessionmaker, clock: Clock = time.time):
        self._session_factory = session_factory
        self._clock = clock

    def put(self, key: str, body: str) -> None:
        row = Blob(key=key, body=body, updated_at=now_ms(self._clock))
        with self._session_factory() as session:
            try:
                session.merge(row)
                session.commit()
            except IntegrityError:
                # Concurrent first write of the same key; last write wins
                session.rollback()
                session.merge(row)
                session.commit()

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(Blob, key)
            return row.body if row is not None else None

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            session.query(Blob).filter(Blob.key == key).delete()
            session.commit()

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> List[str]:
        with self._session_factory() as session:
            query = session.query(Blob.key)
            if prefix:
                query = query.filter(Blob.key.startswith(prefix, autoescape=True))
            query = query.order_by(Blob.key)
            if limit is not None:
                query = query.limit(limit)
            return [key for (key,) in query.all()]


class SqlKeyValueStore:
    """
    Key/value store on the ``kv_entries`` table.

    Expired rows read as absent and are deleted lazily.
    """

    def __init__(self, session_factory: sessionmaker, clock: Clock = time.time):
        self._session_factory = session_factory
        self._clock = clock

    def put(self, key: str, value: str, ttl_seconds: Optional[int] = None) -> None:
        expires_at = None
        if ttl_seconds is not None:
            expires_at = now_ms(self._clock) + int(ttl_seconds * 1000)
        row = KeyValueEntry(key=key, value=value, expires_at=expires_at)
        with self._session_factory() as session:
            try:
                session.merge(row)
                session.commit()
            except IntegrityError:
                session.rollback()
                session.merge(row)
                session.commit()

    def get(self, key: str) -> Optional[str]:
        with self._session_factory() as session:
            row = session.get(KeyValueEntry, key)
            if row is None:
                return None
            if row.expires_at is not None and row.expires_at <= now_ms(self._clock):
                session.delete(row)
                session.commit()
                return None
            return row.value

    def delete(self, key: str) -> None:
        with self._session_factory() as session:
            session.query(KeyValueEntry).filter(KeyValueEntry.key == key).delete()
            session.commit()

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> List[str]:
        now = now_ms(self._clock)
        with self._session_factory() as session:
            query = session.query(KeyValueEntry.key).filter(
                or_(KeyValueEntry.expires_at.is_(None), KeyValueEntry.expires_at > now)
            )
            if prefix:
                query = query.filter(KeyValueEntry.key.startswith(prefix, autoescape=True))
            query = query.order_by(KeyValueEntry.key)
            if limit is not None:
                query = query.limit(limit)
            return [key for (key,) in query.all()]


class PrimaryStore:
    """
    Reads and writes cache entries in the blob store.

    The TTL is computed from the method when an entry is written, so a
    policy change only affects entries written afterwards.
    """

    def __init__(
        self,
        blobs: BlobStore,
        default_ttl_minutes: int,
        ttl_disabled: bool = False,
        clock: Clock = time.time,
    ):
        self._blobs = blobs
        self.default_ttl_minutes = default_ttl_minutes
        self.ttl_disabled = ttl_disabled
        self._clock = clock

    def write(self, key: str, payload: Any, method: str, params: Sequence[Any]) -> CacheEntry:
        """Store a payload under a primary key, replacing any previous entry."""
        created_at = now_ms(self._clock)
        ttl_ms = get_ttl_ms(method, self.default_ttl_minutes, self.ttl_disabled)
        entry = CacheEntry(
            payload=payload,
            metadata=CacheMetadata(
                created_at=created_at,
                method=method,
                params=list(params),
                expires_at=created_at + ttl_ms if ttl_ms is not None else None,
            ),
        )
        self._blobs.put(key, json.dumps(entry.to_dict()))
        return entry

    def read(self, key: str) -> Optional[CacheEntry]:
        """
        Load an entry, or None if absent.

        Store and decoding failures are logged and read as a miss.
        """
        try:
            body = self._blobs.get(key)
        except SQLAlchemyError as e:
            logger.warning(f"Primary store read failed for {key}: {e}")
            return None
        if body is None:
            return None
        try:
            return CacheEntry.from_dict(json.loads(body))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(f"Error parsing cached data for {key}: {e}")
            return None

    def is_valid(self, entry: CacheEntry) -> bool:
        """An entry is servable when TTL is disabled or it has not expired."""
        if self.ttl_disabled:
            return True
        expires_at = entry.metadata.expires_at
        return expires_at is not None and expires_at > now_ms(self._clock)

    def sweep_expired(self) -> int:
        """
        Delete every primary entry whose expiry has passed.

        Returns:
            Number of entries removed
        """
        now = now_ms(self._clock)
        cleaned = 0
        for key in self._blobs.list_keys(PRIMARY_PREFIX):
            entry = self.read(key)
            if entry is None:
                continue
            if entry.is_expired(now):
                self._blobs.delete(key)
                cleaned += 1
        if cleaned:
            logger.info(f"Swept {cleaned} expired cache entries")
        return cleaned

    def read_raw(self, key: str) -> Optional[Any]:
        """Stored body for a key: decoded JSON when possible, else the raw text."""
        body = self._blobs.get(key)
        if body is None:
            return None
        try:
            return json.loads(body)
        except ValueError:
            return body

    def list_keys(self, prefix: str = "", limit: Optional[int] = None) -> List[str]:
        return self._blobs.list_keys(prefix, limit)
