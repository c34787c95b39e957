"""
Secondary index: semantic identifiers to primary cache keys.

Entries live in the key/value store under namespaced keys (``tx:<sig>``,
``acct:<addr>``, ``mint:<addr>``, ``hash:<sha256>``) with their own expiry.
An entry may outlive the cache entry it points to; readers must treat that
as a soft miss.
"""
import logging
import re
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .store import KeyValueStore

logger = logging.getLogger("cache.index")

TX = "tx"
ACCOUNT = "acct"
MINT = "mint"
HASH = "hash"

# Index entry lifetimes (seconds)
INDEX_TTL_SECONDS: Dict[str, int] = {
    TX: 60 * 60 * 24 * 7,      # historical tx data rarely changes
    ACCOUNT: 60 * 10,
    MINT: 60 * 60,
    HASH: 60 * 60 * 24 * 30,   # hashed params never change
}

# Namespace per indexable method; the first param is the identifier
METHOD_NAMESPACES: Dict[str, str] = {
    "getTransaction": TX,
    "getAccountInfo": ACCOUNT,
    "getBalance": ACCOUNT,
    "getTokenAccountsByOwner": ACCOUNT,
    "getTokenSupply": MINT,
}

_BASE58_ADDRESS = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")


class InvalidAddressError(ValueError):
    """Raised when an account or mint identifier is not a base58 public key."""


def is_valid_address(value: Any) -> bool:
    """Loose base58 public key check (alphabet and length)."""
    return isinstance(value, str) and bool(_BASE58_ADDRESS.match(value))


def semantic_key(method: str, params: Sequence[Any]) -> Optional[Tuple[str, str]]:
    """
    Namespace and identifier for an indexable call.

    Returns:
        (namespace, identifier), or None when the method is not indexed
    """
    namespace = METHOD_NAMESPACES.get(method)
    if namespace is None or len(params) < 1:
        return None
    identifier = params[0]
    if not isinstance(identifier, str):
        return None
    return namespace, identifier


class SecondaryIndex:
    """Lookup table mapping semantic keys to primary cache keys."""

    def __init__(self, kv: KeyValueStore):
        self._kv = kv

    @staticmethod
    def make_key(namespace: str, key: str) -> str:
        return f"{namespace}:{key}"

    def put(
        self,
        namespace: str,
        key: str,
        primary_key: str,
        ttl_seconds: Optional[int] = None,
    ) -> None:
        """
        Map a semantic key to a primary key.

        Raises:
            InvalidAddressError: For a malformed account or mint address
        """
        if namespace in (ACCOUNT, MINT) and not is_valid_address(key):
            raise InvalidAddressError(f"Invalid {namespace} address: {key}")
        if ttl_seconds is None:
            ttl_seconds = INDEX_TTL_SECONDS.get(namespace)
        self._kv.put(self.make_key(namespace, key), primary_key, ttl_seconds)

    def get(self, namespace: str, key: str) -> Optional[str]:
        return self._kv.get(self.make_key(namespace, key))

    def list_keys(self, prefix: str = "", limit: int = 100) -> List[str]:
        return self._kv.list_keys(prefix, limit)

    def delete(self, key: str) -> None:
        """Delete by full key name (``namespace:identifier``)."""
        self._kv.delete(key)
