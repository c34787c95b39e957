"""
Tests for TTL tiers and cache key derivation.
"""
import pytest

from rpc_cache.cache.core import CacheEntry, CacheMetadata, TtlTier
from rpc_cache.cache.keys import canonical_serialize, content_hash, primary_key
from rpc_cache.cache.ttl_policies import (
    ONE_DAY_MS,
    ONE_MINUTE_MS,
    TTL_CONFIG,
    get_tier_for_method,
    get_ttl_ms,
)

from conftest import WALLET


class TestTtlPolicies:
    """Per-method cache lifetimes."""

    def test_volatile_methods_expire_in_seconds(self):
        assert get_ttl_ms("getSlot") == 30_000
        assert get_ttl_ms("getLatestBlockhash") == 20_000
        assert get_ttl_ms("isBlockhashValid") == 20_000

    def test_tier_lifetimes(self):
        assert get_ttl_ms("getEpochInfo") == 5 * ONE_MINUTE_MS
        assert get_ttl_ms("getBalance") == TTL_CONFIG[TtlTier.ACCOUNT]
        assert get_ttl_ms("getTransaction") == 30 * ONE_DAY_MS
        assert get_ttl_ms("getTokenSupply") == ONE_DAY_MS
        assert get_ttl_ms("getVersion") == 7 * ONE_DAY_MS

    def test_unknown_method_uses_default(self):
        assert get_ttl_ms("getSomethingNew", default_minutes=15) == 15 * ONE_MINUTE_MS
        assert get_ttl_ms("getSomethingNew") == 10080 * ONE_MINUTE_MS

    def test_disabled_ttl_never_expires(self):
        assert get_ttl_ms("getSlot", ttl_disabled=True) is None
        assert get_ttl_ms("getSomethingNew", ttl_disabled=True) is None

    def test_tier_lookup(self):
        assert get_tier_for_method("getBlock") == TtlTier.HISTORICAL
        assert get_tier_for_method("getInflationGovernor") == TtlTier.STATIC
        assert get_tier_for_method("nope") is None


class TestCacheKeys:
    """Canonical keys for logically identical calls."""

    def test_object_key_order_does_not_matter(self):
        a = primary_key("getAccountInfo", [WALLET, {"encoding": "base64", "commitment": "finalized"}])
        b = primary_key("getAccountInfo", [WALLET, {"commitment": "finalized", "encoding": "base64"}])
        assert a == b

    def test_integral_floats_match_ints(self):
        assert primary_key("getBlock", [1.0]) == primary_key("getBlock", [1])
        assert primary_key("getBlock", [1.5]) != primary_key("getBlock", [1])

    def test_bools_are_not_numbers(self):
        assert canonical_serialize([True]) == "[true]"
        assert canonical_serialize([True]) != canonical_serialize([1])

    def test_method_is_part_of_the_key(self):
        assert primary_key("getBalance", [WALLET]) != primary_key("getAccountInfo", [WALLET])

    def test_key_format(self):
        assert primary_key("getBalance", [WALLET]) == f'rpc:getBalance:["{WALLET}"]'
        assert primary_key("getSlot", []) == "rpc:getSlot:[]"

    def test_non_ascii_is_kept(self):
        assert canonical_serialize(["héllo"]) == '["héllo"]'

    def test_content_hash(self):
        digest = content_hash([WALLET, {"b": 1, "a": 2}])
        assert len(digest) == 64
        assert digest == content_hash([WALLET, {"a": 2, "b": 1.0}])
        assert digest != content_hash([WALLET])


class TestCacheEntry:
    """Entry serialization and expiry."""

    def test_round_trip_without_expiry(self):
        entry = CacheEntry(
            payload={"value": 5},
            metadata=CacheMetadata(created_at=1000, method="getVersion", params=[]),
        )
        data = entry.to_dict()
        assert "expiresAt" not in data["metadata"]
        assert CacheEntry.from_dict(data) == entry
        assert not entry.is_expired(10 ** 15)

    @pytest.mark.parametrize("at_ms,expired", [(1999, False), (2000, True), (2001, True)])
    def test_expiry_boundary(self, at_ms, expired):
        entry = CacheEntry(
            payload=None,
            metadata=CacheMetadata(created_at=1000, method="getSlot", expires_at=2000),
        )
        assert entry.is_expired(at_ms) is expired
