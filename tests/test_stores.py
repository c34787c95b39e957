"""
Tests for the SQL stores, the primary store adapter and the secondary index.
"""
import json

import pytest

from rpc_cache.cache.index import (
    ACCOUNT,
    HASH,
    MINT,
    TX,
    InvalidAddressError,
    semantic_key,
)
from rpc_cache.cache.keys import primary_key
from rpc_cache.cache.store import PrimaryStore

from conftest import TX_SIGNATURE, USDC_MINT, WALLET


class TestSqlBlobStore:

    def test_put_get_overwrite(self, blobs):
        blobs.put("rpc:a", "one")
        blobs.put("rpc:a", "two")
        assert blobs.get("rpc:a") == "two"
        assert blobs.get("rpc:missing") is None

    def test_delete(self, blobs):
        blobs.put("rpc:a", "one")
        blobs.delete("rpc:a")
        assert blobs.get("rpc:a") is None
        blobs.delete("rpc:a")  # absent key is fine

    def test_list_keys_by_prefix(self, blobs):
        for key in ("rpc:getSlot:[]", "rpc:getBalance:[1]", "other"):
            blobs.put(key, "{}")
        assert blobs.list_keys("rpc:") == ["rpc:getBalance:[1]", "rpc:getSlot:[]"]
        assert blobs.list_keys("rpc:", limit=1) == ["rpc:getBalance:[1]"]
        assert len(blobs.list_keys()) == 3

    def test_prefix_wildcards_are_literal(self, blobs):
        blobs.put("a%b", "x")
        blobs.put("axb", "y")
        assert blobs.list_keys("a%") == ["a%b"]


class TestSqlKeyValueStore:

    def test_value_without_ttl_persists(self, kv, clock):
        kv.put("k", "v")
        clock.advance(10 ** 7)
        assert kv.get("k") == "v"

    def test_expired_value_reads_absent(self, kv, clock):
        kv.put("k", "v", ttl_seconds=60)
        clock.advance(59)
        assert kv.get("k") == "v"
        clock.advance(1)
        assert kv.get("k") is None

    def test_list_skips_expired(self, kv, clock):
        kv.put("acct:a", "1", ttl_seconds=10)
        kv.put("acct:b", "2", ttl_seconds=100)
        clock.advance(50)
        assert kv.list_keys("acct:") == ["acct:b"]


class TestPrimaryStore:

    def test_write_then_read(self, primary_store, clock):
        key = primary_key("getBalance", [WALLET])
        primary_store.write(key, {"value": 42}, "getBalance", [WALLET])
        entry = primary_store.read(key)
        assert entry.payload == {"value": 42}
        assert entry.metadata.method == "getBalance"
        assert entry.metadata.params == [WALLET]
        assert entry.metadata.expires_at == entry.metadata.created_at + 3_600_000

    def test_validity_boundary(self, primary_store, clock):
        entry = primary_store.write("rpc:getSlot:[]", 100, "getSlot", [])
        clock.advance(29)
        assert primary_store.is_valid(entry)
        clock.advance(1)
        assert not primary_store.is_valid(entry)

    def test_disabled_ttl(self, blobs, clock):
        store = PrimaryStore(blobs, default_ttl_minutes=10080, ttl_disabled=True, clock=clock)
        entry = store.write("rpc:getSlot:[]", 100, "getSlot", [])
        assert entry.metadata.expires_at is None
        clock.advance(10 ** 6)
        assert store.is_valid(store.read("rpc:getSlot:[]"))

    def test_corrupt_body_reads_as_miss(self, primary_store, blobs):
        blobs.put("rpc:bad", "not json")
        blobs.put("rpc:partial", json.dumps({"data": 1}))
        assert primary_store.read("rpc:bad") is None
        assert primary_store.read("rpc:partial") is None

    def test_read_raw(self, primary_store, blobs):
        blobs.put("rpc:bad", "not json")
        primary_store.write("rpc:getSlot:[]", 7, "getSlot", [])
        assert primary_store.read_raw("rpc:bad") == "not json"
        assert primary_store.read_raw("rpc:getSlot:[]")["data"] == 7
        assert primary_store.read_raw("rpc:none") is None

    def test_sweep_expired(self, primary_store, clock):
        primary_store.write("rpc:getSlot:[]", 1, "getSlot", [])
        primary_store.write("rpc:getVersion:[]", {"solana-core": "1.18"}, "getVersion", [])
        clock.advance(60)
        assert primary_store.sweep_expired() == 1
        assert primary_store.list_keys("rpc:") == ["rpc:getVersion:[]"]
        assert primary_store.sweep_expired() == 0


class TestSemanticKey:

    def test_indexed_methods(self):
        assert semantic_key("getTransaction", [TX_SIGNATURE]) == (TX, TX_SIGNATURE)
        assert semantic_key("getAccountInfo", [WALLET, {}]) == (ACCOUNT, WALLET)
        assert semantic_key("getBalance", [WALLET]) == (ACCOUNT, WALLET)
        assert semantic_key("getTokenSupply", [USDC_MINT]) == (MINT, USDC_MINT)

    def test_unindexed_calls(self):
        assert semantic_key("getSlot", []) is None
        assert semantic_key("getBalance", []) is None
        assert semantic_key("getBlock", [123]) is None
        assert semantic_key("getBalance", [123]) is None


class TestSecondaryIndex:

    def test_put_and_get(self, index):
        index.put(ACCOUNT, WALLET, "rpc:getBalance:x")
        assert index.get(ACCOUNT, WALLET) == "rpc:getBalance:x"
        assert index.get(ACCOUNT, "missing") is None

    def test_rejects_malformed_addresses(self, index):
        with pytest.raises(InvalidAddressError):
            index.put(ACCOUNT, "not-an-address", "rpc:x")
        with pytest.raises(InvalidAddressError):
            index.put(MINT, "0OIl" * 10, "rpc:x")

    def test_namespace_lifetimes(self, index, clock):
        index.put(ACCOUNT, WALLET, "rpc:a")
        index.put(TX, TX_SIGNATURE, "rpc:t")
        clock.advance(10 * 60)
        assert index.get(ACCOUNT, WALLET) is None
        assert index.get(TX, TX_SIGNATURE) == "rpc:t"

    def test_list_and_delete(self, index):
        index.put(ACCOUNT, WALLET, "rpc:a")
        index.put(HASH, "f" * 64, "rpc:a")
        assert index.list_keys("acct:") == [f"acct:{WALLET}"]
        index.delete(f"acct:{WALLET}")
        assert index.list_keys("acct:") == []
