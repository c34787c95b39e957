"""
Database models for the gateway's durable stores.

blobs       - primary cache payloads keyed by the canonical cache key
kv_entries  - secondary index and metrics snapshot, with per-row expiry
"""
from sqlalchemy import BigInteger, Column, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class Blob(Base):
    """
    Opaque object in the blob store.

    One row per primary cache key; a rewrite replaces the body.
    """
    __tablename__ = "blobs"

    key = Column(String, primary_key=True)
    body = Column(Text, nullable=False)
    updated_at = Column(BigInteger, nullable=False)  # epoch ms

    def __repr__(self):
        return f"<Blob(key='{self.key}')>"


class KeyValueEntry(Base):
    """
    Small string value with optional store-level expiry.
    """
    __tablename__ = "kv_entries"

    key = Column(String, primary_key=True)
    value = Column(Text, nullable=False)
    expires_at = Column(BigInteger, nullable=True, index=True)  # epoch ms

    def __repr__(self):
        return f"<KeyValueEntry(key='{self.key}', expires_at={self.expires_at})>"
