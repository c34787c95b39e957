"""
TTL configuration and method-to-tier mapping.
"""
from typing import Dict, Optional

from .core import TtlTier

ONE_SECOND_MS = 1000
ONE_MINUTE_MS = 60 * ONE_SECOND_MS
ONE_HOUR_MS = 60 * ONE_MINUTE_MS
ONE_DAY_MS = 24 * ONE_HOUR_MS
ONE_WEEK_MS = 7 * ONE_DAY_MS
ONE_MONTH_MS = 30 * ONE_DAY_MS

DEFAULT_CACHE_TTL_MINUTES = 10080  # 7 days


# Cache lifetime by tier (milliseconds)
TTL_CONFIG: Dict[TtlTier, int] = {
    TtlTier.VOLATILE: 30 * ONE_SECOND_MS,
    TtlTier.EPOCH: 5 * ONE_MINUTE_MS,
    TtlTier.ACCOUNT: ONE_HOUR_MS,
    TtlTier.HISTORICAL: ONE_MONTH_MS,
    TtlTier.SUPPLY: ONE_DAY_MS,
    TtlTier.STATIC: ONE_WEEK_MS,
}


METHOD_TIERS: Dict[str, TtlTier] = {
    # Volatile: must be very fresh
    "getSlot": TtlTier.VOLATILE,
    "getLatestBlockhash": TtlTier.VOLATILE,
    "isBlockhashValid": TtlTier.VOLATILE,
    # Epoch / fee level
    "getEpochInfo": TtlTier.EPOCH,
    "getFees": TtlTier.EPOCH,
    "getFeeForMessage": TtlTier.EPOCH,
    # Account and token state
    "getAccountInfo": TtlTier.ACCOUNT,
    "getMultipleAccounts": TtlTier.ACCOUNT,
    "getBalance": TtlTier.ACCOUNT,
    "getTokenAccountBalance": TtlTier.ACCOUNT,
    "getTokenAccountsByOwner": TtlTier.ACCOUNT,
    "getVoteAccounts": TtlTier.ACCOUNT,
    "getBlockHeight": TtlTier.ACCOUNT,
    # Confirmed history is immutable
    "getTransaction": TtlTier.HISTORICAL,
    "getBlock": TtlTier.HISTORICAL,
    # Slowly varying
    "getSignaturesForAddress": TtlTier.SUPPLY,
    "getProgramAccounts": TtlTier.SUPPLY,
    "getSupply": TtlTier.SUPPLY,
    "getTokenSupply": TtlTier.SUPPLY,
    "getInflationRate": TtlTier.SUPPLY,
    # Node metadata, network constants
    "getMinimumBalanceForRentExemption": TtlTier.STATIC,
    "getVersion": TtlTier.STATIC,
    "getIdentity": TtlTier.STATIC,
    "getInflationGovernor": TtlTier.STATIC,
}

# Methods fresher than their tier default
METHOD_TTL_OVERRIDES_MS: Dict[str, int] = {
    "getLatestBlockhash": 20 * ONE_SECOND_MS,
    "isBlockhashValid": 20 * ONE_SECOND_MS,
}


def get_tier_for_method(method: str) -> Optional[TtlTier]:
    """Tier for a known method, None for methods without one."""
    return METHOD_TIERS.get(method)


def get_ttl_ms(
    method: str,
    default_minutes: Optional[int] = DEFAULT_CACHE_TTL_MINUTES,
    ttl_disabled: bool = False,
) -> Optional[int]:
    """
    Cache lifetime for a method.

    Args:
        method: RPC method name
        default_minutes: Lifetime for methods without a tier
        ttl_disabled: When True every entry lives forever

    Returns:
        Lifetime in milliseconds, or None for "never expires"
    """
    if ttl_disabled:
        return None

    if method in METHOD_TTL_OVERRIDES_MS:
        return METHOD_TTL_OVERRIDES_MS[method]

    tier = METHOD_TIERS.get(method)
    if tier is not None:
        return TTL_CONFIG[tier]

    minutes = default_minutes or DEFAULT_CACHE_TTL_MINUTES
    return minutes * ONE_MINUTE_MS
