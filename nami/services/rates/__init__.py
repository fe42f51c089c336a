"""
Rate Resolution Package

USD pricing for FIAT and CRYPTO assets with a per-day cache, an ordered
provider chain, one sequential request queue, and graceful degradation
to FALLBACK/FIXED rates.
"""

from nami.services.rates.cache import RateCache
from nami.services.rates.providers import (
    CoinGeckoProvider,
    ErApiProvider,
    ExchangeRateApiProvider,
    ExchangeRateHostProvider,
    FrankfurterProvider,
    RateProvider,
    closest_sample,
    crypto_id_for_symbol,
    default_providers,
)
from nami.services.rates.queue import (
    MalformedPayloadError,
    ProviderError,
    ProviderHTTPError,
    ProviderRequestQueue,
    ProviderTimeoutError,
    RateLimitedError,
    RetryPolicy,
)
from nami.services.rates.resolver import RateResolver, parse_instant

__all__ = [
    # Cache
    "RateCache",
    # Providers
    "CoinGeckoProvider",
    "ErApiProvider",
    "ExchangeRateApiProvider",
    "ExchangeRateHostProvider",
    "FrankfurterProvider",
    "RateProvider",
    "closest_sample",
    "crypto_id_for_symbol",
    "default_providers",
    # Queue & errors
    "MalformedPayloadError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderRequestQueue",
    "ProviderTimeoutError",
    "RateLimitedError",
    "RetryPolicy",
    # Resolver
    "RateResolver",
    "parse_instant",
]
