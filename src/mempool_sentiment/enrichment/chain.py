"""Ethereum JSON-RPC client used to enrich pending transaction hashes.

This module provides the enrichment gateway for the batch scheduler with:
- Rate limiting to respect provider limits
- Retry logic with exponential backoff
- Failover to secondary RPC URL
- Optional Redis caching of resolved transaction details
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any

from redis.asyncio import Redis
from web3 import AsyncWeb3
from web3.exceptions import TransactionNotFound, Web3Exception
from web3.providers import AsyncHTTPProvider

from mempool_sentiment.ingestor.models import TransactionDetail, TransactionRef

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_CACHE_TTL_SECONDS = 900  # 15 minutes
DEFAULT_MAX_REQUESTS_PER_SECOND = 25
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 0.5

# Errors worth retrying: provider errors plus transport failures.
RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (Web3Exception, OSError, TimeoutError)


class EnrichmentError(Exception):
    """Base exception for enrichment client errors."""


class RPCError(EnrichmentError):
    """Raised when an RPC call fails after all retries."""


class TransactionLookupError(EnrichmentError, LookupError):
    """Raised when transaction detail cannot be fetched for a hash."""

    def __init__(self, tx_hash: str, reason: str) -> None:
        super().__init__(f"Lookup failed for {tx_hash}: {reason}")
        self.tx_hash = tx_hash
        self.reason = reason


@dataclass
class RateLimiter:
    """Token bucket rate limiter."""

    max_tokens: float
    refill_rate: float  # tokens per second
    tokens: float
    last_refill: float

    @classmethod
    def create(cls, max_requests_per_second: float) -> "RateLimiter":
        """Create a rate limiter with specified max requests per second."""
        return cls(
            max_tokens=max_requests_per_second,
            refill_rate=max_requests_per_second,
            tokens=max_requests_per_second,
            last_refill=time.monotonic(),
        )

    def _refill(self) -> None:
        """Refill tokens based on elapsed time."""
        now = time.monotonic()
        elapsed = now - self.last_refill
        self.tokens = min(self.max_tokens, self.tokens + elapsed * self.refill_rate)
        self.last_refill = now

    async def acquire(self, tokens: float = 1.0) -> None:
        """Acquire tokens, waiting if necessary."""
        while True:
            self._refill()
            if self.tokens >= tokens:
                self.tokens -= tokens
                return
            # Wait for tokens to refill
            wait_time = (tokens - self.tokens) / self.refill_rate
            await asyncio.sleep(wait_time)


class EthereumClient:
    """Ethereum client that resolves pending transaction hashes to details.

    Safe to call concurrently: the scheduler fans out a whole batch at once.

    Example:
        ```python
        client = EthereumClient(
            rpc_url="https://eth.drpc.org",
            fallback_rpc_url="https://ethereum-rpc.publicnode.com",
        )
        detail = await client.fetch_detail("0x...")
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        fallback_rpc_url: str | None = None,
        redis: Redis | None = None,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        max_requests_per_second: float = DEFAULT_MAX_REQUESTS_PER_SECOND,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ) -> None:
        """Initialize the Ethereum client.

        Args:
            rpc_url: Primary HTTP JSON-RPC endpoint URL.
            fallback_rpc_url: Optional fallback RPC URL for failover.
            redis: Optional Redis client for caching.
            cache_ttl_seconds: Cache TTL in seconds.
            max_requests_per_second: Rate limit for RPC calls.
            max_retries: Maximum retry attempts on failure.
            retry_delay_seconds: Initial delay between retries.
        """
        self._rpc_url = rpc_url
        self._fallback_rpc_url = fallback_rpc_url
        self._redis = redis
        self._cache_ttl = cache_ttl_seconds
        self._max_retries = max_retries
        self._retry_delay = retry_delay_seconds

        self._w3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self._w3_fallback: AsyncWeb3[AsyncHTTPProvider] | None = None
        if fallback_rpc_url:
            self._w3_fallback = AsyncWeb3(AsyncHTTPProvider(fallback_rpc_url))

        self._rate_limiter = RateLimiter.create(max_requests_per_second)

        # Track primary RPC health
        self._primary_healthy = True
        self._last_primary_check = 0.0
        self._primary_recovery_interval = 60.0  # Try primary again after 60s

        self._cache_prefix = "mempool:tx:"

    def _cache_key(self, tx_hash: str) -> str:
        return f"{self._cache_prefix}{tx_hash.lower()}"

    async def _get_cached(self, key: str) -> str | None:
        """Get value from cache."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if isinstance(value, bytes):
                return value.decode()
            return str(value) if value is not None else None
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None

    async def _set_cached(self, key: str, value: str) -> None:
        """Set value in cache."""
        if not self._redis:
            return
        try:
            await self._redis.set(key, value, ex=self._cache_ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    def _should_try_primary(self) -> bool:
        """Check if we should try the primary RPC."""
        if self._primary_healthy:
            return True
        # Periodically retry primary
        now = time.monotonic()
        if now - self._last_primary_check > self._primary_recovery_interval:
            self._last_primary_check = now
            return True
        return False

    async def _call_with_retries(
        self,
        w3: AsyncWeb3[AsyncHTTPProvider],
        label: str,
        func_name: str,
        *args: Any,
    ) -> tuple[bool, Any, Exception | None]:
        delay = self._retry_delay
        last_error: Exception | None = None
        for attempt in range(self._max_retries):
            try:
                method = getattr(w3.eth, func_name)
                return True, await method(*args), None
            except TransactionNotFound:
                # Dropped or not yet propagated; retrying won't help.
                raise
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning(
                    "%s RPC %s failed (attempt %d/%d): %s",
                    label,
                    func_name,
                    attempt + 1,
                    self._max_retries,
                    e,
                )
                if attempt < self._max_retries - 1:
                    await asyncio.sleep(delay)
                    delay *= 2  # Exponential backoff
        return False, None, last_error

    async def _execute_with_retry(self, func_name: str, *args: Any) -> Any:
        """Execute an RPC call with retry and failover logic.

        Args:
            func_name: Name of the web3.eth method to call.
            *args: Positional arguments for the method.

        Returns:
            Result from the RPC call.

        Raises:
            RPCError: If all retries and failover fail.
            TransactionNotFound: If the node does not know the transaction.
        """
        await self._rate_limiter.acquire()

        last_error: Exception | None = None

        if self._should_try_primary():
            ok, result, last_error = await self._call_with_retries(self._w3, "Primary", func_name, *args)
            if ok:
                self._primary_healthy = True
                return result
            self._primary_healthy = False
            self._last_primary_check = time.monotonic()

        if self._w3_fallback:
            ok, result, error = await self._call_with_retries(self._w3_fallback, "Fallback", func_name, *args)
            if ok:
                logger.info("Fallback RPC succeeded for %s", func_name)
                return result
            last_error = error or last_error

        raise RPCError(f"RPC call {func_name} failed after all retries: {last_error}")

    async def fetch_detail(self, tx_hash: TransactionRef) -> TransactionDetail:
        """Resolve a transaction hash to its detail.

        Args:
            tx_hash: Pending transaction hash.

        Returns:
            TransactionDetail with selector, value and destination.

        Raises:
            TransactionLookupError: If the transaction cannot be fetched.
        """
        cache_key = self._cache_key(tx_hash)
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return TransactionDetail.from_dict(json.loads(cached))

        try:
            tx = await self._execute_with_retry("get_transaction", tx_hash)
        except TransactionNotFound as e:
            raise TransactionLookupError(tx_hash, "not found") from e
        except RPCError as e:
            raise TransactionLookupError(tx_hash, str(e)) from e

        if tx is None:
            raise TransactionLookupError(tx_hash, "empty response")

        detail = TransactionDetail.from_transaction(tx)
        await self._set_cached(cache_key, json.dumps(detail.to_dict()))
        return detail

    async def get_block_transaction_count(self, block_number: int) -> int:
        """Get the number of transactions included in a block."""
        if block_number < 0:
            raise ValueError("block_number must be >= 0")
        count = await self._execute_with_retry("get_block_transaction_count", block_number)
        return int(count)

    async def health_check(self) -> bool:
        """Check if the client can connect to the RPC.

        Returns:
            True if healthy, False otherwise.
        """
        try:
            await self._execute_with_retry("get_block_number")
            return True
        except RPCError:
            return False

    async def aclose(self) -> None:
        """Close async HTTP provider sessions to avoid leaked aiohttp sessions."""
        providers = [self._w3.provider]
        if self._w3_fallback is not None:
            providers.append(self._w3_fallback.provider)

        for provider in providers:
            disconnect = getattr(provider, "disconnect", None)
            if not callable(disconnect):
                continue
            try:
                result = disconnect()
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("Failed to close RPC provider session: %s", e)
