import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

from api_clients.rate_limited_client import ProviderError
from data_ingestion.discover_pools import format_gecko_pool
from data_processing.quality_validator import validate_data_quality
from database.price_series_store import PricePoint
from database.repositories.exceptions import DatabaseConnectionError
from config import (
    BACKFILL_MAX_RETRIES,
    BACKFILL_RETRY_BASE_SECONDS,
    DELAY_BETWEEN_POOLS_SECONDS,
)

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BackfillResult:
    pool_address: str
    status: str  # sufficient | completed | failed
    data_points: int = 0
    days_covered: float = 0.0
    duplicates_skipped: int = 0
    error: Optional[str] = None


@dataclass
class CollectionResult:
    pool_address: str
    collected: bool
    duplicate: bool = False
    error: Optional[str] = None


@dataclass
class BackfillSummary:
    pools_processed: int = 0
    pools_succeeded: int = 0
    data_points: int = 0
    duplicates_skipped: int = 0
    failures: List[BackfillResult] = field(default_factory=list)


class BackfillEngine:
    """
    Fills a pool's hourly price history from GeckoTerminal, walking backwards
    page by page, and appends the newest candle on incremental runs.
    """

    def __init__(self, store, gecko_client,
                 max_retries: int = BACKFILL_MAX_RETRIES,
                 retry_base_delay: float = BACKFILL_RETRY_BASE_SECONDS,
                 delay_between_pools: float = DELAY_BETWEEN_POOLS_SECONDS,
                 page_size: int = 100,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], datetime] = _utcnow):
        self.store = store
        self.gecko_client = gecko_client
        self.max_retries = max_retries
        self.retry_base_delay = retry_base_delay
        self.delay_between_pools = delay_between_pools
        self.page_size = page_size
        self._sleep = sleep
        self._clock = clock

    def _fetch_with_retry(self, pool: Dict[str, Any], limit: int, before_timestamp: Optional[int] = None) -> list:
        """
        Fetch one OHLCV page. Provider errors are retried up to max_retries
        times, waiting base * retry_count between attempts.
        """
        retries = 0
        while True:
            try:
                return self.gecko_client.get_ohlcv(
                    pool['network'], pool['pool_address'], 'hour', limit, before_timestamp=before_timestamp
                )
            except ProviderError as e:
                retries += 1
                if retries > self.max_retries:
                    raise
                wait = self.retry_base_delay * retries
                logger.warning(f"    ⚠️  Attempt {retries}/{self.max_retries} failed for "
                               f"{pool['pool_address']}: {e}. Retrying in {wait:.1f}s...")
                self._sleep(wait)

    def _with_metadata(self, pool: Dict[str, Any]) -> Dict[str, Any]:
        """Pools known only by address get their pair, dex and tokens from GeckoTerminal."""
        if pool.get('token_pair') and pool.get('protocol'):
            return pool
        try:
            response = self.gecko_client.get_pool_data(pool['network'], pool['pool_address'])
        except ProviderError as e:
            logger.warning(f"    ⚠️  No GeckoTerminal metadata for {pool['pool_address']}: {e}")
            return pool
        details = format_gecko_pool((response or {}).get('data') or {}, pool['network'])
        if details is None:
            return pool
        details.update({key: value for key, value in pool.items() if value is not None})
        return details

    def _persist_candles(self, pool: Dict[str, Any], candles: list) -> Dict[str, int]:
        """
        Store candles oldest first. Each log return is taken against the point
        stored (or written) immediately before it.
        """
        inserted = 0
        duplicates = 0
        ordered = sorted(candles, key=lambda c: c[0])
        previous = None
        for candle in ordered:
            timestamp, close = candle[0], candle[4]
            volume = candle[5] if len(candle) > 5 else 0
            if close is None or not close > 0:
                continue

            ts = datetime.fromtimestamp(int(timestamp), tz=timezone.utc)
            if previous is None:
                anchor = self.store.point_before(pool['pool_address'], ts)
                previous = anchor.price if anchor is not None else None
            log_return = math.log(close / previous) if previous else None

            result = self.store.insert_price_point(PricePoint(
                timestamp=ts,
                pool_address=pool['pool_address'],
                network=pool['network'],
                price=float(close),
                volume_usd=float(volume or 0),
                log_return=log_return,
            ))
            if result.duplicate:
                duplicates += 1
            else:
                inserted += 1
            previous = float(close)
        return {'inserted': inserted, 'duplicates': duplicates}

    def backfill_pool(self, pool: Dict[str, Any], target_days: int) -> BackfillResult:
        address = pool['pool_address']
        coverage = self.store.coverage(address)
        if coverage.day_span >= target_days:
            logger.info(f"  ✅ {pool.get('token_pair', address)} already has {coverage.day_span:.1f} days of data")
            return BackfillResult(address, 'sufficient', data_points=coverage.count,
                                  days_covered=coverage.day_span)

        self.store.upsert_pool(self._with_metadata(pool))

        page_budget = math.ceil(target_days * 24 / self.page_size)
        target_start = self._clock() - timedelta(days=target_days)
        cursor = None
        inserted = 0
        duplicates = 0

        for page in range(page_budget):
            try:
                candles = self._fetch_with_retry(pool, self.page_size, before_timestamp=cursor)
            except ProviderError as e:
                logger.error(f"  ❌ Backfill failed for {address} after {self.max_retries} retries: {e}")
                return BackfillResult(address, 'failed', data_points=inserted,
                                      duplicates_skipped=duplicates, error=str(e))

            if not candles:
                break

            validation = validate_data_quality([c[4] for c in candles], 'prices')
            if not validation.valid:
                logger.warning(f"     ⚠️  Data quality issue for {address}: {validation.error}")
                return BackfillResult(address, 'failed', data_points=inserted,
                                      duplicates_skipped=duplicates, error=validation.error)

            counts = self._persist_candles(pool, candles)
            inserted += counts['inserted']
            duplicates += counts['duplicates']

            oldest = min(int(c[0]) for c in candles)
            logger.info(f"     Page {page + 1}/{page_budget}: {len(candles)} candles, "
                        f"{counts['inserted']} new, back to {datetime.fromtimestamp(oldest, tz=timezone.utc):%Y-%m-%d %H:%M}")
            if len(candles) < self.page_size or oldest <= target_start.timestamp():
                break
            cursor = oldest

        coverage = self.store.coverage(address)
        return BackfillResult(address, 'completed', data_points=inserted,
                              days_covered=coverage.day_span, duplicates_skipped=duplicates)

    def collect_latest(self, pool: Dict[str, Any]) -> CollectionResult:
        """
        Append the newest hourly candle for a pool.
        """
        address = pool['pool_address']
        try:
            candles = self._fetch_with_retry(pool, 2)
        except ProviderError as e:
            return CollectionResult(address, collected=False, error=str(e))

        if not candles:
            return CollectionResult(address, collected=False, error='No OHLCV data returned')

        newest = max(candles, key=lambda c: c[0])
        if len(newest) < 5:
            return CollectionResult(address, collected=False, error=f'Malformed candle: {newest}')
        close = newest[4]
        if close is None or not close > 0:
            return CollectionResult(address, collected=False, error='Non-positive close price')

        ts = datetime.fromtimestamp(int(newest[0]), tz=timezone.utc)
        anchor = self.store.latest_point(address)
        if anchor is not None and anchor.timestamp >= ts:
            # Out-of-order candle; anchor on whatever precedes it instead.
            anchor = self.store.point_before(address, ts)
        log_return = math.log(close / anchor.price) if anchor is not None and anchor.price > 0 else None

        result = self.store.insert_price_point(PricePoint(
            timestamp=ts,
            pool_address=address,
            network=pool['network'],
            price=float(close),
            volume_usd=float(newest[5] if len(newest) > 5 and newest[5] else 0),
            log_return=log_return,
        ))
        if result.duplicate:
            return CollectionResult(address, collected=False, duplicate=True)
        return CollectionResult(address, collected=True)

    def backfill_pools(self, pools: List[Dict[str, Any]], target_days: int) -> BackfillSummary:
        summary = BackfillSummary()
        for i, pool in enumerate(pools):
            if i > 0 and self.delay_between_pools > 0:
                self._sleep(self.delay_between_pools)

            logger.info(f"[{i + 1}/{len(pools)}] {pool.get('token_pair', pool['pool_address'])} ({pool['network']})")
            try:
                result = self.backfill_pool(pool, target_days)
            except DatabaseConnectionError:
                raise
            except Exception as e:
                logger.error(f"  ❌ Unexpected error backfilling {pool['pool_address']}: {e}")
                result = BackfillResult(pool['pool_address'], 'failed', error=str(e))

            summary.pools_processed += 1
            summary.data_points += result.data_points if result.status == 'completed' else 0
            summary.duplicates_skipped += result.duplicates_skipped
            if result.status == 'failed':
                summary.failures.append(result)
            else:
                summary.pools_succeeded += 1

        logger.info("=" * 60)
        logger.info("📊 BACKFILL SUMMARY")
        logger.info(f"   Pools processed: {summary.pools_processed}")
        logger.info(f"   Pools succeeded: {summary.pools_succeeded}")
        logger.info(f"   New data points: {summary.data_points}")
        logger.info(f"   Duplicates skipped: {summary.duplicates_skipped}")
        logger.info(f"   Failures: {len(summary.failures)}")
        logger.info("=" * 60)
        return summary
