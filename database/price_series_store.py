import logging
from dataclasses import dataclass, asdict, is_dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, Optional

from database.db_utils import get_db_connection
from database.repositories.base_repository import as_utc
from database.repositories.exceptions import DatabaseConnectionError, DuplicateEntityError
from database.repositories.pool_repository import PoolRepository
from database.repositories.price_data_repository import PriceDataRepository
from database.repositories.pool_analytics_repository import PoolAnalyticsRepository
from database.repositories.user_position_repository import UserPositionRepository
from database.repositories.api_usage_repository import ApiUsageRepository

logger = logging.getLogger(__name__)


@dataclass
class PricePoint:
    timestamp: datetime
    pool_address: str
    network: str
    price: float
    volume_usd: float = 0.0
    log_return: Optional[float] = None


@dataclass
class InsertResult:
    inserted: bool
    duplicate: bool


@dataclass
class Coverage:
    count: int
    oldest_timestamp: Optional[datetime]
    newest_timestamp: Optional[datetime]
    day_span: float


def _to_point(row) -> PricePoint:
    return PricePoint(
        timestamp=as_utc(row.timestamp),
        pool_address=row.pool_address,
        network=row.network,
        price=row.price,
        volume_usd=row.volume_usd if row.volume_usd is not None else 0.0,
        log_return=row.log_return,
    )


class PriceSeriesStore:
    """
    Single entry point to persistence for the collectors, the analytics engine
    and the scheduler. All repositories share one engine.
    """

    def __init__(self, engine=None):
        if engine is None:
            engine = get_db_connection()
            if engine is None:
                raise DatabaseConnectionError("Failed to obtain database connection")
        self.engine = engine
        self.pools = PoolRepository(engine=engine)
        self.prices = PriceDataRepository(engine=engine)
        self.analytics = PoolAnalyticsRepository(engine=engine)
        self.positions = UserPositionRepository(engine=engine)
        self.api_usage = ApiUsageRepository(engine=engine)

    # --- Price series ---

    def upsert_pool(self, pool: Dict[str, Any]) -> None:
        self.pools.upsert_pool(pool)

    def insert_price_point(self, point: PricePoint) -> InsertResult:
        """
        Append one price point. A second write for the same pool and timestamp
        is reported as a duplicate; any other storage error propagates.
        """
        record = asdict(point)
        record['timestamp'] = as_utc(point.timestamp)
        try:
            self.prices.insert_point(record)
        except DuplicateEntityError:
            return InsertResult(inserted=False, duplicate=True)
        return InsertResult(inserted=True, duplicate=False)

    def query_series(self, pool_address: str, since: Optional[datetime] = None,
                     limit: Optional[int] = None) -> List[PricePoint]:
        rows = self.prices.get_series(pool_address, since=as_utc(since), limit=limit)
        return [_to_point(row) for row in rows]

    def coverage(self, pool_address: str) -> Coverage:
        count, oldest, newest = self.prices.get_coverage(pool_address)
        oldest, newest = as_utc(oldest), as_utc(newest)
        day_span = 0.0
        if oldest is not None and newest is not None:
            day_span = (newest - oldest).total_seconds() / 86400.0
        return Coverage(count=count, oldest_timestamp=oldest, newest_timestamp=newest, day_span=day_span)

    def latest_point(self, pool_address: str) -> Optional[PricePoint]:
        row = self.prices.get_latest(pool_address)
        return _to_point(row) if row is not None else None

    def point_before(self, pool_address: str, timestamp: datetime) -> Optional[PricePoint]:
        row = self.prices.get_latest_before(pool_address, as_utc(timestamp))
        return _to_point(row) if row is not None else None

    # --- Analytics ---

    def upsert_analytics(self, snapshot) -> None:
        """Replace the analytics snapshot for a pool."""
        record = asdict(snapshot) if is_dataclass(snapshot) else dict(snapshot)
        for key in ('oldest_data_timestamp', 'newest_data_timestamp', 'last_updated'):
            record[key] = as_utc(record.get(key))
        if record.get('last_updated') is None:
            record['last_updated'] = datetime.now(timezone.utc)
        self.analytics.upsert_snapshot(record)

    def get_analytics(self, pool_address: str):
        return self.analytics.get_snapshot(pool_address)

    def record_fvr_history(self, pool_address: str, day, fvr_value: float, fee_apr: float,
                           volatility: float, recommendation: str) -> None:
        self.analytics.upsert_fvr_history(pool_address, day, fvr_value, fee_apr, volatility, recommendation)

    def record_volatility_history(self, pool_address: str, day, volatilities: Dict[int, float]) -> None:
        self.analytics.upsert_volatility_history(pool_address, day, volatilities)

    def pools_needing_analytics(self, freshness: timedelta = timedelta(days=1),
                                now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        now = as_utc(now) or datetime.now(timezone.utc)
        pools = self.analytics.get_pools_needing_update(now - freshness)
        return [
            {'pool_address': p.pool_address, 'network': p.network,
             'token_pair': p.token_pair, 'protocol': p.protocol}
            for p in pools
        ]

    # --- Tier sources ---

    def active_positions(self) -> List[Dict[str, Any]]:
        return self.positions.get_pools_by_type('active')

    def watchlist(self) -> List[Dict[str, Any]]:
        return self.positions.get_pools_by_type('watchlist')

    def top_pools_by_tvl(self, exclude: Iterable[str] = (), limit: int = 50,
                         min_tvl: float = 0.0) -> List[Dict[str, Any]]:
        return self.analytics.get_top_by_tvl(exclude=exclude, limit=limit, min_tvl=min_tvl)

    # --- Bookkeeping ---

    def record_api_usage(self, service: str, endpoint: str, at: Optional[datetime] = None) -> None:
        at = as_utc(at) or datetime.now(timezone.utc)
        self.api_usage.increment(service, endpoint, at.strftime('%Y-%m-%d-%H'))

    def table_counts(self) -> Dict[str, int]:
        return {
            'pools': self.pools.count(),
            'price_data': self.prices.count(),
            'pool_analytics': self.analytics.count(),
            'user_positions': self.positions.count(),
            'api_usage': self.api_usage.count(),
        }
