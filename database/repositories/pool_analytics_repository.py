from datetime import datetime, date
from typing import List, Optional, Dict, Any, Iterable
from sqlalchemy import select, func, or_
from database.models.pool import Pool
from database.models.price_data import PriceData
from database.models.pool_analytics import PoolAnalytics, FvrHistory, VolatilityHistory
from database.repositories.base_repository import BaseRepository

_SNAPSHOT_COLUMNS = (
    'network', 'token_pair', 'tvl_usd', 'volume_24h', 'fees_24h', 'apy_base', 'apy_reward',
    'volatility_1d', 'volatility_7d', 'volatility_30d', 'fee_apr_pool', 'fee_apr_position',
    'fvr', 'il_risk_score', 'recommendation', 'expected_il_rate', 'breakeven_fee_apr',
    'data_points_count', 'oldest_data_timestamp', 'newest_data_timestamp', 'last_updated',
)


class PoolAnalyticsRepository(BaseRepository[PoolAnalytics]):
    """
    Repository for analytics snapshots and their daily history tables.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=PoolAnalytics, engine=engine)

    def upsert_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """
        Replace the snapshot for a pool. Every column is overwritten.
        """
        values = {'pool_address': snapshot['pool_address']}
        for column in _SNAPSHOT_COLUMNS:
            values[column] = snapshot.get(column)

        stmt = self.dialect_insert(PoolAnalytics).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=['pool_address'],
            set_={column: stmt.excluded[column] for column in _SNAPSHOT_COLUMNS},
        )
        with self.session() as session:
            session.execute(stmt)

    def upsert_fvr_history(self, pool_address: str, day: date, fvr_value: float,
                           fee_apr: float, volatility: float, recommendation: str) -> None:
        stmt = self.dialect_insert(FvrHistory).values(
            pool_address=pool_address,
            date=day,
            fvr_value=fvr_value,
            fee_apr=fee_apr,
            volatility=volatility,
            recommendation=recommendation,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=['pool_address', 'date'],
            set_={
                'fvr_value': stmt.excluded.fvr_value,
                'fee_apr': stmt.excluded.fee_apr,
                'volatility': stmt.excluded.volatility,
                'recommendation': stmt.excluded.recommendation,
            },
        )
        with self.session() as session:
            session.execute(stmt)

    def upsert_volatility_history(self, pool_address: str, day: date,
                                  volatilities: Dict[int, float]) -> None:
        """Store one row per period (in days) for the given UTC day."""
        if not volatilities:
            return
        rows = [
            {'pool_address': pool_address, 'date': day, 'volatility_value': value, 'period_days': period}
            for period, value in volatilities.items()
        ]
        stmt = self.dialect_insert(VolatilityHistory).values(rows)
        stmt = stmt.on_conflict_do_update(
            index_elements=['pool_address', 'date', 'period_days'],
            set_={'volatility_value': stmt.excluded.volatility_value},
        )
        with self.session() as session:
            session.execute(stmt)

    def get_snapshot(self, pool_address: str) -> Optional[PoolAnalytics]:
        with self.session() as session:
            return session.get(PoolAnalytics, pool_address)

    def get_fvr_history(self, pool_address: str) -> List[FvrHistory]:
        with self.session() as session:
            stmt = select(FvrHistory).where(FvrHistory.pool_address == pool_address).order_by(FvrHistory.date)
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def get_volatility_history(self, pool_address: str) -> List[VolatilityHistory]:
        with self.session() as session:
            stmt = (
                select(VolatilityHistory)
                .where(VolatilityHistory.pool_address == pool_address)
                .order_by(VolatilityHistory.date, VolatilityHistory.period_days)
            )
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def get_top_by_tvl(self, exclude: Iterable[str] = (), limit: int = 50,
                       min_tvl: float = 0.0) -> List[Dict[str, Any]]:
        """
        Pools ranked by snapshot TVL, descending, skipping the excluded addresses.
        """
        exclude = list(exclude)
        with self.session() as session:
            stmt = (
                select(PoolAnalytics.pool_address, PoolAnalytics.network, PoolAnalytics.token_pair,
                       PoolAnalytics.tvl_usd, Pool.protocol)
                .join(Pool, Pool.pool_address == PoolAnalytics.pool_address)
                .where(PoolAnalytics.tvl_usd >= min_tvl)
            )
            if exclude:
                stmt = stmt.where(PoolAnalytics.pool_address.not_in(exclude))
            stmt = stmt.order_by(PoolAnalytics.tvl_usd.desc()).limit(limit)
            return [dict(row._mapping) for row in session.execute(stmt)]

    def get_top_by_fvr(self, limit: int = 20, min_tvl: float = 0.0) -> List[PoolAnalytics]:
        """Snapshots with a computed FVR, best first."""
        with self.session() as session:
            stmt = (
                select(PoolAnalytics)
                .where(PoolAnalytics.fvr.is_not(None))
                .where(or_(PoolAnalytics.tvl_usd.is_(None), PoolAnalytics.tvl_usd >= min_tvl))
                .order_by(PoolAnalytics.fvr.desc())
                .limit(limit)
            )
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def get_pools_needing_update(self, cutoff: datetime) -> List[Pool]:
        """
        Pools with price history whose snapshot is missing or last updated before the cutoff.
        """
        with self.session() as session:
            has_data = select(PriceData.pool_address).distinct()
            stmt = (
                select(Pool)
                .outerjoin(PoolAnalytics, PoolAnalytics.pool_address == Pool.pool_address)
                .where(Pool.pool_address.in_(has_data))
                .where(or_(PoolAnalytics.pool_address.is_(None), PoolAnalytics.last_updated < cutoff))
                .order_by(Pool.pool_address)
            )
            results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def count(self) -> int:
        with self.session() as session:
            return session.execute(select(func.count()).select_from(PoolAnalytics)).scalar_one()
