from datetime import datetime
from typing import List, Optional, Dict, Any, Tuple
from sqlalchemy import select, func
from database.models.price_data import PriceData
from database.repositories.base_repository import BaseRepository


class PriceDataRepository(BaseRepository[PriceData]):
    """
    Repository for the append-only price series. Rows are never updated or deleted;
    a second insert for the same (pool_address, timestamp) raises DuplicateEntityError.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=PriceData, engine=engine)

    def insert_point(self, point: Dict[str, Any]) -> None:
        """
        Insert a single price point as its own atomic statement.
        """
        with self.session() as session:
            session.add(PriceData(
                timestamp=point['timestamp'],
                pool_address=point['pool_address'],
                network=point['network'],
                price=point['price'],
                volume_usd=point.get('volume_usd', 0.0),
                log_return=point.get('log_return'),
            ))

    def get_series(self, pool_address: str, since: Optional[datetime] = None,
                   limit: Optional[int] = None) -> List[PriceData]:
        """
        Price points ascending by timestamp. With a limit, the most recent
        `limit` points are returned, still in ascending order.
        """
        with self.session() as session:
            stmt = select(PriceData).where(PriceData.pool_address == pool_address)
            if since is not None:
                stmt = stmt.where(PriceData.timestamp >= since)
            if limit is not None:
                stmt = stmt.order_by(PriceData.timestamp.desc()).limit(limit)
                results = list(reversed(session.execute(stmt).scalars().all()))
            else:
                stmt = stmt.order_by(PriceData.timestamp)
                results = session.execute(stmt).scalars().all()
            session.expunge_all()
            return results

    def get_latest(self, pool_address: str) -> Optional[PriceData]:
        with self.session() as session:
            stmt = (
                select(PriceData)
                .where(PriceData.pool_address == pool_address)
                .order_by(PriceData.timestamp.desc())
                .limit(1)
            )
            return session.execute(stmt).scalars().first()

    def get_latest_before(self, pool_address: str, timestamp: datetime) -> Optional[PriceData]:
        """Newest stored point strictly older than the given timestamp."""
        with self.session() as session:
            stmt = (
                select(PriceData)
                .where(PriceData.pool_address == pool_address, PriceData.timestamp < timestamp)
                .order_by(PriceData.timestamp.desc())
                .limit(1)
            )
            return session.execute(stmt).scalars().first()

    def get_coverage(self, pool_address: str) -> Tuple[int, Optional[datetime], Optional[datetime]]:
        """(count, oldest timestamp, newest timestamp) for a pool."""
        with self.session() as session:
            stmt = select(
                func.count(PriceData.id),
                func.min(PriceData.timestamp),
                func.max(PriceData.timestamp),
            ).where(PriceData.pool_address == pool_address)
            count, oldest, newest = session.execute(stmt).one()
            return count or 0, oldest, newest

    def count(self) -> int:
        with self.session() as session:
            return session.execute(select(func.count()).select_from(PriceData)).scalar_one()
