from typing import Optional, Dict, Any
from sqlalchemy import select, func
from database.models.pool import Pool
from database.repositories.base_repository import BaseRepository

# Columns an upsert may fill in on an existing pool, and only while they are still empty
_BACKFILLABLE_COLUMNS = (
    'token0_symbol', 'token1_symbol', 'token0_address', 'token1_address', 'fee_tier',
)


class PoolRepository(BaseRepository[Pool]):
    """
    Repository for Pool entity operations.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=Pool, engine=engine)

    def upsert_pool(self, pool_data: Dict[str, Any]) -> None:
        """
        Insert pool metadata. An existing pool is left as it is, except that
        empty symbol/address/fee columns and an 'unknown' protocol get filled.
        """
        values = {
            'pool_address': pool_data['pool_address'],
            'network': pool_data['network'],
            'token_pair': pool_data.get('token_pair') or 'UNKNOWN',
            'protocol': pool_data.get('protocol') or 'unknown',
            'is_active': pool_data.get('is_active', True),
        }
        for column in _BACKFILLABLE_COLUMNS:
            values[column] = pool_data.get(column)

        stmt = self.dialect_insert(Pool).values(**values)
        table = Pool.__table__
        set_ = {
            column: func.coalesce(table.c[column], stmt.excluded[column])
            for column in _BACKFILLABLE_COLUMNS
        }
        set_['protocol'] = func.coalesce(func.nullif(table.c.protocol, 'unknown'), stmt.excluded.protocol)
        stmt = stmt.on_conflict_do_update(index_elements=['pool_address'], set_=set_)

        with self.session() as session:
            session.execute(stmt)

    def get_pool(self, pool_address: str) -> Optional[Pool]:
        with self.session() as session:
            return session.get(Pool, pool_address)

    def count(self) -> int:
        with self.session() as session:
            return session.execute(select(func.count()).select_from(Pool)).scalar_one()
