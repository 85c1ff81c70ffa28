from typing import List, Dict, Any
from sqlalchemy import select, func
from database.models.pool import Pool
from database.models.user_position import UserPosition, POSITION_TYPES
from database.repositories.base_repository import BaseRepository


class UserPositionRepository(BaseRepository[UserPosition]):
    """
    Read access to tracked positions. Rows are written by the wallet position
    collectors; add_position exists for registration from scripts and tests.
    """
    def __init__(self, engine=None):
        super().__init__(model_class=UserPosition, engine=engine)

    def get_pools_by_type(self, position_type: str) -> List[Dict[str, Any]]:
        if position_type not in POSITION_TYPES:
            raise ValueError(f"Unknown position type: {position_type}")
        with self.session() as session:
            stmt = (
                select(UserPosition.pool_address, UserPosition.network, Pool.token_pair, Pool.protocol)
                .outerjoin(Pool, Pool.pool_address == UserPosition.pool_address)
                .where(UserPosition.position_type == position_type)
                .order_by(UserPosition.created_at, UserPosition.id)
            )
            return [dict(row._mapping) for row in session.execute(stmt)]

    def add_position(self, pool_address: str, network: str, position_type: str = 'active') -> None:
        if position_type not in POSITION_TYPES:
            raise ValueError(f"Unknown position type: {position_type}")
        stmt = self.dialect_insert(UserPosition).values(
            pool_address=pool_address,
            network=network,
            position_type=position_type,
        ).on_conflict_do_nothing(index_elements=['pool_address', 'position_type'])
        with self.session() as session:
            session.execute(stmt)

    def count(self) -> int:
        with self.session() as session:
            return session.execute(select(func.count()).select_from(UserPosition)).scalar_one()
