from sqlalchemy import Column, String, Integer, DateTime, ForeignKey, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base

POSITION_TYPES = ('active', 'watchlist')

class UserPosition(Base):
    __tablename__ = 'user_positions'

    id = Column(Integer, primary_key=True)
    pool_address = Column(String(255), ForeignKey('pools.pool_address'), nullable=False)
    network = Column(String(64), nullable=False)
    position_type = Column(String(32), nullable=False, default='active')
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    pool = relationship("Pool", back_populates="positions")

    __table_args__ = (
        UniqueConstraint('pool_address', 'position_type', name='user_positions_pool_type_key'),
        CheckConstraint("position_type IN ('active', 'watchlist')", name='user_positions_type_check'),
    )
