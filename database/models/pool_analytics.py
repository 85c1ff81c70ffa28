from sqlalchemy import Column, String, Integer, Float, DateTime, Date, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base

class PoolAnalytics(Base):
    __tablename__ = 'pool_analytics'

    pool_address = Column(String(255), ForeignKey('pools.pool_address'), primary_key=True)
    network = Column(String(64), nullable=False)
    token_pair = Column(String(255), nullable=False)

    # Current pool state
    tvl_usd = Column(Float)
    volume_24h = Column(Float)
    fees_24h = Column(Float)
    apy_base = Column(Float)
    apy_reward = Column(Float)

    volatility_1d = Column(Float)
    volatility_7d = Column(Float)
    volatility_30d = Column(Float)

    fee_apr_pool = Column(Float)
    fee_apr_position = Column(Float)
    fvr = Column(Float)
    il_risk_score = Column(Integer)
    recommendation = Column(String(32), nullable=False)
    expected_il_rate = Column(Float)
    breakeven_fee_apr = Column(Float)

    data_points_count = Column(Integer)
    oldest_data_timestamp = Column(DateTime(timezone=True))
    newest_data_timestamp = Column(DateTime(timezone=True))
    last_updated = Column(DateTime(timezone=True), server_default=func.now())

    pool = relationship("Pool", back_populates="analytics")


class FvrHistory(Base):
    __tablename__ = 'fvr_history'

    id = Column(Integer, primary_key=True)
    pool_address = Column(String(255), ForeignKey('pools.pool_address'), nullable=False)
    date = Column(Date, nullable=False)
    fvr_value = Column(Float, nullable=False)
    fee_apr = Column(Float, nullable=False)
    volatility = Column(Float, nullable=False)
    recommendation = Column(String(32), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('pool_address', 'date', name='fvr_history_pool_date_key'),
    )


class VolatilityHistory(Base):
    __tablename__ = 'volatility_history'

    id = Column(Integer, primary_key=True)
    pool_address = Column(String(255), ForeignKey('pools.pool_address'), nullable=False)
    date = Column(Date, nullable=False)
    volatility_value = Column(Float, nullable=False)
    period_days = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('pool_address', 'date', 'period_days', name='volatility_history_pool_date_period_key'),
    )
