from sqlalchemy import Column, String, Integer, BigInteger, Float, DateTime, UniqueConstraint, Index
from sqlalchemy.sql import func
from database.models.base import Base

class PriceData(Base):
    __tablename__ = 'price_data'

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    pool_address = Column(String(255), nullable=False)
    network = Column(String(64), nullable=False)
    price = Column(Float, nullable=False)
    volume_usd = Column(Float)
    log_return = Column(Float)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('pool_address', 'timestamp', name='price_data_pool_address_timestamp_key'),
        Index('idx_price_data_pool_time', 'pool_address', 'timestamp'),
    )
