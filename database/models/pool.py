from sqlalchemy import Column, String, Float, DateTime, Boolean
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database.models.base import Base

class Pool(Base):
    __tablename__ = 'pools'

    pool_address = Column(String(255), primary_key=True)
    network = Column(String(64), nullable=False)
    token_pair = Column(String(255), nullable=False)
    token0_address = Column(String(255))
    token1_address = Column(String(255))
    token0_symbol = Column(String(64))
    token1_symbol = Column(String(64))
    fee_tier = Column(Float)
    protocol = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    # Relationships
    analytics = relationship("PoolAnalytics", back_populates="pool", uselist=False)
    positions = relationship("UserPosition", back_populates="pool")
