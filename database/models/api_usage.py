from sqlalchemy import Column, String, Integer, DateTime, UniqueConstraint
from sqlalchemy.sql import func
from database.models.base import Base

class ApiUsage(Base):
    __tablename__ = 'api_usage'

    id = Column(Integer, primary_key=True)
    service = Column(String(64), nullable=False)
    endpoint = Column(String(512), nullable=False)
    date_hour = Column(String(13), nullable=False)  # YYYY-MM-DD-HH
    requests_count = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint('service', 'endpoint', 'date_hour', name='api_usage_service_endpoint_hour_key'),
    )
