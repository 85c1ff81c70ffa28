from database.repositories.base_repository import BaseRepository
from database.repositories.pool_repository import PoolRepository
from database.repositories.price_data_repository import PriceDataRepository
from database.repositories.pool_analytics_repository import PoolAnalyticsRepository
from database.repositories.user_position_repository import UserPositionRepository
from database.repositories.api_usage_repository import ApiUsageRepository

__all__ = [
    'BaseRepository',
    'PoolRepository',
    'PriceDataRepository',
    'PoolAnalyticsRepository',
    'UserPositionRepository',
    'ApiUsageRepository',
]
