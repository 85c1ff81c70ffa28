from database.models.base import Base
from database.models.pool import Pool
from database.models.price_data import PriceData
from database.models.pool_analytics import PoolAnalytics, FvrHistory, VolatilityHistory
from database.models.user_position import UserPosition, POSITION_TYPES
from database.models.api_usage import ApiUsage
