import logging
import math
import time
from typing import Any, Dict, List, Optional

from api_clients.rate_limited_client import RateLimitedClient
from config import GECKOTERMINAL_RATE_LIMIT, GECKOTERMINAL_WINDOW_SECONDS

logger = logging.getLogger(__name__)

BASE_URL = "https://api.geckoterminal.com/api/v2"
POOLS_PER_PAGE = 20
MAX_OHLCV_LIMIT = 1000

# Network keys used across the pipeline, mapped to each provider's naming
NETWORK_CONFIG = {
    'eth': {'geckoterminal': 'eth', 'defillama': 'Ethereum', 'name': 'Ethereum'},
    'arbitrum': {'geckoterminal': 'arbitrum', 'defillama': 'Arbitrum', 'name': 'Arbitrum'},
    'base': {'geckoterminal': 'base', 'defillama': 'Base', 'name': 'Base'},
    'polygon': {'geckoterminal': 'polygon_pos', 'defillama': 'Polygon', 'name': 'Polygon'},
    'solana': {'geckoterminal': 'solana', 'defillama': 'Solana', 'name': 'Solana'},
}


def gecko_network(network: str) -> str:
    """Translate a pipeline network key to GeckoTerminal's id; unknown keys pass through."""
    config = NETWORK_CONFIG.get(network)
    return config['geckoterminal'] if config else network


class GeckoTerminalClient(RateLimitedClient):
    """
    GeckoTerminal public API, 30 requests per minute.
    """

    def __init__(self, rate_limit: int = GECKOTERMINAL_RATE_LIMIT,
                 window_seconds: float = GECKOTERMINAL_WINDOW_SECONDS,
                 page_delay: float = 1.0, sleep=time.sleep, **kwargs):
        super().__init__(BASE_URL, rate_limit, window_seconds, service_name='geckoterminal', **kwargs)
        self.page_delay = page_delay
        self._sleep = sleep

    def get_pools_for_network(self, network: str, page: int = 1) -> Dict[str, Any]:
        return self.request(f'/networks/{gecko_network(network)}/pools', {'page': page})

    def get_pool_data(self, network: str, pool_address: str) -> Dict[str, Any]:
        return self.request(f'/networks/{gecko_network(network)}/pools/{pool_address}')

    def get_ohlcv(self, network: str, pool_address: str, timeframe: str = 'hour', limit: int = 100,
                  before_timestamp: Optional[int] = None) -> List[List[float]]:
        """
        OHLCV candles as [timestamp_seconds, open, high, low, close, volume], newest first.
        before_timestamp (epoch seconds) pages backwards through history.
        """
        params = {'limit': min(limit, MAX_OHLCV_LIMIT)}
        if before_timestamp is not None:
            params['before_timestamp'] = int(before_timestamp)
        response = self.request(
            f'/networks/{gecko_network(network)}/pools/{pool_address}/ohlcv/{timeframe}', params
        )
        attributes = ((response or {}).get('data') or {}).get('attributes') or {}
        return attributes.get('ohlcv_list') or []

    def get_top_pools(self, network: str = 'eth', limit: int = 100) -> List[Dict[str, Any]]:
        """Top pools for a network, paging 20 at a time with a delay between pages."""
        pages = math.ceil(limit / POOLS_PER_PAGE)
        pools = []
        for page in range(1, pages + 1):
            response = self.get_pools_for_network(network, page)
            data = (response or {}).get('data') or []
            pools.extend(data)
            if len(pools) >= limit or len(data) < POOLS_PER_PAGE:
                break
            if page < pages:
                self._sleep(self.page_delay)
        return pools[:limit]
