import logging
from typing import Any, Dict, List, Optional

from api_clients.rate_limited_client import RateLimitedClient, ProviderError
from config import DEFILLAMA_RATE_LIMIT, DEFILLAMA_WINDOW_SECONDS

logger = logging.getLogger(__name__)

BASE_URL = "https://yields.llama.fi"


class DeFiLlamaClient(RateLimitedClient):
    """
    DeFiLlama yields API. The full pool listing is fetched once per client and
    reused by the lookup helpers.
    """

    def __init__(self, rate_limit: int = DEFILLAMA_RATE_LIMIT,
                 window_seconds: float = DEFILLAMA_WINDOW_SECONDS, **kwargs):
        super().__init__(BASE_URL, rate_limit, window_seconds, service_name='defillama', **kwargs)
        self._pools_cache: Optional[List[Dict[str, Any]]] = None

    def get_all_pools(self, refresh: bool = False) -> List[Dict[str, Any]]:
        if self._pools_cache is None or refresh:
            response = self.request('/pools')
            if not isinstance(response, dict) or response.get('status') != 'success':
                raise ProviderError("Unexpected DeFiLlama /pools response", endpoint='/pools')
            self._pools_cache = response.get('data') or []
            logger.info(f"Fetched {len(self._pools_cache)} pools from DeFiLlama.")
        return self._pools_cache

    def get_pools_by_chain(self, chain: str) -> List[Dict[str, Any]]:
        chain = chain.lower()
        return [p for p in self.get_all_pools() if (p.get('chain') or '').lower() == chain]

    def find_pool(self, pool_id: str) -> Optional[Dict[str, Any]]:
        """
        Look a pool up by DeFiLlama pool id or by on-chain address.
        """
        if not pool_id:
            return None
        needle = pool_id.lower()
        for pool in self.get_all_pools():
            if (pool.get('pool') or '').lower() == needle:
                return pool
            if (pool.get('poolMeta') or '').lower() == needle:
                return pool
        return None

    def search_pools_by_tokens(self, token0: str, token1: str, chain: Optional[str] = None) -> List[Dict[str, Any]]:
        t0, t1 = token0.lower(), token1.lower()
        pools = self.get_pools_by_chain(chain) if chain else self.get_all_pools()
        matches = []
        for pool in pools:
            symbol = (pool.get('symbol') or '').lower()
            if t0 in symbol and t1 in symbol:
                matches.append(pool)
        return matches
