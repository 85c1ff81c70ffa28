import logging
import re
from typing import Any, Dict, Iterable, List, Optional

from api_clients.rate_limited_client import ProviderError

logger = logging.getLogger(__name__)

_FEE_SUFFIX = re.compile(r'\s+(\d+(?:\.\d+)?)%\s*$')


def extract_token_symbol(token_pair: Optional[str], index: int) -> Optional[str]:
    """
    Pull one symbol out of a pair name such as "WETH / USDC 0.05%", "ETH/USDC" or "ETH-USDC".
    """
    if not token_pair:
        return None
    name = _FEE_SUFFIX.sub('', token_pair)
    for separator in (' / ', '/', '-'):
        if separator in name:
            parts = name.split(separator)
            break
    else:
        return None
    if index >= len(parts):
        return None
    symbol = parts[index].strip()
    return symbol or None


def parse_fee_tier(token_pair: Optional[str]) -> Optional[float]:
    """Fee tier in percent from a trailing "0.05%" in the pool name."""
    if not token_pair:
        return None
    match = _FEE_SUFFIX.search(token_pair)
    return float(match.group(1)) if match else None


def _relationship_address(pool: Dict[str, Any], name: str) -> Optional[str]:
    # GeckoTerminal ids look like "eth_0xabc..."
    token_id = (((pool.get('relationships') or {}).get(name) or {}).get('data') or {}).get('id')
    if not token_id:
        return None
    return token_id.split('_', 1)[-1]


def _to_float(value) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def format_gecko_pool(pool: Dict[str, Any], network: str) -> Optional[Dict[str, Any]]:
    attrs = pool.get('attributes') or {}
    address = attrs.get('address')
    if not address:
        return None
    token_pair = attrs.get('name') or f"{attrs.get('base_token_symbol')}/{attrs.get('quote_token_symbol')}"
    dex = (((pool.get('relationships') or {}).get('dex') or {}).get('data') or {}).get('id')
    return {
        'pool_address': address,
        'network': network,
        'token_pair': token_pair,
        'tvl_usd': _to_float(attrs.get('reserve_in_usd')),
        'volume_24h': _to_float((attrs.get('volume_usd') or {}).get('h24')),
        'protocol': dex or 'unknown',
        'token0_address': _relationship_address(pool, 'base_token'),
        'token1_address': _relationship_address(pool, 'quote_token'),
        'token0_symbol': extract_token_symbol(token_pair, 0),
        'token1_symbol': extract_token_symbol(token_pair, 1),
        'fee_tier': parse_fee_tier(token_pair),
    }


def discover_top_pools(gecko_client, networks: Iterable[str], min_tvl: float = 0.0,
                       max_pools: int = 20) -> List[Dict[str, Any]]:
    """
    Top GeckoTerminal pools per network with at least min_tvl, largest TVL first.
    A network that fails to load is skipped.
    """
    networks = list(networks)
    discovered = {}
    for network in networks:
        logger.info(f"   Fetching {network} pools from GeckoTerminal...")
        try:
            raw_pools = gecko_client.get_top_pools(network, min(max_pools, 100))
        except ProviderError as e:
            logger.error(f"   ❌ Error fetching {network} pools: {e}")
            continue

        formatted = [p for p in (format_gecko_pool(raw, network) for raw in raw_pools) if p]
        formatted = [p for p in formatted if p['tvl_usd'] >= min_tvl]
        formatted.sort(key=lambda p: p['tvl_usd'], reverse=True)
        formatted = formatted[:max_pools]

        for pool in formatted:
            discovered.setdefault((network, pool['pool_address'].lower()), pool)
        logger.info(f"   ✅ {network}: {len(formatted)} pools found")

    pools = sorted(discovered.values(), key=lambda p: p['tvl_usd'], reverse=True)
    logger.info(f"📋 Discovered {len(pools)} pools across {len(networks)} networks")
    return pools


def register_discovered_pools(store, pools: List[Dict[str, Any]]) -> int:
    """Upsert metadata for discovered pools. Returns how many were written."""
    registered = 0
    for pool in pools:
        store.upsert_pool(pool)
        registered += 1
    logger.info(f"💾 Registered {registered} pools")
    return registered
