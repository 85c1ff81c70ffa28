import logging
from dataclasses import dataclass, asdict
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pandas as pd

from api_clients.geckoterminal_client import NETWORK_CONFIG
from api_clients.rate_limited_client import ProviderError
from data_processing.analytics_math import (
    calculate_rolling_volatility,
    calculate_pool_fee_apr,
    calculate_position_fee_apr,
    calculate_fvr,
    classify_fvr,
    calculate_expected_il_rate,
    calculate_breakeven_fee_apr,
    calculate_il_risk_score,
    calculate_log_returns,
    MIN_RETURNS_FOR_ROLLING,
)
from data_ingestion.discover_pools import extract_token_symbol
from database.repositories.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

MIN_HISTORY_DAYS = 7
PERIOD_DAYS = {'1d': 1, '7d': 7, '30d': 30}
# One extra day so a full 30d window of returns fits in the read
LOOKBACK_MARGIN_DAYS = 1


@dataclass
class PoolAnalyticsSnapshot:
    pool_address: str
    network: str
    token_pair: str
    tvl_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    fees_24h: Optional[float] = None
    apy_base: Optional[float] = None
    apy_reward: Optional[float] = None
    volatility_1d: Optional[float] = None
    volatility_7d: Optional[float] = None
    volatility_30d: Optional[float] = None
    fee_apr_pool: Optional[float] = None
    fee_apr_position: Optional[float] = None
    fvr: Optional[float] = None
    recommendation: str = 'insufficient_data'
    il_risk_score: Optional[int] = None
    expected_il_rate: Optional[float] = None
    breakeven_fee_apr: Optional[float] = None
    data_points_count: int = 0
    oldest_data_timestamp: Optional[datetime] = None
    newest_data_timestamp: Optional[datetime] = None
    last_updated: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def series_to_frame(series) -> pd.DataFrame:
    """
    Price points as a timestamp-indexed DataFrame, ascending. Points stored
    without a log return (backfill page boundaries) get one from the previous
    point in the series.
    """
    df = pd.DataFrame(
        [{'timestamp': p.timestamp, 'price': p.price, 'volume_usd': p.volume_usd, 'log_return': p.log_return}
         for p in series],
        columns=['timestamp', 'price', 'volume_usd', 'log_return'],
    )
    if df.empty:
        return df
    df['timestamp'] = pd.to_datetime(df['timestamp'], utc=True)
    df['log_return'] = pd.to_numeric(df['log_return'], errors='coerce')
    df = df.sort_values('timestamp').set_index('timestamp')

    derived = calculate_log_returns(df['price'].tolist())
    if len(derived) == len(df) - 1:
        df['log_return'] = df['log_return'].fillna(pd.Series([float('nan')] + derived, index=df.index))
    return df


def fee_inputs_from_listing(listing: Optional[Dict[str, Any]]) -> Dict[str, Optional[float]]:
    """
    DeFiLlama reports APY in percent; fees_24h = tvl * (apy / 100) / 365.
    """
    inputs = {'tvl_usd': None, 'volume_24h': None, 'fees_24h': None, 'apy_base': None, 'apy_reward': None}
    if not listing:
        return inputs

    tvl = listing.get('tvlUsd')
    apy_base = listing.get('apyBase')
    apy = apy_base if apy_base is not None else listing.get('apy')

    inputs['tvl_usd'] = tvl
    inputs['volume_24h'] = listing.get('volumeUsd1d')
    inputs['apy_base'] = apy_base
    inputs['apy_reward'] = listing.get('apyReward')
    if tvl is not None and apy is not None:
        inputs['fees_24h'] = tvl * (apy / 100.0) / 365
    return inputs


class PoolAnalyticsEngine:
    """
    Turns a pool's stored price series and its DeFiLlama listing into an
    analytics snapshot, and keeps snapshots fresh.
    """

    def __init__(self, store, llama_client=None, frequency: str = 'hourly', lookback_days: int = 30):
        self.store = store
        self.llama_client = llama_client
        self.frequency = frequency
        self.lookback_days = lookback_days

    def _listing_for(self, pool: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if self.llama_client is None:
            return None
        try:
            listing = self.llama_client.find_pool(pool['pool_address'])
            if listing is None:
                listing = self._listing_by_tokens(pool)
        except ProviderError as e:
            logger.warning(f"⚠️ Could not fetch DeFiLlama metadata for {pool['pool_address']}: {e}")
            return None
        return listing

    def _listing_by_tokens(self, pool: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Deepest DeFiLlama listing on the pool's chain and dex whose symbol holds both tokens."""
        token0 = extract_token_symbol(pool.get('token_pair'), 0)
        token1 = extract_token_symbol(pool.get('token_pair'), 1)
        chain = NETWORK_CONFIG.get(pool.get('network'), {}).get('defillama')
        if not (token0 and token1 and chain):
            return None

        candidates = self.llama_client.search_pools_by_tokens(token0, token1, chain=chain)
        protocol = (pool.get('protocol') or 'unknown').replace('_', '-').lower()
        if protocol != 'unknown':
            # GeckoTerminal dex ids such as uniswap_v3_arbitrum extend the DeFiLlama project
            candidates = [c for c in candidates if c.get('project') and protocol.startswith(c['project'].lower())]
        if not candidates:
            return None
        return max(candidates, key=lambda c: c.get('tvlUsd') or 0)

    def compute_snapshot(self, pool: Dict[str, Any], series, pool_listing: Optional[Dict[str, Any]] = None,
                         now: Optional[datetime] = None) -> PoolAnalyticsSnapshot:
        """
        Builds a snapshot from an ascending price series. Too little history
        yields null risk fields and an 'insufficient_data' recommendation.
        """
        now = now or datetime.now(timezone.utc)
        df = series_to_frame(series)

        snapshot = PoolAnalyticsSnapshot(
            pool_address=pool['pool_address'],
            network=pool.get('network') or 'unknown',
            token_pair=pool.get('token_pair') or 'UNKNOWN',
            data_points_count=len(df),
            last_updated=now,
            **fee_inputs_from_listing(pool_listing),
        )

        if snapshot.fees_24h is not None:
            snapshot.fee_apr_pool = calculate_pool_fee_apr(snapshot.fees_24h, snapshot.tvl_usd)
            snapshot.fee_apr_position = calculate_position_fee_apr(snapshot.fee_apr_pool)

        if df.empty:
            return snapshot

        snapshot.oldest_data_timestamp = df.index[0].to_pydatetime()
        snapshot.newest_data_timestamp = df.index[-1].to_pydatetime()

        span_days = (df.index[-1] - df.index[0]) / pd.Timedelta(days=1)
        returns = df['log_return'].dropna().tolist()
        if span_days < MIN_HISTORY_DAYS or len(returns) < MIN_RETURNS_FOR_ROLLING:
            logger.debug(f"Insufficient history for {snapshot.pool_address}: "
                         f"{span_days:.1f} days, {len(returns)} returns")
            return snapshot

        volatilities = calculate_rolling_volatility(returns, self.frequency) or {}
        snapshot.volatility_1d = volatilities.get('1d')
        snapshot.volatility_7d = volatilities.get('7d')
        snapshot.volatility_30d = volatilities.get('30d')

        volatility = snapshot.volatility_30d if snapshot.volatility_30d is not None else snapshot.volatility_7d
        if volatility is None:
            return snapshot

        snapshot.expected_il_rate = calculate_expected_il_rate(volatility)
        snapshot.breakeven_fee_apr = calculate_breakeven_fee_apr(snapshot.expected_il_rate)

        if snapshot.fee_apr_position is not None:
            snapshot.fvr = calculate_fvr(snapshot.fee_apr_position, volatility)
            snapshot.recommendation = classify_fvr(snapshot.fvr)
            snapshot.il_risk_score = calculate_il_risk_score(snapshot.fvr)

        return snapshot

    def calculate_pool_analytics(self, pool: Dict[str, Any], now: Optional[datetime] = None) -> PoolAnalyticsSnapshot:
        """
        Recompute and store the snapshot for one pool, plus today's history rows.
        """
        now = now or datetime.now(timezone.utc)
        since = now - timedelta(days=self.lookback_days + LOOKBACK_MARGIN_DAYS)
        series = self.store.query_series(pool['pool_address'], since=since)
        snapshot = self.compute_snapshot(pool, series, self._listing_for(pool), now=now)

        self.store.upsert_analytics(snapshot)

        today = now.astimezone(timezone.utc).date()
        volatility = snapshot.volatility_30d if snapshot.volatility_30d is not None else snapshot.volatility_7d
        if snapshot.fvr is not None:
            self.store.record_fvr_history(snapshot.pool_address, today, snapshot.fvr,
                                          snapshot.fee_apr_position, volatility, snapshot.recommendation)
        history = {
            PERIOD_DAYS[period]: getattr(snapshot, f'volatility_{period}')
            for period in PERIOD_DAYS
            if getattr(snapshot, f'volatility_{period}') is not None
        }
        self.store.record_volatility_history(snapshot.pool_address, today, history)

        logger.info(f"    📊 {snapshot.token_pair}: FVR={snapshot.fvr if snapshot.fvr is None else round(snapshot.fvr, 3)} "
                    f"({snapshot.recommendation}), points={snapshot.data_points_count}")
        return snapshot

    def update_analytics(self, now: Optional[datetime] = None,
                         freshness: timedelta = timedelta(days=1)) -> Dict[str, int]:
        """
        Recompute snapshots that are missing or older than `freshness`.
        Per-pool failures are logged and counted; only a lost database aborts.
        """
        now = now or datetime.now(timezone.utc)
        candidates: List[Dict[str, Any]] = self.store.pools_needing_analytics(freshness, now)
        logger.info(f"📈 Updating analytics for {len(candidates)} pools...")

        updated = 0
        failed = 0
        for pool in candidates:
            try:
                self.calculate_pool_analytics(pool, now)
                updated += 1
            except DatabaseConnectionError:
                raise
            except Exception as e:
                failed += 1
                logger.error(f"    ❌ Error calculating analytics for {pool.get('token_pair', pool['pool_address'])}: {e}")

        logger.info(f"  ✅ Updated analytics for {updated}/{len(candidates)} pools")
        return {'candidates': len(candidates), 'updated': updated, 'failed': failed}
