"""
Volatility, fee yield and impermanent-loss formulas for concentrated liquidity positions.

All rates are decimals (0.25 == 25%). Functions that cannot be computed from the
inputs they were given return None instead of raising.
"""
import math
from typing import Dict, Optional, Sequence

import numpy as np

PERIODS_PER_YEAR = {
    'hourly': 24 * 365,
    'daily': 365,
    '15min': 4 * 24 * 365,
    '5min': 12 * 24 * 365,
}

ROLLING_WINDOWS = {
    'hourly': {'1d': 24, '7d': 168, '30d': 720},
    'daily': {'1d': 1, '7d': 7, '30d': 30},
}

MIN_RETURNS_FOR_ROLLING = 20

FVR_ATTRACTIVE = 1.0
FVR_FAIR = 0.6


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_annualized_volatility(returns: Sequence[float], frequency: str = 'hourly') -> Optional[float]:
    """
    Sample standard deviation of returns scaled by sqrt(periods per year).
    """
    if frequency not in PERIODS_PER_YEAR:
        raise ValueError(f"Unsupported frequency: {frequency}")
    if returns is None or len(returns) < 2:
        return None
    values = np.asarray(returns, dtype=float)
    return float(np.std(values, ddof=1) * math.sqrt(PERIODS_PER_YEAR[frequency]))


def calculate_rolling_volatility(returns: Sequence[float], frequency: str = 'hourly') -> Optional[Dict[str, float]]:
    """
    Annualized volatility over the 1d/7d/30d windows, each taken from the most
    recent returns. Windows longer than the available history are left out.
    """
    if returns is None or len(returns) < MIN_RETURNS_FOR_ROLLING:
        return None
    windows = ROLLING_WINDOWS.get(frequency)
    if windows is None:
        return None

    result = {}
    for period, window_size in windows.items():
        if len(returns) >= window_size:
            window = list(returns)[-window_size:]
            volatility = calculate_annualized_volatility(window, frequency)
            if volatility is not None:
                result[period] = volatility
    return result


def calculate_log_returns(prices: Sequence[float]) -> list:
    """ln(p_t / p_{t-1}) for consecutive pairs where both prices are positive."""
    if prices is None or len(prices) < 2:
        return []
    returns = []
    for previous, current in zip(prices[:-1], prices[1:]):
        if previous is not None and current is not None and previous > 0 and current > 0:
            returns.append(math.log(current / previous))
    return returns


def calculate_pool_fee_apr(fees_24h: Optional[float], avg_tvl: Optional[float]) -> float:
    if not avg_tvl:
        return 0.0
    if fees_24h is None:
        return 0.0
    return (fees_24h / avg_tvl) * 365


def calculate_position_fee_apr(pool_fee_apr: float, time_in_range: float = 1.0,
                               liquidity_share: float = 1.0) -> float:
    return pool_fee_apr * time_in_range * liquidity_share


def calculate_fvr(fee_apr: Optional[float], volatility: Optional[float]) -> float:
    """Fee-to-Volatility Ratio."""
    if not volatility:
        return 0.0
    if fee_apr is None:
        return 0.0
    return fee_apr / volatility


def classify_fvr(fvr: Optional[float]) -> str:
    if fvr is None:
        return 'insufficient_data'
    if fvr > FVR_ATTRACTIVE:
        return 'attractive'
    if fvr > FVR_FAIR:
        return 'fair'
    return 'overpriced'


def calculate_expected_il_rate(volatility: Optional[float], concentration_multiplier: float = 1.5) -> Optional[float]:
    """
    Expected annual IL as a quadratic function of volatility. This is an
    approximation, not a simulation of the position's range.
    """
    if volatility is None:
        return None
    return volatility * volatility * 0.5 * concentration_multiplier


def calculate_breakeven_fee_apr(expected_il_rate: Optional[float]) -> Optional[float]:
    # Fees only need to cover the expected IL.
    return expected_il_rate


def calculate_excess_yield(position_fee_apr: float, expected_il_rate: float) -> float:
    return position_fee_apr - expected_il_rate


def calculate_il_risk_score(fvr: Optional[float]) -> Optional[int]:
    """
    Maps FVR onto a 1-10 risk score: 1-3 for attractive pools, 4-7 for fair
    ones, 8-10 for overpriced ones.
    """
    if fvr is None:
        return None
    if fvr > FVR_ATTRACTIVE:
        score = min(3, _round_half_up(1 + 2 / fvr))
    elif fvr > FVR_FAIR:
        score = _round_half_up(4 + 6 * (1 - fvr))
    else:
        score = max(8, _round_half_up(8 + 5 * (FVR_FAIR - fvr)))
    return min(10, score)


def estimate_impermanent_loss(price_ratio: float, is_concentrated: bool = True,
                              concentration_factor: float = 1.5) -> float:
    """
    Constant-product IL, (2*sqrt(r))/(1+r) - 1, scaled up for concentrated positions.
    Returned as a negative fraction.
    """
    if price_ratio <= 0:
        return 0.0
    il = (2 * math.sqrt(price_ratio)) / (1 + price_ratio) - 1
    if is_concentrated:
        return il * concentration_factor
    return il


def calculate_position_value(price: float, price_lower: float, price_upper: float, liquidity: float) -> float:
    """Value of a ranged position in token1 units."""
    s = math.sqrt(price)
    sa = math.sqrt(price_lower)
    sb = math.sqrt(price_upper)
    if price <= price_lower:
        amount0 = liquidity * (1 / sa - 1 / sb)
        return amount0 * price
    if price >= price_upper:
        return liquidity * (sb - sa)
    return liquidity * (2 * s - sa - (s * s) / sb)


def calculate_hodl_value(initial_capital: float, current_price: float, initial_price: float) -> float:
    """Value of holding the 50/50 split instead of providing liquidity."""
    return (initial_capital / 2) * (1 + current_price / initial_price)
