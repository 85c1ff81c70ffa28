import logging
import pandas as pd

from database.price_series_store import PriceSeriesStore

logger = logging.getLogger(__name__)

REPORT_COLUMNS = [
    'token_pair', 'network', 'tvl_usd', 'fee_apr_position', 'volatility', 'volatility_window', 'fvr',
    'recommendation', 'il_risk_score', 'breakeven_fee_apr', 'data_points_count', 'days_of_data',
]


def build_top_pools_report(store: PriceSeriesStore, limit: int = 20, min_tvl: float = 0.0) -> pd.DataFrame:
    """
    Snapshots with a computed FVR, best first, with how much history backs each one.
    """
    snapshots = store.analytics.get_top_by_fvr(limit=limit, min_tvl=min_tvl)
    rows = []
    for s in snapshots:
        coverage = store.coverage(s.pool_address)
        window = '30d' if s.volatility_30d is not None else '7d'
        rows.append({
            'pool_address': s.pool_address,
            'token_pair': s.token_pair,
            'network': s.network,
            'tvl_usd': s.tvl_usd,
            'fee_apr_position': s.fee_apr_position,
            'volatility': s.volatility_30d if window == '30d' else s.volatility_7d,
            'volatility_window': window,
            'fvr': s.fvr,
            'recommendation': s.recommendation,
            'il_risk_score': s.il_risk_score,
            'breakeven_fee_apr': s.breakeven_fee_apr,
            'data_points_count': coverage.count,
            'days_of_data': round(coverage.day_span, 1),
        })

    df = pd.DataFrame(rows, columns=['pool_address'] + REPORT_COLUMNS)
    if df.empty:
        return df
    df = df.sort_values('fvr', ascending=False).reset_index(drop=True)
    df.index = df.index + 1
    return df


def log_top_pools_report(df: pd.DataFrame) -> None:
    if df.empty:
        logger.info("No pools with computed FVR yet.")
        return

    display = df.copy()
    display['tvl_usd'] = display['tvl_usd'].map(lambda v: f"${v / 1e6:,.1f}M" if pd.notna(v) else '-')
    for col in ('fee_apr_position', 'volatility', 'breakeven_fee_apr'):
        display[col] = display[col].map(lambda v: f"{v * 100:.1f}%" if pd.notna(v) else '-')
    display['fvr'] = display['fvr'].map(lambda v: f"{v:.3f}")

    logger.info("🏆 TOP POOLS BY FEE-TO-VOLATILITY RATIO")
    logger.info("\n" + display[REPORT_COLUMNS].to_string())
    counts = df['recommendation'].value_counts()
    logger.info(f"Recommendations: {counts.to_dict()}")


def report_top_pools(limit: int = 20, min_tvl: float = 0.0) -> pd.DataFrame:
    store = PriceSeriesStore()
    df = build_top_pools_report(store, limit=limit, min_tvl=min_tvl)
    log_top_pools_report(df)
    return df


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s', force=True)
    report_top_pools()
