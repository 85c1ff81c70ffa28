import argparse
import signal
import sys
import logging
import threading
from datetime import datetime, timedelta, timezone

# Configuration Loading
import config

from api_clients.defillama_client import DeFiLlamaClient
from api_clients.geckoterminal_client import GeckoTerminalClient, NETWORK_CONFIG
from data_ingestion.backfill_pool_history import BackfillEngine
from data_ingestion.discover_pools import discover_top_pools, register_discovered_pools
from data_processing.calculate_pool_metrics import PoolAnalyticsEngine
from database.db_utils import apply_migrations, get_db_connection
from database.price_series_store import PriceSeriesStore
from database.repositories.exceptions import DatabaseConnectionError
from reporting_notification.report_top_pools import build_top_pools_report, log_top_pools_report
from scheduling.tiered_scheduler import TieredScheduler

logger = logging.getLogger()

DEFAULT_NETWORKS = ['eth', 'arbitrum', 'base']


def build_components(engine=None, stop_event=None):
    """
    Wire the store, provider clients and engines around one database engine.
    """
    engine = engine or get_db_connection()
    if engine is None:
        raise DatabaseConnectionError("Failed to connect to application database")

    store = PriceSeriesStore(engine=engine)
    gecko = GeckoTerminalClient(usage_recorder=store.record_api_usage)
    llama = DeFiLlamaClient(usage_recorder=store.record_api_usage)
    backfill = BackfillEngine(store, gecko)
    analytics = PoolAnalyticsEngine(store, llama_client=llama)
    scheduler = TieredScheduler(
        store, backfill, analytics,
        analytics_freshness=timedelta(hours=config.ANALYTICS_FRESHNESS_HOURS),
        stop_event=stop_event,
    )
    return {
        'store': store,
        'gecko': gecko,
        'llama': llama,
        'backfill': backfill,
        'analytics': analytics,
        'scheduler': scheduler,
    }


def close_components(components):
    for name in ('gecko', 'llama'):
        components[name].close()


def run_backfill(components, networks, max_pools, days):
    """Discover top pools, register them and backfill their history."""
    pools = discover_top_pools(components['gecko'], networks, min_tvl=config.TIER3_MIN_TVL_USD, max_pools=max_pools)
    register_discovered_pools(components['store'], pools)
    summary = components['backfill'].backfill_pools(pools, days)
    components['analytics'].update_analytics(datetime.now(timezone.utc), timedelta(0))
    return summary


def log_table_counts(store):
    counts = store.table_counts()
    logger.info("📊 Database Summary:")
    for table, count in counts.items():
        logger.info(f"   {table}: {count:,}")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="CLM pool analytics pipeline")
    parser.add_argument('--backfill', action='store_true',
                        help="Discover top pools and backfill their history instead of the hourly pass")
    parser.add_argument('--days', type=int, default=config.BACKFILL_TARGET_DAYS,
                        help="Days of history to backfill")
    parser.add_argument('--networks', type=lambda s: [n.strip() for n in s.split(',') if n.strip()],
                        default=DEFAULT_NETWORKS, help="Comma separated network keys")
    parser.add_argument('--max-pools', type=int, default=20, help="Pools per network to backfill")
    parser.add_argument('--skip-migrations', action='store_true', help="Do not apply database migrations")
    parser.add_argument('--report', action='store_true', help="Log the top pools report after the run")
    args = parser.parse_args(argv)

    unknown = [n for n in args.networks if n not in NETWORK_CONFIG]
    if unknown:
        parser.error(f"Unknown networks: {', '.join(unknown)}. Choose from {', '.join(NETWORK_CONFIG)}")
    return args


def run_pipeline(args, stop_event=None):
    """
    Run one pipeline pass. Returns the process exit code; only an unreachable
    database or a failed migration is a pipeline failure.
    """
    logger.info("Starting CLM analytics pipeline...")
    start_time = datetime.now(timezone.utc)

    try:
        if not args.skip_migrations:
            logger.info("Applying database migrations...")
            apply_migrations()
        components = build_components(stop_event=stop_event)
    except Exception as e:
        logger.error(f"❌ Pipeline setup failed: {e}")
        return 1

    try:
        if args.backfill:
            logger.info(f"--- Backfill: {args.days} days, networks={args.networks}, max {args.max_pools} pools ---")
            summary = run_backfill(components, args.networks, args.max_pools, args.days)
        else:
            logger.info("--- Hourly Collection ---")
            summary = components['scheduler'].run()

        if args.report:
            log_top_pools_report(build_top_pools_report(components['store']))
        log_table_counts(components['store'])
    except DatabaseConnectionError as e:
        logger.error(f"❌ Lost database connection: {e}")
        return 1
    finally:
        close_components(components)

    duration = datetime.now(timezone.utc) - start_time
    logger.info(f"Run summary: pools_processed={summary.pools_processed}, "
                f"pools_succeeded={summary.pools_succeeded}, duplicates_skipped={summary.duplicates_skipped}")
    logger.info(f"Pipeline finished in {duration}")
    return 0


def main(argv=None):
    logging.basicConfig(level=config.LOG_LEVEL, format='%(asctime)s - %(levelname)s - %(message)s', force=True)
    args = parse_args(argv)

    stop_event = threading.Event()

    def _request_stop(signum, frame):
        logger.warning(f"Received signal {signum}; finishing the current pool and stopping.")
        stop_event.set()

    signal.signal(signal.SIGTERM, _request_stop)
    signal.signal(signal.SIGINT, _request_stop)

    sys.exit(run_pipeline(args, stop_event=stop_event))


if __name__ == "__main__":
    main()
