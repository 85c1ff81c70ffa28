#!/usr/bin/env python3
"""
Pipeline Step Runner
Runs a single named pipeline step with JSON logs, for schedulers that invoke one step at a time.
"""

import sys
import logging
import json
from datetime import datetime, timedelta, timezone
from pathlib import Path


class JsonFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "message": record.getMessage(),
            "name": record.name
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


def configure_json_logging(level=logging.INFO):
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    # Replace existing handlers to avoid duplicated lines
    root_logger = logging.getLogger()
    for h in root_logger.handlers[:]:
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)
    root_logger.setLevel(level)


logger = logging.getLogger(__name__)

# Add project root to Python path
project_root = Path(__file__).parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))


def run_apply_migrations():
    from database.db_utils import apply_migrations
    applied = apply_migrations()
    logger.info(f"Applied migrations: {applied}")


def run_discover_pools():
    import config
    from main_pipeline import build_components, close_components, DEFAULT_NETWORKS
    from data_ingestion.discover_pools import discover_top_pools, register_discovered_pools
    components = build_components()
    try:
        pools = discover_top_pools(components['gecko'], DEFAULT_NETWORKS, min_tvl=config.TIER3_MIN_TVL_USD)
        register_discovered_pools(components['store'], pools)
    finally:
        close_components(components)


def run_backfill_pool_history():
    import config
    from main_pipeline import build_components, close_components, run_backfill, DEFAULT_NETWORKS
    components = build_components()
    try:
        run_backfill(components, DEFAULT_NETWORKS, 20, config.BACKFILL_TARGET_DAYS)
    finally:
        close_components(components)


def run_hourly_collection():
    from main_pipeline import build_components, close_components
    components = build_components()
    try:
        components['scheduler'].run()
    finally:
        close_components(components)


def run_calculate_pool_metrics():
    import config
    from main_pipeline import build_components, close_components
    components = build_components()
    try:
        result = components['analytics'].update_analytics(
            datetime.now(timezone.utc), timedelta(hours=config.ANALYTICS_FRESHNESS_HOURS)
        )
    finally:
        close_components(components)
    logger.info(f"Analytics result: {result}")


def run_report_top_pools():
    from reporting_notification.report_top_pools import report_top_pools
    report_top_pools()


STEPS = {
    "apply_migrations": run_apply_migrations,
    "discover_pools": run_discover_pools,
    "backfill_pool_history": run_backfill_pool_history,
    "hourly_collection": run_hourly_collection,
    "calculate_pool_metrics": run_calculate_pool_metrics,
    "report_top_pools": run_report_top_pools,
}


def main(argv=None):
    """Main entry point for pipeline runner."""
    argv = sys.argv[1:] if argv is None else argv
    configure_json_logging()

    if len(argv) != 1:
        logger.error("Usage: python pipeline_runner.py <step_name>")
        logger.error(f"Available steps: {', '.join(sorted(STEPS))}")
        return 1

    step_name = argv[0]
    step = STEPS.get(step_name)
    if step is None:
        logger.error(f"Unknown step: {step_name}")
        logger.error(f"Available steps: {', '.join(sorted(STEPS))}")
        return 1

    logger.info(f"Starting pipeline step: {step_name}")
    try:
        step()
    except Exception as e:
        logger.exception(f"Error executing {step_name}: {e}")
        return 1
    logger.info(f"Step {step_name} completed successfully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
