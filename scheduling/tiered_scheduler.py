import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from config import TIER3_POOL_LIMIT, TIER3_MIN_TVL_USD, ANALYTICS_FRESHNESS_HOURS
from database.repositories.exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

WATCHLIST_EVERY_HOURS = 6
TOP_POOLS_HOUR_UTC = 6


@dataclass
class TierAssignment:
    tier1: List[Dict[str, Any]] = field(default_factory=list)
    tier2: List[Dict[str, Any]] = field(default_factory=list)
    tier3: List[Dict[str, Any]] = field(default_factory=list)

    def tiers(self):
        return [('tier1', self.tier1), ('tier2', self.tier2), ('tier3', self.tier3)]


@dataclass
class RunSummary:
    pools_processed: int = 0
    pools_succeeded: int = 0
    duplicates_skipped: int = 0
    tiers: Dict[str, int] = field(default_factory=dict)
    analytics: Optional[Dict[str, int]] = None
    stopped: bool = False


class TieredScheduler:
    """
    Hourly collection pass. Active positions are collected every hour, the
    watchlist every sixth hour and the top pools by TVL once a day at 06:00 UTC.
    """

    def __init__(self, store, backfill_engine, analytics_engine,
                 tier3_limit: int = TIER3_POOL_LIMIT,
                 tier3_min_tvl: float = TIER3_MIN_TVL_USD,
                 analytics_freshness: timedelta = timedelta(hours=ANALYTICS_FRESHNESS_HOURS),
                 stop_event: Optional[threading.Event] = None):
        self.store = store
        self.backfill_engine = backfill_engine
        self.analytics_engine = analytics_engine
        self.tier3_limit = tier3_limit
        self.tier3_min_tvl = tier3_min_tvl
        self.analytics_freshness = analytics_freshness
        self.stop_event = stop_event or threading.Event()

    def select_tiers(self, now: datetime) -> TierAssignment:
        assignment = TierAssignment()
        assignment.tier1 = self.store.active_positions()
        seen = {p['pool_address'] for p in assignment.tier1}

        if now.hour % WATCHLIST_EVERY_HOURS == 0:
            for pool in self.store.watchlist():
                if pool['pool_address'] not in seen:
                    assignment.tier2.append(pool)
                    seen.add(pool['pool_address'])

        if now.hour == TOP_POOLS_HOUR_UTC:
            assignment.tier3 = self.store.top_pools_by_tvl(
                exclude=seen, limit=self.tier3_limit, min_tvl=self.tier3_min_tvl
            )
        return assignment

    def _delay(self) -> None:
        delay = self.backfill_engine.delay_between_pools
        if delay > 0:
            # Wakes early when a stop is requested.
            self.stop_event.wait(delay)

    def run(self, now: Optional[datetime] = None) -> RunSummary:
        now = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
        logger.info(f"🔄 Hourly Collection Starting... {now.isoformat()}")

        assignment = self.select_tiers(now)
        summary = RunSummary(tiers={name: len(pools) for name, pools in assignment.tiers()})
        logger.info(f"📋 Tiers: active={summary.tiers['tier1']}, watchlist={summary.tiers['tier2']}, "
                    f"top={summary.tiers['tier3']}")

        first = True
        for tier_name, pools in assignment.tiers():
            if not pools:
                continue
            logger.info(f"🎯 Collecting {tier_name} ({len(pools)} pools)")
            for pool in pools:
                if self.stop_event.is_set():
                    break
                if not first:
                    self._delay()
                    if self.stop_event.is_set():
                        break
                first = False

                label = pool.get('token_pair') or pool['pool_address']
                summary.pools_processed += 1
                try:
                    result = self.backfill_engine.collect_latest(pool)
                except DatabaseConnectionError:
                    raise
                except Exception as e:
                    logger.error(f"    ❌ Unexpected error collecting {label}: {e}")
                    continue

                if result.collected:
                    summary.pools_succeeded += 1
                    logger.info(f"    ✅ {label}")
                elif result.duplicate:
                    summary.pools_succeeded += 1
                    summary.duplicates_skipped += 1
                    logger.info(f"    ⏭️ {label}: already up to date")
                else:
                    logger.warning(f"    ⚠️  {label}: {result.error}")

        if self.stop_event.is_set():
            summary.stopped = True
            logger.warning("🛑 Stop requested; skipping remaining pools and analytics")
        else:
            summary.analytics = self.analytics_engine.update_analytics(now, self.analytics_freshness)

        logger.info("=" * 60)
        logger.info("📊 HOURLY RUN SUMMARY")
        logger.info(f"   Pools processed: {summary.pools_processed}")
        logger.info(f"   Pools succeeded: {summary.pools_succeeded}")
        logger.info(f"   Duplicates skipped: {summary.duplicates_skipped}")
        logger.info("=" * 60)
        return summary
