import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_ingestion.backfill_pool_history import BackfillEngine, CollectionResult
from database.repositories.exceptions import DatabaseConnectionError
from scheduling.tiered_scheduler import TieredScheduler
from tests.db_fixtures import make_memory_store


def pool(address, network='eth'):
    return {'pool_address': address, 'network': network, 'token_pair': f'{address}/USDC'}


class TestTierSelection(unittest.TestCase):

    def setUp(self):
        self.store = MagicMock()
        self.store.active_positions.return_value = [pool('0xa1'), pool('0xa2')]
        self.store.watchlist.return_value = [pool('0xw1'), pool('0xa1')]
        self.store.top_pools_by_tvl.return_value = [pool('0xt1')]
        self.scheduler = TieredScheduler(self.store, MagicMock(), MagicMock())

    def test_hour_seven_collects_active_only(self):
        tiers = self.scheduler.select_tiers(datetime(2024, 5, 1, 7, tzinfo=timezone.utc))

        self.assertEqual([p['pool_address'] for p in tiers.tier1], ['0xa1', '0xa2'])
        self.assertEqual(tiers.tier2, [])
        self.assertEqual(tiers.tier3, [])
        self.store.watchlist.assert_not_called()
        self.store.top_pools_by_tvl.assert_not_called()

    def test_hour_twelve_adds_watchlist(self):
        tiers = self.scheduler.select_tiers(datetime(2024, 5, 1, 12, tzinfo=timezone.utc))

        # 0xa1 is already collected as an active position
        self.assertEqual([p['pool_address'] for p in tiers.tier2], ['0xw1'])
        self.assertEqual(tiers.tier3, [])
        self.store.top_pools_by_tvl.assert_not_called()

    def test_hour_six_adds_all_tiers(self):
        tiers = self.scheduler.select_tiers(datetime(2024, 5, 1, 6, tzinfo=timezone.utc))

        self.assertEqual(len(tiers.tier1), 2)
        self.assertEqual([p['pool_address'] for p in tiers.tier2], ['0xw1'])
        self.assertEqual([p['pool_address'] for p in tiers.tier3], ['0xt1'])
        kwargs = self.store.top_pools_by_tvl.call_args.kwargs
        self.assertEqual(kwargs['exclude'], {'0xa1', '0xa2', '0xw1'})
        self.assertEqual(kwargs['limit'], 50)
        self.assertEqual(kwargs['min_tvl'], 1_000_000)

    def test_midnight_is_a_watchlist_hour(self):
        tiers = self.scheduler.select_tiers(datetime(2024, 5, 1, 0, tzinfo=timezone.utc))
        self.assertEqual(len(tiers.tier2), 1)
        self.assertEqual(tiers.tier3, [])


class TestSchedulerRun(unittest.TestCase):

    def setUp(self):
        self.store = MagicMock()
        self.store.active_positions.return_value = [pool('0xa1'), pool('0xa2'), pool('0xa3')]
        self.store.watchlist.return_value = []
        self.store.top_pools_by_tvl.return_value = []
        self.backfill = MagicMock()
        self.backfill.delay_between_pools = 0
        self.analytics = MagicMock()
        self.analytics.update_analytics.return_value = {'candidates': 3, 'updated': 3, 'failed': 0}
        self.now = datetime(2024, 5, 1, 7, tzinfo=timezone.utc)

    def test_run_summary(self):
        self.backfill.collect_latest.side_effect = [
            CollectionResult('0xa1', collected=True),
            CollectionResult('0xa2', collected=False, duplicate=True),
            CollectionResult('0xa3', collected=False, error='HTTP 500'),
        ]
        scheduler = TieredScheduler(self.store, self.backfill, self.analytics,
                                    analytics_freshness=timedelta(hours=12))

        summary = scheduler.run(self.now)

        self.assertEqual(summary.pools_processed, 3)
        self.assertEqual(summary.pools_succeeded, 2)
        self.assertEqual(summary.duplicates_skipped, 1)
        self.assertEqual(summary.tiers, {'tier1': 3, 'tier2': 0, 'tier3': 0})
        self.assertEqual(summary.analytics['updated'], 3)
        self.assertFalse(summary.stopped)
        self.analytics.update_analytics.assert_called_once_with(self.now, timedelta(hours=12))

    def test_collector_exception_is_isolated_to_its_pool(self):
        self.backfill.collect_latest.side_effect = [
            KeyError('close'),
            CollectionResult('0xa2', collected=True),
            CollectionResult('0xa3', collected=True),
        ]
        scheduler = TieredScheduler(self.store, self.backfill, self.analytics)

        summary = scheduler.run(self.now)

        self.assertEqual(summary.pools_processed, 3)
        self.assertEqual(summary.pools_succeeded, 2)
        self.assertEqual(self.backfill.collect_latest.call_count, 3)
        self.analytics.update_analytics.assert_called_once()

    def test_truncated_candle_does_not_abort_run(self):
        store = make_memory_store()
        for address in ('0xa1', '0xa2'):
            store.upsert_pool(pool(address))
            store.positions.add_position(address, 'eth', 'active')
        ts = int(self.now.timestamp())
        gecko = MagicMock()
        gecko.get_ohlcv.side_effect = lambda network, address, *args, **kwargs: (
            [[ts, 1, 1, 1]] if address == '0xa1' else [[ts, 1, 1, 1, 2.0, 5.0]]
        )
        engine = BackfillEngine(store, gecko, delay_between_pools=0, sleep=lambda s: None)
        scheduler = TieredScheduler(store, engine, self.analytics)

        summary = scheduler.run(self.now)

        self.assertEqual(summary.pools_processed, 2)
        self.assertEqual(summary.pools_succeeded, 1)
        self.assertEqual(store.latest_point('0xa2').price, 2.0)
        self.assertIsNone(store.latest_point('0xa1'))
        self.analytics.update_analytics.assert_called_once()

    def test_lost_database_aborts_run(self):
        self.backfill.collect_latest.side_effect = DatabaseConnectionError("connection refused")
        scheduler = TieredScheduler(self.store, self.backfill, self.analytics)

        with self.assertRaises(DatabaseConnectionError):
            scheduler.run(self.now)
        self.analytics.update_analytics.assert_not_called()

    def test_stop_before_run_skips_everything(self):
        stop = threading.Event()
        stop.set()
        scheduler = TieredScheduler(self.store, self.backfill, self.analytics, stop_event=stop)

        summary = scheduler.run(self.now)

        self.assertEqual(summary.pools_processed, 0)
        self.assertTrue(summary.stopped)
        self.backfill.collect_latest.assert_not_called()
        self.analytics.update_analytics.assert_not_called()

    def test_stop_between_pools(self):
        stop = threading.Event()

        def collect(p):
            stop.set()
            return CollectionResult(p['pool_address'], collected=True)

        self.backfill.collect_latest.side_effect = collect
        scheduler = TieredScheduler(self.store, self.backfill, self.analytics, stop_event=stop)

        summary = scheduler.run(self.now)

        self.assertEqual(summary.pools_processed, 1)
        self.assertEqual(summary.pools_succeeded, 1)
        self.assertTrue(summary.stopped)


if __name__ == '__main__':
    unittest.main()
