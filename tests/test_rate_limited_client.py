import threading
import unittest
from unittest.mock import MagicMock
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import requests

from api_clients.rate_limited_client import (
    RateLimitedClient,
    SlidingWindowLimiter,
    ProviderError,
    service_name_for,
)
from api_clients.geckoterminal_client import GeckoTerminalClient, gecko_network
from api_clients.defillama_client import DeFiLlamaClient


class FakeClock:
    """Monotonic clock that only moves when something sleeps."""

    def __init__(self, start=1000.0):
        self.now = start
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(status=200, payload=None, reason='OK'):
    response = MagicMock()
    response.status_code = status
    response.reason = reason
    response.json.return_value = payload if payload is not None else {}
    return response


class TestSlidingWindowLimiter(unittest.TestCase):

    def test_check_is_pure_decision(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(2, 60, clock=clock, sleep=clock.sleep)
        self.assertEqual(limiter.check(), 0.0)
        limiter.acquire()
        limiter.acquire()
        self.assertAlmostEqual(limiter.check(), 60.1)
        self.assertAlmostEqual(limiter.check(clock.now + 30), 30.1)
        self.assertEqual(limiter.check(clock.now + 60), 0.0)
        self.assertEqual(limiter.in_window(), 2)

    def test_one_more_than_limit_waits_for_the_window(self):
        clock = FakeClock()
        limiter = SlidingWindowLimiter(30, 60, clock=clock, sleep=clock.sleep)
        issued = []
        for _ in range(31):
            limiter.acquire()
            issued.append(clock.now)

        self.assertEqual(issued[:30], [1000.0] * 30)
        self.assertEqual(len(clock.sleeps), 1)
        self.assertAlmostEqual(clock.sleeps[0], 60.1)
        self.assertGreaterEqual(issued[30] - issued[0], 60)
        # No trailing 60s window ever holds more than 30 requests
        for t in issued:
            self.assertLessEqual(sum(1 for s in issued if t <= s < t + 60), 30)

    def test_rejects_bad_configuration(self):
        with self.assertRaises(ValueError):
            SlidingWindowLimiter(0, 60)
        with self.assertRaises(ValueError):
            SlidingWindowLimiter(1, 0)


class TestRateLimitedClient(unittest.TestCase):

    def setUp(self):
        self.clock = FakeClock()
        self.session = MagicMock()
        self.recorder = MagicMock()
        self.client = RateLimitedClient(
            'https://api.geckoterminal.com/api/v2', 5, 60,
            usage_recorder=self.recorder,
            session=self.session,
            limiter=SlidingWindowLimiter(5, 60, clock=self.clock, sleep=self.clock.sleep),
        )

    def tearDown(self):
        self.client.close()

    def test_service_name_from_base_url(self):
        self.assertEqual(self.client.service_name, 'geckoterminal')
        self.assertEqual(service_name_for('https://yields.llama.fi'), 'defillama')
        self.assertEqual(service_name_for('https://example.com'), 'unknown')

    def test_request_returns_json_and_records_usage(self):
        self.session.get.return_value = make_response(payload={'data': [1, 2]})

        result = self.client.request('/networks', {'page': 1})

        self.assertEqual(result, {'data': [1, 2]})
        self.session.get.assert_called_once_with(
            'https://api.geckoterminal.com/api/v2/networks', params={'page': 1}, timeout=self.client.timeout
        )
        self.recorder.assert_called_once_with('geckoterminal', '/networks')
        stats = self.client.usage_stats()
        self.assertEqual(stats['in_window'], 1)
        self.assertEqual(stats['remaining'], 4)

    def test_recorder_failure_does_not_fail_request(self):
        self.session.get.return_value = make_response(payload={'ok': True})
        self.recorder.side_effect = RuntimeError("db down")
        self.assertEqual(self.client.request('/networks'), {'ok': True})

    def test_non_2xx_raises_provider_error(self):
        self.session.get.return_value = make_response(status=404, reason='Not Found')
        with self.assertRaises(ProviderError) as ctx:
            self.client.request('/networks/eth/pools/0xmissing')
        self.assertEqual(ctx.exception.status, 404)
        self.assertEqual(ctx.exception.endpoint, '/networks/eth/pools/0xmissing')
        self.assertFalse(ctx.exception.retryable)
        self.recorder.assert_not_called()

    def test_server_errors_are_retryable(self):
        self.session.get.return_value = make_response(status=503, reason='Unavailable')
        with self.assertRaises(ProviderError) as ctx:
            self.client.request('/networks')
        self.assertTrue(ctx.exception.retryable)

    def test_network_failure_is_retryable_without_status(self):
        self.session.get.side_effect = requests.exceptions.ConnectionError("reset")
        with self.assertRaises(ProviderError) as ctx:
            self.client.request('/networks')
        self.assertIsNone(ctx.exception.status)
        self.assertTrue(ctx.exception.retryable)

    def test_hard_timeout(self):
        release = threading.Event()

        def hang(*args, **kwargs):
            release.wait(5)
            return make_response()

        self.session.get.side_effect = hang
        self.client.hard_timeout = 0.05
        try:
            with self.assertRaises(ProviderError) as ctx:
                self.client.request('/networks')
        finally:
            release.set()
        self.assertIsNone(ctx.exception.status)
        self.assertTrue(ctx.exception.retryable)

    def test_requests_are_throttled(self):
        self.session.get.return_value = make_response(payload={})
        for _ in range(6):
            self.client.request('/networks')
        self.assertEqual(self.session.get.call_count, 6)
        self.assertEqual(len(self.clock.sleeps), 1)


class TestGeckoTerminalClient(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.sleeps = []
        self.client = GeckoTerminalClient(session=self.session, sleep=self.sleeps.append)

    def tearDown(self):
        self.client.close()

    def test_network_mapping(self):
        self.assertEqual(gecko_network('polygon'), 'polygon_pos')
        self.assertEqual(gecko_network('zksync'), 'zksync')

    def test_get_ohlcv_parses_candles(self):
        candles = [[1700003600, 1, 1, 1, 2.0, 10], [1700000000, 1, 1, 1, 1.5, 5]]
        self.session.get.return_value = make_response(
            payload={'data': {'attributes': {'ohlcv_list': candles}}}
        )

        result = self.client.get_ohlcv('polygon', '0xpool', limit=100, before_timestamp=1700007200)

        self.assertEqual(result, candles)
        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], 'https://api.geckoterminal.com/api/v2/networks/polygon_pos/pools/0xpool/ohlcv/hour')
        self.assertEqual(kwargs['params'], {'limit': 100, 'before_timestamp': 1700007200})

    def test_metadata_endpoints(self):
        self.session.get.return_value = make_response(payload={'data': []})

        self.client.get_pool_data('arbitrum', '0xpool')
        self.assertEqual(self.session.get.call_args.args[0],
                         'https://api.geckoterminal.com/api/v2/networks/arbitrum/pools/0xpool')

        self.client.get_pools_for_network('base', page=3)
        self.assertEqual(self.session.get.call_args.kwargs['params'], {'page': 3})

    def test_get_ohlcv_empty_payload(self):
        self.session.get.return_value = make_response(payload={'data': None})
        self.assertEqual(self.client.get_ohlcv('eth', '0xpool'), [])

    def test_get_top_pools_pages(self):
        page = {'data': [{'id': i} for i in range(20)]}
        self.session.get.return_value = make_response(payload=page)

        pools = self.client.get_top_pools('eth', limit=30)

        self.assertEqual(len(pools), 30)
        self.assertEqual(self.session.get.call_count, 2)
        self.assertEqual(self.sleeps, [1.0])


class TestDeFiLlamaClient(unittest.TestCase):

    def setUp(self):
        self.session = MagicMock()
        self.session.get.return_value = make_response(payload={
            'status': 'success',
            'data': [
                {'pool': 'abc-1', 'chain': 'Ethereum', 'symbol': 'WETH-USDC', 'tvlUsd': 5e6},
                {'pool': 'abc-2', 'chain': 'Arbitrum', 'symbol': 'ARB-WETH', 'tvlUsd': 2e6},
                {'pool': 'abc-3', 'chain': 'Ethereum', 'symbol': 'WBTC-USDC', 'tvlUsd': 5e5},
            ],
        })
        self.client = DeFiLlamaClient(session=self.session)

    def tearDown(self):
        self.client.close()

    def test_listing_is_cached(self):
        self.client.get_all_pools()
        self.client.get_pools_by_chain('ethereum')
        self.client.find_pool('abc-2')
        self.assertEqual(self.session.get.call_count, 1)

    def test_lookups(self):
        self.assertEqual([p['pool'] for p in self.client.get_pools_by_chain('Ethereum')], ['abc-1', 'abc-3'])
        self.assertEqual(self.client.find_pool('ABC-2')['chain'], 'Arbitrum')
        self.assertIsNone(self.client.find_pool('nope'))
        self.assertEqual([p['pool'] for p in self.client.search_pools_by_tokens('usdc', 'weth')], ['abc-1'])
        self.assertEqual([p['pool'] for p in self.client.search_pools_by_tokens('WETH', 'ARB', chain='arbitrum')], ['abc-2'])
        self.assertEqual(self.client.search_pools_by_tokens('WETH', 'USDC', chain='Base'), [])

    def test_unexpected_payload_raises(self):
        self.session.get.return_value = make_response(payload={'status': 'error'})
        with self.assertRaises(ProviderError):
            self.client.get_all_pools()


if __name__ == '__main__':
    unittest.main()
