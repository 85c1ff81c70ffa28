import math
import unittest
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_processing.analytics_math import (
    calculate_annualized_volatility,
    calculate_rolling_volatility,
    calculate_log_returns,
    calculate_pool_fee_apr,
    calculate_position_fee_apr,
    calculate_fvr,
    classify_fvr,
    calculate_expected_il_rate,
    calculate_breakeven_fee_apr,
    calculate_excess_yield,
    calculate_il_risk_score,
    estimate_impermanent_loss,
    calculate_position_value,
    calculate_hodl_value,
)


class TestVolatility(unittest.TestCase):

    def setUp(self):
        self.returns = [0.01, -0.015, 0.02, -0.01, 0.005]

    def test_sample_std_annualized(self):
        # ddof=1 std of [0.01, -0.01] is sqrt(0.0002)
        vol = calculate_annualized_volatility([0.01, -0.01], 'daily')
        self.assertAlmostEqual(vol, math.sqrt(0.0002) * math.sqrt(365))

    def test_scaling_between_frequencies(self):
        hourly = calculate_annualized_volatility(self.returns, 'hourly')
        daily = calculate_annualized_volatility(self.returns, 'daily')
        five_min = calculate_annualized_volatility(self.returns, '5min')
        self.assertAlmostEqual(hourly / daily, math.sqrt(24))
        self.assertAlmostEqual(five_min / hourly, math.sqrt(12))

    def test_too_few_returns(self):
        self.assertIsNone(calculate_annualized_volatility([0.01]))
        self.assertIsNone(calculate_annualized_volatility([]))

    def test_unknown_frequency(self):
        with self.assertRaises(ValueError):
            calculate_annualized_volatility(self.returns, 'weekly')

    def test_rolling_with_five_hourly_returns_is_not_computable(self):
        result = calculate_rolling_volatility(self.returns, 'hourly')
        self.assertIsNone(result)

    def test_rolling_omits_windows_longer_than_history(self):
        returns = [0.01, -0.01] * 15  # 30 hourly returns
        result = calculate_rolling_volatility(returns, 'hourly')
        self.assertEqual(set(result), {'1d'})
        self.assertAlmostEqual(result['1d'], calculate_annualized_volatility(returns[-24:], 'hourly'))

    def test_rolling_daily_windows(self):
        returns = [0.02, -0.01, 0.015] * 10  # 30 daily returns
        result = calculate_rolling_volatility(returns, 'daily')
        # a one-observation window has no sample deviation
        self.assertEqual(set(result), {'7d', '30d'})

    def test_rolling_unsupported_frequency(self):
        self.assertIsNone(calculate_rolling_volatility([0.01] * 30, '15min'))

    def test_log_returns_skip_non_positive(self):
        returns = calculate_log_returns([100, 110, 0, 121, 133.1])
        self.assertEqual(len(returns), 2)
        self.assertAlmostEqual(returns[0], math.log(1.1))
        self.assertAlmostEqual(returns[1], math.log(1.1))
        self.assertEqual(calculate_log_returns([100]), [])


class TestFeesAndFvr(unittest.TestCase):

    def test_pool_fee_apr(self):
        self.assertAlmostEqual(calculate_pool_fee_apr(100, 365_000), 0.1)
        self.assertEqual(calculate_pool_fee_apr(100, 0), 0)
        self.assertEqual(calculate_pool_fee_apr(100, None), 0)
        self.assertEqual(calculate_pool_fee_apr(None, 1000), 0)

    def test_position_fee_apr(self):
        self.assertAlmostEqual(calculate_position_fee_apr(0.2, 0.5, 0.5), 0.05)
        self.assertEqual(calculate_position_fee_apr(0.2), 0.2)

    def test_fvr(self):
        self.assertAlmostEqual(calculate_fvr(0.3, 0.6), 0.5)
        self.assertEqual(calculate_fvr(0.3, 0), 0)
        self.assertEqual(calculate_fvr(0.3, None), 0)
        self.assertEqual(calculate_fvr(None, 0.4), 0)

    def test_classification_boundaries(self):
        self.assertEqual(classify_fvr(1.0), 'fair')
        self.assertEqual(classify_fvr(1.0001), 'attractive')
        self.assertEqual(classify_fvr(0.6), 'overpriced')
        self.assertEqual(classify_fvr(0.6001), 'fair')
        self.assertEqual(classify_fvr(None), 'insufficient_data')

    def test_risk_score_bands(self):
        self.assertEqual(calculate_il_risk_score(2.0), 2)
        self.assertEqual(calculate_il_risk_score(1.5), 2)
        self.assertEqual(calculate_il_risk_score(1.0001), 3)
        self.assertEqual(calculate_il_risk_score(0.8), 5)
        self.assertEqual(calculate_il_risk_score(0.6001), 6)
        self.assertEqual(calculate_il_risk_score(0.5), 8)
        self.assertEqual(calculate_il_risk_score(0.0), 10)
        self.assertIsNone(calculate_il_risk_score(None))

    def test_fee_apr_against_volatility_scenario(self):
        fvr = calculate_fvr(0.179, 0.42)
        self.assertAlmostEqual(fvr, 0.426, places=3)
        # 0.426 sits below the 0.6 fair threshold
        self.assertEqual(classify_fvr(fvr), 'overpriced')
        score = calculate_il_risk_score(fvr)
        self.assertEqual(score, 9)
        self.assertTrue(4 <= score <= 9)


class TestImpermanentLoss(unittest.TestCase):

    def test_expected_il_and_breakeven(self):
        rate = calculate_expected_il_rate(0.42)
        self.assertAlmostEqual(rate, 0.42 ** 2 * 0.5 * 1.5)
        self.assertEqual(calculate_breakeven_fee_apr(rate), rate)
        self.assertAlmostEqual(calculate_expected_il_rate(0.42, 1.0), 0.0882)
        self.assertIsNone(calculate_expected_il_rate(None))

    def test_excess_yield(self):
        self.assertAlmostEqual(calculate_excess_yield(0.25, 0.1), 0.15)

    def test_constant_product_il(self):
        self.assertAlmostEqual(estimate_impermanent_loss(1.0), 0.0)
        self.assertAlmostEqual(estimate_impermanent_loss(4.0, is_concentrated=False), -0.2)
        self.assertAlmostEqual(estimate_impermanent_loss(4.0), -0.3)
        self.assertEqual(estimate_impermanent_loss(0), 0)

    def test_position_value_piecewise(self):
        self.assertAlmostEqual(calculate_position_value(1.0, 0.25, 4.0, 1.0), 1.0)
        self.assertAlmostEqual(calculate_position_value(0.25, 0.25, 4.0, 1.0), 0.375)
        self.assertAlmostEqual(calculate_position_value(9.0, 0.25, 4.0, 1.0), 1.5)

    def test_hodl_value(self):
        self.assertAlmostEqual(calculate_hodl_value(1000, 2.0, 1.0), 1500)


if __name__ == '__main__':
    unittest.main()
