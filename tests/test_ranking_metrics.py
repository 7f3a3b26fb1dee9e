import unittest

import numpy as np

from gbm_engine.exceptions import ConfigurationError
from gbm_engine.utils.ranking_metrics import (
    RankingMetric,
    initiate_metric,
    score_ranks,
)


class RankingMetricTests(unittest.TestCase):
    """
    A class that defines unit tests for the ranking metrics of the pairwise loss.
    """

    def test_score_ranks(self):
        """Test that ranks follow decreasing scores with ties in order of appearance."""
        np.testing.assert_array_equal(
            score_ranks(np.array([0.1, 3.0, 0.1, 2.0])), np.array([3, 1, 4, 2])
        )

    def test_concordance(self):
        metric = initiate_metric("conc")
        y = np.array([2.0, 1.0, 0.0])
        self.assertEqual(1.0, metric.measure(y=y, ranks=np.array([1, 2, 3])))
        self.assertEqual(0.0, metric.measure(y=y, ranks=np.array([3, 2, 1])))

    def test_reciprocal_rank(self):
        """Test the reciprocal rank with and without a rank cut-off."""
        y = np.array([0.0, 1.0, 0.0])
        ranks = np.array([1, 2, 3])
        self.assertEqual(0.5, initiate_metric("mrr").measure(y=y, ranks=ranks))
        self.assertEqual(
            0.0, initiate_metric("mrr", max_rank=1).measure(y=y, ranks=ranks)
        )

    def test_average_precision(self):
        y = np.array([1.0, 0.0, 1.0])
        ranks = np.array([1, 2, 3])
        self.assertAlmostEqual(
            first=(1 + 2 / 3) / 2,
            second=initiate_metric("map").measure(y=y, ranks=ranks),
            places=12,
        )

    def test_ndcg(self):
        """Test that the ideal ordering has an ndcg of 1."""
        metric = initiate_metric("ndcg")
        y = np.array([3.0, 0.0, 2.0, 1.0])
        self.assertAlmostEqual(
            first=1.0,
            second=metric.measure(y=y, ranks=np.array([1, 4, 2, 3])),
            places=12,
        )
        self.assertLess(metric.measure(y=y, ranks=np.array([4, 1, 2, 3])), 1.0)

    def test_ndcg_swap_cost_matches_brute_force(self):
        """
        Test that the closed form swap cost of ndcg equals the change found by
        swapping the ranks and re-evaluating the metric.
        """
        rng = np.random.default_rng(seed=3)
        y = rng.integers(0, 4, 8).astype(float)
        ranks = score_ranks(rng.normal(0, 1, 8))
        i, j = np.nonzero(y[:, None] > y[None, :])
        for max_rank in [0, 3]:
            metric = initiate_metric("ndcg", max_rank=max_rank)
            np.testing.assert_allclose(
                metric.swap_cost(y=y, ranks=ranks, i=i, j=j),
                RankingMetric.swap_cost(metric, y=y, ranks=ranks, i=i, j=j),
                atol=1e-12,
            )

    def test_invalid_metric(self):
        with self.assertRaises(ConfigurationError):
            initiate_metric("auc")
        with self.assertRaises(ConfigurationError):
            initiate_metric("ndcg", max_rank=-2)


if __name__ == "__main__":
    unittest.main()
