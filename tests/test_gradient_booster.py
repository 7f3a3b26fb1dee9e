import unittest

import numpy as np
import pandas as pd

from gbm_engine import GradientBooster, deviance, extend, fit, predict
from gbm_engine.boosting_tree import LEAF
from gbm_engine.exceptions import ConfigurationError, UnknownDistributionError
from gbm_engine.utils.distributions import MAX_LINEAR_PREDICTOR, initiate_distribution


def simulate_data(distribution: str, n: int = 300, random_state: int = 10):
    """
    Simulates features, response and auxiliary data for a distribution.

    :param distribution: Name of the distribution.
    :param n: Number of observations.
    :param random_state: Seed of the simulation.
    :return: Tuple of features, response and auxiliary data.
    """
    rng = np.random.default_rng(seed=random_state)
    X = rng.normal(0, 1, (n, 3))
    z = 0.5 * X[:, 0] - 0.5 * (X[:, 1] > 0)
    misc = None
    if distribution == "multinomial":
        z_all = np.stack([np.zeros(n), z, -z])
        y = initiate_distribution("multinomial", n_classes=3).simulate(z_all, rng=rng)
    elif distribution in ("bernoulli", "huberized", "adaboost"):
        y = initiate_distribution("bernoulli").simulate(z[None, :], rng=rng)
    elif distribution == "poisson":
        y = initiate_distribution("poisson").simulate(z[None, :], rng=rng)
    elif distribution == "coxph":
        y = rng.exponential(np.exp(-z))
        misc = rng.binomial(1, 0.8, n).astype(float)
    elif distribution == "pairwise":
        y = rng.integers(0, 3, n).astype(float)
        misc = np.repeat(np.arange(n // 10), 10)
    elif distribution == "tdist":
        y = 0.5 * z + rng.normal(0, 0.3, n)
    else:
        y = initiate_distribution("gaussian").simulate(z[None, :], rng=rng)
    return X, y, misc


class GradientBoosterTests(unittest.TestCase):
    """
    A class that defines unit tests for the boosting driver and the `GradientBooster` class.
    """

    def test_gaussian_initial_value_is_mean(self):
        X, y, _ = simulate_data("gaussian")
        ensemble = fit(X, y, n_estimators=0, distribution="gaussian")
        self.assertAlmostEqual(first=y.mean(), second=ensemble.init_f[0], places=10)
        np.testing.assert_allclose(predict(ensemble, X), np.full(len(y), y.mean()))

    def test_poisson_initial_value_with_offset(self):
        X, y, _ = simulate_data("poisson")
        offset = np.log(np.random.default_rng(seed=1).uniform(0.5, 2, len(y)))
        ensemble = fit(X, y, offset=offset, n_estimators=0, distribution="poisson")
        self.assertAlmostEqual(
            first=np.log(y.sum() / np.exp(offset).sum()),
            second=ensemble.init_f[0],
            places=10,
        )

    def test_train_deviance_non_increasing(self):
        """
        Test that the training deviance never increases without bagging, for
        every distribution with a deviance that trees descend on.
        """
        for name in [
            "gaussian",
            "laplace",
            "tdist",
            "bernoulli",
            "huberized",
            "multinomial",
            "adaboost",
            "poisson",
            "coxph",
            "quantile",
        ]:
            X, y, misc = simulate_data(name)
            ensemble = fit(
                X,
                y,
                misc=misc,
                n_estimators=30,
                interaction_depth=2,
                learning_rate=0.1,
                bag_fraction=1.0,
                distribution=name,
                random_state=1,
            )
            train_deviance = np.array(ensemble.train_deviance)
            self.assertTrue(
                np.all(np.diff(train_deviance) <= 1e-10),
                msg=f"Training deviance increases for {name}",
            )

    def test_poisson_linear_predictor_bound(self):
        """
        Test that no poisson linear predictor exceeds 19 on extreme counts,
        also when a large offset carries part of the linear predictor.
        """
        rng = np.random.default_rng(seed=3)
        n = 400
        X = rng.normal(0, 1, (n, 2))
        y = np.where(X[:, 0] > 0.5, 1e7, 0.0) * (rng.random(n) < 0.9)
        for offset in [None, np.where(X[:, 1] > 0, 12.0, -12.0)]:
            ensemble = fit(
                X,
                y,
                offset=offset,
                n_estimators=50,
                interaction_depth=3,
                learning_rate=1.0,
                bag_fraction=0.8,
                distribution="poisson",
                random_state=2,
            )
            for n_trees in range(ensemble.n_iterations + 1):
                z = predict(ensemble, X, n_trees=n_trees, offset=offset)
                self.assertTrue(np.all(np.abs(z) <= MAX_LINEAR_PREDICTOR + 1e-9))

    def test_monotone_constraints_in_fit(self):
        """
        Test that all splits on a constrained feature respect its direction,
        for an increasing and a decreasing trend.
        """
        rng = np.random.default_rng(seed=4)
        n = 500
        X = rng.normal(0, 1, (n, 2))
        noise = rng.normal(0, 0.5, n)
        grid = np.column_stack([np.linspace(-3, 3, 200), np.zeros(200)])
        for sign in [1, -1]:
            y = sign * (X[:, 0] - np.sin(4 * X[:, 0])) + X[:, 1] + noise
            ensemble = fit(
                X,
                y,
                monotone_constraints=[sign, 0],
                n_estimators=100,
                interaction_depth=3,
                bag_fraction=0.5,
                random_state=5,
            )
            n_constrained = 0
            for trees in ensemble.trees:
                tree = trees[0]
                for node in np.flatnonzero(tree.feature == 0):
                    n_constrained += 1
                    left = tree.value[tree.left[node]]
                    right = tree.value[tree.right[node]]
                    self.assertLessEqual(sign * (left - right), 1e-10)
            self.assertGreater(n_constrained, 0, msg=f"No splits on x0 for {sign}")

            stumps = fit(
                X,
                y,
                monotone_constraints=[sign, 0],
                n_estimators=100,
                interaction_depth=1,
                random_state=5,
            )
            self.assertTrue(
                np.all(sign * np.diff(predict(stumps, grid)) >= -1e-10),
                msg=f"Stump fit not monotone for {sign}",
            )

    def test_reproducibility(self):
        """Test that the same seed gives bit-identical ensembles."""
        X, y, _ = simulate_data("bernoulli")
        ensembles = [
            fit(
                X,
                y,
                n_estimators=20,
                interaction_depth=3,
                bag_fraction=0.5,
                max_features=2,
                train_fraction=0.8,
                distribution="bernoulli",
                random_state=11,
            )
            for _ in range(2)
        ]
        self.assertEqual(ensembles[0].to_dict(), ensembles[1].to_dict())

    def test_end_to_end_linear_gaussian(self):
        rng = np.random.default_rng(seed=12)
        n = 1000
        X = rng.normal(0, 1, (n, 4))
        y = X @ np.array([1.0, -2.0, 0.5, 0.0]) + rng.normal(0, 1, n)
        ensemble = fit(
            X,
            y,
            n_estimators=100,
            learning_rate=0.1,
            bag_fraction=0.5,
            interaction_depth=2,
            random_state=13,
        )
        self.assertEqual(100, ensemble.n_iterations)
        self.assertLess(ensemble.train_deviance[99], ensemble.train_deviance[0])

    def test_extend_equivalence(self):
        """Test that fitting 50 iterations and extending by 50 equals fitting 100."""
        for name in ["gaussian", "multinomial", "pairwise"]:
            X, y, misc = simulate_data(name)
            params = dict(
                misc=misc,
                interaction_depth=2,
                bag_fraction=0.5,
                train_fraction=0.8,
                max_features=2,
                distribution=name,
                random_state=21,
            )
            if name == "pairwise":
                params["min_samples_leaf"] = 5
            ensemble = fit(X, y, n_estimators=50, **params)
            extend(ensemble, 50)
            ensemble_100 = fit(X, y, n_estimators=100, **params)
            self.assertEqual(
                first=ensemble_100.to_dict(),
                second=ensemble.to_dict(),
                msg=f"Extended {name} ensemble differs from a single fit",
            )
            np.testing.assert_array_equal(predict(ensemble, X), predict(ensemble_100, X))

    def test_extend_with_data(self):
        """Test extending an ensemble that does not keep its data."""
        X, y, _ = simulate_data("gaussian")
        ensemble = fit(X, y, n_estimators=10, keep_data=False, random_state=3)
        with self.assertRaises(ConfigurationError):
            extend(ensemble, 5)
        with self.assertRaises(ConfigurationError):
            extend(ensemble, 5, X=X[:, :2], y=y)
        extend(ensemble, 5, X=X, y=y)
        self.assertEqual(15, ensemble.n_iterations)
        self.assertEqual(15, len(ensemble.train_deviance))

    def test_validation_deviance(self):
        """Test that the validation deviance is recorded for the held-out suffix."""
        X, y, _ = simulate_data("gaussian")
        ensemble = fit(X, y, n_estimators=20, train_fraction=0.7, random_state=3)
        self.assertEqual(210, ensemble.n_train)
        self.assertAlmostEqual(
            first=ensemble.valid_deviance[-1],
            second=deviance(ensemble, X, y, index=slice(210, None)),
            places=10,
        )
        self.assertAlmostEqual(
            first=ensemble.train_deviance[9],
            second=deviance(ensemble, X, y, n_trees=10, index=slice(0, 210)),
            places=10,
        )
        ensemble = fit(X, y, n_estimators=5, random_state=3)
        self.assertTrue(np.all(np.isnan(ensemble.valid_deviance)))

    def test_multinomial(self):
        X, y, _ = simulate_data("multinomial")
        ensemble = fit(X, y, n_estimators=20, distribution="multinomial", random_state=1)
        self.assertEqual((3, len(y)), predict(ensemble, X).shape)
        self.assertEqual(3, len(ensemble.trees[0]))
        self.assertLess(ensemble.train_deviance[-1], ensemble.train_deviance[0])

    def test_pairwise(self):
        """Test ranking with group-wise bagging."""
        X, y, groups = simulate_data("pairwise")
        y = y + (X[:, 0] > 0)
        ensemble = fit(
            X,
            y,
            misc=groups,
            n_estimators=30,
            min_samples_leaf=5,
            train_fraction=0.75,
            distribution={"name": "pairwise", "metric": "ndcg", "max_rank": 5},
            random_state=1,
        )
        self.assertEqual(230, ensemble.n_train)
        self.assertTrue(0 <= ensemble.train_deviance[-1] <= 1)
        self.assertLess(ensemble.train_deviance[-1], ensemble.train_deviance[0])

    def test_coxph(self):
        X, y, delta = simulate_data("coxph")
        ensemble = fit(X, y, misc=delta, n_estimators=20, distribution="coxph")
        self.assertEqual(0.0, ensemble.init_f[0])
        self.assertLess(ensemble.train_deviance[-1], ensemble.train_deviance[0])

    def test_coxph_with_zero_weights(self):
        """
        Test that coxph fits when observations have zero weight, including
        the one with the longest time, which leaves empty risk sets.
        """
        X, y, delta = simulate_data("coxph")
        w = np.ones(len(y))
        w[::7] = 0.0
        w[np.argmax(y)] = 0.0
        ensemble = fit(
            X,
            y,
            w=w,
            misc=delta,
            n_estimators=20,
            interaction_depth=2,
            distribution="coxph",
            random_state=3,
        )
        self.assertTrue(np.all(np.isfinite(ensemble.train_deviance)))
        self.assertTrue(np.all(np.isfinite(predict(ensemble, X))))
        self.assertLess(ensemble.train_deviance[-1], ensemble.train_deviance[0])

        loss = initiate_distribution("coxph").loss(
            y=y, z=np.zeros((1, len(y))), w=w, misc=delta
        )
        self.assertTrue(np.all(np.isfinite(loss)))
        self.assertTrue(np.all(loss[w == 0] == 0))

    def test_configuration_errors(self):
        """Test that invalid configurations fail before fitting."""
        X, y, _ = simulate_data("gaussian", n=100)
        invalid = [
            dict(distribution="gamma"),
            dict(interaction_depth=0),
            dict(min_samples_leaf=0),
            dict(learning_rate=0.0),
            dict(bag_fraction=0.0),
            dict(bag_fraction=1.5),
            dict(max_features=0),
            dict(max_features=4),
            dict(monotone_constraints=[1, 0]),
            dict(monotone_constraints=[2, 0, 0]),
            dict(min_samples_leaf=25),
            dict(w=-np.ones(100)),
        ]
        for params in invalid:
            with self.assertRaises(ConfigurationError, msg=str(params)):
                fit(X, y, n_estimators=5, **params)
        with self.assertRaises(UnknownDistributionError):
            fit(X, y, distribution="gamma")

        X_nan = X.copy()
        X_nan[3, 1] = np.nan
        with self.assertRaises(ConfigurationError):
            fit(X_nan, y, n_estimators=5)

    def test_grouped_configuration_errors(self):
        X, y, groups = simulate_data("pairwise", n=100)
        with self.assertRaises(ConfigurationError):
            fit(X, y, n_estimators=5, distribution="pairwise")
        with self.assertRaises(ConfigurationError):
            fit(X, y, misc=groups, n_train=55, n_estimators=5, distribution="pairwise")
        w = np.ones(100)
        w[0] = 2.0
        with self.assertRaises(ConfigurationError):
            fit(X, y, w=w, misc=groups, n_estimators=5, distribution="pairwise")

    def test_data_frame_with_nominal_feature(self):
        """
        Test fitting on a data frame with a categorical column, which is split
        on as a nominal feature and named in the feature importances.
        """
        rng = np.random.default_rng(seed=8)
        n = 400
        df = pd.DataFrame(
            {
                "x": rng.normal(0, 1, n),
                "color": pd.Categorical(rng.choice(["red", "green", "blue"], n)),
            }
        )
        y = df["x"] + 2 * (df["color"] == "green") + rng.normal(0, 0.3, n)
        with self.assertRaises(ConfigurationError):
            fit(df, y, monotone_constraints=[0, 1])

        gbm = GradientBooster(n_estimators=50, interaction_depth=2, random_state=2)
        gbm.fit(df, y)
        self.assertEqual([0, 3], gbm.ensemble.var_type.tolist())
        importances = gbm.feature_importances()
        self.assertEqual(["x", "color"], importances.index.tolist())
        self.assertAlmostEqual(first=1.0, second=importances.sum(), places=10)
        self.assertTrue(
            any(
                tree.feature[node] == 1
                for trees in gbm.ensemble.trees
                for tree in trees
                for node in np.flatnonzero(tree.feature != LEAF)
            )
        )
        z = gbm.predict(df.iloc[:5])
        self.assertEqual((5,), z.shape)
        np.testing.assert_array_equal(z, gbm.predict(df)[:5])

    def test_best_iteration(self):
        X, y, _ = simulate_data("gaussian")
        gbm = GradientBooster(
            n_estimators=40, train_fraction=0.7, bag_fraction=0.5, random_state=3
        )
        gbm.fit(X, y)
        best = gbm.best_iteration("test")
        self.assertEqual(
            int(np.argmin(gbm.ensemble.valid_deviance)) + 1,
            best,
        )
        self.assertTrue(1 <= gbm.best_iteration("OOB") <= 40)
        with self.assertRaises(ValueError):
            gbm.best_iteration("cv")

    def test_booster_extend(self):
        X, y, _ = simulate_data("laplace")
        gbm = GradientBooster(distribution="laplace", n_estimators=10, random_state=6)
        gbm.fit(X, y)
        gbm.extend(5)
        self.assertEqual(15, gbm.n_estimators)
        self.assertAlmostEqual(
            first=gbm.ensemble.train_deviance[-1],
            second=gbm.deviance(X, y),
            places=10,
        )


if __name__ == "__main__":
    unittest.main()
