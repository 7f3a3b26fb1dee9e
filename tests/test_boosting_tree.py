import unittest

import numpy as np

from gbm_engine.boosting_tree import LEAF, BoostingTree
from gbm_engine.utils.distributions import initiate_distribution


class BoostingTreeTests(unittest.TestCase):
    """
    A class that defines unit tests for the `BoostingTree` class.
    """

    def setUp(self):
        self.rng = np.random.default_rng(seed=10)
        self.dist = initiate_distribution("gaussian")

    def test_single_split_on_step(self):
        """
        Test that a stump finds the step of a step function, with the
        threshold at the midpoint and observations below it going left.
        """
        X = np.arange(20, dtype=float)[:, None]
        Z = np.where(X[:, 0] < 8, -1.0, 2.0)
        tree = BoostingTree(interaction_depth=1, min_samples_leaf=2)
        tree.grow(X=X, Z=Z, w=np.ones(20), in_bag=np.ones(20, dtype=bool), rng=self.rng)

        self.assertEqual(0, tree.feature[0])
        self.assertEqual(7.5, tree.threshold[0])
        np.testing.assert_allclose(tree.predict(X), Z)
        self.assertAlmostEqual(
            first=8 * 12 / 20 * 3.0**2,
            second=tree.improvement[0],
            places=10,
            msg="Split improvement not as expected",
        )

    def test_no_legal_split_gives_single_leaf(self):
        """Test that a tree without a legal split is a leaf with the in-bag mean."""
        X = self.rng.normal(0, 1, (10, 2))
        Z = self.rng.normal(0, 1, 10)
        w = self.rng.uniform(0.5, 1.5, 10)
        in_bag = np.arange(10) < 8
        tree = BoostingTree(interaction_depth=3, min_samples_leaf=5)
        tree.grow(X=X, Z=Z, w=w, in_bag=in_bag, rng=self.rng)

        self.assertEqual(1, len(tree.feature))
        self.assertAlmostEqual(
            first=np.sum(w[in_bag] * Z[in_bag]) / np.sum(w[in_bag]),
            second=tree.value[0],
            places=12,
        )

    def test_interaction_depth_is_number_of_splits(self):
        X = self.rng.normal(0, 1, (200, 3))
        Z = X[:, 0] + 2 * X[:, 1] ** 2 + self.rng.normal(0, 0.1, 200)
        for depth in [1, 2, 5]:
            tree = BoostingTree(interaction_depth=depth, min_samples_leaf=5)
            tree.grow(
                X=X, Z=Z, w=np.ones(200), in_bag=np.ones(200, dtype=bool), rng=self.rng
            )
            self.assertEqual(depth, np.sum(tree.feature != LEAF))
            self.assertEqual(depth + 1, len(tree.terminal_nodes()))

    def test_min_samples_leaf(self):
        """Test that every node keeps at least min_samples_leaf in-bag observations."""
        X = self.rng.normal(0, 1, (300, 2))
        Z = np.exp(X[:, 0]) + self.rng.normal(0, 0.1, 300)
        tree = BoostingTree(interaction_depth=6, min_samples_leaf=25)
        tree.grow(
            X=X, Z=Z, w=np.ones(300), in_bag=np.ones(300, dtype=bool), rng=self.rng
        )
        self.assertTrue(np.all(tree.n_samples >= 25))

    def test_monotone_constraints_stress(self):
        """
        Test that every split on a constrained feature orders the child means
        in the direction of the constraint, on data trending the other way.
        """
        n_splits = 0
        for _ in range(50):
            X = self.rng.normal(0, 1, (150, 3))
            Z = -X[:, 0] + np.sin(3 * X[:, 0]) + X[:, 1] + self.rng.normal(0, 1, 150)
            w = self.rng.uniform(0.5, 2, 150)
            in_bag = self.rng.random(150) < 0.7
            tree = BoostingTree(
                interaction_depth=4,
                min_samples_leaf=5,
                monotone_constraints=np.array([1, -1, 0]),
            )
            tree.grow(X=X, Z=Z, w=w, in_bag=in_bag, rng=self.rng)
            for node in np.flatnonzero(tree.feature != LEAF):
                left, right = tree.value[tree.left[node]], tree.value[tree.right[node]]
                if tree.feature[node] == 0:
                    n_splits += 1
                    self.assertLessEqual(left, right + 1e-12)
                elif tree.feature[node] == 1:
                    n_splits += 1
                    self.assertGreaterEqual(left + 1e-12, right)
        self.assertGreater(n_splits, 0)

    def test_nominal_split(self):
        """Test that nominal levels are grouped by their mean working response."""
        levels = np.tile(np.arange(4), 25)
        X = levels[:, None].astype(float)
        Z = np.array([0.0, 5.0, 0.0, 5.0])[levels]
        tree = BoostingTree(
            interaction_depth=1, min_samples_leaf=5, var_type=np.array([4])
        )
        tree.grow(
            X=X, Z=Z, w=np.ones(100), in_bag=np.ones(100, dtype=bool), rng=self.rng
        )
        self.assertEqual([0, 2], tree.left_levels[0])
        np.testing.assert_allclose(tree.predict(X), Z)
        self.assertEqual(
            tree.right[0], tree.apply(np.array([[-1.0]]))[0], "Unseen level goes right"
        )

    def test_feature_subsampling_is_reproducible(self):
        """Test that the per-node feature draws are reproducible from the seed."""
        X = self.rng.normal(0, 1, (200, 6))
        Z = X @ np.arange(6) + self.rng.normal(0, 1, 200)
        trees = []
        for _ in range(2):
            tree = BoostingTree(interaction_depth=4, min_samples_leaf=5, max_features=2)
            tree.grow(
                X=X,
                Z=Z,
                w=np.ones(200),
                in_bag=np.ones(200, dtype=bool),
                rng=np.random.default_rng(seed=7),
            )
            trees.append(tree)
        self.assertEqual(trees[0].to_dict(), trees[1].to_dict())

    def test_fit_gradients_adjusts_node_values(self):
        """Test that the terminal nodes hold the poisson leaf constants after fitting."""
        dist = initiate_distribution("poisson")
        X = np.arange(40, dtype=float)[:, None]
        y = np.where(X[:, 0] < 20, 1.0, 4.0)
        z = np.zeros((1, 40))
        tree = BoostingTree(interaction_depth=1, min_samples_leaf=5, distribution=dist)
        tree.fit_gradients(
            X=X,
            y=y,
            z=z,
            w=np.ones(40),
            j=0,
            in_bag=np.ones(40, dtype=bool),
            rng=self.rng,
        )
        np.testing.assert_allclose(tree.predict(X), np.log(y))

    def test_feature_importances(self):
        X = self.rng.normal(0, 1, (200, 3))
        Z = 3 * (X[:, 2] > 0) + self.rng.normal(0, 0.1, 200)
        tree = BoostingTree(interaction_depth=2, min_samples_leaf=5)
        tree.grow(
            X=X, Z=Z, w=np.ones(200), in_bag=np.ones(200, dtype=bool), rng=self.rng
        )
        importances = tree.feature_importances(n_features=3)
        self.assertAlmostEqual(
            first=tree.improvement.sum(), second=importances.sum(), places=10
        )
        self.assertEqual(2, np.argmax(importances))

    def test_to_dict_round_trip(self):
        X = self.rng.normal(0, 1, (100, 2))
        Z = X[:, 0] * X[:, 1]
        tree = BoostingTree(interaction_depth=3, min_samples_leaf=5)
        tree.grow(
            X=X, Z=Z, w=np.ones(100), in_bag=np.ones(100, dtype=bool), rng=self.rng
        )
        restored = BoostingTree.from_dict(tree.to_dict(), interaction_depth=3)
        np.testing.assert_array_equal(tree.predict(X), restored.predict(X))


if __name__ == "__main__":
    unittest.main()
