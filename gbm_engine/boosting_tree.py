from typing import List, Optional, Tuple

import numpy as np

from gbm_engine.utils.distributions import Distribution

LEAF = -1


class BoostingTree:
    """
    A regression tree fitted to the working response of a distribution.

    Nodes live in flat arrays indexed by node id, with the root at id 0.
    Children always have larger ids than their parent.

    :param interaction_depth: The number of splits of the tree.
    :param min_samples_leaf: The minimum number of in-bag observations in each child.
    :param distribution: The distribution used for the working response and node values.
    :param max_features: The number of features drawn as split candidates at each node.
        Default is all features.
    :param monotone_constraints: Per-feature constraint, +1 increasing, -1 decreasing, 0 none.
    :param var_type: Per-feature number of levels for nominal features, 0 for continuous ones.
    """

    def __init__(
        self,
        interaction_depth: int = 1,
        min_samples_leaf: int = 10,
        distribution: Optional[Distribution] = None,
        max_features: Optional[int] = None,
        monotone_constraints: Optional[np.ndarray] = None,
        var_type: Optional[np.ndarray] = None,
    ):
        """
        Constructs a new BoostingTree instance.

        :param interaction_depth: The number of splits of the tree.
        :param min_samples_leaf: The minimum number of in-bag observations in each child.
        :param distribution: The distribution used for the working response and node values.
        :param max_features: The number of features drawn as split candidates at each node.
        :param monotone_constraints: Per-feature monotonicity constraint.
        :param var_type: Per-feature number of levels, 0 for continuous features.
        """
        self.interaction_depth = interaction_depth
        self.min_samples_leaf = min_samples_leaf
        self.distribution = distribution
        self.max_features = max_features
        self.monotone_constraints = monotone_constraints
        self.var_type = var_type

        self.feature = np.array([LEAF])
        self.threshold = np.array([np.nan])
        self.left_levels = [None]
        self.left = np.array([LEAF])
        self.right = np.array([LEAF])
        self.value = np.zeros(1)
        self.n_samples = np.zeros(1, dtype=int)
        self.weight = np.zeros(1)
        self.improvement = np.zeros(1)

    def _continuous_split(
        self, x: np.ndarray, Z: np.ndarray, w: np.ndarray, constraint: int
    ) -> Optional[Tuple[float, float, None]]:
        order = np.argsort(x, kind="stable")
        x_sorted = x[order]
        n_left = np.arange(1, len(x))
        w_left = np.cumsum(w[order])[:-1]
        wz_left = np.cumsum((w * Z)[order])[:-1]
        valid = x_sorted[:-1] < x_sorted[1:]
        best = self._best_cut(
            n_left=n_left,
            n_total=len(x),
            w_left=w_left,
            w_total=np.sum(w),
            wz_left=wz_left,
            wz_total=np.sum(w * Z),
            valid=valid,
            constraint=constraint,
        )
        if best is None:
            return None
        improvement, k = best
        return improvement, (x_sorted[k] + x_sorted[k + 1]) / 2, None

    def _nominal_split(
        self, x: np.ndarray, Z: np.ndarray, w: np.ndarray, n_levels: int
    ) -> Optional[Tuple[float, float, List[int]]]:
        levels = x.astype(int)
        counts = np.bincount(levels, minlength=n_levels)
        w_levels = np.bincount(levels, weights=w, minlength=n_levels)
        wz_levels = np.bincount(levels, weights=w * Z, minlength=n_levels)
        present = np.flatnonzero(counts > 0)
        if len(present) < 2:
            return None
        means = np.zeros(len(present))
        np.divide(
            wz_levels[present],
            w_levels[present],
            out=means,
            where=w_levels[present] > 0,
        )
        order = present[np.argsort(means, kind="stable")]
        best = self._best_cut(
            n_left=np.cumsum(counts[order])[:-1],
            n_total=len(x),
            w_left=np.cumsum(w_levels[order])[:-1],
            w_total=np.sum(w),
            wz_left=np.cumsum(wz_levels[order])[:-1],
            wz_total=np.sum(w * Z),
            valid=np.ones(len(order) - 1, dtype=bool),
            constraint=0,
        )
        if best is None:
            return None
        improvement, k = best
        return improvement, np.nan, sorted(order[: k + 1].tolist())

    def _best_cut(
        self,
        n_left: np.ndarray,
        n_total: int,
        w_left: np.ndarray,
        w_total: float,
        wz_left: np.ndarray,
        wz_total: float,
        valid: np.ndarray,
        constraint: int,
    ) -> Optional[Tuple[float, int]]:
        """
        Finds the cut point with the largest weighted reduction in squared error.

        Cut k sends the first k + 1 ordered values to the left child.

        :return: The improvement and the cut index, or None if no cut is legal.
        """
        w_right = w_total - w_left
        valid = (
            valid
            & (n_left >= self.min_samples_leaf)
            & (n_total - n_left >= self.min_samples_leaf)
            & (w_left > 0)
            & (w_right > 0)
        )
        if not valid.any():
            return None
        mean_left = np.zeros(len(w_left))
        mean_right = np.zeros(len(w_left))
        np.divide(wz_left, w_left, out=mean_left, where=valid)
        np.divide(wz_total - wz_left, w_right, out=mean_right, where=valid)
        if constraint > 0:
            valid &= mean_left <= mean_right
        elif constraint < 0:
            valid &= mean_left >= mean_right
        improvement = np.full(len(w_left), -np.inf)
        improvement[valid] = (
            w_left[valid]
            * w_right[valid]
            / w_total
            * (mean_left[valid] - mean_right[valid]) ** 2
        )
        k = int(np.argmax(improvement))
        if not improvement[k] > 0:
            return None
        return improvement[k], k

    def _find_split(
        self,
        X: np.ndarray,
        Z: np.ndarray,
        w: np.ndarray,
        rows: np.ndarray,
        rng: np.random.Generator,
    ) -> Optional[Tuple[float, int, float, Optional[List[int]]]]:
        """
        Finds the best legal split of a node among its candidate features.

        :param X: Feature array.
        :param Z: Working response.
        :param w: Weights.
        :param rows: The in-bag observations of the node.
        :param rng: Random number generator for the feature subset.
        :return: Improvement, feature, threshold and left levels of the best split,
            or None if the node cannot be split.
        """
        n_features = X.shape[1]
        if self.max_features is None or self.max_features >= n_features:
            features = np.arange(n_features)
        else:
            features = np.sort(
                rng.choice(n_features, size=self.max_features, replace=False)
            )
        best = None
        z_node, w_node = Z[rows], w[rows]
        for k in features:
            x = X[rows, k]
            if self.var_type is not None and self.var_type[k] > 0:
                candidate = self._nominal_split(
                    x=x, Z=z_node, w=w_node, n_levels=self.var_type[k]
                )
            else:
                constraint = (
                    0
                    if self.monotone_constraints is None
                    else self.monotone_constraints[k]
                )
                candidate = self._continuous_split(
                    x=x, Z=z_node, w=w_node, constraint=constraint
                )
            if candidate is not None and (best is None or candidate[0] > best[0]):
                best = (candidate[0], int(k), candidate[1], candidate[2])
        return best

    def _goes_left(self, X: np.ndarray, node: int, rows: np.ndarray) -> np.ndarray:
        x = X[rows, self.feature[node]]
        if self.left_levels[node] is not None:
            return np.isin(x.astype(int), self.left_levels[node])
        return x < self.threshold[node]

    def grow(
        self,
        X: np.ndarray,
        Z: np.ndarray,
        w: np.ndarray,
        in_bag: np.ndarray,
        rng: np.random.Generator,
    ) -> None:
        """
        Grows the tree best-first on the in-bag observations.

        Each step splits the terminal node whose best split improves the
        squared error of Z the most, until interaction_depth splits are made
        or no terminal node can be split. Node values are the weighted means
        of Z.

        :param X: Feature array of shape (n_samples, n_features).
        :param Z: Working response of shape (n_samples,).
        :param w: Weights of shape (n_samples,).
        :param in_bag: Boolean mask of the in-bag observations.
        :param rng: Random number generator for the feature subsets.
        """
        feature, threshold, left_levels = [LEAF], [np.nan], [None]
        left, right = [LEAF], [LEAF]
        value, n_samples, weight, improvement = [], [], [], [0.0]
        rows = [np.flatnonzero(in_bag)]

        def add_node_stats(node_rows):
            w_node = np.sum(w[node_rows])
            wz_node = np.sum(w[node_rows] * Z[node_rows])
            value.append(wz_node / w_node if w_node > 0 else 0.0)
            n_samples.append(len(node_rows))
            weight.append(w_node)

        add_node_stats(rows[0])
        self.feature, self.left_levels = feature, left_levels
        self.threshold = threshold
        candidates = {0: self._find_split(X=X, Z=Z, w=w, rows=rows[0], rng=rng)}

        for n_splits in range(self.interaction_depth):
            node = None
            for k, candidate in candidates.items():
                if candidate is not None and (
                    node is None or candidate[0] > candidates[node][0]
                ):
                    node = k
            if node is None:
                break
            gain, k, thr, levels = candidates.pop(node)
            feature[node], threshold[node], left_levels[node] = k, thr, levels
            improvement[node] = gain
            go_left = self._goes_left(X=X, node=node, rows=rows[node])
            for child_rows in (rows[node][go_left], rows[node][~go_left]):
                feature.append(LEAF)
                threshold.append(np.nan)
                left_levels.append(None)
                left.append(LEAF)
                right.append(LEAF)
                improvement.append(0.0)
                rows.append(child_rows)
                add_node_stats(child_rows)
            left[node], right[node] = len(feature) - 2, len(feature) - 1
            if n_splits + 1 < self.interaction_depth:
                for child in (left[node], right[node]):
                    candidates[child] = self._find_split(
                        X=X, Z=Z, w=w, rows=rows[child], rng=rng
                    )

        self.feature = np.array(feature, dtype=int)
        self.threshold = np.array(threshold, dtype=float)
        self.left_levels = left_levels
        self.left = np.array(left, dtype=int)
        self.right = np.array(right, dtype=int)
        self.value = np.array(value, dtype=float)
        self.n_samples = np.array(n_samples, dtype=int)
        self.weight = np.array(weight, dtype=float)
        self.improvement = np.array(improvement, dtype=float)

    def terminal_nodes(self) -> np.ndarray:
        """
        :return: The ids of the terminal nodes in increasing order.
        """
        return np.flatnonzero(self.feature == LEAF)

    def apply(self, X: np.ndarray) -> np.ndarray:
        """
        Assigns each observation to a terminal node.

        :param X: Feature array of shape (n_samples, n_features).
        :return: Terminal node id of each observation.
        """
        node = np.zeros(len(X), dtype=int)
        for k in np.flatnonzero(self.feature != LEAF):
            rows = np.flatnonzero(node == k)
            go_left = self._goes_left(X=X, node=k, rows=rows)
            node[rows] = np.where(go_left, self.left[k], self.right[k])
        return node

    def predict(self, X: np.ndarray) -> np.ndarray:
        """
        Predicts the tree contribution for each observation.

        :param X: Feature array of shape (n_samples, n_features).
        :return: Terminal node values of shape (n_samples,).
        """
        return self.value[self.apply(X)]

    def _adjust_node_values(
        self,
        X: np.ndarray,
        y: np.ndarray,
        z: np.ndarray,
        w: np.ndarray,
        Z: np.ndarray,
        j: int,
        in_bag: np.ndarray,
        misc: Optional[np.ndarray] = None,
    ) -> None:
        """
        Adjust the terminal node values to the loss minimizing constants of the distribution.

        :param X: The training feature array
        :param y: The training response
        :param z: The current linear predictor of the training observations
        :param w: The training weights
        :param Z: The working response the tree was grown on
        :param j: Parameter dimension to update
        :param in_bag: Boolean mask of the in-bag observations
        :param misc: Auxiliary data of the training observations
        """
        leaves = self.terminal_nodes()
        node_index = np.searchsorted(leaves, self.apply(X))
        self.value[leaves] = self.distribution.fit_best_constant(
            y=y,
            z=z,
            j=j,
            w=w,
            working_response=Z,
            node_index=node_index,
            n_nodes=len(leaves),
            in_bag=in_bag,
            min_samples_leaf=self.min_samples_leaf,
            misc=misc,
            initial=self.value[leaves],
        )

    def fit_gradients(
        self,
        X: np.ndarray,
        y: np.ndarray,
        z: np.ndarray,
        w: np.ndarray,
        j: int,
        in_bag: np.ndarray,
        rng: np.random.Generator,
        misc: Optional[np.ndarray] = None,
    ) -> None:
        """
        Fits the tree to the working response and adjusts node values to minimize loss.

        :param X: The training feature array.
        :param y: The training response.
        :param z: The current linear predictor of the training observations, offset included.
        :param w: The training weights.
        :param j: The parameter dimension to fit.
        :param in_bag: Boolean mask of the observations in the current bag.
        :param rng: Random number generator for the feature subsets.
        :param misc: Auxiliary data of the training observations.
        """
        Z = self.distribution.working_response(
            y=y, z=z, j=j, w=w, misc=misc, in_bag=in_bag
        )
        self.grow(X=X, Z=Z, w=w, in_bag=in_bag, rng=rng)
        self._adjust_node_values(
            X=X, y=y, z=z, w=w, Z=Z, j=j, in_bag=in_bag, misc=misc
        )

    def feature_importances(self, n_features: int) -> np.ndarray:
        """
        Sums the split improvements of each feature.

        :param n_features: The number of features.
        :return: Feature importance of shape (n_features,)
        """
        internal = self.feature != LEAF
        return np.bincount(
            self.feature[internal],
            weights=self.improvement[internal],
            minlength=n_features,
        )

    def to_dict(self) -> dict:
        return {
            "feature": self.feature.tolist(),
            "threshold": [None if np.isnan(t) else float(t) for t in self.threshold],
            "left_levels": self.left_levels,
            "left": self.left.tolist(),
            "right": self.right.tolist(),
            "value": self.value.tolist(),
            "n_samples": self.n_samples.tolist(),
            "weight": self.weight.tolist(),
            "improvement": self.improvement.tolist(),
        }

    @classmethod
    def from_dict(cls, tree: dict, **params) -> "BoostingTree":
        """
        Restores a tree stored with `to_dict`.

        :param tree: The stored tree.
        :param params: Constructor parameters of the tree.
        :return: The tree.
        """
        new_tree = cls(**params)
        new_tree.feature = np.array(tree["feature"], dtype=int)
        new_tree.threshold = np.array(
            [np.nan if t is None else t for t in tree["threshold"]], dtype=float
        )
        new_tree.left_levels = tree["left_levels"]
        new_tree.left = np.array(tree["left"], dtype=int)
        new_tree.right = np.array(tree["right"], dtype=int)
        new_tree.value = np.array(tree["value"], dtype=float)
        new_tree.n_samples = np.array(tree["n_samples"], dtype=int)
        new_tree.weight = np.array(tree["weight"], dtype=float)
        new_tree.improvement = np.array(tree["improvement"], dtype=float)
        return new_tree
