import json
from typing import List, Optional

import numpy as np

from gbm_engine.boosting_tree import BoostingTree
from gbm_engine.utils.convert_data import TrainingData
from gbm_engine.utils.distributions import Distribution, initiate_distribution


class Ensemble:
    """
    The fitted trees of a boosting run with their fit history.

    trees[k][j] is the tree of iteration k for parameter dimension j, so the
    number of fitted iterations is len(trees). The linear predictor of an
    observation is init_f plus the learning rate times the tree predictions,
    added in fitting order.
    """

    def __init__(
        self,
        distribution: Distribution,
        init_f: np.ndarray,
        learning_rate: float,
        interaction_depth: int,
        min_samples_leaf: int,
        bag_fraction: float,
        max_features: int,
        monotone_constraints: np.ndarray,
        var_type: np.ndarray,
        n_train: int,
        feature_names: Optional[List[str]] = None,
        levels: Optional[List[Optional[List]]] = None,
    ):
        self.distribution = distribution
        self.init_f = init_f
        self.learning_rate = learning_rate
        self.interaction_depth = interaction_depth
        self.min_samples_leaf = min_samples_leaf
        self.bag_fraction = bag_fraction
        self.max_features = max_features
        self.monotone_constraints = monotone_constraints
        self.var_type = var_type
        self.n_train = n_train
        self.n_features = len(var_type)
        self.feature_names = feature_names
        self.levels = [None] * self.n_features if levels is None else levels

        self.trees: List[List[BoostingTree]] = []
        self.train_deviance: List[float] = []
        self.valid_deviance: List[float] = []
        self.oob_improvement: List[float] = []
        self.rng_state: Optional[dict] = None
        self.data: Optional[TrainingData] = None

    @property
    def n_iterations(self) -> int:
        return len(self.trees)

    def new_tree(self) -> BoostingTree:
        """
        :return: An unfitted tree with the settings of the ensemble.
        """
        return BoostingTree(**self._tree_params())

    def _tree_params(self) -> dict:
        return {
            "interaction_depth": self.interaction_depth,
            "min_samples_leaf": self.min_samples_leaf,
            "distribution": self.distribution,
            "max_features": self.max_features,
            "monotone_constraints": self.monotone_constraints,
            "var_type": self.var_type,
        }

    def _check_n_trees(self, n_trees: Optional[int]) -> int:
        if n_trees is None:
            return self.n_iterations
        if not 0 <= n_trees <= self.n_iterations:
            raise ValueError(
                f"n_trees must be in [0, {self.n_iterations}], got {n_trees}"
            )
        return n_trees

    def linear_predictor(
        self, X: np.ndarray, n_trees: Optional[int] = None
    ) -> np.ndarray:
        """
        Replays the trees on a feature array.

        :param X: Feature array of shape (n_samples, n_features).
        :param n_trees: Number of iterations to use. Default is all.
        :return: Linear predictor without offset, of shape (n_dim, n_samples).
        """
        n_trees = self._check_n_trees(n_trees)
        F = np.tile(self.init_f[:, None], (1, len(X)))
        for trees in self.trees[:n_trees]:
            for j, tree in enumerate(trees):
                F[j] += self.learning_rate * tree.predict(X)
        return F

    def feature_importances(self, n_trees: Optional[int] = None) -> np.ndarray:
        """
        Relative influence of each feature, the summed split improvements.

        :param n_trees: Number of iterations to use. Default is all.
        :return: Feature importance of shape (n_features,)
        """
        n_trees = self._check_n_trees(n_trees)
        importances = np.zeros(self.n_features)
        for trees in self.trees[:n_trees]:
            for tree in trees:
                importances += tree.feature_importances(n_features=self.n_features)
        return importances

    def to_dict(self) -> dict:
        """
        :return: The ensemble as a JSON serializable dictionary.
        """
        return {
            "distribution": self.distribution.to_dict(),
            "init_f": self.init_f.tolist(),
            "learning_rate": self.learning_rate,
            "interaction_depth": self.interaction_depth,
            "min_samples_leaf": self.min_samples_leaf,
            "bag_fraction": self.bag_fraction,
            "max_features": self.max_features,
            "monotone_constraints": self.monotone_constraints.tolist(),
            "var_type": self.var_type.tolist(),
            "n_train": self.n_train,
            "feature_names": self.feature_names,
            "levels": self.levels,
            "n_iterations": self.n_iterations,
            "trees": [[tree.to_dict() for tree in trees] for trees in self.trees],
            "train_deviance": self.train_deviance,
            "valid_deviance": self.valid_deviance,
            "oob_improvement": self.oob_improvement,
            "rng_state": self.rng_state,
            "data": None if self.data is None else self.data.to_dict(),
        }

    @classmethod
    def from_dict(cls, ensemble: dict) -> "Ensemble":
        """
        Restores an ensemble stored with `to_dict`.

        :param ensemble: The stored ensemble.
        :return: The ensemble.
        """
        new_ensemble = cls(
            distribution=initiate_distribution(ensemble["distribution"]),
            init_f=np.array(ensemble["init_f"], dtype=float),
            learning_rate=ensemble["learning_rate"],
            interaction_depth=ensemble["interaction_depth"],
            min_samples_leaf=ensemble["min_samples_leaf"],
            bag_fraction=ensemble["bag_fraction"],
            max_features=ensemble["max_features"],
            monotone_constraints=np.array(
                ensemble["monotone_constraints"], dtype=int
            ),
            var_type=np.array(ensemble["var_type"], dtype=int),
            n_train=ensemble["n_train"],
            feature_names=ensemble["feature_names"],
            levels=ensemble["levels"],
        )
        params = new_ensemble._tree_params()
        new_ensemble.trees = [
            [BoostingTree.from_dict(tree, **params) for tree in trees]
            for trees in ensemble["trees"]
        ]
        new_ensemble.train_deviance = list(ensemble["train_deviance"])
        new_ensemble.valid_deviance = list(ensemble["valid_deviance"])
        new_ensemble.oob_improvement = list(ensemble["oob_improvement"])
        new_ensemble.rng_state = ensemble["rng_state"]
        if ensemble["data"] is not None:
            new_ensemble.data = TrainingData.from_dict(ensemble["data"])
        return new_ensemble

    def save(self, path: str) -> None:
        """
        Writes the ensemble to a JSON file.

        :param path: The file path.
        """
        with open(path, "w") as f:
            json.dump(self.to_dict(), f)

    @classmethod
    def load(cls, path: str) -> "Ensemble":
        """
        Reads an ensemble written with `save`.

        :param path: The file path.
        :return: The ensemble.
        """
        with open(path, "r") as f:
            return cls.from_dict(json.load(f))
