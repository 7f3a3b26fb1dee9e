from typing import List, Optional, Union

import numpy as np
import pandas as pd

from gbm_engine.ensemble import Ensemble
from gbm_engine.exceptions import ConfigurationError
from gbm_engine.utils.config import load_config
from gbm_engine.utils.convert_data import TrainingData, convert_data, convert_features
from gbm_engine.utils.distributions import Distribution, initiate_distribution
from gbm_engine.utils.logger import GBMLogger

TABLE_HEADER = "Iter   TrainDeviance   ValidDeviance   StepSize   Improve"


def _check_parameters(
    n_estimators: int,
    interaction_depth: int,
    min_samples_leaf: int,
    learning_rate: float,
    bag_fraction: float,
    train_fraction: float,
) -> None:
    if n_estimators < 0:
        raise ConfigurationError(
            f"n_estimators must be non-negative, got {n_estimators}"
        )
    if interaction_depth < 1:
        raise ConfigurationError(
            f"interaction_depth must be at least 1, got {interaction_depth}"
        )
    if min_samples_leaf < 1:
        raise ConfigurationError(
            f"min_samples_leaf must be at least 1, got {min_samples_leaf}"
        )
    if learning_rate <= 0:
        raise ConfigurationError(f"learning_rate must be positive, got {learning_rate}")
    if not 0 < bag_fraction <= 1:
        raise ConfigurationError(f"bag_fraction must be in (0, 1], got {bag_fraction}")
    if not 0 < train_fraction <= 1:
        raise ConfigurationError(
            f"train_fraction must be in (0, 1], got {train_fraction}"
        )


def _check_monotone_constraints(
    monotone_constraints: Optional[Union[List[int], np.ndarray]],
    var_type: np.ndarray,
) -> np.ndarray:
    if monotone_constraints is None:
        return np.zeros(len(var_type), dtype=int)
    monotone_constraints = np.asarray(monotone_constraints)
    if monotone_constraints.shape != var_type.shape:
        raise ConfigurationError(
            f"monotone_constraints must have one value per feature ({len(var_type)})"
        )
    if not np.all(np.isin(monotone_constraints, [-1, 0, 1])):
        raise ConfigurationError("monotone_constraints must be -1, 0 or 1")
    if np.any((monotone_constraints != 0) & (var_type > 0)):
        raise ConfigurationError("Nominal features cannot be monotone constrained")
    return monotone_constraints.astype(int)


def _check_max_features(max_features: Optional[int], n_features: int) -> int:
    if max_features is None:
        return n_features
    if not 1 <= max_features <= n_features:
        raise ConfigurationError(
            f"max_features must be in [1, {n_features}], got {max_features}"
        )
    return int(max_features)


def _resolve_n_train(
    n_samples: int,
    train_fraction: float,
    n_train: Optional[int],
    groups: Optional[np.ndarray],
) -> int:
    """
    Finds the size of the training partition, the first n_train observations.

    Without an explicit n_train, a grouped training partition is extended to
    the end of the group holding its last observation.

    :raises ConfigurationError: If a group has observations on both sides.
    """
    explicit = n_train is not None
    if not explicit:
        n_train = int(np.floor(train_fraction * n_samples))
    if not 1 <= n_train <= n_samples:
        raise ConfigurationError(f"n_train must be in [1, {n_samples}], got {n_train}")
    if groups is not None and n_train < n_samples:
        if not explicit:
            last = groups[n_train - 1]
            while n_train < n_samples and groups[n_train] == last:
                n_train += 1
        if np.isin(groups[n_train:], groups[:n_train]).any():
            raise ConfigurationError(
                "A group has observations in both the training and validation data"
            )
    return n_train


def _draw_bag(
    rng: np.random.Generator,
    n_train: int,
    bag_fraction: float,
    groups: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Draws the in-bag observations of one iteration without replacement.

    :param rng: Random number generator.
    :param n_train: The number of training observations.
    :param bag_fraction: The fraction of observations, or of groups, in the bag.
    :param groups: Integer group ids of the training observations. Whole groups
        are drawn when given.
    :return: Boolean mask of the in-bag observations.
    """
    if groups is None:
        n_bag = int(np.floor(bag_fraction * n_train))
        if n_bag == n_train:
            return np.ones(n_train, dtype=bool)
        in_bag = np.zeros(n_train, dtype=bool)
        in_bag[rng.choice(n_train, size=n_bag, replace=False)] = True
        return in_bag
    group_ids = np.unique(groups)
    n_bag = max(int(np.floor(bag_fraction * len(group_ids))), 1)
    if n_bag == len(group_ids):
        return np.ones(n_train, dtype=bool)
    return np.isin(groups, rng.choice(group_ids, size=n_bag, replace=False))


def _log_iteration(
    logger: GBMLogger,
    k: int,
    n_total: int,
    ensemble: Ensemble,
) -> None:
    if k <= 10 or k % 100 == 0 or k == n_total:
        logger.log(
            f"{k:6d} {ensemble.train_deviance[-1]:15.4f} "
            f"{ensemble.valid_deviance[-1]:15.4f} {ensemble.learning_rate:10.4f} "
            f"{ensemble.oob_improvement[-1]:9.4f}",
            verbose=1,
        )


def _boost(
    ensemble: Ensemble,
    data: TrainingData,
    n_new_estimators: int,
    rng: np.random.Generator,
    logger: GBMLogger,
) -> None:
    """
    Runs boosting iterations, appending trees and diagnostics to the ensemble.

    :param ensemble: The ensemble to extend.
    :param data: The data, with the training partition first.
    :param n_new_estimators: The number of iterations to run.
    :param rng: Random number generator continuing the stream of the ensemble.
    :param logger: Logger for the deviance table and progress.
    """
    dist = ensemble.distribution
    n_train = ensemble.n_train
    X, y, offset, misc = data.X, data.y, data.offset, data.misc
    w = dist.prepare_weights(data.w, misc)
    X_train, y_train, w_train = X[:n_train], y[:n_train], w[:n_train]
    misc_train = None if misc is None else misc[:n_train]
    groups = misc_train.astype(int) if dist.uses_group else None
    has_valid = n_train < len(y)

    F = ensemble.linear_predictor(X)
    n_start = ensemble.n_iterations
    n_total = n_start + n_new_estimators
    logger.append_format_level(dist.name)
    logger.log(TABLE_HEADER, verbose=1)
    for k in range(n_start, n_total):
        in_bag = _draw_bag(
            rng=rng, n_train=n_train, bag_fraction=ensemble.bag_fraction, groups=groups
        )
        trees = []
        improvement = 0.0
        for j in range(dist.n_dim):
            z = F + offset
            tree = ensemble.new_tree()
            tree.fit_gradients(
                X=X_train,
                y=y_train,
                z=z[:, :n_train],
                w=w_train,
                j=j,
                in_bag=in_bag,
                rng=rng,
                misc=misc_train,
            )
            fadj = tree.predict(X)
            improvement += dist.bag_improvement(
                y=y_train,
                z=z[:, :n_train],
                j=j,
                w=w_train,
                fadj=fadj[:n_train],
                in_bag=in_bag,
                step_size=ensemble.learning_rate,
                misc=misc_train,
            )
            F[j] += ensemble.learning_rate * fadj
            trees.append(tree)
        ensemble.trees.append(trees)

        z = F + offset
        ensemble.train_deviance.append(
            float(dist.deviance(y=y, z=z, w=w, misc=misc, index=slice(0, n_train)))
        )
        ensemble.valid_deviance.append(
            float(dist.deviance(y=y, z=z, w=w, misc=misc, index=slice(n_train, None)))
            if has_valid
            else np.nan
        )
        ensemble.oob_improvement.append(float(improvement))
        _log_iteration(logger=logger, k=k + 1, n_total=n_total, ensemble=ensemble)
        logger.log_progress(
            step=k + 1 - n_start, total_steps=n_new_estimators, verbose=2
        )
    logger.reset_progress()
    logger.remove_format_level()
    ensemble.rng_state = rng.bit_generator.state


def fit(
    X: Union[np.ndarray, pd.DataFrame],
    y: Union[np.ndarray, pd.Series],
    w: Optional[Union[np.ndarray, pd.Series, float]] = None,
    offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
    misc: Optional[Union[np.ndarray, pd.Series]] = None,
    monotone_constraints: Optional[Union[List[int], np.ndarray]] = None,
    n_estimators: int = 100,
    interaction_depth: int = 1,
    min_samples_leaf: int = 10,
    learning_rate: float = 0.1,
    bag_fraction: float = 0.5,
    train_fraction: float = 1.0,
    n_train: Optional[int] = None,
    max_features: Optional[int] = None,
    distribution: Union[str, dict, Distribution] = "gaussian",
    random_state: Optional[int] = None,
    keep_data: bool = True,
    logger: Optional[GBMLogger] = None,
) -> Ensemble:
    """
    Fits a boosted tree ensemble.

    The first n_train observations are the training partition, the rest
    are used for validation deviance only.

    :param X: Features of shape (n_samples, n_features). Columns of pandas
        "category" dtype are nominal features.
    :param y: Response of shape (n_samples,).
    :param w: Non-negative weights. Default is 1 for all observations.
    :param offset: Offset on the link scale. Default is 0.
    :param misc: Auxiliary data: the event indicator for "coxph", the group
        of each observation for "pairwise".
    :param monotone_constraints: Per-feature constraint, +1 increasing, -1 decreasing, 0 none.
    :param n_estimators: The number of boosting iterations.
    :param interaction_depth: The number of splits of each tree.
    :param min_samples_leaf: The minimum number of in-bag observations in each terminal node.
    :param learning_rate: The shrinkage applied to each tree.
    :param bag_fraction: The fraction of training observations drawn for each tree.
    :param train_fraction: The fraction of observations in the training partition.
    :param n_train: The size of the training partition. Overrides train_fraction.
    :param max_features: The number of features drawn as split candidates at each node.
        Default is all features.
    :param distribution: The loss, as a name, a dictionary with name and
        parameters, or a Distribution object.
    :param random_state: Seed of the random number generator.
    :param keep_data: Whether to store the data in the ensemble for `extend`.
    :param logger: Logger for the deviance table. Default is silent.
    :return: The fitted ensemble.
    :raises ConfigurationError: If the parameters or data are invalid.
    """
    if logger is None:
        logger = GBMLogger(verbose=0)
    if not isinstance(distribution, Distribution):
        distribution = initiate_distribution(distribution)
    _check_parameters(
        n_estimators=n_estimators,
        interaction_depth=interaction_depth,
        min_samples_leaf=min_samples_leaf,
        learning_rate=learning_rate,
        bag_fraction=bag_fraction,
        train_fraction=train_fraction,
    )
    X, feature_names, var_type, levels = convert_features(X)
    data = convert_data(
        X=X, y=y, w=w, offset=offset, misc=misc, group=distribution.uses_group
    )
    monotone_constraints = _check_monotone_constraints(monotone_constraints, var_type)
    max_features = _check_max_features(max_features, X.shape[1])
    distribution.check_response(y=data.y, w=data.w, misc=data.misc)
    n_train = _resolve_n_train(
        n_samples=len(data),
        train_fraction=train_fraction,
        n_train=n_train,
        groups=data.misc if distribution.uses_group else None,
    )
    if n_train * bag_fraction <= 2 * min_samples_leaf + 1:
        raise ConfigurationError(
            "The data set is too small or the bag fraction too small for "
            f"min_samples_leaf={min_samples_leaf}"
        )

    w = distribution.prepare_weights(data.w, data.misc)
    init_f = distribution.mle(
        y=data.y[:n_train],
        w=w[:n_train],
        offset=data.offset[:n_train],
        misc=None if data.misc is None else data.misc[:n_train],
    )
    ensemble = Ensemble(
        distribution=distribution,
        init_f=np.asarray(init_f, dtype=float),
        learning_rate=learning_rate,
        interaction_depth=interaction_depth,
        min_samples_leaf=min_samples_leaf,
        bag_fraction=bag_fraction,
        max_features=max_features,
        monotone_constraints=monotone_constraints,
        var_type=var_type,
        n_train=n_train,
        feature_names=feature_names,
        levels=levels,
    )
    if keep_data:
        ensemble.data = data
    rng = np.random.default_rng(random_state)
    _boost(
        ensemble=ensemble,
        data=data,
        n_new_estimators=n_estimators,
        rng=rng,
        logger=logger,
    )
    return ensemble


def _convert_new_data(
    ensemble: Ensemble,
    X: Union[np.ndarray, pd.DataFrame],
) -> np.ndarray:
    X, _, _, _ = convert_features(
        X, feature_names=ensemble.feature_names, levels=ensemble.levels
    )
    if X.shape[1] != ensemble.n_features:
        raise ConfigurationError(
            f"Expected {ensemble.n_features} features, got {X.shape[1]}"
        )
    return X


def extend(
    ensemble: Ensemble,
    n_new_estimators: int,
    X: Optional[Union[np.ndarray, pd.DataFrame]] = None,
    y: Optional[Union[np.ndarray, pd.Series]] = None,
    w: Optional[Union[np.ndarray, pd.Series, float]] = None,
    offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
    misc: Optional[Union[np.ndarray, pd.Series]] = None,
    logger: Optional[GBMLogger] = None,
) -> Ensemble:
    """
    Adds boosting iterations to a fitted ensemble, continuing its random stream.

    Extending with the data of the original fit gives the same ensemble as
    fitting all iterations at once.

    :param ensemble: The fitted ensemble. It is extended in place.
    :param n_new_estimators: The number of iterations to add.
    :param X: Features. Default is the data kept in the ensemble.
    :param y: Response, required with X.
    :param w: Weights.
    :param offset: Offset on the link scale.
    :param misc: Auxiliary data.
    :param logger: Logger for the deviance table. Default is silent.
    :return: The extended ensemble.
    :raises ConfigurationError: If no data is given or kept, or the data does not match.
    """
    if logger is None:
        logger = GBMLogger(verbose=0)
    if n_new_estimators < 0:
        raise ConfigurationError(
            f"n_new_estimators must be non-negative, got {n_new_estimators}"
        )
    if X is None:
        if ensemble.data is None:
            raise ConfigurationError(
                "The ensemble keeps no data, X and y must be given to extend it"
            )
        data = ensemble.data
    else:
        if y is None:
            raise ConfigurationError("y must be given together with X")
        data = convert_data(
            X=_convert_new_data(ensemble=ensemble, X=X),
            y=y,
            w=w,
            offset=offset,
            misc=misc,
            group=ensemble.distribution.uses_group,
        )
        if len(data) < ensemble.n_train:
            raise ConfigurationError(
                f"Expected at least {ensemble.n_train} observations, got {len(data)}"
            )
        ensemble.distribution.check_response(y=data.y, w=data.w, misc=data.misc)

    rng = np.random.default_rng()
    rng.bit_generator.state = ensemble.rng_state
    _boost(
        ensemble=ensemble,
        data=data,
        n_new_estimators=n_new_estimators,
        rng=rng,
        logger=logger,
    )
    return ensemble


def predict(
    ensemble: Ensemble,
    X: Union[np.ndarray, pd.DataFrame],
    n_trees: Optional[int] = None,
    offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
) -> np.ndarray:
    """
    Predicts on the link scale.

    :param ensemble: The fitted ensemble.
    :param X: Features of shape (n_samples, n_features).
    :param n_trees: Number of iterations to use. Default is all.
    :param offset: Offset added to the prediction. Default is none.
    :return: Predictions of shape (n_samples,), or (n_classes, n_samples) for "multinomial".
    """
    X = _convert_new_data(ensemble=ensemble, X=X)
    z = ensemble.linear_predictor(X, n_trees=n_trees)
    if offset is not None:
        z = z + np.asarray(offset, dtype=float)
    return z[0] if ensemble.distribution.n_dim == 1 else z


def deviance(
    ensemble: Ensemble,
    X: Union[np.ndarray, pd.DataFrame],
    y: Union[np.ndarray, pd.Series],
    w: Optional[Union[np.ndarray, pd.Series, float]] = None,
    offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
    misc: Optional[Union[np.ndarray, pd.Series]] = None,
    n_trees: Optional[int] = None,
    index: Optional[Union[slice, np.ndarray]] = None,
) -> float:
    """
    Calculates the deviance of the ensemble on a data set.

    :param ensemble: The fitted ensemble.
    :param X: Features of shape (n_samples, n_features).
    :param y: Response.
    :param w: Weights. Default is 1 for all observations.
    :param offset: Offset on the link scale. Default is 0.
    :param misc: Auxiliary data.
    :param n_trees: Number of iterations to use. Default is all.
    :param index: The observations to evaluate. Default is all.
    :return: The deviance.
    """
    dist = ensemble.distribution
    data = convert_data(
        X=_convert_new_data(ensemble=ensemble, X=X),
        y=y,
        w=w,
        offset=offset,
        misc=misc,
        group=dist.uses_group,
    )
    z = ensemble.linear_predictor(data.X, n_trees=n_trees) + data.offset
    w = dist.prepare_weights(data.w, data.misc)
    return dist.deviance(y=data.y, z=z, w=w, misc=data.misc, index=index)


class GradientBooster:
    """
    Class for gradient boosted regression trees
    """

    def __init__(
        self,
        distribution: Union[str, dict, Distribution] = "gaussian",
        n_estimators: int = 100,
        learning_rate: float = 0.1,
        interaction_depth: int = 1,
        min_samples_leaf: int = 10,
        bag_fraction: float = 0.5,
        train_fraction: float = 1.0,
        max_features: Optional[int] = None,
        monotone_constraints: Optional[Union[List[int], np.ndarray]] = None,
        keep_data: bool = True,
        random_state: Optional[int] = None,
        verbose: int = 0,
    ):
        """
        :param distribution: The loss, as a name, a dictionary with name and parameters, or a Distribution object.
        :param n_estimators: Number of boosting iterations.
        :param learning_rate: Shrinkage factor, which scales the contribution of each tree.
        :param interaction_depth: Number of splits of each tree.
        :param min_samples_leaf: Minimum number of in-bag observations in each terminal node.
        :param bag_fraction: Fraction of the training observations drawn for each tree.
        :param train_fraction: Fraction of the observations used for training, the rest for validation.
        :param max_features: Number of features drawn as split candidates at each node. Default is all.
        :param monotone_constraints: Per-feature constraint, +1 increasing, -1 decreasing, 0 none.
        :param keep_data: Whether to keep the data in the ensemble for `extend`.
        :param random_state: Seed of the random number generator.
        :param verbose: Verbosity of the default logger.
        """
        if isinstance(distribution, Distribution):
            self.distribution = distribution
        else:
            self.distribution = initiate_distribution(distribution)
        self.n_estimators = n_estimators
        self.learning_rate = learning_rate
        self.interaction_depth = interaction_depth
        self.min_samples_leaf = min_samples_leaf
        self.bag_fraction = bag_fraction
        self.train_fraction = train_fraction
        self.max_features = max_features
        self.monotone_constraints = monotone_constraints
        self.keep_data = keep_data
        self.random_state = random_state
        self.verbose = verbose
        self.ensemble = None

    @classmethod
    def from_config(cls, config_path: str) -> "GradientBooster":
        """
        Creates a booster from a YAML configuration file.

        :param config_path: path to the configuration file
        :return: The booster.
        """
        return cls(**load_config(config_path))

    def _logger(self, logger: Optional[GBMLogger]) -> GBMLogger:
        return GBMLogger(verbose=self.verbose) if logger is None else logger

    def _check_fitted(self) -> Ensemble:
        if self.ensemble is None:
            raise ValueError("The booster is not fitted")
        return self.ensemble

    def fit(
        self,
        X: Union[np.ndarray, pd.DataFrame],
        y: Union[np.ndarray, pd.Series],
        w: Optional[Union[np.ndarray, pd.Series, float]] = None,
        offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
        misc: Optional[Union[np.ndarray, pd.Series]] = None,
        n_train: Optional[int] = None,
        logger: Optional[GBMLogger] = None,
    ) -> None:
        """
        Train the model on the given data.

        :param X: Input data matrix of shape (n_samples, n_features).
        :param y: True response values for the input data.
        :param w: Weights for the data, of shape (n_samples,). Default is 1 for all samples.
        :param offset: Offset on the link scale. Default is 0.
        :param misc: Event indicator for "coxph", group of each observation for "pairwise".
        :param n_train: Size of the training partition. Default is given by train_fraction.
        :param logger: Logger object to log progress. Default is a logger with the booster's verbosity.
        """
        self.ensemble = fit(
            X=X,
            y=y,
            w=w,
            offset=offset,
            misc=misc,
            monotone_constraints=self.monotone_constraints,
            n_estimators=self.n_estimators,
            interaction_depth=self.interaction_depth,
            min_samples_leaf=self.min_samples_leaf,
            learning_rate=self.learning_rate,
            bag_fraction=self.bag_fraction,
            train_fraction=self.train_fraction,
            n_train=n_train,
            max_features=self.max_features,
            distribution=self.distribution,
            random_state=self.random_state,
            keep_data=self.keep_data,
            logger=self._logger(logger),
        )

    def extend(
        self,
        n_new_estimators: int,
        X: Optional[Union[np.ndarray, pd.DataFrame]] = None,
        y: Optional[Union[np.ndarray, pd.Series]] = None,
        w: Optional[Union[np.ndarray, pd.Series, float]] = None,
        offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
        misc: Optional[Union[np.ndarray, pd.Series]] = None,
        logger: Optional[GBMLogger] = None,
    ) -> None:
        """
        Adds boosting iterations to the fitted model.

        :param n_new_estimators: Number of iterations to add.
        :param X: Input data, default is the data kept at fit.
        :param y: True response values, required with X.
        :param w: Weights for the data.
        :param offset: Offset on the link scale.
        :param misc: Auxiliary data.
        :param logger: Logger object to log progress.
        """
        extend(
            ensemble=self._check_fitted(),
            n_new_estimators=n_new_estimators,
            X=X,
            y=y,
            w=w,
            offset=offset,
            misc=misc,
            logger=self._logger(logger),
        )
        self.n_estimators = self.ensemble.n_iterations

    def predict(
        self,
        X: Union[np.ndarray, pd.DataFrame],
        n_trees: Optional[int] = None,
        offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
    ) -> np.ndarray:
        """
        Predict on the link scale using the trained model.

        :param X: Input data matrix of shape (n_samples, n_features).
        :param n_trees: Number of iterations to use. Default is all.
        :param offset: Offset added to the prediction. Default is none.
        :return: Predictions of shape (n_samples,), or (n_classes, n_samples) for "multinomial".
        """
        return predict(
            ensemble=self._check_fitted(), X=X, n_trees=n_trees, offset=offset
        )

    def deviance(
        self,
        X: Union[np.ndarray, pd.DataFrame],
        y: Union[np.ndarray, pd.Series],
        w: Optional[Union[np.ndarray, pd.Series, float]] = None,
        offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
        misc: Optional[Union[np.ndarray, pd.Series]] = None,
        n_trees: Optional[int] = None,
        index: Optional[Union[slice, np.ndarray]] = None,
    ) -> float:
        """
        Calculates the deviance of the model on the given data.

        :param X: Input data matrix of shape (n_samples, n_features).
        :param y: True response values for the input data.
        :param w: Weights for the data. Default is 1 for all samples.
        :param offset: Offset on the link scale. Default is 0.
        :param misc: Auxiliary data.
        :param n_trees: Number of iterations to use. Default is all.
        :param index: The observations to evaluate. Default is all.
        :return: The deviance.
        """
        return deviance(
            ensemble=self._check_fitted(),
            X=X,
            y=y,
            w=w,
            offset=offset,
            misc=misc,
            n_trees=n_trees,
            index=index,
        )

    def best_iteration(self, method: str = "test") -> int:
        """
        Finds the best number of iterations.

        :param method: "test" for the smallest validation deviance, "OOB" for the
            largest cumulative out-of-bag improvement.
        :return: The best number of iterations.
        """
        ensemble = self._check_fitted()
        if method == "test":
            valid_deviance = np.array(ensemble.valid_deviance)
            if len(valid_deviance) == 0 or np.all(np.isnan(valid_deviance)):
                raise ValueError("The model was fitted without validation data")
            return int(np.nanargmin(valid_deviance)) + 1
        if method == "OOB":
            if ensemble.n_iterations == 0:
                raise ValueError("The model has no iterations")
            return int(np.argmax(np.cumsum(ensemble.oob_improvement))) + 1
        raise ValueError(f"Unknown method: {method}")

    def feature_importances(
        self, n_trees: Optional[int] = None, normalize: bool = True
    ) -> Union[np.ndarray, pd.Series]:
        """
        Computes the relative influence of each feature

        :param n_trees: Number of iterations to use. Default is all.
        :param normalize: Whether to scale the importances to sum to one.
        :return: Feature importance of shape (n_features,)
        """
        ensemble = self._check_fitted()
        feature_importances = ensemble.feature_importances(n_trees=n_trees)
        if normalize and feature_importances.sum() > 0:
            feature_importances /= feature_importances.sum()

        if ensemble.feature_names is not None:
            feature_importances = pd.Series(
                feature_importances, index=ensemble.feature_names
            )
        return feature_importances
