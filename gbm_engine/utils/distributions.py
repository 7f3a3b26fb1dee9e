from typing import Optional, Union

import numpy as np
from scipy.optimize import minimize
from scipy.special import expit, log_softmax, softmax

from gbm_engine.exceptions import ConfigurationError, UnknownDistributionError
from gbm_engine.utils.ranking_metrics import initiate_metric, score_ranks
from gbm_engine.utils.utils import (
    group_sums,
    inherit_docstrings,
    weighted_median,
    weighted_quantile,
)

# Bound on the linear predictor of log-linear losses
MAX_LINEAR_PREDICTOR = 19.0


def _as_weights(w: Union[np.ndarray, float], n: int) -> np.ndarray:
    return np.broadcast_to(np.asarray(w, dtype=float), (n,))


def _leaf_ratio(num: np.ndarray, den: np.ndarray) -> np.ndarray:
    """Per-leaf num/den, with 0 where the denominator is 0."""
    out = np.zeros_like(num)
    np.divide(num, den, out=out, where=den != 0)
    return out


def _check_binary(y: np.ndarray, name: str) -> None:
    if not np.all((y == 0) | (y == 1)):
        raise ConfigurationError(f"The {name} distribution requires 0/1 responses")


class Distribution:
    """
    Loss function family used by the boosting engine.

    All methods take the linear predictor z of shape (n_dim, n_samples),
    which includes any offset.
    """

    name = None
    uses_group = False

    def __init__(
        self,
    ):
        """Initialize a distribution object."""
        self.n_dim = 1

    def check_response(
        self,
        y: np.ndarray,
        w: Union[np.ndarray, float] = 1.0,
        misc: Optional[np.ndarray] = None,
    ) -> None:
        """
        Validates the response for this distribution.

        :param y: The target values.
        :param w: The weights of the observations.
        :param misc: Auxiliary data of the observations.
        :raises ConfigurationError: If the response is not supported.
        """
        if not np.all(np.isfinite(y)):
            raise ConfigurationError("The response contains non-finite values")

    def prepare_weights(
        self, w: np.ndarray, misc: Optional[np.ndarray] = None
    ) -> np.ndarray:
        """
        Transforms the observation weights before fitting.

        :param w: The weights of the observations.
        :param misc: Auxiliary data of the observations.
        :return: The weights used by the engine.
        """
        return w

    def loss(
        self,
        y: np.ndarray,
        z: np.ndarray,
        w: Union[np.ndarray, float] = 1.0,
        misc: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Calculates the per-observation loss of the linear predictor and the response.

        :param y: The target values.
        :param z: The linear predictor of shape (n_dim, n_samples).
        :param w: The weights of the observations, only used by losses that are
            not separable over observations.
        :param misc: Auxiliary data of the observations.
        :return: The unweighted loss of each observation.
        """
        pass

    def working_response(
        self,
        y: np.ndarray,
        z: np.ndarray,
        j: int = 0,
        w: Union[np.ndarray, float] = 1.0,
        misc: Optional[np.ndarray] = None,
        in_bag: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Calculates the working response, the negative gradient of the loss
        with respect to dimension j of the linear predictor.

        :param y: The target values.
        :param z: The linear predictor of shape (n_dim, n_samples).
        :param j: The parameter dimension to compute the working response for.
        :param w: The weights of the observations.
        :param misc: Auxiliary data of the observations.
        :param in_bag: Boolean mask of the observations in the current bag.
        :return: The working response of each observation.
        """
        pass

    def mme(self, y: np.ndarray, w: Union[np.ndarray, float] = 1.0) -> np.ndarray:
        """
        Calculates a starting value for the constant minimizing the loss.

        :param y: The target values.
        :param w: The weights of the observations.
        :return: Starting value of shape (n_dim,).
        """
        w = _as_weights(w, len(y))
        return np.array([np.sum(w * y) / np.sum(w)])

    def mle(
        self,
        y: np.ndarray,
        w: Union[np.ndarray, float] = 1.0,
        offset: Optional[np.ndarray] = None,
        misc: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Calculates the constant linear predictor minimizing the total loss
        before any trees are added.

        :param y: The target values.
        :param w: The weights of the observations.
        :param offset: The offset of the observations. Default is no offset.
        :param misc: Auxiliary data of the observations.
        :return: The loss minimizing constant of shape (n_dim,).
        """
        w = _as_weights(w, len(y))
        offset = np.zeros(len(y)) if offset is None else offset
        z_0 = self.mme(y=y - offset, w=w)
        to_min = lambda z: np.sum(
            w * self.loss(y=y, z=z[:, None] + offset, w=w, misc=misc)
        )
        return minimize(to_min, z_0)["x"]

    def deviance(
        self,
        y: np.ndarray,
        z: np.ndarray,
        w: Union[np.ndarray, float] = 1.0,
        misc: Optional[np.ndarray] = None,
        index: Optional[Union[slice, np.ndarray]] = None,
    ) -> float:
        """
        Calculates the weighted average loss over a range of observations.

        :param y: The target values.
        :param z: The linear predictor of shape (n_dim, n_samples).
        :param w: The weights of the observations.
        :param misc: Auxiliary data of the observations.
        :param index: The observations to evaluate, e.g. a training prefix or
            a validation suffix. Default is all observations.
        :return: The deviance.
        """
        w = _as_weights(w, len(y))
        if index is not None:
            y, z, w = y[index], z[:, index], w[index]
            misc = None if misc is None else misc[index]
        return self._deviance(y=y, z=z, w=w, misc=misc)

    def _deviance(
        self,
        y: np.ndarray,
        z: np.ndarray,
        w: np.ndarray,
        misc: Optional[np.ndarray],
    ) -> float:
        if np.sum(w) == 0:
            return 0.0
        return np.sum(w * self.loss(y=y, z=z, w=w, misc=misc)) / np.sum(w)

    def opt_step(
        self,
        y: np.ndarray,
        z: np.ndarray,
        j: int,
        w: Union[np.ndarray, float] = 1.0,
        misc: Optional[np.ndarray] = None,
        g_0: float = 0,
    ) -> float:
        """
        Numerically optimize the step size for the data in specified dimension

        :param y: Target values.
        :param z: Current linear predictor.
        :param j: Index of the dimension to optimize.
        :param w: Weights of the observations. Default is 1.0.
        :param misc: Auxiliary data of the observations.
        :param g_0: Initial guess for the optimal step size. Default is 0.
        :return: The optimal step size.
        """
        w = _as_weights(w, len(y))
        e = np.eye(self.n_dim)[:, j : j + 1]
        to_min = lambda step: np.sum(
            w * self.loss(y=y, z=z + e * step, w=w, misc=misc)
        )
        return minimize(fun=to_min, x0=g_0)["x"][0]

    def fit_best_constant(
        self,
        y: np.ndarray,
        z: np.ndarray,
        j: int,
        w: np.ndarray,
        working_response: np.ndarray,
        node_index: np.ndarray,
        n_nodes: int,
        in_bag: np.ndarray,
        min_samples_leaf: int = 1,
        misc: Optional[np.ndarray] = None,
        initial: Optional[np.ndarray] = None,
    ) -> np.ndarray:
        """
        Calculates the loss minimizing constant of each terminal node, using
        only the in-bag observations assigned to the node.

        :param y: Target values of the training observations.
        :param z: Current linear predictor of the training observations.
        :param j: Index of the dimension the tree was grown for.
        :param w: Weights of the training observations.
        :param working_response: The working response the tree was grown on.
        :param node_index: Terminal node of each training observation, in [0, n_nodes).
        :param n_nodes: The number of terminal nodes.
        :param in_bag: Boolean mask of the observations in the current bag.
        :param min_samples_leaf: Nodes with fewer in-bag observations keep their initial value.
        :param misc: Auxiliary data of the observations.
        :param initial: The node values given by the tree builder.
        :return: The node constants of shape (n_nodes,).
        """
        initial = np.zeros(n_nodes) if initial is None else initial
        counts = np.bincount(node_index[in_bag], minlength=n_nodes)
        values = np.zeros(n_nodes)
        for k in range(n_nodes):
            if counts[k] == 0:
                continue
            if counts[k] < min_samples_leaf:
                values[k] = initial[k]
                continue
            index = in_bag & (node_index == k)
            values[k] = self._leaf_constant(
                y=y[index],
                z=z[:, index],
                j=j,
                w=w[index],
                misc=None if misc is None else misc[index],
                g_0=initial[k],
            )
        return values

    def _leaf_constant(
        self,
        y: np.ndarray,
        z: np.ndarray,
        j: int,
        w: np.ndarray,
        misc: Optional[np.ndarray],
        g_0: float,
    ) -> float:
        return self.opt_step(y=y, z=z, j=j, w=w, misc=misc, g_0=g_0)

    def bag_improvement(
        self,
        y: np.ndarray,
        z: np.ndarray,
        j: int,
        w: np.ndarray,
        fadj: np.ndarray,
        in_bag: np.ndarray,
        step_size: float,
        misc: Optional[np.ndarray] = None,
    ) -> float:
        """
        Estimates the reduction in deviance on the out-of-bag observations
        from adding the new tree at the given step size.

        :param y: Target values of the training observations.
        :param z: Linear predictor before the tree is added.
        :param j: Index of the dimension the tree was grown for.
        :param w: Weights of the training observations.
        :param fadj: Unshrunk tree prediction of each training observation.
        :param in_bag: Boolean mask of the observations in the current bag.
        :param step_size: The shrinkage applied to the tree.
        :param misc: Auxiliary data of the observations.
        :return: The out-of-bag improvement, 0 if every observation is in the bag.
        """
        oob = ~in_bag
        if not oob.any():
            return 0.0
        misc_oob = None if misc is None else misc[oob]
        z_old = z[:, oob]
        z_new = z_old.copy()
        z_new[j] += step_size * fadj[oob]
        return self._deviance(
            y=y[oob], z=z_old, w=w[oob], misc=misc_oob
        ) - self._deviance(y=y[oob], z=z_new, w=w[oob], misc=misc_oob)

    def simulate(
        self,
        z: np.ndarray,
        random_state: Optional[int] = None,
        rng: Optional[np.random.Generator] = None,
    ) -> np.ndarray:
        """Simulate values given the linear predictor z

        :param z: Linear predictor of shape (n_dim, n_samples).
        :param random_state: Random seed to use in simulation.
        :param rng: Random number generator to use in simulation.
        :return: Simulated values of shape (n_samples,).
        """
        raise NotImplementedError(f"Simulation is not available for {self.name}")

    def to_dict(self) -> dict:
        """
        Describes the distribution and its parameters.

        :return: Dictionary accepted by `initiate_distribution`.
        """
        return {"name": self.name}


@inherit_docstrings
class GaussianDistribution(Distribution):
    """Squared error loss."""

    name = "gaussian"

    def loss(self, y, z, w=1.0, misc=None):
        return (y - z[0]) ** 2

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return y - z[0]

    def mle(self, y, w=1.0, offset=None, misc=None):
        offset = 0 if offset is None else offset
        return self.mme(y=y - offset, w=w)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        num = np.bincount(
            node_index[in_bag],
            weights=(w * working_response)[in_bag],
            minlength=n_nodes,
        )
        den = np.bincount(node_index[in_bag], weights=w[in_bag], minlength=n_nodes)
        return _leaf_ratio(num, den)

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return rng.normal(z[0], 1.0)


@inherit_docstrings
class LaplaceDistribution(Distribution):
    """Absolute error loss."""

    name = "laplace"

    def loss(self, y, z, w=1.0, misc=None):
        return np.abs(y - z[0])

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return np.where(y > z[0], 1.0, -1.0)

    def mle(self, y, w=1.0, offset=None, misc=None):
        offset = 0 if offset is None else offset
        return np.array([weighted_median(y - offset, _as_weights(w, len(y)))])

    def _leaf_constant(self, y, z, j, w, misc, g_0):
        return weighted_median(y - z[0], w)

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return rng.laplace(z[0], 1.0)


@inherit_docstrings
class TDistribution(Distribution):
    """Loss of the location of a scaled t-distribution."""

    name = "tdist"

    def __init__(self, df: float = 4):
        """
        Initialize a t-distribution object.

        :param df: Degrees of freedom. Default is 4.
        """
        super().__init__()
        if df <= 0:
            raise ConfigurationError(f"df must be positive, got {df}")
        self.df = float(df)

    def loss(self, y, z, w=1.0, misc=None):
        return np.log1p((y - z[0]) ** 2 / self.df)

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        r = y - z[0]
        return 2 * r / (self.df + r**2)

    def mme(self, y, w=1.0):
        return np.array([weighted_median(y, _as_weights(w, len(y)))])

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return z[0] + rng.standard_t(self.df, size=z.shape[1])

    def to_dict(self):
        return {"name": self.name, "df": self.df}


@inherit_docstrings
class BernoulliDistribution(Distribution):
    """Logistic regression for 0/1 outcomes."""

    name = "bernoulli"

    def check_response(self, y, w=1.0, misc=None):
        super().check_response(y=y, w=w, misc=misc)
        _check_binary(y, self.name)

    def loss(self, y, z, w=1.0, misc=None):
        return -2 * (y * z[0] - np.logaddexp(0, z[0]))

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return y - expit(z[0])

    def mme(self, y, w=1.0):
        w = _as_weights(w, len(y))
        p = np.clip(np.sum(w * y) / np.sum(w), 1e-10, 1 - 1e-10)
        return np.array([np.log(p / (1 - p))])

    def mle(self, y, w=1.0, offset=None, misc=None):
        if offset is None or not np.any(offset):
            return self.mme(y=y, w=w)
        return super().mle(y=y, w=w, offset=offset, misc=misc)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        p = expit(z[0])
        num = np.bincount(
            node_index[in_bag],
            weights=(w * working_response)[in_bag],
            minlength=n_nodes,
        )
        den = np.bincount(
            node_index[in_bag], weights=(w * p * (1 - p))[in_bag], minlength=n_nodes
        )
        return _leaf_ratio(num, den)

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return rng.binomial(1, expit(z[0])).astype(float)


@inherit_docstrings
class HuberizedHingeDistribution(BernoulliDistribution):
    """Huberized hinge loss for 0/1 outcomes."""

    name = "huberized"

    def loss(self, y, z, w=1.0, misc=None):
        u = (2 * y - 1) * z[0]
        return np.where(u < -1, -4 * u, np.where(u < 1, (1 - u) ** 2, 0.0))

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        y_sign = 2 * y - 1
        u = y_sign * z[0]
        return np.where(
            u < -1, 4 * y_sign, np.where(u < 1, 2 * y_sign * (1 - u), 0.0)
        )

    def mme(self, y, w=1.0):
        w = _as_weights(w, len(y))
        return np.array([np.sum(w * (2 * y - 1)) / np.sum(w)])

    def mle(self, y, w=1.0, offset=None, misc=None):
        if offset is None or not np.any(offset):
            return self.mme(y=y, w=w)
        return Distribution.mle(self, y=y, w=w, offset=offset, misc=misc)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        return Distribution.fit_best_constant(
            self,
            y=y,
            z=z,
            j=j,
            w=w,
            working_response=working_response,
            node_index=node_index,
            n_nodes=n_nodes,
            in_bag=in_bag,
            min_samples_leaf=min_samples_leaf,
            misc=misc,
            initial=initial,
        )


@inherit_docstrings
class AdaBoostDistribution(BernoulliDistribution):
    """The AdaBoost exponential loss for 0/1 outcomes."""

    name = "adaboost"

    def loss(self, y, z, w=1.0, misc=None):
        return np.exp(-(2 * y - 1) * z[0])

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        y_sign = 2 * y - 1
        return y_sign * np.exp(-y_sign * z[0])

    def mle(self, y, w=1.0, offset=None, misc=None):
        w = _as_weights(w, len(y))
        offset = np.zeros(len(y)) if offset is None else offset
        num = np.sum(w * y * np.exp(-offset))
        den = np.sum(w * (1 - y) * np.exp(offset))
        return np.array([0.5 * np.log(num / den)])

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        num = np.bincount(
            node_index[in_bag],
            weights=(w * working_response)[in_bag],
            minlength=n_nodes,
        )
        den = np.bincount(
            node_index[in_bag],
            weights=(w * self.loss(y=y, z=z))[in_bag],
            minlength=n_nodes,
        )
        return _leaf_ratio(num, den)

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return rng.binomial(1, expit(2 * z[0])).astype(float)


@inherit_docstrings
class MultinomialDistribution(Distribution):
    """
    Multi-class logistic loss with one linear predictor per class.

    The response holds class labels 0, ..., n_classes - 1.
    """

    name = "multinomial"

    def __init__(self, n_classes: Optional[int] = None):
        """
        Initialize a multinomial distribution object.

        :param n_classes: The number of classes. Default is to take it from
            the first response that is checked.
        """
        super().__init__()
        self.n_classes = None
        if n_classes is not None:
            self._set_classes(n_classes)

    def _set_classes(self, n_classes: int) -> None:
        if n_classes < 2:
            raise ConfigurationError("The multinomial distribution needs two classes")
        self.n_classes = int(n_classes)
        self.n_dim = self.n_classes

    def check_response(self, y, w=1.0, misc=None):
        super().check_response(y=y, w=w, misc=misc)
        if np.any(y < 0) or np.any(y != np.round(y)):
            raise ConfigurationError(
                "The multinomial distribution requires integer class labels"
            )
        if self.n_classes is None:
            self._set_classes(int(y.max()) + 1)
        elif y.max() >= self.n_classes:
            raise ConfigurationError(
                f"Class label {int(y.max())} outside of {self.n_classes} classes"
            )

    def loss(self, y, z, w=1.0, misc=None):
        labels = y.astype(int)
        return -2 * log_softmax(z, axis=0)[labels, np.arange(len(y))]

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return (y == j) - softmax(z, axis=0)[j]

    def mle(self, y, w=1.0, offset=None, misc=None):
        return np.zeros(self.n_dim)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        abs_z = np.abs(working_response)
        num = np.bincount(
            node_index[in_bag],
            weights=(w * working_response)[in_bag],
            minlength=n_nodes,
        )
        den = np.bincount(
            node_index[in_bag],
            weights=(w * abs_z * (1 - abs_z))[in_bag],
            minlength=n_nodes,
        )
        return _leaf_ratio(num, den)

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        cum_p = np.cumsum(softmax(z, axis=0), axis=0)
        u = rng.random(z.shape[1])
        return np.minimum((u[None, :] > cum_p).sum(axis=0), z.shape[0] - 1).astype(
            float
        )

    def to_dict(self):
        return {"name": self.name, "n_classes": self.n_classes}


@inherit_docstrings
class PoissonDistribution(Distribution):
    """Poisson log-likelihood for count outcomes."""

    name = "poisson"

    def check_response(self, y, w=1.0, misc=None):
        super().check_response(y=y, w=w, misc=misc)
        if np.any(y < 0):
            raise ConfigurationError(
                "The poisson distribution requires non-negative responses"
            )
        if np.sum(_as_weights(w, len(y)) * y) <= 0:
            raise ConfigurationError(
                "The poisson distribution requires a positive weighted response total"
            )

    def loss(self, y, z, w=1.0, misc=None):
        return -2 * (y * z[0] - np.exp(z[0]))

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return y - np.exp(z[0])

    def mle(self, y, w=1.0, offset=None, misc=None):
        w = _as_weights(w, len(y))
        offset = np.zeros(len(y)) if offset is None else offset
        return np.array([np.log(np.sum(w * y) / np.sum(w * np.exp(offset)))])

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        f = z[0]
        num = np.bincount(
            node_index[in_bag], weights=(w * y)[in_bag], minlength=n_nodes
        )
        den = np.bincount(
            node_index[in_bag], weights=(w * np.exp(f))[in_bag], minlength=n_nodes
        )
        max_f = np.full(n_nodes, -np.inf)
        min_f = np.full(n_nodes, np.inf)
        np.maximum.at(max_f, node_index, f)
        np.minimum.at(min_f, node_index, f)

        values = np.zeros(n_nodes)
        positive = (num != 0) & (den != 0)
        values[positive] = np.log(num[positive] / den[positive])
        values[num == 0] = -MAX_LINEAR_PREDICTOR
        values = np.minimum(values, MAX_LINEAR_PREDICTOR - max_f)
        values = np.maximum(values, -MAX_LINEAR_PREDICTOR - min_f)
        return values

    def simulate(self, z, random_state=None, rng=None):
        if rng is None:
            rng = np.random.default_rng(seed=random_state)
        return rng.poisson(np.exp(z[0])).astype(float)


@inherit_docstrings
class CoxPHDistribution(Distribution):
    """
    Cox partial likelihood for right censored survival times.

    The response is the observed time and misc the event indicator
    (1 for an event, 0 for a censored time).
    """

    name = "coxph"

    def check_response(self, y, w=1.0, misc=None):
        super().check_response(y=y, w=w, misc=misc)
        if misc is None:
            raise ConfigurationError(
                "The coxph distribution requires the event indicator in misc"
            )
        if not np.all((misc == 0) | (misc == 1)):
            raise ConfigurationError("The event indicator must be 0/1")

    @staticmethod
    def _risk_order(y: np.ndarray) -> np.ndarray:
        return np.argsort(-y, kind="stable")

    def loss(self, y, z, w=1.0, misc=None):
        w = _as_weights(w, len(y))
        order = self._risk_order(y)
        risk_total = np.empty(len(y))
        risk_total[order] = np.cumsum((w * np.exp(z[0]))[order])
        loss = np.zeros(len(y))
        event = (misc == 1) & (w > 0)
        loss[event] = -2 * (z[0][event] - np.log(risk_total[event]))
        return loss

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        w = _as_weights(w, len(y))
        in_bag = np.ones(len(y), dtype=bool) if in_bag is None else in_bag
        order = self._risk_order(y)
        exp_f = np.exp(z[0])
        risk_total = np.cumsum((w * exp_f * in_bag)[order])
        event = (misc * in_bag)[order]
        hazard = np.zeros(len(y))
        np.divide(w[order] * event, risk_total, out=hazard, where=risk_total > 0)
        cum_hazard = np.empty(len(y))
        cum_hazard[order] = np.cumsum(hazard[::-1])[::-1]
        return misc - exp_f * cum_hazard

    def mle(self, y, w=1.0, offset=None, misc=None):
        return np.zeros(1)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        # One Newton step of the partial likelihood in all node constants jointly
        counts = np.bincount(node_index[in_bag], minlength=n_nodes)
        active = np.flatnonzero(counts > 0)
        order = self._risk_order(y[in_bag])
        node = np.searchsorted(active, node_index[in_bag][order])
        exp_f = (w * np.exp(z[0]))[in_bag][order]
        event_w = (w * misc)[in_bag][order]

        membership = np.zeros((len(order), len(active)))
        membership[np.arange(len(order)), node] = 1.0
        risk_total = np.cumsum(exp_f)
        risk_node = np.cumsum(exp_f[:, None] * membership, axis=0)
        share = np.zeros_like(risk_node)
        np.divide(
            risk_node,
            risk_total[:, None],
            out=share,
            where=risk_total[:, None] > 0,
        )

        grad = event_w @ (membership - share)
        hess = np.diag(event_w @ share) - (share * event_w[:, None]).T @ share
        step = np.linalg.lstsq(hess, grad, rcond=None)[0]

        values = np.zeros(n_nodes)
        values[active] = step
        return values


@inherit_docstrings
class QuantileDistribution(Distribution):
    """Check loss for the alpha-quantile of the response."""

    name = "quantile"

    def __init__(self, alpha: float = 0.5):
        """
        Initialize a quantile distribution object.

        :param alpha: The quantile to estimate, in (0, 1). Default is the median.
        """
        super().__init__()
        if not 0 < alpha < 1:
            raise ConfigurationError(f"alpha must be in (0, 1), got {alpha}")
        self.alpha = float(alpha)

    def loss(self, y, z, w=1.0, misc=None):
        r = y - z[0]
        return np.where(r > 0, self.alpha * r, (self.alpha - 1) * r)

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return np.where(y > z[0], self.alpha, self.alpha - 1)

    def mle(self, y, w=1.0, offset=None, misc=None):
        offset = 0 if offset is None else offset
        return np.array(
            [weighted_quantile(y - offset, _as_weights(w, len(y)), self.alpha)]
        )

    def _leaf_constant(self, y, z, j, w, misc, g_0):
        return weighted_quantile(y - z[0], w, self.alpha)

    def to_dict(self):
        return {"name": self.name, "alpha": self.alpha}


@inherit_docstrings
class PairwiseDistribution(Distribution):
    """
    Pairwise ranking loss (LambdaMART).

    misc holds the group id of each observation; only pairs within a group
    with different responses are compared.
    """

    name = "pairwise"
    uses_group = True

    def __init__(self, metric: str = "ndcg", max_rank: int = 0):
        """
        Initialize a pairwise ranking distribution object.

        :param metric: The IR measure to optimize, one of "conc", "mrr", "map", "ndcg".
        :param max_rank: Rank cut-off for "ndcg" and "mrr". 0 means no cut-off.
        """
        super().__init__()
        self.metric = initiate_metric(metric=metric, max_rank=max_rank)

    @staticmethod
    def _groups(misc: np.ndarray) -> list:
        _, labels = np.unique(misc, return_inverse=True)
        order = np.argsort(labels, kind="stable")
        bounds = np.flatnonzero(np.diff(labels[order])) + 1
        return np.split(order, bounds)

    def check_response(self, y, w=1.0, misc=None):
        super().check_response(y=y, w=w, misc=misc)
        if misc is None:
            raise ConfigurationError(
                "The pairwise distribution requires a group for every observation"
            )
        if self.metric.needs_binary:
            _check_binary(y, f"{self.name} ({self.metric.name})")
        w = _as_weights(w, len(y))
        for index in self._groups(misc):
            if np.any(w[index] != w[index[0]]):
                raise ConfigurationError(
                    "All observations of a group must have the same weight"
                )

    def prepare_weights(self, w, misc=None):
        if misc is None:
            return w
        groups = self._groups(misc)
        group_w = np.array([w[index[0]] for index in groups])
        return w * len(groups) / np.sum(group_w)

    def loss(self, y, z, w=1.0, misc=None):
        loss = np.zeros(len(y))
        for index in self._groups(misc):
            y_g = y[index]
            loss[index] = 1 - self.metric.measure(
                y=y_g, ranks=score_ranks(z[0][index])
            )
        return loss

    def _deviance(self, y, z, w, misc):
        total = 0.0
        total_w = 0.0
        for index in self._groups(misc):
            y_g = y[index]
            if np.all(y_g == y_g[0]):
                continue
            measure = self.metric.measure(y=y_g, ranks=score_ranks(z[0][index]))
            total += w[index[0]] * (1 - measure)
            total_w += w[index[0]]
        if total_w == 0:
            return 0.0
        return total / total_w

    def _lambdas(
        self,
        y: np.ndarray,
        z: np.ndarray,
        misc: np.ndarray,
        in_bag: Optional[np.ndarray],
    ):
        lambdas = np.zeros(len(y))
        hessian = np.zeros(len(y))
        for index in self._groups(misc):
            if in_bag is not None and not in_bag[index[0]]:
                continue
            y_g = y[index]
            f_g = z[0][index]
            i, j = np.nonzero(y_g[:, None] > y_g[None, :])
            if len(i) == 0:
                continue
            cost = self.metric.swap_cost(y=y_g, ranks=score_ranks(f_g), i=i, j=j)
            rho = expit(f_g[j] - f_g[i])
            lam = cost * rho
            deriv = lam * (1 - rho)
            n = len(index)
            lambdas[index] = group_sums(lam, i, n) - group_sums(lam, j, n)
            hessian[index] = group_sums(deriv, i, n) + group_sums(deriv, j, n)
        return lambdas, hessian

    def working_response(self, y, z, j=0, w=1.0, misc=None, in_bag=None):
        return self._lambdas(y=y, z=z, misc=misc, in_bag=in_bag)[0]

    def mle(self, y, w=1.0, offset=None, misc=None):
        return np.zeros(1)

    def fit_best_constant(
        self,
        y,
        z,
        j,
        w,
        working_response,
        node_index,
        n_nodes,
        in_bag,
        min_samples_leaf=1,
        misc=None,
        initial=None,
    ):
        lambdas, hessian = self._lambdas(y=y, z=z, misc=misc, in_bag=in_bag)
        num = np.bincount(
            node_index[in_bag], weights=(w * lambdas)[in_bag], minlength=n_nodes
        )
        den = np.bincount(
            node_index[in_bag], weights=(w * hessian)[in_bag], minlength=n_nodes
        )
        return _leaf_ratio(num, den)

    def to_dict(self):
        return {"name": self.name, **self.metric.to_dict()}


def initiate_distribution(
    distribution: Union[str, dict] = "gaussian",
    **params,
) -> Distribution:
    """
    Returns a distribution object based on the distribution name.

    :param distribution: Name of the distribution, or a dictionary with the
        name under "name" and the distribution parameters, as produced by
        `Distribution.to_dict`.
        Valid names are "gaussian", "laplace", "tdist", "bernoulli", "huberized",
        "multinomial", "adaboost", "poisson", "coxph", "quantile" and "pairwise".
    :param params: Distribution parameters, e.g. df for "tdist", alpha for
        "quantile", metric and max_rank for "pairwise".
    :return: A distribution object.
    :raises UnknownDistributionError: If the distribution name is not recognized.
    """
    if isinstance(distribution, dict):
        params = {**distribution, **params}
        distribution = params.pop("name")
    if distribution == "gaussian":
        return GaussianDistribution()
    if distribution == "laplace":
        return LaplaceDistribution()
    if distribution == "tdist":
        return TDistribution(df=params.get("df", 4))
    if distribution == "bernoulli":
        return BernoulliDistribution()
    if distribution == "huberized":
        return HuberizedHingeDistribution()
    if distribution == "multinomial":
        return MultinomialDistribution(n_classes=params.get("n_classes"))
    if distribution == "adaboost":
        return AdaBoostDistribution()
    if distribution == "poisson":
        return PoissonDistribution()
    if distribution == "coxph":
        return CoxPHDistribution()
    if distribution == "quantile":
        return QuantileDistribution(alpha=params.get("alpha", 0.5))
    if distribution == "pairwise":
        return PairwiseDistribution(
            metric=params.get("metric", "ndcg"), max_rank=params.get("max_rank", 0)
        )
    raise UnknownDistributionError(f"Unknown distribution: {distribution}")
