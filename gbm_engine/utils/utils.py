from typing import Type, Union

import numpy as np


def inherit_docstrings(cls: Type) -> Type:
    """
    Decorator to copy docstrings from base class to derived class methods.

    :param cls: The class to decorate.
    :return: The decorated class.
    """
    for name, method in vars(cls).items():
        if callable(method) and method.__doc__ is None:
            for parent in cls.__mro__[1:]:
                parent_method = getattr(parent, name, None)
                if parent_method is not None and parent_method.__doc__ is not None:
                    method.__doc__ = parent_method.__doc__
                    break
    return cls


def calculate_progress(
    step: int,
    total_steps: int,
) -> float:
    """Calculate the progress of the boosting run, rounded down to tenths.

    :param step: The current step.
    :param total_steps: The total number of steps.
    """
    return np.floor(10 * step / total_steps) / 10


def weighted_quantile(
    x: np.ndarray, w: Union[np.ndarray, float], alpha: float
) -> float:
    """
    Calculates the weighted alpha-quantile of the values in x.

    The quantile is the smallest value of x at which the cumulative weight
    reaches alpha times the total weight.

    :param x: Values of shape (n_samples,).
    :param w: Weights of the values.
    :param alpha: The quantile level in (0, 1).
    :return: The weighted quantile, or 0 for an empty input.
    """
    if len(x) == 0:
        return 0.0
    w = np.broadcast_to(np.asarray(w, dtype=float), x.shape)
    order = np.argsort(x, kind="stable")
    cum_w = np.cumsum(w[order])
    k = np.searchsorted(cum_w, alpha * cum_w[-1])
    return float(x[order][min(k, len(x) - 1)])


def weighted_median(x: np.ndarray, w: Union[np.ndarray, float]) -> float:
    """
    Calculates the weighted median of the values in x.

    :param x: Values of shape (n_samples,).
    :param w: Weights of the values.
    :return: The weighted median.
    """
    return weighted_quantile(x=x, w=w, alpha=0.5)


def group_sums(
    values: np.ndarray, groups: np.ndarray, n_groups: int
) -> np.ndarray:
    """Sum values per integer group label.

    :param values: Values of shape (n_samples,).
    :param groups: Group labels in [0, n_groups) of shape (n_samples,).
    :param n_groups: The number of groups.
    :return: Group sums of shape (n_groups,).
    """
    return np.bincount(groups, weights=values, minlength=n_groups)
