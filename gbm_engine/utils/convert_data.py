from typing import List, Optional, Tuple, Union

import numpy as np
import pandas as pd
from sklearn.utils import check_array, check_consistent_length

from gbm_engine.exceptions import ConfigurationError


def convert_features(
    X: Union[np.ndarray, pd.DataFrame],
    feature_names: Optional[List[str]] = None,
    levels: Optional[List[Optional[List]]] = None,
) -> Tuple[np.ndarray, Optional[List[str]], np.ndarray, List[Optional[List]]]:
    """
    Converts a feature matrix to a float array.

    Columns of pandas "category" dtype are nominal features: they are encoded
    as category codes, and their number of levels is their variable type.
    Other features have variable type 0.

    :param X: Feature matrix of shape (n_samples, n_features).
    :param feature_names: Expected column names, checked when X is a DataFrame.
    :param levels: Categories of each nominal feature from an earlier fit.
        Values outside of them get code -1.
    :return: The feature array, the feature names, the variable types and
        the categories of each feature (None for continuous features).
    :raises ConfigurationError: If the features contain non-finite values.
    """
    if isinstance(X, pd.DataFrame):
        names = [str(c) for c in X.columns]
        if feature_names is not None and names != list(feature_names):
            raise ConfigurationError(
                "Feature names do not match the names the model was fitted on"
            )
        columns = []
        new_levels = []
        for k, column in enumerate(X.columns):
            values = X[column]
            known = None if levels is None else levels[k]
            if known is not None:
                codes = pd.Categorical(values, categories=known).codes
                columns.append(codes.astype(float))
            elif levels is None and isinstance(values.dtype, pd.CategoricalDtype):
                if values.isna().any():
                    raise ConfigurationError(f"Feature {column} has missing values")
                new_levels.append(values.cat.categories.tolist())
                columns.append(values.cat.codes.to_numpy(dtype=float))
            else:
                new_levels.append(None)
                columns.append(values.to_numpy(dtype=float))
        X = np.column_stack(columns) if columns else np.empty((len(X), 0))
        feature_names = names
        levels = new_levels if levels is None else levels
    elif levels is None:
        levels = [None] * np.shape(X)[1]

    try:
        X = check_array(X, dtype=float)
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    var_type = np.array([0 if lv is None else len(lv) for lv in levels], dtype=int)
    return X, feature_names, var_type, levels


def _convert_vector(
    v: Optional[Union[np.ndarray, pd.Series, float]], n: int, default: float
) -> np.ndarray:
    if v is None:
        return np.full(n, default, dtype=float)
    if np.isscalar(v):
        return np.full(n, v, dtype=float)
    return np.asarray(v, dtype=float).ravel()


class TrainingData:
    """
    Arrays of one boosting data set, with the training partition first.

    :param X: Feature array of shape (n_samples, n_features).
    :param y: Response of shape (n_samples,).
    :param w: Observation weights of shape (n_samples,).
    :param offset: Offsets of shape (n_samples,).
    :param misc: Auxiliary data of shape (n_samples,), or None.
    """

    def __init__(
        self,
        X: np.ndarray,
        y: np.ndarray,
        w: np.ndarray,
        offset: np.ndarray,
        misc: Optional[np.ndarray] = None,
    ):
        self.X = X
        self.y = y
        self.w = w
        self.offset = offset
        self.misc = misc

    def __len__(self):
        return len(self.y)

    def to_dict(self) -> dict:
        return {
            "X": self.X.tolist(),
            "y": self.y.tolist(),
            "w": self.w.tolist(),
            "offset": self.offset.tolist(),
            "misc": None if self.misc is None else self.misc.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TrainingData":
        n = len(data["y"])
        return cls(
            X=np.array(data["X"], dtype=float).reshape(n, -1),
            y=np.array(data["y"], dtype=float),
            w=np.array(data["w"], dtype=float),
            offset=np.array(data["offset"], dtype=float),
            misc=None if data["misc"] is None else np.array(data["misc"], dtype=float),
        )


def convert_data(
    X: np.ndarray,
    y: Union[np.ndarray, pd.Series],
    w: Optional[Union[np.ndarray, pd.Series, float]] = None,
    offset: Optional[Union[np.ndarray, pd.Series, float]] = None,
    misc: Optional[Union[np.ndarray, pd.Series]] = None,
    group: bool = False,
) -> TrainingData:
    """
    Converts the response and observation data to float arrays.

    :param X: Converted feature array of shape (n_samples, n_features).
    :param y: Response values.
    :param w: Weights. Default is 1 for all observations.
    :param offset: Offsets on the link scale. Default is 0 for all observations.
    :param misc: Auxiliary data, e.g. event indicators or group ids.
    :param group: Whether misc holds group ids, which are replaced by integer
        codes in order of first appearance.
    :return: The training data.
    :raises ConfigurationError: If the lengths differ or a weight is negative.
    """
    y = np.asarray(y, dtype=float).ravel()
    n = len(y)
    w = _convert_vector(w, n, 1.0)
    offset = _convert_vector(offset, n, 0.0)
    if misc is not None:
        if group:
            misc = pd.factorize(np.asarray(misc).ravel())[0].astype(float)
        else:
            misc = np.asarray(misc, dtype=float).ravel()
    try:
        check_consistent_length(
            *[a for a in (X, y, w, offset, misc) if a is not None]
        )
    except ValueError as e:
        raise ConfigurationError(str(e)) from e
    if np.any(w < 0):
        raise ConfigurationError("Weights must be non-negative")
    if not np.all(np.isfinite(offset)):
        raise ConfigurationError("The offset contains non-finite values")
    return TrainingData(X=X, y=y, w=w, offset=offset, misc=misc)
