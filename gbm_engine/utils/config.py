from typing import Any, Dict

import yaml

from gbm_engine.exceptions import ConfigurationError

DISTRIBUTION = "distribution"
N_ESTIMATORS = "n_estimators"
LEARNING_RATE = "learning_rate"
INTERACTION_DEPTH = "interaction_depth"
MIN_SAMPLES_LEAF = "min_samples_leaf"
BAG_FRACTION = "bag_fraction"
TRAIN_FRACTION = "train_fraction"
MAX_FEATURES = "max_features"
MONOTONE_CONSTRAINTS = "monotone_constraints"
KEEP_DATA = "keep_data"
RANDOM_STATE = "random_state"
VERBOSE = "verbose"

CONFIG_KEYS = (
    DISTRIBUTION,
    N_ESTIMATORS,
    LEARNING_RATE,
    INTERACTION_DEPTH,
    MIN_SAMPLES_LEAF,
    BAG_FRACTION,
    TRAIN_FRACTION,
    MAX_FEATURES,
    MONOTONE_CONSTRAINTS,
    KEEP_DATA,
    RANDOM_STATE,
    VERBOSE,
)


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load boosting hyper-parameters from a YAML file.

    The distribution is either a name or a mapping with the name under
    "name" and its parameters, e.g. ``{name: quantile, alpha: 0.9}``.

    :param config_path: path to the configuration file
    :return: configuration dictionary
    :raises ConfigurationError: If the file holds unknown keys.
    """
    with open(config_path, "r") as f:
        config = yaml.safe_load(f)
    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"{config_path} does not hold a mapping")

    unknown = sorted(set(config) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigurationError(f"Unknown configuration keys: {', '.join(unknown)}")
    return config
