from .gradient_booster import GradientBooster, deviance, extend, fit, predict
from .ensemble import Ensemble
from .exceptions import ConfigurationError, UnknownDistributionError

__all__ = [
    "GradientBooster",
    "Ensemble",
    "fit",
    "extend",
    "predict",
    "deviance",
    "ConfigurationError",
    "UnknownDistributionError",
]
