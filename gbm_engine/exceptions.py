class ConfigurationError(ValueError):
    """Raised when the model or data configuration is invalid before fitting starts."""


class UnknownDistributionError(ConfigurationError):
    """Raised when a distribution name is not recognized."""
