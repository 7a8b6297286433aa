class AggregateServiceError(Exception):
    """Base exception for the aggregate service."""


class ConfigurationError(AggregateServiceError):
    """Deployment problem: missing or unusable configuration."""


class FormatError(ConfigurationError):
    """Connection string could not be tokenized."""


class InvalidUriError(ConfigurationError):
    pass


class ExecutionError(AggregateServiceError):
    """Backend failure while reading or writing documents."""


class QueryCancelledError(AggregateServiceError):
    pass
