"""Exception hierarchy for kutail."""


class KutailError(Exception):
    """Base exception for kutail errors."""

    pass


class ConfigError(KutailError):
    """Raised for invalid configuration, before any watch or tail starts."""

    pass


class InvalidContainerStateError(ConfigError):
    """Raised when a container state name is not recognized."""

    pass


class InvalidConditionError(ConfigError):
    """Raised when a pod condition name is not recognized."""

    pass


class InvalidConditionValueError(ConfigError):
    """Raised when a pod condition value is not True, False or Unknown."""

    pass


class LostWatchError(KutailError):
    """Raised when a pod watch ends unexpectedly."""

    pass


class MaxLogRequestsError(KutailError):
    """Raised when the number of concurrent log requests exceeds the limit."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        super().__init__(
            f"reached the maximum number of log requests ({limit}), "
            f"use --max-log-requests to increase the limit"
        )


class TemplateError(KutailError):
    """Raised when a log record cannot be rendered."""

    pass
