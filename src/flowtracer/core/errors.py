from typing import Optional


class TracerError(Exception):
    pass


class ConfigError(TracerError):
    pass


class DataSourceError(TracerError):
    pass


class RateLimitError(DataSourceError):
    pass


class RetryExhaustedError(DataSourceError):
    def __init__(self, label: str, attempts: int, last_error: Optional[BaseException]) -> None:
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label} failed after {attempts} attempts: {last_error}")


def is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitError):
        return True
    if isinstance(exc, RetryExhaustedError):
        return isinstance(exc.last_error, RateLimitError)
    return False
