"""Error handling framework for subdrop.

Provides the exception taxonomy of the identification pipeline and decorators
for standardized error handling.
"""

import inspect
import logging
from functools import wraps

logger = logging.getLogger(__name__)


class SubdropError(Exception):
    """Base exception for all subdrop-specific errors."""

    pass


class InsufficientSizeError(SubdropError):
    """File is too small to hash.

    The movie hash needs at least two full 64 KiB chunks. Not retryable.
    """

    def __init__(self, size: int, minimum: int):
        super().__init__(f"File size {size} is below the {minimum} byte hashing minimum")
        self.size = size
        self.minimum = minimum


class HashFailedError(SubdropError):
    """Hashing still failed after every retry attempt.

    The last underlying exception is kept on ``last_error``.
    """

    def __init__(self, message: str, last_error: BaseException | None = None):
        super().__init__(message)
        self.last_error = last_error


class NetworkError(SubdropError):
    """Remote lookup failed at the transport level (connection, timeout, HTTP status)."""

    pass


class ProtocolError(SubdropError):
    """Remote service answered with a malformed or non-OK response."""

    pass


class RateLimitedError(SubdropError):
    """Call attempted inside the minimum interval of its endpoint.

    Raised immediately; callers decide whether to retry later.
    """

    def __init__(self, endpoint: str, retry_after: float):
        super().__init__(f"Rate limited on '{endpoint}', retry in {retry_after:.2f}s")
        self.endpoint = endpoint
        self.retry_after = retry_after


class InvalidResultError(SubdropError):
    """Remote service answered but without a usable title. Treated as no match."""

    pass


class CacheError(SubdropError):
    """Cache storage failed. Callers degrade to a cache miss."""

    pass


# Errors worth another attempt in identification flows
RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    NetworkError,
    ProtocolError,
    RateLimitedError,
    OSError,
)


def handle_errors(
    *,
    error_types: tuple[type[Exception], ...],
    default_message: str,
    log_level: str = "error",
    reraise: bool = True,
    wrap_as: type[SubdropError] | None = None,
):
    """Decorator for standardized error handling.

    Args:
        error_types: Tuple of exception types to catch
        default_message: Message to log when error occurs
        log_level: Logging level (error, warning, info, debug)
        reraise: Whether to re-raise the exception after logging.
            When False the wrapped call returns None.
        wrap_as: Optionally wrap the caught exception in a SubdropError subclass

    Example:
        @handle_errors(
            error_types=(sqlalchemy.exc.SQLAlchemyError,),
            default_message="Cache read failed",
            log_level="warning",
            reraise=False,
        )
        def get(self, key):
            ...
    """

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except error_types as e:
                log_func = getattr(logger, log_level)
                log_func(
                    f"{default_message}: {e}",
                    exc_info=(log_level == "error"),
                )
                if wrap_as:
                    raise wrap_as(f"{default_message}: {e}") from e
                if reraise:
                    raise
                return None

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except error_types as e:
                log_func = getattr(logger, log_level)
                log_func(
                    f"{default_message}: {e}",
                    exc_info=(log_level == "error"),
                )
                if wrap_as:
                    raise wrap_as(f"{default_message}: {e}") from e
                if reraise:
                    raise
                return None

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


class error_context:
    """Context manager for error handling in specific code blocks.

    Example:
        with error_context(
            error_types=(ValueError, KeyError),
            default_message="Malformed GuessMovieFromString response",
            wrap_as=ProtocolError,
        ):
            ...
    """

    def __init__(
        self,
        *,
        error_types: tuple[type[Exception], ...],
        default_message: str,
        log_level: str = "error",
        wrap_as: type[SubdropError] | None = None,
    ):
        self.error_types = error_types
        self.default_message = default_message
        self.log_level = log_level
        self.wrap_as = wrap_as

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if exc_type is not None and issubclass(exc_type, self.error_types):
            log_func = getattr(logger, self.log_level)
            log_func(
                f"{self.default_message}: {exc_val}",
                exc_info=(self.log_level == "error"),
            )
            if self.wrap_as:
                raise self.wrap_as(f"{self.default_message}: {exc_val}") from exc_val
            return False
        return False
