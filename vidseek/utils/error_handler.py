import asyncio
import functools
from typing import TypeVar, Callable, Any, Optional, Type, Union
from loguru import logger
from ..exceptions import VidSeekException, UpstreamError

T = TypeVar('T')


def _retry_delay(exc: Exception, attempt: int, backoff_factor: float, max_delay: float,
                 retry_after_buffer: float) -> float:
    # Server-provided retry_after wins over exponential backoff
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        return float(retry_after) + retry_after_buffer
    return min(backoff_factor ** attempt, max_delay)


async def call_with_retries(
    func: Callable[..., Any],
    *args,
    retries: int = 3,
    exceptions: Union[Type[Exception], tuple] = Exception,
    backoff_factor: float = 2.0,
    max_delay: float = 60.0,
    retry_after_buffer: float = 1.0,
    **kwargs
):
    """
    Await ``func(*args, **kwargs)``, retrying on the given exception types.

    Args:
        func: Coroutine function to call
        retries: Total number of attempts
        exceptions: Exception types to catch and retry
        backoff_factor: Exponential backoff factor
        max_delay: Maximum backoff delay between retries
        retry_after_buffer: Seconds added to an exception's ``retry_after`` hint
    """
    last_exception = None

    for attempt in range(retries):
        try:
            return await func(*args, **kwargs)
        except exceptions as e:
            last_exception = e

            if attempt < retries - 1:
                delay = _retry_delay(e, attempt, backoff_factor, max_delay, retry_after_buffer)
                logger.warning(f"Attempt {attempt + 1} failed: {e}. Retrying in {delay}s...")
                await asyncio.sleep(delay)
            else:
                logger.error(f"All {retries} attempts failed: {e}")

    raise last_exception


def log_exceptions(
    log_level: str = "ERROR",
    include_traceback: bool = True,
    custom_message: Optional[str] = None
):
    """
    Decorator to log exceptions.

    Args:
        log_level: Log level for exception logging
        include_traceback: Whether to include traceback in log
        custom_message: Custom message to include in log
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                message = custom_message or f"Exception in {func.__name__}"
                if include_traceback:
                    logger.opt(exception=True).log(log_level, f"{message}: {e}")
                else:
                    logger.log(log_level, f"{message}: {e}")
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                message = custom_message or f"Exception in {func.__name__}"
                if include_traceback:
                    logger.opt(exception=True).log(log_level, f"{message}: {e}")
                else:
                    logger.log(log_level, f"{message}: {e}")
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


def convert_exceptions(exception_map: dict):
    """
    Decorator to convert third-party exceptions to vidseek exceptions.

    Exceptions that are already vidseek exceptions pass through untouched.

    Args:
        exception_map: Dictionary mapping exception types to vidseek exception types
    """
    def _convert(e: Exception):
        if isinstance(e, VidSeekException):
            return None
        for source_exc, target_exc in exception_map.items():
            if isinstance(e, source_exc):
                return target_exc(str(e), details={"original_exception": type(e).__name__})
        return None

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                converted = _convert(e)
                if converted is not None:
                    raise converted from e
                raise

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                converted = _convert(e)
                if converted is not None:
                    raise converted from e
                raise

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator


class ErrorHandler:
    """Centralized error handling utilities."""

    @staticmethod
    def handle_provider_error(e: Exception, provider_name: str) -> UpstreamError:
        """Convert provider-specific exceptions to UpstreamError."""
        error_details = {
            "provider": provider_name,
            "original_exception": type(e).__name__,
            "message": str(e)
        }

        logger.error(f"Provider {provider_name} error: {e}")
        return UpstreamError(
            f"Provider {provider_name} failed: {e}",
            error_code="PROVIDER_ERROR",
            details=error_details
        )
