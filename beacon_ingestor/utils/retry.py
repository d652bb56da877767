import asyncio
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception
from aiohttp import ClientError, ClientResponseError

def is_transient(error: BaseException) -> bool:
    """
    Connection problems and 5xx answers are worth another attempt; 4xx are not.

    A timed-out call is not retried: each request gets one deadline.
    """
    # aiohttp's timeout errors are also ClientErrors
    if isinstance(error, asyncio.TimeoutError):
        return False
    if isinstance(error, ClientResponseError):
        return error.status >= 500
    return isinstance(error, ClientError)

# Define retry decorator for API calls
def api_retry(attempts: int = 3, max_wait: float = 10):
    """Retry decorator for API calls."""
    return retry(
        stop=stop_after_attempt(attempts),
        wait=wait_exponential(multiplier=1, min=1, max=max_wait),
        retry=retry_if_exception(is_transient),
        reraise=True
    )
