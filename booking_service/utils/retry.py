import asyncio
import logging
from typing import Awaitable, Callable, Optional, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_async(
    fn: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    retry_delay: float,
    retry_on: Tuple[Type[BaseException], ...],
    operation: str = "operation",
    on_retry: Optional[Callable[[int, BaseException], Awaitable[None]]] = None,
) -> T:
    """Run ``fn`` and re-run it on ``retry_on`` errors.

    The delay grows linearly (``retry_delay * attempt``). Any exception not
    listed in ``retry_on`` propagates immediately, as does the last retryable
    one once ``max_retries`` is exhausted.
    """
    attempt = 0
    while True:
        try:
            return await fn()
        except retry_on as e:
            if attempt >= max_retries:
                logger.error(f"{operation} failed after {attempt + 1} attempt(s): {e}")
                raise
            attempt += 1
            logger.warning(f"{operation} failed (attempt {attempt}), retrying: {e}")
            if on_retry is not None:
                await on_retry(attempt, e)
            await asyncio.sleep(retry_delay * attempt)
