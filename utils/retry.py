"""
Bounded retry with exponential backoff
Used for whole-call retries (plan synthesis), separate from the gateway's 429 handling.
"""
import time
from typing import Callable, TypeVar

from utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def retry_with_backoff(
    fn: Callable[[], T],
    max_retries: int = 3,
    initial_delay: float = 1.0,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    give_up_on: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Call fn until it succeeds, at most max_retries + 1 times.

    Delays are initial_delay * 2**attempt (e.g. 2s, 4s, 8s). Exceptions in
    give_up_on are re-raised immediately. The last error is re-raised once
    the budget is spent.
    """
    attempt = 0
    while True:
        try:
            return fn()
        except give_up_on:
            raise
        except retry_on as e:
            if attempt >= max_retries:
                raise
            delay = initial_delay * (2 ** attempt)
            logger.warning(
                f"Retry attempt {attempt + 1}/{max_retries} after {delay:.1f}s. Error: {e}"
            )
            sleep(delay)
            attempt += 1
