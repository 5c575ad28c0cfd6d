import functools
import inspect
import time

from loguru import logger


def job_boundary(func):
    """
    A decorator for scheduled coroutines: logs entry, exit and exceptions.

    Features:
    - Logs the job name before execution and the elapsed time after it
    - Catches exceptions and logs them with traceback instead of re-raising,
      so the scheduler keeps the job and the next tick retries
    - Preserves function metadata; returns None when the job failed
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"job_boundary expects a coroutine function, got {func!r}")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.info(f"Entering {func_name}")
        started = time.monotonic()

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            logger.exception(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

        logger.info(f"Job {func_name} finished in {time.monotonic() - started:.1f}s")
        return result

    return wrapper
