import functools
import inspect

from loguru import logger


def logged_job(func):
    """
    Decorator for scheduled coroutine jobs: logs entry, exit, and exceptions.

    Features:
    - Logs the job name and bound parameters before execution
    - Logs and swallows exceptions so the scheduler keeps the job alive
    - Returns the job's result, or None if it failed
    """

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__

        sig = inspect.signature(func)
        bound_args = sig.bind(*args, **kwargs)
        bound_args.apply_defaults()
        params = {k: v for k, v in bound_args.arguments.items() if k != "self"}

        logger.info(f"Running job {func_name} with params: {params}")

        try:
            result = await func(*args, **kwargs)
            logger.info(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.error(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    return wrapper
