import time
import logging
from typing import Any, Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry_call(
    fn: Callable[..., Any],
    *args,
    attempts: int = 3,
    backoff_sec: float = 1.0,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    give_up_on: Tuple[Type[BaseException], ...] = (),
    label: str = "",
    **kwargs
) -> Any:
    """Call fn with bounded attempts and linear backoff. Re-raises the last error; give_up_on errors are not retried."""
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return fn(*args, **kwargs)
        except retry_on as e:
            if isinstance(e, give_up_on) or attempt == attempts:
                logger.warning(f"{label or fn.__name__} failed after {attempts} attempt(s): {e}")
                raise
            logger.info(f"{label or fn.__name__} attempt {attempt}/{attempts} failed: {e}")
            if backoff_sec:
                time.sleep(backoff_sec * attempt)
