from __future__ import annotations

import logging
import time
from typing import Callable, Tuple, Type, TypeVar


T = TypeVar("T")

logger = logging.getLogger("mercado_obras")


def call_with_retry(
    operation: Callable[[], T],
    *,
    attempts: int = 2,
    backoff_ms: int = 200,
    retry_on: Tuple[Type[BaseException], ...] = (Exception,),
    label: str = "operation",
    sleep_fn: Callable[[float], None] = time.sleep,
) -> T:
    """Runs ``operation`` up to ``attempts`` times, sleeping ``backoff_ms`` between tries.

    The last failure is re-raised; callers on best-effort paths decide what to do with it.
    """
    total = max(1, int(attempts))
    for attempt in range(total):
        try:
            return operation()
        except retry_on as exc:
            if attempt >= total - 1:
                raise
            logger.warning(
                "retrying_after_failure",
                extra={"operation": label, "attempt": attempt + 1, "error": str(exc)},
            )
            sleep_fn(max(0, int(backoff_ms)) / 1000)
    raise RuntimeError(f"{label} sem tentativas.")
