"""
Decorators for automatic logging of revision operations.

These decorators enable traceability without cluttering the store and
restore logic.
"""

import functools
import time
from typing import Any, Callable

from .logger import get_revision_logger, log_revision_event


def track_revision_operation(operation_type: str, component: str = "store") -> Callable:
    """
    Decorator to track revision store and restore operations.

    Args:
        operation_type: Type of operation (e.g., "create", "truncate", "reconcile")
        component: Logger component the events are bound to

    Example:
        >>> @track_revision_operation("truncate")
        ... def truncate_revisions(self, session, entity_type, entity_id):
        ...     ...
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            log = get_revision_logger(component)
            operation_id = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log_revision_event(
                    log,
                    event=f"{operation_type}_error",
                    operation_id=operation_id,
                    function=func.__name__,
                    error=str(e),
                    error_type=type(e).__name__,
                    success=False,
                )
                raise

            log_revision_event(
                log,
                event=operation_type,
                operation_id=operation_id,
                function=func.__name__,
                success=True,
            )
            return result

        return wrapper

    return decorator


def performance_monitor(threshold_ms: float = 1000.0) -> Callable:
    """
    Decorator to monitor function performance.

    Logs warning if execution exceeds threshold.

    Args:
        threshold_ms: Warning threshold in milliseconds
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            log = get_revision_logger("system")
            start_time = time.time()

            try:
                result = func(*args, **kwargs)
            except Exception:
                elapsed_ms = (time.time() - start_time) * 1000
                log.debug(
                    f"Function failed: {func.__name__}",
                    function=func.__name__,
                    elapsed_ms=elapsed_ms,
                )
                raise

            elapsed_ms = (time.time() - start_time) * 1000
            if elapsed_ms > threshold_ms:
                log.warning(
                    f"Performance threshold exceeded: {func.__name__}",
                    function=func.__name__,
                    elapsed_ms=elapsed_ms,
                    threshold_ms=threshold_ms,
                )
            else:
                log.debug(
                    f"Function executed: {func.__name__}",
                    function=func.__name__,
                    elapsed_ms=elapsed_ms,
                )
            return result

        return wrapper

    return decorator
