"""
Best-effort telemetry calls.

Progress, checkpoint and error writes must never abort the extraction they
describe. Every such write goes through report(), which runs the call,
logs any failure and hands back a default instead of raising.

Usage:
    report("save checkpoint", store.insert_checkpoint, vault_id, phase, data)
"""

import logging
from typing import Any, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def report(label: str, fn: Callable[..., T], *args: Any,
           default: Optional[T] = None, **kwargs: Any) -> Optional[T]:
    """
    Call fn(*args, **kwargs) without letting it raise.

    Args:
        label: Short name of the operation, used in the log line
        fn: The telemetry write to run
        default: Returned when fn raises

    Returns:
        fn's result, or default on failure
    """
    try:
        return fn(*args, **kwargs)
    except Exception as e:
        logger.warning(f"Telemetry call '{label}' failed: {e}")
        return default
