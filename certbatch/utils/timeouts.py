"""
Caller-enforced timeouts for blocking calls (rendering, mail transport).

The call runs on a dedicated daemon thread; when the deadline passes the
caller gets a timeout error immediately and the thread is abandoned. Daemon
threads are not joined at interpreter exit, so a stuck render can neither
hold up the batch loop nor keep the process alive afterwards.
"""

from __future__ import annotations

import threading
from typing import Any, Callable, Dict, Optional, Type, TypeVar

T = TypeVar("T")


def call_with_timeout(
    func: Callable[..., T],
    *args: Any,
    timeout: Optional[float],
    error_cls: Type[Exception] = TimeoutError,
    label: str = "call",
    **kwargs: Any,
) -> T:
    """
    Run `func(*args, **kwargs)` and wait at most `timeout` seconds.

    Parameters
    ----------
    timeout : float | None
        Seconds to wait. None or a non-positive value runs the call inline.
    error_cls : type
        Exception raised on timeout, constructed with a single message.
    label : str
        Short description used in the timeout message.

    Raises
    ------
    error_cls
        If the call did not finish in time. Exceptions raised by `func`
        propagate unchanged.
    """
    if timeout is None or timeout <= 0:
        return func(*args, **kwargs)

    outcome: Dict[str, Any] = {}

    def _target() -> None:
        try:
            outcome["value"] = func(*args, **kwargs)
        except BaseException as exc:  # re-raised on the calling thread
            outcome["error"] = exc

    worker = threading.Thread(target=_target, name=f"certbatch-timeout[{label}]", daemon=True)
    worker.start()
    worker.join(timeout)
    if worker.is_alive():
        raise error_cls(f"{label} timed out after {timeout:g}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


__all__ = ["call_with_timeout"]
