# hedge_engine/utils/deadline.py

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import Any, Callable, Optional

from ..domain.errors import AppError, CollaboratorUnavailable
from .logging import get_logger

log = get_logger(__name__)

_pool = ThreadPoolExecutor(max_workers=32, thread_name_prefix="collaborator")


def call_with_deadline(
    name: str,
    fn: Callable[..., Any],
    *args,
    timeout: float,
    on_late_result: Optional[Callable[[Any], None]] = None,
) -> Any:
    """
    Run a collaborator call and wait at most `timeout` seconds for it.

    Typed errors (AppError) raised by the collaborator pass through unchanged;
    a timeout or any other exception becomes CollaboratorUnavailable. If the
    call finishes after we gave up, `on_late_result` receives its result so a
    side effect can be undone (a late reservation) or recorded (a late release).
    """
    future = _pool.submit(fn, *args)
    try:
        return future.result(timeout=timeout)
    except FutureTimeout:
        if not future.cancel() and on_late_result is not None:
            future.add_done_callback(lambda f: _handle_late(name, f, on_late_result))
        log.warning(f"{name} timed out after {timeout}s")
        raise CollaboratorUnavailable(f"{name} did not respond within {timeout}s")
    except AppError:
        raise
    except Exception as e:
        log.warning(f"{name} failed: {e}")
        raise CollaboratorUnavailable(f"{name} failed: {e}") from e


def _handle_late(name: str, f: Future, handler: Callable[[Any], None]) -> None:
    if f.cancelled() or f.exception() is not None:
        return
    log.warning(f"{name} completed after its deadline")
    try:
        handler(f.result())
    except Exception:
        log.exception(f"late-result handler for {name} failed")
