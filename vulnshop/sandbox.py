"""Disposable execution contexts with a wall-clock ceiling.

Untrusted documents are parsed in a fresh child process. The parent
waits on a pipe for at most the configured timeout and terminates the
child if nothing arrives, so runaway entity or alias expansion always
returns control to the request.

Example:
    >>> from vulnshop.sandbox import run_sandboxed, SandboxTimeout
    >>> try:
    ...     run_sandboxed(time.sleep, 10, timeout=0.5)
    ... except SandboxTimeout:
    ...     print("timed out")
    timed out

Classes:
    SandboxError: The sandboxed call failed; carries the original message.
    SandboxTimeout: The call exceeded its deadline and was terminated.
    SandboxOverflow: The call ran out of memory or hit a length limit.
"""

import logging
import multiprocessing
from typing import Any, Callable, Optional

from vulnshop.config import SANDBOX_TIMEOUT_MS


logger = logging.getLogger(__name__)

# Seconds granted to a terminated child before it is killed outright
_TERMINATE_GRACE = 1.0


# =============================================================================
# EXCEPTION CLASSES
# =============================================================================

class SandboxError(Exception):
    """Raised when the sandboxed call fails."""

    def __init__(self, message: str, error_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type


class SandboxTimeout(SandboxError):
    """Raised when the sandboxed call exceeds its deadline."""
    pass


class SandboxOverflow(SandboxError):
    """Raised when the sandboxed call exhausts memory or string length."""
    pass


# =============================================================================
# CHILD PROCESS
# =============================================================================

def _sandbox_main(conn: Any, func: Callable[..., Any], args: tuple) -> None:
    """Run func(*args) and report the outcome through the pipe."""
    try:
        try:
            outcome = ("ok", func(*args))
        except (MemoryError, OverflowError) as e:
            outcome = ("overflow", type(e).__name__, str(e) or "Invalid string length")
        except Exception as e:
            outcome = ("error", type(e).__name__, str(e))

        try:
            conn.send(outcome)
        except (MemoryError, OverflowError) as e:
            conn.send(("overflow", type(e).__name__, str(e) or "Invalid string length"))
    finally:
        conn.close()


# =============================================================================
# PUBLIC API
# =============================================================================

def run_sandboxed(
    func: Callable[..., Any],
    *args: Any,
    timeout: Optional[float] = None
) -> Any:
    """Call func(*args) in a fresh process and return its result.

    func must be importable at module level and its result picklable.

    Args:
        func: The callable to run.
        *args: Positional arguments for func.
        timeout: Ceiling in seconds. Defaults to SANDBOX_TIMEOUT_MS.

    Returns:
        Whatever func returned.

    Raises:
        SandboxTimeout: If func did not finish within the timeout.
        SandboxOverflow: If func raised MemoryError or OverflowError.
        SandboxError: If func raised anything else or the child died.
    """
    if timeout is None:
        timeout = SANDBOX_TIMEOUT_MS / 1000.0

    ctx = multiprocessing.get_context()
    reader, writer = ctx.Pipe(duplex=False)
    process = ctx.Process(target=_sandbox_main, args=(writer, func, args), daemon=True)
    process.start()
    # Only the child holds the write end now, so its exit surfaces as EOF
    writer.close()

    try:
        if not reader.poll(timeout):
            logger.warning(
                f"Sandboxed {getattr(func, '__name__', func)} exceeded {timeout:.2f}s, terminating"
            )
            raise SandboxTimeout("Script execution timed out.")

        try:
            outcome = reader.recv()
        except EOFError:
            process.join(_TERMINATE_GRACE)
            raise SandboxError(
                f"Sandbox exited unexpectedly (exit code {process.exitcode})"
            ) from None
    finally:
        reader.close()
        _dispose(process)

    status = outcome[0]
    if status == "ok":
        return outcome[1]
    if status == "overflow":
        raise SandboxOverflow(outcome[2], error_type=outcome[1])
    raise SandboxError(outcome[2], error_type=outcome[1])


def _dispose(process: multiprocessing.process.BaseProcess) -> None:
    """Make sure the child is gone before returning."""
    if process.is_alive():
        process.join(0.1)
    if process.is_alive():
        process.terminate()
        process.join(_TERMINATE_GRACE)
    if process.is_alive():
        process.kill()
        process.join()
