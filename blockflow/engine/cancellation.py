"""
Cancellation Controller and Tokens.

Cancellation is cooperative: the controller sets a shared token, node
tokens derived from it fire as well, and anything awaiting through a token
(network calls, ``sleep``) aborts with a typed node error. Nothing here
forcibly kills a node behavior.
"""

from typing import Any, Awaitable, List, Optional
from enum import Enum
import asyncio
import logging

from blockflow.engine.errors import (
    NodeCancelledError,
    NodeExecutionError,
    NodeTimeoutError,
)


logger = logging.getLogger(__name__)


class CancellationReason(str, Enum):
    """Why a token fired."""
    USER = "user"
    FAIL_FAST = "fail_fast"
    RUN_TIMEOUT = "run_timeout"
    NODE_TIMEOUT = "node_timeout"


class CancellationToken:
    """
    A one-shot cancellation signal.

    Child tokens fire when their parent fires, and may additionally carry
    their own deadline. Cancelling a child never affects its parent.
    """

    def __init__(self, parent: Optional["CancellationToken"] = None):
        self._event = asyncio.Event()
        self._reason: Optional[CancellationReason] = None
        self._children: List["CancellationToken"] = []
        self._parent = parent
        self._timer: Optional[asyncio.TimerHandle] = None

        if parent is not None:
            parent._children.append(self)
            if parent.cancelled:
                self.cancel(parent.reason)

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> Optional[CancellationReason]:
        return self._reason

    def cancel(self, reason: CancellationReason = CancellationReason.USER) -> bool:
        """Fire the token. Returns False if it had already fired."""
        if self._reason is not None:
            return False
        self._reason = reason
        self._event.set()
        self._clear_timer()
        for child in list(self._children):
            child.cancel(reason)
        return True

    def cancel_after(self, delay: float, reason: CancellationReason) -> None:
        """Fire the token after ``delay`` seconds unless it fires earlier."""
        self._clear_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel, reason)

    def child(self, timeout: Optional[float] = None) -> "CancellationToken":
        """Derive a token that also fires after ``timeout`` seconds."""
        token = CancellationToken(parent=self)
        if timeout is not None and not token.cancelled:
            token.cancel_after(timeout, CancellationReason.NODE_TIMEOUT)
        return token

    def dispose(self) -> None:
        """Stop the deadline timer and detach from the parent."""
        self._clear_timer()
        if self._parent is not None and self in self._parent._children:
            self._parent._children.remove(self)

    def _clear_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    # ------------------------------------------------------------
    # Awaiting through the token
    # ------------------------------------------------------------

    async def wait(self) -> None:
        await self._event.wait()

    def error(self, message: str = "Execution cancelled") -> NodeExecutionError:
        """The node error matching this token's reason."""
        if self._reason == CancellationReason.NODE_TIMEOUT:
            return NodeTimeoutError(f"{message}: node timed out")
        return NodeCancelledError(f"{message} ({self._reason.value})" if self._reason else message)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self.error()

    async def guard(
        self,
        awaitable: Awaitable[Any],
        timeout: Optional[float] = None,
        operation: str = "Operation",
    ) -> Any:
        """
        Await ``awaitable`` unless the token fires or ``timeout`` elapses.

        Raises:
            NodeCancelledError: The token fired for a run-level reason
            NodeTimeoutError: ``timeout`` elapsed, or the node deadline fired
        """
        task = asyncio.ensure_future(awaitable)
        if self.cancelled:
            await _discard(task)
            raise self.error(f"{operation} cancelled")

        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await _discard(task)
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        await _discard(task)
        if self.cancelled:
            raise self.error(f"{operation} cancelled")
        raise NodeTimeoutError(f"{operation} timed out after {timeout}s")

    async def sleep(self, seconds: float) -> None:
        """Sleep that wakes up with an error when the token fires."""
        await self.guard(asyncio.sleep(seconds), operation="Sleep")


async def _discard(task: "asyncio.Future") -> None:
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)


class CancellationController:
    """
    Coordinates stop and timeout for one run.

    ``cancel()`` is the external stop; the optional ``run_timeout`` is an
    internal deadline. Both fire the run token that every node token
    derives from.
    """

    def __init__(self, run_timeout: Optional[float] = None):
        self.token = CancellationToken()
        self.run_timeout = run_timeout

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    @property
    def reason(self) -> Optional[CancellationReason]:
        return self.token.reason

    def start(self) -> None:
        """Arm the run deadline; must be called from the running loop."""
        if self.run_timeout is not None:
            self.token.cancel_after(self.run_timeout, CancellationReason.RUN_TIMEOUT)

    def cancel(self, reason: CancellationReason = CancellationReason.USER) -> bool:
        fired = self.token.cancel(reason)
        if fired:
            logger.info(f"Run cancellation requested ({reason.value})")
        return fired

    def node_token(self, timeout: Optional[float] = None) -> CancellationToken:
        return self.token.child(timeout)

    def close(self) -> None:
        self.token.dispose()
