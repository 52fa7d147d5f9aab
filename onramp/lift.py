"""
Lift — helpers for lifting values and outbound calls into LazyCoroResult.

Re-exports the combinators.lift primitives used across onramp and adds
a bounded variant for network calls.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult, Result, Error

# Re-export from combinators.lift
from combinators.lift import catching_async


# ═══════════════════════════════════════════════════════════════════════════════
# onramp-specific helpers
# ═══════════════════════════════════════════════════════════════════════════════

def from_result[T, E](result: Result[T, E]) -> LazyCoroResult[T, E]:
    """Lift a Result into LazyCoroResult."""
    async def _run() -> Result[T, E]:
        return result
    return LazyCoroResult(_run)


def bounded[T, E](
    call: Callable[[], Awaitable[Result[T, E]]],
    *,
    seconds: float,
    on_timeout: Callable[[], E],
    on_error: Callable[[Exception], E],
) -> LazyCoroResult[T, E]:
    """
    Run a Result-returning outbound call under a hard deadline.

    A deadline hit becomes ``Error(on_timeout())``; anything the collaborator
    raises instead of returning becomes ``Error(on_error(exc))``. The caller
    always gets a Result back.

    Example:
        transfer = bounded(
            lambda: client.transfer(dest, amount),
            seconds=20,
            on_timeout=lambda: TransferError(TransferErrorKind.TIMEOUT, "..."),
            on_error=lambda e: TransferError(TransferErrorKind.UPSTREAM_REJECTED, str(e)),
        )
        result = await transfer
    """
    async def _run() -> Result[T, E]:
        try:
            async with asyncio.timeout(seconds):
                return await call()
        except TimeoutError:
            return Error(on_timeout())
        except Exception as e:
            return Error(on_error(e))
    return LazyCoroResult(_run)


__all__ = (
    # From combinators.lift
    "catching_async",
    # onramp additions
    "from_result",
    "bounded",
)
