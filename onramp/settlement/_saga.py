"""
Saga — a step that can be undone, then a step that may fail.

    capture = step(from_result(Ok(capture_ref)), compensate=refund)
    result = await run_chain(capture.then(lambda ref: step(transfer)))

On failure of a later step, recorded compensators run in reverse, each
exactly once. Unlike a fire-and-forget rollback, every compensation is
recorded with its own outcome: a refund that did not go through must be
visible to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass
from collections.abc import Callable, Awaitable

from kungfu import LazyCoroResult, Result, Ok, Error
from loguru import logger

# ═══════════════════════════════════════════════════════════════════════════════
# Step
# ═══════════════════════════════════════════════════════════════════════════════

type Compensator[T] = Callable[[T], Awaitable[object]]
"""Undo action. Receives the step's value; signals failure by raising."""


@dataclass(frozen=True, slots=True)
class SagaStep[T, E]:
    """
    A single saga step: action + compensator.

    When action succeeds, compensator is recorded.
    """

    action: LazyCoroResult[T, E]
    compensate: Compensator[T] | None = None

    def then[U, E2](self, f: Callable[[T], SagaStep[U, E2]]) -> Then[T, U, E, E2]:
        """Chain another step after this one."""
        return Then(self, f)


@dataclass(frozen=True, slots=True)
class Then[T, U, E, E2]:
    """Sequential composition."""

    inner: SagaStep[T, E]
    f: Callable[[T], SagaStep[U, E2]]


def step[T, E](
    action: LazyCoroResult[T, E],
    compensate: Compensator[T] | None = None,
) -> SagaStep[T, E]:
    """Create a compensated saga step."""
    return SagaStep(action=action, compensate=compensate)


# ═══════════════════════════════════════════════════════════════════════════════
# Results
# ═══════════════════════════════════════════════════════════════════════════════


@dataclass(frozen=True, slots=True)
class Compensation:
    """One compensator run."""

    value: object
    outcome: object | None = None
    error: Exception | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class SagaResult[T]:
    value: T
    steps_executed: int


@dataclass(frozen=True, slots=True)
class SagaError[E]:
    """Saga failure with the compensations that ran."""

    error: E
    step_failed: int
    compensations: tuple[Compensation, ...]


# ═══════════════════════════════════════════════════════════════════════════════
# Execution
# ═══════════════════════════════════════════════════════════════════════════════

type Recorded = tuple[object, Compensator[object]]


async def run_step[T, E](step: SagaStep[T, E], recorded: list[Recorded]) -> Result[T, E]:
    """Execute single step, recording compensator on success."""
    match await step.action:
        case Ok(value):
            if step.compensate is not None:
                recorded.append((value, step.compensate))
            return Ok(value)
        case Error(e):
            return Error(e)


async def run_compensators(recorded: list[Recorded]) -> tuple[Compensation, ...]:
    """Run compensators in reverse, once each."""
    done: list[Compensation] = []
    for value, compensate in reversed(recorded):
        try:
            outcome = await compensate(value)
        except Exception as e:
            logger.error(f"SAGA: compensation for {value!r} failed: {e}")
            done.append(Compensation(value=value, error=e))
        else:
            done.append(Compensation(value=value, outcome=outcome))
    return tuple(done)


async def run_chain[T, U, E, E2](
    chain: Then[T, U, E, E2],
) -> Result[SagaResult[U], SagaError[E | E2]]:
    """
    Execute chained saga steps.

    On any failure, compensators recorded so far run in reverse.
    """
    recorded: list[Recorded] = []

    match await run_step(chain.inner, recorded):
        case Error(e):
            return Error(SagaError(
                error=e, step_failed=1, compensations=await run_compensators(recorded)
            ))
        case Ok(value):
            pass

    match await run_step(chain.f(value), recorded):
        case Ok(final):
            return Ok(SagaResult(value=final, steps_executed=2))
        case Error(e):
            return Error(SagaError(
                error=e, step_failed=2, compensations=await run_compensators(recorded)
            ))


__all__ = (
    "Compensator",
    "SagaStep",
    "Then",
    "step",
    "Compensation",
    "SagaResult",
    "SagaError",
    "run_chain",
)
