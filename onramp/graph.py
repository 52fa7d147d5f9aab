"""
Graph — thin runner over nodnod.

    from onramp import graph as G

    @G.node
    class LookupNode:
        @classmethod
        async def __compose__(cls, spec: SettlementSpec) -> "LookupNode":
            ...

    final = await G.compose(FinalNode, spec)

Dependencies are discovered from the target's ``__compose__`` signature;
inputs are injected by their runtime type.
"""

from __future__ import annotations

from typing import Any, cast
from collections.abc import Callable, Coroutine

from nodnod import Scope, Value, EventLoopAgent, Node
from nodnod import scalar_node as node


async def compose[T](target: type[T], *inputs: object) -> T:
    """
    Build the graph rooted at target, inject inputs, return the target node.

    Raises KeyError if the target could not be composed (every route
    rejected its inputs).
    """
    agent = EventLoopAgent.build({cast(type[Node[Any, Any]], target)})

    async with Scope(detail="compose") as scope:
        for value in inputs:
            scope.push(Value(cast(type[Any], type(value)), value))

        run_method = cast(
            Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
            getattr(agent, "run"),
        )
        await run_method(scope, {})

        found = scope.get(target)
        if found is None:
            raise KeyError(f"{target.__name__} not composed")
        return cast(T, found.value)


__all__ = ("node", "compose")
