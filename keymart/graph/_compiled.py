"""
Compiled graph - build the nodnod agent once, run it per request.
"""

from __future__ import annotations

from collections.abc import Callable, Coroutine
from dataclasses import dataclass
from typing import Any, cast

from nodnod import EventLoopAgent, Node, Scope, Value


@dataclass(slots=True, frozen=True)
class Compiled[T]:
    """
    Pre-compiled graph for a target node.

    Inputs are injected by their runtime type, so every input handed to a
    run must be of a distinct type.

    Example:
        resolve_line = graph(ResolvedLineNode)
        line = await resolve_line(request, promotions)
    """

    _target: type[T]
    _agent: EventLoopAgent

    @property
    def target(self) -> type[T]:
        return self._target

    async def __call__(self, *inputs: object) -> T:
        return await self.run_with(tuple((cast(type[Any], type(v)), v) for v in inputs))

    async def run_with(self, injections: tuple[tuple[type[Any], Any], ...]) -> T:
        """Run with explicit (type, value) pairs, for Protocol-typed inputs."""
        async with Scope(detail=f"graph:{self._target.__name__}") as scope:
            for typ, value in injections:
                scope.push(Value(typ, value))

            run_method = cast(
                Callable[[Scope, dict[type[Any], Scope]], Coroutine[Any, Any, None]],
                getattr(self._agent, "run"),
            )
            await run_method(scope, {})

            produced = scope.get(self._target)
            if produced is None:
                raise LookupError(f"{self._target.__name__} was not produced")
            return cast(T, produced.value)


def graph[T](target: type[T]) -> Compiled[T]:
    """Pre-compile the graph that produces ``target``; dependencies are discovered."""
    all_nodes: set[type[Node[Any, Any]]] = {cast(type[Node[Any, Any]], target)}
    return Compiled(_target=target, _agent=EventLoopAgent.build(all_nodes))


__all__ = ("Compiled", "graph")
