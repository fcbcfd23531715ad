"""
Graph - declarative computation graphs over nodnod.

    from keymart import graph as G

    @G.node
    class FlashDealNode:
        @classmethod
        async def __compose__(cls, line: LineNode) -> "FlashDealNode": ...

    resolve = G.graph(PromotionOutcome)
    outcome = await resolve(request, sources)
"""

from nodnod import scalar_node as node

from keymart.graph._compiled import Compiled, graph

__all__ = ("node", "graph", "Compiled")
