"""EchoNode — one agent-owned replica of the shared knowledge set."""

from __future__ import annotations

import asyncio

from pydantic import BaseModel

from evos.knowledge.fragment import KnowledgeFragment
from evos.mesh.crdt import KnowledgeSet
from evos.types import AgentId, LogicalKey, NodeId


class EchoNodeView(BaseModel):
    """Read-only picture of a node for snapshots."""

    id: NodeId
    agent_id: AgentId
    consensus_weight: float
    last_sync: int
    health: float
    knowledge: dict[LogicalKey, KnowledgeFragment]

    model_config = {"frozen": True}


class EchoNode:
    """A mesh replica. Writes to `knowledge` go through `lock`."""

    def __init__(
        self,
        node_id: NodeId,
        agent_id: AgentId,
        consensus_weight: float = 1.0,
    ) -> None:
        self.id = node_id
        self.agent_id = agent_id
        self.consensus_weight = consensus_weight
        self.knowledge = KnowledgeSet()
        self.last_sync: int = 0
        self.health: float = 1.0
        self.lock = asyncio.Lock()

    def view(self) -> EchoNodeView:
        return EchoNodeView(
            id=self.id,
            agent_id=self.agent_id,
            consensus_weight=self.consensus_weight,
            last_sync=self.last_sync,
            health=self.health,
            knowledge=self.knowledge.entries(),
        )

    def __repr__(self) -> str:
        return f"EchoNode(id={self.id!r}, agent={self.agent_id!r}, keys={len(self.knowledge)})"
