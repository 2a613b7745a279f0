"""Knowledge Fragment Store — every accepted utterance, indexed by fact.

The store is the gate fragments pass before they reach any replica.
Out-of-range confidence or a wrong embedding size is rejected here,
so the merge rule downstream only ever compares well-formed values.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from evos.clock import LogicalClock
from evos.events.bus import EventBus
from evos.exceptions import FragmentNotFoundError, InvalidFragmentError
from evos.knowledge.fragment import KnowledgeFragment, check_fragment, supersedes
from evos.types import AgentId, FragmentId, LogicalKey, NodeId

_logger = logging.getLogger(__name__)

FRAGMENT_STORED = "knowledge.fragment_stored"


class FragmentStore:
    """Append-only fragment store with a per-key winner index.

    Usage:
        store = FragmentStore(embedding_dim=8, event_bus=bus, clock=clock)
        frag = store.new_fragment("k1", "water boils at 100C", 0.9, source="a1")
        await store.put(frag)
        store.get("k1")
    """

    def __init__(
        self,
        embedding_dim: int = 8,
        event_bus: EventBus | None = None,
        clock: LogicalClock | None = None,
    ) -> None:
        if embedding_dim <= 0:
            raise ValueError("embedding_dim must be positive")
        self.embedding_dim = embedding_dim
        self._bus = event_bus
        self._clock = clock if clock is not None else LogicalClock()
        self._by_id: dict[FragmentId, KnowledgeFragment] = {}
        self._versions: dict[LogicalKey, list[KnowledgeFragment]] = defaultdict(list)
        self._winners: dict[LogicalKey, KnowledgeFragment] = {}

    def new_fragment(
        self,
        key: LogicalKey,
        content: str,
        confidence: float,
        source: AgentId,
        embedding: list[float] | tuple[float, ...] | None = None,
        fragment_id: FragmentId | None = None,
    ) -> KnowledgeFragment:
        """Build a fragment stamped with the next logical tick (not stored)."""
        extra = {"id": fragment_id} if fragment_id else {}
        return KnowledgeFragment(
            key=key,
            content=content,
            confidence=confidence,
            source=source,
            timestamp=self._clock.tick(),
            embedding=tuple(embedding) if embedding is not None else (0.0,) * self.embedding_dim,
            **extra,
        )

    def validate(self, fragment: KnowledgeFragment) -> None:
        check_fragment(fragment, self.embedding_dim)
        if fragment.timestamp < 0:
            raise InvalidFragmentError(f"Fragment {fragment.id} has a negative timestamp")

    async def put(self, fragment: KnowledgeFragment, node_id: NodeId | None = None) -> bool:
        """Store a fragment and announce it. Returns True if it now wins its key.

        `node_id` names the replica the fragment was submitted to; without
        it the mesh routes the fragment to the source agent's nodes.
        """
        self.validate(fragment)
        if fragment.id in self._by_id:
            if self._by_id[fragment.id] != fragment:
                raise InvalidFragmentError(
                    f"Fragment id {fragment.id} already stored with different content"
                )
            winner = False
        else:
            self._by_id[fragment.id] = fragment
            self._versions[fragment.key].append(fragment)
            winner = supersedes(fragment, self._winners.get(fragment.key))
            if winner:
                self._winners[fragment.key] = fragment

        _logger.info(
            "Stored fragment %s for key '%s' (confidence=%.3f, winner=%s)",
            fragment.id, fragment.key, fragment.confidence, winner,
        )

        if self._bus:
            await self._bus.emit(FRAGMENT_STORED, {
                "fragment": fragment,
                "node_id": node_id,
            }, source="fragment_store", tick=self._clock.now)

        return winner

    def get(self, key: LogicalKey) -> KnowledgeFragment:
        """Highest-confidence fragment for a logical key."""
        fragment = self._winners.get(key)
        if fragment is None:
            raise FragmentNotFoundError(f"No fragment for key '{key}'")
        return fragment

    def get_by_id(self, fragment_id: FragmentId) -> KnowledgeFragment:
        fragment = self._by_id.get(fragment_id)
        if fragment is None:
            raise FragmentNotFoundError(f"No fragment with id {fragment_id}")
        return fragment

    def versions(self, key: LogicalKey) -> list[KnowledgeFragment]:
        """Every accepted fragment for a key, oldest first."""
        return list(self._versions.get(key, []))

    def keys(self) -> list[LogicalKey]:
        return list(self._winners)

    def __len__(self) -> int:
        return len(self._by_id)

    def __repr__(self) -> str:
        return f"FragmentStore(fragments={len(self._by_id)}, keys={len(self._winners)})"
