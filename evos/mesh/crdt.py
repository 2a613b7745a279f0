"""KnowledgeSet — a grow-only map CRDT of fragments keyed by logical key.

Each key holds a max-register: the fragment that wins under
`evos.knowledge.fragment.prefer`. Merging two sets takes the per-key
winner, so replicas that have seen the same fragments agree no matter
in which order, how often, or through which paths those fragments
arrived.
"""

from __future__ import annotations

from typing import Iterable, Iterator, Mapping

from evos.knowledge.fragment import KnowledgeFragment, check_fragment, supersedes
from evos.types import LogicalKey


class KnowledgeSet:
    """Replica state of one echo node."""

    def __init__(self, fragments: Iterable[KnowledgeFragment] = ()) -> None:
        self._entries: dict[LogicalKey, KnowledgeFragment] = {}
        for fragment in fragments:
            self.offer(fragment)

    def offer(self, fragment: KnowledgeFragment) -> bool:
        """Merge a single fragment. Returns True if the key changed.

        Raises InvalidFragmentError for a confidence outside [0, 1].
        """
        check_fragment(fragment)
        if supersedes(fragment, self._entries.get(fragment.key)):
            self._entries[fragment.key] = fragment
            return True
        return False

    def merge(self, other: KnowledgeSet | Mapping[LogicalKey, KnowledgeFragment]) -> int:
        """Merge another replica in place. Returns how many keys changed."""
        entries = other.entries() if isinstance(other, KnowledgeSet) else other
        return sum(1 for fragment in entries.values() if self.offer(fragment))

    def entries(self) -> dict[LogicalKey, KnowledgeFragment]:
        """A copy of the key → fragment map, safe to hand to other replicas."""
        return dict(self._entries)

    def get(self, key: LogicalKey) -> KnowledgeFragment | None:
        return self._entries.get(key)

    def keys(self) -> list[LogicalKey]:
        return list(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[KnowledgeFragment]:
        return iter(list(self._entries.values()))

    def __len__(self) -> int:
        return len(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KnowledgeSet):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"KnowledgeSet(keys={len(self._entries)})"


def merged(*replicas: KnowledgeSet) -> KnowledgeSet:
    """Join of several replicas, leaving the inputs untouched."""
    result = KnowledgeSet()
    for replica in replicas:
        result.merge(replica)
    return result
