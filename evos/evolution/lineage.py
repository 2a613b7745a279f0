"""Lineage tree — parent pointers from every generation back to the root."""

from __future__ import annotations

from collections import defaultdict
from typing import Iterator

from evos.evolution.mutation import Generation
from evos.exceptions import GenerationNotFoundError, InvalidInputError
from evos.types import GenerationId, GenerationStatus


class Ancestry:
    """Lazy, restartable walk from a generation to the root.

    Each iteration starts over at the given generation. Entries of the
    tree are never replaced, so every walk yields the same sequence.
    """

    def __init__(self, tree: LineageTree, generation_id: GenerationId) -> None:
        self._tree = tree
        self.generation_id = generation_id

    def __iter__(self) -> Iterator[Generation]:
        next_id: GenerationId | None = self.generation_id
        while next_id is not None:
            generation = self._tree.get(next_id)
            yield generation
            next_id = generation.parent_id

    def ids(self) -> list[GenerationId]:
        return [g.id for g in self]


class LineageTree:
    """All submitted generations: adopted ones and rejected branches."""

    def __init__(self, root: Generation) -> None:
        if not root.is_root:
            raise InvalidInputError("The lineage root cannot have a parent")
        self.root_id = root.id
        self._generations: dict[GenerationId, Generation] = {root.id: root}
        self._status: dict[GenerationId, GenerationStatus] = {root.id: GenerationStatus.CURRENT}
        self._children: dict[GenerationId, list[GenerationId]] = defaultdict(list)
        self.current_id = root.id

    def add(self, generation: Generation, status: GenerationStatus) -> None:
        if generation.id in self._generations:
            raise InvalidInputError(f"Generation {generation.id} is already in the lineage")
        if generation.parent_id not in self._generations:
            raise GenerationNotFoundError(f"No generation with id {generation.parent_id}")
        self._generations[generation.id] = generation
        self._status[generation.id] = status
        self._children[generation.parent_id].append(generation.id)

    def advance(self, generation_id: GenerationId) -> None:
        """Make an added generation the current head."""
        self.get(generation_id)
        self._status[self.current_id] = GenerationStatus.SUPERSEDED
        self._status[generation_id] = GenerationStatus.CURRENT
        self.current_id = generation_id

    def get(self, generation_id: GenerationId) -> Generation:
        generation = self._generations.get(generation_id)
        if generation is None:
            raise GenerationNotFoundError(f"No generation with id {generation_id}")
        return generation

    def status(self, generation_id: GenerationId) -> GenerationStatus:
        self.get(generation_id)
        return self._status[generation_id]

    def children(self, generation_id: GenerationId) -> list[Generation]:
        self.get(generation_id)
        return [self._generations[c] for c in self._children.get(generation_id, [])]

    def history(self, generation_id: GenerationId) -> Ancestry:
        self.get(generation_id)
        return Ancestry(self, generation_id)

    def rejected(self) -> list[Generation]:
        return [
            self._generations[g]
            for g, s in self._status.items()
            if s == GenerationStatus.REJECTED
        ]

    def __contains__(self, generation_id: object) -> bool:
        return generation_id in self._generations

    def __len__(self) -> int:
        return len(self._generations)
