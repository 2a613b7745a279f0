"""Knowledge fragments and the rule that decides between them.

A fragment is one utterance of a fact. Several fragments can speak to
the same fact (same logical key); the winner for a key is always the
one with the highest confidence, and on an exact tie the one with the
lexicographically smaller id. That rule is a total order, so picking
the maximum is commutative, associative and idempotent.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from evos.exceptions import InvalidFragmentError
from evos.types import AgentId, FragmentId, LogicalKey, in_unit_interval, new_id


class KnowledgeFragment(BaseModel):
    """An immutable, confidence-scored unit of knowledge.

    Confidence and embedding are checked by `check_fragment`, not here,
    so a malformed fragment can be built and then rejected with a domain
    error wherever it tries to enter a store or replica.
    """

    id: FragmentId = Field(default_factory=new_id)
    key: LogicalKey
    content: str = ""
    confidence: float
    source: AgentId
    timestamp: int = 0  # logical tick
    embedding: tuple[float, ...] = ()

    model_config = {"frozen": True}


def check_fragment(fragment: KnowledgeFragment, embedding_dim: int | None = None) -> None:
    """Raise InvalidFragmentError unless the fragment can take part in a merge.

    Confidence must lie in [0, 1] (NaN never does). The embedding size is
    only checked when `embedding_dim` is given.
    """
    if not in_unit_interval(fragment.confidence):
        raise InvalidFragmentError(
            f"Fragment {fragment.id} confidence {fragment.confidence} not in [0, 1]"
        )
    if embedding_dim is not None and len(fragment.embedding) != embedding_dim:
        raise InvalidFragmentError(
            f"Fragment {fragment.id} embedding has {len(fragment.embedding)} "
            f"dimensions, expected {embedding_dim}"
        )


def prefer(a: KnowledgeFragment, b: KnowledgeFragment) -> KnowledgeFragment:
    """Return the winning fragment of two with the same logical key."""
    if a.confidence != b.confidence:
        return a if a.confidence > b.confidence else b
    return a if a.id <= b.id else b


def supersedes(candidate: KnowledgeFragment, incumbent: KnowledgeFragment | None) -> bool:
    """True if `candidate` would replace `incumbent` for their key."""
    if incumbent is None:
        return True
    if candidate.id == incumbent.id:
        return False
    return prefer(candidate, incumbent) is candidate
