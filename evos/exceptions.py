"""Custom exception hierarchy for evos.

Four families: invalid input, unknown ids, state conflicts, and policy
violations. All of them are local to the call that raised them.
"""


class EvosError(Exception):
    """Base for all evos errors."""


# ── Invalid input ─────────────────────────────────────────────────────────────


class InvalidInputError(EvosError):
    """Malformed confidence, strength, dimension, or argument."""


class InvalidFragmentError(InvalidInputError):
    """Fragment confidence out of range or embedding has the wrong dimension."""


class InvalidStrengthError(InvalidInputError):
    """Link strength is not in (0, 1]."""


class EmptyParticipantsError(InvalidInputError):
    """A negotiation needs at least one participant."""


# ── Not found ─────────────────────────────────────────────────────────────────


class NotFoundError(EvosError):
    """Unknown key or id."""


class AgentNotFoundError(NotFoundError):
    """No agent with the given ID exists."""


class FragmentNotFoundError(NotFoundError):
    """No fragment stored under the given key or id."""


class NodeNotFoundError(NotFoundError):
    """No mesh node with the given ID exists."""


class UnknownNegotiationError(NotFoundError):
    """No negotiation with the given ID exists."""


class GenerationNotFoundError(NotFoundError):
    """No generation with the given ID exists in the lineage."""


# ── State conflicts ───────────────────────────────────────────────────────────


class StateConflictError(EvosError):
    """The operation conflicts with current state."""


class AgentStateError(StateConflictError):
    """Invalid agent status transition."""


class AgentInUseError(StateConflictError):
    """Agent is still referenced by a mesh node."""


class StaleParentError(StateConflictError):
    """The current generation advanced since the candidate was proposed."""


class AlreadyResolvedError(StateConflictError):
    """The negotiation has already been resolved."""


class NotAParticipantError(StateConflictError):
    """The agent is not a participant of the negotiation."""


# ── Policy ────────────────────────────────────────────────────────────────────


class PolicyViolationError(EvosError):
    """Action rejected by the Sigma gate."""


class PolicyEvaluationError(PolicyViolationError):
    """A scoring policy failed while evaluating a proposal."""
