"""Core types shared across all evos subsystems."""

from __future__ import annotations

import uuid
from enum import Enum
from typing import TypeAlias

# ── ID Types ──────────────────────────────────────────────────────────────────

AgentId: TypeAlias = str
NodeId: TypeAlias = str
FragmentId: TypeAlias = str
LogicalKey: TypeAlias = str
GenerationId: TypeAlias = str
NegotiationId: TypeAlias = str


def new_id() -> str:
    return uuid.uuid4().hex[:12]


def clamp01(value: float) -> float:
    return max(0.0, min(1.0, float(value)))


def in_unit_interval(value: float) -> bool:
    return 0.0 <= value <= 1.0


# ── Agents ───────────────────────────────────────────────────────────────────


class AgentType(str, Enum):
    DAEDALUS = "daedalus"
    ALICE = "alice"
    EQUINOX = "equinox"
    CUSTOM = "custom"


class AgentStatus(str, Enum):
    ACTIVE = "active"
    DORMANT = "dormant"
    EVOLVING = "evolving"
    ERROR = "error"


# ── Sigma gate ───────────────────────────────────────────────────────────────


class Outcome(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    MODIFIED = "modified"


class SubjectKind(str, Enum):
    AGENT = "agent"
    MUTATION = "mutation"
    NEGOTIATION = "negotiation"
    ACTION = "action"


class Vote(str, Enum):
    PENDING = "pending"
    ACCEPT = "accept"
    REJECT = "reject"


class ConsensusState(str, Enum):
    PENDING = "pending"
    REACHED = "consensusReached"
    FAILED = "consensusFailed"


# ── Evolution ────────────────────────────────────────────────────────────────


class GenerationStatus(str, Enum):
    CANDIDATE = "candidate"
    CURRENT = "current"
    SUPERSEDED = "superseded"
    REJECTED = "rejected"
