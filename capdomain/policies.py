"""Policy definitions for capability batch execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from capdomain.errors import ConfigError
from capdomain.schemas import CapabilityKind


class ConcurrencyMode(str, Enum):
    """Concurrency modes for batch execution."""

    PARALLEL = "parallel"
    SEQUENTIAL = "sequential"


class PolicyId(str, Enum):
    """Available execution policies."""

    DEFAULT = "default"
    PARALLEL = "parallel"
    NO_CODE = "no-code"


@dataclass
class Policy:
    """Execution policy definition."""

    policy_id: PolicyId
    description: str
    concurrency: ConcurrencyMode
    max_concurrent_tasks: int
    allowed_kinds: list[CapabilityKind] = field(
        default_factory=lambda: list(CapabilityKind)
    )


# Policy definitions
POLICIES: dict[PolicyId, Policy] = {
    PolicyId.DEFAULT: Policy(
        policy_id=PolicyId.DEFAULT,
        description="Items run one at a time in input order",
        concurrency=ConcurrencyMode.SEQUENTIAL,
        max_concurrent_tasks=1,
    ),
    PolicyId.PARALLEL: Policy(
        policy_id=PolicyId.PARALLEL,
        description="Items run on a bounded worker pool, results keep input order",
        concurrency=ConcurrencyMode.PARALLEL,
        max_concurrent_tasks=4,
    ),
    PolicyId.NO_CODE: Policy(
        policy_id=PolicyId.NO_CODE,
        description="Sequential execution with code execution disabled",
        concurrency=ConcurrencyMode.SEQUENTIAL,
        max_concurrent_tasks=1,
        allowed_kinds=[CapabilityKind.SKILL, CapabilityKind.TOOL],
    ),
}


def get_policy(policy_id: PolicyId | str) -> Policy:
    """Get policy by ID.

    Raises:
        ConfigError: If the id names no known policy
    """
    try:
        return POLICIES[PolicyId(policy_id)]
    except ValueError as e:
        known = ", ".join(p.value for p in PolicyId)
        raise ConfigError(f"Unknown policy '{policy_id}' (known: {known})") from e


def is_kind_allowed(policy_id: PolicyId | str, kind: CapabilityKind) -> bool:
    """Check if a capability kind may run under the given policy."""
    return kind in get_policy(policy_id).allowed_kinds


def get_concurrency_mode(policy_id: PolicyId | str) -> ConcurrencyMode:
    """Get concurrency mode for a policy."""
    return get_policy(policy_id).concurrency


def get_max_concurrent_tasks(policy_id: PolicyId | str) -> int:
    """Get maximum concurrent tasks for a policy."""
    return get_policy(policy_id).max_concurrent_tasks
