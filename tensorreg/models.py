# tensorreg/models.py
# --------------------------------------------------------------------------- #
# Dataclasses shared by the registration loop, the cost oracle and the
# analyzer. Kept free of chain I/O so tests can build them directly.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Mapping, Optional, Union
from urllib.parse import urlparse

from tensorreg.config import DEFAULT_CHAIN_ENDPOINT, U16_MAX, U64_MAX
from tensorreg.errors import ConfigError, InvalidEndpoint
from tensorreg.keys import SecretSeed

# bittensor network aliases accepted in place of a URL
NAMED_NETWORKS = frozenset({"finney", "test", "archive", "local", "latent-lite"})


def validate_endpoint(endpoint: str) -> str:
    """Return *endpoint* if it is a ws(s):// URL or a named bittensor network."""
    ep = (endpoint or "").strip()
    if ep in NAMED_NETWORKS:
        return ep
    parsed = urlparse(ep)
    if parsed.scheme not in ("ws", "wss") or not parsed.hostname:
        raise InvalidEndpoint(ep, "expected ws:// or wss:// URL or a named network")
    return ep


# --------------------------------------------------------------------------- #
# Registration request
# --------------------------------------------------------------------------- #

@dataclass(frozen=True)
class RegistrationRequest:
    """
    Immutable parameters for one neuron registration run.

    Attributes:
        coldkey: Seed of the paying/signing key.
        hotkey: Seed of the key being registered.
        netuid: Target subnet (u16).
        max_cost: Inclusive upper bound on the burn cost, in rao (u64).
        endpoint: Chain RPC endpoint.
    """

    coldkey: SecretSeed
    hotkey: SecretSeed
    netuid: int
    max_cost: int
    endpoint: str = DEFAULT_CHAIN_ENDPOINT

    def __post_init__(self) -> None:
        if not 0 <= int(self.netuid) <= U16_MAX:
            raise ConfigError(f"netuid must fit in u16, got {self.netuid}")
        if not 0 <= int(self.max_cost) <= U64_MAX:
            raise ConfigError(f"max_cost must fit in u64, got {self.max_cost}")
        validate_endpoint(self.endpoint)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "RegistrationRequest":
        missing = [k for k in ("coldkey", "hotkey", "netuid", "max_cost") if data.get(k) is None]
        if missing:
            raise ConfigError(f"missing required option(s): {', '.join(missing)}")
        try:
            netuid = int(data["netuid"])
            max_cost = int(data["max_cost"])
        except (TypeError, ValueError) as e:
            raise ConfigError(f"netuid/max_cost must be integers: {e}") from e
        return cls(
            coldkey=SecretSeed(str(data["coldkey"])),
            hotkey=SecretSeed(str(data["hotkey"])),
            netuid=netuid,
            max_cost=max_cost,
            endpoint=str(data.get("chain_endpoint") or DEFAULT_CHAIN_ENDPOINT),
        )


# --------------------------------------------------------------------------- #
# Chain observations
# --------------------------------------------------------------------------- #

@dataclass(slots=True, frozen=True)
class FinalizedHeader:
    number: int
    hash: str


@dataclass(slots=True, frozen=True)
class BurnCost:
    """Burn (recycle) cost for *netuid* as of the finalized block *block_hash*."""

    netuid: int
    value: int
    block_hash: str


# --------------------------------------------------------------------------- #
# Submission outcomes
# --------------------------------------------------------------------------- #

@dataclass(slots=True)
class Finalized:
    tx_hash: str
    block_hash: Optional[str]
    events: List[Any] = field(default_factory=list)
    uid: Optional[int] = None


@dataclass(slots=True)
class SubmitFailed:
    kind: str
    message: str = ""


@dataclass(slots=True)
class InclusionFailed:
    kind: str
    message: str = ""


SubmissionOutcome = Union[Finalized, SubmitFailed, InclusionFailed]


# --------------------------------------------------------------------------- #
# Loop bookkeeping
# --------------------------------------------------------------------------- #

class LoopPhase(Enum):
    AWAITING_HEAD = "awaiting_head"
    CHECKING_COST = "checking_cost"
    SUBMITTING = "submitting"
    AWAITING_FINALIZATION = "awaiting_finalization"
    BACKOFF = "backoff"
    DONE = "done"


@dataclass
class LoopState:
    """Owned by exactly one RegistrationLoop; never shared across tasks."""

    iteration: int = 0
    last_attempt_at: Optional[float] = None
    terminated: bool = False
    submissions: int = 0
    cost_skips: int = 0
    transient_failures: int = 0
    last_block: Optional[int] = None

    def next_iteration(self, block_number: int) -> int:
        self.iteration += 1
        self.last_block = block_number
        return self.iteration

    def terminate(self) -> None:
        self.terminated = True


@dataclass(slots=True)
class RegistrationResult:
    tx_hash: str
    block_hash: Optional[str]
    block_number: Optional[int]
    uid: Optional[int]
    events: List[Any]
    iterations: int
    submissions: int
