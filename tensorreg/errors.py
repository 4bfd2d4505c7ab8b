# tensorreg/errors.py
# --------------------------------------------------------------------------- #
# Exception taxonomy for the registration tooling.
#   FatalError      → reported, the process exits nonzero
#   TransientError  → logged, the loop backs off and retries
# Estimator errors and the cost gate sit outside both branches; the caller
# decides what they mean.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from typing import Optional


class TensorRegError(Exception):
    """Base class for every error raised by tensorreg."""


# ── fatal ───────────────────────────────────────────────────────────────────

class FatalError(TensorRegError):
    """Aborts the registration loop."""


class InvalidKey(FatalError):
    def __init__(self, role: str, reason: str = ""):
        self.role = role
        self.reason = reason
        msg = f"Invalid {role}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class InvalidEndpoint(FatalError):
    def __init__(self, endpoint: str, reason: str = ""):
        self.endpoint = endpoint
        self.reason = reason
        msg = f"Invalid chain endpoint {endpoint!r}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class UnknownNetuid(FatalError):
    def __init__(self, netuid: int):
        self.netuid = netuid
        super().__init__(f"Subnet netuid={netuid} does not exist")


class StreamClosed(FatalError):
    def __init__(self, reason: str = "finalized head subscription ended"):
        super().__init__(reason)


class ConfigError(FatalError):
    """Configuration could not be loaded or validated."""


# ── transient ───────────────────────────────────────────────────────────────

class TransientError(TensorRegError):
    """Logged and retried after back-off."""


class CostUnavailable(TransientError):
    def __init__(self, netuid: int, block_hash: Optional[str] = None):
        self.netuid = netuid
        self.block_hash = block_hash
        super().__init__(f"Burn value not found for netuid={netuid}")


class SubmitError(TransientError):
    """The extrinsic never made it into the pool (transport, nonce, pool rejection)."""

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind}: {message}" if message else kind)


class InclusionError(TransientError):
    """The extrinsic was dropped, invalidated, or its dispatch failed."""

    def __init__(self, kind: str, message: str = ""):
        self.kind = kind
        self.message = message
        super().__init__(f"{kind}: {message}" if message else kind)


# ── estimator ───────────────────────────────────────────────────────────────

class BlockHeaderNotFound(TensorRegError):
    def __init__(self, block_hash: Optional[str] = None):
        self.block_hash = block_hash
        super().__init__(
            "Block header not found" + (f" for {block_hash}" if block_hash else "")
        )


class ExceededMaxWaitTime(TensorRegError):
    def __init__(self, waited: float):
        self.waited = waited
        super().__init__(
            f"Exceeded maximum wait time for block sampling ({waited:.1f}s)"
        )


# ── gate / control ──────────────────────────────────────────────────────────

class CostExceedsMax(TensorRegError):
    def __init__(self, cost: int, max_cost: int):
        self.cost = cost
        self.max_cost = max_cost
        super().__init__(f"Recycle cost ({cost}) exceeds threshold ({max_cost})")


class Cancelled(TensorRegError):
    """External shutdown was requested while the loop was running."""
