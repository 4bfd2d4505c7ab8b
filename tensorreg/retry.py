# tensorreg/retry.py
# --------------------------------------------------------------------------- #
# Transient-vs-fatal classification, kept out of the loop body so the policy
# can be swapped in tests or by callers with stricter needs.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import FrozenSet

import websockets
from async_substrate_interface.errors import SubstrateRequestException

from tensorreg.errors import (
    BlockHeaderNotFound,
    CostUnavailable,
    FatalError,
    InclusionError,
    SubmitError,
    TransientError,
)

# Anything the websocket/RPC layer can throw at us mid-flight.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    SubstrateRequestException,
    websockets.exceptions.WebSocketException,
    ConnectionError,
    asyncio.TimeoutError,
    OSError,
)

# Pool/watch statuses meaning "it got in, then fell out" rather than "never got in".
_INCLUSION_MARKERS = ("dropped", "invalid", "usurped", "retracted", "finalitytimeout")


class Verdict(Enum):
    FATAL = "fatal"
    TRANSIENT = "transient"


def classify_submission_failure(exc: BaseException) -> TransientError:
    """Map a transport-level failure from the submit/watch path onto our taxonomy."""
    text = str(exc)
    lowered = text.lower().replace(" ", "")
    if any(marker in lowered for marker in _INCLUSION_MARKERS):
        return InclusionError("watch", text)
    return SubmitError(type(exc).__name__, text)


@dataclass(frozen=True)
class RetryPolicy:
    """
    Decides whether an error ends the run.

    `fatal_dispatch_errors` lists runtime error names which, reported as a
    dispatch failure, mean retrying can never succeed.
    """

    fatal_dispatch_errors: FrozenSet[str] = field(
        default_factory=lambda: frozenset({"SubNetworkDoesNotExist"})
    )
    cost_unavailable_is_fatal: bool = False

    def classify(self, exc: BaseException) -> Verdict:
        if isinstance(exc, FatalError):
            return Verdict.FATAL
        if isinstance(exc, CostUnavailable):
            return Verdict.FATAL if self.cost_unavailable_is_fatal else Verdict.TRANSIENT
        if isinstance(exc, InclusionError) and exc.kind in self.fatal_dispatch_errors:
            return Verdict.FATAL
        if isinstance(exc, (TransientError, BlockHeaderNotFound) + TRANSPORT_ERRORS):
            return Verdict.TRANSIENT
        return Verdict.FATAL

    def is_transient(self, exc: BaseException) -> bool:
        return self.classify(exc) is Verdict.TRANSIENT
