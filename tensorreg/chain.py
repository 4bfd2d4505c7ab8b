# tensorreg/chain.py
# --------------------------------------------------------------------------- #
# All chain I/O lives here: a thin wrapper over bittensor's AsyncSubtensor
# (and the async-substrate-interface client behind it), plus the finalized
# head follower used by the registration loop and the analyzer.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Sequence

import bittensor as bt
from async_substrate_interface.errors import SubstrateRequestException
from bittensor.utils import format_error_message

from tensorreg.config import HEAD_POLL_INTERVAL, MAX_HEAD_POLL_FAILURES
from tensorreg.errors import BlockHeaderNotFound, InclusionError, InvalidEndpoint, StreamClosed, SubmitError
from tensorreg.keys import Signer
from tensorreg.models import Finalized, FinalizedHeader, validate_endpoint
from tensorreg.retry import TRANSPORT_ERRORS, classify_submission_failure
from tensorreg.utils.colors import ColoredLogger as clog

Sleep = Callable[[float], Awaitable[None]]


# --------------------------------------------------------------------------- #
# Decoding helpers
# --------------------------------------------------------------------------- #

def _as_int(value: Any) -> int:
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def parse_header(raw: Any, block_hash: Optional[str]) -> FinalizedHeader:
    """Normalise the `{"header": {...}}` shape returned by get_block_header."""
    header = raw.get("header", raw) if isinstance(raw, dict) else None
    if not header or header.get("number") is None:
        raise BlockHeaderNotFound(block_hash)
    return FinalizedHeader(number=_as_int(header["number"]), hash=header.get("hash") or block_hash)


def _hash_hex(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return str(value)


def _dispatch_error_name(err: Any) -> str:
    if isinstance(err, dict):
        return str(err.get("name") or err.get("type") or "DispatchError")
    return "DispatchError"


def total_ref_time(weight: Any) -> int:
    """Sum System.BlockWeight over its dispatch classes (ref_time component)."""
    if weight is None:
        return 0
    if isinstance(weight, (int, float)):
        return int(weight)
    if isinstance(weight, dict):
        if "ref_time" in weight:
            return int(weight["ref_time"])
        return sum(total_ref_time(v) for v in weight.values())
    return 0


# --------------------------------------------------------------------------- #
# Finalization watch
# --------------------------------------------------------------------------- #

class ExtrinsicWatch:
    """Handle on one submitted extrinsic; resolves once it is finalized or fails."""

    def __init__(self, task: "asyncio.Task[Any]", tx_hash: Optional[str] = None):
        self._task = task
        self.tx_hash = tx_hash

    async def wait_for_finalized_success(self) -> Finalized:
        try:
            receipt = await self._task
        except TRANSPORT_ERRORS as e:
            raise classify_submission_failure(e) from e

        if not await receipt.is_success:
            err = await receipt.error_message
            raise InclusionError(_dispatch_error_name(err), format_error_message(err))

        events = list(await receipt.triggered_events or [])
        return Finalized(
            tx_hash=_hash_hex(getattr(receipt, "extrinsic_hash", None)) or self.tx_hash or "?",
            block_hash=_hash_hex(getattr(receipt, "block_hash", None)),
            events=events,
        )

    def drop(self) -> None:
        """Stop watching. The extrinsic itself is left to the chain."""
        if not self._task.done():
            self._task.cancel()


# --------------------------------------------------------------------------- #
# Client
# --------------------------------------------------------------------------- #

class ChainClient:
    """
    One websocket connection, reused for the whole run. Reads are serialised
    through a single gate so only one recv() is in flight per connection.
    """

    def __init__(self, subtensor: bt.AsyncSubtensor, endpoint: str):
        self.subtensor = subtensor
        self.endpoint = endpoint
        self._gate = asyncio.Semaphore(1)

    @property
    def substrate(self):
        return self.subtensor.substrate

    @classmethod
    async def connect(cls, endpoint: str) -> "ChainClient":
        endpoint = validate_endpoint(endpoint)
        subtensor = bt.AsyncSubtensor(network=endpoint)
        try:
            await subtensor.initialize()
        except TRANSPORT_ERRORS as e:
            raise InvalidEndpoint(endpoint, str(e)) from e
        clog.success(f"✓ Connected to {endpoint}", color="green")
        return cls(subtensor, endpoint)

    async def close(self) -> None:
        await self.subtensor.close()

    # ── headers ────────────────────────────────────────────────────────

    async def latest_finalized_header(self) -> FinalizedHeader:
        async with self._gate:
            block_hash = await self.substrate.get_chain_finalised_head()
            if not block_hash:
                raise BlockHeaderNotFound(None)
            raw = await self.substrate.get_block_header(block_hash=block_hash)
        return parse_header(raw, block_hash)

    async def header_at(self, number: int) -> FinalizedHeader:
        async with self._gate:
            block_hash = await self.substrate.get_block_hash(number)
        if not block_hash:
            raise BlockHeaderNotFound(None)
        return FinalizedHeader(number=int(number), hash=block_hash)

    async def block_number(self, block_hash: str) -> int:
        async with self._gate:
            return int(await self.substrate.get_block_number(block_hash))

    def finalized_heads(self, **kwargs) -> AsyncIterator[FinalizedHeader]:
        return follow_finalized_heads(self, **kwargs)

    # ── storage ────────────────────────────────────────────────────────

    async def query_storage(
        self,
        module: str,
        item: str,
        params: Sequence[Any],
        block_hash: Optional[str] = None,
    ) -> Any:
        """Dynamic storage read; key encoding follows the runtime metadata."""
        async with self._gate:
            result = await self.substrate.query(module, item, list(params), block_hash=block_hash)
        return getattr(result, "value", result)

    async def block_weight(self, block_hash: str) -> int:
        return total_ref_time(await self.query_storage("System", "BlockWeight", [], block_hash))

    async def pending_extrinsics(self) -> list:
        async with self._gate:
            response = await self.substrate.rpc_request("author_pendingExtrinsics", [])
        return list(response.get("result") or [])

    # ── extrinsics ─────────────────────────────────────────────────────

    async def compose_call(self, module: str, function: str, params: dict):
        async with self._gate:
            return await self.substrate.compose_call(
                call_module=module,
                call_function=function,
                call_params=params,
            )

    async def submit_and_watch(self, call, signer: Signer) -> ExtrinsicWatch:
        """
        Sign with *signer* and return a watch on finalization.

        Only signing is awaited here. The submit RPC runs inside the watch, so
        a transport failure while submitting surfaces from
        `wait_for_finalized_success` as a SubmitError.
        """
        try:
            async with self._gate:
                extrinsic = await self.substrate.create_signed_extrinsic(call=call, keypair=signer.keypair)
        except SubstrateRequestException as e:
            raise SubmitError("sign", format_error_message(e)) from e
        except TRANSPORT_ERRORS as e:
            raise SubmitError("sign", str(e)) from e

        task = asyncio.create_task(
            self.substrate.submit_extrinsic(
                extrinsic,
                wait_for_inclusion=True,
                wait_for_finalization=True,
            )
        )
        return ExtrinsicWatch(task, tx_hash=_hash_hex(getattr(extrinsic, "extrinsic_hash", None)))


@asynccontextmanager
async def open_chain(endpoint: str) -> AsyncIterator[ChainClient]:
    """Async context manager that yields a connected ChainClient."""
    client = await ChainClient.connect(endpoint)
    try:
        yield client
    finally:
        await client.close()


# --------------------------------------------------------------------------- #
# Finalized head follower
# --------------------------------------------------------------------------- #

async def follow_finalized_heads(
    client,
    *,
    poll_interval: float = HEAD_POLL_INTERVAL,
    max_failures: int = MAX_HEAD_POLL_FAILURES,
    sleep: Sleep = asyncio.sleep,
) -> AsyncIterator[FinalizedHeader]:
    """
    Yield every finalized header, in order, starting from the current one.

    Numbers are strictly increasing and contiguous: when finality jumps
    several blocks at once the skipped headers are fetched by number.
    `max_failures` consecutive failed polls end the stream with StreamClosed.
    """
    last: Optional[int] = None
    failures = 0

    while True:
        try:
            head = await client.latest_finalized_header()
        except TRANSPORT_ERRORS + (BlockHeaderNotFound,) as e:
            failures += 1
            if failures >= max_failures:
                raise StreamClosed(f"finalized head polling failed {failures} times: {e}") from e
            clog.warning(f"[heads] poll failed ({failures}/{max_failures}): {e}")
            await sleep(poll_interval)
            continue

        if last is not None and head.number <= last:
            failures = 0
            await sleep(poll_interval)
            continue

        if last is not None:
            gap_failed = False
            for number in range(last + 1, head.number):
                try:
                    gap = await client.header_at(number)
                except TRANSPORT_ERRORS + (BlockHeaderNotFound,) as e:
                    clog.warning(f"[heads] could not fetch header #{number}: {e}")
                    gap_failed = True
                    break
                last = number
                failures = 0
                yield gap
            if gap_failed:
                failures += 1
                if failures >= max_failures:
                    raise StreamClosed(f"could not backfill finalized header #{last + 1}")
                await sleep(poll_interval)
                continue

        last = head.number
        failures = 0
        yield head
