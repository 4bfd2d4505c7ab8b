# ======================================================================
#
# tensorreg/registration.py
#
# Burned-registration loop for one hotkey on one subnet:
#   • follows finalized heads, one tick per head
#   • reads the Burn cost every tick and skips while it exceeds max_cost
#   • signs + submits SubtensorModule.burned_register with the coldkey
#   • waits for finalization; exactly one submission in flight
#   • spaces submissions at least one block time apart
#
# Transient failures (RPC reads, pool rejection, dispatch errors) are
# logged and retried; fatal ones (bad keys, unknown netuid, closed head
# stream) end the run.
#
# ======================================================================

from __future__ import annotations

import asyncio
import inspect
import time
from datetime import datetime
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from tensorreg.block_time import estimate_block_time
from tensorreg.chain import ChainClient, ExtrinsicWatch
from tensorreg.config import (
    BASE_BLOCK_TIME,
    BURNED_REGISTER_CALL,
    COST_BACKOFF_FLOOR,
    DISPLAY_TIMEZONE,
    PALLET,
    REGISTERED_EVENTS,
)
from tensorreg.cost import check_cost, fmt_rao, read_burn_cost, subnet_exists
from tensorreg.errors import (
    Cancelled,
    CostExceedsMax,
    CostUnavailable,
    FatalError,
    InclusionError,
    StreamClosed,
    UnknownNetuid,
)
from tensorreg.keys import Signer
from tensorreg.models import (
    BurnCost,
    FinalizedHeader,
    InclusionFailed,
    LoopPhase,
    LoopState,
    RegistrationRequest,
    RegistrationResult,
    SubmissionOutcome,
    SubmitFailed,
)
from tensorreg.retry import TRANSPORT_ERRORS, RetryPolicy, Verdict
from tensorreg.utils.colors import ColoredLogger as clog
from tensorreg.utils.pretty_logs import pretty


def formatted_now(tz: str = DISPLAY_TIMEZONE) -> str:
    """Current wall-clock time as 'YYYY-MM-DD HH:MM:SS TZ+hhmm'."""
    return datetime.now(ZoneInfo(tz)).strftime("%Y-%m-%d %H:%M:%S %Z%z")


def registered_uid(events: Iterable[Any]) -> Optional[int]:
    """Pull the neuron UID out of a SubtensorModule.NeuronRegistered event, if any."""
    for ev in events or []:
        if not isinstance(ev, dict):
            continue
        body = ev.get("event", ev)
        if not isinstance(body, dict):
            continue
        if body.get("module_id") != PALLET or body.get("event_id") not in REGISTERED_EVENTS:
            continue
        attrs = body.get("attributes")
        uid = None
        if isinstance(attrs, dict):
            uid = attrs.get("uid", attrs.get("neuron_uid"))
        elif isinstance(attrs, (list, tuple)) and len(attrs) >= 2:
            # NeuronRegistered(netuid, uid, hotkey)
            uid = attrs[1]
        if uid is not None:
            return int(uid)
    return None


async def interruptible(aw: Awaitable[Any], shutdown: Optional[asyncio.Event]) -> Any:
    """Await *aw*, abandoning it with Cancelled if *shutdown* is set first."""
    if shutdown is None:
        return await aw
    if shutdown.is_set():
        if inspect.iscoroutine(aw):
            aw.close()
        raise Cancelled("shutdown requested")

    task = asyncio.ensure_future(aw)
    stop = asyncio.ensure_future(shutdown.wait())
    try:
        await asyncio.wait({task, stop}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        stop.cancel()
    if task.done():
        return task.result()
    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    raise Cancelled("shutdown requested")


class RegistrationLoop:
    """
    Explicit state machine over LoopPhase. Each handler performs at most one
    I/O step and returns the next phase; the loop state is private to this
    object.
    """

    def __init__(
        self,
        client,
        *,
        coldkey: Signer,
        hotkey: Signer,
        netuid: int,
        max_cost: int,
        block_time: float = BASE_BLOCK_TIME,
        cost_floor: float = COST_BACKOFF_FLOOR,
        policy: Optional[RetryPolicy] = None,
        heads: Optional[AsyncIterator[FinalizedHeader]] = None,
        shutdown: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.client = client
        self.coldkey = coldkey
        self.hotkey = hotkey
        self.netuid = int(netuid)
        self.max_cost = int(max_cost)
        self.block_time = float(block_time)
        self.cost_floor = float(cost_floor)
        self.policy = policy or RetryPolicy()
        self._heads = heads
        self._shutdown = shutdown
        self._clock = clock
        self._sleep = sleep

        self.state = LoopState()
        self.phase = LoopPhase.AWAITING_HEAD

        self._head_iter: Optional[AsyncIterator[FinalizedHeader]] = None
        self._call = None
        self._header: Optional[FinalizedHeader] = None
        self._cost: Optional[BurnCost] = None
        self._watch: Optional[ExtrinsicWatch] = None
        self._backoff_floor = 0.0
        self._result: Optional[RegistrationResult] = None
        self.outcomes: List[SubmissionOutcome] = []

    # ── public ─────────────────────────────────────────────────────────

    async def run(self) -> RegistrationResult:
        handlers: Dict[LoopPhase, Callable[[], Awaitable[LoopPhase]]] = {
            LoopPhase.AWAITING_HEAD: self._await_head,
            LoopPhase.CHECKING_COST: self._check_cost,
            LoopPhase.SUBMITTING: self._submit,
            LoopPhase.AWAITING_FINALIZATION: self._await_finalization,
            LoopPhase.BACKOFF: self._backoff,
        }

        try:
            # composed once, reused for every submission
            self._call = await self._guard(
                self.client.compose_call(
                    PALLET,
                    BURNED_REGISTER_CALL,
                    {"netuid": self.netuid, "hotkey": self.hotkey.public_hex},
                )
            )
            heads = self._heads if self._heads is not None else self.client.finalized_heads()
            self._head_iter = heads.__aiter__()

            while self.phase is not LoopPhase.DONE:
                self.phase = await handlers[self.phase]()
        except (Cancelled, asyncio.CancelledError):
            if self._watch is not None:
                clog.warning("Shutdown during finalization watch; the extrinsic may still be included.")
            raise
        finally:
            self.state.terminate()
            if self._watch is not None:
                self._watch.drop()
                self._watch = None
            aclose = getattr(self._head_iter, "aclose", None)
            if aclose is not None:
                await aclose()

        return self._result

    # ── phase handlers ─────────────────────────────────────────────────

    async def _await_head(self) -> LoopPhase:
        try:
            header = await self._guard(self._head_iter.__anext__())
        except StopAsyncIteration:
            raise StreamClosed() from None

        if self.state.last_block is not None and header.number <= self.state.last_block:
            clog.debug(f"Ignoring stale head #{header.number} (last #{self.state.last_block})")
            return LoopPhase.AWAITING_HEAD

        self._header = header
        self._cost = None
        iteration = self.state.next_iteration(header.number)
        clog.info(f"{iteration} | {formatted_now()} | Attempting registration for block {header.number}")
        return LoopPhase.CHECKING_COST

    async def _check_cost(self) -> LoopPhase:
        started = self._clock()
        try:
            cost = await self._guard(read_burn_cost(self.client, self.netuid))
        except CostUnavailable as e:
            return await self._on_cost_unavailable(e)
        except (Cancelled, FatalError):
            raise
        except Exception as e:
            # any other oracle failure (missing header, undecodable value) is retried
            clog.warning(f"Recycle cost read failed: {type(e).__name__}: {e}")
            return self._end_tick("cost-read-failed", floor=self.cost_floor, failure=True)
        clog.info(f"⏱️ get_recycle_cost took {self._clock() - started:.3f}s")
        self._cost = cost

        try:
            check_cost(cost, self.max_cost)
        except CostExceedsMax as skip:
            self.state.cost_skips += 1
            clog.warning(
                f"💸 Recycle cost ({fmt_rao(skip.cost)}) exceeds threshold "
                f"({fmt_rao(skip.max_cost)}). Skipping registration attempt."
            )
            return self._end_tick("cost-exceeds-max", floor=self.cost_floor)

        return LoopPhase.SUBMITTING

    async def _submit(self) -> LoopPhase:
        now = self._clock()
        self.state.last_attempt_at = now
        self.state.submissions += 1
        try:
            self._watch = await self._guard(self.client.submit_and_watch(self._call, self.coldkey))
        except Exception as e:
            self._raise_if_fatal(e)
            outcome = SubmitFailed(getattr(e, "kind", type(e).__name__), getattr(e, "message", str(e)))
            self.outcomes.append(outcome)
            clog.error(f"Failed to submit extrinsic: {outcome.kind}: {outcome.message}")
            return self._end_tick("submit-failed", failure=True)

        # the RPC submit itself resolves inside the watch
        clog.info(f"⏱️ sign took {self._clock() - now:.3f}s")
        return LoopPhase.AWAITING_FINALIZATION

    async def _await_finalization(self) -> LoopPhase:
        started = self._clock()
        try:
            finalized = await self._guard(self._watch.wait_for_finalized_success())
        except Cancelled:
            raise
        except Exception as e:
            self._watch = None
            if isinstance(e, InclusionError) and self.policy.classify(e) is Verdict.FATAL:
                if e.kind == "SubNetworkDoesNotExist":
                    raise UnknownNetuid(self.netuid) from e
                raise
            self._raise_if_fatal(e)
            outcome = (
                InclusionFailed(e.kind, e.message)
                if isinstance(e, InclusionError)
                else SubmitFailed(getattr(e, "kind", type(e).__name__), str(e))
            )
            self.outcomes.append(outcome)
            clog.error(f"Registration failed: {outcome.kind}: {outcome.message}")
            return self._end_tick(
                "dispatch-failed" if isinstance(outcome, InclusionFailed) else "submit-failed",
                failure=True,
            )

        self._watch = None
        clog.info(f"⏱️ wait_for_finalized_success took {self._clock() - started:.3f}s")

        block_number = None
        if finalized.block_hash:
            try:
                block_number = await self._guard(self.client.block_number(finalized.block_hash))
            except TRANSPORT_ERRORS as e:
                clog.debug(f"Could not resolve inclusion block number: {e}")

        finalized.uid = registered_uid(finalized.events)
        self.outcomes.append(finalized)
        clog.success(
            f"🎯 Registration successful at block {finalized.block_hash}. "
            f"Extrinsic {finalized.tx_hash}. Events: {finalized.events}"
        )
        self._result = RegistrationResult(
            tx_hash=finalized.tx_hash,
            block_hash=finalized.block_hash,
            block_number=block_number,
            uid=finalized.uid,
            events=finalized.events,
            iterations=self.state.iteration,
            submissions=self.state.submissions,
        )
        self._log_outcome("registered")
        return LoopPhase.DONE

    async def _backoff(self) -> LoopPhase:
        wait = self._backoff_floor
        if self.state.last_attempt_at is not None:
            wait = max(wait, self.block_time - (self._clock() - self.state.last_attempt_at))
        self._backoff_floor = 0.0
        if wait > 0:
            clog.debug(f"Backing off {wait:.2f}s")
            await self._guard(self._sleep(wait))
        return LoopPhase.AWAITING_HEAD

    # ── helpers ────────────────────────────────────────────────────────

    async def _on_cost_unavailable(self, err: CostUnavailable) -> LoopPhase:
        if self.policy.classify(err) is Verdict.FATAL:
            raise UnknownNetuid(self.netuid) from err
        try:
            exists = await self._guard(subnet_exists(self.client, self.netuid))
        except Exception as e:
            self._raise_if_fatal(e)
            clog.warning(f"Subnet existence check failed: {e}")
            exists = True
        if not exists:
            raise UnknownNetuid(self.netuid) from err
        clog.warning(f"{err}; retrying next block")
        return self._end_tick("cost-unavailable", floor=self.cost_floor, failure=True)

    def _raise_if_fatal(self, exc: BaseException) -> None:
        if self.policy.classify(exc) is Verdict.FATAL:
            raise exc

    def _end_tick(self, outcome: str, *, floor: float = 0.0, failure: bool = False) -> LoopPhase:
        if failure:
            self.state.transient_failures += 1
        self._backoff_floor = floor
        self._log_outcome(outcome)
        return LoopPhase.BACKOFF

    def _log_outcome(self, outcome: str) -> None:
        clog.info(
            clog.kv(
                f"tick {self.state.iteration}",
                block=self._header.number if self._header else "?",
                cost=self._cost.value if self._cost else "?",
                submissions=self.state.submissions,
                outcome=outcome,
            )
        )

    async def _guard(self, aw: Awaitable[Any]) -> Any:
        return await interruptible(aw, self._shutdown)


# --------------------------------------------------------------------------- #
# Entry point
# --------------------------------------------------------------------------- #

def derive_signers(request: RegistrationRequest, crypto_type: str = "sr25519") -> Tuple[Signer, Signer]:
    """(coldkey, hotkey) signers for *request*; the request's seeds are wiped."""
    coldkey = Signer.from_seed(request.coldkey, role="coldkey", crypto_type=crypto_type)
    hotkey = Signer.from_seed(request.hotkey, role="hotkey", crypto_type=crypto_type)
    return coldkey, hotkey


async def register_hotkey(
    request: RegistrationRequest,
    *,
    signers: Optional[Tuple[Signer, Signer]] = None,
    client: Optional[ChainClient] = None,
    crypto_type: str = "sr25519",
    adaptive_backoff: bool = False,
    policy: Optional[RetryPolicy] = None,
    shutdown: Optional[asyncio.Event] = None,
    **loop_kwargs,
) -> RegistrationResult:
    """
    Register `request.hotkey` on `request.netuid`, paying with `request.coldkey`.

    Returns on the first finalized, successful burned_register; raises on fatal
    errors (InvalidKey, InvalidEndpoint, UnknownNetuid, StreamClosed) and
    Cancelled on shutdown. Keys are parsed before any RPC is issued.

    Deriving the signers wipes the request's seeds. To call again with the
    same request (say after StreamClosed), derive once with `derive_signers`
    and pass the result as `signers`.

    With `adaptive_backoff`, submission spacing uses the estimated block time
    instead of BASE_BLOCK_TIME.
    """
    if signers is None:
        signers = derive_signers(request, crypto_type)
    coldkey, hotkey = signers

    owns_client = client is None
    if owns_client:
        client = await interruptible(ChainClient.connect(request.endpoint), shutdown)
    try:
        if not await interruptible(subnet_exists(client, request.netuid), shutdown):
            raise UnknownNetuid(request.netuid)

        spacing = BASE_BLOCK_TIME
        if adaptive_backoff:
            spacing = await interruptible(estimate_block_time(client), shutdown)

        pretty.show_registration_params(
            coldkey=coldkey.ss58_address,
            hotkey=hotkey.ss58_address,
            netuid=request.netuid,
            max_cost=fmt_rao(request.max_cost),
            endpoint=request.endpoint,
            spacing=spacing,
        )

        loop = RegistrationLoop(
            client,
            coldkey=coldkey,
            hotkey=hotkey,
            netuid=request.netuid,
            max_cost=request.max_cost,
            block_time=spacing,
            policy=policy,
            shutdown=shutdown,
            **loop_kwargs,
        )
        result = await loop.run()
        pretty.show_registered(
            tx_hash=result.tx_hash,
            block_hash=result.block_hash,
            uid=result.uid,
            iterations=result.iterations,
            submissions=result.submissions,
        )
        return result
    finally:
        if owns_client:
            await client.close()
