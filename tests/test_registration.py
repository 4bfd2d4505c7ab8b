# ------------------------------------------------------------------------
# tests/test_registration.py
# ------------------------------------------------------------------------
# Registration loop against a scripted chain.
#
# Scenarios
#   ① cost under max → one submission, success on the first tick
#   ② cost above max for three ticks, then drops → no submission until then
#   ③ submission transport failure, then success ≥ one block time later
#   ④ dispatch error on the first extrinsic, success on the second
#   ⑤ unknown netuid → fatal before any submission
#   ⑥ cost exactly equal to max_cost is accepted
#   ⑦ shutdown while waiting for finalization drops the watch
#   ⑧ shutdown during the startup block-time estimate
# ------------------------------------------------------------------------
from __future__ import annotations

import asyncio

import pytest

from conftest import DummySigner, FakeChain, finalized
from tensorreg.config import BASE_BLOCK_TIME
from tensorreg.errors import (
    BlockHeaderNotFound,
    Cancelled,
    InclusionError,
    InvalidKey,
    StreamClosed,
    UnknownNetuid,
)
from tensorreg.keys import SecretSeed
from tensorreg.models import LoopPhase, RegistrationRequest
import tensorreg.registration
from tensorreg.registration import (
    RegistrationLoop,
    derive_signers,
    register_hotkey,
    registered_uid,
)
from tensorreg.retry import RetryPolicy

TAO = 1_000_000_000


def make_loop(chain: FakeChain, *, max_cost: int = TAO, **kw) -> RegistrationLoop:
    return RegistrationLoop(
        chain,
        coldkey=DummySigner(0x11, "coldkey"),
        hotkey=DummySigner(0x22, "hotkey"),
        netuid=1,
        max_cost=max_cost,
        clock=chain.clock,
        sleep=chain.clock.sleep,
        **kw,
    )


def submission_gaps(chain: FakeChain):
    ts = chain.submitted_at
    return [b - a for a, b in zip(ts, ts[1:])]


# ───── scenarios ──────────────────────────────────────────────────────── #


@pytest.mark.asyncio
async def test_success_on_first_tick(chain, logs):
    chain.costs = [500_000_000]
    loop = make_loop(chain)

    result = await loop.run()

    assert result.tx_hash == "0xabc"
    assert result.uid == 7
    assert result.submissions == 1
    assert loop.state.iteration == 1
    assert loop.state.terminated
    assert loop.phase is LoopPhase.DONE
    assert chain.composed == [
        ("SubtensorModule", "burned_register", {"netuid": 1, "hotkey": "0x" + "22" * 32})
    ]
    assert any("Registration successful" in m and "0xabc" in m for m in logs.messages("success"))
    assert any("sign took" in m for m in logs.messages("info"))


@pytest.mark.asyncio
async def test_cost_gate_skips_until_cost_drops(chain, logs):
    chain.costs = [2 * TAO, 2 * TAO, 2 * TAO, 900_000_000]
    loop = make_loop(chain)

    result = await loop.run()

    assert loop.state.cost_skips == 3
    assert loop.state.iteration == 4
    assert result.submissions == 1
    assert len(chain.submitted_at) == 1
    skips = [m for m in logs.messages("warning") if "exceeds threshold" in m]
    assert len(skips) == 3


@pytest.mark.asyncio
async def test_submit_failure_is_retried_after_spacing(clock, logs):
    # heads every second, so only the backoff keeps submissions a block apart
    chain = FakeChain(clock=clock, block_time=1.0)
    chain.submits = [ConnectionResetError("connection reset by peer"), finalized()]
    loop = make_loop(chain)

    result = await loop.run()

    assert result.submissions == 2
    assert loop.state.transient_failures == 1
    assert clock.sleeps == [pytest.approx(BASE_BLOCK_TIME)]
    assert all(gap >= BASE_BLOCK_TIME for gap in submission_gaps(chain))


@pytest.mark.asyncio
async def test_dispatch_error_then_success(clock, logs):
    chain = FakeChain(clock=clock, block_time=1.0)
    chain.submits = [
        ("watch", InclusionError("TooManyRegistrationsThisBlock", "too many registrations")),
        ("watch", finalized(tx="0xdef")),
    ]
    loop = make_loop(chain)

    result = await loop.run()

    assert result.tx_hash == "0xdef"
    assert result.submissions == 2
    assert len(chain.submitted_at) == 2
    assert clock.sleeps == [pytest.approx(BASE_BLOCK_TIME)]
    assert all(gap >= BASE_BLOCK_TIME for gap in submission_gaps(chain))
    assert any("TooManyRegistrationsThisBlock" in m for m in logs.messages("error"))


@pytest.mark.asyncio
async def test_unknown_netuid_is_fatal_before_submitting(clock, quiet_pretty, logs):
    chain = FakeChain(clock=clock, networks_added=False, costs=[None])
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=999, max_cost=TAO
    )

    with pytest.raises(UnknownNetuid):
        await register_hotkey(request, client=chain, clock=clock, sleep=clock.sleep)

    assert chain.submitted_at == []


@pytest.mark.asyncio
async def test_cost_equal_to_max_is_accepted(chain, logs):
    chain.costs = [TAO]
    loop = make_loop(chain, max_cost=TAO)

    await loop.run()

    assert loop.state.cost_skips == 0
    assert len(chain.submitted_at) == 1


# ───── invariants ─────────────────────────────────────────────────────── #


@pytest.mark.asyncio
async def test_never_more_than_one_submission_in_flight(clock, logs):
    chain = FakeChain(clock=clock, block_time=1.0)
    chain.submits = [
        ("watch", InclusionError("Dropped", "")),
        ConnectionResetError("reset"),
        ("watch", InclusionError("Invalid", "")),
        finalized(),
    ]
    loop = make_loop(chain)

    await loop.run()

    assert chain.max_in_flight == 1
    assert chain.in_flight == 0
    assert len(chain.submitted_at) == 4
    assert [type(o).__name__ for o in loop.outcomes] == [
        "InclusionFailed",
        "SubmitFailed",
        "InclusionFailed",
        "Finalized",
    ]
    assert clock.sleeps == [pytest.approx(BASE_BLOCK_TIME)] * 3
    assert all(gap >= BASE_BLOCK_TIME for gap in submission_gaps(chain))


@pytest.mark.asyncio
async def test_cost_skip_backoff_has_one_second_floor(chain, logs):
    chain.costs = [2 * TAO, TAO // 2]
    loop = make_loop(chain)

    await loop.run()

    assert chain.clock.sleeps[0] == pytest.approx(1.0)


@pytest.mark.asyncio
async def test_cost_unavailable_on_deregistered_subnet_is_fatal(chain, logs):
    chain.costs = [None]
    chain.networks_added = False
    loop = make_loop(chain)

    with pytest.raises(UnknownNetuid):
        await loop.run()
    assert chain.submitted_at == []


@pytest.mark.asyncio
async def test_cost_read_transport_error_is_transient(chain, logs):
    chain.costs = [ConnectionError("socket closed"), TAO // 2]
    loop = make_loop(chain)

    result = await loop.run()

    assert result.submissions == 1
    assert loop.state.transient_failures == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [BlockHeaderNotFound("0x01"), ValueError("bad scale"), "not a number"],
    ids=["no-header", "decode-error", "undecodable-value"],
)
async def test_any_cost_read_failure_backs_off_and_retries(chain, logs, failure):
    chain.costs = [failure, TAO // 2]
    loop = make_loop(chain)

    result = await loop.run()

    assert result.submissions == 1
    assert loop.state.transient_failures == 1
    assert chain.clock.sleeps[0] == pytest.approx(1.0)
    assert any("Recycle cost read failed" in m for m in logs.messages("warning"))


@pytest.mark.asyncio
async def test_adaptive_spacing_is_honoured(clock, logs):
    chain = FakeChain(clock=clock, block_time=1.0)
    chain.submits = [ConnectionResetError("reset"), finalized()]
    loop = make_loop(chain, block_time=20.0)

    await loop.run()

    assert clock.sleeps == [pytest.approx(20.0)]
    assert all(gap >= 20.0 for gap in submission_gaps(chain))


@pytest.mark.asyncio
async def test_fatal_dispatch_error_stops_the_loop(chain, logs):
    chain.submits = [("watch", InclusionError("SubNetworkDoesNotExist", ""))]
    loop = make_loop(chain, policy=RetryPolicy())

    with pytest.raises(UnknownNetuid):
        await loop.run()
    assert len(chain.submitted_at) == 1


@pytest.mark.asyncio
async def test_stale_heads_are_ignored(clock, logs):
    chain = FakeChain(clock=clock)

    async def heads():
        for n in (10, 9, 10, 11):
            yield chain._header(n)

    chain.costs = [2 * TAO, TAO // 2]
    loop = make_loop(chain, heads=heads())

    await loop.run()

    assert loop.state.iteration == 2
    assert loop.state.last_block == 11


@pytest.mark.asyncio
async def test_head_stream_ending_raises_stream_closed(clock, logs):
    chain = FakeChain(clock=clock, costs=[2 * TAO], max_heads=3)
    loop = make_loop(chain)

    with pytest.raises(StreamClosed):
        await loop.run()
    assert loop.state.terminated


# ───── cancellation ───────────────────────────────────────────────────── #


@pytest.mark.asyncio
async def test_shutdown_during_watch_drops_it(chain, logs):
    chain.submits = [("watch", "hang")]
    shutdown = asyncio.Event()
    loop = make_loop(chain, shutdown=shutdown)

    asyncio.get_running_loop().call_later(0.05, shutdown.set)
    with pytest.raises(Cancelled):
        await loop.run()

    assert chain.watches[0].dropped
    assert loop.state.terminated


@pytest.mark.asyncio
async def test_shutdown_already_set_issues_no_rpc(chain, logs):
    shutdown = asyncio.Event()
    shutdown.set()
    loop = make_loop(chain, shutdown=shutdown)

    with pytest.raises(Cancelled):
        await loop.run()
    assert chain.submitted_at == []
    assert chain.burn_reads == 0


# ───── entry point ────────────────────────────────────────────────────── #


@pytest.mark.asyncio
async def test_register_hotkey_end_to_end(chain, quiet_pretty, logs):
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )

    result = await register_hotkey(request, client=chain, clock=chain.clock, sleep=chain.clock.sleep)

    assert result.uid == 7
    _, _, params = chain.composed[0]
    # Bob's sr25519 public key
    assert params["hotkey"] == "0x8eaf04151687736326c9fea17e25fc5287613693c912909cb226aa4794f26a48"
    assert request.coldkey.wiped and request.hotkey.wiped
    assert not chain.closed


@pytest.mark.asyncio
async def test_invalid_key_fails_before_any_rpc(chain, quiet_pretty, logs):
    request = RegistrationRequest(
        coldkey=SecretSeed("not a seed"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )

    with pytest.raises(InvalidKey) as exc:
        await register_hotkey(request, client=chain)

    assert exc.value.role == "coldkey"
    assert chain.calls == []


def test_registered_uid_decodes_named_and_positional_attributes():
    positional = [{"event": {"module_id": "SubtensorModule", "event_id": "NeuronRegistered", "attributes": [3, 42, "5H"]}}]
    named = [{"module_id": "SubtensorModule", "event_id": "NeuronRegistered", "attributes": {"uid": 5}}]
    other = [{"event": {"module_id": "Balances", "event_id": "Withdraw", "attributes": [1, 2]}}]

    assert registered_uid(positional) == 42
    assert registered_uid(named) == 5
    assert registered_uid(other) is None
    assert registered_uid([]) is None


@pytest.mark.asyncio
async def test_register_hotkey_uses_estimated_spacing(clock, quiet_pretty, logs, monkeypatch):
    async def estimate(client):
        return 20.0

    monkeypatch.setattr(tensorreg.registration, "estimate_block_time", estimate)
    chain = FakeChain(clock=clock, block_time=1.0)
    chain.submits = [ConnectionResetError("reset"), finalized()]
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )

    await register_hotkey(
        request, client=chain, adaptive_backoff=True, clock=clock, sleep=clock.sleep
    )

    assert clock.sleeps == [pytest.approx(20.0)]
    assert all(gap >= 20.0 for gap in submission_gaps(chain))


@pytest.mark.asyncio
async def test_shutdown_during_startup_estimate_cancels(clock, quiet_pretty, logs):
    # the head never moves, so the estimator would poll until its max wait
    chain = FakeChain(clock=clock)
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )
    shutdown = asyncio.Event()
    asyncio.get_running_loop().call_later(0.05, shutdown.set)

    with pytest.raises(Cancelled):
        await asyncio.wait_for(
            register_hotkey(request, client=chain, adaptive_backoff=True, shutdown=shutdown),
            2.0,
        )
    assert chain.submitted_at == []


@pytest.mark.asyncio
async def test_shutdown_before_startup_issues_no_rpc(chain, quiet_pretty, logs):
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )
    shutdown = asyncio.Event()
    shutdown.set()

    with pytest.raises(Cancelled):
        await register_hotkey(request, client=chain, adaptive_backoff=True, shutdown=shutdown)
    assert chain.calls == []


@pytest.mark.asyncio
async def test_signers_can_be_reused_after_stream_closed(clock, quiet_pretty, logs):
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )
    signers = derive_signers(request)
    assert request.coldkey.wiped and request.hotkey.wiped

    stalled = FakeChain(clock=clock, costs=[2 * TAO], max_heads=2)
    with pytest.raises(StreamClosed):
        await register_hotkey(
            request, signers=signers, client=stalled, clock=clock, sleep=clock.sleep
        )

    result = await register_hotkey(
        request, signers=signers, client=FakeChain(clock=clock), clock=clock, sleep=clock.sleep
    )
    assert result.uid == 7


@pytest.mark.asyncio
async def test_request_seeds_are_single_use(chain, quiet_pretty, logs):
    request = RegistrationRequest(
        coldkey=SecretSeed("//Alice"), hotkey=SecretSeed("//Bob"), netuid=1, max_cost=TAO
    )
    await register_hotkey(request, client=chain, clock=chain.clock, sleep=chain.clock.sleep)

    with pytest.raises(InvalidKey):
        await register_hotkey(request, client=chain)
