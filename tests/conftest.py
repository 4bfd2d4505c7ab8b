# ──────────────────────────────────────────────────────────────────────────
# tests/conftest.py
# --------------------------------------------------------------------------
"""
Global pytest fixtures, CLI options and chain test-doubles.

Unit tests run entirely against the fakes below. The optional integration
test needs a node:

    pytest -m integration --network ws://127.0.0.1:9944 --netuid 1
"""
from __future__ import annotations

import asyncio
from typing import Any, List, Optional

import pytest

from tensorreg.models import Finalized, FinalizedHeader


def pytest_addoption(parser: pytest.Parser) -> None:
    """Expose `--network` and `--netuid` on the pytest command line."""
    parser.addoption(
        "--network",
        action="store",
        default=None,
        help="Subtensor endpoint, e.g. `ws://127.0.0.1:9944` or `local`",
    )
    parser.addoption(
        "--netuid",
        action="store",
        default=1,
        type=int,
        help="Subnet to read the burn cost of (defaults to 1).",
    )


# ───── test doubles ───────────────────────────────────────────────────── #


class FakeClock:
    """Monotonic clock that only moves when something sleeps on it."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class DummySigner:
    """Stands in for tensorreg.keys.Signer where no real key is needed."""

    def __init__(self, byte: int = 0x11, role: str = "coldkey"):
        self.role = role
        self.public_key = bytes([byte]) * 32
        self.public_hex = "0x" + self.public_key.hex()
        self.ss58_address = f"5Dummy{role}"
        self.keypair = None


class FakeWatch:
    def __init__(self, chain: "FakeChain", outcome: Any):
        self.chain = chain
        self.outcome = outcome
        self.dropped = False

    async def wait_for_finalized_success(self) -> Finalized:
        try:
            if self.outcome == "hang":
                await asyncio.Event().wait()
            if isinstance(self.outcome, BaseException):
                raise self.outcome
            return self.outcome
        finally:
            self.chain.in_flight -= 1

    def drop(self) -> None:
        self.dropped = True


def registered_events(uid: int = 7) -> list:
    return [
        {"event": {"module_id": "System", "event_id": "ExtrinsicSuccess", "attributes": {}}},
        {
            "event": {
                "module_id": "SubtensorModule",
                "event_id": "NeuronRegistered",
                "attributes": (1, uid, "5Hotkey"),
            }
        },
    ]


def finalized(tx: str = "0xabc", block: str = "0xblock", uid: int = 7) -> Finalized:
    return Finalized(tx_hash=tx, block_hash=block, events=registered_events(uid))


class FakeChain:
    """
    Scripted chain client.

    `costs`   : one entry consumed per Burn read (int, None, or an exception);
                the last entry repeats.
    `submits` : one entry per submission. An exception is raised by
                submit_and_watch itself; ("watch", outcome) resolves the watch
                with a Finalized or raises the given exception; a bare
                Finalized is shorthand for success.
    Each new finalized head advances the clock by `block_time`.
    """

    def __init__(
        self,
        *,
        costs=(500_000_000,),
        submits=(),
        networks_added: bool = True,
        clock: Optional[FakeClock] = None,
        block_time: float = 12.0,
        start_block: int = 100,
        max_heads: int = 50,
    ):
        self.costs = list(costs)
        self.submits = list(submits)
        self.networks_added = networks_added
        self.clock = clock or FakeClock()
        self.block_time = block_time
        self.head = start_block
        self.max_heads = max_heads

        self.calls: List[tuple] = []
        self.composed: List[tuple] = []
        self.submitted_at: List[float] = []
        self.watches: List[FakeWatch] = []
        self.burn_reads = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    # ── headers ────────────────────────────────────────────────────────
    def _header(self, number: int) -> FinalizedHeader:
        return FinalizedHeader(number=number, hash=f"0x{number:064x}")

    async def latest_finalized_header(self) -> FinalizedHeader:
        self.calls.append(("latest_finalized_header",))
        return self._header(self.head)

    async def header_at(self, number: int) -> FinalizedHeader:
        return self._header(number)

    async def block_number(self, block_hash: str) -> int:
        return self.head

    async def finalized_heads(self, **_):
        for i in range(self.max_heads):
            if i:
                self.clock.advance(self.block_time)
                self.head += 1
            yield self._header(self.head)

    # ── storage ────────────────────────────────────────────────────────
    async def query_storage(self, module, item, params, block_hash=None):
        self.calls.append(("query_storage", module, item, tuple(params), block_hash))
        if item == "NetworksAdded":
            return self.networks_added
        if item == "Burn":
            self.burn_reads += 1
            value = self.costs.pop(0) if len(self.costs) > 1 else self.costs[0]
            if isinstance(value, BaseException):
                raise value
            return value
        return None

    async def pending_extrinsics(self) -> list:
        return []

    # ── extrinsics ─────────────────────────────────────────────────────
    async def compose_call(self, module, function, params):
        self.calls.append(("compose_call", module, function))
        self.composed.append((module, function, dict(params)))
        return {"call_module": module, "call_function": function, "call_args": dict(params)}

    async def submit_and_watch(self, call, signer) -> FakeWatch:
        self.calls.append(("submit_and_watch", call["call_function"]))
        self.submitted_at.append(self.clock())
        outcome = self.submits.pop(0) if self.submits else finalized()
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, tuple) and outcome[0] == "watch":
            outcome = outcome[1]
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        watch = FakeWatch(self, outcome)
        self.watches.append(watch)
        return watch

    async def close(self) -> None:
        self.closed = True


class LogRecorder:
    """Drop-in for ColoredLogger that keeps every message."""

    def __init__(self):
        self.records: List[tuple] = []

    @staticmethod
    def kv(message: str, **fields) -> str:
        tail = " | ".join(f"{k}={v}" for k, v in fields.items())
        return f"{message} | {tail}" if tail else message

    def _log(self, level):
        def _inner(message, color=None):
            self.records.append((level, message))
        return _inner

    def __getattr__(self, level):
        if level in ("debug", "info", "warning", "error", "success"):
            return self._log(level)
        raise AttributeError(level)

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [m for lvl, m in self.records if level is None or lvl == level]


# ───── fixtures ───────────────────────────────────────────────────────── #


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def chain(clock) -> FakeChain:
    return FakeChain(clock=clock)


@pytest.fixture
def logs(monkeypatch) -> LogRecorder:
    """Capture log output of every tensorreg module that logs through clog."""
    rec = LogRecorder()
    import tensorreg.analysis
    import tensorreg.block_time
    import tensorreg.chain
    import tensorreg.registration
    import tensorreg.subnet

    for mod in (
        tensorreg.analysis,
        tensorreg.block_time,
        tensorreg.chain,
        tensorreg.registration,
        tensorreg.subnet,
    ):
        monkeypatch.setattr(mod, "clog", rec)
    return rec


@pytest.fixture
def quiet_pretty(monkeypatch):
    """Silence rich panels in the registration entry point."""
    import tensorreg.registration

    class _Quiet:
        def __getattr__(self, _):
            return lambda *a, **k: None

    monkeypatch.setattr(tensorreg.registration, "pretty", _Quiet())
