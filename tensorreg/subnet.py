# tensorreg/subnet.py
# --------------------------------------------------------------------------- #
# Subnet (network) registration: keep submitting register_network until one
# finalizes successfully, sleeping one estimated block time after failures.
# A side task logs the node's pending-extrinsic pool on its own connection.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional

from tensorreg.block_time import estimate_block_time
from tensorreg.chain import ChainClient
from tensorreg.config import PALLET, PENDING_MONITOR_INTERVAL, REGISTER_NETWORK_CALL
from tensorreg.keys import SecretSeed, Signer
from tensorreg.models import RegistrationResult
from tensorreg.registration import formatted_now, interruptible
from tensorreg.retry import TRANSPORT_ERRORS, RetryPolicy
from tensorreg.utils.colors import ColoredLogger as clog


async def monitor_pending_extrinsics(
    endpoint: str,
    *,
    interval: float = PENDING_MONITOR_INTERVAL,
    client: Optional[ChainClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> None:
    """Log the size of the node's extrinsic pool every *interval* seconds until cancelled."""
    owns_client = client is None
    if owns_client:
        client = await ChainClient.connect(endpoint)
    try:
        while True:
            try:
                pending = await client.pending_extrinsics()
                clog.info(f"[mempool] {len(pending)} pending extrinsics", color="cyan")
            except TRANSPORT_ERRORS as e:
                clog.warning(f"[mempool] pendingExtrinsics failed: {e}")
            await sleep(interval)
    finally:
        if owns_client:
            await client.close()


async def register_subnet(
    coldkey: SecretSeed,
    endpoint: str,
    hotkey: Optional[SecretSeed] = None,
    shutdown: Optional[asyncio.Event] = None,
    *,
    crypto_type: str = "sr25519",
    client: Optional[ChainClient] = None,
    monitor: bool = True,
    policy: Optional[RetryPolicy] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    estimator=estimate_block_time,
) -> RegistrationResult:
    """
    Register a new subnet owned by *coldkey*.

    `register_network` takes the hotkey when one is given, otherwise no
    arguments. Failures of any transient kind are retried after sleeping the
    estimated block time; fatal ones propagate.
    """
    policy = policy or RetryPolicy()
    signer = Signer.from_seed(coldkey, role="coldkey", crypto_type=crypto_type)
    params = {}
    if hotkey is not None:
        params["hotkey"] = Signer.from_seed(hotkey, role="hotkey", crypto_type=crypto_type).public_hex

    owns_client = client is None
    if owns_client:
        client = await ChainClient.connect(endpoint)

    monitor_task = None
    if monitor:
        monitor_task = asyncio.create_task(monitor_pending_extrinsics(endpoint))

    attempts = 0
    try:
        block_time = await interruptible(estimator(client), shutdown)
        call = await interruptible(client.compose_call(PALLET, REGISTER_NETWORK_CALL, params), shutdown)

        while True:
            attempts += 1
            clog.info(f"{attempts} | {formatted_now()} | Attempting subnet registration")
            watch = None
            try:
                watch = await interruptible(client.submit_and_watch(call, signer), shutdown)
                finalized = await interruptible(watch.wait_for_finalized_success(), shutdown)
            except Exception as e:
                if watch is not None:
                    watch.drop()
                if not policy.is_transient(e):
                    raise
                clog.error(f"Subnet registration failed: {e}")
                await interruptible(sleep(block_time), shutdown)
                continue

            clog.success(
                f"🎯 Subnet registration successful at block {finalized.block_hash}. "
                f"Extrinsic {finalized.tx_hash}. Events: {finalized.events}"
            )
            return RegistrationResult(
                tx_hash=finalized.tx_hash,
                block_hash=finalized.block_hash,
                block_number=None,
                uid=None,
                events=finalized.events,
                iterations=attempts,
                submissions=attempts,
            )
    finally:
        if monitor_task is not None:
            monitor_task.cancel()
            await asyncio.gather(monitor_task, return_exceptions=True)
        if owns_client:
            await client.close()
