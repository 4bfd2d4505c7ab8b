# tensorreg/cost.py
# --------------------------------------------------------------------------- #
# Burn (recycle) cost reads. The value is "cost as of the latest finalized
# block"; the chain charges whatever it evaluates at inclusion time.
# --------------------------------------------------------------------------- #

from __future__ import annotations

from typing import Optional

from bittensor.utils.balance import Balance

from tensorreg.config import BURN_STORAGE_ITEM, NETWORKS_ADDED_ITEM, PALLET
from tensorreg.errors import CostExceedsMax, CostUnavailable
from tensorreg.models import BurnCost


async def read_burn_cost(client, netuid: int, *, block_hash: Optional[str] = None) -> BurnCost:
    """Read `SubtensorModule.Burn[netuid]` at *block_hash* (latest finalized if omitted)."""
    if block_hash is None:
        block_hash = (await client.latest_finalized_header()).hash
    raw = await client.query_storage(PALLET, BURN_STORAGE_ITEM, [int(netuid)], block_hash)
    if raw is None:
        raise CostUnavailable(netuid, block_hash)
    return BurnCost(netuid=int(netuid), value=int(raw), block_hash=block_hash)


async def get_recycle_cost(client, netuid: int) -> int:
    return (await read_burn_cost(client, netuid)).value


async def subnet_exists(client, netuid: int) -> bool:
    added = await client.query_storage(PALLET, NETWORKS_ADDED_ITEM, [int(netuid)])
    return bool(added)


def fmt_rao(rao: int) -> str:
    """`500000000` -> '500000000 rao (τ0.500000000)'."""
    return f"{rao} rao ({Balance.from_rao(int(rao))})"


def check_cost(cost: BurnCost, max_cost: int) -> BurnCost:
    """Inclusive gate: a cost equal to *max_cost* passes."""
    if cost.value > max_cost:
        raise CostExceedsMax(cost.value, max_cost)
    return cost
