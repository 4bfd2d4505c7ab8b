# tensorreg/analysis.py
# --------------------------------------------------------------------------- #
# Passive block-timing observer. Follows finalized heads on its own
# connection and records, per block:
#     block_number, elapsed, interval, pending_extrinsics, block_weight
# Columns are stored as a numpy .npz archive; analyze() reports the mean
# block interval and how it correlates with pool size and block weight.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import os
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional

import numpy as np
from tqdm import tqdm

from tensorreg.block_time import clamp_block_time
from tensorreg.chain import ChainClient
from tensorreg.config import ANALYSIS_FILE, ANALYSIS_OUTPUT_DIR, DEFAULT_CHAIN_ENDPOINT
from tensorreg.retry import TRANSPORT_ERRORS
from tensorreg.utils.colors import ColoredLogger as clog

COLUMNS = ("block_number", "elapsed", "interval", "pending_extrinsics", "block_weight")


def pearson(x, y) -> Optional[float]:
    """Pearson r over the pairs where both values are present; None if undefined."""
    xs = np.asarray(x, dtype=float)
    ys = np.asarray(y, dtype=float)
    keep = ~(np.isnan(xs) | np.isnan(ys))
    xs, ys = xs[keep], ys[keep]
    if xs.size < 2 or np.std(xs) == 0 or np.std(ys) == 0:
        return None
    return float(np.corrcoef(xs, ys)[0, 1])


@dataclass(slots=True)
class BlockTimingReport:
    samples: int
    mean_interval: float
    mean_pending: float
    pending_correlation: Optional[float]
    weight_correlation: Optional[float]

    @property
    def estimated_block_time(self) -> float:
        if np.isnan(self.mean_interval):
            return clamp_block_time(0.0)
        return clamp_block_time(self.mean_interval)


class BlockAnalyzer:
    def __init__(
        self,
        endpoint: str = DEFAULT_CHAIN_ENDPOINT,
        output_dir: str = ANALYSIS_OUTPUT_DIR,
        *,
        client: Optional[ChainClient] = None,
        clock: Callable[[], float] = time.monotonic,
        progress: bool = True,
    ):
        self.endpoint = endpoint
        self.output_dir = output_dir
        self._client = client
        self._clock = clock
        self._progress = progress
        self._report: Optional[BlockTimingReport] = None

    @property
    def data_path(self) -> str:
        return os.path.join(self.output_dir, ANALYSIS_FILE)

    # ── collection ─────────────────────────────────────────────────────

    async def collect(self, num_blocks: int, **head_kwargs) -> str:
        """Record *num_blocks* finalized blocks and write them to `data_path`."""
        owns_client = self._client is None
        client = self._client or await ChainClient.connect(self.endpoint)

        rows: Dict[str, List[float]] = {c: [] for c in COLUMNS}
        start = self._clock()
        previous: Optional[float] = None
        heads = client.finalized_heads(**head_kwargs)
        try:
            with tqdm(total=num_blocks, desc="blocks", disable=not self._progress) as bar:
                async for header in heads:
                    now = self._clock()
                    rows["block_number"].append(header.number)
                    rows["elapsed"].append(now - start)
                    rows["interval"].append(np.nan if previous is None else now - previous)
                    rows["pending_extrinsics"].append(await self._pending(client))
                    rows["block_weight"].append(await self._weight(client, header.hash))
                    previous = now
                    bar.update(1)
                    if len(rows["block_number"]) >= num_blocks:
                        break
        finally:
            await heads.aclose()
            if owns_client:
                await client.close()

        os.makedirs(self.output_dir, exist_ok=True)
        np.savez(self.data_path, **{c: np.asarray(v, dtype=float) for c, v in rows.items()})
        clog.success(f"Saved {len(rows['block_number'])} blocks to {self.data_path}")
        return self.data_path

    @staticmethod
    async def _pending(client) -> float:
        try:
            return float(len(await client.pending_extrinsics()))
        except TRANSPORT_ERRORS as e:
            clog.warning(f"pendingExtrinsics failed: {e}")
            return np.nan

    @staticmethod
    async def _weight(client, block_hash: str) -> float:
        try:
            return float(await client.block_weight(block_hash))
        except TRANSPORT_ERRORS as e:
            clog.warning(f"BlockWeight read failed at {block_hash}: {e}")
            return np.nan

    # ── analysis ───────────────────────────────────────────────────────

    def load(self) -> Dict[str, np.ndarray]:
        with np.load(self.data_path) as data:
            return {c: data[c] for c in COLUMNS}

    def analyze(self) -> BlockTimingReport:
        data = self.load()
        interval = data["interval"]
        pending = data["pending_extrinsics"]

        mean_interval = float(np.nanmean(interval)) if np.any(~np.isnan(interval)) else float("nan")
        mean_pending = float(np.nanmean(pending)) if np.any(~np.isnan(pending)) else 0.0

        self._report = BlockTimingReport(
            samples=int(data["block_number"].size),
            mean_interval=mean_interval,
            mean_pending=mean_pending,
            pending_correlation=pearson(pending, interval),
            weight_correlation=pearson(data["block_weight"], interval),
        )
        return self._report

    def optimal_submission_delay(self) -> float:
        """Half a block when the pool was busy during collection, otherwise zero."""
        report = self._report or self.analyze()
        if report.mean_pending > 0:
            return 0.5 * report.estimated_block_time
        return 0.0


async def run_analysis(endpoint: str, output_dir: str, num_blocks: int) -> BlockTimingReport:
    analyzer = BlockAnalyzer(endpoint, output_dir)
    await analyzer.collect(num_blocks)
    return analyzer.analyze()


__all__ = ["BlockAnalyzer", "BlockTimingReport", "pearson", "run_analysis", "COLUMNS"]
