# ====================================================================== #
# tensorreg/utils/pretty_logs.py
# Rich panels for startup and result summaries; plain prints when
# PRETTY_LOGS is off.
# ====================================================================== #

from __future__ import annotations

from typing import Any, Iterable, Tuple

from rich.console import Console
from rich.panel import Panel

from tensorreg.config import MASK_SS58, PRETTY_LOGS


def mask(ss58: str) -> str:
    if not MASK_SS58:
        return ss58
    if not ss58 or len(ss58) < 10:
        return ss58
    return f"{ss58[:5]}…{ss58[-4:]}"


class Pretty:
    def __init__(self, enable: bool = True):
        self.enable = bool(enable)
        self.console = Console(log_path=False, highlight=False) if self.enable else None

    def kv_panel(self, title: str, items: Iterable[Tuple[str, Any]], style: str = "bold"):
        if self.console is not None:
            body = "\n".join([f"[white]{k}[/white]: {v}" for k, v in items])
            self.console.print(Panel(body, title=title, border_style=style))
        else:
            print(f"\n[{title}]")
            for k, v in items:
                print(f"  - {k}: {v}")

    # ── domain formatters ──────────────────────────────────────────────

    def show_registration_params(self, *, coldkey: str, hotkey: str, netuid: int, max_cost: str, endpoint: str, spacing: float):
        self.kv_panel(
            "Neuron registration",
            [
                ("Coldkey", mask(coldkey)),
                ("Hotkey", mask(hotkey)),
                ("Netuid", netuid),
                ("Max cost", max_cost),
                ("Endpoint", endpoint),
                ("Submission spacing", f"{spacing:.1f}s"),
            ],
            style="bold cyan",
        )

    def show_registered(self, *, tx_hash: str, block_hash: str | None, uid: int | None, iterations: int, submissions: int):
        self.kv_panel(
            "🎯 Registered",
            [
                ("Extrinsic", tx_hash),
                ("Block", block_hash or "?"),
                ("UID", "?" if uid is None else uid),
                ("Iterations", iterations),
                ("Submissions", submissions),
            ],
            style="bold green",
        )

    def show_block_report(self, report):
        self.kv_panel(
            "Block timing",
            [
                ("Blocks observed", report.samples),
                ("Mean interval", f"{report.mean_interval:.2f}s"),
                ("Mean pending extrinsics", f"{report.mean_pending:.2f}"),
                ("corr(pending, interval)", _fmt_corr(report.pending_correlation)),
                ("corr(weight, interval)", _fmt_corr(report.weight_correlation)),
            ],
            style="bold magenta",
        )


def _fmt_corr(value: float | None) -> str:
    return "n/a" if value is None else f"{value:+.2f}"


pretty = Pretty(enable=PRETTY_LOGS)
