"""
tensorreg/config.py - global constants
(block cadence, registration loop knobs, logging flags)
"""

from __future__ import annotations
import os
from dotenv import load_dotenv

load_dotenv()

# ╭─────────────────────────── ENVIRONMENT ────────────────────────────╮
DEFAULT_CHAIN_ENDPOINT: str = os.getenv("CHAIN_ENDPOINT", "ws://127.0.0.1:9944")
CONFIG_FILE: str = os.getenv("TENSORREG_CONFIG", "config.toml")
DISPLAY_TIMEZONE: str = os.getenv("DISPLAY_TIMEZONE", "America/New_York")

U16_MAX: int = 2**16 - 1
U64_MAX: int = 2**64 - 1
# ╰────────────────────────────────────────────────────────────────────╯

# ╭──────────────────────────── BLOCK TIME ────────────────────────────╮
BASE_BLOCK_TIME: float = 12.0
MAX_BLOCK_TIME: float = 60.0
SAMPLE_SIZE: int = 10
MAX_WAIT_TIME: float = 120.0
BLOCK_POLL_INTERVAL: float = 0.1
# ╰────────────────────────────────────────────────────────────────────╯

# ╭───────────────────────── HEAD SUBSCRIPTION ────────────────────────╮
HEAD_POLL_INTERVAL: float = float(os.getenv("HEAD_POLL_INTERVAL", "0.5"))
MAX_HEAD_POLL_FAILURES: int = int(os.getenv("MAX_HEAD_POLL_FAILURES", "5"))
# ╰────────────────────────────────────────────────────────────────────╯

# ╭─────────────────────────── REGISTRATION ───────────────────────────╮
PALLET: str = "SubtensorModule"
BURN_STORAGE_ITEM: str = "Burn"
NETWORKS_ADDED_ITEM: str = "NetworksAdded"
BURNED_REGISTER_CALL: str = "burned_register"
REGISTER_NETWORK_CALL: str = "register_network"
REGISTERED_EVENTS: tuple[str, ...] = ("NeuronRegistered", "Registered")

# Floor applied when a tick is skipped (cost gate or oracle hiccup)
COST_BACKOFF_FLOOR: float = 1.0
# ╰────────────────────────────────────────────────────────────────────╯

# ╭──────────────────────────── OBSERVER ──────────────────────────────╮
PENDING_MONITOR_INTERVAL: float = float(os.getenv("PENDING_MONITOR_INTERVAL", "5"))
ANALYSIS_OUTPUT_DIR: str = os.getenv("ANALYSIS_OUTPUT_DIR", "analysis_output")
ANALYSIS_FILE: str = "block_data.npz"
# ╰────────────────────────────────────────────────────────────────────╯

# ╭──────────────────────────── LOGGING (pretty) ──────────────────────╮
LOG_LEVEL: str = os.getenv("TENSORREG_LOG_LEVEL", "INFO").upper()
PRETTY_LOGS: bool = os.getenv("PRETTY_LOGS", "true").lower() == "true"
MASK_SS58: bool = os.getenv("MASK_SS58", "true").lower() == "true"
# ╰────────────────────────────────────────────────────────────────────╯
