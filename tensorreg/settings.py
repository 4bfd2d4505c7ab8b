# tensorreg/settings.py
# --------------------------------------------------------------------------- #
# CLI flags + optional config.toml. Values present in the file win over
# flags; the merged result is validated once into a RegistrationRequest.
# --------------------------------------------------------------------------- #

from __future__ import annotations

import argparse
import os
import sys
from typing import Any, Dict, Optional, Sequence

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

from tensorreg.config import (
    ANALYSIS_OUTPUT_DIR,
    CONFIG_FILE,
    DEFAULT_CHAIN_ENDPOINT,
    LOG_LEVEL,
)
from tensorreg.errors import ConfigError
from tensorreg.keys import CRYPTO_TYPES
from tensorreg.models import RegistrationRequest

# keys accepted in config.toml
CONFIG_KEYS = ("coldkey", "hotkey", "netuid", "max_cost", "chain_endpoint", "crypto_type")


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--chain_endpoint", default=None, help=f"ws(s):// RPC endpoint (default {DEFAULT_CHAIN_ENDPOINT})")
    p.add_argument("--crypto_type", choices=sorted(CRYPTO_TYPES), default=None, help="Key scheme (default sr25519)")
    p.add_argument("--config", default=None, help=f"TOML file whose values override flags (default {CONFIG_FILE})")
    p.add_argument("--log_level", default=LOG_LEVEL, help="TRACE, DEBUG, INFO, SUCCESS, WARNING, ERROR")


def build_register_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Register a hotkey on a subnet via burned_register.")
    p.add_argument("--coldkey", help="Coldkey seed: URI (//Alice), mnemonic, or 0x hex seed")
    p.add_argument("--hotkey", help="Hotkey seed: URI (//Bob), mnemonic, or 0x hex seed")
    p.add_argument("--netuid", type=int, help="Target subnet id")
    p.add_argument("--max_cost", type=int, help="Maximum burn cost to pay, in rao")
    p.add_argument(
        "--adaptive_backoff",
        action="store_true",
        help="Space submissions by the measured block time instead of 12s",
    )
    _add_common(p)
    return p


def build_subnet_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Register a new subnet via register_network.")
    p.add_argument("--coldkey", help="Coldkey seed paying for the subnet")
    p.add_argument("--hotkey", default=None, help="Optional subnet owner hotkey seed")
    _add_common(p)
    return p


def build_analyze_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Record finalized block timing and report correlations.")
    p.add_argument("--num_blocks", type=int, default=100, help="Finalized blocks to record")
    p.add_argument("--output_dir", default=ANALYSIS_OUTPUT_DIR, help="Directory for block_data.npz")
    p.add_argument("--analyze_only", action="store_true", help="Skip collection; analyze an existing file")
    _add_common(p)
    return p


def read_config_file(path: str, *, required: bool = False) -> Dict[str, Any]:
    """Parse *path* as TOML. A missing file is only an error when *required*."""
    if not os.path.exists(path):
        if required:
            raise ConfigError(f"config file not found: {path}")
        return {}
    try:
        with open(path, "rb") as fh:
            data = tomllib.load(fh)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"could not read {path}: {e}") from e

    unknown = sorted(set(data) - set(CONFIG_KEYS))
    if unknown:
        raise ConfigError(f"unknown key(s) in {path}: {', '.join(unknown)}")
    return data


def merge_options(args: argparse.Namespace, path: Optional[str] = None) -> Dict[str, Any]:
    """Flags first, then the config file on top."""
    explicit = path or getattr(args, "config", None)
    file_values = read_config_file(explicit or CONFIG_FILE, required=explicit is not None)

    merged = {k: getattr(args, k, None) for k in CONFIG_KEYS}
    merged.update({k: v for k, v in file_values.items() if v is not None})
    merged["chain_endpoint"] = merged.get("chain_endpoint") or DEFAULT_CHAIN_ENDPOINT
    merged["crypto_type"] = merged.get("crypto_type") or "sr25519"
    if merged["crypto_type"] not in CRYPTO_TYPES:
        raise ConfigError(f"crypto_type must be one of {sorted(CRYPTO_TYPES)}, got {merged['crypto_type']!r}")
    return merged


def load_config(
    parser: argparse.ArgumentParser,
    argv: Optional[Sequence[str]] = None,
    path: Optional[str] = None,
) -> "tuple[RegistrationRequest, argparse.Namespace, Dict[str, Any]]":
    """Parse *argv*, overlay the config file and build the RegistrationRequest."""
    args = parser.parse_args(argv)
    merged = merge_options(args, path)
    request = RegistrationRequest.from_mapping(merged)
    return request, args, merged
