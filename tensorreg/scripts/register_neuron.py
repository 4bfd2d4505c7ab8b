#!/usr/bin/env python3
"""
register_neuron.py – burn-register a hotkey on a subnet

Usage
-----
  register_neuron --coldkey //Alice --hotkey //Bob --netuid 1 \
                  --max_cost 1000000000 --chain_endpoint ws://127.0.0.1:9944

Values in config.toml (or --config) take precedence over flags.
"""
from __future__ import annotations

import asyncio
import sys

from tensorreg.errors import FatalError
from tensorreg.registration import register_hotkey
from tensorreg.scripts._runner import run_until_done
from tensorreg.settings import build_register_parser, load_config
from tensorreg.utils.logging_setup import die, setup_logging


def main(argv=None) -> None:
    parser = build_register_parser()
    try:
        request, args, merged = load_config(parser, argv)
    except FatalError as e:
        setup_logging()
        die(str(e))
    setup_logging(args.log_level)

    async def job(shutdown: asyncio.Event):
        return await register_hotkey(
            request,
            crypto_type=merged["crypto_type"],
            adaptive_backoff=args.adaptive_backoff,
            shutdown=shutdown,
        )

    sys.exit(asyncio.run(run_until_done(job)))


if __name__ == "__main__":
    main()
