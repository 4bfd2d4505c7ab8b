#!/usr/bin/env python3
"""
register_subnet.py – keep submitting register_network until it finalizes
"""
from __future__ import annotations

import asyncio
import sys

from tensorreg.errors import ConfigError
from tensorreg.keys import SecretSeed
from tensorreg.scripts._runner import run_until_done
from tensorreg.settings import build_subnet_parser, merge_options
from tensorreg.subnet import register_subnet
from tensorreg.utils.logging_setup import die, setup_logging


def main(argv=None) -> None:
    args = build_subnet_parser().parse_args(argv)
    setup_logging(args.log_level)
    try:
        opts = merge_options(args)
    except ConfigError as e:
        die(str(e))
    if not opts.get("coldkey"):
        die("missing required option: coldkey")

    async def job(shutdown: asyncio.Event):
        hotkey = SecretSeed(str(opts["hotkey"])) if opts.get("hotkey") else None
        return await register_subnet(
            SecretSeed(str(opts["coldkey"])),
            opts["chain_endpoint"],
            hotkey,
            shutdown,
            crypto_type=opts["crypto_type"],
        )

    sys.exit(asyncio.run(run_until_done(job)))


if __name__ == "__main__":
    main()
