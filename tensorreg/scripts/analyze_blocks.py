#!/usr/bin/env python3
"""
analyze_blocks.py – record finalized block timing and print correlations
"""
from __future__ import annotations

import asyncio
import os
import sys

from loguru import logger

from tensorreg.analysis import BlockAnalyzer
from tensorreg.config import DEFAULT_CHAIN_ENDPOINT
from tensorreg.registration import interruptible
from tensorreg.scripts._runner import run_until_done
from tensorreg.settings import build_analyze_parser
from tensorreg.utils.logging_setup import die, setup_logging
from tensorreg.utils.pretty_logs import pretty


def main(argv=None) -> None:
    args = build_analyze_parser().parse_args(argv)
    setup_logging(args.log_level)
    if args.num_blocks < 2:
        die("--num_blocks must be at least 2")

    analyzer = BlockAnalyzer(args.chain_endpoint or DEFAULT_CHAIN_ENDPOINT, args.output_dir)
    if args.analyze_only and not os.path.exists(analyzer.data_path):
        die(f"no recorded data at {analyzer.data_path}")

    async def job(shutdown: asyncio.Event):
        if not args.analyze_only:
            await interruptible(analyzer.collect(args.num_blocks), shutdown)
        report = analyzer.analyze()
        pretty.show_block_report(report)
        logger.info(f"Suggested submission delay: {analyzer.optimal_submission_delay():.2f}s")
        return report

    sys.exit(asyncio.run(run_until_done(job)))


if __name__ == "__main__":
    main()
