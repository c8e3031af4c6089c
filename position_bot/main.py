from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Sequence

from config import load_config
from .cycle import CycleOrchestrator, error_payload
from .errors import ConfigError, CycleAbortedError
from .metrics import start_metrics_server

logger = logging.getLogger("position_bot")


def setup_logging(level: int = logging.INFO, log_file: Optional[str] = "bot.log") -> None:
    root = logging.getLogger()
    if root.handlers:
        return
    root.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)
    if log_file:
        try:
            fh = RotatingFileHandler(log_file, maxBytes=5_000_000, backupCount=3, encoding="utf-8")
        except OSError as exc:
            logger.warning("File logging disabled (%s): %s", log_file, exc)
        else:
            fh.setFormatter(fmt)
            root.addHandler(fh)


def run_once(orchestrator: CycleOrchestrator) -> int:
    try:
        report = orchestrator.run_cycle()
    except CycleAbortedError as exc:
        print(json.dumps(error_payload(exc), ensure_ascii=False))
        return 1
    print(json.dumps(report.to_payload(), ensure_ascii=False, default=str))
    return 0


def run_loop(orchestrator: CycleOrchestrator, poll_sec: float, max_cycles: Optional[int] = None) -> int:
    """Run cycles back to back on one thread so they never overlap."""
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        started = time.monotonic()
        try:
            orchestrator.run_cycle()
            logger.info("Cycle %s complete", cycles + 1)
        except CycleAbortedError as exc:
            logger.error("Cycle %s aborted: %s", cycles + 1, exc)
        cycles += 1
        if max_cycles is not None and cycles >= max_cycles:
            break
        time.sleep(max(0.0, poll_sec - (time.monotonic() - started)))
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="position-bot", description="Binance USDⓈ-M position manager")
    parser.add_argument("--config", type=Path, default=None, help="JSON config (default: $BOT_CONFIG_JSON or config.json)")
    parser.add_argument("--log-file", default="bot.log")
    parser.add_argument("--metrics-port", type=int, default=None)
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run-once", help="run a single cycle and print the dashboard payload")
    loop = sub.add_parser("loop", help="run cycles sequentially on a fixed cadence")
    loop.add_argument("--poll-sec", type=float, default=None)
    loop.add_argument("--max-cycles", type=int, default=None)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(log_file=args.log_file)

    try:
        cfg = load_config(args.config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        return 2

    logger.info(
        "Active config snapshot: %s",
        json.dumps(
            {
                "env": "testnet" if cfg.testnet else "live",
                "symbols": cfg.symbols,
                "leverage": cfg.leverage,
                "order_notional": cfg.order_notional,
                "timeframes": [cfg.short_timeframe, cfg.long_timeframe],
                "trailing": cfg.exits.use_trailing_stop,
                "data_dir": cfg.data_dir,
            },
            ensure_ascii=False,
        ),
    )

    metrics_port = args.metrics_port if args.metrics_port is not None else cfg.metrics_port
    if metrics_port:
        start_metrics_server(metrics_port)

    orchestrator = CycleOrchestrator.from_config(cfg)
    if args.command == "run-once":
        return run_once(orchestrator)
    poll_sec = args.poll_sec if args.poll_sec is not None else cfg.poll_sec
    try:
        return run_loop(orchestrator, poll_sec, args.max_cycles)
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received; stopping after current cycle")
        return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
