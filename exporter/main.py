#!/usr/bin/env python3
"""Chainlink SLA Exporter.

Watches an oracle contract's requests and the fulfillments reported by the
aggregator contracts that issued them, and exposes fulfillment latency,
miss counts and revenue as Prometheus metrics.

Configure via CLI flags or environment variables (ADDRESS, NODE_ADDRESS,
LINK_ADDRESS, RPC, LADDR).
"""

import argparse
import asyncio
import logging
import os
import sys

from web3 import Web3

from .src.AggregatorTracker import DEFAULT_MISS_THRESHOLD
from .src.SlaExporter import DEFAULT_LINK_ADDRESS, SlaExporter

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)


def parse_listen_address(laddr: str) -> tuple[str, int]:
    """Split a listen address into host and port.

    Format: host:port or :port (binds all interfaces).

    :param laddr: Listen address string.
    :returns: Tuple of (host, port).
    :raises ValueError: If the port is missing or invalid.
    """
    host, sep, port_str = laddr.rpartition(":")
    if not sep:
        raise ValueError(f"listen address {laddr!r} must be host:port")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in listen address {laddr!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in listen address {laddr!r}")
    return host or "0.0.0.0", port


def main() -> None:
    """Main entry point for the SLA exporter CLI."""
    parser = argparse.ArgumentParser(
        description="Chainlink SLA Exporter: request fulfillment metrics for Prometheus",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m exporter.main --address 0xOracle --node-address 0xNode \\
      --rpc https://mainnet.example/rpc --listen :9090

Environment variables (CLI args take precedence):
  ADDRESS, NODE_ADDRESS, LINK_ADDRESS, RPC, LADDR,
  MISS_THRESHOLD, POLL_INTERVAL, RESTART_DELAY, SAMPLE_PERIOD
""",
    )

    parser.add_argument(
        "--address",
        type=str,
        help="Address of the oracle contract to monitor",
        default=os.environ.get("ADDRESS"),
    )

    parser.add_argument(
        "--node-address",
        dest="node_address",
        type=str,
        help="Address of the account submitting fulfillments",
        default=os.environ.get("NODE_ADDRESS"),
    )

    parser.add_argument(
        "--link-address",
        dest="link_address",
        type=str,
        help="Address of the LINK token contract (default: mainnet LINK)",
        default=os.environ.get("LINK_ADDRESS"),
    )

    parser.add_argument(
        "--rpc",
        type=str,
        help="RPC endpoint of the node",
        default=os.environ.get("RPC"),
    )

    parser.add_argument(
        "--listen",
        type=str,
        help="Metrics listen address, host:port",
        default=os.environ.get("LADDR"),
    )

    parser.add_argument(
        "--miss-threshold",
        dest="miss_threshold",
        type=int,
        help=f"Blocks before an unfulfilled request counts as missed (default: {DEFAULT_MISS_THRESHOLD})",
        default=int(os.environ.get("MISS_THRESHOLD") or DEFAULT_MISS_THRESHOLD),
    )

    parser.add_argument(
        "--poll-interval",
        dest="poll_interval",
        type=float,
        help="Seconds between chain polls (default: 2.0)",
        default=float(os.environ.get("POLL_INTERVAL") or "2.0"),
    )

    parser.add_argument(
        "--restart-delay",
        dest="restart_delay",
        type=float,
        help="Seconds to wait before restarting a failed subscription (default: 5.0)",
        default=float(os.environ.get("RESTART_DELAY") or "5.0"),
    )

    parser.add_argument(
        "--sample-period",
        dest="sample_period",
        type=float,
        help="Seconds between balance samples (default: 15.0)",
        default=float(os.environ.get("SAMPLE_PERIOD") or "15.0"),
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    # Validate arguments
    if not args.listen:
        parser.error("LADDR must be set (--listen)")
    if not args.rpc:
        parser.error("RPC must be set (--rpc)")
    if not args.node_address:
        parser.error("NODE_ADDRESS must be set (--node-address)")
    if not args.address:
        parser.error("ADDRESS must be set (--address)")

    for name, value in (("--address", args.address), ("--node-address", args.node_address)):
        if not Web3.is_address(value):
            parser.error(f"{name} is not a valid address: {value}")

    if args.link_address is None:
        logger.warning("LINK_ADDRESS isn't set. Falling back to mainnet default.")
        args.link_address = DEFAULT_LINK_ADDRESS
    elif not Web3.is_address(args.link_address):
        parser.error(f"--link-address is not a valid address: {args.link_address}")

    if args.miss_threshold < 0:
        parser.error("--miss-threshold must not be negative")
    if args.poll_interval <= 0:
        parser.error("--poll-interval must be positive")
    if args.restart_delay < 0:
        parser.error("--restart-delay must not be negative")
    if args.sample_period <= 0:
        parser.error("--sample-period must be positive")

    try:
        host, port = parse_listen_address(args.listen)
    except ValueError as e:
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Chainlink SLA Exporter")
    logger.info("=" * 60)
    logger.info(f"Oracle:            {args.address}")
    logger.info(f"Node Account:      {args.node_address}")
    logger.info(f"LINK Token:        {args.link_address}")
    logger.info(f"RPC:               {args.rpc}")
    logger.info(f"Listen:            {host}:{port}")
    logger.info(f"Miss Threshold:    {args.miss_threshold} blocks")
    logger.info(f"Poll Interval:     {args.poll_interval}s")
    logger.info(f"Restart Delay:     {args.restart_delay}s")
    logger.info(f"Sample Period:     {args.sample_period}s")
    logger.info("=" * 60)

    try:
        exporter = SlaExporter.connect(
            rpc_url=args.rpc,
            oracle_address=args.address,
            node_address=args.node_address,
            link_address=args.link_address,
            miss_threshold=args.miss_threshold,
            poll_interval=args.poll_interval,
            restart_delay=args.restart_delay,
            sample_period=args.sample_period,
        )
        exporter.sink.serve(host, port)
        asyncio.run(exporter.run())
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
