"""
Pharos validator exporter.

Correlates on-chain participation (block proofs, validator sets, balance)
with the consensus engine's log, and exposes Prometheus metrics.

Usage:
    pharos-exporter start --my-bls-key 0x... --log-path /data/pharos/node.log
    pharos-exporter start --my-address 0x... --exporter-port 9123 --log-from-start
"""

import argparse
import asyncio
import logging
import signal
import sys

import httpx

from pharos_exporter.chain_poller import ChainPoller, ChainPollerConfig
from pharos_exporter.errors import ConfigError
from pharos_exporter.log_follower import LogFollower, LogFollowerConfig
from pharos_exporter.metrics import MetricsState
from pharos_exporter.supervisor import Supervisor

log = logging.getLogger("pharos_exporter")

DEFAULT_RPC_URL = "https://atlantic-rpc.dplabs-internal.com/"
DEFAULT_EXPORTER_PORT = 9123
PUBLIC_IP_URL = "https://ifconfig.me/ip"


# ── Helpers ──────────────────────────────────────────────────────────────────

def resolve_public_ip(timeout: float = 2.0) -> str:
    """Best-effort public IP for the startup banner."""
    try:
        resp = httpx.get(PUBLIC_IP_URL, timeout=timeout)
        ip = resp.text.strip()
        if resp.is_success and ip:
            return ip
    except httpx.HTTPError as e:
        log.debug("public ip lookup failed: %s", e)
    return "127.0.0.1"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pharos-exporter",
        description="Pharos validator exporter: chain participation and log activity metrics",
    )
    sub = parser.add_subparsers(dest="command", metavar="command")
    start = sub.add_parser("start", help="Run the exporter")

    start.add_argument("--rpc", type=str, default=DEFAULT_RPC_URL,
                       help=f"JSON-RPC endpoint (default: {DEFAULT_RPC_URL})")
    start.add_argument("--my-bls-key", type=str, default="",
                       help="Validator BLS pubkey (0x...)")
    start.add_argument("--my-address", type=str, default="",
                       help="Validator EVM address to track balance (0x...)")
    start.add_argument("--check-block-proof", action=argparse.BooleanOptionalAction, default=True,
                       help="Check signedBlsKeys in block proofs (default: on)")
    start.add_argument("--check-validator-set", action=argparse.BooleanOptionalAction, default=True,
                       help="Check validator set membership (default: on)")
    start.add_argument("--check-propose", action=argparse.BooleanOptionalAction, default=True,
                       help="Count propose events in the log (default: on)")
    start.add_argument("--check-endorse", action=argparse.BooleanOptionalAction, default=True,
                       help="Count endorse events in the log (default: on)")
    start.add_argument("--log-path", type=str, default="",
                       help="Path to the consensus log file to tail (required)")
    start.add_argument("--log-from-start", action="store_true",
                       help="Read the log from the beginning instead of the end")
    start.add_argument("--rpc-poll-interval", type=float, default=1.0,
                       help="Seconds between latest-block polls (default: 1)")
    start.add_argument("--log-poll-interval", type=float, default=1.0,
                       help="Seconds between log reads at end of file (default: 1)")
    start.add_argument("--exporter-port", type=int, default=DEFAULT_EXPORTER_PORT,
                       help=f"Prometheus metrics HTTP port (default: {DEFAULT_EXPORTER_PORT})")
    start.add_argument("--log-level", type=str, default="INFO",
                       choices=["DEBUG", "INFO", "WARNING", "ERROR"],
                       help="Logging level (default: INFO)")
    return parser


def build_supervisor(args, metrics: MetricsState | None = None) -> Supervisor:
    """Validate configuration and construct both engines; raises ConfigError."""
    if not args.log_path:
        raise ConfigError("log-path is required")
    if metrics is None:
        metrics = MetricsState()

    poller = ChainPoller(ChainPollerConfig(
        rpc_url=args.rpc,
        bls_key=args.my_bls_key,
        address=args.my_address,
        check_block_proof=args.check_block_proof,
        check_validator_set=args.check_validator_set,
        poll_interval=args.rpc_poll_interval,
    ), metrics)
    follower = LogFollower(LogFollowerConfig(
        path=args.log_path,
        poll_interval=args.log_poll_interval,
        from_start=args.log_from_start,
        check_propose=args.check_propose,
        check_endorse=args.check_endorse,
    ), metrics)
    return Supervisor(poller, follower, metrics_port=args.exporter_port,
                      registry=metrics.registry)


# ── Async main ───────────────────────────────────────────────────────────────

async def async_main(supervisor: Supervisor, port: int):
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops; KeyboardInterrupt still reaches main().
            pass

    ip = await asyncio.to_thread(resolve_public_ip)
    log.info("Metrics exposed at http://%s:%d/metrics", ip, port)
    await supervisor.run(stop)


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, getattr(args, "log_level", "INFO")),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stderr,
    )

    if args.command is None:
        log.error("Error executing command: missing command")
        return 1

    try:
        supervisor = build_supervisor(args)
    except ConfigError as e:
        log.error("Error executing command: %s", e)
        return 1

    try:
        asyncio.run(async_main(supervisor, args.exporter_port))
    except KeyboardInterrupt:
        log.info("Interrupted by user.")
    except Exception as e:
        log.error("Error executing command: %s", e)
        return 1
    log.info("Pharos exporter stopped.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
