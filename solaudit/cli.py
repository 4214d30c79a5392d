"""Command line entry point: clusters, live monitoring, history scans and safe-mode attacks."""
from __future__ import annotations

import argparse
import asyncio
import contextlib
import functools
import logging
from pathlib import Path
from typing import Dict, List, Tuple

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from . import config
from .environment import SecurityTestEnvironment
from .models import Alert, AttackSimulationResult, HistoricalSummary
from .monitor import ALERT, LiveLogMonitor
from .reporting import (
    alerts_frame,
    attack_frame,
    historical_frame,
    stats_frame,
    write_frame,
    write_report,
)
from .rpc import RpcSignatureSource, RpcSimulationEndpoint, WebsocketSubscriptionSource, build_client
from .safe_mode import create_safe_tester
from .scenarios import DUMMY_ACCOUNTS_NEEDED, SCENARIOS, build_scenario


def target_programs(args: argparse.Namespace) -> List[str]:
    """Programs named with --program, or every configured program id."""
    return args.program or list(config.program_ids().values())


def cmd_clusters(args: argparse.Namespace) -> None:
    """Print the known clusters, marking the active one."""
    active = config.resolve_cluster()
    for cluster in config.available_clusters():
        marker = "*" if cluster.name == active.name and not active.is_custom else " "
        print(f"{marker} {cluster.name:<13} {cluster.endpoint}  ({cluster.label})")
    if active.is_custom:
        print(f"* {active.label}: {active.endpoint}")


async def run_monitor(args: argparse.Namespace) -> None:
    """Watch the target programs for --duration seconds, then write alerts and stats CSVs."""
    cluster = config.resolve_cluster()
    source = WebsocketSubscriptionSource(cluster.websocket_endpoint)
    monitor = LiveLogMonitor(source)
    alerts_queue = monitor.channel.subscribe([ALERT])

    await monitor.start(target_programs(args))
    listener = asyncio.ensure_future(source.listen())
    try:
        await asyncio.sleep(args.duration)
    finally:
        await monitor.stop()
        listener.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await listener
        await source.close()

    alerts: List[Alert] = []
    while not alerts_queue.empty():
        alerts.append(alerts_queue.get_nowait().payload)

    monitor.report_stats()
    write_frame(alerts_frame(alerts), args.output_dir / "alerts.csv")
    write_frame(stats_frame(monitor.stats), args.output_dir / "monitoring_stats.csv")


async def run_history(args: argparse.Namespace) -> None:
    """Summarise recent failed transactions for each target program."""
    cluster = config.resolve_cluster()
    client = build_client(cluster)
    monitor = LiveLogMonitor(source=None, signatures=RpcSignatureSource(client))
    summaries: Dict[str, HistoricalSummary] = {}
    try:
        for program in target_programs(args):
            summary = await monitor.analyze_historical_transactions(program, args.limit)
            logging.info(
                "%s: %d failed transactions, patterns: %s",
                program,
                summary.suspicious_count,
                ", ".join(summary.patterns) or "none",
            )
            summaries[program] = summary
    finally:
        await client.close()

    if args.output:
        write_frame(historical_frame(summaries), args.output)


async def run_attack(args: argparse.Namespace) -> None:
    """Run every stock scenario against each target program in safe mode."""
    cluster = config.resolve_cluster()
    client = build_client(cluster) if args.simulate or args.fund_attacker else None
    endpoint = RpcSimulationEndpoint(client) if args.simulate else None
    tester = create_safe_tester(endpoint, dry_run=not (args.simulate or args.log_only), log_only=args.log_only)
    dummies = SecurityTestEnvironment.create_dummy_accounts(DUMMY_ACCOUNTS_NEEDED)
    results: List[Tuple[str, str, AttackSimulationResult]] = []

    try:
        if args.fund_attacker:
            attacker = (await SecurityTestEnvironment(client).create_malicious_wallet()).pubkey
        else:
            attacker = Keypair().pubkey()

        for program in target_programs(args):
            program_id = Pubkey.from_string(program)
            for scenario in args.scenario or list(SCENARIOS):
                builder = functools.partial(build_scenario, scenario, program_id, attacker, dummies)
                result = await tester.simulate_attack(scenario, builder)
                logging.info(
                    "%s %s: %s (%s)", program[:8], scenario, result.status.value, result.reason or "no reason"
                )
                results.append((program, scenario, result))
    finally:
        if client is not None:
            await client.close()

    write_report(tester.generate_report(), args.report)
    if args.output:
        write_frame(attack_frame(results), args.output)


async def run_setup_env(args: argparse.Namespace) -> None:
    """Fund test wallets and create test mints on the configured cluster."""
    cluster = config.resolve_cluster()
    client = build_client(cluster)
    try:
        env = await SecurityTestEnvironment(client).setup()
    finally:
        await client.close()

    for wallet in (env.admin, env.attacker, env.victim):
        logging.info("%s wallet: %s", wallet.name, wallet.pubkey)
    logging.info("Mints: primary=%s rewards=%s", env.tokens.primary_mint.pubkey, env.tokens.rewards_mint.pubkey)


def cmd_monitor(args: argparse.Namespace) -> None:
    asyncio.run(run_monitor(args))


def cmd_history(args: argparse.Namespace) -> None:
    asyncio.run(run_history(args))


def cmd_attack(args: argparse.Namespace) -> None:
    asyncio.run(run_attack(args))


def cmd_setup_env(args: argparse.Namespace) -> None:
    asyncio.run(run_setup_env(args))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Solana program security auditing tools")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    clusters = sub.add_parser("clusters", help="List known clusters and the active one")
    clusters.set_defaults(func=cmd_clusters)

    monitor = sub.add_parser("monitor", help="Watch program logs and account changes")
    monitor.add_argument("--program", action="append", help="Program id (repeatable); defaults to configured ids")
    monitor.add_argument("--duration", type=float, default=60.0, help="Seconds to monitor")
    monitor.add_argument("--output-dir", type=Path, default=Path("reports"), help="Directory for CSV output")
    monitor.set_defaults(func=cmd_monitor)

    history = sub.add_parser("history", help="Scan recent signatures for failed attack attempts")
    history.add_argument("--program", action="append", help="Program id (repeatable); defaults to configured ids")
    history.add_argument("--limit", type=int, default=config.HISTORY_LIMIT, help="Signatures per program")
    history.add_argument("--output", type=Path, help="Optional CSV path for the summary")
    history.set_defaults(func=cmd_history)

    attack = sub.add_parser("attack", help="Run the stock attack scenarios in safe mode (dry run by default)")
    attack.add_argument("--program", action="append", help="Program id (repeatable); defaults to configured ids")
    attack.add_argument(
        "--scenario", action="append", choices=list(SCENARIOS), help="Scenario (repeatable); defaults to all"
    )
    mode = attack.add_mutually_exclusive_group()
    mode.add_argument("--log-only", action="store_true", help="Only log the instructions")
    mode.add_argument("--simulate", action="store_true", help="Run simulateTransaction on the cluster")
    attack.add_argument("--fund-attacker", action="store_true", help="Airdrop 1 SOL to a fresh attacker wallet first")
    attack.add_argument("--report", type=Path, default=Path("reports/attack_report.md"), help="Markdown report path")
    attack.add_argument("--output", type=Path, help="Optional CSV path for per-scenario results")
    attack.set_defaults(func=cmd_attack)

    setup_env = sub.add_parser("setup-env", help="Create funded test wallets and token mints")
    setup_env.set_defaults(func=cmd_setup_env)

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
