#!/usr/bin/env python3
"""
Redeem resolved Polymarket positions held by a Safe proxy wallet.

Each condition id is redeemed through a Safe transaction, either executed
directly by the owner key (pays POL gas) or handed to the builder relayer
(gasless). Runs are dry-run by default: the Safe call is only simulated.

Usage:
    # Simulate redemption of one market
    uv run python redeem.py --condition-id 0x1234...

    # Execute redemption of several markets from a JSON file
    uv run python redeem.py --file resolved.json --execute

    # Force the relayer and wait for relayer transactions to settle
    uv run python redeem.py -f resolved.json --execute --mode relayer --wait

The JSON file holds a list of {"conditionId": ..., "collateralToken": ...}
objects (collateralToken defaults to USDC.e).

Required environment variables:
    WALLET_PRIVATE_KEY: Safe owner private key
    POLYMARKET_WALLET_ADDRESS: Safe proxy address
    POLYGON_RPC_URLS: Comma-separated RPC endpoints (optional, defaults to public RPCs)
    POLYMARKET_BUILDER_API_KEY / _SECRET / _PASSPHRASE: for relayer mode
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from saferedeem.config.settings import HASH_MODES, SUBMISSION_MODES, get_settings
from saferedeem.redeem.classify import truncate
from saferedeem.redeem.errors import RedemptionError
from saferedeem.redeem.factory import create_engine
from saferedeem.redeem.models import Outcome, RedemptionCandidate, RunReport
from saferedeem.redeem.relayer_client import SUCCESS_STATES
from saferedeem.redeem.submission import RelayerSubmitter


def setup_logging(debug: bool = False, level_name: str = "INFO") -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(message)s",
        datefmt="%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("web3").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def load_candidates(condition_ids: list[str], path: str | None) -> list[RedemptionCandidate]:
    """Build candidates from command-line ids and an optional JSON file."""
    candidates = [RedemptionCandidate(condition_id=cid) for cid in condition_ids]
    if path:
        records = json.loads(Path(path).read_text())
        candidates.extend(RedemptionCandidate.from_dict(record) for record in records)
    return candidates


def print_report(report: RunReport) -> None:
    """Print per-candidate outcomes and the batch tally."""
    counts = report.counts()

    print(f"\n{'=' * 60}")
    print("REDEMPTION SUMMARY")
    print(f"{'=' * 60}")
    print(f"Strategy:        {report.strategy}")
    print(f"RPC:             {report.endpoint}")
    print(f"Total processed: {len(report.results)}")
    print(f"Successful:      {counts[Outcome.SUCCESS]}")
    print(f"Skipped:         {counts[Outcome.SKIPPED]}")
    print(f"Retryable:       {counts[Outcome.RETRYABLE]}")
    print(f"Failed:          {counts[Outcome.FAILED]}")
    print(f"Redeemed:        ${report.redeemed_amount:.2f}")
    if not report.balance_consistent:
        print("WARNING:         collateral balance DECREASED during the run")

    for result in report.results:
        print(f"  {result.candidate.condition_id[:20]}... {result.outcome.value} {result.detail}")

    print(f"{'=' * 60}\n")


def wait_for_relayer(report: RunReport, submitter: RelayerSubmitter) -> None:
    """Poll relayer transaction ids until they settle."""
    for result in report.results:
        if result.outcome is not Outcome.SUCCESS or not result.submission:
            continue
        tx_id = result.submission.tx_id
        if not tx_id:
            continue
        record = submitter.client.wait_for_transaction(tx_id)
        state = record.get("state")
        tx_hash = record.get("transactionHash") or ""
        marker = "OK" if state in SUCCESS_STATES else "PENDING/FAILED"
        print(f"  {tx_id} {state} {tx_hash} {marker}")


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Redeem resolved Polymarket positions through a Safe",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--condition-id",
        "-c",
        action="append",
        default=[],
        help="Condition ID of a resolved market (repeatable)",
    )
    parser.add_argument(
        "--file",
        "-f",
        help="JSON file with resolved markets",
    )
    parser.add_argument(
        "--execute",
        "-x",
        action="store_true",
        help="Execute redemption (default is dry-run)",
    )
    parser.add_argument(
        "--mode",
        choices=SUBMISSION_MODES,
        default=None,
        help="Submission mode (auto-detects relayer if Builder API credentials available)",
    )
    parser.add_argument(
        "--hash",
        dest="hash_mode",
        choices=HASH_MODES,
        default=None,
        help="Compute the Safe hash locally or via getTransactionHash",
    )
    parser.add_argument(
        "--wait",
        action="store_true",
        help="Poll relayer transactions until they settle",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()
    settings = get_settings()
    setup_logging(args.debug, settings.log_level)

    if not settings.has_web3_credentials:
        print("ERROR: WALLET_PRIVATE_KEY environment variable is required.")
        sys.exit(1)

    try:
        candidates = load_candidates(args.condition_id, args.file)
    except (OSError, ValueError) as e:
        print(f"ERROR: Invalid candidates: {e}")
        sys.exit(1)

    if not candidates:
        print("Nothing to redeem. Pass --condition-id or --file.")
        return

    try:
        engine = create_engine(
            settings, execute=args.execute, mode=args.mode, hash_mode=args.hash_mode
        )
    except ValueError as e:
        print(f"ERROR: Failed to initialize redeemer: {e}")
        sys.exit(1)

    with engine:
        if not args.execute:
            print("[DRY RUN] Simulating only. Add --execute to redeem.\n")
        try:
            report = engine.run(candidates)
        except RedemptionError as e:
            print(f"FATAL: {truncate(str(e))}")
            sys.exit(1)

        print_report(report)

        if args.wait and isinstance(engine.strategy, RelayerSubmitter):
            print("Waiting for relayer transactions...")
            try:
                wait_for_relayer(report, engine.strategy)
            except RedemptionError as e:
                print(f"ERROR: Relayer polling failed: {truncate(str(e))}")


if __name__ == "__main__":
    main()
