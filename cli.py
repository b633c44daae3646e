#!/usr/bin/env python3
"""
multisend — CLI for batch token transfers from many source keys.

Usage:
    multisend transfer --keys <path> --file <path> [--network <net>] [--dry-run]
    multisend estimate --keys <path> --file <path> [--network <net>]
    multisend validate --file <path> [--keys <path>]
    multisend check-sources --keys <path> [--network <net>]
    multisend generate-template --output <path> [--kind recipients|keys] [--format csv|json] [--count <n>]

Examples:
    # Pay every recipient in targets.csv, spreading them over the keys in keys.csv
    multisend transfer --keys keys.csv --file targets.csv --network test

    # Estimate fees before executing
    multisend estimate --keys keys.csv --file targets.csv

    # Check which source accounts are active on chain
    multisend check-sources --keys keys.csv

    # Generate a template key file
    multisend generate-template --kind keys --output keys.csv --count 3
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

import bittensor as bt
from loguru import logger

from multisend import __version__
from multisend.batch import (
    BatchMode,
    batch_transfer,
    check_sources,
    estimate_fee,
    pair_recipients,
    parse_recipients,
    validate_recipients,
)
from multisend.config import settings
from multisend.keys import key_name, parse_keypairs, validate_keypairs


def configure_logging(verbose: bool = False) -> None:
    """Send loguru output to stderr at INFO, or DEBUG when verbose."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO")


def _load_inputs(args: argparse.Namespace):
    """Parse and validate keys and recipients. Returns None on failure."""
    try:
        keys = parse_keypairs(args.keys)
    except Exception as e:
        print(f"Error parsing key file: {e}")
        return None
    try:
        recipients = parse_recipients(args.file)
    except Exception as e:
        print(f"Error parsing file: {e}")
        return None

    print(f"Loaded {len(keys)} source keys from {args.keys}")
    print(f"Loaded {len(recipients)} recipients from {args.file}")

    is_valid, errors = validate_keypairs(keys)
    r_valid, r_errors = validate_recipients(recipients)
    errors.extend(r_errors)
    if not (is_valid and r_valid):
        print("Validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return None

    return keys, recipients


def _print_plan(keys, recipients) -> None:
    for assignment in pair_recipients(keys, recipients):
        print(
            f"{assignment.wallet_name} ({assignment.source.address}) → "
            f"{len(assignment.recipients)} recipients, {assignment.total_amount:.4f} TAO"
        )
        for r in assignment.recipients:
            label = f" ({r.label})" if r.label else ""
            print(f"    {r.address} ← {r.amount:.4f} TAO{label}")


def cmd_transfer(args: argparse.Namespace) -> int:
    """Execute batch transfer."""
    inputs = _load_inputs(args)
    if inputs is None:
        return 1
    keys, recipients = inputs

    print(f"Network: {args.network}")
    print(f"Mode: {'atomic (batch_all)' if args.atomic else 'best-effort (batch)'}")
    print()

    total = sum(r.amount for r in recipients)
    print(f"Total to transfer: {total:.4f} TAO across {len(recipients)} recipients")
    _print_plan(keys, recipients)

    mode = BatchMode.BATCH_ALL if args.atomic else BatchMode.BATCH

    # Dry run
    if args.dry_run:
        print("\n[DRY RUN] Estimating fees without executing...")
        try:
            fee_est = estimate_fee(
                keys=keys,
                recipients=recipients,
                network=args.network,
                keep_alive=not args.allow_death,
                mode=mode,
            )
            print()
            print(fee_est.summary())
        except Exception as e:
            print(f"Fee estimation error: {e}")
            return 1
        return 0

    # Confirm
    if not args.yes:
        response = input(f"\nProceed with transfer of {total:.4f} TAO? [y/N]: ")
        if response.lower() not in ("y", "yes"):
            print("Aborted.")
            return 0

    print("\nExecuting batch transfer...")
    try:
        results = batch_transfer(
            keys=keys,
            recipients=recipients,
            network=args.network,
            wallet_path=args.wallet_path,
            keep_alive=not args.allow_death,
            mode=mode,
            wait_for_finalization=args.finalize,
        )
    except Exception as e:
        print(f"Error: {e}")
        return 1

    print()
    all_success = True
    for result in results:
        print(result.summary())
        print()
        if not result.success:
            all_success = False

    if all_success:
        total_transferred = sum(r.total_amount for r in results)
        total_fees = sum(r.total_fee for r in results)
        print("All batches completed successfully!")
        print(f"Total transferred: {total_transferred:.4f} TAO")
        print(f"Total network fees: {total_fees:.6f} TAO")
    else:
        failed = sum(1 for r in results if not r.success)
        print(f"WARNING: {failed}/{len(results)} batches failed!")

    return 0 if all_success else 1


def cmd_estimate(args: argparse.Namespace) -> int:
    """Estimate fees for a batch transfer."""
    inputs = _load_inputs(args)
    if inputs is None:
        return 1
    keys, recipients = inputs

    print(f"Estimating fees for {len(recipients)} recipients...")

    try:
        fee_est = estimate_fee(
            keys=keys,
            recipients=recipients,
            network=args.network,
        )
        print()
        print(fee_est.summary())
    except Exception as e:
        print(f"Error: {e}")
        return 1

    return 0 if fee_est.balance_sufficient else 1


def cmd_validate(args: argparse.Namespace) -> int:
    """Validate a recipient list, and optionally a key list."""
    try:
        recipients = parse_recipients(args.file)
    except Exception as e:
        print(f"Error parsing file: {e}")
        return 1

    print(f"Loaded {len(recipients)} recipients from {args.file}")

    is_valid, errors = validate_recipients(recipients)

    keys = None
    if args.keys:
        try:
            keys = parse_keypairs(args.keys)
        except Exception as e:
            print(f"Error parsing key file: {e}")
            return 1
        print(f"Loaded {len(keys)} source keys from {args.keys}")
        k_valid, k_errors = validate_keypairs(keys)
        is_valid = is_valid and k_valid
        errors.extend(k_errors)

    if not is_valid:
        print(f"\n✗ Found {len(errors)} validation errors:")
        for err in errors:
            print(f"  ✗ {err}")
        return 1

    total = sum(r.amount for r in recipients)
    print(f"\n✓ All {len(recipients)} recipients are valid")
    print(f"  Total amount: {total:.4f} TAO")
    print(f"  Average per recipient: {total / len(recipients):.4f} TAO")
    print(f"  Min: {min(r.amount for r in recipients):.4f} TAO")
    print(f"  Max: {max(r.amount for r in recipients):.4f} TAO")

    if keys:
        print(f"\n✓ All {len(keys)} source keys are valid\n")
        _print_plan(keys, recipients)
    else:
        print("\nPreview (first 5):")
        for r in recipients[:5]:
            label = f" ({r.label})" if r.label else ""
            print(f"  {r.address[:16]}...{r.address[-8:]} → {r.amount:.4f} TAO{label}")
        if len(recipients) > 5:
            print(f"  ... and {len(recipients) - 5} more")

    return 0


def cmd_check_sources(args: argparse.Namespace) -> int:
    """Report whether each source account is active on chain."""
    try:
        keys = parse_keypairs(args.keys)
    except Exception as e:
        print(f"Error parsing key file: {e}")
        return 1

    print(f"\nChecking source accounts on {args.network}:")
    try:
        statuses = check_sources(bt.Subtensor(network=args.network), keys)
    except Exception as e:
        print(f"Error: {e}")
        return 1

    for status in statuses:
        print(status.describe())
    print()

    inactive = [s for s in statuses if s.active is not True]
    if inactive:
        print(f"Found {len(inactive)} sources that are not active:")
        for s in inactive:
            print(f"  {key_name(s.index)} ({s.address})")
        return 1

    print("All sources are active.")
    return 0


def cmd_generate_template(args: argparse.Namespace) -> int:
    """Generate a template recipient or key file."""
    count = args.count
    output = Path(args.output)

    # Substrate development accounts, derivable from their //Name URIs
    dev_accounts = [
        ("Alice", "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"),
        ("Bob", "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"),
        ("Charlie", "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"),
        ("Dave", "5DAAnrj7VHTznn2AWBemMuyBwZWs6FNFjdyVXUeYum3PTXFy"),
        ("Eve", "5HGjWAeFDfFCWPsjFQdVV2Msvz2XtMktvgocEZcCj68kUMaw"),
    ]

    rows = []
    for i in range(count):
        name, addr = dev_accounts[i % len(dev_accounts)]
        if args.kind == "keys":
            rows.append({"address": addr, "secret": f"//{name}", "label": name})
        else:
            rows.append({
                "address": addr,
                "amount": round(1.0 + (i * 0.5), 2),
                "label": f"Recipient_{i + 1}",
            })

    fmt = args.format
    if fmt == "json":
        with open(output, "w") as f:
            json.dump(rows, f, indent=2)
    else:
        columns = list(rows[0]) if rows else ["address", "amount", "label"]
        with open(output, "w", newline="") as f:
            f.write(",".join(columns) + "\n")
            for row in rows:
                f.write(",".join(str(row[c]) for c in columns) + "\n")

    print(f"Generated {args.kind} template with {count} entries: {output}")
    print(f"Format: {fmt.upper()}")
    print("\nReplace the development accounts with your own before use,")
    print(f"then run: multisend validate --file <targets> --keys <keys>")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="multisend",
        description="multisend — batch token transfers from many source keys",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version", action="version", version=f"multisend {__version__}"
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Transfer command
    transfer_parser = subparsers.add_parser(
        "transfer", help="Execute batch transfers"
    )
    transfer_parser.add_argument(
        "--keys", "-k", required=True, help="Path to source key list (CSV or JSON)"
    )
    transfer_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list (CSV or JSON)"
    )
    transfer_parser.add_argument(
        "--network", "-n", default=settings.network,
        help=f"Bittensor network (finney, test, local). Default: {settings.network}"
    )
    transfer_parser.add_argument(
        "--wallet-path", default=settings.wallet_path,
        help=f"Directory the source keys are stored in. Default: {settings.wallet_path}"
    )
    transfer_parser.add_argument(
        "--dry-run", action="store_true",
        help="Estimate fees without executing transfers"
    )
    transfer_parser.add_argument(
        "--yes", "-y", action="store_true",
        help="Skip confirmation prompt"
    )
    transfer_parser.add_argument(
        "--atomic", action="store_true", default=True,
        help="Use batch_all (atomic — all succeed or all revert). Default: True"
    )
    transfer_parser.add_argument(
        "--best-effort", action="store_false", dest="atomic",
        help="Use batch (best-effort — individual failures don't revert others)"
    )
    transfer_parser.add_argument(
        "--allow-death", action="store_true",
        help="Allow transfers that may reduce accounts below existential deposit"
    )
    transfer_parser.add_argument(
        "--finalize", action="store_true",
        help="Wait for transaction finalization (slower but more certain)"
    )

    # Estimate command
    estimate_parser = subparsers.add_parser(
        "estimate", help="Estimate batch transfer fees"
    )
    estimate_parser.add_argument(
        "--keys", "-k", required=True, help="Path to source key list"
    )
    estimate_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list"
    )
    estimate_parser.add_argument(
        "--network", "-n", default=settings.network, help="Bittensor network"
    )

    # Validate command
    validate_parser = subparsers.add_parser(
        "validate", help="Validate a recipient list"
    )
    validate_parser.add_argument(
        "--file", "-f", required=True, help="Path to recipient list"
    )
    validate_parser.add_argument(
        "--keys", "-k", help="Path to source key list (optional)"
    )

    # Check sources command
    check_parser = subparsers.add_parser(
        "check-sources", help="Check source accounts on chain"
    )
    check_parser.add_argument(
        "--keys", "-k", required=True, help="Path to source key list"
    )
    check_parser.add_argument(
        "--network", "-n", default=settings.network, help="Bittensor network"
    )

    # Generate template command
    template_parser = subparsers.add_parser(
        "generate-template", help="Generate a template recipient or key file"
    )
    template_parser.add_argument(
        "--output", "-o", default="recipients.csv", help="Output file path"
    )
    template_parser.add_argument(
        "--kind", choices=["recipients", "keys"], default="recipients",
        help="Which list to generate"
    )
    template_parser.add_argument(
        "--format", choices=["csv", "json"], default="csv", help="File format"
    )
    template_parser.add_argument(
        "--count", "-c", type=int, default=5, help="Number of sample entries"
    )

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    configure_logging(args.verbose)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "transfer": cmd_transfer,
        "estimate": cmd_estimate,
        "validate": cmd_validate,
        "check-sources": cmd_check_sources,
        "generate-template": cmd_generate_template,
    }

    return commands[args.command](args)


if __name__ == "__main__":
    sys.exit(main())
