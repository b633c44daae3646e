"""
Core batch transfer logic for multisend.

Transfer targets are paired round-robin with the source keys: target ``i`` is
paid by source ``i % len(keys)``. Every source then submits its share as one
or more Substrate ``utility.batch_all`` (atomic) or ``utility.batch``
(best-effort) extrinsics, signed with its own key.

Submissions run one after another. A failed submission is recorded in its
BatchResult and the run moves on to the next one.
"""

from __future__ import annotations

import csv
import json
import math
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

import bittensor as bt
from bittensor.core.extrinsics.pallets import Balances
from bittensor.utils import is_valid_bittensor_address_or_public_key
from bittensor.utils.balance import Balance
from loguru import logger

from multisend.config import settings
from multisend.keys import SourceKey, key_name, load_keys, validate_keypairs


class BatchMode(Enum):
    """Batch execution modes."""

    BATCH_ALL = "batch_all"  # Atomic — all succeed or all revert
    BATCH = "batch"  # Best-effort — failures don't revert others


@dataclass
class Recipient:
    """A single transfer target."""

    address: str
    amount: float  # in TAO
    label: str = ""

    def validate(self) -> list[str]:
        """Validate this recipient. Returns list of error strings."""
        errors = []
        if not is_valid_bittensor_address_or_public_key(self.address):
            errors.append(f"Invalid ss58 address: {self.address}")
        if not math.isfinite(self.amount):
            errors.append(f"Amount must be a finite number, got {self.amount}")
        elif self.amount <= 0:
            errors.append(f"Amount must be positive, got {self.amount}")
        elif self.amount < settings.min_transfer_tao:
            errors.append(
                f"Amount {self.amount} TAO below minimum {settings.min_transfer_tao} TAO"
            )
        return errors

    @property
    def amount_rao(self) -> int:
        """Amount in RAO (1 TAO = 1e9 RAO)."""
        return Balance.from_tao(self.amount).rao


@dataclass
class Assignment:
    """The recipients one source key pays."""

    index: int
    source: SourceKey
    recipients: list[Recipient] = field(default_factory=list)

    @property
    def wallet_name(self) -> str:
        return key_name(self.index)

    @property
    def total_amount(self) -> float:
        return sum(r.amount for r in self.recipients)


@dataclass
class SourceStatus:
    """On-chain state of a source account before transferring."""

    index: int
    address: str
    balance: Optional[float] = None  # in TAO
    active: Optional[bool] = None  # None when the query failed
    error: Optional[str] = None

    def describe(self) -> str:
        if self.error is not None:
            return f"Source {self.index} ({self.address}): Error checking status - {self.error}"
        state = "ACTIVE" if self.active else "NOT ACTIVE"
        return f"Source {self.index} ({self.address}): {state}, balance {self.balance:.4f} TAO"


@dataclass
class BatchResult:
    """Result of a single batch submission."""

    success: bool
    message: str
    source_address: Optional[str] = None
    block_hash: Optional[str] = None
    extrinsic_hash: Optional[str] = None
    total_amount: float = 0.0
    total_fee: float = 0.0  # network fee
    recipient_count: int = 0
    duration_seconds: float = 0.0

    def summary(self) -> str:
        """Human-readable summary of the batch result."""
        status = "SUCCESS" if self.success else "FAILED"
        lines = [f"=== Batch Transfer — {status} ==="]
        if self.source_address:
            lines.append(f"Source: {self.source_address}")
        lines.extend([
            f"Recipients: {self.recipient_count}",
            f"Total amount: {self.total_amount:.4f} TAO",
            f"Network fee: {self.total_fee:.6f} TAO",
            f"Duration: {self.duration_seconds:.1f}s",
        ])
        if self.block_hash:
            lines.append(f"Block hash: {self.block_hash}")
        if self.extrinsic_hash:
            lines.append(f"Tx hash: {self.extrinsic_hash}")
        if not self.success:
            lines.append(f"Error: {self.message}")
        return "\n".join(lines)


@dataclass
class FeeEstimate:
    """Fee estimate for a batch transfer."""

    estimated_fee: float  # network fee in TAO, all sources
    total_amount: float  # in TAO (to recipients)
    total_cost: float  # amount + network fee
    recipient_count: int
    source_count: int
    batch_count: int  # number of batch transactions needed
    insufficient_sources: list[str] = field(default_factory=list)

    @property
    def balance_sufficient(self) -> bool:
        return not self.insufficient_sources

    def summary(self) -> str:
        """Human-readable fee estimate."""
        status = "SUFFICIENT" if self.balance_sufficient else "INSUFFICIENT"
        lines = [
            "=== Fee Estimate ===",
            f"Recipients: {self.recipient_count}",
            f"Sources: {self.source_count}",
            f"Batch transactions needed: {self.batch_count}",
            f"Total transfer amount: {self.total_amount:.4f} TAO",
            f"Network fee (est.): {self.estimated_fee:.6f} TAO",
            f"Total cost: {self.total_cost:.6f} TAO",
            f"Balances: {status}",
        ]
        for address in self.insufficient_sources:
            lines.append(f"  insufficient: {address}")
        return "\n".join(lines)


def parse_recipients_csv(filepath: str | Path) -> list[Recipient]:
    """
    Parse a CSV file of recipients.

    Expected format:
        address,amount[,label]
        5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty,10.5,Alice
        5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY,5.0,Bob
    """
    recipients = []
    filepath = Path(filepath)

    with open(filepath, "r", newline="") as f:
        reader = csv.DictReader(f)

        if reader.fieldnames is None:
            raise ValueError("CSV file is empty or has no headers")

        headers = {h.strip().lower() for h in reader.fieldnames if h}
        if not {"address", "amount"} <= headers:
            raise ValueError("CSV must have 'address' and 'amount' columns")

        for row_num, row in enumerate(reader, start=2):
            # Normalize keys
            normalized = {
                k.strip().lower(): (v or "").strip()
                for k, v in row.items()
                if k is not None
            }

            address = normalized.get("address", "")
            amount_str = normalized.get("amount", "0")
            label = normalized.get("label", normalized.get("name", ""))

            if not address:
                raise ValueError(f"Row {row_num}: missing address")

            try:
                amount = float(amount_str)
            except ValueError:
                raise ValueError(
                    f"Row {row_num}: invalid amount '{amount_str}'"
                )

            recipients.append(Recipient(
                address=address,
                amount=amount,
                label=label,
            ))

    return recipients


def parse_recipients_json(filepath: str | Path) -> list[Recipient]:
    """
    Parse a JSON file of recipients.

    Expected format:
        [
            {"address": "5FHne...", "amount": 10.5, "label": "Alice"},
            {"address": "5Grwv...", "amount": 5.0}
        ]
    """
    filepath = Path(filepath)
    with open(filepath, "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON must contain a list of recipient objects")

    recipients = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Entry {i}: must be an object")
        if "address" not in entry:
            raise ValueError(f"Entry {i}: missing 'address' field")
        if "amount" not in entry:
            raise ValueError(f"Entry {i}: missing 'amount' field")

        try:
            amount = float(entry["amount"])
        except (TypeError, ValueError):
            raise ValueError(f"Entry {i}: invalid amount {entry['amount']!r}")

        recipients.append(Recipient(
            address=str(entry["address"]),
            amount=amount,
            label=str(entry.get("label", "")),
        ))

    return recipients


def parse_recipients(filepath: str | Path) -> list[Recipient]:
    """Auto-detect file format and parse recipients."""
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    if suffix == ".json":
        return parse_recipients_json(filepath)
    elif suffix in (".csv", ".tsv", ".txt"):
        return parse_recipients_csv(filepath)
    else:
        # Try CSV first, then JSON
        try:
            return parse_recipients_csv(filepath)
        except (ValueError, csv.Error):
            return parse_recipients_json(filepath)


def validate_recipients(recipients: list[Recipient]) -> tuple[bool, list[str]]:
    """
    Validate all recipients. Returns (is_valid, list_of_errors).
    Also checks for duplicate addresses.
    """
    errors = []
    if not recipients:
        return False, ["No recipients given"]

    seen_addresses = {}
    for i, r in enumerate(recipients):
        for err in r.validate():
            errors.append(f"Recipient {i + 1} ({r.label or r.address[:12]}...): {err}")

        if r.address in seen_addresses:
            prev = seen_addresses[r.address]
            errors.append(
                f"Duplicate address at positions {prev + 1} and {i + 1}: {r.address[:16]}..."
            )
        seen_addresses[r.address] = i

    return len(errors) == 0, errors


def pair_recipients(
    keys: list[SourceKey], recipients: list[Recipient]
) -> list[Assignment]:
    """
    Pair recipients with source keys round-robin.

    Recipient ``i`` is paid by ``keys[i % len(keys)]``. Keys left without any
    recipient are not returned.
    """
    if not keys:
        raise ValueError("At least one source key is required")

    assignments = [Assignment(index=i, source=key) for i, key in enumerate(keys)]
    for i, r in enumerate(recipients):
        assignments[i % len(keys)].recipients.append(r)
    return [a for a in assignments if a.recipients]


def chunk_recipients(
    recipients: list[Recipient], max_size: Optional[int] = None
) -> list[list[Recipient]]:
    """Split recipients into chunks for batch processing."""
    if max_size is None:
        max_size = settings.max_batch_size
    if max_size < 1:
        raise ValueError(f"Batch size must be positive, got {max_size}")
    return [
        recipients[i: i + max_size]
        for i in range(0, len(recipients), max_size)
    ]


def check_sources(subtensor: bt.Subtensor, keys: list[SourceKey]) -> list[SourceStatus]:
    """
    Check every source account on chain.

    A source is active when its free balance reaches the existential deposit.
    Query errors are recorded per source and do not stop the check.
    """
    existential_deposit = subtensor.get_existential_deposit()
    if existential_deposit is None:
        raise RuntimeError("Unable to retrieve existential deposit amount.")

    statuses = []
    for idx, key in enumerate(keys):
        status = SourceStatus(index=idx, address=key.address)
        try:
            balance = subtensor.get_balance(key.address)
            status.balance = balance.tao
            status.active = balance.rao > 0 and balance.rao >= existential_deposit.rao
        except Exception as e:
            logger.warning(f"Status query failed for {key.address}: {e}")
            status.error = str(e)
        logger.debug(status.describe())
        statuses.append(status)

    return statuses


def _build_batch_call(
    subtensor: bt.Subtensor,
    recipients: list[Recipient],
    keep_alive: bool = True,
    mode: BatchMode = BatchMode.BATCH_ALL,
):
    """
    Build a utility.batch_all or utility.batch call containing
    one balance transfer per recipient.
    """
    balances = Balances(subtensor)
    transfer_fn = "transfer_keep_alive" if keep_alive else "transfer_allow_death"

    calls = []
    for r in recipients:
        call = getattr(balances, transfer_fn)(
            dest=r.address,
            value=r.amount_rao,
        )
        calls.append(call)

    return subtensor.compose_call(
        call_module="Utility",
        call_function=mode.value,
        call_params={"calls": calls},
    )


def _extrinsic_hash(response) -> Optional[str]:
    extrinsic_hash = getattr(response, "extrinsic_hash", None)
    if extrinsic_hash is None:
        receipt = getattr(response, "extrinsic_receipt", None)
        extrinsic_hash = getattr(receipt, "extrinsic_hash", None)
    return extrinsic_hash


def _transaction_fee(response) -> float:
    fee = getattr(response, "transaction_tao_fee", None)
    if fee is None:
        return 0.0
    if isinstance(fee, Balance):
        return fee.tao
    return float(fee)


def estimate_fee(
    keys: list[SourceKey],
    recipients: list[Recipient],
    network: Optional[str] = None,
    keep_alive: bool = True,
    mode: BatchMode = BatchMode.BATCH_ALL,
    subtensor: Optional[bt.Subtensor] = None,
) -> FeeEstimate:
    """
    Estimate the fee for a batch transfer without executing it.

    The first batch of each source is priced by the node and taken as
    representative for that source's remaining batches.
    """
    if subtensor is None:
        subtensor = bt.Subtensor(network=network or settings.network)

    assignments = pair_recipients(keys, recipients)
    total_network_fee = 0.0
    batch_count = 0
    insufficient = []

    for assignment in assignments:
        chunks = chunk_recipients(assignment.recipients)
        keypair = assignment.source.derive()
        sample_call = _build_batch_call(subtensor, chunks[0], keep_alive, mode)

        fee_info = subtensor.substrate.get_payment_info(
            call=sample_call,
            keypair=keypair,
        )
        fee_per_batch = Balance.from_rao(fee_info["partial_fee"]).tao if fee_info else 0.001
        source_fee = fee_per_batch * len(chunks)
        logger.debug(
            f"{assignment.wallet_name}: {len(chunks)} batches, ~{source_fee:.6f} TAO fee"
        )

        balance = subtensor.get_balance(assignment.source.address).tao
        if balance < assignment.total_amount + source_fee:
            insufficient.append(assignment.source.address)

        total_network_fee += source_fee
        batch_count += len(chunks)

    total_amount = sum(r.amount for r in recipients)
    return FeeEstimate(
        estimated_fee=total_network_fee,
        total_amount=total_amount,
        total_cost=total_amount + total_network_fee,
        recipient_count=len(recipients),
        source_count=len(assignments),
        batch_count=batch_count,
        insufficient_sources=insufficient,
    )


def batch_transfer(
    keys: list[SourceKey],
    recipients: list[Recipient],
    network: Optional[str] = None,
    wallet_path: Optional[str] = None,
    keep_alive: bool = True,
    mode: BatchMode = BatchMode.BATCH_ALL,
    wait_for_inclusion: bool = True,
    wait_for_finalization: bool = False,
    subtensor: Optional[bt.Subtensor] = None,
) -> list[BatchResult]:
    """
    Execute batch TAO transfers from several source keys.

    Parameters:
        keys: Source keys; each one signs the batches paying its recipients.
        recipients: Transfer targets, paired round-robin with ``keys``.
        network: Bittensor network ('finney' for mainnet, 'test' for testnet).
        wallet_path: Directory the source keys are stored in before signing.
        keep_alive: If True, use transfer_keep_alive to protect existential deposits.
        mode: BATCH_ALL (atomic) or BATCH (best-effort).
        wait_for_inclusion: Wait for the transaction to be included in a block.
        wait_for_finalization: Wait for the transaction to be finalized.

    Returns:
        List of BatchResult objects, one per submitted (or skipped) batch.
    """
    is_valid, errors = validate_keypairs(keys)
    r_valid, r_errors = validate_recipients(recipients)
    errors.extend(r_errors)
    if not (is_valid and r_valid):
        return [BatchResult(
            success=False,
            message=f"Validation failed with {len(errors)} errors:\n" + "\n".join(errors),
            recipient_count=len(recipients),
        )]

    if subtensor is None:
        subtensor = bt.Subtensor(network=network or settings.network)
    wallets = load_keys(keys, wallet_path or settings.wallet_path)

    statuses = check_sources(subtensor, keys)
    for status in statuses:
        logger.info(status.describe())

    results = []
    for assignment in pair_recipients(keys, recipients):
        source = assignment.source
        status = statuses[assignment.index]
        chunks = chunk_recipients(assignment.recipients)

        if status.active is False:
            results.append(BatchResult(
                success=False,
                message=f"Skipped: source {source.address} is not active on chain",
                source_address=source.address,
                total_amount=assignment.total_amount,
                recipient_count=len(assignment.recipients),
            ))
            continue

        if status.balance is not None and status.balance < assignment.total_amount:
            results.append(BatchResult(
                success=False,
                message=(
                    f"Insufficient balance: {status.balance:.4f} TAO available, "
                    f"but {assignment.total_amount:.4f} TAO needed."
                ),
                source_address=source.address,
                total_amount=assignment.total_amount,
                recipient_count=len(assignment.recipients),
            ))
            continue

        wallet = wallets[assignment.index]
        for chunk_idx, chunk in enumerate(chunks):
            start_time = time.time()
            chunk_amount = sum(r.amount for r in chunk)
            label = f"{assignment.wallet_name} batch {chunk_idx + 1}/{len(chunks)}"
            logger.info(f"Submitting {label}: {len(chunk)} transfers, {chunk_amount:.4f} TAO")

            try:
                batch_call = _build_batch_call(subtensor, chunk, keep_alive, mode)

                response = subtensor.sign_and_send_extrinsic(
                    call=batch_call,
                    wallet=wallet,
                    wait_for_inclusion=wait_for_inclusion,
                    wait_for_finalization=wait_for_finalization,
                )

                duration = time.time() - start_time

                if response.success:
                    result = BatchResult(
                        success=True,
                        message=f"{label} completed successfully",
                        source_address=source.address,
                        block_hash=subtensor.get_block_hash(),
                        extrinsic_hash=_extrinsic_hash(response),
                        total_amount=chunk_amount,
                        total_fee=_transaction_fee(response),
                        recipient_count=len(chunk),
                        duration_seconds=duration,
                    )
                    logger.info(f"{label} applied, tx hash {result.extrinsic_hash}")
                else:
                    result = BatchResult(
                        success=False,
                        message=f"{label} failed: {response.message}",
                        source_address=source.address,
                        total_amount=chunk_amount,
                        recipient_count=len(chunk),
                        duration_seconds=duration,
                    )
                    logger.error(result.message)

            except Exception as e:
                duration = time.time() - start_time
                result = BatchResult(
                    success=False,
                    message=f"{label} exception: {str(e)}",
                    source_address=source.address,
                    total_amount=chunk_amount,
                    recipient_count=len(chunk),
                    duration_seconds=duration,
                )
                logger.error(result.message)

            results.append(result)

    return results
