"""
Source keypairs for multisend.

Each source is an ss58 address plus the secret it is derived from. Before any
transfer is signed the keypairs are stored in on-disk SDK wallets named
``key-0``, ``key-1``, ... so the SDK can sign with them.
"""

from __future__ import annotations

import csv
import json
import re
from dataclasses import dataclass
from pathlib import Path

import bittensor as bt
from bittensor.utils import is_valid_bittensor_address_or_public_key
from bittensor_wallet.keypair import Keypair
from loguru import logger

from multisend.config import KEY_NAME_FORMAT

_HEX_SEED = re.compile(r"^0x[0-9a-fA-F]{64}$")


@dataclass
class SourceKey:
    """A source account and the secret that controls it."""

    address: str
    secret: str  # mnemonic, 0x hex seed or //URI
    label: str = ""

    def __repr__(self) -> str:
        # never print secrets
        return f"SourceKey(address={self.address!r}, label={self.label!r})"

    def derive(self) -> Keypair:
        return derive_keypair(self.secret)

    def validate(self) -> list[str]:
        """Validate this key. Returns list of error strings."""
        errors = []
        if not is_valid_bittensor_address_or_public_key(self.address):
            errors.append(f"Invalid ss58 address: {self.address}")
            return errors
        try:
            keypair = self.derive()
        except Exception as e:
            errors.append(f"Cannot derive keypair: {e}")
            return errors
        if keypair.ss58_address != self.address:
            errors.append(
                f"Secret derives {keypair.ss58_address}, not {self.address}"
            )
        return errors


def key_name(index: int) -> str:
    """Wallet name the source key at ``index`` is stored under."""
    return KEY_NAME_FORMAT.format(index)


def derive_keypair(secret: str) -> Keypair:
    """
    Build a Keypair from a secret string.

    Accepted forms:
        - BIP39 mnemonic (words separated by whitespace)
        - development URI, e.g. ``//Alice``
        - 32-byte hex seed with ``0x`` prefix
    """
    secret = secret.strip()
    if not secret:
        raise ValueError("empty secret")
    if len(secret.split()) > 1:
        return Keypair.create_from_mnemonic(" ".join(secret.split()))
    if secret.startswith("//"):
        return Keypair.create_from_uri(secret)
    if _HEX_SEED.match(secret):
        return Keypair.create_from_seed(secret)
    raise ValueError("unrecognized secret format (expected mnemonic, //URI or 0x seed)")


def parse_keypairs_csv(filepath: str | Path) -> list[SourceKey]:
    """
    Parse a CSV file of source keys.

    Expected format:
        address,secret[,label]
        5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY,//Alice,treasury
    """
    keys = []
    filepath = Path(filepath)

    with open(filepath, "r", newline="") as f:
        reader = csv.DictReader(f)
        if reader.fieldnames is None:
            raise ValueError("CSV file is empty or has no headers")

        headers = {h.strip().lower() for h in reader.fieldnames if h}
        if "address" not in headers or not headers & {"secret", "mnemonic"}:
            raise ValueError("CSV must have 'address' and 'secret' columns")

        for row_num, row in enumerate(reader, start=2):
            normalized = {
                k.strip().lower(): (v or "").strip()
                for k, v in row.items()
                if k is not None
            }

            address = normalized.get("address", "")
            secret = normalized.get("secret", normalized.get("mnemonic", ""))
            label = normalized.get("label", normalized.get("name", ""))

            if not address:
                raise ValueError(f"Row {row_num}: missing address")
            if not secret:
                raise ValueError(f"Row {row_num}: missing secret")

            keys.append(SourceKey(address=address, secret=secret, label=label))

    return keys


def parse_keypairs_json(filepath: str | Path) -> list[SourceKey]:
    """
    Parse a JSON file of source keys.

    Expected format:
        [{"address": "5Grwv...", "secret": "//Alice", "label": "treasury"}]
    """
    with open(Path(filepath), "r") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise ValueError("JSON must contain a list of key objects")

    keys = []
    for i, entry in enumerate(data):
        if not isinstance(entry, dict):
            raise ValueError(f"Entry {i}: must be an object")
        if "address" not in entry:
            raise ValueError(f"Entry {i}: missing 'address' field")
        if "secret" not in entry:
            raise ValueError(f"Entry {i}: missing 'secret' field")

        keys.append(SourceKey(
            address=str(entry["address"]),
            secret=str(entry["secret"]),
            label=str(entry.get("label", "")),
        ))

    return keys


def parse_keypairs(filepath: str | Path) -> list[SourceKey]:
    """Auto-detect file format and parse source keys."""
    filepath = Path(filepath)
    if filepath.suffix.lower() == ".json":
        return parse_keypairs_json(filepath)
    return parse_keypairs_csv(filepath)


def validate_keypairs(keys: list[SourceKey]) -> tuple[bool, list[str]]:
    """
    Validate all source keys. Returns (is_valid, list_of_errors).
    """
    errors = []
    if not keys:
        return False, ["No source keys given"]

    seen_addresses = {}
    for i, key in enumerate(keys):
        for err in key.validate():
            errors.append(f"Key {i} ({key.label or key.address[:12]}...): {err}")
        if key.address in seen_addresses:
            errors.append(
                f"Duplicate source address at keys {seen_addresses[key.address]} and {i}"
            )
        seen_addresses[key.address] = i

    return len(errors) == 0, errors


def load_keys(keys: list[SourceKey], wallet_path: str) -> list[bt.Wallet]:
    """
    Store every source keypair in an on-disk wallet so the SDK can sign with it.

    Wallet ``key-<idx>`` holds the keypair of ``keys[idx]`` as an unencrypted
    coldkey. Existing wallets with the same name are overwritten.
    """
    wallets = []
    for idx, key in enumerate(keys):
        keypair = key.derive()
        wallet = bt.Wallet(name=key_name(idx), path=wallet_path)
        wallet.set_coldkey(keypair, encrypt=False, overwrite=True)
        wallet.set_coldkeypub(keypair, overwrite=True)
        logger.debug(f"Stored {keypair.ss58_address} as {key_name(idx)} in {wallet_path}")
        wallets.append(wallet)
    logger.info(f"Loaded {len(wallets)} source keys into {wallet_path}")
    return wallets
