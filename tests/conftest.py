"""Pytest configuration and fixtures for multisend tests."""

from unittest.mock import MagicMock

import pytest
from bittensor.utils.balance import Balance

from multisend.batch import Recipient
from multisend.keys import SourceKey


ALICE = "5GrwvaEF5zXb26Fz9rcQpDWS57CtERHpNehXCPcNoHGKutQY"
BOB = "5FHneW46xGXgs5mUiveU4sbTyGBzmstUspZC92UhjJM694ty"
CHARLIE = "5FLSigC9HGRKVhB9FiEo4Y3koPsNmBmLJbpXg2mp1hXcS59Y"
DAVE = "5DAAnrj7VHTznn2AWBemMuyBwZWs6FNFjdyVXUeYum3PTXFy"
EVE = "5HGjWAeFDfFCWPsjFQdVV2Msvz2XtMktvgocEZcCj68kUMaw"


@pytest.fixture
def source_keys():
    """Two development source keys."""
    return [
        SourceKey(address=ALICE, secret="//Alice", label="alice"),
        SourceKey(address=BOB, secret="//Bob", label="bob"),
    ]


@pytest.fixture
def recipients():
    """Three transfer targets."""
    return [
        Recipient(address=CHARLIE, amount=1.0, label="charlie"),
        Recipient(address=DAVE, amount=2.0, label="dave"),
        Recipient(address=EVE, amount=3.0, label="eve"),
    ]


@pytest.fixture
def mock_subtensor():
    """Subtensor double: every account holds 100 TAO, every submission succeeds."""
    subtensor = MagicMock()
    subtensor.get_existential_deposit.return_value = Balance.from_rao(500)
    subtensor.get_balance.return_value = Balance.from_tao(100.0)
    subtensor.get_block_hash.return_value = "0xblock"
    subtensor.substrate.get_payment_info.return_value = {"partial_fee": 1_000_000}

    response = MagicMock()
    response.success = True
    response.extrinsic_hash = "0xabc"
    response.transaction_tao_fee = Balance.from_rao(2_000_000)
    subtensor.sign_and_send_extrinsic.return_value = response
    return subtensor
