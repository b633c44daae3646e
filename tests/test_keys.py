"""
Unit tests for source key parsing, validation and wallet loading.
"""

import json
from unittest.mock import patch

import pytest

from multisend.keys import (
    SourceKey,
    derive_keypair,
    key_name,
    load_keys,
    parse_keypairs,
    validate_keypairs,
)

from conftest import ALICE, BOB


class TestDeriveKeypair:

    def test_dev_uri(self):
        assert derive_keypair("//Alice").ss58_address == ALICE

    def test_surrounding_whitespace_ignored(self):
        assert derive_keypair("  //Bob \n").ss58_address == BOB

    def test_hex_seed(self):
        from bittensor_wallet.keypair import Keypair

        seed = "0x" + "11" * 32
        assert derive_keypair(seed).ss58_address == Keypair.create_from_seed(seed).ss58_address

    def test_mnemonic(self):
        from bittensor_wallet.keypair import Keypair

        mnemonic = Keypair.generate_mnemonic()
        expected = Keypair.create_from_mnemonic(mnemonic).ss58_address
        # extra whitespace between words is collapsed
        assert derive_keypair(mnemonic.replace(" ", "   ")).ss58_address == expected

    @pytest.mark.parametrize("secret", ["", "   ", "not-a-secret", "0x1234"])
    def test_unrecognized_secret(self, secret):
        with pytest.raises(ValueError):
            derive_keypair(secret)


class TestParseKeypairs:

    def test_csv(self, tmp_path):
        path = tmp_path / "keys.csv"
        path.write_text(f" Address , Secret ,Label\n{ALICE},//Alice,a\n{BOB},//Bob,\n")

        keys = parse_keypairs(path)

        assert [k.address for k in keys] == [ALICE, BOB]
        assert keys[0].secret == "//Alice"
        assert keys[0].label == "a"
        assert keys[1].label == ""

    def test_csv_missing_secret(self, tmp_path):
        path = tmp_path / "keys.csv"
        path.write_text(f"address,secret\n{ALICE},\n")

        with pytest.raises(ValueError, match="Row 2: missing secret"):
            parse_keypairs(path)

    def test_csv_empty(self, tmp_path):
        path = tmp_path / "keys.csv"
        path.write_text("")

        with pytest.raises(ValueError, match="empty"):
            parse_keypairs(path)

    def test_csv_without_secret_column(self, tmp_path):
        path = tmp_path / "keys.csv"
        path.write_text(f"address,label\n{ALICE},a\n")

        with pytest.raises(ValueError, match="must have 'address' and 'secret' columns"):
            parse_keypairs(path)

    def test_json(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text(json.dumps([{"address": ALICE, "secret": "//Alice"}]))

        keys = parse_keypairs(path)

        assert keys == [SourceKey(address=ALICE, secret="//Alice")]

    def test_json_missing_field(self, tmp_path):
        path = tmp_path / "keys.json"
        path.write_text(json.dumps([{"address": ALICE}]))

        with pytest.raises(ValueError, match="Entry 0: missing 'secret'"):
            parse_keypairs(path)


class TestValidateKeypairs:

    def test_valid(self, source_keys):
        assert validate_keypairs(source_keys) == (True, [])

    def test_empty(self):
        is_valid, errors = validate_keypairs([])
        assert not is_valid
        assert errors == ["No source keys given"]

    def test_secret_for_other_address(self):
        is_valid, errors = validate_keypairs([SourceKey(address=ALICE, secret="//Bob")])

        assert not is_valid
        assert BOB in errors[0]

    def test_invalid_address(self):
        is_valid, errors = validate_keypairs([SourceKey(address="nope", secret="//Alice")])

        assert not is_valid
        assert "Invalid ss58 address" in errors[0]

    def test_duplicates(self):
        keys = [SourceKey(ALICE, "//Alice"), SourceKey(ALICE, "//Alice")]

        is_valid, errors = validate_keypairs(keys)

        assert not is_valid
        assert "Duplicate source address at keys 0 and 1" in errors

    def test_repr_hides_secret(self):
        assert "//Alice" not in repr(SourceKey(ALICE, "//Alice"))


class TestLoadKeys:

    def test_one_wallet_per_key(self, source_keys, tmp_path):
        with patch("multisend.keys.bt.Wallet") as wallet_cls:
            wallets = load_keys(source_keys, str(tmp_path))

        assert len(wallets) == 2
        names = [c.kwargs["name"] for c in wallet_cls.call_args_list]
        assert names == [key_name(0), key_name(1)] == ["key-0", "key-1"]
        for c in wallet_cls.call_args_list:
            assert c.kwargs["path"] == str(tmp_path)

        wallet = wallet_cls.return_value
        stored = [c.args[0].ss58_address for c in wallet.set_coldkey.call_args_list]
        assert stored == [ALICE, BOB]
        for c in wallet.set_coldkey.call_args_list:
            assert c.kwargs == {"encrypt": False, "overwrite": True}

        pub_calls = wallet.set_coldkeypub.call_args_list
        assert [c.args[0].ss58_address for c in pub_calls] == [ALICE, BOB]
        for c in pub_calls:
            assert c.kwargs["overwrite"] is True
