import json

import pytest
from solders.keypair import Keypair

from core.wallet import Wallet, WalletError

SEED = bytes(range(32))


def test_load_from_hex_seed_and_secret():
    kp = Keypair.from_seed(SEED)
    assert Wallet.load(private_key=SEED.hex()).pubkey() == str(kp.pubkey())
    assert Wallet.load(private_key=bytes(kp).hex()).pubkey() == str(kp.pubkey())


def test_load_from_keypair_json(tmp_path):
    kp = Keypair.from_seed(SEED)
    path = tmp_path / "keypair.json"
    path.write_text(json.dumps(list(bytes(kp))), encoding="utf-8")
    w = Wallet.load(keypair_path=str(path))
    assert w.pubkey_obj() == kp.pubkey()


def test_private_key_takes_priority(tmp_path):
    w = Wallet.load(private_key=SEED.hex(), keypair_path=str(tmp_path / "missing.json"))
    assert w.pubkey() == str(Keypair.from_seed(SEED).pubkey())


@pytest.mark.parametrize(
    "kwargs",
    [
        {},
        {"private_key": "zz-not-hex"},
        {"private_key": "00" * 10},
    ],
)
def test_bad_credentials_raise(kwargs):
    with pytest.raises(WalletError):
        Wallet.load(**kwargs)


def test_missing_or_malformed_keypair_file(tmp_path):
    with pytest.raises(WalletError):
        Wallet.load(keypair_path=str(tmp_path / "nope.json"))
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"secret": "x"}), encoding="utf-8")
    with pytest.raises(WalletError):
        Wallet.load(keypair_path=str(bad))
