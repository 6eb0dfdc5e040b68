"""Deterministic address derivation."""

import hashlib

import pytest

from hyperchain_bootstrap.create2 import derive_address, derive_l1_create2_address, hash_l2_bytecode

ZERO_SALT = b"\x00" * 32


@pytest.mark.parametrize(
    "factory,salt,init_code,expected",
    [
        ("0x0000000000000000000000000000000000000000", ZERO_SALT, b"\x00", "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"),
        ("0xdeadbeef00000000000000000000000000000000", ZERO_SALT, b"\x00", "0xB928f69Bb1D91Cd65274e3c79d8986362984fDA3"),
        (
            "0xdeadbeef00000000000000000000000000000000",
            bytes.fromhex("000000000000000000000000feed000000000000000000000000000000000000"),
            b"\x00",
            "0xD04116cDd17beBE565EB2422F2497E06cC1C9833",
        ),
        ("0x0000000000000000000000000000000000000000", ZERO_SALT, bytes.fromhex("deadbeef"), "0x70f2b2914A2a4b783FaEFb75f459A580616Fcb5e"),
    ],
)
def test_derive_l1_create2_address(factory, salt, init_code, expected):
    """EIP-1014 examples."""
    assert derive_l1_create2_address(factory, salt, init_code) == expected


def test_derive_address_is_pure():
    """Same inputs, same address. Another salt, another address."""
    bytecode_hash = hash_l2_bytecode(b"\x01" * 32)
    deployer = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

    first = derive_address(ZERO_SALT, bytecode_hash, b"", deployer)
    again = derive_address(ZERO_SALT, bytecode_hash, b"", deployer)
    assert first == again
    assert first.startswith("0x")
    assert len(first) == 42

    salts = [i.to_bytes(32, "big") for i in range(1, 20)]
    addresses = {derive_address(s, bytecode_hash, b"", deployer) for s in salts}
    assert first not in addresses
    assert len(addresses) == len(salts)


def test_derive_address_depends_on_inputs():
    """Constructor input and deployer are part of the address."""
    bytecode_hash = hash_l2_bytecode(b"\x01" * 32)
    deployer = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"
    base = derive_address(ZERO_SALT, bytecode_hash, b"", deployer)
    assert derive_address(ZERO_SALT, bytecode_hash, b"\x00" * 32, deployer) != base
    assert derive_address(ZERO_SALT, bytecode_hash, b"", "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266") != base
    assert derive_address(ZERO_SALT, hash_l2_bytecode(b"\x02" * 32), b"", deployer) != base


def test_derive_address_bad_salt():
    with pytest.raises(AssertionError):
        derive_address(b"\x00" * 31, hash_l2_bytecode(b"\x01" * 32), b"", "0x70997970C51812dc3A010C7d01b50e0d17dc79C8")


def test_hash_l2_bytecode():
    """Version, length in words and the truncated sha256."""
    bytecode = b"\xab" * 96
    bytecode_hash = hash_l2_bytecode(bytecode)
    assert len(bytecode_hash) == 32
    assert bytecode_hash[0:4] == bytes([1, 0, 0, 3])
    assert bytecode_hash[4:] == hashlib.sha256(bytecode).digest()[4:]


@pytest.mark.parametrize("length", [31, 64, 33])
def test_hash_l2_bytecode_bad_length(length):
    """Lengths must be whole words, and an odd number of them."""
    with pytest.raises(ValueError):
        hash_l2_bytecode(b"\x00" * length)
