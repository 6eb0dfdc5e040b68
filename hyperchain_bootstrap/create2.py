"""Deterministic contract address derivation.

Computing an address before the deployment transaction is sent lets later
steps reference a contract that is not mined yet, and lets us verify that
the network deployed exactly what we expected.

Two address schemes are involved:

- L1 uses `EIP-1014 <https://eips.ethereum.org/EIPS/eip-1014>`__ ``CREATE2``
  through a deterministic deployment factory:
  ``keccak(0xff ++ factory ++ salt ++ keccak(init_code))[12:]``

- L2 (the rollup) hashes its bytecode differently and feeds the
  constructor input separately:
  ``keccak(keccak("zksyncCreate2") ++ pad32(sender) ++ salt ++ bytecode_hash ++ keccak(input))[12:]``

Example:

.. code-block:: python

    from hyperchain_bootstrap.create2 import derive_address, hash_l2_bytecode

    address = derive_address(
        salt=b"\\x00" * 32,
        bytecode_hash=hash_l2_bytecode(bytecode),
        constructor_args=b"",
        deployer="0x0000000000000000000000000000000000000001",
    )
"""

import hashlib

from eth_typing import ChecksumAddress, HexAddress
from eth_utils import keccak, to_bytes, to_checksum_address

#: Prefix of the L2 CREATE2 preimage
L2_CREATE2_PREFIX = keccak(text="zksyncCreate2")

#: L2 bytecode lengths are counted in 32-byte words
L2_BYTECODE_WORD_SIZE = 32

#: Version byte of the L2 bytecode hash format
L2_BYTECODE_HASH_VERSION = 1


def _address_bytes(address: HexAddress | str) -> bytes:
    raw = to_bytes(hexstr=address)
    assert len(raw) == 20, f"Not an address: {address}"
    return raw


def _check_salt(salt: bytes):
    assert isinstance(salt, bytes), f"Salt must be bytes, got {type(salt)}"
    assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"


def derive_address(
    salt: bytes,
    bytecode_hash: bytes,
    constructor_args: bytes,
    deployer: HexAddress | str,
) -> ChecksumAddress:
    """Predict the L2 address of a ``create2`` deployment.

    Pure function: identical inputs always give the identical address.

    :param salt:
        32-byte salt.

    :param bytecode_hash:
        32-byte L2 bytecode hash, see :py:func:`hash_l2_bytecode`.

    :param constructor_args:
        ABI encoded constructor input. ``b""`` for no arguments.

    :param deployer:
        Address calling the L2 contract deployer.

    :return:
        Checksummed address.
    """
    _check_salt(salt)
    assert len(bytecode_hash) == 32, f"Bytecode hash must be 32 bytes, got {len(bytecode_hash)}"
    sender = _address_bytes(deployer).rjust(32, b"\x00")
    preimage = L2_CREATE2_PREFIX + sender + salt + bytecode_hash + keccak(constructor_args)
    return to_checksum_address(keccak(preimage)[12:])


def derive_l1_create2_address(
    factory: HexAddress | str,
    salt: bytes,
    init_code: bytes,
) -> ChecksumAddress:
    """Predict the L1 address of a contract deployed through a CREATE2 factory.

    :param factory:
        Address of the factory contract that executes ``CREATE2``.

    :param salt:
        32-byte salt.

    :param init_code:
        Creation bytecode with the ABI encoded constructor arguments appended.

    :return:
        Checksummed address.
    """
    _check_salt(salt)
    preimage = b"\xff" + _address_bytes(factory) + salt + keccak(init_code)
    return to_checksum_address(keccak(preimage)[12:])


def hash_l2_bytecode(bytecode: bytes) -> bytes:
    """Compute the L2 bytecode hash used for publishing and ``create2``.

    The layout is ``version (1 byte) ++ 0x00 ++ length in words (2 bytes) ++ sha256(bytecode)[4:]``.

    :raise ValueError:
        If the bytecode cannot be a valid L2 bytecode.
    """
    if len(bytecode) % L2_BYTECODE_WORD_SIZE != 0:
        raise ValueError(f"Bytecode length in bytes must be divisible by {L2_BYTECODE_WORD_SIZE}, got {len(bytecode)}")

    length_in_words = len(bytecode) // L2_BYTECODE_WORD_SIZE
    if length_in_words >= 2**16:
        raise ValueError(f"Bytecode length in words must be less than 2^16, got {length_in_words}")

    if length_in_words % 2 == 0:
        raise ValueError(f"Bytecode length in words must be odd, got {length_in_words}")

    digest = hashlib.sha256(bytecode).digest()
    return bytes([L2_BYTECODE_HASH_VERSION, 0]) + length_in_words.to_bytes(2, "big") + digest[4:]
