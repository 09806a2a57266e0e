"""Deterministic identifiers.

Ids are 32-byte keccak-256 digests rendered as lowercase 0x-prefixed
hex. Addresses are EIP-55 checksummed strings. Hashing follows the
packed ABI encoding so that an id computed here matches the one a
contract on an EVM chain would compute for the same inputs.
"""

from __future__ import annotations

import re
from typing import Optional

from web3 import Web3

ZERO_BYTES32 = "0x" + "00" * 32
UINT256_MAX = 2**256 - 1

_BYTES32_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def normalize_address(address: str) -> str:
    """Return the checksummed form of an address. Raises ValueError if invalid."""
    if not isinstance(address, str) or not Web3.is_address(address):
        raise ValueError(f"Invalid address: {address!r}")
    return Web3.to_checksum_address(address)


def normalize_bytes32(value: str) -> str:
    """Validate a 0x-prefixed 32-byte hex string and lowercase it."""
    if not isinstance(value, str) or not _BYTES32_RE.match(value):
        raise ValueError(f"Expected 0x-prefixed 32-byte hex, got {value!r}")
    return value.lower()


def bytes32(value: str) -> bytes:
    return bytes.fromhex(normalize_bytes32(value)[2:])


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()


def check_uint256(value: int) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"Expected an integer, got {value!r}")
    if value < 0 or value > UINT256_MAX:
        raise ValueError(f"Value out of uint256 range: {value}")
    return value


def application_id(name: str) -> str:
    """Derive an application id from its display name: keccak256(name).

    The registry does not enforce this derivation; it is the convention
    registrants follow so that ids are reproducible from the name.
    """
    return to_hex(Web3.keccak(text=name))


def task_id(
    requester: str,
    app_id: str,
    timestamp: int,
    salt: Optional[str] = None,
) -> str:
    """Derive a task id from (requester, application id, block timestamp).

    A non-zero salt is appended to the packed tuple. Without one, two
    requests by the same requester for the same application in the same
    second produce the same id.
    """
    types = ["address", "bytes32", "uint256"]
    values: list = [normalize_address(requester), bytes32(app_id), check_uint256(timestamp)]
    if salt is not None and normalize_bytes32(salt) != ZERO_BYTES32:
        types.append("bytes32")
        values.append(bytes32(salt))
    return to_hex(Web3.solidity_keccak(types, values))


def contract_address(deployer: str, nonce: int) -> str:
    """Deterministic address for the nonce-th contract deployed by deployer."""
    digest = Web3.solidity_keccak(
        ["address", "uint256"], [normalize_address(deployer), nonce]
    )
    return Web3.to_checksum_address(to_hex(bytes(digest)[-20:]))
