"""Operator signatures — settlement claims and registration proofs.

Both kinds of message are EIP-191 "personal_sign" signatures over a
32-byte keccak digest. A signature is valid for an operator when the
address recovered from it equals the operator's address.

Claim digest:
    keccak256(packed(task_registry, task_id, status_code, result))

The task registry address is part of the digest so a claim produced for
one deployment cannot be replayed against another.

Registration digest:
    keccak256(packed(operator, directory, salt, expiry))
"""

from __future__ import annotations

from dataclasses import dataclass

from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys.exceptions import BadSignature, ValidationError as KeyValidationError
from web3 import Web3

from taskledger.crypto.ids import (
    bytes32,
    check_uint256,
    normalize_address,
    normalize_bytes32,
    to_hex,
)
from taskledger.models.claim import SettlementClaim
from taskledger.models.task import TaskStatus

_SIGNATURE_LENGTH = 65


@dataclass(frozen=True)
class RegistrationProof:
    """Proof an operator controls its key, forwarded to the identity authority."""
    signature: str
    salt: str
    expiry: int  # unix seconds


def claim_digest(task_registry: str, task_id: str, status: TaskStatus, result: int) -> bytes:
    return bytes(Web3.solidity_keccak(
        ["address", "bytes32", "uint8", "uint256"],
        [
            normalize_address(task_registry),
            bytes32(task_id),
            status.code,
            check_uint256(result),
        ],
    ))


def registration_digest(operator: str, directory: str, salt: str, expiry: int) -> bytes:
    return bytes(Web3.solidity_keccak(
        ["address", "address", "bytes32", "uint256"],
        [
            normalize_address(operator),
            normalize_address(directory),
            bytes32(salt),
            check_uint256(expiry),
        ],
    ))


def sign_claim(
    private_key: str,
    task_registry: str,
    task_id: str,
    status: TaskStatus,
    result: int,
) -> SettlementClaim:
    """Sign a (task id, status, result) claim with an operator key."""
    account = Account.from_key(private_key)
    message = encode_defunct(primitive=claim_digest(task_registry, task_id, status, result))
    signed = account.sign_message(message)
    return SettlementClaim(
        task_id=normalize_bytes32(task_id),
        status=status,
        result=result,
        operator=account.address,
        signature=to_hex(signed.signature),
    )


def recover_claim_signer(task_registry: str, claim: SettlementClaim) -> str:
    """Recover the address that signed a claim.

    Raises ValueError if the signature is malformed or unrecoverable.
    """
    message = encode_defunct(
        primitive=claim_digest(task_registry, claim.task_id, claim.status, claim.result)
    )
    return _recover(message, claim.signature)


def verify_claim(task_registry: str, claim: SettlementClaim) -> bool:
    """True iff the claim's signature was produced by claim.operator."""
    try:
        signer = recover_claim_signer(task_registry, claim)
        return signer == normalize_address(claim.operator)
    except ValueError:
        return False


def sign_registration(private_key: str, directory: str, salt: str, expiry: int) -> RegistrationProof:
    account = Account.from_key(private_key)
    message = encode_defunct(
        primitive=registration_digest(account.address, directory, salt, expiry)
    )
    signed = account.sign_message(message)
    return RegistrationProof(
        signature=to_hex(signed.signature),
        salt=normalize_bytes32(salt),
        expiry=expiry,
    )


def recover_registration_signer(operator: str, directory: str, proof: RegistrationProof) -> str:
    message = encode_defunct(
        primitive=registration_digest(operator, directory, proof.salt, proof.expiry)
    )
    return _recover(message, proof.signature)


def _recover(message, signature: str) -> str:
    if not isinstance(signature, str) or not signature.startswith("0x"):
        raise ValueError("Signature must be 0x-prefixed hex")
    try:
        raw = bytes.fromhex(signature[2:])
    except ValueError as e:
        raise ValueError(f"Signature is not hex: {e}") from e
    if len(raw) != _SIGNATURE_LENGTH:
        raise ValueError(f"Signature must be {_SIGNATURE_LENGTH} bytes, got {len(raw)}")
    try:
        return Account.recover_message(message, signature=raw)
    except (BadSignature, KeyValidationError) as e:
        raise ValueError(f"Unrecoverable signature: {e}") from e
