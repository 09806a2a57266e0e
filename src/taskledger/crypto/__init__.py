"""Cryptographic primitives — deterministic ids and claim signatures."""

from taskledger.crypto.ids import application_id, normalize_address, task_id
from taskledger.crypto.signing import (
    RegistrationProof,
    recover_claim_signer,
    sign_claim,
    sign_registration,
    verify_claim,
)

__all__ = [
    "RegistrationProof",
    "application_id",
    "normalize_address",
    "recover_claim_signer",
    "sign_claim",
    "sign_registration",
    "task_id",
    "verify_claim",
]
