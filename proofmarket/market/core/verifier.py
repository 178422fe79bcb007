# MIT License
# Copyright (c) 2025 Hashborn

"""
Proof verification oracle.

The settlement path consumes verification as an opaque oracle:

    verify(proof, program_id, public_output_hash) -> bool

A False result and a raised fault are treated identically (invalid proof).
The core never looks inside `proof`.

CommitmentVerifier is the development oracle. It checks a JSON receipt whose
journal mirrors the hashing guest program:

    image_batch_hash        = sha256(image_batch)
    model_weights_hash      = sha256(model_weights)
    computation_output_hash = sha256(image_batch_hash || model_weights_hash)

and whose seal binds the journal to the program id. It does not check a
succinct proof; swap in a real verifier for production.
"""

import json
import logging
from typing import Dict, Iterable, Optional
from ...protocol.crypto.hash import sha256, sha256_concat

logger = logging.getLogger(__name__)


class ZKVerificationError(Exception):
    """Raised by verifiers that signal failure as an exception."""
    pass


class ProofVerifier:
    """Interface of the external verification oracle."""

    def verify(self, proof: bytes, program_id: bytes, public_output_hash: bytes) -> bool:
        raise NotImplementedError


def compute_output_hash(image_batch: bytes, model_weights: bytes) -> bytes:
    """Public output committed by the guest program for (images, weights)."""
    return sha256_concat([sha256(image_batch), sha256(model_weights)])


def compute_seal(program_id: bytes, journal: Dict[str, str]) -> bytes:
    return sha256_concat([
        program_id,
        bytes.fromhex(journal["image_batch_hash"]),
        bytes.fromhex(journal["model_weights_hash"]),
        bytes.fromhex(journal["computation_output_hash"]),
    ])


class CommitmentVerifier(ProofVerifier):
    def __init__(self, version: int = 1, allowed_programs: Optional[Iterable[bytes]] = None):
        """
        Args:
            version: Receipt format version accepted by this verifier
            allowed_programs: Program ids this verifier knows; None accepts any
        """
        self.version = version
        self.allowed_programs = set(allowed_programs) if allowed_programs is not None else None

    def build_receipt(self, program_id: bytes, image_batch: bytes, model_weights: bytes) -> bytes:
        """Produces a receipt the way the prover host does (dev and tests)."""
        journal = {
            "image_batch_hash": sha256(image_batch).hex(),
            "model_weights_hash": sha256(model_weights).hex(),
            "computation_output_hash": compute_output_hash(image_batch, model_weights).hex(),
        }
        receipt = {
            "version": self.version,
            "program_id": program_id.hex(),
            "journal": journal,
            "seal": compute_seal(program_id, journal).hex(),
        }
        return json.dumps(receipt, sort_keys=True).encode()

    def verify(self, proof: bytes, program_id: bytes, public_output_hash: bytes) -> bool:
        try:
            receipt = json.loads(proof.decode())
        except (UnicodeDecodeError, ValueError) as e:
            logger.warning(f"Malformed receipt: {e}")
            return False

        if receipt.get("version") != self.version:
            logger.warning(f"Version mismatch: {receipt.get('version')} != {self.version}")
            return False

        if self.allowed_programs is not None and program_id not in self.allowed_programs:
            logger.warning(f"Unknown program id {program_id.hex()}")
            return False

        if receipt.get("program_id") != program_id.hex():
            logger.warning("Receipt was produced for a different program")
            return False

        journal = receipt.get("journal") or {}
        try:
            image_hash = bytes.fromhex(journal["image_batch_hash"])
            weights_hash = bytes.fromhex(journal["model_weights_hash"])
            output_hash = bytes.fromhex(journal["computation_output_hash"])
            seal = bytes.fromhex(receipt["seal"])
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Incomplete journal: {e}")
            return False

        if sha256_concat([image_hash, weights_hash]) != output_hash:
            logger.warning("Journal output hash does not match its inputs")
            return False

        if output_hash != public_output_hash:
            logger.warning(f"Output mismatch: {output_hash.hex()} != {public_output_hash.hex()}")
            return False

        if compute_seal(program_id, journal) != seal:
            logger.warning("Seal does not bind the journal to the program id")
            return False

        return True
