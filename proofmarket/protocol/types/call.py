import json
from pydantic import BaseModel, Field
from typing import Dict, Any
from ..crypto.hash import sha256_hex
from ..crypto.keys import sign as crypto_sign

# Methods a signed call may invoke on the node
CALL_METHODS = (
    "stake",
    "withdraw",
    "slash",
    "create_job",
    "accept_job",
    "cancel_job",
    "submit_proof_and_claim",
    "submit_result",
    "approve_result",
    "approve",
    "set_min_provider_stake",
    "set_slash_recipient",
    "grant_role",
    "revoke_role",
)


class SignedCall(BaseModel):
    method: str
    caller: str                 # bech32 account address
    params: Dict[str, Any] = Field(default_factory=dict)
    nonce: int
    pub_key: str = ""           # hex compressed secp256k1 public key
    signature: str = ""         # hex 64-byte (r,s)

    def hash(self) -> str:
        payload = (
            self.method
            + self.caller
            + json.dumps(self.params, sort_keys=True, separators=(",", ":"))
            + str(self.nonce)
            + self.pub_key
        )
        return sha256_hex(payload.encode("utf-8"))

    def sign(self, priv_key_bytes: bytes):
        """Signs the call hash."""
        msg_hash = bytes.fromhex(self.hash())
        self.signature = crypto_sign(msg_hash, priv_key_bytes).hex()
