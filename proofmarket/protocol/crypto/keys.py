from ecdsa import SigningKey, VerifyingKey, SECP256k1 # type: ignore
import os


def generate_private_key() -> bytes:
    """Generates a random 32-byte secp256k1 private key."""
    return os.urandom(32)


def public_key_from_private(priv_bytes: bytes) -> bytes:
    """Returns compressed 33-byte public key from private key."""
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    return sk.get_verifying_key().to_string("compressed")


def sign(message_hash: bytes, priv_bytes: bytes) -> bytes:
    """Signs a 32-byte digest. Returns 64-byte r || s."""
    sk = SigningKey.from_string(priv_bytes, curve=SECP256k1)
    return sk.sign_digest(
        message_hash,
        sigencode=lambda r, s, order: r.to_bytes(32, "big") + s.to_bytes(32, "big"),
    )


def verify(message_hash: bytes, signature: bytes, pub_bytes: bytes) -> bool:
    """Verifies a 64-byte r || s signature over a digest. Never raises."""
    try:
        vk = VerifyingKey.from_string(pub_bytes, curve=SECP256k1)
        return vk.verify_digest(
            signature,
            message_hash,
            sigdecode=lambda sig, order: (int.from_bytes(sig[:32], "big"), int.from_bytes(sig[32:], "big")),
        )
    except Exception:
        return False
