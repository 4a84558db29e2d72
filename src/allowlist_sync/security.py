"""Credential hashing for the admin configuration.

Hashes are PBKDF2-HMAC-SHA256 strings of the form
``pbkdf2_sha256$<iterations>$<salt-hex>$<hash-hex>``.
"""

import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger(__name__)

ALGORITHM = "pbkdf2_sha256"
DEFAULT_ITERATIONS = 600_000
SALT_BYTES = 16


def hash_credential(credential: str, iterations: int | None = None) -> str:
    """Hash a plaintext credential with a random salt.

    Args:
        credential: Plaintext credential.
        iterations: PBKDF2 iteration count.

    Returns:
        Encoded hash string.
    """
    iterations = iterations or DEFAULT_ITERATIONS
    salt = secrets.token_bytes(SALT_BYTES)
    digest = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), salt, iterations)
    return f"{ALGORITHM}${iterations}${salt.hex()}${digest.hex()}"


def verify_credential(credential: str, encoded: str) -> bool:
    """Check a plaintext credential against an encoded hash.

    Malformed hashes never verify.

    Args:
        credential: Plaintext credential to check.
        encoded: Hash string produced by hash_credential.

    Returns:
        True if the credential matches.
    """
    try:
        algorithm, iterations, salt_hex, digest_hex = encoded.split("$")
        if algorithm != ALGORITHM:
            return False
        salt = bytes.fromhex(salt_hex)
        expected = bytes.fromhex(digest_hex)
        rounds = int(iterations)
    except ValueError:
        logger.warning("Stored credential hash is malformed")
        return False

    actual = hashlib.pbkdf2_hmac("sha256", credential.encode("utf-8"), salt, rounds)
    return hmac.compare_digest(actual, expected)
