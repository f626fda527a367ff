"""Deterministic signing identities from (secret, identifier).

THE STATELESS WALLET
----------------------
A conventional wallet generates a random private key and stores it
(encrypted) somewhere.  Lose the file, lose the wallet.  Here nothing is
stored: the holder's low-entropy credential pair is STRETCHED into a
256-bit private key on every login.

    secret ─┐
            ├─ PBKDF2-HMAC-SHA256 (100,000 rounds) ─> 32 bytes ─> secp256k1 keypair
 identifier ┘   (used as the salt)

Same two inputs, same key, on any machine.  That is the whole recovery
model.

WHY THE SALT IS NOT RANDOM
----------------------------
Normal password hashing uses a random salt and stores it beside the
hash.  We have nowhere to store it (storing it would re-introduce the
wallet file), so the salt is the identifier itself: public, fixed, and
unique per holder.  Uniqueness still gives salt separation (two holders
with the same secret get different keys) which is what defeats a single
precomputed table across all holders.

NEVER "FIX" THESE CONSTANTS
-----------------------------
ITERATIONS, KEY_LENGTH and the hash are part of every holder's key.
Changing any of them silently maps every existing credential pair to a
DIFFERENT address, with no record attached.  Treat a change as a
migration of every wallet, not as tuning.
"""

from __future__ import annotations

import logging
import secrets
import time

from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from eduwallet.core.metrics import KEY_DERIVATION_SECONDS, KEY_DERIVATIONS
from eduwallet.models.identity import SigningIdentity
from eduwallet.services.errors import DerivationError

logger = logging.getLogger(__name__)

ITERATIONS = 100_000
KEY_LENGTH = 32  # bytes; secp256k1 private key size

# Sizes of randomly generated credentials, in random bytes (hex doubles them).
IDENTIFIER_BYTES = 10
SECRET_BYTES = 16


def _require_text(name: str, value: object) -> str:
    if not isinstance(value, str) or not value:
        raise DerivationError(f"{name} must be a non-empty string")
    return value


def derive(secret: str, identifier: str) -> SigningIdentity:
    """Stretch a credential pair into its signing identity.

    Pure and deterministic.  Raises DerivationError on empty or non-string
    input, or when the PBKDF2 primitive isn't available.  Never retried.
    """
    _require_text("secret", secret)
    _require_text("identifier", identifier)

    start = time.perf_counter()
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=identifier.encode("utf-8"),
            iterations=ITERATIONS,
        )
        key = kdf.derive(secret.encode("utf-8"))
    except UnsupportedAlgorithm as e:
        KEY_DERIVATIONS.labels(result="error").inc()
        logger.error("PBKDF2-HMAC-SHA256 unavailable in this environment")
        raise DerivationError("key derivation primitive unavailable") from e
    finally:
        KEY_DERIVATION_SECONDS.observe(time.perf_counter() - start)

    try:
        identity = SigningIdentity.from_private_key(key)
    except Exception as e:
        # Only possible if the 32 bytes fall outside the curve order (~2^-128).
        KEY_DERIVATIONS.labels(result="error").inc()
        raise DerivationError("derived bytes are not a valid signing key") from e

    KEY_DERIVATIONS.labels(result="ok").inc()
    logger.debug("Derived signing identity address=%s", identity.address)
    return identity


def generate_credentials() -> tuple[str, str]:
    """Random (identifier, secret) pair for a newly registered holder."""
    return secrets.token_hex(IDENTIFIER_BYTES), secrets.token_hex(SECRET_BYTES)
