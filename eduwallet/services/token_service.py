"""Wallet session tokens (ES256 JWT).

The token carries a session id, not the session.  The signing identity
lives in the process-local SessionStore; a stolen token is useless once
the session is closed or the process restarts.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

import jwt
from cryptography.hazmat.primitives.asymmetric import ec

from eduwallet.core.config import SETTINGS

# Ephemeral per process: sessions are process-local too, so there is
# nothing a token signed by another process could refer to.
_private_key = ec.generate_private_key(ec.SECP256R1())
_public_key = _private_key.public_key()

ALGORITHM = "ES256"
ISSUER = "eduwallet"
SESSION_AUDIENCE = "eduwallet-session"


def create_session_token(*, sid: str, holder: str) -> str:
    now = datetime.now(UTC)
    payload = {
        "sub": holder,
        "sid": sid,
        "iss": ISSUER,
        "aud": SESSION_AUDIENCE,
        "exp": now + timedelta(minutes=SETTINGS.session_ttl_minutes),
        "iat": now,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _private_key, algorithm=ALGORITHM)


def decode_session_token(token: str) -> dict:
    """Verify signature and claims.  Pins ES256 and the session audience.

    Raises jwt.ExpiredSignatureError, jwt.InvalidTokenError on failure.
    """
    return jwt.decode(
        token,
        _public_key,
        algorithms=[ALGORITHM],
        issuer=ISSUER,
        audience=SESSION_AUDIENCE,
        options={"require": ["sub", "sid", "exp", "iat", "jti"]},
    )
