"""Session token verification.

The chat client's Mini App receives a signed HS256 JWT in an httpOnly
cookie; `sub` carries the user UUID. Tokens are issued by whatever
authenticates the client; this service only verifies them.
"""

from typing import Any

import jwt

from voice_backend.core.config import settings


def decode_jwt(token: str) -> dict[str, Any]:
    """Verify signature, exp, aud and iss and return the claims.

    Raises:
        jwt.InvalidTokenError: For any verification failure.
    """
    return jwt.decode(
        token,
        settings.auth_secret.get_secret_value(),
        algorithms=["HS256"],
        audience=settings.auth_audience,
        issuer=settings.auth_issuer,
    )
