from datetime import datetime
from typing import Callable, Iterable, Optional

import jwt
from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from apigate.errors import InvalidToken, TokenExpired
from apigate.models import IssuedToken, TokenPayload, utc_now


class TokenCodec:
    """
    Signs and verifies bearer tokens for one issuer.

    Expiry is checked against the injected clock rather than by PyJWT, so a
    token is valid only while now < exp.
    """

    def __init__(
        self,
        secret: str,
        issuer: str,
        ttl_seconds: int = 3600,
        algorithm: str = "HS256",
        clock: Callable[[], datetime] = utc_now,
    ):
        if not secret:
            raise ValueError("Token signing secret must not be empty")
        self.secret = secret
        self.issuer = issuer
        self.ttl_seconds = ttl_seconds
        self.algorithm = algorithm
        self.clock = clock

    def encode(self, key_id: str, tenant_id: str, permissions: Iterable[str]) -> IssuedToken:
        now = self.clock()
        iat = int(now.timestamp())
        payload = TokenPayload(
            key_id=key_id,
            tenant_id=tenant_id,
            permissions=list(permissions),
            iat=iat,
            exp=iat + self.ttl_seconds,
        )
        claims = payload.claims()
        claims["iss"] = self.issuer
        token = jwt.encode(claims, self.secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=payload.expires_at)

    def decode(self, token: str) -> TokenPayload:
        try:
            claims = jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options={"verify_exp": False, "verify_iat": False, "require": ["iat", "exp", "iss"]},
            )
            payload = TokenPayload(**claims)
        except jwt.InvalidTokenError as e:
            logger.debug(f"Token rejected by {self.issuer}: {e}")
            raise InvalidToken() from e
        except PydanticValidationError as e:
            logger.debug(f"Token payload malformed for {self.issuer}: {e}")
            raise InvalidToken() from e

        if not payload.is_valid_at(self.clock()):
            raise TokenExpired()
        return payload


def peek_issuer(token: str) -> Optional[str]:
    """Read the iss claim without verifying anything. Used only to pick a codec."""
    try:
        claims = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError:
        return None
    issuer = claims.get("iss")
    return issuer if isinstance(issuer, str) else None

