"""JWT bearer tokens identifying the acting user.

Tokens carry the actor ID in ``sub``; what that actor may do is decided by the
capability checker, not by claims in the token.
"""
from datetime import datetime, timedelta
from typing import Dict, Optional

import jwt

from ledger.config import settings


class JWTAuth:
    """JWT authentication handler with shared-secret signing."""

    def __init__(
        self,
        secret_key: str | None = None,
        algorithm: str | None = None,
        access_token_expire_minutes: int | None = None,
    ):
        """Initialize JWT auth from settings, with optional overrides."""
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm
        self.access_token_expire_minutes = access_token_expire_minutes or settings.access_token_expire_minutes

    def create_access_token(
        self,
        user_id: str,
        email: str | None = None,
        additional_claims: Optional[Dict] = None,
    ) -> str:
        """
        Create JWT access token.

        Args:
            user_id: Actor identity
            email: Actor email
            additional_claims: Additional JWT claims

        Returns:
            Encoded JWT token
        """
        now = datetime.utcnow()
        expire = now + timedelta(minutes=self.access_token_expire_minutes)

        claims = {
            "sub": user_id,
            "email": email,
            "iat": now,
            "exp": expire,
            "type": "access",
        }

        if additional_claims:
            claims.update(additional_claims)

        return jwt.encode(claims, self.secret_key, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> Dict:
        """
        Verify and decode an access token.

        Args:
            token: Encoded JWT

        Returns:
            Decoded claims

        Raises:
            jwt.ExpiredSignatureError: If the token has expired
            jwt.InvalidTokenError: If the token is malformed, not an access token or lacks a subject
        """
        payload = jwt.decode(
            token,
            self.secret_key,
            algorithms=[self.algorithm],
            options={"require": ["exp", "sub"]},
        )

        if payload.get("type") != "access":
            raise jwt.InvalidTokenError("Invalid token type")

        return payload


# Global JWT auth instance
jwt_auth = JWTAuth()
