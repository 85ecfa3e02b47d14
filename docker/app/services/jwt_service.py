"""JWT access tokens and opaque refresh tokens."""

import hashlib
import secrets
from datetime import datetime, timedelta
from typing import Optional, Any
import uuid

from jose import jwt, JWTError

from config import get_settings


class TokenError(Exception):
    """Raised when an access token cannot be trusted."""
    pass


class JWTService:
    """Signs and verifies the tokens handed to API clients."""

    def __init__(self):
        settings = get_settings()
        self.secret_key = settings.jwt_secret_key
        self.algorithm = settings.jwt_algorithm
        self.access_token_expire_minutes = settings.jwt_access_token_expire_minutes
        self.refresh_token_expire_days = settings.jwt_refresh_token_expire_days

    def create_access_token(
        self,
        user_id: uuid.UUID,
        email: str,
        role: str,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Create a signed access token carrying the user's id and role."""
        now = datetime.utcnow()
        expire = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))

        payload = {
            "sub": str(user_id),
            "email": email,
            "role": role,
            "type": "access",
            "exp": expire,
            "iat": now,
            "jti": str(uuid.uuid4()),
        }
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def create_refresh_token(
        self,
        user_id: uuid.UUID,
        expires_delta: Optional[timedelta] = None,
    ) -> tuple[str, str, datetime]:
        """Create a random refresh token.

        Only the hash is meant to be stored; the raw value goes to the client.

        Returns:
            Tuple of (raw_token, token_hash, expires_at)
        """
        expires_at = datetime.utcnow() + (
            expires_delta or timedelta(days=self.refresh_token_expire_days)
        )
        raw_token = secrets.token_urlsafe(32)
        return raw_token, self.hash_token(raw_token), expires_at

    def decode_access_token(self, token: str) -> dict[str, Any]:
        """Decode and validate an access token.

        Raises:
            TokenError: If the token is malformed, expired or not an access token
        """
        try:
            payload = jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except JWTError as e:
            raise TokenError(f"Invalid token: {str(e)}")

        if payload.get("type") != "access":
            raise TokenError("Invalid token type")
        if not payload.get("sub"):
            raise TokenError("Token has no subject")
        return payload

    def verify_refresh_token(self, raw_token: str, stored_hash: str) -> bool:
        return secrets.compare_digest(self.hash_token(raw_token), stored_hash)

    @staticmethod
    def hash_token(token: str) -> str:
        """SHA-256 hex digest of a refresh token."""
        return hashlib.sha256(token.encode()).hexdigest()


_jwt_service: Optional[JWTService] = None


def get_jwt_service() -> JWTService:
    """Get the JWT service singleton."""
    global _jwt_service
    if _jwt_service is None:
        _jwt_service = JWTService()
    return _jwt_service
