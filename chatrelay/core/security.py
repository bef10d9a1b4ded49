"""
Identity verification: bearer tokens and password hashing.
"""
import hashlib
import hmac
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Request
from jose import JWTError, jwt

from chatrelay.core.config import Settings, get_settings
from chatrelay.core.errors import ChatError, Unauthenticated
from chatrelay.core.logging import get_logger

logger = get_logger(__name__)

PASSWORD_SCHEME = "pbkdf2_sha256"


def hash_password(password: str, iterations: int = None) -> str:
    """
    Hash a password with PBKDF2-HMAC-SHA256 and a random salt.

    Returns:
        ``pbkdf2_sha256$<iterations>$<salt hex>$<digest hex>``
    """
    iterations = iterations or get_settings().password_hash_iterations
    salt = secrets.token_bytes(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)
    return f"{PASSWORD_SCHEME}${iterations}${salt.hex()}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    """Check a password against a stored hash using constant-time comparison."""
    try:
        scheme, iterations, salt_hex, digest_hex = encoded.split("$")
        if scheme != PASSWORD_SCHEME:
            return False
        digest = hashlib.pbkdf2_hmac(
            "sha256",
            password.encode("utf-8"),
            bytes.fromhex(salt_hex),
            int(iterations),
        )
    except ValueError:
        return False
    return hmac.compare_digest(digest.hex(), digest_hex)


class IdentityVerifier:
    """
    Issues and verifies signed bearer tokens.

    Built once from settings at startup. Verification is stateless: a valid
    signature and an unexpired ``exp`` are enough to trust ``userId``.
    """

    def __init__(self, settings: Settings = None):
        settings = settings or get_settings()
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._lifetime = timedelta(days=settings.jwt_expires_days)

    @property
    def configured(self) -> bool:
        return bool(self._secret)

    def issue(self, user_id: str) -> str:
        """Sign a token for ``user_id``."""
        if not self.configured:
            logger.error("JWT_SECRET environment variable not configured")
            raise ChatError("Token signing is not configured")
        expires = datetime.now(timezone.utc) + self._lifetime
        return jwt.encode(
            {"userId": user_id, "exp": expires},
            self._secret,
            algorithm=self._algorithm,
        )

    def verify(self, token: Optional[str]) -> str:
        """
        Validate a bearer token.

        Returns:
            The user identifier carried by the token

        Raises:
            Unauthenticated: if the token is missing, malformed, expired,
                wrongly signed, or no secret is configured
        """
        if not token:
            raise Unauthenticated("No token provided")
        if not self.configured:
            logger.error("JWT_SECRET environment variable not configured")
            raise Unauthenticated()

        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as e:
            logger.debug(f"Token verification failed: {e}")
            raise Unauthenticated()

        user_id = claims.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise Unauthenticated()
        return user_id


def bearer_token(request: Request) -> Optional[str]:
    """Extract the token from an ``Authorization: Bearer`` header."""
    header = request.headers.get("Authorization")
    if not header or not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def get_current_user_id(request: Request) -> str:
    """FastAPI dependency yielding the authenticated user id."""
    token = bearer_token(request)
    if token is None:
        raise Unauthenticated("No token provided")
    return request.app.state.verifier.verify(token)
