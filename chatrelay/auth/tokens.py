"""
Bearer token issue and verification.

Tokens are ``<identity>.<expires>.<signature>`` where the identity is
base64url-encoded and the signature is an HMAC-SHA256 over the first two
parts keyed with the application secret.
"""

import base64
import binascii
import hashlib
import hmac
import time
from collections.abc import Callable
from typing import Protocol

from chatrelay.core import InvalidCredentialError, get_logger

logger = get_logger(__name__)


class Authenticator(Protocol):
    """Maps an opaque credential to a caller identity."""

    def verify(self, token: str) -> str:
        """Return the identity for ``token`` or raise InvalidCredentialError."""
        ...


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode(text + padding)


class TokenAuthenticator:
    """Stateless HMAC-signed tokens with a fixed lifetime."""

    def __init__(
        self,
        secret_key: str,
        ttl_seconds: int = 86400,
        clock: Callable[[], float] = time.time,
    ):
        if not secret_key:
            raise ValueError("secret_key must not be empty")
        self._secret = secret_key.encode()
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _sign(self, payload: str) -> str:
        return hmac.new(self._secret, payload.encode(), hashlib.sha256).hexdigest()

    def issue(self, identity: str) -> str:
        """Create a token for ``identity`` valid for ``ttl_seconds``."""
        if not identity:
            raise ValueError("identity must not be empty")
        expires = int(self._clock()) + self.ttl_seconds
        payload = f"{_b64encode(identity.encode())}.{expires}"
        return f"{payload}.{self._sign(payload)}"

    def verify(self, token: str) -> str:
        parts = token.split(".") if token else []
        if len(parts) != 3:
            raise InvalidCredentialError()

        encoded_identity, expires_text, signature = parts
        payload = f"{encoded_identity}.{expires_text}"
        if not hmac.compare_digest(self._sign(payload), signature):
            logger.warning("Token signature mismatch")
            raise InvalidCredentialError()

        try:
            expires = int(expires_text)
            identity = _b64decode(encoded_identity).decode()
        except (ValueError, binascii.Error, UnicodeDecodeError) as exc:
            raise InvalidCredentialError() from exc

        if expires < self._clock():
            raise InvalidCredentialError("Token expired")
        if not identity:
            raise InvalidCredentialError()
        return identity
