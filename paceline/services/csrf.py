"""
CSRF protection - token management for outgoing API requests.

The token is sent as a header on every request (double-submit pattern) and
rotated once it is older than its TTL.
"""

import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from loguru import logger

CSRF_HEADER_NAME = "X-CSRF-Token"


@dataclass
class CsrfToken:
    token: str
    created_at: datetime


class CsrfProtection:
    """Holds the current CSRF token and turns it into request headers."""

    def __init__(
        self,
        header_name: str = CSRF_HEADER_NAME,
        token_ttl: timedelta = timedelta(hours=1),
    ):
        self.header_name = header_name
        self.token_ttl = token_ttl
        self._token: CsrfToken | None = None

    def rotate_token(self) -> str:
        """Generate a new token."""
        self._token = CsrfToken(
            token=secrets.token_urlsafe(32),
            created_at=datetime.now(),
        )
        logger.debug("CSRF token rotated")
        return self._token.token

    def get_token(self) -> str:
        """Current token, rotating it if missing or expired."""
        if (
            self._token is None
            or datetime.now() - self._token.created_at >= self.token_ttl
        ):
            return self.rotate_token()
        return self._token.token

    def get_headers(self) -> dict[str, str]:
        return {self.header_name: self.get_token()}

    def validate_token(self, token: str) -> bool:
        """Compare a token echoed by the server with the current one."""
        if self._token is None:
            return False
        return secrets.compare_digest(self._token.token, token)

    def clear(self) -> None:
        """Forget the token (e.g. on logout)."""
        self._token = None
