"""
Access token lookup for queue item owners.

Credential issuance and refresh happen elsewhere; collabsync only reads
the token a user has already been given. The default provider reads
environment variables (optionally seeded from .env files):

    COLLABSYNC_TOKEN_<USER_ID>   per-user token
    GITHUB_TOKEN                 shared fallback

Tokens are never logged.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Mapping
from typing import Protocol

from collabsync.core.exceptions import AuthError

logger = logging.getLogger(__name__)

FALLBACK_TOKEN_VAR = "GITHUB_TOKEN"


class TokenProvider(Protocol):
    """Returns the access token of a user."""

    def get_token(self, user_id: str) -> str:
        """
        Raises:
            AuthError: If the user has no token
        """
        ...


def token_env_var(user_id: str, prefix: str = "COLLABSYNC_TOKEN_") -> str:
    """
    Environment variable holding a user's token.

    Example:
        >>> token_env_var("user-42")
        'COLLABSYNC_TOKEN_USER_42'
    """
    return prefix + re.sub(r"[^A-Za-z0-9]", "_", user_id).upper()


class EnvTokenProvider:
    """Reads tokens from the environment."""

    def __init__(
        self,
        prefix: str | None = "COLLABSYNC_TOKEN_",
        *,
        environ: Mapping[str, str] | None = None,
        fallback_var: str | None = FALLBACK_TOKEN_VAR,
    ) -> None:
        self.prefix = prefix
        self.fallback_var = fallback_var
        self._environ = environ if environ is not None else os.environ

    def get_token(self, user_id: str) -> str:
        if self.prefix:
            token = self._environ.get(token_env_var(user_id, self.prefix))
            if token:
                return token
        if self.fallback_var:
            token = self._environ.get(self.fallback_var)
            if token:
                logger.debug("Using %s for user %s", self.fallback_var, user_id)
                return token
        raise AuthError(f"No access token available for user {user_id}", user_id=user_id)


class StaticTokenProvider:
    """Serves tokens from a fixed mapping."""

    def __init__(self, tokens: Mapping[str, str]) -> None:
        self._tokens = dict(tokens)

    def get_token(self, user_id: str) -> str:
        token = self._tokens.get(user_id)
        if not token:
            raise AuthError(f"No access token available for user {user_id}", user_id=user_id)
        return token
