"""Bearer tokens for OAuth mailboxes from an msal token cache.

Only silent acquisition happens here: the cache file is produced by an
interactive login outside the agent, and msal refreshes expired access
tokens from the cached refresh token.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import msal
import structlog

from .config import OAuthConfig
from .errors import AuthenticationError
from .interface import TokenProvider

logger = structlog.get_logger()


class MsalTokenProvider(TokenProvider):
    def __init__(self, config: OAuthConfig) -> None:
        if not config.client_id:
            raise AuthenticationError("oauth client_id is not configured")
        self._config = config
        self._cache_path = Path(config.token_cache_path)
        self._cache = msal.SerializableTokenCache()
        if self._cache_path.is_file():
            self._cache.deserialize(self._cache_path.read_text(encoding="utf-8"))
        self._app = msal.PublicClientApplication(
            config.client_id,
            authority=config.authority,
            token_cache=self._cache,
        )

    async def get_token(self, username: str) -> str:
        return await asyncio.to_thread(self._get_token_sync, username)

    def _get_token_sync(self, username: str) -> str:
        accounts = self._app.get_accounts(username=username)
        if not accounts:
            raise AuthenticationError(f"no cached account for {username}; sign in first")

        result = self._app.acquire_token_silent(self._config.scopes, account=accounts[0])
        if not result or "access_token" not in result:
            error = (result or {}).get("error_description", "token refresh failed")
            raise AuthenticationError(f"cannot acquire token for {username}: {error}")

        if self._cache.has_state_changed:
            self._cache_path.write_text(self._cache.serialize(), encoding="utf-8")
            logger.debug("token_cache_saved", path=str(self._cache_path))
        return result["access_token"]
