"""In-memory token cache with silent renewal.

Holds the signed-in account, its last access token and the refresh token
needed to renew it without user interaction. Nothing is written to disk.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from entrapulse.auth.models.config import AuthConfig
from entrapulse.auth.models.errors import TokenError, TokenRefreshError
from entrapulse.auth.models.flow import with_reserved_scopes
from entrapulse.auth.models.tokens import AccountRef, AuthToken, RefreshTokenRequest
from entrapulse.auth.services.tokens import OAuth2TokenManager

logger = logging.getLogger(__name__)


@dataclass
class _CacheEntry:
    account: AccountRef
    token: AuthToken | None = None
    refresh_token: str | None = field(default=None, repr=False)


class TokenCache:
    """Single-user token cache.

    At most one account is tracked for silent renewal; it is the account of
    the last successful interactive sign-in. Application tokens are kept
    separately since they have no account.
    """

    def __init__(self, config: AuthConfig, token_manager: OAuth2TokenManager):
        self._config = config
        self._token_manager = token_manager
        self._entries: dict[str, _CacheEntry] = {}
        self._tracked: AccountRef | None = None
        self._application_token: AuthToken | None = None

    @property
    def tracked_account(self) -> AccountRef | None:
        """Account of the last interactive sign-in, or None when signed out."""
        return self._tracked

    @property
    def last_token(self) -> AuthToken | None:
        """Most recent token for the tracked account, else the application token."""
        if self._tracked is not None:
            entry = self._entries.get(self._tracked.home_account_id)
            return entry.token if entry else None
        return self._application_token

    def store(
        self,
        account: AccountRef | None,
        token: AuthToken,
        refresh_token: str | None = None,
    ) -> None:
        """Store a freshly issued token.

        Args:
            account: Signed-in account, or None for application tokens
            token: The issued token
            refresh_token: Refresh artifact for later silent renewal
        """
        if account is None:
            self._application_token = token
            return

        entry = self._entries.get(account.home_account_id)
        if entry is None:
            entry = _CacheEntry(account=account)
            self._entries[account.home_account_id] = entry

        entry.account = account
        entry.token = token
        if refresh_token:
            entry.refresh_token = refresh_token

        if self._tracked and self._tracked.home_account_id != account.home_account_id:
            logger.debug(f"Switching tracked account to {account.username or 'unknown'}")
        self._tracked = account

    async def try_silent(
        self, account: AccountRef, scopes: list[str]
    ) -> AuthToken | None:
        """Renew a token for the account without user interaction.

        Returns the cached token while it is valid and covers the scopes,
        otherwise redeems the stored refresh token.

        Returns:
            AuthToken, or None on a miss (unknown account, no refresh token,
            provider rejected the refresh grant)

        Raises:
            TokenRefreshError: If the refresh request failed in transport
        """
        entry = self._entries.get(account.home_account_id)
        if entry is None:
            logger.debug("Silent renewal miss: account not in cache")
            return None

        if entry.token and entry.token.is_valid() and entry.token.covers(scopes):
            logger.debug("Silent renewal hit: cached token still valid")
            return entry.token

        if not entry.refresh_token:
            logger.debug("Silent renewal miss: no refresh token cached")
            return None

        refresh_request = RefreshTokenRequest(
            token_endpoint=self._config.token_endpoint,
            refresh_token=entry.refresh_token,
            client_id=self._config.client_id,
            scope=" ".join(with_reserved_scopes(scopes)),
        )

        try:
            token_response = await self._token_manager.refresh_access_token(
                refresh_request
            )
        except TokenError as e:
            raise TokenRefreshError(f"Silent token renewal failed: {e}") from e

        if not token_response.is_success():
            logger.warning(
                f"Silent renewal rejected by provider: {token_response.describe_error()}"
            )
            return None

        token = token_response.to_auth_token(scopes)
        if not token.id_token and entry.token:
            token.id_token = entry.token.id_token

        entry.token = token
        if token_response.refresh_token:
            entry.refresh_token = token_response.refresh_token

        logger.info("Silent token renewal successful")
        return token

    def list_accounts(self) -> list[AccountRef]:
        """List every account with a cache entry.

        Returns:
            Accounts in the order they were first stored
        """
        return [entry.account for entry in self._entries.values()]

    def remove_account(self, account: AccountRef) -> None:
        """Forget an account and its tokens.

        Unknown accounts are ignored. Removing the tracked account leaves the
        cache signed out.

        Args:
            account: Account to remove, matched by home_account_id
        """
        self._entries.pop(account.home_account_id, None)
        if self._tracked and self._tracked.home_account_id == account.home_account_id:
            self._tracked = None

    def discard_session(self) -> None:
        """Drop the tracked account and the in-memory tokens of this session.

        Other cached accounts are kept; use clear() to remove them too.
        """
        if self._tracked is not None:
            self.remove_account(self._tracked)
        self._application_token = None

    def clear(self) -> None:
        """Remove every cached account and token, not only the tracked one.

        Safe to call on an empty cache.
        """
        count = len(self._entries)
        self._entries.clear()
        self._tracked = None
        self._application_token = None
        if count:
            logger.info(f"Cleared {count} cached account(s)")
