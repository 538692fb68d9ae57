"""OAuth 2.0 authorization-code flow for Microsoft Graph.

Objective:
    Hand out a valid, non-expired Graph access token with as little user
    interaction as possible. This module is the only place that decides
    whether to reuse, refresh, or re-acquire a token.

Responsibilities:
    - Reuse the cached access token while it outlives the safety margin.
    - Refresh an expired (or nearly expired) token with the cached refresh
      token, falling back to full authorization when the refresh is rejected.
    - Run the browser authorization: build the URL with a fresh anti-forgery
      state, start the local callback listener, open the browser, validate the
      echoed state, and exchange the code.
    - Persist every newly obtained token record.

High-level call tree:
    - :class:`OAuthFlowController`
        - :meth:`OAuthFlowController.get_valid_token`
            - :meth:`TokenStore.load`
            - :meth:`OAuthFlowController._refresh` (cached but stale)
                - :meth:`IdentityProvider.refresh`
            - :meth:`OAuthFlowController._authorize` (no cache / refresh failed)
                - :meth:`IdentityProvider.authorization_url`
                - :meth:`CallbackListener.start`
                - :meth:`OAuthFlowController._open_browser`
                - :meth:`CallbackListener.await_result`
                - :meth:`IdentityProvider.exchange_code`
            - :meth:`OAuthFlowController._store`
    - :func:`build_token_store` / :func:`build_flow_controller` wire the
      defaults from :class:`~kindle_sender.config.Settings`.

State machine:
    ``NoToken -> Authorizing -> HasValidToken -> Refreshing -> HasValidToken``;
    any unrecovered error is terminal (``Failed``) for the current call only.
    A failed refresh is the single automatic recovery (into ``Authorizing``).

Operational notes:
    - Expiry is stored as an absolute UTC timestamp computed when the token
      response arrives, so a cached record stays meaningful across restarts.
    - The refresh token is long-lived; it is never logged.
"""

import logging
import secrets
import webbrowser
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional, Protocol

from .callback_server import CallbackListener
from .config import Settings
from .errors import (
    CacheError,
    ExchangeFailedError,
    RefreshFailedError,
    StateMismatchError,
)
from .identity import IdentityProvider, MsalIdentityProvider
from .models import AuthorizationResult, ClientCredentials, TokenRecord, TokenResponse
from .token_cache_blob import BlobTokenCacheLocation, BlobTokenStore
from .token_store import FileTokenStore, TokenStore

logger = logging.getLogger(__name__)

DEFAULT_EXPIRY_MARGIN = timedelta(seconds=60)


class FlowState(str, Enum):
    """States of the token lifecycle."""

    NO_TOKEN = "NoToken"
    AUTHORIZING = "Authorizing"
    REFRESHING = "Refreshing"
    HAS_VALID_TOKEN = "HasValidToken"
    FAILED = "Failed"


class CallbackHandleLike(Protocol):
    """Handle returned by :meth:`CallbackListenerLike.start`; ``close`` is idempotent."""

    def close(self) -> None: ...


class CallbackListenerLike(Protocol):
    """Two-phase listener interface (real or fake)."""

    def start(self, callback_uri: str) -> CallbackHandleLike: ...

    def await_result(self, handle) -> AuthorizationResult: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _generate_state() -> str:
    return secrets.token_urlsafe(32)


class OAuthFlowController:
    """
    Provide valid access tokens using the authorization-code grant.

    Collaborators are passed in explicitly so tests can substitute fakes for
    the store, the identity provider, the listener and the browser.

    Attributes:
        credentials: Borrowed client credentials.
        store: Token cache store.
        provider: Token endpoint client.
        listener: Local callback listener.
        expiry_margin: Tokens expiring within this margin are refreshed.
        state: Current lifecycle state (for logging and tests).
    """

    def __init__(
        self,
        credentials: ClientCredentials,
        store: TokenStore,
        provider: Optional[IdentityProvider] = None,
        listener: Optional[CallbackListenerLike] = None,
        expiry_margin: timedelta = DEFAULT_EXPIRY_MARGIN,
        open_browser: bool = True,
        browser_opener: Callable[[str], bool] = webbrowser.open,
        clock: Callable[[], datetime] = _utcnow,
        state_factory: Callable[[], str] = _generate_state,
    ) -> None:
        """
        Initialize the controller.

        Args:
            credentials: Azure AD application credentials.
            store: Token cache store.
            provider: Token endpoint client (MSAL by default).
            listener: Callback listener (real listener by default).
            expiry_margin: Safety margin before expiry.
            open_browser: Whether to try launching the default browser.
            browser_opener: Function opening a URL in a browser.
            clock: Returns the current timezone-aware time.
            state_factory: Generates anti-forgery state values.
        """
        self.credentials = credentials
        self.store = store
        self.provider = provider or MsalIdentityProvider(credentials)
        self.listener = listener or CallbackListener()
        self.expiry_margin = expiry_margin
        self.open_browser = open_browser
        self._browser_opener = browser_opener
        self._clock = clock
        self._state_factory = state_factory
        self.state = FlowState.NO_TOKEN

    def get_valid_token(self) -> str:
        """
        Return an access token valid for at least the safety margin.

        Strategy:
            1. Return the cached token if it is still fresh (no network call).
            2. If a cached record is stale, refresh it. A rejected refresh
               falls through to step 3.
            3. Run the browser authorization and exchange the code.

        Returns:
            str: Access token for Graph API.

        Raises:
            ListenerError: If the callback port cannot be bound.
            AuthTimeoutError: If the browser callback never arrives.
            AuthDeniedError: If the user or provider denied access.
            StateMismatchError: If the callback state does not match.
            ExchangeFailedError: If the identity provider is unreachable or
                the code exchange fails.
        """
        record = self.store.load()

        if record is not None:
            if record.is_fresh(self._clock(), self.expiry_margin):
                logger.debug("Using cached access token (expires_at=%s)", record.expires_at.isoformat())
                self.state = FlowState.HAS_VALID_TOKEN
                return record.access_token

            logger.info("Cached access token expired or about to expire; refreshing")
            try:
                return self._refresh(record)
            except RefreshFailedError as e:
                logger.warning(f"{e}; falling back to browser authorization")
        else:
            logger.info("No cached token; browser authorization required")

        try:
            return self._authorize()
        except Exception:
            self.state = FlowState.FAILED
            raise

    def _refresh(self, record: TokenRecord) -> str:
        """Refresh a stale record.

        Args:
            record: Cached record.

        Returns:
            str: New access token.

        Raises:
            RefreshFailedError: If the provider rejects the refresh token.
        """
        self.state = FlowState.REFRESHING
        response = self.provider.refresh(record.refresh_token)
        try:
            new_record = self._to_record(response, record.refresh_token)
        except ExchangeFailedError as e:
            raise RefreshFailedError(str(e)) from e
        self._store(new_record)
        self.state = FlowState.HAS_VALID_TOKEN
        logger.info("Access token refreshed")
        return new_record.access_token

    def _authorize(self) -> str:
        """Run the full browser authorization.

        Returns:
            str: New access token.
        """
        self.state = FlowState.AUTHORIZING
        expected_state = self._state_factory()
        auth_url = self.provider.authorization_url(expected_state)

        handle = self.listener.start(self.credentials.callback_uri)
        logger.debug("Waiting for callback with state=%s...", expected_state[:8])

        # The listener owns a bound port until the handle is closed.
        try:
            print("\n" + "=" * 60)
            print("AUTHORIZATION REQUIRED")
            print("=" * 60)
            print("\nOpen the following URL in your browser and sign in:\n")
            print(auth_url)
            print("\n" + "=" * 60 + "\n")

            self._open_browser(auth_url)

            result = self.listener.await_result(handle)
        finally:
            handle.close()

        if not result.state or not secrets.compare_digest(result.state, expected_state):
            logger.error("Callback state does not match the state issued for this attempt")
            raise StateMismatchError(
                "The authorization callback carried an unexpected state value; "
                "the request may have been forged. Please try again."
            )
        if not result.code:
            raise ExchangeFailedError("The authorization callback carried no code")

        response = self.provider.exchange_code(result.code)
        record = self._to_record(response)
        self._store(record)
        self.state = FlowState.HAS_VALID_TOKEN
        logger.info("Authorization complete")
        return record.access_token

    def _open_browser(self, url: str) -> None:
        """Try to open ``url``; failure only means the user opens it manually."""
        if not self.open_browser:
            return
        try:
            opened = self._browser_opener(url)
        except Exception as e:
            logger.warning(f"Could not launch a browser: {e}")
            return
        if not opened:
            logger.warning("Could not launch a browser; open the URL above manually")

    def _to_record(
        self, response: TokenResponse, previous_refresh_token: Optional[str] = None
    ) -> TokenRecord:
        try:
            return response.to_record(self._clock(), previous_refresh_token)
        except ValueError as e:
            raise ExchangeFailedError(str(e)) from e

    def _store(self, record: TokenRecord) -> None:
        # The fresh token is still usable even when persisting it fails.
        try:
            self.store.save(record)
        except CacheError as e:
            logger.warning(f"Failed to save token cache: {e}")


def build_token_store(settings: Settings) -> TokenStore:
    """Create the token store selected by ``settings.token_cache_backend``.

    Args:
        settings: Application settings.

    Returns:
        TokenStore: Blob store when fully configured, file store otherwise.
    """
    if settings.token_cache_backend == "azure_blob":
        account_url = (settings.token_cache_blob_account_url or "").strip()
        container = (settings.token_cache_blob_container or "").strip()
        blob_name = (settings.token_cache_blob_name or "").strip()
        if account_url and container and blob_name:
            return BlobTokenStore(
                BlobTokenCacheLocation(
                    account_url=account_url,
                    container_name=container,
                    blob_name=blob_name,
                )
            )
        logger.warning(
            "token_cache_backend=azure_blob but blob settings are incomplete; falling back to file cache"
        )
    return FileTokenStore(settings.token_cache_path)


def build_flow_controller(
    settings: Settings, store: Optional[TokenStore] = None
) -> OAuthFlowController:
    """Wire an :class:`OAuthFlowController` from settings.

    Args:
        settings: Application settings.
        store: Token store to use (built from settings if None).

    Returns:
        OAuthFlowController: Ready-to-use controller.

    Raises:
        ConfigurationError: If the client secret is missing.
    """
    credentials = settings.client_credentials
    return OAuthFlowController(
        credentials=credentials,
        store=store or build_token_store(settings),
        provider=MsalIdentityProvider(credentials),
        listener=CallbackListener(timeout_seconds=settings.callback_timeout_seconds),
        expiry_margin=settings.token_expiry_margin,
        open_browser=settings.open_browser,
    )
