"""Identity provider client (Microsoft identity platform).

Objective:
    Wrap the token endpoint calls of the authorization-code grant so the flow
    controller only deals with validated :class:`~kindle_sender.models.TokenResponse`
    objects and typed errors.

Responsibilities:
    - Manage the MSAL ``ConfidentialClientApplication`` lifecycle.
    - Build the authorization URL (client id, redirect URI, Mail.Send scope,
      anti-forgery state).
    - Exchange an authorization code for tokens.
    - Redeem a refresh token for a new access token.

High-level call tree:
    - :class:`MsalIdentityProvider`
        - :meth:`MsalIdentityProvider.authorization_url`
        - :meth:`MsalIdentityProvider.exchange_code`
        - :meth:`MsalIdentityProvider.refresh`
            - :meth:`MsalIdentityProvider._get_app`
            - :func:`_parse_token_result`

Operational notes:
    - MSAL adds the reserved scopes ``offline_access openid profile`` to every
      request, which is what makes the provider issue a refresh token.
    - The client secret authenticates this app as a confidential client
      during code exchange and refresh.
    - MSAL keeps its own in-memory cache; persistence is handled by
      :mod:`kindle_sender.token_store`, not by MSAL.
"""

import logging
from typing import Any, Optional, Protocol

import msal
import requests
from pydantic import ValidationError

from .errors import AuthError, ExchangeFailedError, RefreshFailedError
from .models import ClientCredentials, TokenResponse

logger = logging.getLogger(__name__)


class IdentityProvider(Protocol):
    """Token endpoint operations used by the flow controller."""

    def authorization_url(self, state: str) -> str: ...

    def exchange_code(self, code: str) -> TokenResponse: ...

    def refresh(self, refresh_token: str) -> TokenResponse: ...


def _parse_token_result(
    result: Optional[dict[str, Any]], error_cls: type[AuthError], action: str
) -> TokenResponse:
    """Validate a raw MSAL result.

    Args:
        result: Dict returned by MSAL.
        error_cls: Error type raised on failure.
        action: Short description used in messages.

    Returns:
        TokenResponse: Validated response.

    Raises:
        AuthError: ``error_cls`` when the result is an error or incomplete.
    """
    if not result:
        raise error_cls(f"{action} failed: empty response from token endpoint")

    if "error" in result:
        error = result.get("error", "unknown")
        error_description = result.get("error_description", "Unknown error")
        logger.error(f"{action} failed: {error} - {error_description}")
        raise error_cls(f"{action} failed: {error_description}")

    try:
        return TokenResponse.model_validate(result)
    except ValidationError as e:
        raise error_cls(f"{action} failed: unexpected token response ({e.error_count()} error(s))") from e


class MsalIdentityProvider:
    """
    Token endpoint client backed by MSAL.

    Attributes:
        credentials: Borrowed client credentials.
        scopes: Delegated scopes requested for the access token.
    """

    GRAPH_SCOPES = [
        "https://graph.microsoft.com/Mail.Send",
    ]

    def __init__(self, credentials: ClientCredentials, scopes: Optional[list[str]] = None) -> None:
        """
        Initialize the provider.

        Args:
            credentials: Azure AD application credentials.
            scopes: Scopes to request (defaults to Mail.Send).
        """
        self.credentials = credentials
        self.scopes = list(scopes or self.GRAPH_SCOPES)
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def _get_app(self) -> msal.ConfidentialClientApplication:
        """
        Get or create the MSAL confidential client application.

        Returns:
            msal.ConfidentialClientApplication: MSAL app instance.
        """
        if self._app is None:
            self._app = msal.ConfidentialClientApplication(
                client_id=self.credentials.client_id,
                client_credential=self.credentials.client_secret,
                authority=self.credentials.authority,
            )
            logger.debug("Created MSAL confidential client application")
        return self._app

    def authorization_url(self, state: str) -> str:
        """Build the URL the user opens to grant access.

        Args:
            state: Anti-forgery value echoed back on the redirect.

        Returns:
            str: Authorization endpoint URL.

        Raises:
            ExchangeFailedError: If the identity provider cannot be reached
                or the authority is invalid.
        """
        try:
            return self._get_app().get_authorization_request_url(
                self.scopes,
                state=state,
                redirect_uri=self.credentials.callback_uri,
                response_mode="query",
            )
        except (requests.RequestException, ValueError) as e:
            raise ExchangeFailedError(f"Could not reach the identity provider: {e}") from e

    def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Code captured by the callback listener.

        Returns:
            TokenResponse: Validated token response.

        Raises:
            ExchangeFailedError: On provider errors or network failures.
        """
        logger.debug("Exchanging authorization code for tokens...")
        try:
            result = self._get_app().acquire_token_by_authorization_code(
                code,
                scopes=self.scopes,
                redirect_uri=self.credentials.callback_uri,
            )
        except (requests.RequestException, ValueError) as e:
            raise ExchangeFailedError(f"Authorization code exchange failed: {e}") from e
        return _parse_token_result(result, ExchangeFailedError, "Authorization code exchange")

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Redeem a refresh token for a new access token.

        Args:
            refresh_token: Cached refresh token.

        Returns:
            TokenResponse: Validated token response (may carry a rotated
            refresh token).

        Raises:
            RefreshFailedError: On provider errors or network failures.
        """
        logger.debug("Refreshing access token...")
        try:
            result = self._get_app().acquire_token_by_refresh_token(
                refresh_token,
                scopes=self.scopes,
            )
        except (requests.RequestException, ValueError) as e:
            raise RefreshFailedError(f"Token refresh failed: {e}") from e
        return _parse_token_result(result, RefreshFailedError, "Token refresh")
