from unittest.mock import MagicMock

import pytest
import requests

from kindle_sender import identity
from kindle_sender.errors import ExchangeFailedError, RefreshFailedError
from kindle_sender.identity import MsalIdentityProvider
from kindle_sender.models import ClientCredentials

CREDENTIALS = ClientCredentials(
    client_id="client-id",
    client_secret="client-secret",
    tenant_id="common",
    callback_uri="http://localhost:8080/callback",
)


@pytest.fixture()
def msal_app(monkeypatch):
    app = MagicMock()
    factory = MagicMock(return_value=app)
    monkeypatch.setattr(identity.msal, "ConfidentialClientApplication", factory)
    return app, factory


def test_app_is_confidential_client_for_tenant(msal_app) -> None:
    """The MSAL app authenticates with the client secret against the tenant authority."""

    app, factory = msal_app
    app.get_authorization_request_url.return_value = "https://login/authorize"

    MsalIdentityProvider(CREDENTIALS).authorization_url("state-1")

    factory.assert_called_once_with(
        client_id="client-id",
        client_credential="client-secret",
        authority="https://login.microsoftonline.com/common",
    )


def test_authorization_url_embeds_state_and_redirect(msal_app) -> None:
    """The authorization URL is built with Mail.Send, the state and the callback URI."""

    app, _ = msal_app
    app.get_authorization_request_url.return_value = "https://login/authorize?x=1"

    url = MsalIdentityProvider(CREDENTIALS).authorization_url("state-1")

    assert url == "https://login/authorize?x=1"
    args, kwargs = app.get_authorization_request_url.call_args
    assert args[0] == ["https://graph.microsoft.com/Mail.Send"]
    assert kwargs["state"] == "state-1"
    assert kwargs["redirect_uri"] == "http://localhost:8080/callback"
    assert kwargs["response_mode"] == "query"


def test_exchange_code_returns_token_response(msal_app) -> None:
    """A successful exchange yields a validated TokenResponse."""

    app, _ = msal_app
    app.acquire_token_by_authorization_code.return_value = {
        "access_token": "a",
        "refresh_token": "r",
        "expires_in": 3600,
        "token_type": "Bearer",
    }

    response = MsalIdentityProvider(CREDENTIALS).exchange_code("abc123")

    assert response.access_token == "a"
    assert response.expires_in == 3600
    args, kwargs = app.acquire_token_by_authorization_code.call_args
    assert args[0] == "abc123"
    assert kwargs["redirect_uri"] == "http://localhost:8080/callback"


def test_exchange_code_error_result_raises(msal_app) -> None:
    """An error payload from the token endpoint is an ExchangeFailedError."""

    app, _ = msal_app
    app.acquire_token_by_authorization_code.return_value = {
        "error": "invalid_grant",
        "error_description": "AADSTS70008: code expired",
    }

    with pytest.raises(ExchangeFailedError, match="code expired"):
        MsalIdentityProvider(CREDENTIALS).exchange_code("stale")


def test_exchange_code_network_error_is_wrapped(msal_app) -> None:
    """Transport errors never escape as raw requests exceptions."""

    app, _ = msal_app
    app.acquire_token_by_authorization_code.side_effect = requests.ConnectionError("offline")

    with pytest.raises(ExchangeFailedError, match="offline"):
        MsalIdentityProvider(CREDENTIALS).exchange_code("abc123")


def test_exchange_code_incomplete_response_raises(msal_app) -> None:
    """A response without expires_in cannot be cached and is rejected."""

    app, _ = msal_app
    app.acquire_token_by_authorization_code.return_value = {"access_token": "a"}

    with pytest.raises(ExchangeFailedError, match="unexpected token response"):
        MsalIdentityProvider(CREDENTIALS).exchange_code("abc123")


def test_refresh_returns_token_response(msal_app) -> None:
    """A refresh uses the cached refresh token."""

    app, _ = msal_app
    app.acquire_token_by_refresh_token.return_value = {
        "access_token": "a2",
        "refresh_token": "r2",
        "expires_in": 1800,
    }

    response = MsalIdentityProvider(CREDENTIALS).refresh("r1")

    assert response.access_token == "a2"
    assert response.refresh_token == "r2"
    args, kwargs = app.acquire_token_by_refresh_token.call_args
    assert args[0] == "r1"
    assert kwargs["scopes"] == ["https://graph.microsoft.com/Mail.Send"]


def test_refresh_rejected_raises_refresh_failed(msal_app) -> None:
    """A revoked refresh token is a RefreshFailedError."""

    app, _ = msal_app
    app.acquire_token_by_refresh_token.return_value = {
        "error": "invalid_grant",
        "error_description": "refresh token revoked",
    }

    with pytest.raises(RefreshFailedError, match="revoked"):
        MsalIdentityProvider(CREDENTIALS).refresh("r1")


def test_refresh_network_error_raises_refresh_failed(msal_app) -> None:
    """Transport errors during refresh are RefreshFailedError."""

    app, _ = msal_app
    app.acquire_token_by_refresh_token.side_effect = requests.Timeout("slow")

    with pytest.raises(RefreshFailedError):
        MsalIdentityProvider(CREDENTIALS).refresh("r1")


@pytest.mark.parametrize(
    "failure",
    [requests.ConnectionError("login.microsoftonline.com unreachable"), ValueError("invalid authority")],
)
def test_authorization_url_wraps_app_creation_failure(monkeypatch, failure) -> None:
    """MSAL contacts the authority on creation; its failures become ExchangeFailedError."""

    monkeypatch.setattr(identity.msal, "ConfidentialClientApplication", MagicMock(side_effect=failure))

    with pytest.raises(ExchangeFailedError, match="Could not reach the identity provider"):
        MsalIdentityProvider(CREDENTIALS).authorization_url("state-1")
