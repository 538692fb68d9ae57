from datetime import datetime, timedelta, timezone

import pytest

from kindle_sender.models import SendMailRequest, Message, Recipient, EmailAddress, FileAttachment
from kindle_sender.models import TokenRecord, TokenResponse

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_token_response_to_record_uses_absolute_expiry() -> None:
    """expires_at is the receive time plus expires_in."""

    response = TokenResponse(access_token="a", refresh_token="r", expires_in=3600)

    record = response.to_record(NOW)

    assert record.expires_at == NOW + timedelta(seconds=3600)
    assert record.refresh_token == "r"


def test_token_response_keeps_previous_refresh_token_when_not_rotated() -> None:
    """A refresh response without refresh_token keeps the cached one."""

    response = TokenResponse(access_token="a2", expires_in=60)

    record = response.to_record(NOW, previous_refresh_token="old-refresh")

    assert record.refresh_token == "old-refresh"


def test_token_response_prefers_rotated_refresh_token() -> None:
    """A rotated refresh token replaces the cached one."""

    response = TokenResponse(access_token="a2", refresh_token="rotated", expires_in=60)

    record = response.to_record(NOW, previous_refresh_token="old-refresh")

    assert record.refresh_token == "rotated"


def test_token_response_without_any_refresh_token_is_rejected() -> None:
    """A record always needs a refresh token."""

    response = TokenResponse(access_token="a", expires_in=60)

    with pytest.raises(ValueError, match="offline_access"):
        response.to_record(NOW)


def test_token_response_ignores_unknown_fields() -> None:
    """Extra provider fields do not break validation."""

    response = TokenResponse.model_validate(
        {
            "access_token": "a",
            "refresh_token": "r",
            "expires_in": 10,
            "ext_expires_in": 10,
            "id_token_claims": {"oid": "x"},
        }
    )

    assert response.expires_in == 10


def test_token_record_freshness_respects_margin() -> None:
    """A token expiring inside the safety margin is not fresh."""

    record = TokenRecord(access_token="a", refresh_token="r", expires_at=NOW + timedelta(seconds=30))

    assert record.is_fresh(NOW, timedelta(seconds=0)) is True
    assert record.is_fresh(NOW, timedelta(seconds=60)) is False


def test_send_mail_request_serializes_graph_aliases() -> None:
    """The request body uses Graph field names."""

    request = SendMailRequest(
        message=Message(
            subject="Your Kindle File",
            to_recipients=[Recipient(email_address=EmailAddress(address="me@kindle.com"))],
            attachments=[FileAttachment(name="book.epub", content_bytes="Ym9vaw==")],
        )
    )

    payload = request.model_dump(by_alias=True, exclude_none=True)

    assert payload["saveToSentItems"] is True
    assert payload["message"]["toRecipients"] == [{"emailAddress": {"address": "me@kindle.com"}}]
    attachment = payload["message"]["attachments"][0]
    assert attachment["@odata.type"] == "#microsoft.graph.fileAttachment"
    assert attachment["contentBytes"] == "Ym9vaw=="
    assert attachment["contentType"] == "application/octet-stream"
