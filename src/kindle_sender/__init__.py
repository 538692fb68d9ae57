"""Kindle Sender package.

Objective:
    Send e-book files to Kindle addresses through the Microsoft Graph
    ``sendMail`` endpoint, then move every delivered file from the "to send"
    directory to the "sent" directory.

Key modules:
    - :mod:`kindle_sender.auth`:
        OAuth 2.0 authorization-code flow controller (cache, refresh,
        browser authorization).
    - :mod:`kindle_sender.callback_server`:
        Short-lived local HTTP listener capturing the authorization redirect.
    - :mod:`kindle_sender.token_store` / :mod:`kindle_sender.token_cache_blob`:
        Token cache persistence (local file or Azure Blob).
    - :mod:`kindle_sender.identity`:
        Token endpoint calls through MSAL.
    - :mod:`kindle_sender.email_client`:
        Graph API wrapper sending one e-book per message.
    - :mod:`kindle_sender.orchestrator`:
        End-to-end workflow coordination.
    - :mod:`kindle_sender.cli`:
        User-facing entrypoint.
"""

__version__ = "0.1.0"
