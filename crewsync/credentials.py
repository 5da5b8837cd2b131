from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from google.auth.exceptions import RefreshError, TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from crewsync.errors import CredentialFailure
from crewsync.models import GoogleConfig

logger = logging.getLogger(__name__)

CALENDAR_SCOPES = ["https://www.googleapis.com/auth/calendar"]


def _client_from_file(path: str) -> tuple[str, str]:
    try:
        payload = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise CredentialFailure(f"Cannot read OAuth client file {path}: {exc}") from exc
    section: Any = (payload.get("web") or payload.get("installed")) if isinstance(payload, dict) else None
    if not isinstance(section, dict):
        raise CredentialFailure(f"OAuth client file {path} has no 'web' or 'installed' section.")
    return str(section.get("client_id", "")).strip(), str(section.get("client_secret", "")).strip()


def resolve_client(config: GoogleConfig) -> tuple[str, str]:
    client_id, client_secret = config.client_id, config.client_secret
    if (not client_id or not client_secret) and config.credentials_path:
        client_id, client_secret = _client_from_file(config.credentials_path)
    if not client_id or not client_secret:
        raise CredentialFailure("Google OAuth client_id/client_secret are not configured.")
    return client_id, client_secret


def build_credentials(config: GoogleConfig, refresh_token: str) -> Credentials:
    token = str(refresh_token or "").strip()
    if not token:
        raise CredentialFailure("Google refresh token is missing.")
    client_id, client_secret = resolve_client(config)
    credentials = Credentials(
        token=None,
        refresh_token=token,
        token_uri=config.token_uri,
        client_id=client_id,
        client_secret=client_secret,
        scopes=CALENDAR_SCOPES,
    )
    try:
        credentials.refresh(Request())
    except (RefreshError, TransportError) as exc:
        raise CredentialFailure(f"Google rejected the refresh token: {exc}") from exc
    logger.debug("Access token refreshed, expires at %s", credentials.expiry)
    return credentials


def rotated_refresh_token(credentials: Credentials, original: str) -> str:
    current = str(getattr(credentials, "refresh_token", "") or "").strip()
    if current and current != str(original or "").strip():
        return current
    return ""
