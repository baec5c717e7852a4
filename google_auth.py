from __future__ import annotations

import logging
import os
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import requests
from google.auth import exceptions as google_auth_exceptions
from google.auth.transport import requests as google_auth_requests
from google.oauth2 import id_token as google_id_token

logger = logging.getLogger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
SCOPE = "openid email profile"


class GoogleAuthError(Exception):
    pass


def client_settings() -> Dict[str, Optional[str]]:
    return {
        "client_id": os.environ.get("GOOGLE_CLIENT_ID"),
        "client_secret": os.environ.get("GOOGLE_CLIENT_SECRET"),
        "redirect_uri": os.environ.get("GOOGLE_CALLBACK_URL"),
    }


def authorization_url(state: str, redirect_uri: str) -> str:
    settings = client_settings()
    if not settings["client_id"]:
        raise GoogleAuthError("Google login is not configured")
    params = {
        "client_id": settings["client_id"],
        "redirect_uri": settings["redirect_uri"] or redirect_uri,
        "response_type": "code",
        "scope": SCOPE,
        "state": state,
        "prompt": "select_account",
    }
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


def fetch_google_profile(code: str, redirect_uri: str) -> Dict[str, Any]:
    """Exchange an authorization code and return the verified ID token claims."""
    settings = client_settings()
    if not settings["client_id"] or not settings["client_secret"]:
        raise GoogleAuthError("Google login is not configured")
    try:
        resp = requests.post(
            TOKEN_URL,
            data={
                "code": code,
                "client_id": settings["client_id"],
                "client_secret": settings["client_secret"],
                "redirect_uri": settings["redirect_uri"] or redirect_uri,
                "grant_type": "authorization_code",
            },
            headers={"Accept": "application/json"},
            timeout=10,
        )
        resp.raise_for_status()
        token_raw = resp.json().get("id_token")
    except (requests.RequestException, ValueError) as exc:
        logger.exception("Google token exchange failed")
        raise GoogleAuthError("Could not contact Google") from exc
    if not token_raw:
        raise GoogleAuthError("Google did not return an ID token")
    try:
        info = google_id_token.verify_oauth2_token(
            token_raw,
            google_auth_requests.Request(),
            audience=settings["client_id"],
        )
    except (ValueError, google_auth_exceptions.GoogleAuthError) as exc:
        raise GoogleAuthError("Invalid Google token") from exc
    email = str(info.get("email") or "").strip().lower()
    if not email or "@" not in email:
        raise GoogleAuthError("Google account has no email")
    if info.get("email_verified") is False:
        raise GoogleAuthError("Google email is not verified")
    return info
