"""Twitter OAuth 2.0 token refresh.

The authorization-code exchange happens in the login flow; this module only
rotates an existing refresh token into a new access token.
"""

import logging
import time
from dataclasses import dataclass

import httpx

from likes_archive.config import settings
from likes_archive.domain.models import OAuthToken

logger = logging.getLogger(__name__)

TWITTER_TOKEN_PATH = "/2/oauth2/token"


class OAuthError(Exception):
    """Raised when a token refresh fails."""

    pass


class OAuthTransportError(OAuthError):
    """The token endpoint was unreachable or failed; the refresh token may still be valid."""

    pass


@dataclass
class OAuthConfig:
    """OAuth client configuration."""

    client_id: str
    client_secret: str | None = None
    base_url: str = "https://api.twitter.com"


def get_oauth_config() -> OAuthConfig:
    """Get OAuth config from settings."""
    if not settings.twitter_client_id:
        raise OAuthError(
            "TWITTER_CLIENT_ID environment variable is required to refresh tokens. "
            "Create OAuth 2.0 credentials in the Twitter developer portal."
        )

    return OAuthConfig(
        client_id=settings.twitter_client_id,
        client_secret=settings.twitter_client_secret,
        base_url=settings.twitter_api_base_url,
    )


async def refresh_access_token(
    refresh_token: str,
    config: OAuthConfig | None = None,
    client: httpx.AsyncClient | None = None,
) -> OAuthToken:
    """Exchange a refresh token for a new token pair.

    Twitter rotates refresh tokens, so the returned token replaces the old
    one entirely and must be persisted before the old one is used again.

    Args:
        refresh_token: The current refresh token.
        config: OAuth client configuration, read from settings if omitted.
        client: HTTP client to use, a short-lived one if omitted.

    Returns:
        The new OAuthToken.

    Raises:
        OAuthTransportError: If the token endpoint could not be reached.
        OAuthError: If the refresh was rejected.
    """
    config = config or get_oauth_config()

    # Confidential clients authenticate with HTTP basic auth
    auth = (config.client_id, config.client_secret) if config.client_secret else None

    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(base_url=config.base_url, timeout=30)

    try:
        response = await client.post(
            TWITTER_TOKEN_PATH,
            data={
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
                "client_id": config.client_id,
            },
            auth=auth,
        )
    except httpx.HTTPError as e:
        raise OAuthTransportError(f"Token refresh request failed: {e}") from e
    finally:
        if owns_client:
            await client.aclose()

    if response.status_code >= 500:
        raise OAuthTransportError(f"Token endpoint error: {response.status_code}")

    if response.status_code != 200:
        try:
            data = response.json()
        except ValueError:
            data = {}
        error = data.get("error", "unknown")
        error_desc = data.get("error_description", response.text)

        if error == "invalid_request" or error == "invalid_grant":
            raise OAuthError(
                "Refresh token is invalid or expired. Please log in again."
            )

        raise OAuthError(f"Token refresh failed: {error_desc}")

    try:
        data = response.json()
    except ValueError as e:
        raise OAuthError("Token refresh response is not valid JSON") from e
    if not data.get("access_token") or not data.get("refresh_token"):
        raise OAuthError("Token refresh response did not include both tokens")

    expires_in = data.get("expires_in")
    logger.debug("Refreshed Twitter access token (expires in %s seconds)", expires_in)

    return OAuthToken(
        access_token=data["access_token"],
        refresh_token=data["refresh_token"],
        expires_at=int(time.time()) + int(expires_in) if expires_in else None,
    )
