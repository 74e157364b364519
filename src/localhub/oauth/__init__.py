"""OAuth session management for external providers."""

from localhub.oauth.google import GoogleOAuthManager
from localhub.oauth.session import OAuthSessionManager
from localhub.oauth.strava import StravaOAuthManager
from localhub.oauth.tokens import ConnectionState, OAuthConnection, OAuthTokens, TokenVault

__all__ = [
    "ConnectionState",
    "GoogleOAuthManager",
    "OAuthConnection",
    "OAuthSessionManager",
    "OAuthTokens",
    "StravaOAuthManager",
    "TokenVault",
]
