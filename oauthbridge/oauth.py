"""
Firebase token management for users signed in through the loopback flow.
"""

import time
import requests
from typing import Dict, Optional

from .constants import OAUTH_TOKEN_REFRESH_BUFFER
from .utils import BridgeException


class TokenRefreshError(BridgeException):
    """Firebase token refresh errors."""
    pass


class OAuthManager:
    """Utility class for OAuth token management."""

    FIREBASE_TOKEN_URL = 'https://securetoken.googleapis.com/v1/token'

    @staticmethod
    def is_token_expired(expires_at: Optional[int]) -> bool:
        """
        Check if a token has expired.

        Args:
            expires_at: Unix timestamp when token expires

        Returns:
            True if token is expired or about to, False otherwise
        """
        if not expires_at:
            return True

        current_time = int(time.time())

        return current_time >= (int(expires_at) - OAUTH_TOKEN_REFRESH_BUFFER)

    @staticmethod
    def refresh_token(refresh_token: str, api_key: str) -> Dict[str, str]:
        """
        Refresh Firebase OAuth tokens.

        Args:
            refresh_token: The refresh token from Firebase
            api_key: The Firebase web API key of the project

        Returns:
            Dictionary with new tokens and expiry

        Raises:
            TokenRefreshError: If token refresh fails
        """
        if not refresh_token:
            raise TokenRefreshError("No refresh token available, login again")

        payload = {
            'grant_type': 'refresh_token',
            'refresh_token': refresh_token
        }

        try:
            response = requests.post(
                f"{OAuthManager.FIREBASE_TOKEN_URL}?key={api_key}",
                data=payload,
                headers={'Content-Type': 'application/x-www-form-urlencoded'},
                timeout=10
            )
        except requests.exceptions.RequestException as e:
            raise TokenRefreshError(f"Failed to refresh token: {str(e)}")

        if response.status_code != 200:
            try:
                message = response.json().get('error', {}).get('message', 'Unknown error')
            except ValueError:
                message = response.text or 'Unknown error'
            raise TokenRefreshError(f"Token refresh failed: {message}", code=response.status_code)

        data = response.json()

        # Calculate new expiry timestamp
        expires_in = int(data.get('expires_in', '3600'))
        expires_at = int(time.time()) + expires_in

        return {
            'id_token': data['id_token'],
            'refresh_token': data['refresh_token'],
            'expires_at': expires_at
        }
