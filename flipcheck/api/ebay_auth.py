"""eBay OAuth authentication handler."""

import base64
import logging
from datetime import datetime, timedelta
from typing import Optional

import httpx

from flipcheck.api.http import RateLimiter, RetryController
from flipcheck.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = "https://api.ebay.com/oauth/api_scope"


class EbayAuth:
    """Handles eBay OAuth2 client-credentials tokens."""

    def __init__(
        self,
        settings: Settings | None = None,
        retry: RetryController | None = None,
        rate_limiter: RateLimiter | None = None,
        throttle_name: str = "ebay_browse",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.settings = settings or default_settings
        self.retry = retry or RetryController()
        # Token requests hit the same host as the Browse calls and share their throttle.
        self.rate_limiter = rate_limiter or RateLimiter()
        self.throttle_name = throttle_name
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expiry: Optional[datetime] = None
        self._scope: Optional[str] = None

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.ebay_app_id and self.settings.ebay_cert_id)

    @property
    def _auth_header(self) -> str:
        """Generate Base64 encoded authorization header."""
        credentials = f"{self.settings.ebay_app_id}:{self.settings.ebay_cert_id}"
        encoded = base64.b64encode(credentials.encode()).decode()
        return f"Basic {encoded}"

    def _is_token_valid(self, scope: str) -> bool:
        if not self._access_token or not self._token_expiry or self._scope != scope:
            return False
        # Refresh a minute before expiry
        return datetime.utcnow() < (self._token_expiry - timedelta(minutes=1))

    async def get_client_credentials_token(self, scope: str = DEFAULT_SCOPE) -> Optional[str]:
        """Get an application access token using the client credentials grant.

        Returns None when credentials are missing or eBay refuses the request,
        so callers can treat the source as unavailable.
        """
        if not self.is_configured:
            logger.debug("eBay credentials not configured")
            return None

        if self._is_token_valid(scope):
            return self._access_token

        logger.info("Getting eBay client credentials token...")

        headers = {
            "Content-Type": "application/x-www-form-urlencoded",
            "Authorization": self._auth_header,
        }
        data = {"grant_type": "client_credentials", "scope": scope}

        throttle = self.rate_limiter.throttle(self.throttle_name)
        async with httpx.AsyncClient(
            timeout=self.settings.http_timeout_seconds, transport=self._transport
        ) as client:
            response = await self.retry.retrying_call(
                lambda: throttle.call(lambda: client.post(self.settings.ebay_auth_url, headers=headers, data=data)),
                endpoint=self.settings.ebay_auth_url,
            )

        if response.status_code != 200:
            logger.error(f"Client credentials token failed: {response.status_code} - {response.text[:100]}")
            return None

        try:
            token_data = response.json()
        except ValueError:
            token_data = None
        access_token = token_data.get("access_token") if isinstance(token_data, dict) else None
        if not access_token or not isinstance(access_token, str):
            logger.error(f"Client credentials token missing from response: {response.text[:100]}")
            return None

        try:
            expires_in = int(token_data.get("expires_in", 7200))
        except (TypeError, ValueError):
            expires_in = 7200

        self._access_token = access_token
        self._scope = scope
        self._token_expiry = datetime.utcnow() + timedelta(seconds=expires_in)

        logger.info(f"Client token obtained, expires in {expires_in}s")
        return self._access_token
