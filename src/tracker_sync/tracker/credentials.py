"""Tracker credentials: static OAuth token or IAM bearer token.

The IAM path signs a short-lived JWT with the service account key
(PS256), exchanges it for a bearer token at the token endpoint, and
caches that token until shortly before it expires. The endpoint does
not report the token lifetime; it is configured instead.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass

import httpx
import jwt
import structlog

from tracker_sync.config import Settings
from tracker_sync.errors import CredentialError

logger = structlog.get_logger()

JWT_ALGORITHM = "PS256"
JWT_LIFETIME_SECONDS = 3600


@dataclass(frozen=True, slots=True)
class _CachedToken:
    token: str
    expires_at: float


class IamTokenCache:
    """Process-wide IAM token with proactive refresh.

    ``get()`` returns the cached token while it is outside the refresh
    margin; otherwise it issues a new one. Refreshes are serialised by
    an ``asyncio.Lock`` so concurrent callers share one issuance; the
    cached value is swapped as a whole, never mutated in place.
    """

    def __init__(
        self,
        *,
        service_account_id: str,
        key_id: str,
        private_key: str,
        token_url: str,
        http_client: httpx.AsyncClient,
        lifetime_seconds: int = 12 * 60 * 60,
        refresh_margin_seconds: int = 5 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._service_account_id = service_account_id
        self._key_id = key_id
        self._private_key = private_key
        self._token_url = token_url
        self._http = http_client
        self._lifetime = lifetime_seconds
        self._margin = refresh_margin_seconds
        self._clock = clock
        self._cached: _CachedToken | None = None
        self._lock = asyncio.Lock()

    def _is_fresh(self, cached: _CachedToken | None) -> bool:
        return cached is not None and self._clock() < cached.expires_at - self._margin

    async def get(self) -> str:
        """Current bearer token, refreshed first if expired or about to be.

        Raises:
            CredentialError: If signing or the token exchange fails.
        """
        cached = self._cached
        if cached is not None and self._is_fresh(cached):
            return cached.token

        async with self._lock:
            cached = self._cached
            if cached is not None and self._is_fresh(cached):
                return cached.token
            cached = await self._issue()
            self._cached = cached
            return cached.token

    def invalidate(self) -> None:
        """Drop the cached token; the next ``get()`` issues a new one."""
        self._cached = None

    def sign_jwt(self, now: float) -> str:
        """Build the signed service-account JWT for the token exchange."""
        claims = {
            "iss": self._service_account_id,
            "aud": self._token_url,
            "iat": int(now),
            "exp": int(now) + JWT_LIFETIME_SECONDS,
        }
        return jwt.encode(
            claims,
            self._private_key,
            algorithm=JWT_ALGORITHM,
            headers={"kid": self._key_id},
        )

    async def _issue(self) -> _CachedToken:
        now = self._clock()
        try:
            signed = self.sign_jwt(now)
        except (jwt.PyJWTError, ValueError, TypeError) as exc:
            msg = f"Failed to sign IAM JWT: {exc}"
            raise CredentialError(msg) from exc

        try:
            response = await self._http.post(self._token_url, json={"jwt": signed})
            response.raise_for_status()
            token = response.json()["iamToken"]
        except (httpx.HTTPError, KeyError, TypeError, ValueError) as exc:
            msg = f"IAM token request failed: {exc}"
            raise CredentialError(msg) from exc

        if not isinstance(token, str) or not token:
            msg = "IAM token response did not contain a token"
            raise CredentialError(msg)

        logger.info("iam_token_refreshed", expires_in=self._lifetime)
        return _CachedToken(token=token, expires_at=now + self._lifetime)


class TrackerCredentials:
    """Builds auth headers for every outbound tracker request.

    With an ``IamTokenCache`` configured, requests carry
    ``Bearer <iam token>``; if the IAM path fails and an OAuth token is
    configured, they fall back to ``OAuth <token>``.
    """

    def __init__(
        self,
        *,
        org_id: str,
        oauth_token: str | None = None,
        iam: IamTokenCache | None = None,
    ) -> None:
        if not oauth_token and iam is None:
            msg = "Either an OAuth token or an IAM token cache is required"
            raise ValueError(msg)
        self._org_id = org_id
        self._oauth_token = oauth_token
        self._iam = iam

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        http_client: httpx.AsyncClient,
    ) -> TrackerCredentials:
        """Wire credentials from settings; IAM only if fully configured."""
        oauth = settings.tracker_oauth_token
        iam: IamTokenCache | None = None
        if settings.iam_configured and settings.tracker_private_key is not None:
            iam = IamTokenCache(
                service_account_id=settings.tracker_service_account_id,
                key_id=settings.tracker_key_id,
                private_key=settings.tracker_private_key.get_secret_value(),
                token_url=settings.iam_token_url,
                http_client=http_client,
                lifetime_seconds=settings.iam_token_lifetime_seconds,
                refresh_margin_seconds=settings.iam_refresh_margin_seconds,
            )
        return cls(
            org_id=settings.tracker_org_id,
            oauth_token=oauth.get_secret_value() if oauth is not None else None,
            iam=iam,
        )

    async def headers(self) -> dict[str, str]:
        """Auth header set for the next request.

        Raises:
            CredentialError: IAM failed and there is no OAuth fallback.
        """
        if self._iam is not None:
            try:
                token = await self._iam.get()
            except CredentialError as exc:
                if not self._oauth_token:
                    raise
                logger.warning("iam_token_unavailable_using_oauth", error=str(exc))
            except Exception as exc:
                if not self._oauth_token:
                    msg = f"IAM token path failed: {exc}"
                    raise CredentialError(msg) from exc
                logger.exception("iam_token_path_failed_using_oauth")
            else:
                return self._build(f"Bearer {token}")

        return self._build(f"OAuth {self._oauth_token}")

    def _build(self, authorization: str) -> dict[str, str]:
        return {
            "Authorization": authorization,
            "X-Cloud-Org-ID": self._org_id,
        }
