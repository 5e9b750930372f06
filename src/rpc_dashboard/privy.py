"""Privy identity provider: access-token verification and user lookup."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime

import httpx
import jwt

from .errors import AuthenticationError
from .logging_config import get_logger

logger = get_logger(__name__)

ISSUER = "privy.io"
ALGORITHM = "ES256"


@dataclass(frozen=True)
class AuthClaims:
    user_id: str
    app_id: str
    session_id: str | None
    issued_at: datetime
    expiration: datetime


@dataclass(frozen=True)
class PrivyUser:
    id: str
    email: str | None = None
    name: str | None = None
    wallet_address: str | None = None
    wallet_type: str | None = None


def _from_timestamp(value) -> datetime:
    return datetime.fromtimestamp(int(value), UTC)


def parse_user(data: dict) -> PrivyUser:
    """Build a PrivyUser from the REST API's user object.

    The display name comes from a linked Google account, falling back to the
    Twitter username.
    """
    email = google_name = twitter_username = wallet_address = wallet_type = None
    for account in data.get("linked_accounts", []):
        kind = account.get("type")
        if kind == "email" and not email:
            email = account.get("address")
        elif kind == "google_oauth":
            google_name = account.get("name")
            email = email or account.get("email")
        elif kind == "twitter_oauth":
            twitter_username = account.get("username")
        elif kind == "wallet" and not wallet_address:
            wallet_address = account.get("address")
            wallet_type = account.get("wallet_client_type") or account.get("wallet_client")
    return PrivyUser(
        id=data["id"],
        email=email,
        name=google_name or twitter_username,
        wallet_address=wallet_address,
        wallet_type=wallet_type,
    )


class PrivyClient:
    """Server-side Privy client.

    Tokens are verified locally with the app's ES256 verification key. When
    no key is configured it is fetched once from the Privy API.
    """

    def __init__(
        self,
        app_id: str,
        app_secret: str,
        client: httpx.AsyncClient,
        api_url: str = "https://auth.privy.io/api/v1",
        verification_key: str | None = None,
    ):
        self.app_id = app_id
        self.app_secret = app_secret
        self.client = client
        self.api_url = api_url.rstrip("/")
        self._verification_key = verification_key

    @property
    def _auth(self) -> httpx.BasicAuth:
        return httpx.BasicAuth(self.app_id, self.app_secret)

    @property
    def _headers(self) -> dict[str, str]:
        return {"privy-app-id": self.app_id}

    async def _get_json(self, path: str) -> dict:
        response = await self.client.get(f"{self.api_url}{path}", auth=self._auth, headers=self._headers)
        response.raise_for_status()
        return response.json()

    async def get_verification_key(self) -> str:
        if not self._verification_key:
            try:
                data = await self._get_json(f"/apps/{self.app_id}")
            except httpx.HTTPError as e:
                logger.error("privy_verification_key_fetch_failed", error=str(e))
                raise AuthenticationError("Invalid token") from e
            self._verification_key = data["verification_key"]
        return self._verification_key

    async def verify_auth_token(self, token: str) -> AuthClaims:
        """Verify a Privy access token.

        Raises:
            AuthenticationError: If the token is malformed, expired, or was not
                issued by Privy for this app
        """
        key = await self.get_verification_key()
        try:
            payload = jwt.decode(
                token,
                key,
                algorithms=[ALGORITHM],
                issuer=ISSUER,
                audience=self.app_id,
                options={"require": ["sub", "iat", "exp"]},
            )
        except jwt.PyJWTError as e:
            logger.info("privy_token_rejected", error=str(e))
            raise AuthenticationError("Invalid token") from e

        return AuthClaims(
            user_id=payload["sub"],
            app_id=self.app_id,
            session_id=payload.get("sid"),
            issued_at=_from_timestamp(payload["iat"]),
            expiration=_from_timestamp(payload["exp"]),
        )

    async def get_user(self, privy_id: str) -> PrivyUser:
        """Fetch a user profile from the Privy REST API.

        Raises:
            httpx.HTTPError: On transport errors or non-2xx responses
        """
        data = await self._get_json(f"/users/{privy_id}")
        return parse_user(data)
