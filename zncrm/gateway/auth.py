"""Session handling against the Supabase auth server (GoTrue)."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from .supabase_client import GatewayError, SupabaseGateway
from ..utils.logger import log_info, log_debug


class User(BaseModel):
    """Signed-in user as reported by the auth server."""
    model_config = ConfigDict(extra="ignore")

    id: str = Field(description="User ID")
    email: Optional[str] = Field(default=None, description="Login email")


class Session(BaseModel):
    """Tokens issued on sign-in."""
    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: Optional[str] = None
    token_type: str = "bearer"
    expires_in: Optional[int] = None
    user: Optional[User] = None


class AuthError(GatewayError):
    """Credentials were rejected."""


class AuthClient:
    """Sign-in, session check and sign-out over the gateway's connection."""

    def __init__(self, gateway: SupabaseGateway):
        self.gateway = gateway

    async def sign_in(self, email: str, password: str) -> Session:
        """Exchange email and password for a session.

        Raises:
            AuthError: If the credentials are rejected
        """
        try:
            response = await self.gateway.request(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json={"email": email, "password": password},
            )
        except GatewayError as e:
            if e.status_code in (400, 401, 403, 422):
                raise AuthError(str(e), e.status_code) from e
            raise

        session = Session(**response.json())
        log_info(f"Signed in as {email}")
        return session

    async def get_user(self, access_token: Optional[str]) -> Optional[User]:
        """Return the user behind a token, or None when there is no valid session."""
        if not access_token:
            return None
        try:
            response = await self.gateway.request("GET", "/auth/v1/user", access_token=access_token)
        except GatewayError as e:
            if e.status_code in (401, 403, 404, 406):
                log_debug(f"Rejected session token: {e}")
                return None
            raise
        return User(**response.json())

    async def sign_out(self, access_token: str) -> None:
        """Revoke the session; an already invalid token is not an error."""
        try:
            await self.gateway.request("POST", "/auth/v1/logout", access_token=access_token)
        except GatewayError as e:
            if e.status_code not in (401, 403, 404):
                raise
            log_debug(f"Sign-out for an invalid session: {e}")
        log_info("Signed out")
