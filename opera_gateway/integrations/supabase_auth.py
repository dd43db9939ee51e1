"""
Identity verification against Supabase Auth.

The gateway never validates tokens itself; it asks the identity provider
who the bearer is and trusts the answer.
"""

from typing import Optional

import httpx
from pydantic import BaseModel

from opera_gateway.core.exceptions import AuthError, UpstreamError
from opera_gateway.core.logging import get_logger, token_preview
from opera_gateway.core.metrics import record_upstream_call

logger = get_logger(__name__)

SERVICE = "identity"


class AuthenticatedUser(BaseModel):
    user_id: str
    email: Optional[str] = None


class IdentityClient:
    """Resolves bearer tokens to users via ``GET /auth/v1/user``."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        supabase_url: str,
        anon_key: str,
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.http_client = http_client
        self.supabase_url = supabase_url.rstrip("/")
        self.anon_key = anon_key
        self.timeout = timeout or httpx.Timeout(10.0)

    async def verify_token(self, token: str) -> AuthenticatedUser:
        try:
            response = await self.http_client.get(
                f"{self.supabase_url}/auth/v1/user",
                headers={
                    "apikey": self.anon_key,
                    "Authorization": f"Bearer {token}",
                },
                timeout=self.timeout,
            )
        except httpx.TimeoutException:
            record_upstream_call(SERVICE, "verify_token", "timeout")
            raise UpstreamError("Identity provider timed out", service=SERVICE)
        except httpx.HTTPError as e:
            record_upstream_call(SERVICE, "verify_token", "error")
            raise UpstreamError(f"Identity provider unreachable: {e}", service=SERVICE)

        if response.status_code in (401, 403):
            record_upstream_call(SERVICE, "verify_token", "success")
            logger.warning("token_rejected", token=token_preview(token))
            raise AuthError("Authentication failed", error="invalid_token")

        if not response.is_success:
            record_upstream_call(SERVICE, "verify_token", "error")
            raise UpstreamError(
                f"Identity provider answered {response.status_code}",
                service=SERVICE,
                upstream_status=response.status_code,
                body=response.text,
            )

        try:
            data = response.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            record_upstream_call(SERVICE, "verify_token", "error")
            raise UpstreamError(
                "Malformed identity provider response",
                service=SERVICE,
                body=response.text,
            )

        record_upstream_call(SERVICE, "verify_token", "success")
        if not data.get("id"):
            raise AuthError("Authentication failed", error="invalid_token")

        return AuthenticatedUser(user_id=str(data["id"]), email=data.get("email"))
