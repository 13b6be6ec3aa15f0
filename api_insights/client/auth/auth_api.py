"""
Authentication endpoint wrappers.

Thin calls through the shared API client; each returns the normalized
payload and leaves credential bookkeeping to the session manager.
"""

from typing import Any, Dict, Optional

from api_insights.client.api_client import InsightsAPIClient


class AuthAPI:
    """Calls to the backend's ``/api/v1/auth/`` endpoints."""

    def __init__(self, api_client: InsightsAPIClient):
        self.api_client = api_client
        self.paths = api_client.auth_paths

    async def login(self, email: str, password: str) -> Dict[str, Any]:
        return await self.api_client.post(self.paths.login, json={'email': email, 'password': password})

    async def two_factor_challenge(self, code: str, challenge_token: str) -> Dict[str, Any]:
        return await self.api_client.post(
            self.paths.two_factor,
            json={'code': code, 'challenge_token': challenge_token}
        )

    async def logout(self, refresh_token: str) -> Any:
        return await self.api_client.post(self.paths.logout, json={'refresh': refresh_token})

    async def get_profile(self) -> Dict[str, Any]:
        return await self.api_client.get(self.paths.profile)

    async def register(
        self,
        email: str,
        password: str,
        password_confirm: str,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        company_name: Optional[str] = None
    ) -> Dict[str, Any]:
        payload = {
            'email': email,
            'password': password,
            'password_confirm': password_confirm,
            'first_name': first_name,
            'last_name': last_name,
            'company_name': company_name
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        return await self.api_client.post(self.paths.register, json=payload)

    async def request_password_reset(self, email: str) -> Dict[str, Any]:
        return await self.api_client.post(self.paths.password_reset, json={'email': email})

    async def confirm_password_reset(self, token: str, new_password: str) -> Dict[str, Any]:
        return await self.api_client.post(
            self.paths.password_reset_confirm,
            json={'token': token, 'new_password': new_password}
        )

    async def verify_email(self, token: str) -> Dict[str, Any]:
        return await self.api_client.post(self.paths.verify_email, json={'token': token})
