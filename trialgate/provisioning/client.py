from __future__ import annotations

import secrets
from types import TracebackType

import httpx
import structlog

from trialgate.provisioning.errors import ExternalProvisioningFailedError

logger = structlog.get_logger(__name__)

LOGIN_PATH = "/api/v1/login/"
USERS_PATH = "/api/v1/users/"


class WorkspaceClient:
    """Service-account client for the external workspace user API."""

    def __init__(
        self,
        *,
        base_url: str,
        username: str,
        password: str,
        timeout_seconds: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._username = username
        self._password = password
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout_seconds,
            transport=transport,
        )
        self._access_token: str | None = None

    async def __aenter__(self) -> WorkspaceClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        method: str,
        path: str,
        *,
        action: str,
        json_body: dict[str, object] | None = None,
        authenticated: bool = True,
    ) -> httpx.Response:
        headers: dict[str, str] = {}
        if authenticated:
            headers["Authorization"] = f"Bearer {await self._login()}"
        try:
            response = await self._client.request(method, path, json=json_body, headers=headers)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ExternalProvisioningFailedError(
                action,
                f"{method} {path} returned {exc.response.status_code}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ExternalProvisioningFailedError(
                action,
                f"{method} {path} failed: {type(exc).__name__}",
            ) from exc
        return response

    @staticmethod
    def _json(response: httpx.Response, *, action: str) -> object:
        try:
            return response.json()
        except ValueError as exc:
            raise ExternalProvisioningFailedError(action, "response body is not JSON") from exc

    async def _login(self) -> str:
        if self._access_token is not None:
            return self._access_token
        response = await self._request(
            "POST",
            LOGIN_PATH,
            action="login",
            json_body={"username": self._username, "password": self._password},
            authenticated=False,
        )
        body = self._json(response, action="login")
        access_token = body.get("access_token") if isinstance(body, dict) else None
        if not isinstance(access_token, str) or not access_token:
            raise ExternalProvisioningFailedError("login", "response has no access_token")
        self._access_token = access_token
        return access_token

    async def find_user_id(self, email: str) -> str | None:
        response = await self._request("GET", USERS_PATH, action="find_user")
        body = self._json(response, action="find_user")
        users = body.get("users", []) if isinstance(body, dict) else body
        if not isinstance(users, list):
            raise ExternalProvisioningFailedError("find_user", "unexpected users payload")

        expected_username = email.strip().lower()
        for user in users:
            if not isinstance(user, dict):
                continue
            username = user.get("username")
            if isinstance(username, str) and username.strip().lower() == expected_username:
                return str(user.get("id"))
        return None

    async def _set_active(self, user_id: str, *, is_active: bool, action: str) -> None:
        await self._request(
            "PATCH",
            f"{USERS_PATH}{user_id}",
            action=action,
            json_body={"is_active": is_active},
        )

    async def activate(self, email: str) -> str:
        user_id = await self.find_user_id(email)
        if user_id is None:
            response = await self._request(
                "POST",
                USERS_PATH,
                action="activate",
                json_body={
                    "username": email.strip(),
                    # The user sets a real password through the workspace reset flow.
                    "password": secrets.token_urlsafe(24),
                },
            )
            body = self._json(response, action="activate")
            created_id = body.get("id") if isinstance(body, dict) else None
            if created_id is None:
                raise ExternalProvisioningFailedError("activate", "created user has no id")
            user_id = str(created_id)
        await self._set_active(user_id, is_active=True, action="activate")
        return user_id

    async def deactivate(self, email: str) -> str | None:
        user_id = await self.find_user_id(email)
        if user_id is None:
            logger.info("workspace_user_missing", action="deactivate")
            return None
        await self._set_active(user_id, is_active=False, action="deactivate")
        return user_id

    async def delete(self, email: str) -> str | None:
        user_id = await self.find_user_id(email)
        if user_id is None:
            logger.info("workspace_user_missing", action="delete")
            return None
        await self._request("DELETE", f"{USERS_PATH}{user_id}", action="delete")
        return user_id
