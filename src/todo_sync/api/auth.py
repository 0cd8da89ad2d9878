"""Authentication endpoints."""

import logging

from ..models import AuthResult
from ..transport import TransportClient
from .base import parse_model, unwrap


logger = logging.getLogger(__name__)


class AuthService:
    """Client for ``login``, ``register`` and ``logout``."""

    def __init__(self, transport: TransportClient):
        self.transport = transport

    async def login(self, email: str, password: str) -> AuthResult:
        """Exchange credentials for a user and token.

        Raises:
            ClientError: If the credentials are rejected
        """
        payload = await self.transport.post("login", {"email": email, "password": password})
        return parse_model(AuthResult, unwrap(payload))

    async def register(self, username: str, email: str, password: str) -> AuthResult:
        payload = await self.transport.post(
            "register",
            {"username": username, "email": email, "password": password},
        )
        return parse_model(AuthResult, unwrap(payload))

    async def logout(self) -> None:
        await self.transport.post("logout")
