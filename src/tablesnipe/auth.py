"""Platform credential lookup via OS keyring."""

from __future__ import annotations

import logging

import keyring
from pydantic import BaseModel, SecretStr

from tablesnipe.errors import AuthError

logger = logging.getLogger(__name__)

KEYRING_SERVICE = "tablesnipe-resy"


class ResyCredentials(BaseModel):
    """Resy API credentials. Stored in keyring, never serialized to disk."""

    api_key: str
    auth_token: SecretStr | None = None
    email: str | None = None
    password: SecretStr | None = None

    @property
    def can_login(self) -> bool:
        return bool(self.email and self.password)


class CredentialStore:
    """Reads and writes Resy credentials in the OS keyring."""

    def __init__(self, service: str = KEYRING_SERVICE) -> None:
        self.service = service

    def store(
        self,
        api_key: str,
        auth_token: str | None = None,
        email: str | None = None,
        password: str | None = None,
    ) -> None:
        keyring.set_password(self.service, "api_key", api_key)
        if auth_token:
            keyring.set_password(self.service, "auth_token", auth_token)
        if email:
            keyring.set_password(self.service, "email", email)
            if password:
                keyring.set_password(self.service, email, password)
        logger.info("Resy credentials stored in keyring.")

    def store_auth_token(self, auth_token: str) -> None:
        """Persist a refreshed token so the next process starts authenticated."""
        keyring.set_password(self.service, "auth_token", auth_token)

    def load(self) -> ResyCredentials:
        api_key = keyring.get_password(self.service, "api_key")
        if not api_key:
            raise AuthError("No Resy API key found. Run 'tablesnipe configure' first.")
        email = keyring.get_password(self.service, "email")
        password = keyring.get_password(self.service, email) if email else None
        return ResyCredentials(
            api_key=api_key,
            auth_token=keyring.get_password(self.service, "auth_token"),
            email=email,
            password=password,
        )
