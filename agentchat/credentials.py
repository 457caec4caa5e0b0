"""Opaque credential lookup. Secure storage itself lives outside this package."""

import os
from typing import Protocol

from agentchat.models import ProviderConfig


class CredentialStore(Protocol):
    def get_secret(self, ref: str) -> str | None: ...

    def set_secret(self, ref: str, value: str) -> None: ...


class EnvCredentialStore:
    """Treats each credential ref as an environment variable name."""

    def get_secret(self, ref: str) -> str | None:
        value = os.environ.get(ref, "").strip()
        return value or None

    def set_secret(self, ref: str, value: str) -> None:
        os.environ[ref] = value


def credential_for(store: CredentialStore, config: ProviderConfig) -> str | None:
    return store.get_secret(config.credential_ref)
