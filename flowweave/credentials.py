"""Lazy, scoped access to decrypted credentials for node handlers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Tuple

from .errors import (
    CredentialDecryptError,
    CredentialForbiddenError,
    CredentialNotFoundError,
)

logger = logging.getLogger(__name__)


class CredentialProvider(Protocol):
    """Backend that looks up and decrypts stored credentials."""

    async def fetch(self, credential_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
        """Return the decrypted credential config.

        Raises:
            CredentialNotFoundError: No such credential.
            CredentialForbiddenError: Credential exists but may not be used by ``owner_id``.
            CredentialDecryptError: Stored secret could not be decrypted.
        """


class CredentialScope:
    """Credential handle passed to a single handler invocation.

    The secret is fetched on the first :meth:`get` call and wiped when the
    scope closes.
    """

    def __init__(
        self,
        resolver: "CredentialResolver",
        credential_id: Optional[str],
        owner_id: Optional[str],
    ) -> None:
        self._resolver = resolver
        self.credential_id = credential_id
        self.owner_id = owner_id
        self._value: Optional[Dict[str, Any]] = None
        self._closed = False

    @property
    def configured(self) -> bool:
        return self.credential_id is not None

    async def get(self) -> Dict[str, Any]:
        if self._closed:
            raise RuntimeError("Credential scope is closed")
        if self.credential_id is None:
            raise CredentialNotFoundError("Node has no credential configured")
        if self._value is None:
            self._value = await self._resolver.resolve(self.credential_id, self.owner_id)
        return self._value

    def close(self) -> None:
        if self._value is not None:
            self._value.clear()
        self._value = None
        self._closed = True


class CredentialResolver:
    """Resolves credentials through a :class:`CredentialProvider`.

    Nothing is cached across calls; each scope owns its decrypted copy.
    """

    def __init__(self, provider: Optional[CredentialProvider] = None) -> None:
        self._provider = provider

    async def resolve(self, credential_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
        if self._provider is None:
            raise CredentialNotFoundError(
                f"Credential {credential_id!r} not found: no credential provider configured",
                credential_id=credential_id,
            )
        logger.debug(f"Resolving credential {credential_id} for owner {owner_id}")
        value = await self._provider.fetch(credential_id, owner_id)
        return dict(value)

    @asynccontextmanager
    async def scope(
        self, credential_id: Optional[str], owner_id: Optional[str]
    ) -> AsyncIterator[CredentialScope]:
        scope = CredentialScope(self, credential_id, owner_id)
        try:
            yield scope
        finally:
            scope.close()


class InMemoryCredentialProvider:
    """Owner-scoped credential store kept in local memory.

    Useful for tests or embedding; values are stored as given, without
    encryption.
    """

    def __init__(self) -> None:
        self._credentials: Dict[str, Tuple[Optional[str], Dict[str, Any], bool]] = {}
        self._undecryptable: set[str] = set()

    def add(
        self,
        credential_id: str,
        config: Dict[str, Any],
        owner_id: Optional[str] = None,
        is_active: bool = True,
    ) -> None:
        self._credentials[credential_id] = (owner_id, dict(config), is_active)

    def mark_corrupted(self, credential_id: str) -> None:
        """Make subsequent fetches of ``credential_id`` fail decryption."""
        self._undecryptable.add(credential_id)

    async def fetch(self, credential_id: str, owner_id: Optional[str]) -> Dict[str, Any]:
        stored = self._credentials.get(credential_id)
        if stored is None:
            raise CredentialNotFoundError(
                f"Credential {credential_id!r} not found", credential_id=credential_id
            )
        stored_owner, config, is_active = stored
        if stored_owner is not None and stored_owner != owner_id:
            raise CredentialForbiddenError(
                f"Credential {credential_id!r} does not belong to user {owner_id!r}",
                credential_id=credential_id,
            )
        if not is_active:
            raise CredentialForbiddenError(
                f"Credential {credential_id!r} is disabled", credential_id=credential_id
            )
        if credential_id in self._undecryptable:
            raise CredentialDecryptError(
                f"Credential {credential_id!r} could not be decrypted",
                credential_id=credential_id,
            )
        return dict(config)
