import pytest

from flowweave.credentials import CredentialResolver, InMemoryCredentialProvider
from flowweave.errors import (
    CredentialDecryptError,
    CredentialForbiddenError,
    CredentialNotFoundError,
)


class CountingProvider(InMemoryCredentialProvider):
    def __init__(self):
        super().__init__()
        self.fetches = 0

    async def fetch(self, credential_id, owner_id):
        self.fetches += 1
        return await super().fetch(credential_id, owner_id)


@pytest.fixture
def provider():
    provider = CountingProvider()
    provider.add("slack", {"token": "xoxb-123"}, owner_id="u1")
    return provider


@pytest.mark.asyncio
async def test_scope_fetches_lazily_and_once(provider):
    resolver = CredentialResolver(provider)

    async with resolver.scope("slack", "u1") as creds:
        assert creds.configured
        assert provider.fetches == 0
        first = await creds.get()
        second = await creds.get()

    assert first == {} and second == {}
    assert provider.fetches == 1


@pytest.mark.asyncio
async def test_scope_wipes_value_on_exit(provider):
    resolver = CredentialResolver(provider)

    async with resolver.scope("slack", "u1") as creds:
        secret = await creds.get()
        assert secret == {"token": "xoxb-123"}

    assert secret == {}
    with pytest.raises(RuntimeError):
        await creds.get()


@pytest.mark.asyncio
async def test_scope_closes_when_handler_raises(provider):
    resolver = CredentialResolver(provider)

    with pytest.raises(ValueError):
        async with resolver.scope("slack", "u1") as creds:
            secret = await creds.get()
            raise ValueError("handler failed")

    assert secret == {}


@pytest.mark.asyncio
async def test_unused_scope_never_fetches(provider):
    resolver = CredentialResolver(provider)

    async with resolver.scope("slack", "u1"):
        pass

    assert provider.fetches == 0


@pytest.mark.asyncio
async def test_each_resolve_returns_fresh_copy(provider):
    resolver = CredentialResolver(provider)

    first = await resolver.resolve("slack", "u1")
    first["token"] = "tampered"
    second = await resolver.resolve("slack", "u1")

    assert second == {"token": "xoxb-123"}


@pytest.mark.asyncio
async def test_scope_without_credential(provider):
    resolver = CredentialResolver(provider)

    async with resolver.scope(None, "u1") as creds:
        assert not creds.configured
        with pytest.raises(CredentialNotFoundError):
            await creds.get()


@pytest.mark.asyncio
async def test_other_owner_is_forbidden(provider):
    resolver = CredentialResolver(provider)

    with pytest.raises(CredentialForbiddenError) as exc_info:
        await resolver.resolve("slack", "u2")

    assert exc_info.value.credential_id == "slack"


@pytest.mark.asyncio
async def test_inactive_credential_is_forbidden(provider):
    provider.add("old", {"token": "x"}, owner_id="u1", is_active=False)

    with pytest.raises(CredentialForbiddenError):
        await CredentialResolver(provider).resolve("old", "u1")


@pytest.mark.asyncio
async def test_unknown_credential(provider):
    with pytest.raises(CredentialNotFoundError):
        await CredentialResolver(provider).resolve("nope", "u1")


@pytest.mark.asyncio
async def test_corrupted_credential(provider):
    provider.mark_corrupted("slack")

    with pytest.raises(CredentialDecryptError):
        await CredentialResolver(provider).resolve("slack", "u1")


@pytest.mark.asyncio
async def test_resolver_without_provider():
    with pytest.raises(CredentialNotFoundError):
        await CredentialResolver().resolve("slack", "u1")
