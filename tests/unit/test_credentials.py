"""
Tests for ephemeral case credentials.
"""

import asyncio
import hashlib
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from caseguard.security.errors import InvalidInput
from caseguard.stores.base import CredentialStore
from caseguard.vault.credentials import (
    EphemeralCredentialService,
    cookie_name,
)


@pytest.fixture
def credentials(credential_store, clock):
    return EphemeralCredentialService(credential_store, clock)


class TestIssue:
    """Tests for issue()."""

    @pytest.mark.asyncio
    async def test_only_hash_is_stored(self, credentials, credential_store, clock):
        issued = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))

        assert issued.expires_at == clock() + timedelta(minutes=15)
        stored = list(credential_store._credentials.values())
        assert len(stored) == 1
        assert stored[0].token_hash == hashlib.sha256(issued.token.encode()).hexdigest()
        assert stored[0].token_hash != issued.token

    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, credentials):
        a = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))
        b = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))
        assert a.token != b.token

    @pytest.mark.asyncio
    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-5)])
    async def test_non_positive_ttl(self, credentials, ttl):
        with pytest.raises(InvalidInput):
            await credentials.issue("case-1", "judge-1", ttl)

    def test_cookie_name(self):
        assert cookie_name("case-1") == "case_access_case-1"


class TestValidate:
    """Tests for validate()."""

    @pytest.mark.asyncio
    async def test_single_use(self, credentials):
        issued = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))

        grant = await credentials.validate(issued.token)
        assert grant.case_id == "case-1"

        assert await credentials.validate(issued.token) is None

    @pytest.mark.asyncio
    async def test_expired(self, credentials, clock):
        issued = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))
        clock.advance(minutes=15)
        assert await credentials.validate(issued.token) is None

    @pytest.mark.asyncio
    async def test_wrong_case_does_not_consume(self, credentials):
        issued = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))

        assert await credentials.validate(issued.token, case_id="case-2") is None
        assert (await credentials.validate(issued.token, case_id="case-1")).case_id == "case-1"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("token", ["", None, 12345, "x" * 257, "never-issued"])
    async def test_malformed_or_unknown(self, credentials, token):
        assert await credentials.validate(token) is None

    @pytest.mark.asyncio
    async def test_concurrent_validation_succeeds_once(self, credentials):
        issued = await credentials.issue("case-1", "judge-1", timedelta(minutes=15))

        results = await asyncio.gather(
            *[credentials.validate(issued.token) for _ in range(20)]
        )

        assert sum(1 for r in results if r is not None) == 1

    @pytest.mark.asyncio
    async def test_store_error_is_a_rejection(self, clock):
        store = AsyncMock(spec=CredentialStore)
        store.consume.side_effect = RuntimeError("db down")
        service = EphemeralCredentialService(store, clock)

        assert await service.validate("some-token") is None
