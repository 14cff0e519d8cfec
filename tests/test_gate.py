"""
Unit tests for RequestGate.
"""

import asyncio
from typing import Optional
from unittest.mock import MagicMock

import pytest

from todolist_service.auth import (
    AuthorizationPolicy,
    Authorized,
    ErrorKind,
    Forbidden,
    MetadataCache,
    RequestGate,
    TokenValidator,
    TransientError,
    Unauthorized,
    extract_bearer_token,
)
from tests.conftest import (
    AUDIENCE,
    CLIENT_ID,
    OTHER_TENANT_ID,
    TENANT_ID,
    FakeIdentityProvider,
    make_settings,
)


class HeldSource:
    """Wraps a metadata source so a fetch can be held open until released."""

    def __init__(self, inner) -> None:
        self.inner = inner
        self.release: Optional[asyncio.Event] = None

    async def fetch(self):
        if self.release is not None:
            await self.release.wait()
        return await self.inner.fetch()

    async def close(self) -> None:
        await self.inner.close()


@pytest.fixture
def make_gate(validator):
    def _make(provider: FakeIdentityProvider, **policy_options) -> RequestGate:
        policy_options.setdefault("allowed_tenants", {TENANT_ID})
        return RequestGate(
            cache=MetadataCache(provider.source()),
            validator=validator,
            policy=AuthorizationPolicy(**policy_options),
            audiences={AUDIENCE, CLIENT_ID},
        )

    return _make


class TestExtractBearerToken:
    """Test cases for Authorization header parsing."""

    @pytest.mark.parametrize(
        "header, expected",
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("bearer abc", "abc"),
            (None, None),
            ("", None),
            ("Bearer", None),
            ("Basic dXNlcjpwYXNz", None),
            ("Bearer a b", None),
        ],
    )
    def test_extract(self, header, expected):
        assert extract_bearer_token(header) == expected


class TestRequestGate:
    """Test cases for RequestGate."""

    async def test_valid_token_is_authorized(self, make_gate, identity_provider, make_token):
        gate = make_gate(identity_provider)

        outcome = await gate.evaluate(f"Bearer {make_token()}")

        assert isinstance(outcome, Authorized)
        assert outcome.claims.subject == "user-subject-1"

    async def test_missing_header(self, make_gate, identity_provider):
        outcome = await make_gate(identity_provider).evaluate(None)

        assert outcome == Unauthorized(ErrorKind.MISSING_TOKEN, "missing bearer token")
        assert identity_provider.requests == []

    async def test_validation_failure_short_circuits_policy(self, make_gate, identity_provider, make_token):
        gate = make_gate(identity_provider)
        gate.policy = MagicMock(spec=AuthorizationPolicy)

        outcome = await gate.evaluate(f"Bearer {make_token(aud='api://other')}")

        assert outcome.kind is ErrorKind.AUDIENCE_MISMATCH
        gate.policy.authorize.assert_not_called()

    async def test_tenant_not_allowed_despite_valid_token(self, make_gate, identity_provider, make_token):
        outcome = await make_gate(identity_provider).evaluate(f"Bearer {make_token(tid=OTHER_TENANT_ID)}")

        assert outcome == Forbidden(ErrorKind.TENANT_NOT_ALLOWED, "tenant not allowed")

    async def test_metadata_unavailable(self, make_gate, identity_provider, make_token):
        identity_provider.fail = True

        outcome = await make_gate(identity_provider).evaluate(f"Bearer {make_token()}")

        assert outcome == TransientError(ErrorKind.METADATA_UNAVAILABLE, "signing key metadata unavailable")

    async def test_unexpected_errors_are_contained(self, make_gate, identity_provider, make_token):
        gate = make_gate(identity_provider)
        gate.validator = MagicMock(spec=TokenValidator)
        gate.validator.validate.side_effect = RuntimeError("boom")

        outcome = await gate.evaluate(f"Bearer {make_token()}")

        assert outcome == TransientError(ErrorKind.INTERNAL_ERROR, "token validation error")

    async def test_rotated_key_triggers_one_refresh(self, make_gate, identity_provider, make_token, other_signing_key):
        gate = make_gate(identity_provider)
        await gate.evaluate(f"Bearer {make_token()}")
        identity_provider.keys.append(other_signing_key)

        outcome = await gate.evaluate(f"Bearer {make_token(key=other_signing_key)}")

        assert isinstance(outcome, Authorized)
        assert identity_provider.discovery_hits == 2

    async def test_unknown_key_refresh_is_rate_limited(self, make_gate, identity_provider, make_token, other_signing_key):
        gate = make_gate(identity_provider)
        token = make_token(key=other_signing_key)

        first = await gate.evaluate(f"Bearer {token}")
        second = await gate.evaluate(f"Bearer {token}")

        assert first.kind is ErrorKind.UNKNOWN_SIGNING_KEY
        assert second.kind is ErrorKind.UNKNOWN_SIGNING_KEY
        # Initial fetch plus a single forced refresh
        assert identity_provider.discovery_hits == 2

    async def test_rotated_key_during_running_refresh(
        self, validator, identity_provider, make_token, other_signing_key
    ):
        clock = [1_000_000.0]
        source = HeldSource(identity_provider.source())
        gate = RequestGate(
            cache=MetadataCache(source, clock=lambda: clock[0]),
            validator=validator,
            policy=AuthorizationPolicy(allowed_tenants={TENANT_ID}),
            audiences={AUDIENCE},
        )
        await gate.evaluate(f"Bearer {make_token()}")
        clock[0] += 86400 + 1
        identity_provider.keys.append(other_signing_key)
        source.release = asyncio.Event()

        stale_reader = asyncio.ensure_future(gate.evaluate(f"Bearer {make_token()}"))
        await asyncio.sleep(0)
        rotated = asyncio.ensure_future(gate.evaluate(f"Bearer {make_token(key=other_signing_key)}"))
        await asyncio.sleep(0)
        source.release.set()

        assert isinstance(await rotated, Authorized)
        assert isinstance(await stale_reader, Authorized)
        assert identity_provider.discovery_hits == 2

    async def test_gate_from_settings_components(self, identity_provider, make_token):
        settings = make_settings()
        gate = RequestGate(
            cache=MetadataCache.from_settings(identity_provider.source(), settings),
            validator=TokenValidator.from_settings(settings),
            policy=AuthorizationPolicy.from_settings(settings),
            audiences=settings.valid_audiences,
        )

        assert isinstance(await gate.evaluate(f"Bearer {make_token(aud=CLIENT_ID)}"), Authorized)
