"""
Shared fixtures: RSA signing keys, a token factory and a fake identity provider.
"""

import time
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from jose import jwk, jwt

from todolist_service.auth import (
    KeyMaterial,
    OidcMetadata,
    OpenIdConnectMetadataSource,
    TokenValidator,
)
from todolist_service.config import Settings

TENANT_ID = "14c2f153-90a7-4689-9db7-9543bf084dad"
OTHER_TENANT_ID = "979f4440-75dc-4664-b2e1-2cafa0ac67d1"
CLIENT_ID = "4546d1ba-b797-41c6-af59-c7e198b59882"
AUDIENCE = f"api://{CLIENT_ID}"
AUTHORITY = f"https://login.microsoftonline.com/{TENANT_ID}"
ISSUER_V2 = f"{AUTHORITY}/v2.0"
ISSUER_V1 = f"https://sts.windows.net/{TENANT_ID}/"
DISCOVERY_URL = f"{ISSUER_V2}/.well-known/openid-configuration"
JWKS_URL = f"{AUTHORITY}/discovery/v2.0/keys"


def _private_pem(private_key: rsa.RSAPrivateKey) -> bytes:
    return private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _public_jwk(private_key: rsa.RSAPrivateKey, kid: str) -> Dict[str, Any]:
    pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    key = jwk.construct(pem, "RS256").to_dict()
    key.pop("alg", None)
    key.update({"kid": kid, "use": "sig"})
    return key


class SigningKey:
    """Test RSA key with its public JWK."""

    def __init__(self, kid: str) -> None:
        self.kid = kid
        self.private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        self.private_pem = _private_pem(self.private_key)
        self.public_jwk = _public_jwk(self.private_key, kid)

    def material(self) -> KeyMaterial:
        return KeyMaterial(kid=self.kid, jwk=self.public_jwk)


@pytest.fixture(scope="session")
def signing_key() -> SigningKey:
    return SigningKey("key-1")


@pytest.fixture(scope="session")
def other_signing_key() -> SigningKey:
    return SigningKey("key-2")


def default_claims(**overrides: Any) -> Dict[str, Any]:
    now = int(time.time())
    claims = {
        "aud": AUDIENCE,
        "iss": ISSUER_V2,
        "iat": now,
        "nbf": now,
        "exp": now + 3600,
        "sub": "user-subject-1",
        "oid": "object-id-1",
        "tid": TENANT_ID,
        "scp": "access_as_user",
        "name": "Ada Lovelace",
        "preferred_username": "ada@contoso.com",
        "azp": "client-app-id",
        "ver": "2.0",
    }
    claims.update(overrides)
    return {key: value for key, value in claims.items() if value is not None}


@pytest.fixture
def make_token(signing_key: SigningKey) -> Callable[..., str]:
    """Sign a token; keyword arguments override the default claims (None removes one)."""

    def _make(
        key: Optional[SigningKey] = None,
        headers: Optional[Dict[str, Any]] = None,
        **claims: Any,
    ) -> str:
        key = key or signing_key
        token_headers = {"kid": key.kid}
        token_headers.update(headers or {})
        return jwt.encode(
            default_claims(**claims), key.private_pem, algorithm="RS256", headers=token_headers
        )

    return _make


@pytest.fixture
def metadata(signing_key: SigningKey) -> OidcMetadata:
    return OidcMetadata(
        issuer=ISSUER_V2,
        signing_keys={signing_key.kid: signing_key.material()},
        fetched_at=time.time(),
        generation=1,
    )


@pytest.fixture
def validator() -> TokenValidator:
    return TokenValidator(valid_issuers=make_settings().valid_issuers)


def make_settings(**overrides: Any) -> Settings:
    values: Dict[str, Any] = {
        "tenant_id": TENANT_ID,
        "client_id": CLIENT_ID,
        "allowed_tenants": TENANT_ID,
        "metadata_fetch_retries": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


class FakeIdentityProvider:
    """
    Serves a discovery document and JWKS through ``httpx.MockTransport``.

    Set ``fail`` to make every request error out; ``requests`` records the
    URLs that were hit.
    """

    def __init__(self, keys: List[SigningKey], issuer: str = ISSUER_V2) -> None:
        self.keys = list(keys)
        self.issuer = issuer
        self.fail = False
        self.requests: List[str] = []

    @property
    def discovery_hits(self) -> int:
        return self.requests.count(DISCOVERY_URL)

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if self.fail:
            raise httpx.ConnectError("identity provider unreachable", request=request)
        if url == DISCOVERY_URL:
            return httpx.Response(200, json={"issuer": self.issuer, "jwks_uri": JWKS_URL})
        if url == JWKS_URL:
            return httpx.Response(200, json={"keys": [key.public_jwk for key in self.keys]})
        return httpx.Response(404)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    def source(self) -> OpenIdConnectMetadataSource:
        return OpenIdConnectMetadataSource(DISCOVERY_URL, retries=0, client=self.client())


@pytest.fixture
def identity_provider(signing_key: SigningKey) -> FakeIdentityProvider:
    return FakeIdentityProvider([signing_key])
