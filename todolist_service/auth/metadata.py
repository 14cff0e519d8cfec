"""
Signing-key metadata for Entra ID (Azure AD) tokens.

Two interchangeable sources are provided: OpenID Connect discovery
(``/.well-known/openid-configuration`` + JWKS) and WS-Federation
federation metadata XML. Both produce an immutable ``OidcMetadata`` snapshot.
"""

import base64
import hashlib
import logging
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, Tuple

import httpx
from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from jose import jwk
from jose.constants import ALGORITHMS
from jose.exceptions import JOSEError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from todolist_service.auth.outcome import MetadataUnavailableError
from todolist_service.config import Settings

logger = logging.getLogger(__name__)

MD_NS = "urn:oasis:names:tc:SAML:2.0:metadata"
DS_NS = "http://www.w3.org/2000/09/xmldsig#"


@dataclass(frozen=True)
class KeyMaterial:
    """A public signing key in JWK form, identified by its key id."""

    kid: str
    jwk: Mapping[str, Any]

    def as_dict(self) -> Dict[str, Any]:
        return dict(self.jwk)


@dataclass(frozen=True)
class OidcMetadata:
    """
    One generation of identity provider metadata.

    Never mutated: a refresh publishes a new instance.
    """

    issuer: str
    signing_keys: Mapping[str, KeyMaterial] = field(default_factory=dict)
    fetched_at: float = 0.0
    generation: int = 0


class MetadataSource(Protocol):
    """Capability to fetch a fresh metadata snapshot."""

    async def fetch(self) -> OidcMetadata: ...

    async def close(self) -> None: ...


def _is_retryable(error: BaseException) -> bool:
    """Transport failures and 5xx responses are worth another attempt; 4xx are not."""
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code >= 500
    return isinstance(error, httpx.HTTPError)


class HttpMetadataSource:
    """
    Shared HTTP plumbing for metadata sources.

    Every request runs under ``timeout``; transport failures and 5xx responses
    are retried ``retries`` times with exponential backoff.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        retries: int = 2,
        backoff: float = 0.5,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.retries = retries
        self.backoff = backoff
        self._http_client = client
        self._owns_client = client is None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create async HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Close the HTTP client when shutting down."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
            logger.info("Metadata HTTP client closed")

    async def _get(self, url: str) -> httpx.Response:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retries + 1),
            wait=wait_exponential(multiplier=self.backoff),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return await retrying(self._get_once, url)
        except httpx.HTTPError as e:
            logger.error(f"Failed to fetch metadata from {url}: {e}")
            raise MetadataUnavailableError(f"Unable to fetch {url}: {e}") from e

    async def _get_once(self, url: str) -> httpx.Response:
        response = await self.http_client.get(url, timeout=self.timeout)
        response.raise_for_status()
        return response

    async def _get_json(self, url: str) -> Dict[str, Any]:
        response = await self._get(url)
        try:
            document = response.json()
        except ValueError as e:
            raise MetadataUnavailableError(f"Invalid JSON document at {url}: {e}") from e
        if not isinstance(document, dict):
            raise MetadataUnavailableError(f"Expected a JSON object at {url}")
        return document


class OpenIdConnectMetadataSource(HttpMetadataSource):
    """Reads the issuer and JWKS advertised by an OpenID Connect discovery document."""

    async def fetch(self) -> OidcMetadata:
        logger.info(f"Fetching OpenID config from {self.url}")
        openid_config = await self._get_json(self.url)

        issuer = openid_config.get("issuer")
        jwks_uri = openid_config.get("jwks_uri")
        if not isinstance(issuer, str) or not issuer:
            raise MetadataUnavailableError("issuer not found in OpenID configuration")
        if not isinstance(jwks_uri, str) or not jwks_uri:
            raise MetadataUnavailableError("jwks_uri not found in OpenID configuration")

        logger.info(f"Fetching JWKS from {jwks_uri}")
        jwks = await self._get_json(jwks_uri)
        keys = parse_jwks(jwks)
        if not keys:
            raise MetadataUnavailableError(f"No signing keys published at {jwks_uri}")

        logger.info(f"Fetched {len(keys)} signing keys for issuer {issuer}")
        return OidcMetadata(issuer=issuer, signing_keys=keys, fetched_at=time.time())


class WsFederationMetadataSource(HttpMetadataSource):
    """Reads the entity id and signing certificates of a federation metadata document."""

    async def fetch(self) -> OidcMetadata:
        logger.info(f"Fetching federation metadata from {self.url}")
        response = await self._get(self.url)
        issuer, keys = parse_federation_metadata(response.content)
        if not keys:
            raise MetadataUnavailableError(f"No signing certificates published at {self.url}")

        logger.info(f"Fetched {len(keys)} signing certificates for issuer {issuer}")
        return OidcMetadata(issuer=issuer, signing_keys=keys, fetched_at=time.time())


def parse_jwks(jwks: Mapping[str, Any]) -> Dict[str, KeyMaterial]:
    """Index the signature keys of a JWKS document by key id."""
    keys: Dict[str, KeyMaterial] = {}
    for key in jwks.get("keys") or []:
        if not isinstance(key, dict):
            continue
        kid = key.get("kid")
        if not isinstance(kid, str) or not kid:
            logger.debug("Skipping JWK without kid")
            continue
        if key.get("use", "sig") != "sig":
            continue
        keys[kid] = KeyMaterial(kid=kid, jwk=dict(key))
    return keys


def certificate_thumbprint(der: bytes) -> str:
    """Base64url SHA-1 thumbprint, the value Azure AD puts in 'kid' and 'x5t'."""
    return base64.urlsafe_b64encode(hashlib.sha1(der).digest()).decode("ascii").rstrip("=")


def certificate_to_key(encoded_cert: str) -> KeyMaterial:
    """
    Convert a base64 DER X.509 certificate into RSA key material.

    Raises:
        ValueError: If the certificate cannot be parsed or is not RSA
    """
    der = base64.b64decode("".join(encoded_cert.split()))
    cert = x509.load_der_x509_certificate(der)
    public_key = cert.public_key()
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("Only RSA signing certificates are supported")

    pem = public_key.public_bytes(Encoding.PEM, PublicFormat.SubjectPublicKeyInfo)
    try:
        key_dict = jwk.construct(pem, ALGORITHMS.RS256).to_dict()
    except JOSEError as e:
        raise ValueError(f"Unable to construct public key: {e}") from e

    kid = certificate_thumbprint(der)
    key_dict.update({"kid": kid, "x5t": kid, "use": "sig", "x5c": [base64.b64encode(der).decode("ascii")]})
    return KeyMaterial(kid=kid, jwk=key_dict)


def parse_federation_metadata(document: bytes) -> Tuple[str, Dict[str, KeyMaterial]]:
    """
    Extract the issuer and signing keys from WS-Federation metadata.

    Only certificates under signing ``KeyDescriptor`` elements are used; the
    certificate of the document's own XML signature is ignored.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise MetadataUnavailableError(f"Invalid federation metadata: {e}") from e

    issuer = root.get("entityID")
    if not issuer:
        raise MetadataUnavailableError("entityID not found in federation metadata")

    keys: Dict[str, KeyMaterial] = {}
    for descriptor in root.iter(f"{{{MD_NS}}}KeyDescriptor"):
        if descriptor.get("use", "signing") != "signing":
            continue
        for cert_element in descriptor.iter(f"{{{DS_NS}}}X509Certificate"):
            if not cert_element.text:
                continue
            try:
                key = certificate_to_key(cert_element.text)
            except ValueError as e:
                logger.warning(f"Skipping unusable signing certificate: {e}")
                continue
            keys[key.kid] = key
    return issuer, keys


def build_metadata_source(
    settings: Settings, client: Optional[httpx.AsyncClient] = None
) -> HttpMetadataSource:
    """Pick the metadata source configured for this deployment."""
    options = {
        "timeout": settings.metadata_fetch_timeout,
        "retries": settings.metadata_fetch_retries,
        "client": client,
    }
    if settings.metadata_source == "wsfed":
        return WsFederationMetadataSource(settings.federation_metadata_url, **options)
    return OpenIdConnectMetadataSource(settings.openid_config_url, **options)
