"""Authentication package initialization."""

from .gate import RequestGate, TokenValidationMiddleware, extract_bearer_token
from .jwt_validator import TokenValidator
from .metadata import (
    KeyMaterial,
    MetadataSource,
    OidcMetadata,
    OpenIdConnectMetadataSource,
    WsFederationMetadataSource,
    build_metadata_source,
)
from .metadata_cache import MetadataCache
from .outcome import (
    Authorized,
    ClaimSet,
    ErrorKind,
    Forbidden,
    MetadataUnavailableError,
    TransientError,
    Unauthorized,
    ValidationOutcome,
)
from .policy import AuthorizationPolicy

__all__ = [
    "AuthorizationPolicy",
    "Authorized",
    "ClaimSet",
    "ErrorKind",
    "Forbidden",
    "KeyMaterial",
    "MetadataCache",
    "MetadataSource",
    "MetadataUnavailableError",
    "OidcMetadata",
    "OpenIdConnectMetadataSource",
    "RequestGate",
    "TokenValidationMiddleware",
    "TokenValidator",
    "TransientError",
    "Unauthorized",
    "ValidationOutcome",
    "WsFederationMetadataSource",
    "build_metadata_source",
    "extract_bearer_token",
]
