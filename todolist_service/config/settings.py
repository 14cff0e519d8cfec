"""
Configuration management for the TodoList service using Pydantic Settings.
Implements singleton pattern to ensure single instance throughout the application.
"""

from functools import lru_cache
from typing import FrozenSet, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

METADATA_SOURCES = ("oidc", "wsfed")


def _split(value: str, sep: Optional[str] = ",") -> List[str]:
    """Split a delimited settings string, dropping blanks."""
    return [item.strip() for item in value.split(sep) if item.strip()]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Uses Pydantic Settings for validation and type safety.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application settings
    app_name: str = Field(default="TodoList Service", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    debug: bool = Field(
        default=False,
        description="Debug mode. Adds validation failure detail to 401/403 responses",
    )
    log_level: str = Field(default="INFO", description="Root log level")

    # Server settings
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port")

    # Entra ID / Azure AD settings
    aad_instance: str = Field(
        default="https://login.microsoftonline.com/{}",
        description="Authority template; '{}' is replaced by the tenant id",
    )
    tenant_id: str = Field(
        ...,
        description="Azure AD Tenant ID (GUID or domain name like contoso.onmicrosoft.com)",
    )
    client_id: str = Field(
        ...,
        description="Application (client) ID of this service's App Registration",
    )
    audience: Optional[str] = Field(
        default=None,
        description="App ID URI of the service. If not set, defaults to api://{client_id}",
    )
    authority: Optional[str] = Field(
        default=None,
        description="Authority URL. If not provided, will be constructed from aad_instance",
    )
    token_version: str = Field(
        default="v2.0",
        description="Azure AD endpoint version used for discovery (v1.0 or v2.0)",
    )
    metadata_source: str = Field(
        default="oidc",
        description="Where signing keys come from: 'oidc' discovery or 'wsfed' federation metadata",
    )

    # Authorization policy
    allowed_tenants: str = Field(
        default="",
        description="Comma-separated tenant ids allowed to call the API. Empty allows any tenant",
    )
    required_scopes: str = Field(
        default="access_as_user",
        description="Space-separated delegated scopes, any of which grants access",
    )
    accepted_roles: str = Field(
        default="",
        description="Space-separated app roles granting access. Empty accepts any role",
    )

    # Metadata cache settings (seconds)
    metadata_refresh_interval: int = Field(default=86400, description="Metadata time to live")
    metadata_refresh_retry_interval: int = Field(
        default=30,
        description="Delay before fetching again after a failed refresh",
    )
    metadata_automatic_refresh_interval: int = Field(
        default=300,
        description="Minimum delay between refreshes forced by unknown signing keys",
    )
    metadata_stale_grace: int = Field(
        default=86400,
        description="How long past its refresh deadline stale metadata may still be served",
    )
    metadata_fetch_timeout: float = Field(
        default=10.0,
        description="Upper bound on how long a request waits for a metadata fetch",
    )
    metadata_fetch_retries: int = Field(default=2, description="Retries per metadata fetch")

    # Token validation settings
    clock_skew: int = Field(default=300, description="Allowed clock skew in seconds")
    algorithms: str = Field(default="RS256", description="Comma-separated signing algorithms")

    # Paths served without a bearer token
    public_paths: str = Field(
        default="/,/health,/docs,/redoc,/openapi.json",
        description="Comma-separated paths that bypass token validation",
    )

    # CORS settings
    cors_origins: str = Field(
        default="http://localhost:3000,http://localhost:8000",
        description="Comma-separated list of allowed CORS origins",
    )

    @field_validator("tenant_id")
    @classmethod
    def validate_tenant_id(cls, v: str) -> str:
        """Validate tenant ID is not empty."""
        if not v or v.strip() == "":
            raise ValueError("tenant_id must be provided")
        return v.strip()

    @field_validator("client_id")
    @classmethod
    def validate_client_id(cls, v: str) -> str:
        """Validate client ID is not empty."""
        if not v or v.strip() == "":
            raise ValueError("client_id must be provided")
        return v.strip()

    @field_validator("token_version")
    @classmethod
    def validate_token_version(cls, v: str) -> str:
        if v not in ("v1.0", "v2.0"):
            raise ValueError("token_version must be 'v1.0' or 'v2.0'")
        return v

    @field_validator("metadata_source")
    @classmethod
    def validate_metadata_source(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in METADATA_SOURCES:
            raise ValueError(f"metadata_source must be one of {METADATA_SOURCES}")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse comma-separated CORS origins into a list."""
        return _split(self.cors_origins)

    @property
    def allowed_tenants_set(self) -> FrozenSet[str]:
        return frozenset(_split(self.allowed_tenants))

    @property
    def required_scopes_set(self) -> FrozenSet[str]:
        return frozenset(_split(self.required_scopes, None))

    @property
    def accepted_roles_set(self) -> FrozenSet[str]:
        return frozenset(_split(self.accepted_roles, None))

    @property
    def algorithms_list(self) -> List[str]:
        return _split(self.algorithms)

    @property
    def public_paths_set(self) -> FrozenSet[str]:
        return frozenset(_split(self.public_paths))

    @property
    def oidc_authority(self) -> str:
        """Get the sign-in authority of the tenant, as advertised in challenges."""
        if self.authority:
            return self.authority.rstrip("/")
        return self.aad_instance.format(self.tenant_id).rstrip("/")

    @property
    def discovery_authority(self) -> str:
        """Authority the metadata is fetched from; v2.0 appends the version segment."""
        if self.token_version == "v1.0" or self.oidc_authority.endswith("/v2.0"):
            return self.oidc_authority
        return f"{self.oidc_authority}/{self.token_version}"

    @property
    def openid_config_url(self) -> str:
        """Get the OpenID configuration document URL."""
        return f"{self.discovery_authority}/.well-known/openid-configuration"

    @property
    def federation_metadata_url(self) -> str:
        """Get the WS-Federation metadata document URL."""
        return f"{self.oidc_authority}/federationmetadata/2007-06/federationmetadata.xml"

    @property
    def expected_audience(self) -> str:
        """
        Get the App ID URI of the service.
        If audience is not explicitly set, constructs it from client_id with api:// prefix.
        """
        if self.audience:
            return self.audience
        return f"api://{self.client_id}"

    @property
    def valid_audiences(self) -> FrozenSet[str]:
        """App ID URI and client id of this service are both valid audiences."""
        return frozenset({self.expected_audience, self.client_id})

    @property
    def valid_issuers(self) -> FrozenSet[str]:
        """
        Issuers Azure AD uses for this tenant.
        v1.0 tokens come from sts.windows.net, v2.0 tokens from login.microsoftonline.com/.../v2.0.
        """
        tenant = self.tenant_id
        return frozenset(
            {
                f"https://login.microsoftonline.com/{tenant}/",
                f"https://login.microsoftonline.com/{tenant}/v2.0",
                f"https://login.windows.net/{tenant}/",
                f"https://login.microsoft.com/{tenant}/",
                f"https://sts.windows.net/{tenant}/",
            }
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings instance (singleton pattern using lru_cache).

    Returns:
        Settings: The application settings instance
    """
    return Settings()
