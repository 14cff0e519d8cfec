"""
User models for authenticated callers.
"""

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from todolist_service.auth.outcome import ClaimSet


class AuthenticatedUser(BaseModel):
    """
    Represents the caller behind a validated Entra ID token.
    """

    subject: str = Field(..., description="Unique caller identifier (sub claim)")
    name: Optional[str] = Field(None, description="User's display name")
    email: Optional[str] = Field(None, description="User's email address (if available)")
    preferred_username: Optional[str] = Field(None, description="Preferred username")

    tenant_id: Optional[str] = Field(None, description="Azure AD tenant ID")
    object_id: Optional[str] = Field(None, description="Caller's object ID in Azure AD")

    scopes: List[str] = Field(default_factory=list, description="Delegated scopes")
    roles: List[str] = Field(default_factory=list, description="App roles")

    issued_at: Optional[datetime] = Field(None, description="Token issued at time")
    expires_at: Optional[datetime] = Field(None, description="Token expiration time")

    app_id: Optional[str] = Field(None, description="Application ID that requested the token")

    @classmethod
    def from_claims(cls, claims: ClaimSet) -> "AuthenticatedUser":
        """
        Create AuthenticatedUser from verified token claims.

        Args:
            claims: Claims of a token that passed validation and policy

        Returns:
            AuthenticatedUser instance
        """
        issued_at = None
        if isinstance(claims.get("iat"), (int, float)):
            issued_at = datetime.fromtimestamp(claims["iat"], tz=timezone.utc)

        # v1.0 tokens: upn, unique_name
        # v2.0 tokens: email, preferred_username
        email = (
            claims.get("email")
            or claims.get("upn")
            or claims.get("unique_name")
            or claims.get("preferred_username")
        )

        return cls(
            subject=claims.subject or "unknown",
            name=claims.get("name"),
            email=email,
            preferred_username=claims.get("preferred_username") or claims.get("upn"),
            tenant_id=claims.tenant_id,
            object_id=claims.get("oid"),
            scopes=claims.scopes,
            roles=claims.roles,
            issued_at=issued_at,
            expires_at=claims.expires_at,
            app_id=claims.get("appid") or claims.get("azp"),
        )
