"""
Authorization policy applied to verified claims.
"""

import logging
from typing import FrozenSet, Iterable, Optional

from todolist_service.auth.outcome import (
    Authorized,
    ClaimSet,
    ErrorKind,
    Forbidden,
    ValidationOutcome,
)
from todolist_service.config import Settings

logger = logging.getLogger(__name__)


class AuthorizationPolicy:
    """
    Tenant allow-list plus scope/role requirement.

    Delegated (user) tokens carry permissions in the scope claim, application
    (client credential) tokens in 'roles'; either one grants access.
    """

    def __init__(
        self,
        *,
        allowed_tenants: Optional[Iterable[str]] = None,
        required_scopes: Iterable[str] = ("access_as_user",),
        accepted_roles: Iterable[str] = (),
    ) -> None:
        tenants = frozenset(allowed_tenants or ())
        # No allow-list configured means any tenant
        self.allowed_tenants: Optional[FrozenSet[str]] = tenants or None
        self.required_scopes = frozenset(required_scopes)
        self.accepted_roles = frozenset(accepted_roles)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AuthorizationPolicy":
        return cls(
            allowed_tenants=settings.allowed_tenants_set,
            required_scopes=settings.required_scopes_set,
            accepted_roles=settings.accepted_roles_set,
        )

    def authorize(self, claims: ClaimSet) -> ValidationOutcome:
        """Accept or reject a caller whose token has already been validated."""
        if self.allowed_tenants is not None and claims.tenant_id not in self.allowed_tenants:
            logger.warning(f"Tenant {claims.tenant_id} is not allowed to call this API")
            return Forbidden(ErrorKind.TENANT_NOT_ALLOWED, "tenant not allowed")

        if not self._has_permission(claims):
            logger.warning(
                f"Insufficient permissions for subject {claims.subject}: "
                f"scopes={claims.scopes}, roles={claims.roles}"
            )
            return Forbidden(ErrorKind.INSUFFICIENT_SCOPE, "insufficient scope")

        return Authorized(claims)

    def _has_permission(self, claims: ClaimSet) -> bool:
        scopes = set(claims.scopes)
        if self.required_scopes & scopes:
            return True
        if not self.required_scopes and scopes:
            return True

        roles = set(claims.roles)
        if self.accepted_roles:
            return bool(self.accepted_roles & roles)
        return bool(roles)
