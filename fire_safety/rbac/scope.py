"""
Data scope — which factories the current request may look at.

- Holders of the global wildcard, and users whose effective role is
  SUPER_ADMIN, see every factory.
- Everyone else is locked to the factory on their user record.

The scope is built from the permissions re-resolved for this request,
never from the token claims, so a tampered `factoryId` claim has no
effect.

Usage in a controller:
    scope = resolve_data_scope(user, effective)
    factory_id = scope.factory_filter(requested_factory_id)
"""

import uuid
from dataclasses import dataclass, field

from fire_safety.core.exceptions import PermissionDeniedError
from fire_safety.models.user import BaseRole, User
from fire_safety.rbac.matching import GLOBAL_WILDCARDS
from fire_safety.services.permission_resolver import EffectivePermissions


@dataclass
class DataScope:
    is_global: bool = False
    factory_id: uuid.UUID | None = None
    user_id: uuid.UUID | None = None
    role_codes: list[str] = field(default_factory=list)

    def factory_filter(self, requested: uuid.UUID | None = None) -> uuid.UUID | None:
        """Factory id to filter on; None means "all factories"."""
        if self.is_global:
            return requested
        if requested is not None and requested != self.factory_id:
            raise PermissionDeniedError("Insufficient permissions")
        return self.factory_id


def resolve_data_scope(user: User, effective: EffectivePermissions) -> DataScope:
    scope = DataScope(user_id=user.id, role_codes=effective.role_codes)

    if not GLOBAL_WILDCARDS.isdisjoint(effective.all_permissions):
        scope.is_global = True
        return scope
    if effective.effective_role(user) == BaseRole.SUPER_ADMIN.value:
        scope.is_global = True
        return scope

    if user.factory_id is None:
        raise PermissionDeniedError("User is not bound to a factory — contact admin")
    scope.factory_id = user.factory_id
    return scope
