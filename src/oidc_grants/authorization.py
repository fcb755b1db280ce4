"""Roles, UMA permissions and route-level authorization.

This module answers authorization questions from tokens that have already been
validated:

- ``TokenRoles``         realm and application roles (``realm:x`` / ``app:x``)
- ``UmaPermissions``     resource/scope permissions from an UMA ticket token
- ``TokenAuthorizer``    fail-closed role/permission enforcement (raises Forbidden)
- ``AuthzRequest``       input of ``GrantManager.check_permissions``

Security Notes
--------------
All extraction is fail-closed: malformed or unexpected claim shapes produce
empty sets, so authorization checks deny by default.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Literal, TypeAlias

from .errors import Forbidden
from .protocols import Claims
from .token import Token

REALM = "realm"

ResponseMode: TypeAlias = Literal["decision", "permissions"] | None


@dataclass(frozen=True, slots=True)
class AuthzPermission:
    """A resource (id or name) and optional scopes to ask the IdP about."""

    id: str
    scopes: Sequence[str] = ()

    def to_param(self) -> str:
        """Render as the UMA ``permission`` form value: ``resource[#scope,scope]``."""
        if not self.scopes:
            return self.id
        return f"{self.id}#{','.join(self.scopes)}"


@dataclass(frozen=True, slots=True)
class AuthzRequest:
    """Parameters of an UMA ticket request.

    Attributes:
        audience: Resource server client id. Defaults to the adapter's client.
        claim_token: Optional pushed claims.
        claim_token_format: Format of ``claim_token``.
        permissions: Resources/scopes to evaluate. Empty means all.
    """

    audience: str | None = None
    claim_token: str | None = None
    claim_token_format: str | None = None
    permissions: Sequence[AuthzPermission] = field(default=())


def _strings(raw: object) -> list[str]:
    if isinstance(raw, (list, tuple, set, frozenset)):
        return [item for item in raw if isinstance(item, str)]
    return []


class TokenRoles:
    """Lists and checks roles of a token's claims.

    Roles of ``app`` (normally the adapter's own client) are reported without
    prefix; realm roles as ``realm:<role>`` and other applications' roles as
    ``<app>:<role>``.

    Examples:
        >>> roles = TokenRoles({"realm_access": {"roles": ["admin"]}}, app="shop")
        >>> roles.has_role("realm:admin")
        True
        >>> roles.get_roles()
        ['realm:admin']
    """

    def __init__(self, claims: Claims, app: str | None = None) -> None:
        self._claims = claims
        self._app = app

    def _realm_roles(self) -> list[str]:
        realm_access = self._claims.get("realm_access")
        if not isinstance(realm_access, Mapping):
            return []
        return _strings(realm_access.get("roles"))

    def _app_roles(self) -> dict[str, list[str]]:
        resource_access = self._claims.get("resource_access")
        if not isinstance(resource_access, Mapping):
            return {}
        return {
            app: _strings(value.get("roles"))
            for app, value in resource_access.items()
            if isinstance(value, Mapping)
        }

    def has_role(self, role: str) -> bool:
        parts = role.split(":")
        if len(parts) == 1:
            app, name = self._app, role
        else:
            app, name = parts[0], parts[1]

        if app == REALM:
            return name in self._realm_roles()
        if app is None:
            return False
        return name in self._app_roles().get(app, [])

    def get_roles(self) -> list[str]:
        roles = [role if self._app == REALM else f"{REALM}:{role}" for role in self._realm_roles()]
        for app, app_roles in self._app_roles().items():
            roles.extend(role if app == self._app else f"{app}:{role}" for role in app_roles)
        return roles


class UmaPermissions:
    """Permission sets derived from an UMA ticket token's ``authorization`` claim.

    Each permission is keyed by resource name (falling back to resource id).
    ``has_permission`` accepts ``"resource#scope"`` or a bare ``"resource"``.
    """

    def __init__(self, claims: Claims) -> None:
        self._permissions: set[str] = set()
        self._resources: dict[str, set[str]] = {}

        authorization = claims.get("authorization")
        if not isinstance(authorization, Mapping):
            return

        for permission in authorization.get("permissions") or ():
            if not isinstance(permission, Mapping):
                continue
            resource = permission.get("rsname") or permission.get("rsid")
            if not isinstance(resource, str):
                continue

            scopes = set(_strings(permission.get("scopes")))
            self._resources[resource] = scopes
            self._permissions.update(f"{resource}#{scope}" for scope in scopes)

    def has_permission(self, permission: str) -> bool:
        return permission in self._permissions or permission in self._resources

    def has_resource_permission(self, resource: str, scope: str) -> bool:
        return scope in self._resources.get(resource, ())

    def get_permissions(self) -> list[str]:
        return sorted(self._permissions)

    def get_resource_permissions(self, resource: str) -> list[str]:
        return sorted(self._resources.get(resource, ()))


def _has_permission(token: Token, permission: str) -> bool:
    resource, _, scope = permission.partition("#")
    return token.has_permission(resource, scope or None)


class TokenAuthorizer:
    """Enforces role and permission requirements on a validated token.

    Role Enforcement:
        Any-of: the token must hold at least one required role (``Token.has_role``
        specification syntax).

    Permission Enforcement:
        ``"resource#scope"`` or ``"resource"`` strings checked against the
        token's ``authorization.permissions``. ``require_all_permissions``
        selects all-of (default) or any-of semantics.

    Raises:
        Forbidden: If requirements are not met. Empty requirements allow access.
    """

    def authorize(
        self,
        token: Token,
        *,
        roles: Iterable[str] = (),
        permissions: Iterable[str] = (),
        require_all_permissions: bool = True,
    ) -> None:
        roles = tuple(roles)
        if roles and not any(token.has_role(role) for role in roles):
            raise Forbidden("Access denied")

        permissions = tuple(permissions)
        if not permissions:
            return

        granted = [_has_permission(token, permission) for permission in permissions]
        if require_all_permissions and not all(granted):
            raise Forbidden("Access denied")
        if not require_all_permissions and not any(granted):
            raise Forbidden("Access denied")
